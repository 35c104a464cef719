"""
Slack Block Kit Renderer

Pure functions from Jira data to Slack Block Kit documents. No network
access: the dispatcher fetches, these functions only lay out.

Every document respects Slack's surface limits: long text is truncated
with an ellipsis, field lists are split into sections of at most ten
cells, action rows are capped, and each actionable control carries the
JSON payload the dispatcher needs to act on it.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from jira_bridge.exceptions import BridgeError
from jira_bridge.models import UNASSIGNED, CorrelationPayload, Issue, Project, Transition, TrackerUser
from jira_bridge.stats import EmptyProjectStats, ProjectStats

Block = Dict[str, Any]

# Slack surface limits
MAX_BLOCKS = 50
MAX_HEADER_TEXT = 150
MAX_SECTION_TEXT = 3000
MAX_FIELD_TEXT = 2000
MAX_BUTTON_TEXT = 75
MAX_OPTION_TEXT = 75
MAX_MODAL_TITLE = 24
MAX_FIELDS_PER_SECTION = 10

MAX_TRANSITION_BUTTONS = 4
MAX_ASSIGNEE_OPTIONS = 99  # plus "Unassigned" makes Slack's 100
SUMMARY_CELL_LENGTH = 60

ELLIPSIS = "…"

BAR_EMOJIS = ["🟩", "🟨", "🟦", "🟪", "🟧", "🟥", "🟫", "⬜"]
EMPTY_BAR_EMOJI = "⬜"

TRANSITION_ACTION_PREFIX = "transition_"
ASSIGN_ACTION = "assign_issue"
COMMENT_ACTION = "open_comment_modal"
VIEW_ACTION = "view_jira_issue"
COMMENT_CALLBACK = "comment_modal_submission"
COMMENT_BLOCK = "comment_block"
COMMENT_INPUT = "comment_input"


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, ending in an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + ELLIPSIS


def escape_mrkdwn(text: str) -> str:
    """Escape the three characters Slack treats as control sequences."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def plain_text(text: str, limit: int, emoji: bool = True) -> Dict[str, Any]:
    return {"type": "plain_text", "text": truncate(text, limit), "emoji": emoji}


def mrkdwn(text: str, limit: int = MAX_FIELD_TEXT) -> Dict[str, Any]:
    return {"type": "mrkdwn", "text": truncate(text, limit)}


def header_block(text: str) -> Block:
    return {"type": "header", "text": plain_text(text, MAX_HEADER_TEXT)}


def section_block(text: str) -> Block:
    return {"type": "section", "text": mrkdwn(text, MAX_SECTION_TEXT)}


def context_block(text: str) -> Block:
    return {"type": "context", "elements": [mrkdwn(text)]}


def divider_block() -> Block:
    return {"type": "divider"}


def paginate_fields(cells: Sequence[Dict[str, Any]], per_section: int = MAX_FIELDS_PER_SECTION) -> List[Block]:
    """Split field cells into sections of at most ``per_section`` cells."""
    sections = []
    buffer: List[Dict[str, Any]] = []
    for cell in cells:
        buffer.append(cell)
        if len(buffer) >= per_section:
            sections.append({"type": "section", "fields": buffer})
            buffer = []
    if buffer:
        sections.append({"type": "section", "fields": buffer})
    return sections


def cap_blocks(blocks: List[Block], note: str) -> List[Block]:
    """Keep a document under MAX_BLOCKS, replacing the overflow with a note."""
    if len(blocks) <= MAX_BLOCKS:
        return blocks
    kept = blocks[: MAX_BLOCKS - 1]
    hidden = len(blocks) - len(kept)
    return kept + [context_block(note.format(count=hidden))]


# Keyword groups, first match wins. Issue rows rank "progress" first.
SUMMARY_EMOJI = (
    (("done", "closed"), "✅"),
    (("progress", "review"), "⏳"),
    (("to do", "open"), "📝"),
)
ISSUE_ROW_EMOJI = (
    (("progress", "review"), "⏳"),
    (("to do", "open"), "📝"),
    (("done", "close"), "✅"),
)


def status_emoji(status: str, order=SUMMARY_EMOJI) -> str:
    lowered = status.lower()
    for keywords, emoji in order:
        if any(k in lowered for k in keywords):
            return emoji
    return "🔹"


# ----------------------------------------------------------------------------
# Issue view
# ----------------------------------------------------------------------------


def _assignee_select(issue_key: str, users: Sequence[TrackerUser]) -> Block:
    options = [
        {
            "text": plain_text(f"👤 {UNASSIGNED}", MAX_OPTION_TEXT),
            "value": CorrelationPayload(issue_key).to_json(include_account=True),
        }
    ]
    for user in users[:MAX_ASSIGNEE_OPTIONS]:
        options.append(
            {
                "text": plain_text(user.display_name, MAX_OPTION_TEXT),
                "value": CorrelationPayload(issue_key, account_id=user.account_id).to_json(),
            }
        )

    return {
        "type": "section",
        "text": mrkdwn("🔄 *Re-assign Issue:*"),
        "accessory": {
            "type": "static_select",
            "placeholder": plain_text("Select User...", MAX_OPTION_TEXT),
            "options": options,
            "action_id": ASSIGN_ACTION,
        },
    }


def _transition_buttons(issue_key: str, transitions: Sequence[Transition]) -> Block:
    return {
        "type": "actions",
        "elements": [
            {
                "type": "button",
                "text": plain_text(t.name, MAX_BUTTON_TEXT),
                "value": CorrelationPayload(issue_key, transition_id=t.id).to_json(),
                "action_id": f"{TRANSITION_ACTION_PREFIX}{t.id}",
            }
            for t in transitions[:MAX_TRANSITION_BUTTONS]
        ],
    }


def build_issue_blocks(
    issue: Issue,
    transitions: Sequence[Transition] = (),
    assignable_users: Sequence[TrackerUser] = (),
    browse_url: str = "",
) -> List[Block]:
    """
    Render a single issue with its action controls.

    Args:
        issue: The issue to show
        transitions: Workflow transitions available right now
        assignable_users: Users the issue may be assigned to
        browse_url: Web link to the issue

    Returns:
        Block Kit blocks. The assignee select and the transition row are
        left out when their lists are empty.
    """
    if issue.has_description:
        description = "📝 Description available on Jira"
    else:
        description = "📝 No description provided"

    blocks = [
        header_block(f"🎫 {issue.key}: {issue.summary}"),
        {
            "type": "section",
            "fields": [
                mrkdwn(f"*Status:*\n{escape_mrkdwn(issue.status)}"),
                mrkdwn(f"*Assignee:*\n{escape_mrkdwn(issue.assignee_name)}"),
            ],
        },
        context_block(description),
        divider_block(),
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": plain_text("View in Jira", MAX_BUTTON_TEXT),
                    "url": browse_url,
                    "action_id": VIEW_ACTION,
                },
                {
                    "type": "button",
                    "text": plain_text("💬 Add Comment", MAX_BUTTON_TEXT),
                    "value": CorrelationPayload(issue.key).to_json(),
                    "action_id": COMMENT_ACTION,
                },
            ],
        },
    ]

    if assignable_users:
        blocks.append(_assignee_select(issue.key, assignable_users))

    if transitions:
        blocks.append(_transition_buttons(issue.key, transitions))

    return blocks


# ----------------------------------------------------------------------------
# Statistics
# ----------------------------------------------------------------------------


def build_project_stats_blocks(stats: Union[ProjectStats, EmptyProjectStats]) -> List[Block]:
    """Status distribution with a proportional progress bar."""
    if isinstance(stats, EmptyProjectStats):
        return [
            section_block(
                f"📊 *Project {stats.project_key} Statistics*\nNo issues found in this project yet."
            )
        ]

    emojis = {
        sc.status: BAR_EMOJIS[index % len(BAR_EMOJIS)]
        for index, sc in enumerate(stats.status_counts)
    }

    bar = "".join(
        (emojis[seg.status] if seg.status is not None else EMPTY_BAR_EMOJI) * seg.units
        for seg in stats.bar
    )
    labels = " | ".join(
        f"{emojis[sc.status]} `{sc.percent}% {sc.status}`" for sc in stats.status_counts
    )

    cells = [
        mrkdwn(f"*{emojis[sc.status]} {escape_mrkdwn(sc.status)}:*\n{sc.count} tasks")
        for sc in stats.status_counts
    ]
    cells.append(mrkdwn(f"*📦 Total Fetched:*\n{stats.fetched} tasks"))

    blocks = [
        header_block(f"📊 Project: {stats.project_name} Overview"),
        context_block(
            f"Based on the latest {stats.fetched} issues (Total in backlog: {stats.total})"
        ),
        section_block(f"*Progress Bar:*\n{bar}\n{labels}"),
        divider_block(),
    ]
    blocks.extend(paginate_fields(cells))
    return cap_blocks(blocks, "…and {count} more sections not shown.")


def build_assignee_stats_blocks(stats: Union[ProjectStats, EmptyProjectStats]) -> List[Block]:
    """Workload per assignee with per-status breakdown."""
    if isinstance(stats, EmptyProjectStats):
        return [
            section_block(
                f"👥 *Team Workload: {stats.project_key}*\nNo issues found in this project."
            )
        ]

    blocks = [
        header_block(f"👥 Team Workload: {stats.project_name}"),
        context_block(
            f"Showing active workload distribution for the latest {stats.fetched} tasks."
        ),
        divider_block(),
    ]

    for workload in stats.assignees:
        details = " | ".join(
            f"{status_emoji(status)} `{count} {status}`" for status, count in workload.statuses
        )
        blocks.append(
            section_block(f"*👤 {escape_mrkdwn(workload.name)}* ({workload.total} tasks)\n{details}")
        )

    return cap_blocks(blocks, "…and {count} more assignees not shown.")


# ----------------------------------------------------------------------------
# Lists
# ----------------------------------------------------------------------------


def build_projects_list_blocks(projects: Sequence[Project]) -> List[Block]:
    if not projects:
        return [
            section_block(
                "📂 *Jira Projects*\nYou don't have access to any Jira projects with this token."
            )
        ]

    blocks = [
        header_block("📂 Accessible Jira Projects"),
        context_block(f"Found {len(projects)} projects connected to this workspace."),
        divider_block(),
    ]

    for project in projects:
        if project.project_type == "software":
            type_emoji = "💻"
        elif project.project_type == "business":
            type_emoji = "💼"
        else:
            type_emoji = "📁"
        blocks.append(
            section_block(
                f"{type_emoji} *{escape_mrkdwn(project.name)}*\n"
                f"🏷️ `Key: {project.key}` | 🗂️ `Type: {project.project_type}`"
            )
        )

    return cap_blocks(blocks, "…and {count} more projects not shown.")


def build_user_issues_blocks(
    issues: Sequence[Issue],
    display_name: str,
    browse_url: Optional[Callable[[str], str]] = None,
    max_results: int = 100,
) -> List[Block]:
    """
    Table of a user's open issues, ten cells per section.

    Args:
        issues: Issues assigned to the user
        display_name: Name for the header
        browse_url: Callable mapping an issue key to its web link
        max_results: Search cap, mentioned in the footer
    """
    if not issues:
        return [
            section_block(f"🎯 *{escape_mrkdwn(display_name)}'s Active Tasks*\nWoohoo! No open issues found.")
        ]

    cells = [mrkdwn("*Key & Summary*"), mrkdwn("*Status*")]
    for issue in issues:
        summary = escape_mrkdwn(truncate(issue.summary, SUMMARY_CELL_LENGTH))
        link = browse_url(issue.key) if browse_url else ""
        key = f"<{link}|*{issue.key}*>" if link else f"*{issue.key}*"
        cells.append(mrkdwn(f"{key} - {summary}"))
        emoji = status_emoji(issue.status, ISSUE_ROW_EMOJI)
        cells.append(mrkdwn(f"{emoji} {escape_mrkdwn(issue.status)}"))

    blocks = [
        header_block(f"🎯 Active Tasks: {display_name} ({len(issues)})"),
        divider_block(),
    ]
    blocks.extend(paginate_fields(cells))
    blocks.append(divider_block())
    blocks.append(
        context_block(f"Showing up to {max_results} active tasks. Search full queries on Jira.")
    )
    return cap_blocks(blocks, "…and {count} more sections not shown.")


# ----------------------------------------------------------------------------
# Modal, placeholder and notices
# ----------------------------------------------------------------------------


def build_comment_modal(issue_key: str, response_url: Optional[str] = None) -> Dict[str, Any]:
    """
    Modal for writing a comment.

    The issue key (and the response_url of the message the button sat on,
    when known) travel in private_metadata, so the submission handler can
    post the comment and refresh that message.
    """
    metadata = CorrelationPayload(issue_key, response_url=response_url).to_json()
    return {
        "type": "modal",
        "callback_id": COMMENT_CALLBACK,
        "private_metadata": metadata,
        "title": plain_text("Add Comment", MAX_MODAL_TITLE),
        "submit": plain_text("Post Comment", MAX_MODAL_TITLE),
        "close": plain_text("Cancel", MAX_MODAL_TITLE),
        "blocks": [
            {
                "type": "input",
                "block_id": COMMENT_BLOCK,
                "element": {
                    "type": "plain_text_input",
                    "action_id": COMMENT_INPUT,
                    "multiline": True,
                    "placeholder": {"type": "plain_text", "text": "Type your comment here..."},
                },
                "label": plain_text(f"Comment on {issue_key}", MAX_FIELD_TEXT),
            }
        ],
    }


def build_placeholder_blocks(text: str) -> List[Block]:
    """Transient 'in progress' view shown while a mutation runs."""
    return [section_block(f"⏳ *{text}*")]


def build_error_text(error: BridgeError) -> str:
    return f"❌ {error.actor_message}"
