"""
Interaction Dispatcher

Routes decoded Slack interactions (slash commands, button/select actions,
modal submissions) to handlers and drives each one through its states:

    RECEIVED -> ACKNOWLEDGED -> VALIDATING -> REJECTED
                                           -> OPTIMISTIC_UPDATE_SHOWN -> MUTATING
                                                -> MUTATION_FAILED
                                                -> [AUDIT_WRITTEN] -> REFETCHING -> RE_RENDERED

Read-only commands take the shorter VALIDATING -> FETCHING -> RESPONDED path.

Each interaction is caught at its own boundary in ``dispatch``: a failure
ends that interaction with an actor-only message and never reaches the
event loop. Nothing is retried.
"""

import asyncio
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from jira_bridge import blocks as ui
from jira_bridge.config import InteractionConfig
from jira_bridge.exceptions import AuditWriteError, BridgeError, MalformedPayloadError, NotFoundError
from jira_bridge.identity import IdentityResolver
from jira_bridge.jira_client import JiraClient
from jira_bridge.logging_config import get_logger
from jira_bridge.mentions import build_document, encode
from jira_bridge.models import (
    ISSUE_KEY_RE,
    UNASSIGNED,
    CorrelationPayload,
    EventKind,
    InteractionEvent,
    Responder,
    ResponseMode,
    Visibility,
)
from jira_bridge.stats import aggregate

logger = get_logger("dispatcher")

PROJECT_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]+$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class InteractionState(Enum):
    RECEIVED = "received"
    ACKNOWLEDGED = "acknowledged"
    VALIDATING = "validating"
    REJECTED = "rejected"
    OPTIMISTIC_UPDATE_SHOWN = "optimistic_update_shown"
    MUTATING = "mutating"
    MUTATION_FAILED = "mutation_failed"
    AUDIT_WRITTEN = "audit_written"
    REFETCHING = "refetching"
    RE_RENDERED = "re_rendered"
    FETCHING = "fetching"
    MODAL_OPENED = "modal_opened"
    RESPONDED = "responded"
    FAILED = "failed"


TERMINAL_STATES = {
    InteractionState.REJECTED,
    InteractionState.MUTATION_FAILED,
    InteractionState.RE_RENDERED,
    InteractionState.MODAL_OPENED,
    InteractionState.RESPONDED,
    InteractionState.FAILED,
}


@dataclass
class InteractionRun:
    """Trail of one interaction through the state machine."""

    event: InteractionEvent
    states: List[InteractionState] = field(default_factory=lambda: [InteractionState.RECEIVED])
    error: Optional[BaseException] = None

    @property
    def state(self) -> InteractionState:
        return self.states[-1]

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, state: InteractionState) -> None:
        logger.debug("%s %s: %s -> %s", self.event.kind.value, self.event.handle,
                     self.state.value, state.value)
        self.states.append(state)

    def fail(self, state: InteractionState, error: BaseException) -> None:
        self.error = error
        self.advance(state)


class EntityLocks:
    """
    Per-issue mutual exclusion from MUTATING through RE_RENDERED.

    With ``enabled=False`` two interactions on one issue may interleave and
    the later re-render wins the shared message.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._locks: Dict[str, Any] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        if not self.enabled:
            yield
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]


def message(
    text: str,
    blocks: Optional[List[Dict[str, Any]]] = None,
    visibility: Visibility = Visibility.EPHEMERAL,
    mode: ResponseMode = ResponseMode.NEW,
) -> Dict[str, Any]:
    """Slack response body for one visibility/mode combination."""
    body: Dict[str, Any] = {
        "response_type": visibility.value,
        "replace_original": mode is ResponseMode.REPLACE,
        "text": text,
    }
    if blocks is not None:
        body["blocks"] = blocks
    return body


def error_message(error: BridgeError, mode: ResponseMode = ResponseMode.NEW) -> Dict[str, Any]:
    return message(ui.build_error_text(error), mode=mode)


Handler = Callable[[InteractionEvent, Responder, InteractionRun], Awaitable[None]]


class InteractionDispatcher:
    """
    Runs Slack interactions against Jira.

    Usage:
        dispatcher = InteractionDispatcher(jira_client, resolver, config.interaction)
        run = await dispatcher.dispatch(event, responder)
    """

    def __init__(
        self,
        jira: JiraClient,
        identities: IdentityResolver,
        config: Optional[InteractionConfig] = None,
    ):
        self.jira = jira
        self.identities = identities
        self.config = config or InteractionConfig()
        self.locks = EntityLocks(enabled=self.config.serialize_mutations)

        self.commands: Dict[str, Handler] = {
            "/jira": self.handle_issue_command,
            "/jira-report": self.handle_report_command,
            "/jira-team": self.handle_team_command,
            "/jira-projects": self.handle_projects_command,
            "/jira-mine": self.handle_mine_command,
            "/jira-link": self.handle_link_command,
            "/jira-unlink": self.handle_unlink_command,
        }
        self.actions: Dict[str, Handler] = {
            ui.ASSIGN_ACTION: self.handle_assign_action,
            ui.COMMENT_ACTION: self.handle_comment_button,
            ui.VIEW_ACTION: self.handle_view_link,
        }
        self.submissions: Dict[str, Handler] = {
            ui.COMMENT_CALLBACK: self.handle_comment_submission,
        }

    def _route(self, event: InteractionEvent) -> Optional[Handler]:
        if event.kind is EventKind.COMMAND:
            return self.commands.get(event.handle)
        if event.kind is EventKind.CONTROL_ACTION:
            if event.handle.startswith(ui.TRANSITION_ACTION_PREFIX):
                return self.handle_transition_action
            return self.actions.get(event.handle)
        return self.submissions.get(event.handle)

    async def dispatch(self, event: InteractionEvent, responder: Responder) -> InteractionRun:
        """Run one interaction to a terminal state. Never raises."""
        run = InteractionRun(event)
        handler = self._route(event)
        form_errors = self._form_errors(event) if handler is not None else None

        try:
            if form_errors:
                # Keeps the modal open with the errors shown under each input
                await responder.ack({"response_action": "errors", "errors": form_errors})
            else:
                await responder.ack()
        except Exception as e:
            logger.error("Could not acknowledge %s %s: %s", event.kind.value, event.handle, e)
            run.fail(InteractionState.FAILED, e)
            return run
        run.advance(InteractionState.ACKNOWLEDGED)

        if form_errors:
            run.advance(InteractionState.VALIDATING)
            error = MalformedPayloadError("The form has errors", field=", ".join(form_errors))
            logger.info("Rejected %s %s: %s", event.kind.value, event.handle, form_errors)
            run.fail(InteractionState.REJECTED, error)
            return run

        if handler is None:
            logger.warning("No handler for %s %s", event.kind.value, event.handle)
            run.advance(InteractionState.VALIDATING)
            await self._reject(run, responder,
                               MalformedPayloadError(f"Unsupported interaction '{event.handle}'"))
            return run

        try:
            await handler(event, responder, run)
        except BridgeError as e:
            logger.warning("%s %s failed: %s", event.kind.value, event.handle, e.message)
            run.fail(InteractionState.FAILED, e)
            await self._notify(responder, error_message(e, self._failure_mode(run)))
        except Exception as e:
            logger.exception("Unexpected error handling %s %s", event.kind.value, event.handle)
            run.fail(InteractionState.FAILED, e)
            notice = BridgeError("Something went wrong while handling your request")
            await self._notify(responder, error_message(notice, self._failure_mode(run)))

        return run

    @staticmethod
    def _failure_mode(run: InteractionRun) -> ResponseMode:
        # A placeholder on screen must be replaced, never left behind
        if InteractionState.OPTIMISTIC_UPDATE_SHOWN in run.states:
            return ResponseMode.REPLACE
        return ResponseMode.NEW

    @staticmethod
    async def _notify(responder: Responder, body: Dict[str, Any], **kwargs: Any) -> None:
        try:
            await responder.respond(body, **kwargs)
        except Exception as e:
            logger.error("Could not deliver error notice: %s", e)

    async def _reject(self, run: InteractionRun, responder: Responder,
                      error: BridgeError, **kwargs: Any) -> None:
        logger.info("Rejected %s %s: %s", run.event.kind.value, run.event.handle, error.message)
        run.fail(InteractionState.REJECTED, error)
        await self._notify(responder, error_message(error), **kwargs)

    # ------------------------------------------------------------------------
    # Shared mutation pipeline
    # ------------------------------------------------------------------------

    async def _describe_actor(self, actor_id: str) -> Dict[str, Optional[str]]:
        """Jira account to mention, or fallback text for unlinked users."""
        mapping = await self.identities.resolve(actor_id)
        if mapping is not None:
            return {"account_id": mapping.tracker_account_id, "fallback": None}
        return {"account_id": None, "fallback": f"Slack user {actor_id} (no linked Jira account)"}

    async def _write_audit(self, run: InteractionRun, issue_key: str, action_text: str) -> None:
        """Best-effort attribution comment. Failures are logged, never raised."""
        try:
            actor = await self._describe_actor(run.event.actor_id)
            if actor["account_id"]:
                nodes = encode(f"{action_text} via Slack by", actor["account_id"])
            else:
                nodes = encode(f"{action_text} via Slack by {actor['fallback']}")
            await self.jira.add_comment(issue_key, build_document(nodes))
        except Exception as e:
            error = AuditWriteError(f"Could not write audit comment on {issue_key}",
                                    issue_key=issue_key, details=str(e))
            logger.warning("%s", error)
            return
        run.advance(InteractionState.AUDIT_WRITTEN)

    async def _render_issue(self, issue_key: str) -> List[Dict[str, Any]]:
        issue = await self.jira.get_issue(issue_key)
        transitions = await self.jira.get_transitions(issue_key)
        users = await self.jira.get_assignable_users(issue_key)
        return ui.build_issue_blocks(issue, transitions, users, self.jira.browse_url(issue_key))

    async def _run_mutation(
        self,
        run: InteractionRun,
        responder: Responder,
        issue_key: str,
        placeholder: str,
        mutate: Callable[[], Awaitable[None]],
        audit_text: Optional[str],
        response_url: Optional[str] = None,
    ) -> None:
        """
        Placeholder, mutate once, audit, refetch, re-render.

        ``response_url`` targets a message other than the one the event came
        from (modal submissions refresh the message that opened the modal).
        """
        target = {"response_url": response_url} if response_url else {}

        await responder.respond(
            message(f"Processing {issue_key}... ⏳", ui.build_placeholder_blocks(placeholder),
                    mode=ResponseMode.REPLACE),
            **target,
        )
        run.advance(InteractionState.OPTIMISTIC_UPDATE_SHOWN)

        async with self.locks.hold(issue_key):
            run.advance(InteractionState.MUTATING)
            try:
                await mutate()
            except BridgeError as e:
                logger.warning("Mutation on %s failed: %s", issue_key, e.message)
                run.fail(InteractionState.MUTATION_FAILED, e)
                await self._notify(responder, error_message(e, ResponseMode.REPLACE), **target)
                return

            if audit_text:
                await self._write_audit(run, issue_key, audit_text)

            run.advance(InteractionState.REFETCHING)
            try:
                rendered = await self._render_issue(issue_key)
            except BridgeError as e:
                logger.warning("Refetch of %s failed: %s", issue_key, e.message)
                run.fail(InteractionState.FAILED, e)
                await self._notify(responder, error_message(e, ResponseMode.REPLACE), **target)
                return

            await responder.respond(
                message(f"Updated Jira Issue: {issue_key}", rendered, mode=ResponseMode.REPLACE),
                **target,
            )
            run.advance(InteractionState.RE_RENDERED)

    # ------------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------------

    @staticmethod
    def _argument(event: InteractionEvent) -> str:
        return (event.payload.get("text") or "").strip()

    async def handle_issue_command(self, event: InteractionEvent, responder: Responder,
                                   run: InteractionRun) -> None:
        """/jira PROJ-123"""
        run.advance(InteractionState.VALIDATING)
        issue_key = self._argument(event).upper()
        if not ISSUE_KEY_RE.match(issue_key):
            await self._reject(run, responder, MalformedPayloadError(
                "Please provide a Jira issue key. Example: `/jira PROJ-123`",
                field="issue key", expected_format="PROJ-123"))
            return

        await responder.respond(message(f"Fetching details for {issue_key}... ⏳"))
        run.advance(InteractionState.FETCHING)
        rendered = await self._render_issue(issue_key)

        await responder.respond(message(f"Jira Issue: {issue_key}", rendered, Visibility.IN_CHANNEL))
        run.advance(InteractionState.RESPONDED)

    async def _project_stats(self, event: InteractionEvent, responder: Responder,
                             run: InteractionRun, command: str, loading: str):
        run.advance(InteractionState.VALIDATING)
        project_key = self._argument(event).upper()
        if not PROJECT_KEY_RE.match(project_key):
            await self._reject(run, responder, MalformedPayloadError(
                f"Please provide a Jira Project Key. Example: `{command} PROJ`",
                field="project key", expected_format="PROJ"))
            return None

        await responder.respond(message(loading.format(key=project_key)))
        run.advance(InteractionState.FETCHING)
        result = await self.jira.project_issues(project_key, self.config.search_max_results)
        return aggregate(result.issues, project_key, result.total)

    async def handle_report_command(self, event: InteractionEvent, responder: Responder,
                                    run: InteractionRun) -> None:
        """/jira-report PROJ"""
        stats = await self._project_stats(event, responder, run, "/jira-report",
                                          "Calculating statistics for project {key}... 📊⏳")
        if stats is None:
            return
        await responder.respond(message(f"Project Statistics: {stats.project_key}",
                                        ui.build_project_stats_blocks(stats), Visibility.IN_CHANNEL))
        run.advance(InteractionState.RESPONDED)

    async def handle_team_command(self, event: InteractionEvent, responder: Responder,
                                  run: InteractionRun) -> None:
        """/jira-team PROJ"""
        stats = await self._project_stats(event, responder, run, "/jira-team",
                                          "Fetching team workload for project {key}... 👥⏳")
        if stats is None:
            return
        await responder.respond(message(f"Team Workload: {stats.project_key}",
                                        ui.build_assignee_stats_blocks(stats), Visibility.IN_CHANNEL))
        run.advance(InteractionState.RESPONDED)

    async def handle_projects_command(self, event: InteractionEvent, responder: Responder,
                                      run: InteractionRun) -> None:
        """/jira-projects"""
        run.advance(InteractionState.VALIDATING)
        await responder.respond(message("Fetching your accessible Jira projects... 📂⏳"))
        run.advance(InteractionState.FETCHING)
        projects = await self.jira.get_projects()

        # Ephemeral so long lists don't clutter the channel
        await responder.respond(message("Jira Projects List", ui.build_projects_list_blocks(projects)))
        run.advance(InteractionState.RESPONDED)

    async def handle_mine_command(self, event: InteractionEvent, responder: Responder,
                                  run: InteractionRun) -> None:
        """/jira-mine: open issues assigned to the caller's linked account."""
        run.advance(InteractionState.VALIDATING)
        mapping = await self.identities.resolve(event.actor_id)
        if mapping is None:
            await responder.respond(message(
                "🔗 Your Slack account isn't linked to Jira yet. "
                "Link it with `/jira-link you@company.com`."))
            run.advance(InteractionState.RESPONDED)
            return

        await responder.respond(message("Fetching your active tasks... 🎯⏳"))
        run.advance(InteractionState.FETCHING)
        result = await self.jira.open_issues_for(mapping.tracker_account_id,
                                                 self.config.search_max_results)

        display_name = mapping.tracker_email or event.actor_id
        for issue in result.issues:
            if issue.assignee:
                display_name = issue.assignee.display_name
                break

        rendered = ui.build_user_issues_blocks(result.issues, display_name, self.jira.browse_url,
                                               self.config.search_max_results)
        await responder.respond(message(f"Active Tasks: {display_name}", rendered))
        run.advance(InteractionState.RESPONDED)

    async def handle_link_command(self, event: InteractionEvent, responder: Responder,
                                  run: InteractionRun) -> None:
        """/jira-link you@company.com"""
        run.advance(InteractionState.VALIDATING)
        email = self._argument(event)
        if not EMAIL_RE.match(email):
            await self._reject(run, responder, MalformedPayloadError(
                "Please provide your Jira email. Example: `/jira-link you@company.com`",
                field="email", expected_format="you@company.com"))
            return

        run.advance(InteractionState.FETCHING)
        user = await self.jira.find_user(email)
        if user is None:
            raise NotFoundError(f"No Jira user matches {email}", resource=email)

        await self.identities.link(event.actor_id, user.account_id, email)
        await responder.respond(message(
            f"🔗 Linked your Slack account to Jira user *{user.display_name}* ({email})."))
        run.advance(InteractionState.RESPONDED)

    async def handle_unlink_command(self, event: InteractionEvent, responder: Responder,
                                    run: InteractionRun) -> None:
        """/jira-unlink"""
        run.advance(InteractionState.VALIDATING)
        removed = await self.identities.unlink(event.actor_id)
        if removed:
            text = "🔓 Your Slack account is no longer linked to Jira."
        else:
            text = "Your Slack account wasn't linked to Jira."
        await responder.respond(message(text))
        run.advance(InteractionState.RESPONDED)

    # ------------------------------------------------------------------------
    # Control actions
    # ------------------------------------------------------------------------

    async def _parse_control(self, event: InteractionEvent, responder: Responder,
                             run: InteractionRun, *required: str) -> Optional[CorrelationPayload]:
        run.advance(InteractionState.VALIDATING)
        try:
            return CorrelationPayload.parse(event.payload.get("value"), *required)
        except MalformedPayloadError as e:
            await self._reject(run, responder, e)
            return None

    async def handle_transition_action(self, event: InteractionEvent, responder: Responder,
                                       run: InteractionRun) -> None:
        """Button ``transition_<id>``."""
        payload = await self._parse_control(event, responder, run, "transition_id")
        if payload is None:
            return

        label = event.payload.get("label") or f"transition {payload.transition_id}"
        logger.info("%s transitions %s via %s", event.actor_id, payload.issue_key, label)

        await self._run_mutation(
            run, responder, payload.issue_key,
            placeholder=f"Updating status for {payload.issue_key}...",
            mutate=lambda: self.jira.transition_issue(payload.issue_key, payload.transition_id),
            audit_text=f"Status changed ({label})",
        )

    async def handle_assign_action(self, event: InteractionEvent, responder: Responder,
                                   run: InteractionRun) -> None:
        """Select ``assign_issue``; accountId null unassigns."""
        payload = await self._parse_control(event, responder, run, "account_id")
        if payload is None:
            return

        assignee = event.payload.get("label") or payload.account_id or UNASSIGNED
        if payload.account_id is None:
            assignee = UNASSIGNED
        logger.info("%s assigns %s to %s", event.actor_id, payload.issue_key, assignee)

        await self._run_mutation(
            run, responder, payload.issue_key,
            placeholder=f"Re-assigning {payload.issue_key}...",
            mutate=lambda: self.jira.assign_issue(payload.issue_key, payload.account_id),
            audit_text=f"Assignee changed to {assignee}",
        )

    async def handle_comment_button(self, event: InteractionEvent, responder: Responder,
                                    run: InteractionRun) -> None:
        """Button ``open_comment_modal``: opens the modal, mutates nothing."""
        payload = await self._parse_control(event, responder, run)
        if payload is None:
            return
        if not event.trigger_id:
            await self._reject(run, responder, MalformedPayloadError(
                "This button can no longer open a dialog", field="trigger_id"))
            return

        modal = ui.build_comment_modal(payload.issue_key, event.payload.get("response_url"))
        await responder.open_modal(event.trigger_id, modal)
        run.advance(InteractionState.MODAL_OPENED)

    async def handle_view_link(self, event: InteractionEvent, responder: Responder,
                               run: InteractionRun) -> None:
        """The 'View in Jira' link button only needs acknowledging."""
        run.advance(InteractionState.RESPONDED)

    # ------------------------------------------------------------------------
    # Form submissions
    # ------------------------------------------------------------------------

    @classmethod
    def _form_errors(cls, event: InteractionEvent) -> Optional[Dict[str, str]]:
        """Input errors to show inside a submitted modal, keyed by block id."""
        if event.kind is EventKind.FORM_SUBMISSION and event.handle == ui.COMMENT_CALLBACK:
            if not cls._comment_text(event):
                return {ui.COMMENT_BLOCK: "Please enter a comment."}
        return None

    @staticmethod
    def _comment_text(event: InteractionEvent) -> str:
        values = event.payload.get("values") or {}
        field_state = (values.get(ui.COMMENT_BLOCK) or {}).get(ui.COMMENT_INPUT) or {}
        return (field_state.get("value") or "").strip()

    async def handle_comment_submission(self, event: InteractionEvent, responder: Responder,
                                        run: InteractionRun) -> None:
        """Modal ``comment_modal_submission``: post an attributed comment."""
        run.advance(InteractionState.VALIDATING)
        try:
            payload = CorrelationPayload.parse(event.payload.get("private_metadata"))
        except MalformedPayloadError as e:
            await self._reject(run, responder, e)
            return

        text = self._comment_text(event)
        actor = await self._describe_actor(event.actor_id)
        if actor["account_id"]:
            nodes = encode(f"{text}\n\n(posted from Slack by", actor["account_id"])
            nodes.append({"type": "text", "text": ")"})
        else:
            nodes = encode(f"{text}\n\n(posted from Slack by {actor['fallback']})")
        document = build_document(nodes)

        if payload.response_url:
            await self._run_mutation(
                run, responder, payload.issue_key,
                placeholder=f"Adding comment to {payload.issue_key}...",
                mutate=lambda: self.jira.add_comment(payload.issue_key, document),
                audit_text=None,
                response_url=payload.response_url,
            )
            return

        # No message to refresh: confirm privately instead
        run.advance(InteractionState.MUTATING)
        try:
            await self.jira.add_comment(payload.issue_key, document)
        except BridgeError as e:
            run.fail(InteractionState.MUTATION_FAILED, e)
            await self._notify(responder, error_message(e))
            return
        await responder.respond(message(f"💬 Comment added to {payload.issue_key}."))
        run.advance(InteractionState.RESPONDED)
