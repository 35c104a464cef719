"""
Data shapes shared across the bridge.

Tracker responses are parsed once, at the client boundary, into these
dataclasses. Optional fields get explicit defaults here so the renderer and
the aggregator never read raw JSON.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from jira_bridge.exceptions import MalformedPayloadError

UNASSIGNED = "Unassigned"
UNKNOWN_STATUS = "Unknown"

ISSUE_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*-\d+$")


@dataclass(frozen=True)
class IdentityMapping:
    """A Slack user linked to a Jira account."""

    chat_user_id: str
    tracker_account_id: str
    tracker_email: Optional[str] = None


@dataclass(frozen=True)
class TrackerUser:
    account_id: str
    display_name: str
    email: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TrackerUser":
        return cls(
            account_id=data.get("accountId", ""),
            display_name=data.get("displayName") or data.get("accountId", ""),
            email=data.get("emailAddress"),
        )


@dataclass(frozen=True)
class Transition:
    id: str
    name: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Transition":
        return cls(id=str(data["id"]), name=data.get("name") or str(data["id"]))


@dataclass(frozen=True)
class Issue:
    """A Jira issue, reduced to what the bridge shows."""

    key: str
    summary: str
    status: str
    assignee: Optional[TrackerUser] = None
    has_description: bool = False
    project_name: Optional[str] = None

    @property
    def assignee_name(self) -> str:
        return self.assignee.display_name if self.assignee else UNASSIGNED

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Issue":
        fields = data.get("fields") or {}
        status = fields.get("status") or {}
        assignee = fields.get("assignee")
        description = fields.get("description")
        project = fields.get("project") or {}

        # v3 descriptions are ADF documents, v2 are plain strings
        if isinstance(description, dict):
            has_description = bool(description.get("content"))
        else:
            has_description = bool(description)

        return cls(
            key=data.get("key", ""),
            summary=fields.get("summary") or "No Summary",
            status=status.get("name") or UNKNOWN_STATUS,
            assignee=TrackerUser.from_api(assignee) if assignee else None,
            has_description=has_description,
            project_name=project.get("name"),
        )


@dataclass(frozen=True)
class Project:
    key: str
    name: str
    project_type: str = "unknown"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            key=data.get("key", ""),
            name=data.get("name") or data.get("key", ""),
            project_type=data.get("projectTypeKey") or "unknown",
        )


@dataclass(frozen=True)
class SearchResult:
    """Result of a JQL search.

    ``total`` is None when the endpoint does not report it (the
    token-paginated /search/jql endpoint never does).
    """

    issues: List[Issue] = field(default_factory=list)
    total: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SearchResult":
        total = data.get("total")
        return cls(
            issues=[Issue.from_api(i) for i in data.get("issues") or []],
            total=int(total) if total is not None else None,
        )


class EventKind(Enum):
    COMMAND = "command"
    CONTROL_ACTION = "control_action"
    FORM_SUBMISSION = "form_submission"


@dataclass
class InteractionEvent:
    """One inbound Slack interaction, decoded by the transport.

    ``handle`` is the command name, action_id or view callback_id;
    ``payload`` holds the command text, the control value or the view
    state, depending on ``kind``.
    """

    kind: EventKind
    actor_id: str
    handle: str
    payload: Dict[str, Any] = field(default_factory=dict)
    trigger_id: Optional[str] = None
    team_id: Optional[str] = None


@dataclass(frozen=True)
class CorrelationPayload:
    """Context carried inside a rendered control.

    Serialized as JSON with the Jira-style keys the controls have always
    used (``issueKey``, ``transitionId``, ``accountId``, ``responseUrl``).
    """

    issue_key: str
    transition_id: Optional[str] = None
    account_id: Optional[str] = None
    response_url: Optional[str] = None

    _WIRE = {
        "issue_key": "issueKey",
        "transition_id": "transitionId",
        "account_id": "accountId",
        "response_url": "responseUrl",
    }

    def to_json(self, include_account: bool = False) -> str:
        data: Dict[str, Any] = {"issueKey": self.issue_key}
        if self.transition_id is not None:
            data["transitionId"] = self.transition_id
        if include_account or self.account_id is not None:
            data["accountId"] = self.account_id
        if self.response_url is not None:
            data["responseUrl"] = self.response_url
        return json.dumps(data, separators=(",", ":"))

    @classmethod
    def parse(cls, raw: Optional[str], *required: str) -> "CorrelationPayload":
        """Parse a control value, checking the keys an action needs.

        Raises:
            MalformedPayloadError: If the value is not a JSON object with a valid
                issueKey, every required key present and well-typed ids.
        """
        if not raw:
            raise MalformedPayloadError("The control carried no data", field="value")
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedPayloadError(
                "The control data could not be read", field="value", details=str(e)
            )
        if not isinstance(data, dict):
            raise MalformedPayloadError("The control data is not an object", field="value")

        issue_key = data.get("issueKey")
        if not isinstance(issue_key, str) or not ISSUE_KEY_RE.match(issue_key.strip()):
            raise MalformedPayloadError(
                "The control does not name an issue", field="issueKey", expected_format="PROJ-123"
            )

        for name in required:
            if cls._WIRE[name] not in data:
                raise MalformedPayloadError(
                    f"The control is missing '{cls._WIRE[name]}'", field=cls._WIRE[name]
                )

        transition_id = data.get("transitionId")
        if "transition_id" in required and transition_id is None:
            raise MalformedPayloadError("The control has no transition", field="transitionId")
        if transition_id is not None and (
            isinstance(transition_id, bool) or not isinstance(transition_id, (str, int))
            or not str(transition_id).strip()
        ):
            raise MalformedPayloadError("The transition id is not valid", field="transitionId")

        for key in ("accountId", "responseUrl"):
            value = data.get(key)
            if value is not None and (not isinstance(value, str) or not value.strip()):
                raise MalformedPayloadError(f"'{key}' must be a string or null", field=key)

        return cls(
            issue_key=issue_key.strip(),
            transition_id=str(transition_id).strip() if transition_id is not None else None,
            account_id=data.get("accountId"),
            response_url=data.get("responseUrl"),
        )


class Visibility(Enum):
    EPHEMERAL = "ephemeral"
    IN_CHANNEL = "in_channel"


class ResponseMode(Enum):
    REPLACE = "replace"
    NEW = "new"


@dataclass
class Responder:
    """Callables the transport hands the dispatcher for one interaction.

    ``ack`` takes an optional body (a comment submission with no text
    answers with ``response_action: errors``); ``respond`` takes a Slack
    message body and an optional response_url overriding the one the event
    arrived with; ``open_modal`` takes a trigger id and a view.
    """

    ack: Callable[..., Any]
    respond: Callable[..., Any]
    open_modal: Callable[[str, Dict[str, Any]], Any]
