"""
Jira Client

Thin async wrapper over atlassian-python-api. Each method makes one REST
call in a worker thread, parses the response into the shapes in
jira_bridge.models, and translates failures into the bridge error
taxonomy:

    404 -> NotFoundError
    401 -> UnauthorizedError
    anything else (other statuses, timeouts, connection errors) -> TransientError

The underlying ``Jira`` object can be injected, which is how tests run
without a network.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from atlassian import Jira
from atlassian.errors import ApiError, ApiNotFoundError
from requests.exceptions import HTTPError, RequestException

from jira_bridge.config import JiraConfig
from jira_bridge.exceptions import BridgeError, NotFoundError, TransientError, UnauthorizedError
from jira_bridge.logging_config import get_logger
from jira_bridge.models import Issue, Project, SearchResult, TrackerUser, Transition

logger = get_logger("jira")

ISSUE_FIELDS = "summary,status,assignee,description,project"
METRIC_FIELDS = ["status", "issuetype", "project", "assignee"]
USER_ISSUE_FIELDS = ["summary", "status", "assignee"]
SEARCH_PATH = "rest/api/3/search/jql"
MAX_ASSIGNABLE_USERS = 100


def translate_error(error: Exception, action: str, resource: Optional[str] = None) -> BridgeError:
    """Map a client exception onto the bridge taxonomy."""
    if isinstance(error, ApiNotFoundError):
        return NotFoundError(f"Could not find {resource or 'the requested item'} in Jira",
                             resource=resource, details=str(error))

    status = None
    if isinstance(error, HTTPError) and error.response is not None:
        status = error.response.status_code

    if status == 404:
        return NotFoundError(f"Could not find {resource or 'the requested item'} in Jira",
                             resource=resource, details=str(error))
    if status == 401:
        return UnauthorizedError("Jira rejected the bot credentials", details=str(error))

    return TransientError(f"Jira request failed while trying to {action}",
                          status_code=status, details=str(error))


def quote_jql(value: str) -> str:
    """Quote a value for use inside a JQL string literal."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class JiraClient:
    """Jira Cloud REST calls used by the bridge."""

    def __init__(self, config: JiraConfig, jira: Optional[Any] = None):
        """
        Args:
            config: Site and credentials
            jira: Pre-built ``atlassian.Jira`` (or a stand-in with the same
                methods). Built from ``config`` when omitted.
        """
        self.config = config
        if jira is None:
            jira = Jira(
                url=config.url,
                username=config.username,
                password=config.api_token,
                cloud=True,
                api_version="3",
                timeout=config.timeout,
            )
        self._jira = jira

    async def _call(self, action: str, func: Callable[..., Any], *args: Any,
                    resource: Optional[str] = None, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ApiError, RequestException, ValueError) as e:
            error = translate_error(e, action, resource)
            logger.warning("Jira call failed (%s): %s", action, e)
            raise error from e

    def browse_url(self, issue_key: str) -> str:
        return self.config.browse_url(issue_key)

    # -- reads ----------------------------------------------------------------

    async def get_issue(self, issue_key: str) -> Issue:
        data = await self._call("fetch the issue", self._jira.issue, issue_key,
                                fields=ISSUE_FIELDS, resource=issue_key)
        return Issue.from_api(data or {})

    async def get_transitions(self, issue_key: str) -> List[Transition]:
        data = await self._call("fetch transitions", self._jira.get_issue_transitions,
                                issue_key, resource=issue_key)
        return [Transition.from_api(t) for t in data or []]

    async def get_assignable_users(self, issue_key: str) -> List[TrackerUser]:
        data = await self._call("list assignable users", self._jira.get_assignable_users_for_issue,
                                issue_key, limit=MAX_ASSIGNABLE_USERS, resource=issue_key)
        return [TrackerUser.from_api(u) for u in data or [] if u.get("accountId")]

    async def find_user(self, query: str) -> Optional[TrackerUser]:
        """First user matching an email or name, or None."""
        data = await self._call("search users", self._jira.user_find_by_user_string,
                                query=query, start=0, limit=1, resource=query)
        users = [u for u in data or [] if u.get("accountId")]
        return TrackerUser.from_api(users[0]) if users else None

    async def get_projects(self) -> List[Project]:
        data = await self._call("list projects", self._jira.projects)
        return [Project.from_api(p) for p in data or []]

    async def search(self, jql: str, fields: Sequence[str], max_results: int = 100) -> SearchResult:
        data = await self._call(
            "search issues",
            self._jira.post,
            SEARCH_PATH,
            data={"jql": jql, "maxResults": max_results, "fields": list(fields)},
        )
        return SearchResult.from_api(data or {})

    async def project_issues(self, project_key: str, max_results: int = 100) -> SearchResult:
        """Most recently updated issues of a project, for statistics."""
        jql = f"project = {quote_jql(project_key)} ORDER BY updated DESC"
        return await self.search(jql, METRIC_FIELDS, max_results)

    async def open_issues_for(self, account_id: str, max_results: int = 100) -> SearchResult:
        """Unresolved issues assigned to an account."""
        jql = (
            f"assignee = {quote_jql(account_id)} AND statusCategory != Done "
            "ORDER BY updated DESC"
        )
        return await self.search(jql, USER_ISSUE_FIELDS, max_results)

    async def myself(self) -> TrackerUser:
        data = await self._call("verify credentials", self._jira.myself)
        return TrackerUser.from_api(data or {})

    # -- writes ---------------------------------------------------------------

    async def transition_issue(self, issue_key: str, transition_id: str) -> None:
        await self._call("change the status", self._jira.set_issue_status_by_transition_id,
                         issue_key, transition_id, resource=issue_key)

    async def assign_issue(self, issue_key: str, account_id: Optional[str]) -> None:
        """Assign to an account, or unassign with None."""
        await self._call("reassign the issue", self._jira.assign_issue,
                         issue_key, account_id, resource=issue_key)

    async def add_comment(self, issue_key: str, document: Dict[str, Any]) -> None:
        """Post an ADF comment body."""
        await self._call("add a comment", self._jira.issue_add_comment,
                         issue_key, document, resource=issue_key)
