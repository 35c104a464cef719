"""
Health Checks

Connectivity and setup checks behind ``jira-bridge doctor``. Each check
returns (passed, message) and never raises.
"""

import asyncio
from pathlib import Path
from typing import Callable, List, Tuple

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from jira_bridge.config import BridgeConfig
from jira_bridge.exceptions import BridgeError
from jira_bridge.identity import IdentityStore
from jira_bridge.jira_client import JiraClient

CheckResult = Tuple[bool, str]


def check_jira(config: BridgeConfig, client: JiraClient = None) -> CheckResult:
    """Verify the Jira credentials with the myself endpoint."""
    client = client or JiraClient(config.jira)
    try:
        user = asyncio.run(client.myself())
    except BridgeError as e:
        return False, e.actor_message
    return True, f"Jira authenticated as {user.display_name or user.account_id}"


def check_slack_bot(config: BridgeConfig, client: WebClient = None) -> CheckResult:
    """Verify the bot token with auth.test."""
    if not config.slack.bot_token:
        return False, "SLACK_BOT_TOKEN is not set"

    client = client or WebClient(token=config.slack.bot_token)
    try:
        auth = client.auth_test()
    except SlackApiError as e:
        error = e.response.get("error", "unknown error")
        if error == "invalid_auth":
            return False, "Invalid bot token"
        if error == "token_revoked":
            return False, "Bot token has been revoked"
        return False, f"Slack error: {error}"
    return True, f"Slack authenticated as @{auth.get('user', 'bot')} in {auth.get('team', 'workspace')}"


def check_slack_app_token(config: BridgeConfig) -> CheckResult:
    token = config.slack.app_token
    if not token:
        return False, "SLACK_APP_TOKEN is not set (needed for Socket Mode)"
    if not token.startswith("xapp-"):
        return False, "SLACK_APP_TOKEN should be an app-level token (xapp-...)"
    return True, "App-level token present"


def check_database(config: BridgeConfig) -> CheckResult:
    """Open the identity store and count mappings."""
    path = config.store.database_path
    if str(path) != ":memory:" and not Path(path).parent.exists():
        return False, f"Directory does not exist: {Path(path).parent}"
    try:
        store = IdentityStore(path)
        count = len(store.all())
        store.close()
    except Exception as e:
        return False, f"Could not open {path}: {e}"
    return True, f"{count} linked user(s) in {path}"


def run_checks(config: BridgeConfig) -> List[Tuple[str, CheckResult]]:
    checks: List[Tuple[str, Callable[[], CheckResult]]] = [
        ("Jira", lambda: check_jira(config)),
        ("Slack bot", lambda: check_slack_bot(config)),
        ("Slack app token", lambda: check_slack_app_token(config)),
        ("Identity store", lambda: check_database(config)),
    ]
    return [(name, check()) for name, check in checks]
