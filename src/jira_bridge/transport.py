"""
Slack Transport

Socket Mode connection to Slack. Decodes each envelope into an
InteractionEvent plus the Responder callables the dispatcher answers
through, and runs every interaction as its own task so a slow Jira call
never holds up the next envelope.

Envelope types handled:
    slash_commands   -> EventKind.COMMAND
    interactive      -> block_actions (CONTROL_ACTION), view_submission (FORM_SUBMISSION)
    events_api       -> "hello" messages get a greeting; everything else is acked
"""

import asyncio
import re
from typing import Any, Dict, Optional, Set

from slack_sdk.errors import SlackApiError
from slack_sdk.socket_mode.aiohttp import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.webhook.async_client import AsyncWebhookClient

from jira_bridge.config import SlackConfig
from jira_bridge.dispatcher import InteractionDispatcher
from jira_bridge.exceptions import ConfigError, TransientError
from jira_bridge.logging_config import get_logger
from jira_bridge.models import EventKind, InteractionEvent, Responder

logger = get_logger("transport")

HELLO_RE = re.compile(r"\bhello\b", re.IGNORECASE)


def decode_command(payload: Dict[str, Any]) -> InteractionEvent:
    return InteractionEvent(
        kind=EventKind.COMMAND,
        actor_id=payload.get("user_id", ""),
        handle=payload.get("command", ""),
        payload={
            "text": payload.get("text", ""),
            "channel_id": payload.get("channel_id"),
            "response_url": payload.get("response_url"),
        },
        trigger_id=payload.get("trigger_id"),
        team_id=payload.get("team_id"),
    )


def decode_block_action(payload: Dict[str, Any]) -> Optional[InteractionEvent]:
    """First action of a block_actions payload, or None if there is none."""
    actions = payload.get("actions") or []
    if not actions:
        return None
    action = actions[0]

    # Buttons carry value/text; static selects carry selected_option
    selected = action.get("selected_option") or {}
    value = action.get("value", selected.get("value"))
    label = (action.get("text") or selected.get("text") or {}).get("text")

    return InteractionEvent(
        kind=EventKind.CONTROL_ACTION,
        actor_id=(payload.get("user") or {}).get("id", ""),
        handle=action.get("action_id", ""),
        payload={
            "value": value,
            "label": label,
            "response_url": payload.get("response_url"),
            "channel_id": (payload.get("channel") or {}).get("id"),
        },
        trigger_id=payload.get("trigger_id"),
        team_id=(payload.get("team") or {}).get("id"),
    )


def decode_view_submission(payload: Dict[str, Any]) -> InteractionEvent:
    view = payload.get("view") or {}
    return InteractionEvent(
        kind=EventKind.FORM_SUBMISSION,
        actor_id=(payload.get("user") or {}).get("id", ""),
        handle=view.get("callback_id", ""),
        payload={
            "private_metadata": view.get("private_metadata"),
            "values": (view.get("state") or {}).get("values") or {},
        },
        trigger_id=payload.get("trigger_id"),
        team_id=(payload.get("team") or {}).get("id"),
    )


def decode(request: SocketModeRequest) -> Optional[InteractionEvent]:
    """Map a Socket Mode request onto an interaction, or None if it is not one."""
    payload = request.payload or {}
    if request.type == "slash_commands":
        return decode_command(payload)
    if request.type == "interactive":
        if payload.get("type") == "block_actions":
            return decode_block_action(payload)
        if payload.get("type") == "view_submission":
            return decode_view_submission(payload)
    return None


class SlackTransport:
    """
    Runs the bridge over a Socket Mode connection.

    Usage:
        transport = SlackTransport(config.slack, dispatcher)
        await transport.start()
    """

    def __init__(
        self,
        config: SlackConfig,
        dispatcher: InteractionDispatcher,
        web_client: Optional[AsyncWebClient] = None,
        socket_client: Optional[SocketModeClient] = None,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.web_client = web_client or AsyncWebClient(token=config.bot_token)
        self._socket_client = socket_client
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._stopped: Optional[asyncio.Event] = None

    @property
    def socket_client(self) -> SocketModeClient:
        if self._socket_client is None:
            if not self.config.app_token:
                raise ConfigError(
                    "Socket Mode needs an app-level token",
                    config_key="SLACK_APP_TOKEN",
                    remediation="Create an app token with connections:write and set SLACK_APP_TOKEN",
                )
            self._socket_client = SocketModeClient(
                app_token=self.config.app_token,
                web_client=self.web_client,
            )
        return self._socket_client

    async def start(self) -> None:
        """Connect and serve until stop() is called."""
        client = self.socket_client
        self._stopped = asyncio.Event()
        client.socket_mode_request_listeners.append(self.handle_request)
        await client.connect()
        logger.info("Connected to Slack over Socket Mode")
        await self._stopped.wait()

    async def stop(self) -> None:
        if self._stopped is not None:
            self._stopped.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._socket_client is not None:
            await self._socket_client.disconnect()
            await self._socket_client.close()
        logger.info("Disconnected from Slack")

    async def handle_request(self, client: SocketModeClient, request: SocketModeRequest) -> None:
        """Socket Mode listener: one call per envelope."""
        event = decode(request)

        if event is None:
            await self._send_ack(client, request.envelope_id)
            if request.type == "events_api":
                await self.handle_event(request.payload or {})
            return

        responder = self.build_responder(client, request.envelope_id, event)
        task = asyncio.create_task(self.dispatcher.dispatch(event, responder))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_event(self, payload: Dict[str, Any]) -> None:
        """Events API callbacks. Only plain "hello" messages are answered."""
        event = payload.get("event") or {}
        if event.get("type") != "message" or event.get("bot_id") or event.get("subtype"):
            return
        if not HELLO_RE.search(event.get("text") or ""):
            return

        try:
            await self.web_client.chat_postMessage(
                channel=event.get("channel"),
                text=f"Hey there <@{event.get('user')}>!",
            )
        except SlackApiError as e:
            logger.warning("Could not post greeting: %s", e.response.get("error"))

    async def _send_ack(self, client: SocketModeClient, envelope_id: str,
                        payload: Optional[Dict[str, Any]] = None) -> None:
        await client.send_socket_mode_response(
            SocketModeResponse(envelope_id=envelope_id, payload=payload)
        )

    def build_responder(self, client: SocketModeClient, envelope_id: str,
                        event: InteractionEvent) -> Responder:
        """Callables bound to one envelope."""
        acked = False
        default_url = event.payload.get("response_url")

        async def ack(body: Optional[Dict[str, Any]] = None) -> None:
            nonlocal acked
            if acked:
                return
            await self._send_ack(client, envelope_id, body)
            acked = True

        async def respond(body: Dict[str, Any], response_url: Optional[str] = None) -> None:
            url = response_url or default_url
            if url:
                await self.post_to_response_url(url, body)
            else:
                # Nothing to reply to (view submissions): message the actor directly
                await self.post_to_actor(event.actor_id, body)

        async def open_modal(trigger_id: str, view: Dict[str, Any]) -> None:
            try:
                await self.web_client.views_open(trigger_id=trigger_id, view=view)
            except SlackApiError as e:
                raise TransientError("Could not open the dialog",
                                     details=str(e.response.get("error")))

        return Responder(ack=ack, respond=respond, open_modal=open_modal)

    async def post_to_response_url(self, url: str, body: Dict[str, Any]) -> None:
        response = await AsyncWebhookClient(url).send_dict(body)
        if response.status_code != 200:
            raise TransientError("Slack rejected the reply", status_code=response.status_code,
                                 details=response.body)

    async def post_to_actor(self, user_id: str, body: Dict[str, Any]) -> None:
        try:
            await self.web_client.chat_postMessage(
                channel=user_id,
                text=body.get("text", ""),
                blocks=body.get("blocks"),
            )
        except SlackApiError as e:
            raise TransientError("Could not message the user", details=str(e.response.get("error")))
