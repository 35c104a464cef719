"""Tests for the Slack Socket Mode transport."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from slack_sdk.socket_mode.request import SocketModeRequest


def _request(type_, payload, envelope_id="env-1"):
    return SocketModeRequest(type=type_, envelope_id=envelope_id, payload=payload)


@pytest.fixture
def transport():
    from jira_bridge.config import SlackConfig
    from jira_bridge.transport import SlackTransport

    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock()
    return SlackTransport(SlackConfig("xoxb-1", "xapp-1"), dispatcher, web_client=AsyncMock())


@pytest.fixture
def socket_client():
    client = MagicMock()
    client.send_socket_mode_response = AsyncMock()
    return client


class TestDecode:
    """Test envelope decoding."""

    def test_slash_command(self):
        """Test slash commands decode to COMMAND events."""
        from jira_bridge.models import EventKind
        from jira_bridge.transport import decode

        event = decode(_request("slash_commands", {
            "command": "/jira", "text": "PROJ-1", "user_id": "U1",
            "trigger_id": "t1", "team_id": "T1", "response_url": "https://hooks/1",
        }))

        assert event.kind is EventKind.COMMAND
        assert event.handle == "/jira"
        assert event.actor_id == "U1"
        assert event.payload["text"] == "PROJ-1"
        assert event.payload["response_url"] == "https://hooks/1"

    def test_button_action(self):
        """Test a button decodes with its value and label."""
        from jira_bridge.models import EventKind
        from jira_bridge.transport import decode

        value = json.dumps({"issueKey": "PROJ-1", "transitionId": "31"})
        event = decode(_request("interactive", {
            "type": "block_actions",
            "user": {"id": "U1"},
            "team": {"id": "T1"},
            "trigger_id": "t1",
            "response_url": "https://hooks/2",
            "actions": [{"action_id": "transition_31", "value": value,
                         "text": {"type": "plain_text", "text": "Done"}}],
        }))

        assert event.kind is EventKind.CONTROL_ACTION
        assert event.handle == "transition_31"
        assert event.payload["value"] == value
        assert event.payload["label"] == "Done"

    def test_select_action(self):
        """Test a static select decodes its selected option."""
        from jira_bridge.transport import decode

        event = decode(_request("interactive", {
            "type": "block_actions",
            "user": {"id": "U1"},
            "actions": [{
                "action_id": "assign_issue",
                "selected_option": {"value": "{}", "text": {"type": "plain_text", "text": "Ana"}},
            }],
        }))

        assert event.payload["value"] == "{}"
        assert event.payload["label"] == "Ana"

    def test_view_submission(self):
        """Test modal submissions decode metadata and state."""
        from jira_bridge.models import EventKind
        from jira_bridge.transport import decode

        values = {"comment_block": {"comment_input": {"value": "hi"}}}
        event = decode(_request("interactive", {
            "type": "view_submission",
            "user": {"id": "U1"},
            "view": {"callback_id": "comment_modal_submission",
                     "private_metadata": '{"issueKey":"PROJ-1"}',
                     "state": {"values": values}},
        }))

        assert event.kind is EventKind.FORM_SUBMISSION
        assert event.handle == "comment_modal_submission"
        assert event.payload["values"] == values

    def test_unknown_envelopes(self):
        """Test non-interaction envelopes decode to None."""
        from jira_bridge.transport import decode

        assert decode(_request("events_api", {"event": {}})) is None
        assert decode(_request("interactive", {"type": "block_actions", "actions": []})) is None
        assert decode(_request("interactive", {"type": "view_closed"})) is None


class TestSlackTransport:
    """Test request handling."""

    @pytest.mark.asyncio
    async def test_interaction_dispatched_as_task(self, transport, socket_client):
        """Test an interaction is handed to the dispatcher."""
        request = _request("slash_commands", {"command": "/jira-projects", "user_id": "U1"})

        await transport.handle_request(socket_client, request)
        await transport.stop()

        transport.dispatcher.dispatch.assert_awaited_once()
        event, responder = transport.dispatcher.dispatch.call_args[0]
        assert event.handle == "/jira-projects"
        socket_client.send_socket_mode_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_events_acked_and_greeted(self, transport, socket_client):
        """Test a hello message is acked and answered."""
        request = _request("events_api", {
            "event": {"type": "message", "text": "hello bot", "user": "U1", "channel": "C1"}
        })

        await transport.handle_request(socket_client, request)

        socket_client.send_socket_mode_response.assert_awaited_once()
        transport.web_client.chat_postMessage.assert_awaited_once_with(
            channel="C1", text="Hey there <@U1>!")

    @pytest.mark.asyncio
    async def test_bot_messages_ignored(self, transport, socket_client):
        """Test bot messages get no greeting."""
        request = _request("events_api", {
            "event": {"type": "message", "text": "hello", "bot_id": "B1", "channel": "C1"}
        })

        await transport.handle_request(socket_client, request)

        transport.web_client.chat_postMessage.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ack_sent_once(self, transport, socket_client):
        """Test repeated acks send a single response."""
        from jira_bridge.models import EventKind, InteractionEvent

        event = InteractionEvent(EventKind.COMMAND, "U1", "/jira")
        responder = transport.build_responder(socket_client, "env-1", event)

        await responder.ack()
        await responder.ack()

        socket_client.send_socket_mode_response.assert_awaited_once()
        response = socket_client.send_socket_mode_response.call_args[0][0]
        assert response.envelope_id == "env-1"

    @pytest.mark.asyncio
    async def test_ack_carries_form_errors(self, transport, socket_client):
        """Test a view submission ack can carry input errors."""
        from jira_bridge.models import EventKind, InteractionEvent

        event = InteractionEvent(EventKind.FORM_SUBMISSION, "U1", "comment_modal_submission")
        responder = transport.build_responder(socket_client, "env-2", event)
        body = {"response_action": "errors", "errors": {"comment_block": "Please enter a comment."}}

        await responder.ack(body)

        response = socket_client.send_socket_mode_response.call_args[0][0]
        assert response.payload == body

    @pytest.mark.asyncio
    async def test_respond_uses_response_url(self, transport, socket_client):
        """Test replies go to the event's response URL."""
        from jira_bridge.models import EventKind, InteractionEvent

        transport.post_to_response_url = AsyncMock()
        event = InteractionEvent(EventKind.COMMAND, "U1", "/jira",
                                 payload={"response_url": "https://hooks/1"})
        responder = transport.build_responder(socket_client, "env-1", event)

        await responder.respond({"text": "hi"})
        await responder.respond({"text": "there"}, response_url="https://hooks/2")

        urls = [c.args[0] for c in transport.post_to_response_url.call_args_list]
        assert urls == ["https://hooks/1", "https://hooks/2"]

    @pytest.mark.asyncio
    async def test_respond_without_url_messages_actor(self, transport, socket_client):
        """Test replies with no response URL are sent to the actor directly."""
        from jira_bridge.models import EventKind, InteractionEvent

        event = InteractionEvent(EventKind.FORM_SUBMISSION, "U1", "comment_modal_submission")
        responder = transport.build_responder(socket_client, "env-1", event)

        await responder.respond({"text": "Comment added"})

        transport.web_client.chat_postMessage.assert_awaited_once_with(
            channel="U1", text="Comment added", blocks=None)

    @pytest.mark.asyncio
    async def test_open_modal(self, transport, socket_client):
        """Test modals open through views.open."""
        from jira_bridge.models import EventKind, InteractionEvent

        event = InteractionEvent(EventKind.CONTROL_ACTION, "U1", "open_comment_modal")
        responder = transport.build_responder(socket_client, "env-1", event)

        await responder.open_modal("trig-1", {"type": "modal"})

        transport.web_client.views_open.assert_awaited_once_with(
            trigger_id="trig-1", view={"type": "modal"})

    def test_socket_client_requires_app_token(self):
        """Test Socket Mode without an app token is a config error."""
        from jira_bridge.config import SlackConfig
        from jira_bridge.exceptions import ConfigError
        from jira_bridge.transport import SlackTransport

        transport = SlackTransport(SlackConfig("xoxb-1"), MagicMock(), web_client=AsyncMock())
        with pytest.raises(ConfigError):
            transport.socket_client
