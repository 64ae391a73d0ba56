"""Slack receiver integration tests."""

import hashlib
import hmac
import json
import time
from urllib.parse import urlencode

from httpx import AsyncClient

from chatrelay.api.slack_events import parse_message_event, verify_slack_signature
from chatrelay.services.commands import HELP_TEXT
from tests.fakes import CHANNEL, THREAD, wait_until

SECRET = "8f742231b10e8888abcd99yyyzzz85a5"


def sign(body: bytes, timestamp: str, secret: str = SECRET) -> str:
    base = b"v0:" + timestamp.encode() + b":" + body
    return "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()


def event_body(event):
    return json.dumps({"type": "event_callback", "event": event}).encode()


def form_headers():
    return {"content-type": "application/x-www-form-urlencoded"}


class TestVerifySignature:
    """SUT: verify_slack_signature"""

    def test_valid(self):
        """A correct signature inside the window passes."""
        body = b"payload=1"
        assert verify_slack_signature(SECRET, "1000", sign(body, "1000"), body, now=1100)

    def test_wrong_secret(self):
        """Signatures made with another secret fail."""
        body = b"payload=1"
        assert not verify_slack_signature(SECRET, "1000", sign(body, "1000", "other"), body, now=1000)

    def test_replay_window(self):
        """Requests older than five minutes fail."""
        body = b"payload=1"
        assert not verify_slack_signature(SECRET, "1000", sign(body, "1000"), body, now=1000 + 301)

    def test_missing_headers(self):
        """Missing or malformed headers fail."""
        assert not verify_slack_signature(SECRET, None, "v0=x", b"")
        assert not verify_slack_signature(SECRET, "abc", "v0=x", b"")


class TestParseMessageEvent:
    """SUT: parse_message_event"""

    def test_thread_reply(self):
        """Replies keep their thread id."""
        message = parse_message_event({
            "type": "message", "channel": CHANNEL, "user": "UALICE", "text": "hi",
            "ts": "1700000001.000200", "thread_ts": THREAD,
        })
        assert message.thread_id == THREAD
        assert message.message_id == "1700000001.000200"
        assert not message.is_mention_event

    def test_top_level_mention(self):
        """A top-level mention starts a thread at its own ts."""
        message = parse_message_event({
            "type": "app_mention", "channel": CHANNEL, "user": "UALICE", "text": "<@UBOT> hi", "ts": THREAD,
        })
        assert message.thread_id == THREAD
        assert message.is_mention_event

    def test_ignored_events(self):
        """Edits, bot echoes and textless events are dropped."""
        assert parse_message_event({"type": "message", "subtype": "message_changed", "channel": CHANNEL}) is None
        assert parse_message_event({"type": "message", "channel": CHANNEL, "ts": "1", "bot_id": "B1"}) is None
        assert parse_message_event({"type": "reaction_added"}) is None


class TestSlackEventsRoute:
    """Tests for POST /slack/events."""

    async def test_url_verification(self, client: AsyncClient):
        """The challenge is echoed back."""
        response = await client.post("/slack/events", json={"type": "url_verification", "challenge": "abc"})
        assert response.status_code == 200
        assert response.json() == {"challenge": "abc"}

    async def test_mention_runs_request(self, client: AsyncClient, orchestrator, gateway, backend):
        """A mention is answered in its thread."""
        body = event_body({
            "type": "app_mention", "channel": CHANNEL, "user": "UALICE", "text": "<@UBOT> hello", "ts": THREAD,
        })
        response = await client.post("/slack/events", content=body, headers={"content-type": "application/json"})
        assert response.json() == {"ok": True}

        await wait_until(lambda: len(backend.prompts) == 1)
        await orchestrator.wait_idle()
        assert "hello" in backend.prompt_text(0)
        assert gateway.texts()[-1] == "done"

    async def test_signature_enforced(self, client: AsyncClient, orchestrator):
        """With a signing secret, unsigned requests are rejected."""
        orchestrator.settings.slack_signing_secret = SECRET
        body = json.dumps({"type": "url_verification", "challenge": "abc"}).encode()

        response = await client.post("/slack/events", content=body)
        assert response.status_code == 401

        timestamp = str(int(time.time()))
        response = await client.post("/slack/events", content=body, headers={
            "x-slack-request-timestamp": timestamp,
            "x-slack-signature": sign(body, timestamp),
        })
        assert response.status_code == 200
        assert response.json() == {"challenge": "abc"}

    async def test_invalid_json(self, client: AsyncClient):
        """Unparseable bodies are rejected."""
        response = await client.post("/slack/events", content=b"{nope")
        assert response.status_code == 400


class TestSlackInteractiveRoute:
    """Tests for POST /slack/interactive."""

    def _click(self, value="postgres", action_id="user_choice_0"):
        payload = {
            "type": "block_actions",
            "user": {"id": "UALICE"},
            "channel": {"id": CHANNEL},
            "message": {"ts": "1700000002.000300", "thread_ts": THREAD, "text": "Which DB?"},
            "actions": [{"action_id": action_id, "value": value}],
        }
        return urlencode({"payload": json.dumps(payload)})

    async def test_click_clears_buttons_and_echoes(self, client: AsyncClient, gateway):
        """The question loses its buttons and the choice is posted."""
        response = await client.post("/slack/interactive", content=self._click(), headers=form_headers())
        assert response.status_code == 200
        assert response.json() == {}

        await wait_until(lambda: gateway.posted)
        assert gateway.cleared == [{"channel_id": CHANNEL, "message_id": "1700000002.000300", "text": "Which DB?"}]
        assert gateway.posted[0]["text"] == "postgres"
        assert gateway.posted[0]["thread_id"] == THREAD

    async def test_click_is_sent_to_session(self, client: AsyncClient, settings_store, backend):
        """With a thread session, the choice is sent to the agent."""
        settings_store.set_thread_session(CHANNEL, THREAD, "ses_9")
        await client.post("/slack/interactive", content=self._click(), headers=form_headers())
        await wait_until(lambda: backend.prompts)
        assert backend.prompt_text(0) == "User selected: postgres"

    async def test_other_actions_ignored(self, client: AsyncClient, gateway):
        """Only question buttons are handled."""
        await client.post("/slack/interactive", content=self._click(action_id="approve"), headers=form_headers())
        assert gateway.cleared == []
        assert gateway.posted == []

    async def test_missing_payload(self, client: AsyncClient):
        """A form without payload is rejected."""
        response = await client.post("/slack/interactive", content="x=1", headers=form_headers())
        assert response.status_code == 400


class TestSlackCommandsRoute:
    """Tests for POST /slack/commands."""

    async def test_help(self, client: AsyncClient):
        """The reply is ephemeral."""
        body = urlencode({"command": "/ode", "text": "help", "channel_id": CHANNEL})
        response = await client.post("/slack/commands", content=body, headers=form_headers())
        assert response.json() == {"response_type": "ephemeral", "text": HELP_TEXT}

    async def test_unsupported_command(self, client: AsyncClient):
        """Other commands are refused."""
        body = urlencode({"command": "/other", "channel_id": CHANNEL})
        response = await client.post("/slack/commands", content=body, headers=form_headers())
        assert response.json()["text"] == "Unsupported command: /other"
