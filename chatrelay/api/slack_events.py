"""Slack Events API, interactivity and slash command receivers."""

import hashlib
import hmac
import json
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import JSONResponse

from ..models.chat import ButtonSelection, InboundMessage
from ..services.commands import handle_ode_command
from ..services.orchestrator import RequestOrchestrator
from ..utils.logger import get_app_logger

router = APIRouter(prefix="/slack", tags=["slack"])

# Global orchestrator instance (will be set by main.py)
orchestrator: RequestOrchestrator = None

SIGNATURE_MAX_AGE_SECONDS = 60 * 5
USER_CHOICE_ACTION = re.compile(r"^user_choice_\d+$")


def get_orchestrator() -> RequestOrchestrator:
    """Get the orchestrator instance."""
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Orchestrator not initialized")
    return orchestrator


def verify_slack_signature(
    signing_secret: str,
    timestamp: Optional[str],
    signature: Optional[str],
    body: bytes,
    now: Optional[float] = None
) -> bool:
    """
    Check a request signature (``v0=`` HMAC-SHA256 of ``v0:<timestamp>:<body>``).

    Requests older than five minutes are rejected to prevent replays.
    """
    if not timestamp or not signature:
        return False
    try:
        request_time = int(timestamp)
    except ValueError:
        return False

    now = now if now is not None else time.time()
    if abs(now - request_time) > SIGNATURE_MAX_AGE_SECONDS:
        return False

    base = b"v0:" + timestamp.encode() + b":" + body
    expected = "v0=" + hmac.new(signing_secret.encode(), base, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


async def _read_verified_body(request: Request, manager: RequestOrchestrator) -> bytes:
    body = await request.body()
    secret = manager.settings.slack_signing_secret
    if secret and not verify_slack_signature(
        secret,
        request.headers.get("x-slack-request-timestamp"),
        request.headers.get("x-slack-signature"),
        body,
    ):
        raise HTTPException(status_code=401, detail="Invalid signature")
    return body


def parse_message_event(event: Dict[str, Any]) -> Optional[InboundMessage]:
    """
    Normalize a ``message`` or ``app_mention`` event.

    Returns:
        The inbound message, or None for edits, deletes, bot echoes and
        events without a user or text
    """
    event_type = event.get("type")
    if event_type not in ("message", "app_mention"):
        return None
    if event_type == "message" and event.get("subtype") is not None:
        return None

    text = event.get("text")
    user_id = event.get("user")
    channel_id = event.get("channel")
    message_id = event.get("ts")
    if not text or not user_id or not channel_id or not message_id:
        return None

    return InboundMessage(
        channel_id=channel_id,
        thread_id=event.get("thread_ts") or message_id,
        user_id=user_id,
        message_id=message_id,
        text=text,
        is_mention_event=event_type == "app_mention",
    )


@router.post("/events")
async def slack_events(request: Request, background_tasks: BackgroundTasks):
    """
    Receive Events API callbacks.

    Answers URL verification challenges and hands message events to the
    orchestrator after the response is sent.
    """
    manager = get_orchestrator()
    body = await _read_verified_body(request, manager)
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    if payload.get("type") == "event_callback":
        message = parse_message_event(payload.get("event") or {})
        if message is not None:
            background_tasks.add_task(manager.handle_inbound_message, message)

    return {"ok": True}


async def _process_choice(manager: RequestOrchestrator, payload: Dict[str, Any], value: str) -> None:
    gateway = manager.gateway
    channel_id = (payload.get("channel") or {}).get("id")
    message = payload.get("message") or {}
    message_id = message.get("ts")
    thread_id = message.get("thread_ts") or message_id
    user_id = (payload.get("user") or {}).get("id") or "unknown"
    if not channel_id or not thread_id:
        return

    logger = get_app_logger()
    try:
        # Keep the question text, drop the buttons
        if message_id:
            await gateway.clear_message_buttons(channel_id, message_id, message.get("text") or "Question")

        # Echo the choice so the thread shows what was picked
        selection_id = await gateway.post_message(channel_id, thread_id, value)
    except Exception as e:
        logger.error(f"[Slack] Failed to record button selection in {channel_id}/{thread_id}: {e}")
        return

    if selection_id:
        await manager.handle_button_selection(ButtonSelection(
            channel_id=channel_id,
            thread_id=thread_id,
            user_id=user_id,
            message_id=selection_id,
            selected_value=value,
        ))


@router.post("/interactive")
async def slack_interactive(request: Request, background_tasks: BackgroundTasks):
    """Receive interactive component callbacks (question button clicks)."""
    manager = get_orchestrator()
    body = await _read_verified_body(request, manager)

    raw_payload = parse_qs(body.decode("utf-8")).get("payload", [None])[0]
    if not raw_payload:
        raise HTTPException(status_code=400, detail="Missing payload")
    try:
        payload = json.loads(raw_payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    actions = payload.get("actions") or []
    action = actions[0] if actions else {}
    value = action.get("value")
    if payload.get("type") == "block_actions" and value and USER_CHOICE_ACTION.match(action.get("action_id") or ""):
        background_tasks.add_task(_process_choice, manager, payload, value)

    return JSONResponse(content={})


@router.post("/commands")
async def slack_commands(request: Request):
    """Answer the ``/ode`` slash command with ephemeral text."""
    manager = get_orchestrator()
    body = await _read_verified_body(request, manager)
    form = {key: values[0] for key, values in parse_qs(body.decode("utf-8")).items()}

    command = form.get("command", "/ode")
    channel_id = form.get("channel_id")
    if command != "/ode" or not channel_id:
        return {"response_type": "ephemeral", "text": f"Unsupported command: {command}"}

    text = await handle_ode_command(manager, channel_id, form.get("text", ""))
    return {"response_type": "ephemeral", "text": text}
