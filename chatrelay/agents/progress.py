"""
Translate backend stream events into short status labels.

Everything here is pure: the same event and target session always give the
same label, and nothing is remembered between calls.
"""

import math
import time
from typing import Any, Dict, Optional, Union

from ..models.events import (
    BackendEvent,
    LabelledEvent,
    MessagePartUpdatedEvent,
    SessionErrorEvent,
    SessionStatusEvent,
    SessionSummaryEvent,
    parse_event,
)

_TOOL_STATUS_PREFIX = {
    "running": "Running tool",
    "pending": "Preparing tool",
    "completed": "Finished tool",
    "error": "Tool failed",
}

_SIMPLE_PART_LABELS = {
    "reasoning": "Thinking",
    "text": "Drafting response",
    "step-start": "Starting step",
    "step-finish": "Finishing step",
    "compaction": "Compacting context",
    "snapshot": "Capturing snapshot",
    "patch": "Applying changes",
    "retry": "Retrying",
}


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def status_from_session_status(status: Optional[Dict[str, Any]], now: Optional[float] = None) -> str:
    """
    Label for a ``session.status`` payload.

    Args:
        status: The ``status`` object (``type`` busy, retry or idle)
        now: Epoch seconds used for the retry countdown

    Returns:
        "Working", "Retrying[: message][ in Ns]" or "Waiting"
    """
    if not isinstance(status, dict):
        return "Working"

    status_type = status.get("type")
    if status_type == "busy":
        return "Working"
    if status_type == "idle":
        return "Waiting"
    if status_type == "retry":
        message = _str(status.get("message"))
        base = f"Retrying: {message}" if message else "Retrying"
        next_at = status.get("next")
        if isinstance(next_at, (int, float)) and not isinstance(next_at, bool):
            now_ms = (now if now is not None else time.time()) * 1000
            seconds = max(0, math.ceil((next_at - now_ms) / 1000))
            return f"{base} in {seconds}s"
        return base
    return "Working"


def format_tool_detail(part: Dict[str, Any]) -> Optional[str]:
    """Tool-specific detail such as ``$ ls`` or ``Grep "foo" in src``."""
    tool = _str(part.get("tool"))
    state = part.get("state") if isinstance(part.get("state"), dict) else {}
    tool_input = state.get("input") if isinstance(state.get("input"), dict) else {}

    path = _str(tool_input.get("path"))
    pattern = _str(tool_input.get("pattern"))
    file_path = _str(tool_input.get("filePath"))
    command = _str(tool_input.get("command"))
    url = _str(tool_input.get("url"))

    if tool in ("glob", "grep"):
        name = tool.capitalize()
        if not pattern:
            return name
        return f'{name} "{pattern}"' + (f" in {path}" if path else "")
    if tool == "read":
        return f"Read {file_path}" if file_path else "Read"
    if tool == "list":
        return f"List {path}" if path else "List"
    if tool == "webfetch":
        return f"WebFetch {url}" if url else "WebFetch"
    if tool in ("bash", "shell", "command"):
        return f"$ {command}" if command else "Shell"
    if tool == "write":
        return f"Write {file_path}" if file_path else "Write"
    if tool == "edit":
        return f"Edit {file_path}" if file_path else "Edit"
    return None


def status_from_part(part: Dict[str, Any]) -> Optional[str]:
    """Label for a message part, or None for unknown part types."""
    part_type = _str(part.get("type"))
    if part_type is None:
        return None

    if part_type in _SIMPLE_PART_LABELS:
        return _SIMPLE_PART_LABELS[part_type]

    if part_type == "agent":
        name = _str(part.get("name"))
        return f"Switching agent: {name}" if name else "Switching agent"

    if part_type == "subtask":
        detail = _str(part.get("description")) or _str(part.get("prompt"))
        return f"Running subtask: {detail}" if detail else "Running subtask"

    if part_type == "file":
        filename = _str(part.get("filename")) or _str(part.get("url"))
        return f"Preparing file: {filename}" if filename else "Preparing file"

    if part_type == "tool":
        state = part.get("state") if isinstance(part.get("state"), dict) else {}
        tool_title = _str(state.get("title")) or _str(part.get("tool"))
        prefix = _TOOL_STATUS_PREFIX.get(_str(state.get("status")) or "", "Running tool")
        detail = format_tool_detail(part)
        if detail:
            return f"{prefix}: {detail}"
        return f"{prefix} {tool_title}" if tool_title else prefix

    return None


def status_from_event(
    event: Union[BackendEvent, Dict[str, Any]],
    session_id: str,
    now: Optional[float] = None
) -> Optional[str]:
    """
    Map one stream event to a status label for ``session_id``.

    Args:
        event: Parsed event, or the raw stream object
        session_id: Backend session being watched
        now: Epoch seconds for retry countdowns

    Returns:
        A short label, or None when the event is for another session or has
        no display meaning
    """
    if isinstance(event, dict):
        event = parse_event(event)
    if not event.type:
        return None

    if isinstance(event, SessionStatusEvent):
        if event.properties.get("sessionID") != session_id:
            return None
        return status_from_session_status(event.status, now)

    if isinstance(event, SessionErrorEvent):
        error_session = _str(event.properties.get("sessionID"))
        return "Error" if not error_session or error_session == session_id else None

    if isinstance(event, MessagePartUpdatedEvent):
        if not event.part or _str(event.part.get("sessionID")) != session_id:
            return None
        return status_from_part(event.part)

    if event.session_id and event.session_id != session_id:
        return None

    if isinstance(event, SessionSummaryEvent):
        return f"Summarizing: {event.title}" if event.title else "Summarizing session"
    if isinstance(event, LabelledEvent):
        return event.label
    return None
