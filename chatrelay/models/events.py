"""
Typed events from the agent backend's live event stream.

The backend's global stream wraps each event as
``{"directory": ..., "payload": {"type": ..., "properties": {...}}}``;
older endpoints send the payload bare. ``parse_event`` accepts both and
returns one concrete event class per ``type``, or ``UnknownEvent``.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


LABELLED_EVENT_TYPES = {
    "command.executed": "Command executed",
    "session.updated": "Updating session",
    "message.updated": "Updating message",
    "question": "Asking question",
    "question.asked": "Awaiting response",
    "scheduler.run": "Running maintenance",
    "snapshot.cleanup": "Running maintenance",
}


class BackendEvent(BaseModel):
    """Base class of all stream events."""

    type: str = Field(description="Event type discriminator")
    session_id: Optional[str] = Field(None, description="Backend session the event belongs to")
    directory: Optional[str] = Field(None, description="Project directory from the envelope")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Raw event properties")


class MessagePartUpdatedEvent(BackendEvent):
    part: Optional[Dict[str, Any]] = None

    @property
    def part_type(self) -> Optional[str]:
        if not self.part:
            return None
        value = self.part.get("type")
        return value if isinstance(value, str) else None


class TodoUpdatedEvent(BackendEvent):
    todos: List[Dict[str, Any]] = Field(default_factory=list)


class SessionStatusEvent(BackendEvent):
    status: Optional[Dict[str, Any]] = None


class SessionErrorEvent(BackendEvent):
    error: Any = None


class PermissionAskedEvent(BackendEvent):
    request_id: Optional[str] = None


class SessionSummaryEvent(BackendEvent):
    title: Optional[str] = None


class LabelledEvent(BackendEvent):
    """Events whose display label depends only on their type."""

    @property
    def label(self) -> str:
        return LABELLED_EVENT_TYPES[self.type]


class UnknownEvent(BackendEvent):
    pass


def _string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _build_part_updated(base: Dict[str, Any], properties: Dict[str, Any]) -> BackendEvent:
    part = properties.get("part")
    if not isinstance(part, dict):
        part = None
    return MessagePartUpdatedEvent(**base, part=part)


def _build_todo_updated(base: Dict[str, Any], properties: Dict[str, Any]) -> BackendEvent:
    todos = properties.get("todos")
    items = [t for t in todos if isinstance(t, dict)] if isinstance(todos, list) else []
    return TodoUpdatedEvent(**base, todos=items)


def _build_session_status(base: Dict[str, Any], properties: Dict[str, Any]) -> BackendEvent:
    status = properties.get("status")
    return SessionStatusEvent(**base, status=status if isinstance(status, dict) else None)


def _build_session_error(base: Dict[str, Any], properties: Dict[str, Any]) -> BackendEvent:
    return SessionErrorEvent(**base, error=properties.get("error"))


def _build_permission_asked(base: Dict[str, Any], properties: Dict[str, Any]) -> BackendEvent:
    return PermissionAskedEvent(**base, request_id=_string(properties.get("id")))


def _build_session_summary(base: Dict[str, Any], properties: Dict[str, Any]) -> BackendEvent:
    return SessionSummaryEvent(**base, title=_string(properties.get("title")))


_BUILDERS = {
    "message.part.updated": _build_part_updated,
    "todo.updated": _build_todo_updated,
    "session.status": _build_session_status,
    "session.error": _build_session_error,
    "permission.asked": _build_permission_asked,
    "session.summary": _build_session_summary,
}


def embedded_session_id(properties: Dict[str, Any]) -> Optional[str]:
    """Session id carried by an event, looking inside ``part`` when needed."""
    session_id = _string(properties.get("sessionID")) or _string(properties.get("sessionId"))
    if session_id:
        return session_id
    part = properties.get("part")
    if isinstance(part, dict):
        return _string(part.get("sessionID"))
    return None


def parse_event(raw: Dict[str, Any]) -> BackendEvent:
    """
    Convert a raw stream item into a typed event.

    Args:
        raw: Decoded JSON object from the event stream

    Returns:
        Concrete ``BackendEvent`` subclass; ``UnknownEvent`` for unrecognised types
    """
    payload = raw.get("payload") if isinstance(raw.get("payload"), dict) else raw
    event_type = _string(payload.get("type")) or ""
    properties = payload.get("properties")
    if not isinstance(properties, dict):
        properties = {}

    base = {
        "type": event_type,
        "session_id": embedded_session_id(properties),
        "directory": _string(raw.get("directory")),
        "properties": properties,
    }

    builder = _BUILDERS.get(event_type)
    if builder is not None:
        return builder(base, properties)
    if event_type in LABELLED_EVENT_TYPES:
        return LabelledEvent(**base)
    return UnknownEvent(**base)

