"""Agent backend integration."""

from .opencode_client import OpenCodeClient
from .session_manager import AgentSessionManager, SessionInstance, environment_fingerprint
from .progress import status_from_event, status_from_part, status_from_session_status

__all__ = [
    "OpenCodeClient",
    "AgentSessionManager",
    "SessionInstance",
    "environment_fingerprint",
    "status_from_event",
    "status_from_part",
    "status_from_session_status",
]
