"""Services."""

from .session_store import SessionStore
from .settings_store import SettingsStore
from .dedup import ProcessedMessages

__all__ = ["SessionStore", "SettingsStore", "ProcessedMessages"]
