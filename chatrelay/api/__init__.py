"""HTTP routes."""

from . import action, slack_events

__all__ = ["action", "slack_events"]
