"""Configuration management using pydantic-settings."""

import os
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


def _default_state_dir() -> str:
    xdg_state = os.environ.get("XDG_STATE_HOME") or os.path.join(os.path.expanduser("~"), ".local", "state")
    return os.path.join(xdg_state, "ode")


def normalize_cwd(path: str) -> str:
    """Expand ``~`` and make a working directory absolute."""
    expanded = os.path.expanduser(path.strip())
    return os.path.abspath(expanded)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3030, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # Slack Configuration
    slack_bot_token: Optional[str] = Field(default=None, description="Slack bot token (xoxb-...)")
    slack_signing_secret: Optional[str] = Field(default=None, description="Slack request signing secret")
    slack_target_channels: Optional[str] = Field(default=None, description="Channels to listen on (comma separated, empty = all)")
    slack_api_base: str = Field(default="https://slack.com/api", description="Slack Web API base URL")

    # OpenCode Configuration
    opencode_server_url: str = Field(default="http://127.0.0.1:4096", description="OpenCode server URL")
    opencode_provider: str = Field(default="openai", description="Default model provider")
    opencode_model: str = Field(default="gpt-5.2-codex", description="Default model")
    opencode_event_dump: bool = Field(default=False, description="Log every raw OpenCode event")

    # Working Directory
    default_cwd: str = Field(default_factory=os.getcwd, description="Default working directory for agent sessions")

    # Persisted State
    state_dir: str = Field(default_factory=_default_state_dir, description="Directory for sessions and settings")

    # Action API
    action_api_url: str = Field(default="http://127.0.0.1:3030", description="URL the agent uses to reach the action API")
    action_api_token: Optional[str] = Field(default=None, description="Bearer token required by the action API")

    # Timing Configuration
    status_tick_interval: float = Field(default=2.0, description="Status message refresh period in seconds")
    status_throttle_interval: float = Field(default=0.5, description="Minimum gap between edits of one message")
    global_update_interval: float = Field(default=1.0, description="Minimum gap between any two message edits")
    stale_request_seconds: int = Field(default=600, description="Age after which an interrupted request is discarded")
    idle_session_timeout: int = Field(default=600, description="Idle time before a backend session is released")
    idle_sweep_interval: int = Field(default=60, description="Idle session sweep period in seconds")
    active_thread_window_hours: int = Field(default=24, description="How long a thread stays active after a mention")
    processed_message_capacity: int = Field(default=1000, description="Processed message ids kept for dedup")
    max_message_length: int = Field(default=3000, description="Maximum characters per outbound chat message")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_file: str = Field(default="./logs/app.log", description="Log file path (empty = console only)")

    def get_target_channels(self) -> Optional[List[str]]:
        """Get list of channels to listen on, or None for all channels."""
        if not self.slack_target_channels:
            return None
        channels = [c.strip() for c in self.slack_target_channels.split(",") if c.strip()]
        return channels or None

    @property
    def resolved_default_cwd(self) -> str:
        return normalize_cwd(self.default_cwd)

    @property
    def sessions_dir(self) -> Path:
        return Path(self.state_dir) / "sessions"

    @property
    def agents_dir(self) -> Path:
        return Path(self.state_dir) / "agents"

    @property
    def gh_users_dir(self) -> Path:
        return Path(self.state_dir) / "gh-users"

    @property
    def settings_file(self) -> Path:
        return Path(self.state_dir) / "settings.json"


# Global settings instance
settings = Settings()
