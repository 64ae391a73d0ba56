"""Per-channel and process-wide settings persisted in settings.json."""

import json
import time
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..config import normalize_cwd
from ..models.settings import (
    ActiveThreadInfo,
    AgentOverrides,
    ChannelSettings,
    GitHubAuthRecord,
    OAuthState,
    PendingRestartMessage,
    StoredSettings,
)
from ..utils.logger import get_app_logger

AGENT_INSTRUCTION_TARGETS = ("plan", "build")
GH_HOSTS_FILENAME = "hosts.yml"
DEFAULT_GITHUB_HOST = "github.com"


class SettingsStore:
    """
    Settings storage backed by a single JSON file.

    The whole file is cached in memory and rewritten on every change.
    Channel instruction files live next to it under ``agents/``.
    """

    def __init__(
        self,
        settings_file: Path,
        agents_dir: Path,
        gh_users_dir: Path,
        default_cwd: str,
        active_thread_window_hours: int = 24
    ):
        self.settings_file = Path(settings_file)
        self.agents_dir = Path(agents_dir)
        self.gh_users_dir = Path(gh_users_dir)
        self.default_cwd = normalize_cwd(default_cwd)
        self.active_thread_window = active_thread_window_hours * 3600
        self.logger = get_app_logger()
        self._cached: Optional[StoredSettings] = None

    # === settings file ===

    def load(self) -> StoredSettings:
        if self._cached is not None:
            return self._cached

        stored: Optional[StoredSettings] = None
        if self.settings_file.exists():
            try:
                with open(self.settings_file, "r", encoding="utf-8") as f:
                    stored = StoredSettings.model_validate(json.load(f))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                self.logger.warning(f"[SettingsStore] Unreadable settings file, using defaults: {e}")

        if stored is None:
            stored = StoredSettings()
        stored.global_cwd = normalize_cwd(stored.global_cwd) if stored.global_cwd else self.default_cwd

        self._cached = stored
        return stored

    def save(self, stored: Optional[StoredSettings] = None) -> None:
        stored = stored or self.load()
        self._cached = stored
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, "w", encoding="utf-8") as f:
                f.write(stored.model_dump_json(indent=2))
        except OSError as e:
            self.logger.error(f"[SettingsStore] Failed to save settings: {e}")

    # === channels ===

    def get_channel_settings(self, channel_id: str) -> ChannelSettings:
        stored = self.load()
        channel = stored.channels.get(channel_id)
        if channel is None:
            channel = ChannelSettings()
            stored.channels[channel_id] = channel
            self.save(stored)
        return channel

    def update_channel_settings(self, channel_id: str, **updates) -> ChannelSettings:
        channel = self.get_channel_settings(channel_id)
        for field, value in updates.items():
            setattr(channel, field, value)
        if channel.custom_cwd:
            channel.custom_cwd = normalize_cwd(channel.custom_cwd)
        self.save()
        return channel

    def get_channel_cwd(self, channel_id: str, default_cwd: Optional[str] = None) -> str:
        channel = self.get_channel_settings(channel_id)
        return channel.custom_cwd or default_cwd or self.load().global_cwd

    def set_channel_cwd(self, channel_id: str, cwd: str) -> None:
        """Set the channel working directory; thread sessions are project-scoped so they are dropped."""
        self.update_channel_settings(channel_id, custom_cwd=normalize_cwd(cwd), thread_sessions={})

    def get_agent_overrides(self, channel_id: str) -> Optional[AgentOverrides]:
        return self.get_channel_settings(channel_id).agent_overrides

    def set_agent_overrides(self, channel_id: str, overrides: Optional[AgentOverrides]) -> None:
        self.update_channel_settings(channel_id, agent_overrides=overrides)

    # === thread -> backend session ===

    def get_thread_session(self, channel_id: str, thread_id: str) -> Optional[str]:
        return self.get_channel_settings(channel_id).thread_sessions.get(thread_id)

    def set_thread_session(self, channel_id: str, thread_id: str, session_id: str) -> None:
        channel = self.get_channel_settings(channel_id)
        channel.thread_sessions[thread_id] = session_id
        self.save()

    def clear_thread_sessions(self, channel_id: str) -> None:
        self.update_channel_settings(channel_id, thread_sessions={})

    # === active threads ===

    def mark_thread_active(self, channel_id: str, thread_id: str, now: Optional[float] = None) -> None:
        channel = self.get_channel_settings(channel_id)
        channel.active_threads[thread_id] = now if now is not None else time.time()
        self.save()

    def is_thread_active(self, channel_id: str, thread_id: str, now: Optional[float] = None) -> bool:
        timestamp = self.get_channel_settings(channel_id).active_threads.get(thread_id)
        if not timestamp:
            return False
        now = now if now is not None else time.time()
        return now - timestamp < self.active_thread_window

    def get_active_threads(self, now: Optional[float] = None) -> List[ActiveThreadInfo]:
        now = now if now is not None else time.time()
        threads: List[ActiveThreadInfo] = []
        for channel_id, channel in self.load().channels.items():
            for thread_id, last_active_at in channel.active_threads.items():
                if now - last_active_at < self.active_thread_window:
                    threads.append(ActiveThreadInfo(
                        channel_id=channel_id,
                        thread_id=thread_id,
                        last_active_at=last_active_at,
                    ))
        return threads

    # === restart markers ===

    def get_pending_restart_messages(self) -> List[PendingRestartMessage]:
        return list(self.load().pending_restart_messages)

    def add_pending_restart_message(self, channel_id: str, message_id: str) -> None:
        stored = self.load()
        stored.pending_restart_messages.append(
            PendingRestartMessage(channel_id=channel_id, message_id=message_id)
        )
        self.save(stored)

    def clear_pending_restart_messages(self) -> None:
        stored = self.load()
        if not stored.pending_restart_messages:
            return
        stored.pending_restart_messages = []
        self.save(stored)

    # === OAuth handshake state ===

    def set_oauth_state(self, state: str, channel_id: str, thread_id: Optional[str] = None) -> None:
        stored = self.load()
        stored.oauth_state = OAuthState(state=state, channel_id=channel_id, thread_id=thread_id)
        self.save(stored)

    def get_oauth_state(self) -> Optional[OAuthState]:
        return self.load().oauth_state

    def clear_oauth_state(self) -> None:
        stored = self.load()
        stored.oauth_state = None
        self.save(stored)

    # === channel instruction files ===

    def _agents_md_path(self, channel_id: str) -> Path:
        return self.agents_dir / f"{channel_id}.md"

    def _agent_instructions_path(self, channel_id: str, agent: str) -> Path:
        if agent not in AGENT_INSTRUCTION_TARGETS:
            raise ValueError(f"Unknown agent instruction target: {agent}")
        return self.agents_dir / f"{channel_id}.{agent}.md"

    @staticmethod
    def _read_text(path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write_text(self, path: Path, content: str) -> None:
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def get_channel_agents_md(self, channel_id: str) -> Optional[str]:
        return self._read_text(self._agents_md_path(channel_id))

    def set_channel_agents_md(self, channel_id: str, content: str) -> None:
        self._write_text(self._agents_md_path(channel_id), content)

    def delete_channel_agents_md(self, channel_id: str) -> None:
        self._agents_md_path(channel_id).unlink(missing_ok=True)

    def get_channel_agent_instructions(self, channel_id: str, agent: str) -> Optional[str]:
        return self._read_text(self._agent_instructions_path(channel_id, agent))

    def set_channel_agent_instructions(self, channel_id: str, agent: str, content: str) -> None:
        self._write_text(self._agent_instructions_path(channel_id, agent), content)

    def delete_channel_agent_instructions(self, channel_id: str, agent: str) -> None:
        self._agent_instructions_path(channel_id, agent).unlink(missing_ok=True)

    # === per-user GitHub identity ===

    def get_github_user_config_dir(self, user_id: str) -> Path:
        return self.gh_users_dir / user_id

    def get_github_auth_record_for_user(
        self,
        user_id: str,
        host: str = DEFAULT_GITHUB_HOST
    ) -> Optional[GitHubAuthRecord]:
        """Read the user's gh ``hosts.yml`` entry for ``host`` if it holds a token."""
        hosts_file = self.get_github_user_config_dir(user_id) / GH_HOSTS_FILENAME
        if not hosts_file.exists():
            return None
        try:
            with open(hosts_file, "r", encoding="utf-8") as f:
                hosts = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            self.logger.warning(f"[SettingsStore] Unreadable {hosts_file}: {e}")
            return None

        entry = hosts.get(host) if isinstance(hosts, dict) else None
        if not isinstance(entry, dict) or not entry.get("oauth_token"):
            return None
        return GitHubAuthRecord(
            host=host,
            user=entry.get("user"),
            token=str(entry["oauth_token"]),
            git_protocol=entry.get("git_protocol"),
        )

    def build_git_environment(self, user_id: str) -> Dict[str, str]:
        """
        Environment for agent sessions acting on behalf of ``user_id``.

        Empty when the user has no stored GitHub credentials.
        """
        record = self.get_github_auth_record_for_user(user_id)
        if record is None:
            return {}

        env: Dict[str, str] = {}
        if record.user:
            email = f"{record.user}@users.noreply.github.com"
            env["GIT_AUTHOR_NAME"] = record.user
            env["GIT_AUTHOR_EMAIL"] = email
            env["GIT_COMMITTER_NAME"] = record.user
            env["GIT_COMMITTER_EMAIL"] = email
        env["GH_CONFIG_DIR"] = str(self.get_github_user_config_dir(user_id))
        return env
