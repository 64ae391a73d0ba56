"""Persisted per-channel and process-wide settings."""

import time
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class AgentOverrides(BaseModel):
    """Channel-level agent and model overrides."""

    agent: Optional[str] = Field(None, description="Agent name that replaces the phase agent")
    model: Optional[str] = Field(None, description="Model id")
    provider: Optional[str] = Field(None, description="Provider id")
    reasoning_effort: Optional[str] = Field(None, description="low, medium, high or xhigh")


class ChannelSettings(BaseModel):
    """Configuration of one chat channel."""

    custom_cwd: Optional[str] = Field(None, description="Working directory override")
    thread_sessions: Dict[str, str] = Field(default_factory=dict, description="thread id -> backend session id")
    agent_overrides: Optional[AgentOverrides] = Field(None, description="Agent/model overrides")
    active_threads: Dict[str, float] = Field(default_factory=dict, description="thread id -> last mention time")


class PendingRestartMessage(BaseModel):
    channel_id: str
    message_id: str
    created_at: float = Field(default_factory=time.time)


class OAuthState(BaseModel):
    state: str
    channel_id: str
    thread_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)


class StoredSettings(BaseModel):
    """Whole content of settings.json."""

    channels: Dict[str, ChannelSettings] = Field(default_factory=dict)
    global_cwd: str = Field(default="", description="Default working directory")
    pending_restart_messages: List[PendingRestartMessage] = Field(default_factory=list)
    oauth_state: Optional[OAuthState] = None


class ActiveThreadInfo(BaseModel):
    channel_id: str
    thread_id: str
    last_active_at: float


class GitHubAuthRecord(BaseModel):
    """One host entry of a gh ``hosts.yml`` file that carries a token."""

    host: str
    user: Optional[str] = None
    token: str
    git_protocol: Optional[str] = None
