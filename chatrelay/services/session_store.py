"""Durable conversation session storage.

Stores one JSON file per conversation:
  {state_dir}/sessions/{channel}-{thread}.json
with an in-memory write-through cache. Files are always overwritten whole.
"""

import asyncio
import json
import os
import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles
from pydantic import ValidationError

from ..models.session import (
    ActiveRequest,
    ConversationSession,
    PendingQuestion,
    RequestState,
)
from ..utils.logger import get_app_logger

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9-]")


def session_key(channel_id: str, thread_id: str) -> str:
    return f"{channel_id}-{thread_id}"


class SessionStore:
    """File-based conversation session storage with a write-through cache."""

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.logger = get_app_logger()
        self._cache: Dict[str, ConversationSession] = {}
        self._write_locks: Dict[str, asyncio.Lock] = {}

    def _get_session_path(self, key: str) -> Path:
        """Get the file path for a conversation key."""
        safe_key = _UNSAFE_KEY_CHARS.sub("_", key)
        return self.base_path / f"{safe_key}.json"

    def _ensure_dir(self) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _read_file(self, file_path: Path) -> Optional[ConversationSession]:
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return ConversationSession.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self.logger.warning(f"[SessionStore] Failed to load {file_path.name}: {e}")
            return None

    def load(self, channel_id: str, thread_id: str) -> Optional[ConversationSession]:
        """
        Load a conversation session.

        Args:
            channel_id: Channel id
            thread_id: Thread id

        Returns:
            The cached or on-disk session, or None when there is none
        """
        key = session_key(channel_id, thread_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        file_path = self._get_session_path(key)
        if not file_path.exists():
            return None

        session = self._read_file(file_path)
        if session is not None:
            self._cache[key] = session
        return session

    async def save(self, session: ConversationSession) -> None:
        """
        Cache the session and overwrite its file.

        Write failures are logged; the cache stays authoritative for the rest
        of the process lifetime.
        """
        key = session_key(session.channel_id, session.thread_id)
        session.last_activity_at = time.time()
        self._cache[key] = session
        data = session.model_dump_json(indent=2)

        lock = self._write_locks.setdefault(key, asyncio.Lock())
        async with lock:
            file_path = self._get_session_path(key)
            tmp_path = file_path.parent / f"{file_path.name}.tmp"
            try:
                self._ensure_dir()
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(data)
                os.replace(tmp_path, file_path)
            except OSError as e:
                self.logger.error(f"[SessionStore] Failed to save session {key}: {e}")

    async def delete(self, channel_id: str, thread_id: str) -> None:
        key = session_key(channel_id, thread_id)
        self._cache.pop(key, None)
        file_path = self._get_session_path(key)
        try:
            file_path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"[SessionStore] Failed to delete session {key}: {e}")

    @staticmethod
    def create_active_request(
        session_id: str,
        channel_id: str,
        thread_id: str,
        status_message_id: str,
        prompt: str
    ) -> ActiveRequest:
        """Build a fresh ActiveRequest in the processing state."""
        now = time.time()
        return ActiveRequest(
            session_id=session_id,
            channel_id=channel_id,
            thread_id=thread_id,
            status_message_id=status_message_id,
            prompt=prompt,
            started_at=now,
            last_updated_at=now,
        )

    def get_active_request(self, channel_id: str, thread_id: str) -> Optional[ActiveRequest]:
        session = self.load(channel_id, thread_id)
        return session.active_request if session else None

    async def update_active_request(self, channel_id: str, thread_id: str, **updates) -> None:
        """Apply field updates to the active request and persist."""
        session = self.load(channel_id, thread_id)
        if session is None or session.active_request is None:
            return
        request = session.active_request
        for field, value in updates.items():
            setattr(request, field, value)
        request.last_updated_at = time.time()
        await self.save(session)

    def _owned_request(
        self,
        channel_id: str,
        thread_id: str,
        status_message_id: Optional[str]
    ) -> Tuple[Optional[ConversationSession], Optional[ActiveRequest]]:
        """The active request, unless a status message id is given and belongs to another request."""
        session = self.load(channel_id, thread_id)
        if session is None or session.active_request is None:
            return session, None
        if status_message_id is not None and session.active_request.status_message_id != status_message_id:
            return session, None
        return session, session.active_request

    async def complete_active_request(
        self,
        channel_id: str,
        thread_id: str,
        final_response_id: Optional[str] = None,
        status_message_id: Optional[str] = None
    ) -> None:
        session, request = self._owned_request(channel_id, thread_id, status_message_id)
        if request is None:
            return
        request.state = RequestState.COMPLETED
        request.final_response_id = final_response_id
        request.last_updated_at = time.time()
        await self.save(session)

    async def fail_active_request(
        self,
        channel_id: str,
        thread_id: str,
        error: str,
        status_message_id: Optional[str] = None
    ) -> None:
        """Mark the active request failed; with ``status_message_id`` only if it is that request."""
        session, request = self._owned_request(channel_id, thread_id, status_message_id)
        if request is None:
            return
        request.state = RequestState.FAILED
        request.error = error
        request.last_updated_at = time.time()
        await self.save(session)

    async def clear_active_request(self, channel_id: str, thread_id: str) -> None:
        session = self.load(channel_id, thread_id)
        if session is None:
            return
        session.active_request = None
        await self.save(session)

    def get_pending_question(self, channel_id: str, thread_id: str) -> Optional[PendingQuestion]:
        session = self.load(channel_id, thread_id)
        return session.pending_question if session else None

    async def set_pending_question(
        self,
        channel_id: str,
        thread_id: str,
        pending_question: PendingQuestion
    ) -> None:
        session = self.load(channel_id, thread_id)
        if session is None:
            return
        session.pending_question = pending_question
        await self.save(session)

    async def clear_pending_question(self, channel_id: str, thread_id: str) -> None:
        session = self.load(channel_id, thread_id)
        if session is None or session.pending_question is None:
            return
        session.pending_question = None
        await self.save(session)

    def load_all(self) -> List[ConversationSession]:
        """
        Load every session file, refreshing the cache.

        Unreadable files are skipped.
        """
        if not self.base_path.exists():
            return []

        sessions: List[ConversationSession] = []
        for file_path in sorted(self.base_path.glob("*.json")):
            session = self._read_file(file_path)
            if session is None:
                continue
            key = session_key(session.channel_id, session.thread_id)
            cached = self._cache.get(key)
            if cached is not None:
                session = cached
            else:
                self._cache[key] = session
            sessions.append(session)
        return sessions

    def get_sessions_with_pending_requests(self) -> List[ConversationSession]:
        return [
            s for s in self.load_all()
            if s.active_request is not None and s.active_request.state == RequestState.PROCESSING
        ]
