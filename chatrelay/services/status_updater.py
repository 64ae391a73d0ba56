"""Rate-limited editing of live status messages."""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Set

from ..utils.logger import get_app_logger

MAX_EDIT_LENGTH = 3900
TRUNCATED_MARKER = "\n\n_(truncated)_"


class _QueuedEdit:
    __slots__ = ("channel_id", "message_id", "text", "done")

    def __init__(self, channel_id: str, message_id: str, text: str, done: asyncio.Future):
        self.channel_id = channel_id
        self.message_id = message_id
        self.text = text
        self.done = done


class StatusUpdater:
    """
    Two-layer throttle in front of the gateway's message edit call.

    Per message, an edit arriving less than ``throttle_interval`` after the
    previous one is dropped and only remembered as pending. Across all
    messages, edits go through one FIFO worker spaced ``global_interval``
    apart; queuing an edit for a message removes any older queued edit for
    the same message and releases its waiter.
    """

    def __init__(
        self,
        gateway,
        throttle_interval: float = 0.5,
        global_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.gateway = gateway
        self.throttle_interval = throttle_interval
        self.global_interval = global_interval
        self.logger = get_app_logger()
        self._clock = clock
        self._last_update: Dict[str, float] = {}
        self._pending: Set[str] = set()
        self._queue: Deque[_QueuedEdit] = deque()
        self._last_global: Optional[float] = None
        self._worker: Optional[asyncio.Task] = None

    @staticmethod
    def _key(channel_id: str, message_id: str) -> str:
        return f"{channel_id}:{message_id}"

    def has_pending(self, channel_id: str, message_id: str) -> bool:
        return self._key(channel_id, message_id) in self._pending

    async def update(self, channel_id: str, message_id: str, text: str, force: bool = False) -> None:
        """
        Request an edit of ``message_id``.

        Args:
            channel_id: Channel of the message
            message_id: Message to edit
            text: New text
            force: Skip the per-message throttle

        Returns once the edit was sent, superseded, or dropped by the throttle.
        """
        key = self._key(channel_id, message_id)
        now = self._clock()
        last = self._last_update.get(key)

        if not force and last is not None and now - last < self.throttle_interval:
            self._pending.add(key)
            return

        self._last_update[key] = now
        self._pending.discard(key)
        self._drop_queued(channel_id, message_id)

        done = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedEdit(channel_id, message_id, text, done))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process_queue())
        await done

    async def flush(self, channel_id: str, message_id: str, text: str) -> None:
        """Send ``text`` now if an earlier edit of the message was throttled away."""
        if self.has_pending(channel_id, message_id):
            await self.update(channel_id, message_id, text, force=True)

    def discard(self, channel_id: str, message_id: str) -> None:
        """Forget a message: drop its queued edits and throttle state."""
        key = self._key(channel_id, message_id)
        self._drop_queued(channel_id, message_id)
        self._pending.discard(key)
        self._last_update.pop(key, None)

    def _drop_queued(self, channel_id: str, message_id: str) -> None:
        kept: Deque[_QueuedEdit] = deque()
        for item in self._queue:
            if item.channel_id == channel_id and item.message_id == message_id:
                if not item.done.done():
                    item.done.set_result(None)
            else:
                kept.append(item)
        # Mutate in place so the running worker sees the change
        self._queue.clear()
        self._queue.extend(kept)

    @staticmethod
    def _truncate(text: str) -> str:
        if len(text) > MAX_EDIT_LENGTH:
            return text[:MAX_EDIT_LENGTH] + TRUNCATED_MARKER
        return text

    async def _process_queue(self) -> None:
        while self._queue:
            if self._last_global is not None:
                wait = self.global_interval - (self._clock() - self._last_global)
                if wait > 0:
                    await asyncio.sleep(wait)

            if not self._queue:
                break
            item = self._queue.popleft()
            self._last_global = self._clock()

            try:
                await self.gateway.update_message(item.channel_id, item.message_id, self._truncate(item.text))
            except Exception as e:
                self.logger.debug(f"[StatusUpdater] Failed to update message {item.message_id}: {e}")
            finally:
                if not item.done.done():
                    item.done.set_result(None)

    async def stop(self) -> None:
        """Cancel the worker and release every waiter."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        while self._queue:
            item = self._queue.popleft()
            if not item.done.done():
                item.done.set_result(None)
