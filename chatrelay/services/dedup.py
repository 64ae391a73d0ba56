"""Bounded record of already-processed chat message ids."""

from typing import Dict


class ProcessedMessages:
    """
    Remembers recently processed message ids.

    When the set grows past ``capacity`` the oldest half is forgotten in one go.
    """

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self._ids: Dict[str, None] = {}

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def mark(self, message_id: str) -> None:
        self._ids[message_id] = None
        if len(self._ids) > self.capacity:
            evict = self.capacity // 2
            for old_id in list(self._ids)[:evict]:
                del self._ids[old_id]

    def check_and_mark(self, message_id: str) -> bool:
        """
        Record a message id.

        Returns:
            True if the id was new, False if it was already processed
        """
        if message_id in self._ids:
            return False
        self.mark(message_id)
        return True
