"""Chat gateway abstract base class."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.chat import ThreadHistoryPage, ThreadMessage
from ..utils.formatter import markdown_to_chat, split_for_chat
from ..utils.logger import get_app_logger, preview


class BaseChatGateway(ABC):
    """Outbound operations the relay needs from a chat platform."""

    def __init__(self, max_message_length: int = 3000):
        self.max_message_length = max_message_length
        self.logger = get_app_logger()

    # === messages ===
    @abstractmethod
    async def post_message(self, channel_id: str, thread_id: Optional[str], text: str) -> Optional[str]:
        """
        Post a message.

        Args:
            channel_id: Channel id
            thread_id: Thread to reply in, or None for a top-level message
            text: Message text, already formatted for the platform

        Returns:
            The new message id
        """
        pass

    @abstractmethod
    async def update_message(self, channel_id: str, message_id: str, text: str) -> None:
        """Replace the text of an existing message."""
        pass

    @abstractmethod
    async def delete_message(self, channel_id: str, message_id: str) -> None:
        """Delete a message."""
        pass

    @abstractmethod
    async def fetch_thread_history(
        self,
        channel_id: str,
        thread_id: str,
        cursor: Optional[str] = None,
        limit: int = 200
    ) -> ThreadHistoryPage:
        """
        Fetch one page of thread messages, oldest first.

        Returns:
            Messages plus the cursor of the next page, if any
        """
        pass

    # === identity ===
    @abstractmethod
    async def get_bot_user_id(self) -> str:
        """User id of the bot itself."""
        pass

    @abstractmethod
    async def get_user_info(self, user_id: str) -> Dict[str, Any]:
        pass

    # === interactions ===
    @abstractmethod
    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        pass

    @abstractmethod
    async def post_question(
        self,
        channel_id: str,
        thread_id: str,
        question: str,
        options: List[str]
    ) -> Optional[str]:
        """Post a question with one button per option."""
        pass

    @abstractmethod
    async def clear_message_buttons(self, channel_id: str, message_id: str, text: str) -> None:
        """Replace a question message with plain text, removing its buttons."""
        pass

    @abstractmethod
    async def upload_file(
        self,
        channel_id: str,
        thread_id: Optional[str],
        file_path: str,
        filename: str,
        title: Optional[str] = None,
        initial_comment: Optional[str] = None
    ) -> Dict[str, Any]:
        pass

    # === helpers ===
    async def send_text(
        self,
        channel_id: str,
        thread_id: Optional[str],
        text: str,
        as_markdown: bool = True
    ) -> Optional[str]:
        """
        Format and post text, splitting it into several messages when too long.

        Returns:
            Id of the last posted chunk
        """
        formatted = markdown_to_chat(text) if as_markdown else text
        chunks = split_for_chat(formatted, self.max_message_length)
        self.logger.info(
            f"[SEND] {channel_id}/{thread_id} ({len(chunks)} chunk(s)): {preview(text)}"
        )

        last_id: Optional[str] = None
        for chunk in chunks:
            last_id = await self.post_message(channel_id, thread_id, chunk)
        return last_id

    async def fetch_full_thread_history(self, channel_id: str, thread_id: str) -> List[ThreadMessage]:
        """Follow pagination cursors until the whole thread is loaded."""
        messages: List[ThreadMessage] = []
        cursor: Optional[str] = None
        while True:
            page = await self.fetch_thread_history(channel_id, thread_id, cursor=cursor)
            messages.extend(page.messages)
            cursor = page.next_cursor
            if not cursor:
                return messages
