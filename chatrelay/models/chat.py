"""Chat-side events and messages."""

from typing import List, Optional
from pydantic import BaseModel, Field


class MessageContext(BaseModel):
    """Identifies the chat message that triggered a request."""

    channel_id: str = Field(description="Channel id")
    thread_id: str = Field(description="Thread id (root message id)")
    user_id: str = Field(description="Author user id")
    message_id: str = Field(description="Platform-assigned message id")


class InboundMessage(BaseModel):
    """A message or app mention delivered by the chat platform."""

    channel_id: str
    thread_id: str
    user_id: str
    message_id: str
    text: str
    is_mention_event: bool = Field(default=False, description="Delivered as an explicit app mention")

    def context(self) -> MessageContext:
        return MessageContext(
            channel_id=self.channel_id,
            thread_id=self.thread_id,
            user_id=self.user_id,
            message_id=self.message_id,
        )


class ButtonSelection(BaseModel):
    """A click on one of the question buttons."""

    channel_id: str
    thread_id: str
    user_id: str
    message_id: str = Field(description="Id of the message that carries the selection into the thread")
    selected_value: str


class ThreadMessage(BaseModel):
    """One message of a thread as returned by the chat platform."""

    id: Optional[str] = None
    text: Optional[str] = None
    user: Optional[str] = None
    bot_id: Optional[str] = None
    username: Optional[str] = None
    subtype: Optional[str] = None

    def author(self) -> str:
        if self.user:
            return f"<@{self.user}>"
        if self.bot_id:
            return f"bot:{self.bot_id}"
        if self.username:
            return self.username
        return "unknown"


class ThreadHistoryPage(BaseModel):
    messages: List[ThreadMessage] = Field(default_factory=list)
    next_cursor: Optional[str] = None
