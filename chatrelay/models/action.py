"""Action API request and response models."""

from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ActionRequest(BaseModel):
    """
    Body of ``POST /action``.

    Field names follow the camelCase wire format the agent sends.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str = Field(description="Action name")
    channel_id: Optional[str] = Field(None, alias="channelId")
    thread_id: Optional[str] = Field(None, alias="threadId")
    message_id: Optional[str] = Field(None, alias="messageId")
    text: Optional[str] = None
    emoji: Optional[str] = None
    question: Optional[str] = None
    options: Optional[List[str]] = None
    limit: Optional[int] = None
    file_path: Optional[str] = Field(None, alias="filePath")
    filename: Optional[str] = None
    title: Optional[str] = None
    initial_comment: Optional[str] = Field(None, alias="initialComment")
    user_id: Optional[str] = Field(None, alias="userId")


class ActionResponse(BaseModel):
    ok: bool
    result: Optional[Any] = None
    error: Optional[str] = None
