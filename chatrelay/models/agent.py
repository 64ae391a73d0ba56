"""Agent backend request/response models."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class SessionInfo(BaseModel):
    session_id: str
    created: bool


class AgentMessage(BaseModel):
    """A text part returned by the agent backend."""

    text: str
    message_type: str = Field(default="assistant")


class ModelRef(BaseModel):
    provider_id: str
    model_id: str

    def to_payload(self) -> Dict[str, str]:
        return {"providerID": self.provider_id, "modelID": self.model_id}


class PromptPart(BaseModel):
    type: str = "text"
    text: str


class PromptContext(BaseModel):
    """Chat context sent along with a prompt."""

    channel_id: str
    thread_id: str
    user_id: str
    thread_history: Optional[str] = None
    action_api_url: Optional[str] = None


class PromptPayload(BaseModel):
    """Body of a prompt request."""

    parts: List[PromptPart]
    agent: Optional[str] = None
    model: ModelRef
    system: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "parts": [part.model_dump() for part in self.parts],
            "model": self.model.to_payload(),
        }
        if self.agent:
            body["agent"] = self.agent
        if self.system:
            body["system"] = self.system
        return body
