"""Pydantic models."""

from .session import (
    ToolStatus,
    TodoStatus,
    RequestState,
    PlanStatus,
    TrackedTool,
    TrackedTodo,
    ActiveRequest,
    Plan,
    QuestionItem,
    PendingQuestion,
    ConversationSession,
)
from .settings import (
    AgentOverrides,
    ChannelSettings,
    PendingRestartMessage,
    OAuthState,
    StoredSettings,
    ActiveThreadInfo,
    GitHubAuthRecord,
)
from .chat import MessageContext, InboundMessage, ButtonSelection, ThreadMessage, ThreadHistoryPage
from .agent import SessionInfo, AgentMessage, ModelRef, PromptPart, PromptContext, PromptPayload
from .action import ActionRequest, ActionResponse

__all__ = [
    "ToolStatus",
    "TodoStatus",
    "RequestState",
    "PlanStatus",
    "TrackedTool",
    "TrackedTodo",
    "ActiveRequest",
    "Plan",
    "QuestionItem",
    "PendingQuestion",
    "ConversationSession",
    "AgentOverrides",
    "ChannelSettings",
    "PendingRestartMessage",
    "OAuthState",
    "StoredSettings",
    "ActiveThreadInfo",
    "GitHubAuthRecord",
    "MessageContext",
    "InboundMessage",
    "ButtonSelection",
    "ThreadMessage",
    "ThreadHistoryPage",
    "SessionInfo",
    "AgentMessage",
    "ModelRef",
    "PromptPart",
    "PromptContext",
    "PromptPayload",
    "ActionRequest",
    "ActionResponse",
]
