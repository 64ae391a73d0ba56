"""Conversation session models persisted by the session store."""

import time
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class RequestState(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(str, Enum):
    PLANNING = "planning"
    AWAITING_INPUT = "awaiting_input"
    READY = "ready"
    BUILDING = "building"
    COMPLETE = "complete"


class TrackedTool(BaseModel):
    """One tool invocation reported by the agent backend."""

    id: str = Field(description="Tool call id, unique per invocation")
    name: str = Field(description="Tool name")
    status: ToolStatus = Field(default=ToolStatus.PENDING, description="Tool lifecycle status")
    title: Optional[str] = Field(None, description="Display title")
    output: Optional[str] = Field(None, description="Tool output")
    error: Optional[str] = Field(None, description="Tool error text")


class TrackedTodo(BaseModel):
    """Checklist item the agent reports for itself."""

    content: str = Field(description="Todo text")
    status: TodoStatus = Field(default=TodoStatus.PENDING, description="Todo status")


class ActiveRequest(BaseModel):
    """
    One in-flight prompt submission.

    Timestamps are epoch seconds. A conversation holds at most one of these.
    """

    session_id: str = Field(description="Backend session id")
    channel_id: str = Field(description="Chat channel id")
    thread_id: str = Field(description="Chat thread id")
    status_message_id: str = Field(description="Chat message edited with live progress")
    prompt: str = Field(description="Original prompt text")
    started_at: float = Field(default_factory=time.time, description="Start time")
    last_updated_at: float = Field(default_factory=time.time, description="Last update time")
    current_status: str = Field(default="Starting", description="Short status label")
    current_step: Optional[str] = Field(None, description="Optional sub-label")
    current_text: str = Field(default="", description="Partial response draft")
    tools: List[TrackedTool] = Field(default_factory=list, description="Tools in call order")
    todos: List[TrackedTodo] = Field(default_factory=list, description="Agent todo list")
    state: RequestState = Field(default=RequestState.PROCESSING, description="Lifecycle state")
    final_response_id: Optional[str] = Field(None, description="Id of the final response message")
    error: Optional[str] = Field(None, description="Failure reason")

    def upsert_tool(self, tool: TrackedTool) -> None:
        """Replace the tool with the same id, or append it."""
        for index, existing in enumerate(self.tools):
            if existing.id == tool.id:
                self.tools[index] = tool
                return
        self.tools.append(tool)


class Plan(BaseModel):
    """Plan/build protocol state of a thread."""

    status: PlanStatus = Field(description="Protocol phase")
    todos: List[TrackedTodo] = Field(default_factory=list, description="Planned todos")
    message_id: Optional[str] = Field(None, description="Rendered plan message id")
    text: Optional[str] = Field(None, description="Planner notes")


class QuestionItem(BaseModel):
    question: str
    options: Optional[List[str]] = None
    multiple: Optional[bool] = None
    custom: Optional[bool] = None


class PendingQuestion(BaseModel):
    """Multiple-choice question waiting for a button click."""

    request_id: str = Field(description="Question request id")
    session_id: str = Field(description="Backend session id")
    asked_at: float = Field(default_factory=time.time, description="When the question was asked")
    questions: List[QuestionItem] = Field(default_factory=list, description="Questions and options")
    message_id: Optional[str] = Field(None, description="Chat message holding the buttons")


class ConversationSession(BaseModel):
    """Durable record for one (channel, thread) conversation."""

    session_id: str = Field(description="Backend session id")
    channel_id: str = Field(description="Chat channel id")
    thread_id: str = Field(description="Chat thread id")
    working_directory: str = Field(description="Agent working directory")
    thread_owner_user_id: Optional[str] = Field(None, description="User who started the thread")
    created_at: float = Field(default_factory=time.time, description="Creation time")
    last_activity_at: float = Field(default_factory=time.time, description="Last save time")
    active_request: Optional[ActiveRequest] = None
    plan: Optional[Plan] = None
    pending_question: Optional[PendingQuestion] = None
