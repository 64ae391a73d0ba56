"""Chat actions the agent can perform through the local action API."""

import os
import uuid
from typing import Any, Dict, Optional

from ..gateways.base import BaseChatGateway
from ..models.action import ActionRequest
from ..models.session import PendingQuestion, QuestionItem
from ..utils.logger import get_app_logger
from .errors import ActionError
from .session_store import SessionStore

DEFAULT_THREAD_MESSAGE_LIMIT = 20
MIN_QUESTION_OPTIONS = 2
MAX_QUESTION_OPTIONS = 5


def require_string(value: Any, label: str) -> str:
    if not value or not isinstance(value, str):
        raise ActionError(f"{label} is required")
    return value


class ActionHandler:
    """Executes action API requests against the chat gateway."""

    def __init__(self, gateway: BaseChatGateway, session_store: SessionStore, api_token: Optional[str] = None):
        self.gateway = gateway
        self.session_store = session_store
        self.api_token = api_token
        self.logger = get_app_logger()

    def is_authorized(self, authorization: Optional[str]) -> bool:
        """No token configured means no auth; otherwise the bearer token must match."""
        if not self.api_token:
            return True
        return authorization == f"Bearer {self.api_token}"

    async def handle(self, request: ActionRequest) -> Any:
        """
        Run one action.

        Raises:
            ActionError: Missing or invalid arguments, or an unknown action
        """
        channel_id = require_string(request.channel_id, "channelId")
        self.logger.info(f"[ActionAPI] {request.action} in {channel_id}")

        handler = getattr(self, f"_action_{request.action}", None)
        if handler is None:
            raise ActionError(f"Unknown action: {request.action}")
        return await handler(channel_id, request)

    async def _action_get_thread_messages(self, channel_id: str, request: ActionRequest) -> Dict[str, Any]:
        thread_id = require_string(request.thread_id, "threadId")
        limit = request.limit or DEFAULT_THREAD_MESSAGE_LIMIT
        page = await self.gateway.fetch_thread_history(channel_id, thread_id, limit=limit)
        return {"messages": [message.model_dump(exclude_none=True) for message in page.messages]}

    async def _action_ask_user(self, channel_id: str, request: ActionRequest) -> Dict[str, Any]:
        thread_id = require_string(request.thread_id, "threadId")
        question = require_string(request.question, "question")
        options = request.options
        if not isinstance(options, list) or not MIN_QUESTION_OPTIONS <= len(options) <= MAX_QUESTION_OPTIONS:
            raise ActionError("options must have 2-5 items")

        message_id = await self.gateway.post_question(channel_id, thread_id, question, options)

        # Remember the question so the button click can be matched to the conversation
        session = self.session_store.load(channel_id, thread_id)
        if session is not None:
            await self.session_store.set_pending_question(
                channel_id,
                thread_id,
                PendingQuestion(
                    request_id=uuid.uuid4().hex,
                    session_id=session.session_id,
                    questions=[QuestionItem(question=question, options=options)],
                    message_id=message_id,
                ),
            )
        return {"status": "question_posted"}

    async def _action_add_reaction(self, channel_id: str, request: ActionRequest) -> Dict[str, Any]:
        message_id = require_string(request.message_id, "messageId")
        emoji = require_string(request.emoji, "emoji")
        await self.gateway.add_reaction(channel_id, message_id, emoji.replace(":", ""))
        return {"status": "reaction_added"}

    async def _action_get_user_info(self, channel_id: str, request: ActionRequest) -> Dict[str, Any]:
        user_id = require_string(request.user_id, "userId")
        return await self.gateway.get_user_info(user_id)

    async def _action_post_message(self, channel_id: str, request: ActionRequest) -> Dict[str, Any]:
        text = require_string(request.text, "text")
        message_id = await self.gateway.post_message(channel_id, request.thread_id, text)
        return {"ts": message_id, "text": text}

    async def _action_upload_file(self, channel_id: str, request: ActionRequest) -> Dict[str, Any]:
        file_path = require_string(request.file_path, "filePath")
        filename = request.filename or os.path.basename(file_path)
        try:
            await self.gateway.upload_file(
                channel_id,
                request.thread_id,
                file_path,
                filename,
                title=request.title,
                initial_comment=request.initial_comment,
            )
        except FileNotFoundError as e:
            raise ActionError(str(e)) from e
        return {"status": "file_uploaded"}
