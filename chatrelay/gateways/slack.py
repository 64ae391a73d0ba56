"""Slack Web API gateway."""

import json
import os
from typing import Any, Dict, List, Optional

import aiofiles
import httpx

from ..models.chat import ThreadHistoryPage, ThreadMessage
from ..services.errors import ChatGatewayError
from .base import BaseChatGateway

QUESTION_BLOCK_ID = "user_choice"
QUESTION_ACTION_PREFIX = "user_choice_"


def build_question_blocks(question: str, options: List[str]) -> List[Dict[str, Any]]:
    """Section with the question followed by one button per option."""
    buttons = [
        {
            "type": "button",
            "text": {"type": "plain_text", "text": option},
            "action_id": f"{QUESTION_ACTION_PREFIX}{index}",
            "value": option,
        }
        for index, option in enumerate(options)
    ]
    return [
        {"type": "section", "text": {"type": "mrkdwn", "text": question}},
        {"type": "actions", "block_id": QUESTION_BLOCK_ID, "elements": buttons},
    ]


class SlackGateway(BaseChatGateway):
    """Chat gateway that talks to Slack over its Web API."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://slack.com/api",
        max_message_length: int = 3000,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(max_message_length)
        self.api_base = api_base.rstrip("/")
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Bearer {bot_token}"},
            timeout=httpx.Timeout(30.0),
            transport=transport,
        )
        self._bot_user_id: Optional[str] = None

    async def call(self, method: str, **params: Any) -> Dict[str, Any]:
        """
        Call a Web API method with form-encoded arguments.

        None values are skipped; lists and dicts are sent as JSON.

        Raises:
            ChatGatewayError: Slack answered with ``ok: false``
        """
        form: Dict[str, str] = {}
        for key, value in params.items():
            if value is None:
                continue
            form[key] = json.dumps(value) if isinstance(value, (dict, list)) else str(value)

        response = await self._client.post(f"{self.api_base}/{method}", data=form)
        response.raise_for_status()
        data = response.json()
        if not data.get("ok"):
            raise ChatGatewayError(method, data.get("error", "unknown_error"), data.get("needed"))
        return data

    async def post_message(self, channel_id: str, thread_id: Optional[str], text: str) -> Optional[str]:
        data = await self.call("chat.postMessage", channel=channel_id, thread_ts=thread_id, text=text)
        return data.get("ts")

    async def update_message(self, channel_id: str, message_id: str, text: str) -> None:
        await self.call("chat.update", channel=channel_id, ts=message_id, text=text)

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        await self.call("chat.delete", channel=channel_id, ts=message_id)

    async def fetch_thread_history(
        self,
        channel_id: str,
        thread_id: str,
        cursor: Optional[str] = None,
        limit: int = 200
    ) -> ThreadHistoryPage:
        data = await self.call("conversations.replies", channel=channel_id, ts=thread_id, limit=limit, cursor=cursor)
        messages = [
            ThreadMessage(
                id=item.get("ts"),
                text=item.get("text"),
                user=item.get("user"),
                bot_id=item.get("bot_id"),
                username=item.get("username"),
                subtype=item.get("subtype"),
            )
            for item in data.get("messages") or []
        ]
        next_cursor = (data.get("response_metadata") or {}).get("next_cursor") or None
        return ThreadHistoryPage(messages=messages, next_cursor=next_cursor)

    async def get_bot_user_id(self) -> str:
        if self._bot_user_id is None:
            data = await self.call("auth.test")
            self._bot_user_id = data["user_id"]
        return self._bot_user_id

    async def get_user_info(self, user_id: str) -> Dict[str, Any]:
        return await self.call("users.info", user=user_id)

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        await self.call("reactions.add", channel=channel_id, timestamp=message_id, name=emoji)

    async def post_question(
        self,
        channel_id: str,
        thread_id: str,
        question: str,
        options: List[str]
    ) -> Optional[str]:
        data = await self.call(
            "chat.postMessage",
            channel=channel_id,
            thread_ts=thread_id,
            text=question,
            blocks=build_question_blocks(question, options),
        )
        return data.get("ts")

    async def clear_message_buttons(self, channel_id: str, message_id: str, text: str) -> None:
        await self.call(
            "chat.update",
            channel=channel_id,
            ts=message_id,
            text=text,
            blocks=[],
        )

    async def upload_file(
        self,
        channel_id: str,
        thread_id: Optional[str],
        file_path: str,
        filename: str,
        title: Optional[str] = None,
        initial_comment: Optional[str] = None
    ) -> Dict[str, Any]:
        """Upload through files.getUploadURLExternal and files.completeUploadExternal."""
        if not os.path.isfile(file_path):
            raise FileNotFoundError(f"File not found: {file_path}")

        async with aiofiles.open(file_path, "rb") as f:
            content = await f.read()

        upload_info = await self.call("files.getUploadURLExternal", filename=filename, length=len(content))
        upload_url = upload_info.get("upload_url")
        file_id = upload_info.get("file_id")
        if not upload_url or not file_id:
            raise ChatGatewayError("files.getUploadURLExternal", "missing upload URL response")

        response = await self._client.post(upload_url, files={"filename": (filename, content)})
        if response.status_code >= 400:
            raise ChatGatewayError("upload", f"upload failed: {response.status_code} {response.reason_phrase}")

        return await self.call(
            "files.completeUploadExternal",
            files=[{"id": file_id, "title": title or filename}],
            channel_id=channel_id,
            thread_ts=thread_id,
            initial_comment=initial_comment,
        )

    async def close(self) -> None:
        await self._client.aclose()
