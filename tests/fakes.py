"""In-memory chat gateway, scripted OpenCode backend and test helpers."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from chatrelay.config import Settings
from chatrelay.gateways.base import BaseChatGateway
from chatrelay.models.agent import PromptPayload
from chatrelay.models.chat import InboundMessage, ThreadHistoryPage, ThreadMessage

BOT_USER_ID = "UBOT"
CHANNEL = "C123"
THREAD = "1700000000.000100"


class FakeChatGateway(BaseChatGateway):
    """Records every outbound call; message ids are ``m1``, ``m2``, ..."""

    def __init__(self, max_message_length: int = 3000):
        super().__init__(max_message_length)
        self.posted: List[Dict[str, Any]] = []
        self.updates: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.reactions: List[Dict[str, Any]] = []
        self.questions: List[Dict[str, Any]] = []
        self.cleared: List[Dict[str, Any]] = []
        self.uploads: List[Dict[str, Any]] = []
        self.history: Dict[str, List[List[ThreadMessage]]] = {}
        self.fail_updates = False
        self._next_id = 0

    def _new_id(self) -> str:
        self._next_id += 1
        return f"m{self._next_id}"

    def texts(self) -> List[str]:
        return [post["text"] for post in self.posted]

    def updates_for(self, message_id: str) -> List[str]:
        return [u["text"] for u in self.updates if u["message_id"] == message_id]

    async def post_message(self, channel_id, thread_id, text):
        message_id = self._new_id()
        self.posted.append({"channel_id": channel_id, "thread_id": thread_id, "text": text, "id": message_id})
        return message_id

    async def update_message(self, channel_id, message_id, text):
        if self.fail_updates:
            raise RuntimeError("update failed")
        self.updates.append({"channel_id": channel_id, "message_id": message_id, "text": text})

    async def delete_message(self, channel_id, message_id):
        self.deleted.append(message_id)

    async def fetch_thread_history(self, channel_id, thread_id, cursor=None, limit=200):
        pages = self.history.get(thread_id, [])
        index = int(cursor) if cursor else 0
        if index >= len(pages):
            return ThreadHistoryPage()
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return ThreadHistoryPage(messages=pages[index][:limit], next_cursor=next_cursor)

    async def get_bot_user_id(self):
        return BOT_USER_ID

    async def get_user_info(self, user_id):
        return {"ok": True, "user": {"id": user_id, "name": "alice"}}

    async def add_reaction(self, channel_id, message_id, emoji):
        self.reactions.append({"channel_id": channel_id, "message_id": message_id, "emoji": emoji})

    async def post_question(self, channel_id, thread_id, question, options):
        message_id = self._new_id()
        self.questions.append({"channel_id": channel_id, "thread_id": thread_id, "question": question,
                               "options": options, "id": message_id})
        return message_id

    async def clear_message_buttons(self, channel_id, message_id, text):
        self.cleared.append({"channel_id": channel_id, "message_id": message_id, "text": text})

    async def upload_file(self, channel_id, thread_id, file_path, filename, title=None, initial_comment=None):
        self.uploads.append({"channel_id": channel_id, "thread_id": thread_id, "file_path": file_path,
                             "filename": filename, "title": title, "initial_comment": initial_comment})
        return {"ok": True}


class FakeOpenCodeClient:
    """
    Scripted stand-in for ``OpenCodeClient``.

    Each prompt consumes one step from ``steps``: events to emit while the
    prompt runs, an optional gate to wait on, then an error or a response.
    """

    def __init__(self):
        self.steps: List[Dict[str, Any]] = []
        self.prompts: List[Dict[str, Any]] = []
        self.created: List[str] = []
        self.aborts: List[str] = []
        self.permission_replies: List[Dict[str, Any]] = []
        self.closed = False
        self._subscribers: List[asyncio.Queue] = []

    async def create_session(self, directory: str) -> str:
        session_id = f"ses_{len(self.created) + 1}"
        self.created.append(session_id)
        return session_id

    async def prompt(self, session_id: str, directory: str, payload: PromptPayload) -> Dict[str, Any]:
        self.prompts.append({"session_id": session_id, "directory": directory, "payload": payload})
        step = self.steps.pop(0) if self.steps else {}
        for raw in step.get("events", []):
            await self.emit(raw)
        gate: Optional[asyncio.Event] = step.get("gate")
        if gate is not None:
            await gate.wait()
        if step.get("error") is not None:
            raise step["error"]
        return step.get("response", {"parts": [{"type": "text", "text": "done"}]})

    async def abort(self, session_id: str, directory: Optional[str] = None) -> None:
        self.aborts.append(session_id)

    async def reply_permission(self, request_id: str, reply: str, directory: Optional[str] = None) -> None:
        self.permission_replies.append({"request_id": request_id, "reply": reply})

    async def stream_events(self):
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                raw = await queue.get()
                try:
                    yield raw
                finally:
                    queue.task_done()
        finally:
            self._subscribers.remove(queue)

    async def emit(self, raw: Dict[str, Any]) -> None:
        """Deliver an event to every open stream and wait until it was handled."""
        for _ in range(20):
            if self._subscribers:
                break
            await asyncio.sleep(0)
        queues = list(self._subscribers)
        for queue in queues:
            queue.put_nowait(raw)
        for queue in queues:
            await queue.join()

    async def close(self) -> None:
        self.closed = True

    def prompt_text(self, index: int) -> str:
        return self.prompts[index]["payload"].parts[-1].text

    def prompt_agent(self, index: int) -> Optional[str]:
        return self.prompts[index]["payload"].agent


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        state_dir=str(tmp_path / "state"),
        default_cwd=str(tmp_path),
        log_file="",
        log_level="WARNING",
        status_tick_interval=60.0,
        status_throttle_interval=0.0,
        global_update_interval=0.0,
        idle_sweep_interval=3600,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_message(text: str, message_id: str, thread_id: str = THREAD, user_id: str = "UALICE",
                 channel_id: str = CHANNEL, mention: bool = False) -> InboundMessage:
    return InboundMessage(
        channel_id=channel_id,
        thread_id=thread_id,
        user_id=user_id,
        message_id=message_id,
        text=text,
        is_mention_event=mention,
    )


def todo_event(session_id: str, todos: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        "directory": "/work",
        "payload": {"type": "todo.updated", "properties": {"sessionID": session_id, "todos": todos}},
    }


def text_response(*texts: str) -> Dict[str, Any]:
    return {"parts": [{"type": "text", "text": text} for text in texts]}


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


