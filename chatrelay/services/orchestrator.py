"""Request orchestrator: turns inbound chat messages into agent turns."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..agents.progress import status_from_event, status_from_session_status
from ..agents.session_manager import AgentSessionManager
from ..config import normalize_cwd
from ..gateways.base import BaseChatGateway
from ..models.agent import AgentMessage, PromptContext
from ..models.chat import ButtonSelection, InboundMessage, MessageContext
from ..models.events import BackendEvent, MessagePartUpdatedEvent, SessionStatusEvent, TodoUpdatedEvent
from ..models.session import (
    ActiveRequest,
    ConversationSession,
    Plan,
    PlanStatus,
    RequestState,
    TodoStatus,
    ToolStatus,
    TrackedTodo,
    TrackedTool,
)
from ..utils.logger import get_app_logger, preview
from .dedup import ProcessedMessages
from .errors import AgentRequestCancelled, categorize_error, format_error_status
from .policies import (
    is_stop_command,
    mentions_bot,
    mentions_other_user,
    responses_contain_question,
    strip_bot_mention,
    wants_planning,
)
from .rendering import build_build_prompt, build_plan_message, build_rich_status_message
from .session_store import SessionStore, session_key
from .settings_store import SettingsStore
from .status_updater import StatusUpdater

STOPPED_BY_USER = "Stopped by user"
CANCELLED_TEXT = "Cancelled"
GREETING_TEXT = "Hi! How can I help you? Just ask me anything."
STOPPED_TEXT = "Request stopped."
RESTART_NOTICE = "_Bot restarted - please resend your message_"
RESTARTING_TEXT = "Restarting Ode..."
RESTART_COMPLETE_TEXT = "Restarting Ode complete."
HEARTBEAT_SECONDS = 5.0

RestartHook = Callable[[], Awaitable[None]]


class _QueuedItem:
    """A user message, or a button selection, waiting for its thread."""

    def __init__(self, context: MessageContext, text: str, selection: Optional[ButtonSelection] = None):
        self.context = context
        self.text = text
        self.selection = selection


class _ThreadQueue:
    """Pending work of one conversation thread."""

    def __init__(self):
        self.processing = False
        self.items: List[_QueuedItem] = []
        self.task: Optional[asyncio.Task] = None

    def take_batch(self) -> List[_QueuedItem]:
        """A selection alone, or every plain message up to the next selection."""
        if self.items[0].selection is not None:
            return [self.items.pop(0)]
        count = next(
            (i for i, item in enumerate(self.items) if item.selection is not None),
            len(self.items),
        )
        batch = self.items[:count]
        del self.items[:count]
        return batch


def _tool_status(value: Any) -> ToolStatus:
    try:
        return ToolStatus(value)
    except ValueError:
        return ToolStatus.PENDING


def _todo_status(value: Any) -> TodoStatus:
    try:
        return TodoStatus(value)
    except ValueError:
        return TodoStatus.PENDING


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class RequestOrchestrator:
    """
    Control core of the relay.

    Serializes messages per thread, drives the plan/build protocol, keeps the
    live status message current and recovers after a restart. All state
    lives on the instance; several independent orchestrators can coexist.
    """

    def __init__(
        self,
        settings,
        session_store: SessionStore,
        settings_store: SettingsStore,
        session_manager: AgentSessionManager,
        gateway: BaseChatGateway,
        status_updater: StatusUpdater,
        clock: Callable[[], float] = time.time,
        restart_hook: Optional[RestartHook] = None
    ):
        self.settings = settings
        self.session_store = session_store
        self.settings_store = settings_store
        self.session_manager = session_manager
        self.gateway = gateway
        self.status_updater = status_updater
        self.restart_hook = restart_hook
        self.logger = get_app_logger()
        self.processed = ProcessedMessages(settings.processed_message_capacity)
        self.bot_user_id: Optional[str] = None
        self._clock = clock
        self._queues: Dict[str, _ThreadQueue] = {}
        self._plan_tasks: Dict[str, Set[asyncio.Task]] = {}
        self._plan_locks: Dict[str, asyncio.Lock] = {}

    # === lifecycle ===

    async def start(self) -> None:
        """Resolve the bot identity and recover requests interrupted by a restart."""
        try:
            self.bot_user_id = await self.gateway.get_bot_user_id()
            self.logger.info(f"[Orchestrator] Bot user id: {self.bot_user_id}")
        except Exception as e:
            self.logger.warning(f"[Orchestrator] Failed to resolve bot user id: {e}")
        await self.recover_pending_requests()

    async def wait_idle(self) -> None:
        """Wait until every thread queue is drained."""
        while self._queues:
            tasks = [queue.task for queue in self._queues.values() if queue.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel drain tasks, then stop the status updater and the session manager."""
        for queue in list(self._queues.values()):
            if queue.task is not None and not queue.task.done():
                queue.task.cancel()
                try:
                    await queue.task
                except asyncio.CancelledError:
                    pass
        self._queues.clear()

        for tasks in list(self._plan_tasks.values()):
            for task in list(tasks):
                task.cancel()
        self._plan_tasks.clear()

        await self.status_updater.stop()
        await self.session_manager.stop()
        self.logger.info("[Orchestrator] Shut down")

    # === inbound messages ===

    def is_authorized_channel(self, channel_id: str) -> bool:
        channels = self.settings.get_target_channels()
        return not channels or channel_id in channels

    async def _ensure_bot_user_id(self) -> Optional[str]:
        if self.bot_user_id is None:
            self.bot_user_id = await self.gateway.get_bot_user_id()
        return self.bot_user_id

    async def handle_inbound_message(self, message: InboundMessage) -> None:
        """
        Gate an inbound message and enqueue it for its thread.

        Stop commands are checked before mention and thread filtering. Plain
        messages need a bot mention or a thread that is still active; a
        message mentioning somebody else is left to the humans.
        """
        channel_id, thread_id = message.channel_id, message.thread_id
        if not self.is_authorized_channel(channel_id):
            return

        bot_user_id = await self._ensure_bot_user_id()
        if message.user_id == bot_user_id:
            return

        if is_stop_command(message.text) and await self.stop_request(channel_id, thread_id):
            # Slack may deliver the same stop as both message and app_mention
            self.processed.check_and_mark(message.message_id)
            await self._post_quietly(channel_id, thread_id, STOPPED_TEXT)
            return

        if not message.is_mention_event:
            is_mention = mentions_bot(message.text, bot_user_id)
            if not is_mention and not self.settings_store.is_thread_active(channel_id, thread_id):
                return
            if mentions_other_user(message.text, bot_user_id):
                return

        self.settings_store.mark_thread_active(channel_id, thread_id)

        clean_text = strip_bot_mention(message.text, bot_user_id)
        self.logger.info(
            f"[RECV] {channel_id}/{thread_id} from {message.user_id}: {preview(clean_text)}"
        )

        if not clean_text:
            await self._post_quietly(channel_id, thread_id, GREETING_TEXT)
            return

        if not self.processed.check_and_mark(message.message_id):
            self.logger.debug(f"[Orchestrator] Skipping duplicate message {message.message_id}")
            return

        self.enqueue_message(message.context(), clean_text)

    def enqueue_message(self, context: MessageContext, text: str) -> None:
        """Append text to the thread queue, starting a drain when the thread is idle."""
        self._enqueue(_QueuedItem(context, text))

    def _enqueue(self, item: _QueuedItem) -> None:
        key = session_key(item.context.channel_id, item.context.thread_id)
        queue = self._queues.get(key)
        if queue is None:
            queue = _ThreadQueue()
            self._queues[key] = queue
        queue.items.append(item)

        if not queue.processing:
            queue.processing = True
            queue.task = asyncio.create_task(self._drain_queue(key, queue))

    async def _drain_queue(self, key: str, queue: _ThreadQueue) -> None:
        try:
            while queue.items:
                batch = queue.take_batch()
                if len(batch) > 1:
                    self.logger.info(f"[Orchestrator] Coalesced {len(batch)} messages for {key}")
                try:
                    if batch[0].selection is not None:
                        await self._handle_selection_turn(batch[0].selection, batch[0].text)
                    else:
                        combined_text = "\n".join(item.text for item in batch)
                        await self._handle_user_message(batch[0].context, combined_text)
                except Exception:
                    self.logger.exception(f"[Orchestrator] Queued message processing failed for {key}")
        finally:
            queue.processing = False
            if not queue.items and self._queues.get(key) is queue:
                del self._queues[key]

    # === request flow ===

    async def _prepare_session(self, context: MessageContext) -> Tuple[ConversationSession, bool]:
        """Load or create the conversation and bind it to a valid backend session."""
        channel_id, thread_id = context.channel_id, context.thread_id
        cwd = self.settings_store.get_channel_cwd(channel_id, self.settings.resolved_default_cwd)

        session = self.session_store.load(channel_id, thread_id)
        owner = session.thread_owner_user_id if session and session.thread_owner_user_id else context.user_id
        git_env = self.settings_store.build_git_environment(owner)

        info = await self.session_manager.get_or_create_session(channel_id, thread_id, cwd, git_env)
        session_id = await self.session_manager.ensure_valid_session(info.session_id, cwd)
        if session_id != info.session_id:
            self.settings_store.set_thread_session(channel_id, thread_id, session_id)

        if session is None:
            session = ConversationSession(
                session_id=session_id,
                channel_id=channel_id,
                thread_id=thread_id,
                working_directory=cwd,
                thread_owner_user_id=owner,
            )
        else:
            session.session_id = session_id
            session.working_directory = cwd
            if not session.thread_owner_user_id:
                session.thread_owner_user_id = owner

        await self.session_store.save(session)
        return session, info.created

    async def _handle_user_message(self, context: MessageContext, text: str) -> None:
        channel_id, thread_id = context.channel_id, context.thread_id
        session, created = await self._prepare_session(context)

        plan_status = session.plan.status if session.plan else None
        awaiting_input = plan_status == PlanStatus.AWAITING_INPUT
        use_plan_agent = wants_planning(text, plan_status)

        thread_history = None
        if created:
            thread_history = await self._fetch_thread_history(channel_id, thread_id, context.message_id)

        prompt_context = PromptContext(
            channel_id=channel_id,
            thread_id=thread_id,
            user_id=session.thread_owner_user_id,
            thread_history=thread_history,
            action_api_url=self.settings.action_api_url,
        )

        if not use_plan_agent:
            session.plan = Plan(status=PlanStatus.BUILDING)
            await self.session_store.save(session)
            await self._run_build_phase(session, text, prompt_context)
            return

        # Planning phase
        if awaiting_input and session.plan is not None:
            session.plan.status = PlanStatus.PLANNING
        else:
            session.plan = Plan(status=PlanStatus.PLANNING)
        await self.session_store.save(session)

        planner_responses = await self._run_agent_request(
            session, text, "Planning", prompt_context, agent="plan"
        )
        await self._settle_plan_updates(session)
        if planner_responses is None:
            return

        planner_text = "\n\n".join(r.text for r in planner_responses if r.text and r.text.strip())
        if session.plan is None:
            session.plan = Plan(status=PlanStatus.PLANNING)
        if planner_text:
            session.plan.text = planner_text
        await self.session_store.save(session)

        await self._post_responses(channel_id, thread_id, planner_responses)

        # Decide whether the plan is ready to build
        if not session.plan.todos or responses_contain_question(r.text for r in planner_responses):
            session.plan.status = PlanStatus.AWAITING_INPUT
            await self.session_store.save(session)
            self.logger.info(f"[Orchestrator] Plan for {channel_id}/{thread_id} is awaiting input")
            return

        build_prompt = build_build_prompt(text, session.plan.text, session.plan.todos)
        session.plan.status = PlanStatus.BUILDING
        await self.session_store.save(session)
        await self._run_build_phase(session, build_prompt, prompt_context)

    async def _run_build_phase(
        self,
        session: ConversationSession,
        prompt: str,
        prompt_context: PromptContext
    ) -> None:
        responses = await self._run_agent_request(session, prompt, "Building", prompt_context, agent="build")
        await self._settle_plan_updates(session)
        if responses is None:
            return

        await self._post_responses(session.channel_id, session.thread_id, responses)
        if session.plan is not None:
            session.plan.status = PlanStatus.COMPLETE
        await self.session_store.save(session)

    async def _run_agent_request(
        self,
        session: ConversationSession,
        message: str,
        phase_label: str,
        prompt_context: Optional[PromptContext],
        agent: Optional[str] = None,
        status_text: Optional[str] = None
    ) -> Optional[List[AgentMessage]]:
        """
        Run one agent turn with a live status message.

        The status message is deleted on success and rewritten into the
        error record on failure. The progress timer and the event
        subscription are released before either outcome is reported.

        Returns:
            The assistant messages, or None when the turn failed or was stopped
        """
        channel_id, thread_id = session.channel_id, session.thread_id
        cwd = session.working_directory

        try:
            status_id = await self.gateway.post_message(channel_id, thread_id, status_text or f"_{phase_label}..._")
        except Exception as e:
            self.logger.error(f"[Orchestrator] Failed to post status message in {channel_id}/{thread_id}: {e}")
            return None
        if not status_id:
            self.logger.error("[Orchestrator] Failed to send status message")
            return None

        request = SessionStore.create_active_request(session.session_id, channel_id, thread_id, status_id, message)
        request.current_status = phase_label
        session.active_request = request
        await self.session_store.save(session)

        progress_task = asyncio.create_task(self._progress_loop(session, request))
        unsubscribe: Optional[Callable[[], None]] = None
        try:
            try:
                await self.session_manager.ensure_session(request.session_id)
                unsubscribe = self.session_manager.subscribe_to_session(
                    request.session_id,
                    lambda event: self._apply_event(session, request, event),
                )

                request.current_status = "Connecting"
                await self.status_updater.update(channel_id, status_id, build_rich_status_message(request, cwd))
                request.current_status = phase_label
                await self.status_updater.update(channel_id, status_id, build_rich_status_message(request, cwd))
                if request.state != RequestState.PROCESSING:
                    self.logger.info(f"[Orchestrator] Request in {channel_id}/{thread_id} stopped before sending")
                    return None

                responses = await self.session_manager.send_message(
                    channel_id,
                    request.session_id,
                    message,
                    cwd,
                    agent=agent,
                    context=prompt_context,
                )
            finally:
                if unsubscribe is not None:
                    unsubscribe()
                progress_task.cancel()
                try:
                    await progress_task
                except asyncio.CancelledError:
                    pass
        except AgentRequestCancelled:
            if request.state == RequestState.FAILED and request.error == STOPPED_BY_USER:
                self.logger.info(f"[Orchestrator] Request in {channel_id}/{thread_id} was stopped")
                return None
            await self._cancel_request(request)
            return None
        except Exception as e:
            if request.state == RequestState.FAILED and request.error == STOPPED_BY_USER:
                self.logger.info(f"[Orchestrator] Request in {channel_id}/{thread_id} was stopped")
                return None
            await self._fail_request(request, e)
            return None

        request.state = RequestState.COMPLETED
        self.status_updater.discard(channel_id, status_id)
        await self._delete_quietly(channel_id, status_id)
        await self.session_store.complete_active_request(channel_id, thread_id, status_message_id=status_id)

        if not responses:
            self.logger.warning("[Orchestrator] No text responses from model - it may have used tools only")
        return responses

    async def _fail_request(self, request: ActiveRequest, err: Exception) -> None:
        info = categorize_error(err)
        self.logger.error(
            f"[Orchestrator] Request failed in {request.channel_id}/{request.thread_id}: {err}"
        )
        request.state = RequestState.FAILED
        request.error = info.message
        # The status message becomes the permanent error record
        await self.status_updater.update(
            request.channel_id, request.status_message_id, format_error_status(info), force=True
        )
        await self.session_store.fail_active_request(
            request.channel_id, request.thread_id, info.message, status_message_id=request.status_message_id
        )

    async def _cancel_request(self, request: ActiveRequest) -> None:
        """End a preempted request without an error record."""
        self.logger.info(
            f"[Orchestrator] Request in {request.channel_id}/{request.thread_id} was cancelled by a newer prompt"
        )
        request.state = RequestState.FAILED
        request.error = CANCELLED_TEXT
        self.status_updater.discard(request.channel_id, request.status_message_id)
        await self._delete_quietly(request.channel_id, request.status_message_id)
        await self.session_store.fail_active_request(
            request.channel_id, request.thread_id, CANCELLED_TEXT, status_message_id=request.status_message_id
        )

    async def _progress_loop(self, session: ConversationSession, request: ActiveRequest) -> None:
        """Re-render the status message every tick until the request is terminal."""
        last_heartbeat = self._clock()
        while True:
            await asyncio.sleep(self.settings.status_tick_interval)
            if request.state != RequestState.PROCESSING:
                return

            # A long prompt keeps its backend session out of the idle sweep
            self.session_manager.touch_session(request.session_id)
            now = self._clock()
            if now - last_heartbeat > HEARTBEAT_SECONDS:
                last_heartbeat = now
                request.last_updated_at = now

            try:
                status_text = build_rich_status_message(request, session.working_directory, now)
                await self.status_updater.update(request.channel_id, request.status_message_id, status_text)
                await self.session_store.save(session)
            except Exception as e:
                self.logger.warning(f"[Orchestrator] Progress update failed: {e}")

    # === event handling ===

    def _apply_event(self, session: ConversationSession, request: ActiveRequest, event: BackendEvent) -> None:
        """Fold one backend event into the in-flight request."""
        if request.state != RequestState.PROCESSING:
            return

        if isinstance(event, MessagePartUpdatedEvent):
            part = event.part
            if not part:
                return
            part_type = part.get("type")
            if part_type == "tool":
                state = part.get("state") if isinstance(part.get("state"), dict) else {}
                request.upsert_tool(TrackedTool(
                    id=str(part.get("id") or ""),
                    name=_optional_str(part.get("tool")) or "Unknown tool",
                    status=_tool_status(state.get("status")),
                    title=_optional_str(state.get("title")),
                    output=_optional_str(state.get("output")),
                    error=_optional_str(state.get("error")),
                ))
                status = status_from_event(event, request.session_id)
                if status:
                    request.current_status = status
                    request.current_step = "Tool Calling..."
            elif part_type == "text" and part.get("text"):
                request.current_text = str(part["text"])
                request.current_status = "Writing response"
            elif part_type == "step-start":
                metadata = part.get("metadata") if isinstance(part.get("metadata"), dict) else {}
                request.current_step = _optional_str(metadata.get("title")) or "Thinking"
            elif part_type == "step-finish":
                request.current_step = None
            elif part_type == "reasoning":
                request.current_step = "Thinking deeply..."

        elif isinstance(event, TodoUpdatedEvent):
            request.todos = [
                TrackedTodo(
                    content=str(item.get("content") or item.get("text") or ""),
                    status=_todo_status(item.get("status")),
                )
                for item in event.todos
                if isinstance(item, dict)
            ]
            self._track_plan_todos(session, request.todos)

        elif isinstance(event, SessionStatusEvent):
            if isinstance(event.status, dict) and event.status.get("type") in ("busy", "retry"):
                request.current_status = status_from_session_status(event.status, self._clock())

    def _track_plan_todos(self, session: ConversationSession, todos: List[TrackedTodo]) -> None:
        if not todos:
            return
        if session.plan is None:
            session.plan = Plan(status=PlanStatus.PLANNING)
        session.plan.todos = list(todos)

        key = session_key(session.channel_id, session.thread_id)
        task = asyncio.create_task(self._upsert_plan_message(session))
        tasks = self._plan_tasks.setdefault(key, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def _upsert_plan_message(self, session: ConversationSession) -> None:
        """Post the plan message once, then keep editing it."""
        key = session_key(session.channel_id, session.thread_id)
        lock = self._plan_locks.setdefault(key, asyncio.Lock())
        async with lock:
            plan = session.plan
            if plan is None:
                return
            plan_text = build_plan_message(plan.todos)
            try:
                if plan.message_id:
                    await self.status_updater.update(session.channel_id, plan.message_id, plan_text)
                else:
                    plan.message_id = await self.gateway.post_message(session.channel_id, session.thread_id, plan_text)
            except Exception as e:
                self.logger.warning(f"[Orchestrator] Failed to update plan message for {key}: {e}")
                return
            await self.session_store.save(session)

    async def _settle_plan_updates(self, session: ConversationSession) -> None:
        """Wait for in-flight plan message updates and push the latest plan text."""
        key = session_key(session.channel_id, session.thread_id)
        tasks = list(self._plan_tasks.get(key, ()))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if not self._plan_tasks.get(key):
            self._plan_tasks.pop(key, None)

        plan = session.plan
        if plan is not None and plan.message_id:
            await self.status_updater.flush(session.channel_id, plan.message_id, build_plan_message(plan.todos))

    # === chat helpers ===

    async def _fetch_thread_history(self, channel_id: str, thread_id: str, message_id: str) -> Optional[str]:
        """Earlier thread messages as ``author: text`` lines, without the triggering one."""
        try:
            messages = await self.gateway.fetch_full_thread_history(channel_id, thread_id)
        except Exception as e:
            self.logger.warning(f"[Orchestrator] Failed to fetch thread history for {channel_id}/{thread_id}: {e}")
            return None

        lines = [
            f"{m.author()}: {m.text}"
            for m in messages
            if m.id and m.id != message_id and m.text and m.text.strip()
        ]
        return "\n".join(lines) if lines else None

    async def _post_responses(self, channel_id: str, thread_id: str, responses: List[AgentMessage]) -> None:
        for response in responses:
            if response.text:
                await self._post_quietly(channel_id, thread_id, response.text, as_markdown=True)

    async def _post_quietly(
        self,
        channel_id: str,
        thread_id: Optional[str],
        text: str,
        as_markdown: bool = False
    ) -> Optional[str]:
        try:
            return await self.gateway.send_text(channel_id, thread_id, text, as_markdown=as_markdown)
        except Exception as e:
            self.logger.error(f"[Orchestrator] Failed to send message to {channel_id}/{thread_id}: {e}")
            return None

    async def _delete_quietly(self, channel_id: str, message_id: str) -> None:
        try:
            await self.gateway.delete_message(channel_id, message_id)
        except Exception as e:
            self.logger.warning(f"[Orchestrator] Failed to delete message {message_id}: {e}")

    # === stop ===

    async def stop_request(self, channel_id: str, thread_id: str) -> bool:
        """
        Stop the processing request of a thread.

        Returns:
            True if a request was stopped
        """
        session = self.session_store.load(channel_id, thread_id)
        if session is None or session.active_request is None:
            return False
        request = session.active_request
        if request.state != RequestState.PROCESSING:
            return False

        self.logger.info(f"[Orchestrator] Stop requested for session {request.session_id}")
        request.state = RequestState.FAILED
        request.error = STOPPED_BY_USER

        cancelled = await self.session_manager.cancel_active_request(
            channel_id, request.session_id, session.working_directory
        )
        if not cancelled:
            await self.session_manager.abort_session(request.session_id, session.working_directory)

        self.status_updater.discard(channel_id, request.status_message_id)
        await self._delete_quietly(channel_id, request.status_message_id)
        await self.session_store.fail_active_request(
            channel_id, thread_id, STOPPED_BY_USER, status_message_id=request.status_message_id
        )
        return True

    async def stop_channel(self, channel_id: str) -> int:
        """Stop every processing request in a channel."""
        stopped = 0
        for session in self.session_store.get_sessions_with_pending_requests():
            if session.channel_id == channel_id and await self.stop_request(channel_id, session.thread_id):
                stopped += 1
        return stopped

    # === button selections ===

    async def handle_button_selection(self, selection: ButtonSelection) -> None:
        """
        Queue the chosen option as the user's reply in the thread.

        The reply waits behind any turn already running in the thread and
        is never coalesced with plain messages.
        """
        channel_id, thread_id = selection.channel_id, selection.thread_id
        if not self.settings_store.get_thread_session(channel_id, thread_id):
            self.logger.warning(f"[Orchestrator] No session found for button selection in {channel_id}/{thread_id}")
            return

        if not self.processed.check_and_mark(selection.message_id):
            self.logger.debug(f"[Orchestrator] Skipping duplicate button selection {selection.message_id}")
            return

        context = MessageContext(
            channel_id=channel_id,
            thread_id=thread_id,
            user_id=selection.user_id,
            message_id=selection.message_id,
        )
        self._enqueue(_QueuedItem(context, f"User selected: {selection.selected_value}", selection))

    async def _handle_selection_turn(self, selection: ButtonSelection, text: str) -> None:
        channel_id, thread_id = selection.channel_id, selection.thread_id
        session_id = self.settings_store.get_thread_session(channel_id, thread_id)
        if not session_id:
            self.logger.warning(f"[Orchestrator] Session for {channel_id}/{thread_id} is gone; dropping selection")
            return

        cwd = self.settings_store.get_channel_cwd(channel_id, self.settings.resolved_default_cwd)
        valid_session_id = await self.session_manager.ensure_valid_session(session_id, cwd)
        if valid_session_id != session_id:
            self.settings_store.set_thread_session(channel_id, thread_id, valid_session_id)
            session_id = valid_session_id

        session = self.session_store.load(channel_id, thread_id)
        if session is None:
            session = ConversationSession(
                session_id=session_id,
                channel_id=channel_id,
                thread_id=thread_id,
                working_directory=cwd,
                thread_owner_user_id=selection.user_id,
            )
        else:
            session.session_id = session_id
            if not session.thread_owner_user_id:
                session.thread_owner_user_id = selection.user_id
        session.pending_question = None
        await self.session_store.save(session)

        plan_status = session.plan.status if session.plan else None
        if plan_status in (PlanStatus.PLANNING, PlanStatus.AWAITING_INPUT):
            agent = "plan"
        elif plan_status == PlanStatus.BUILDING:
            agent = "build"
        else:
            agent = None

        prompt_context = PromptContext(
            channel_id=channel_id,
            thread_id=thread_id,
            user_id=session.thread_owner_user_id,
            action_api_url=self.settings.action_api_url,
        )
        responses = await self._run_agent_request(
            session,
            text,
            "Processing",
            prompt_context,
            agent=agent,
            status_text="_Processing..._",
        )
        await self._settle_plan_updates(session)
        if responses is None:
            return
        await self._post_responses(channel_id, thread_id, responses)

    # === recovery ===

    async def recover_pending_requests(self) -> None:
        """
        Resolve requests left processing by a previous process.

        Requests older than the staleness threshold are dropped silently;
        younger ones get their status message rewritten into a resend notice.
        Restart placeholders are then marked complete.
        """
        pending = self.session_store.get_sessions_with_pending_requests()
        if not pending:
            self.logger.info("[Orchestrator] No pending requests to recover")
        else:
            self.logger.info(f"[Orchestrator] Found {len(pending)} pending request(s) to recover")

        now = self._clock()
        for session in pending:
            request = session.active_request
            if request is None:
                continue

            age = now - request.started_at
            if age > self.settings.stale_request_seconds:
                self.logger.info(
                    f"[Orchestrator] Clearing stale request in {session.channel_id}/{session.thread_id} "
                    f"(age {int(age)}s)"
                )
            else:
                await self.status_updater.update(
                    request.channel_id, request.status_message_id, RESTART_NOTICE, force=True
                )
            await self.session_store.clear_active_request(session.channel_id, session.thread_id)

        restart_messages = self.settings_store.get_pending_restart_messages()
        if not restart_messages:
            return

        self.logger.info(f"[Orchestrator] Updating {len(restart_messages)} pending restart message(s)")
        for marker in restart_messages:
            await self.status_updater.update(marker.channel_id, marker.message_id, RESTART_COMPLETE_TEXT, force=True)
        self.settings_store.clear_pending_restart_messages()

    # === management ===

    async def clear_sessions(self, channel_id: str) -> int:
        """Forget every conversation of a channel and its thread/session map."""
        self.settings_store.clear_thread_sessions(channel_id)
        cleared = 0
        for session in self.session_store.load_all():
            if session.channel_id == channel_id:
                await self.session_store.delete(session.channel_id, session.thread_id)
                cleared += 1
        self.logger.info(f"[Orchestrator] Cleared {cleared} session(s) for channel {channel_id}")
        return cleared

    def set_channel_cwd(self, channel_id: str, path: str) -> str:
        """Set the working directory of a channel; sessions are project-scoped so the map is dropped."""
        cwd = normalize_cwd(path)
        self.settings_store.set_channel_cwd(channel_id, cwd)
        self.logger.info(f"[Orchestrator] Working directory for {channel_id} set to {cwd}")
        return cwd

    def get_channel_cwd(self, channel_id: str) -> str:
        return self.settings_store.get_channel_cwd(channel_id, self.settings.resolved_default_cwd)

    async def request_restart(self, channel_id: str) -> None:
        """Announce a restart where work is in flight, record the markers, then restart."""
        pending = self.session_store.get_sessions_with_pending_requests()
        targets: List[Tuple[str, Optional[str]]] = (
            [(s.channel_id, s.thread_id) for s in pending] if pending else [(channel_id, None)]
        )

        for target_channel, target_thread in targets:
            try:
                message_id = await self.gateway.post_message(target_channel, target_thread, RESTARTING_TEXT)
            except Exception as e:
                self.logger.warning(f"[Orchestrator] Failed to post restart notice in {target_channel}: {e}")
                continue
            if message_id:
                self.settings_store.add_pending_restart_message(target_channel, message_id)

        if self.restart_hook is not None:
            await self.restart_hook()
