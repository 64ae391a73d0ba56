"""Maps chat conversations to live OpenCode sessions."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Set

from ..models.agent import AgentMessage, ModelRef, PromptContext, PromptPayload, SessionInfo
from ..models.events import BackendEvent, PermissionAskedEvent, parse_event
from ..services.errors import AgentRequestCancelled, EmptyResponseError
from ..services.settings_store import SettingsStore
from ..utils.logger import get_app_logger
from .opencode_client import OpenCodeClient
from .prompts import build_chat_system_prompt, build_prompt_parts, combine_instructions

SessionEnvironment = Dict[str, str]
EventHandler = Callable[[BackendEvent], None]
ClientFactory = Callable[[str], OpenCodeClient]

SERVER_URL_ENV_KEY = "OPENCODE_SERVER_URL"


def environment_fingerprint(env: Optional[SessionEnvironment]) -> str:
    """Order-independent ``key=value`` rendering of a session environment."""
    if not env:
        return ""
    return "\n".join(f"{key}={env[key]}" for key in sorted(env))


class SessionInstance:
    """Live state of one backend session: its client, subscribers and event loop."""

    def __init__(self, session_id: str, client: OpenCodeClient, env: SessionEnvironment, base_url: str):
        self.session_id = session_id
        self.client = client
        self.env = env
        self.base_url = base_url
        self.handlers: List[EventHandler] = []
        self.valid_session_ids: Set[str] = set()
        self.last_active = time.time()
        self.event_loop_running = False
        self.event_task: Optional[asyncio.Task] = None

    def touch(self) -> None:
        self.last_active = time.time()


class AgentSessionManager:
    """
    Owns the conversation -> backend session mapping.

    Guarantees at most one in-flight prompt per backend session, recreates
    sessions whose environment changed or that the backend no longer knows,
    and fans the live event stream out to subscribers.
    """

    def __init__(
        self,
        settings,
        settings_store: SettingsStore,
        client_factory: Optional[ClientFactory] = None,
        reconnect_delay: float = 1.0
    ):
        self.settings = settings
        self.settings_store = settings_store
        self.logger = get_app_logger()
        self.reconnect_delay = reconnect_delay
        self._client_factory = client_factory or (lambda base_url: OpenCodeClient(base_url))
        self._clients: Dict[str, OpenCodeClient] = {}
        self._instances: Dict[str, SessionInstance] = {}
        self._environments: Dict[str, SessionEnvironment] = {}
        self._active_requests: Dict[str, asyncio.Task] = {}
        self._cancelled_requests: Set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None

    # === clients and instances ===

    def _resolve_server_url(self, env: Optional[SessionEnvironment]) -> str:
        override = (env or {}).get(SERVER_URL_ENV_KEY, "")
        if override.strip():
            return override
        return self.settings.opencode_server_url

    def _get_client(self, base_url: str) -> OpenCodeClient:
        client = self._clients.get(base_url)
        if client is None:
            client = self._client_factory(base_url)
            self._clients[base_url] = client
            self.logger.info(f"[SessionManager] Using OpenCode server {base_url}")
        return client

    def _register_instance(self, session_id: str, env: SessionEnvironment, valid: bool) -> SessionInstance:
        base_url = self._resolve_server_url(env)
        instance = SessionInstance(session_id, self._get_client(base_url), env, base_url)
        if valid:
            instance.valid_session_ids.add(session_id)
        self._instances[session_id] = instance
        self._environments[session_id] = env
        self._start_event_loop(instance)
        self._ensure_cleanup_task()
        return instance

    def _get_or_create_instance(self, session_id: str) -> SessionInstance:
        instance = self._instances.get(session_id)
        if instance is not None:
            instance.touch()
            return instance
        env = self._environments.get(session_id, {})
        self.logger.info(f"[SessionManager] Attaching to existing session {session_id}")
        return self._register_instance(session_id, env, valid=False)

    def get_session_environment(self, session_id: str) -> Optional[SessionEnvironment]:
        return self._environments.get(session_id)

    def has_instance(self, session_id: str) -> bool:
        return session_id in self._instances

    async def ensure_session(self, session_id: str) -> None:
        """Make sure an instance with a running event loop exists for the session."""
        self._get_or_create_instance(session_id)

    def touch_session(self, session_id: str) -> None:
        instance = self._instances.get(session_id)
        if instance is not None:
            instance.touch()

    # === session lifecycle ===

    async def create_session(self, working_path: str, env: Optional[SessionEnvironment] = None) -> str:
        env = env or {}
        client = self._get_client(self._resolve_server_url(env))
        session_id = await client.create_session(working_path)
        self._register_instance(session_id, env, valid=True)
        self.logger.info(f"[SessionManager] Created session {session_id} in {working_path}")
        return session_id

    async def get_or_create_session(
        self,
        channel_id: str,
        thread_id: str,
        working_path: str,
        env: Optional[SessionEnvironment] = None
    ) -> SessionInfo:
        """
        Reuse the thread's session unless its environment differs, else create one.

        Args:
            channel_id: Channel id
            thread_id: Thread id
            working_path: Project directory for a new session
            env: Environment the session must run with

        Returns:
            SessionInfo with ``created`` set when a new session was made
        """
        env = env or {}
        existing = self.settings_store.get_thread_session(channel_id, thread_id)
        if existing:
            existing_env = environment_fingerprint(self.get_session_environment(existing))
            if existing_env == environment_fingerprint(env):
                return SessionInfo(session_id=existing, created=False)
            self.logger.info(
                f"[SessionManager] Environment changed for {channel_id}/{thread_id}; creating new session"
            )
        else:
            self.logger.info(f"[SessionManager] Creating session for {channel_id}/{thread_id} in {working_path}")

        session_id = await self.create_session(working_path, env)
        self.settings_store.set_thread_session(channel_id, thread_id, session_id)
        return SessionInfo(session_id=session_id, created=True)

    async def ensure_valid_session(self, session_id: str, working_path: str) -> str:
        """
        Return a session id the bound backend instance knows about.

        A session not created through this process (for example one stored
        before a restart) is replaced by a fresh backend session; the caller
        must store the returned id.
        """
        instance = self._get_or_create_instance(session_id)
        if session_id in instance.valid_session_ids:
            return session_id

        self.logger.info(f"[SessionManager] Session {session_id} unknown to server; creating a new one")
        new_session_id = await instance.client.create_session(working_path)
        instance.valid_session_ids.add(new_session_id)

        del self._instances[session_id]
        instance.session_id = new_session_id
        self._instances[new_session_id] = instance
        self._environments[new_session_id] = instance.env

        self.logger.info(f"[SessionManager] Replaced session {session_id} with {new_session_id}")
        return new_session_id

    # === prompts ===

    def _build_payload(
        self,
        channel_id: str,
        message: str,
        agent: Optional[str],
        context: Optional[PromptContext]
    ) -> PromptPayload:
        overrides = self.settings_store.get_agent_overrides(channel_id)
        if overrides and overrides.agent:
            agent = overrides.agent

        if overrides and overrides.provider and overrides.model:
            model = ModelRef(provider_id=overrides.provider, model_id=overrides.model)
        else:
            model = ModelRef(provider_id=self.settings.opencode_provider, model_id=self.settings.opencode_model)

        agent_instructions = None
        if agent in ("plan", "build"):
            agent_instructions = self.settings_store.get_channel_agent_instructions(channel_id, agent)
        instructions = combine_instructions(
            self.settings_store.get_channel_agents_md(channel_id),
            agent_instructions,
        )

        parts = build_prompt_parts(
            message,
            channel_instructions=instructions or None,
            thread_history=context.thread_history if context else None,
        )
        return PromptPayload(parts=parts, agent=agent, model=model, system=build_chat_system_prompt(context))

    @staticmethod
    def _extract_messages(data: Dict[str, Any]) -> List[AgentMessage]:
        messages: List[AgentMessage] = []
        for part in data.get("parts") or []:
            if isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
                messages.append(AgentMessage(text=part["text"]))
        return messages

    async def send_message(
        self,
        channel_id: str,
        session_id: str,
        message: str,
        working_path: str,
        agent: Optional[str] = None,
        context: Optional[PromptContext] = None
    ) -> List[AgentMessage]:
        """
        Send a prompt and return the assistant's text parts.

        A newer prompt for the same session preempts this one; the preempted
        caller gets ``AgentRequestCancelled``.

        Raises:
            AgentRequestCancelled: The prompt was preempted or stopped
            AgentBackendError: The backend failed or returned nothing
        """
        valid_session_id = await self.ensure_valid_session(session_id, working_path)
        if valid_session_id != session_id and context is not None:
            self.logger.info(
                f"[SessionManager] Updating stored session for {channel_id}/{context.thread_id}: "
                f"{session_id} -> {valid_session_id}"
            )
            self.settings_store.set_thread_session(channel_id, context.thread_id, valid_session_id)

        request_key = f"{channel_id}:{valid_session_id}"
        previous = self._active_requests.get(request_key)
        if previous is not None and not previous.done():
            self.logger.info(f"[SessionManager] Preempting in-flight prompt for {valid_session_id}")
            self._cancelled_requests.add(previous)
            previous.cancel()
            await asyncio.wait({previous})

        instance = self._get_or_create_instance(valid_session_id)
        payload = self._build_payload(channel_id, message, agent, context)
        self.logger.info(
            f"[SessionManager] Sending prompt to {valid_session_id} "
            f"(agent={payload.agent}, model={payload.model.provider_id}/{payload.model.model_id})"
        )

        task = asyncio.create_task(instance.client.prompt(valid_session_id, working_path, payload))
        self._active_requests[request_key] = task
        try:
            data = await task
        except asyncio.CancelledError:
            if task in self._cancelled_requests:
                raise AgentRequestCancelled(f"Prompt for session {valid_session_id} was cancelled") from None
            raise
        finally:
            self._cancelled_requests.discard(task)
            if self._active_requests.get(request_key) is task:
                del self._active_requests[request_key]

        if not data:
            raise EmptyResponseError()

        messages = self._extract_messages(data)
        instance.touch()
        self.logger.info(f"[SessionManager] Prompt for {valid_session_id} completed with {len(messages)} message(s)")
        return messages

    async def abort_session(self, session_id: str, directory: Optional[str] = None) -> None:
        """Ask the backend to abort the session's current work. Failures are logged."""
        try:
            instance = self._get_or_create_instance(session_id)
            await instance.client.abort(session_id, directory)
        except Exception as e:
            self.logger.warning(f"[SessionManager] Failed to abort session {session_id}: {e}")

    async def cancel_active_request(
        self,
        channel_id: str,
        session_id: str,
        directory: Optional[str] = None
    ) -> bool:
        """
        Cancel the in-flight prompt of a session and abort it on the backend.

        Returns:
            True if a prompt was in flight
        """
        request_key = f"{channel_id}:{session_id}"
        task = self._active_requests.pop(request_key, None)
        if task is None or task.done():
            return False
        self._cancelled_requests.add(task)
        task.cancel()
        await self.abort_session(session_id, directory)
        return True

    # === events ===

    def subscribe_to_session(self, session_id: str, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler for the session's events.

        When no instance exists yet one is created, which starts its stream.

        Returns:
            Function that removes the handler
        """
        instance = self._instances.get(session_id)
        if instance is None:
            self.logger.warning(f"[SessionManager] Subscribing before instance exists for {session_id}")
            instance = self._get_or_create_instance(session_id)
        instance.handlers.append(handler)

        def unsubscribe() -> None:
            if handler in instance.handlers:
                instance.handlers.remove(handler)

        return unsubscribe

    def _start_event_loop(self, instance: SessionInstance) -> None:
        if instance.event_loop_running:
            return
        instance.event_loop_running = True
        instance.event_task = asyncio.create_task(self._run_event_loop(instance))

    async def _run_event_loop(self, instance: SessionInstance) -> None:
        while instance.event_loop_running:
            try:
                async for raw in instance.client.stream_events():
                    if not instance.event_loop_running:
                        break
                    await self._dispatch_event(instance, raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if instance.event_loop_running:
                    self.logger.warning(f"[SessionManager] Event stream error for {instance.session_id}: {e}")
            if instance.event_loop_running:
                await asyncio.sleep(self.reconnect_delay)

    async def _dispatch_event(self, instance: SessionInstance, raw: Dict[str, Any]) -> None:
        if self.settings.opencode_event_dump:
            self.logger.info(f"[SessionManager] OpenCode event for {instance.session_id}: {raw}")

        event = parse_event(raw)
        if event.session_id and event.session_id != instance.session_id:
            return

        instance.touch()

        if isinstance(event, PermissionAskedEvent) and event.request_id:
            self.logger.debug(f"[SessionManager] Auto-approving permission {event.request_id}")
            try:
                await instance.client.reply_permission(event.request_id, "always", event.directory)
            except Exception as e:
                self.logger.warning(f"[SessionManager] Failed to approve permission {event.request_id}: {e}")

        for handler in list(instance.handlers):
            try:
                handler(event)
            except Exception:
                self.logger.exception(f"[SessionManager] Event handler error for {instance.session_id}")

    # === cleanup ===

    def _ensure_cleanup_task(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.idle_sweep_interval)
            await self.sweep_idle_sessions()

    async def sweep_idle_sessions(self, now: Optional[float] = None) -> List[str]:
        """Stop instances idle longer than the configured timeout."""
        now = now if now is not None else time.time()
        timeout = self.settings.idle_session_timeout
        idle = [sid for sid, inst in self._instances.items() if now - inst.last_active > timeout]
        for session_id in idle:
            self.logger.info(f"[SessionManager] Cleaning up inactive session {session_id}")
            await self._stop_instance(session_id)
        return idle

    async def _stop_instance(self, session_id: str) -> None:
        instance = self._instances.pop(session_id, None)
        if instance is None:
            return
        instance.event_loop_running = False
        instance.handlers.clear()
        if instance.event_task is not None:
            instance.event_task.cancel()
            try:
                await instance.event_task
            except asyncio.CancelledError:
                pass
        self.logger.info(f"[SessionManager] Stopped instance {session_id}")

    async def stop(self) -> None:
        """Stop every instance, the cleanup task and close HTTP clients."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for session_id in list(self._instances):
            await self._stop_instance(session_id)

        for client in self._clients.values():
            await client.close()
        self._clients.clear()
        self.logger.info("[SessionManager] All sessions stopped")
