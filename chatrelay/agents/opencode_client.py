"""HTTP client for an OpenCode server."""

import json
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..models.agent import PromptPayload
from ..services.errors import AgentBackendError, AgentResponseParseError, EmptyResponseError
from ..utils.logger import get_app_logger


class OpenCodeClient:
    """
    Thin async wrapper over the OpenCode server REST API.

    One instance is shared by every session that talks to the same base URL.
    """

    def __init__(self, base_url: str, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.logger = get_app_logger()
        # Prompts run as long as the agent works, so there is no read timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    @staticmethod
    def _directory_params(directory: Optional[str]) -> Dict[str, str]:
        return {"directory": directory} if directory else {}

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise AgentResponseParseError(f"Invalid JSON from OpenCode: {e}") from e

    async def create_session(self, directory: str) -> str:
        """
        Create a backend session bound to ``directory``.

        Returns:
            The new session id
        """
        response = await self._client.post("/session", params=self._directory_params(directory), json={})
        response.raise_for_status()
        data = self._decode(response)
        session_id = data.get("id") if isinstance(data, dict) else None
        if not session_id:
            raise AgentBackendError("Failed to create session: no ID returned")
        return session_id

    async def prompt(self, session_id: str, directory: str, payload: PromptPayload) -> Dict[str, Any]:
        """
        Send a prompt and wait for the assistant message.

        Returns:
            The response body (``info`` and ``parts``)

        Raises:
            AgentBackendError: The backend reported an error
            EmptyResponseError: The backend returned no data
        """
        response = await self._client.post(
            f"/session/{session_id}/message",
            params=self._directory_params(directory),
            json=payload.to_payload(),
        )
        response.raise_for_status()
        if not response.content:
            raise EmptyResponseError()

        data = self._decode(response)
        if not data:
            raise EmptyResponseError()
        if not isinstance(data, dict):
            raise AgentResponseParseError(f"Unexpected OpenCode response type: {type(data).__name__}")

        error = data.get("error") or (data.get("info") or {}).get("error")
        if error:
            raise AgentBackendError(f"OpenCode error: {error}")
        return data

    async def abort(self, session_id: str, directory: Optional[str] = None) -> None:
        response = await self._client.post(f"/session/{session_id}/abort", params=self._directory_params(directory))
        response.raise_for_status()

    async def reply_permission(self, request_id: str, reply: str, directory: Optional[str] = None) -> None:
        response = await self._client.post(
            f"/permission/{request_id}/reply",
            params=self._directory_params(directory),
            json={"reply": reply},
        )
        response.raise_for_status()

    async def stream_events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield decoded objects from the global server-sent event stream.

        Lines that are not JSON ``data:`` lines are skipped.
        """
        headers = {"Accept": "text/event-stream"}
        async with self._client.stream("GET", "/global/event", headers=headers, timeout=None) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                try:
                    data = json.loads(line[5:].strip())
                except json.JSONDecodeError:
                    self.logger.debug(f"[OpenCode] Skipping undecodable event line: {line[:100]}")
                    continue
                if isinstance(data, dict):
                    yield data

    async def close(self) -> None:
        await self._client.aclose()
