"""Async HTTP client for the opencode agent server."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, AsyncIterator, Iterable, Mapping

import httpx

from ..catalog.models import AgentModel
from .events import AgentEvent, AgentEventError, parse_event
from .models import AgentSession, PromptResponse

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0


class AgentClientError(RuntimeError):
    """Raised when the agent server rejects a request or cannot be reached."""


class AgentStreamError(AgentClientError):
    """Raised when the event stream cannot be opened or drops mid-read."""


class AgentClient:
    """Thin wrapper over the agent's REST and event-stream endpoints.

    One instance is safe to share between tasks; ``httpx`` pools connections.
    """

    def __init__(
        self,
        base_url: str,
        *,
        prompt_timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._prompt_timeout = prompt_timeout
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            transport=transport,
            timeout=httpx.Timeout(30.0, connect=CONNECT_TIMEOUT),
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise AgentClientError(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise AgentClientError(
                f"{method} {url} returned {response.status_code}: {response.text[:500]}"
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise AgentClientError(f"{method} {url} returned invalid JSON") from exc

    async def create_session(self, directory: str) -> AgentSession:
        """Create a new agent conversation rooted at ``directory``."""

        payload = await self._request("POST", "/session", params={"directory": directory}, json={})
        if not isinstance(payload, dict) or "id" not in payload:
            raise AgentClientError("session create response missing 'id'")
        session = AgentSession.model_validate(payload)
        logger.debug("Created agent session", extra={"session_id": session.id, "directory": directory})
        return session

    async def prompt(
        self,
        session_id: str,
        *,
        directory: str,
        model: AgentModel | None,
        message: str,
        tools: Mapping[str, bool] | None = None,
    ) -> PromptResponse:
        """Send ``message`` and wait for the agent to finish its turn."""

        body: dict[str, Any] = {"parts": [{"type": "text", "text": message}]}
        if model is not None:
            body["model"] = {"providerID": model.provider_id, "modelID": model.model_id}
        if tools is not None:
            body["tools"] = dict(tools)

        payload = await self._request(
            "POST",
            f"/session/{session_id}/message",
            params={"directory": directory},
            json=body,
            timeout=httpx.Timeout(self._prompt_timeout, connect=CONNECT_TIMEOUT),
        )
        return PromptResponse.model_validate(payload or {})

    async def stream_events(self, directory: str) -> AsyncIterator[AgentEvent]:
        """Yield decoded events from ``GET /event`` until the stream ends.

        Payloads that fail to decode are logged and skipped.
        """

        try:
            async with self._http.stream(
                "GET",
                "/event",
                params={"directory": directory},
                timeout=httpx.Timeout(None, connect=CONNECT_TIMEOUT),
            ) as response:
                if response.status_code != 200:
                    raise AgentStreamError(f"event stream returned {response.status_code}")
                async for payload in _iter_sse_payloads(response.aiter_lines()):
                    try:
                        yield parse_event(payload)
                    except AgentEventError as exc:
                        logger.debug("Skipping undecodable event", extra={"error": str(exc)})
        except httpx.HTTPError as exc:
            raise AgentStreamError(f"event stream failed: {exc}") from exc


async def _iter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[Any]:
    """Group ``data:`` lines into events separated by blank lines and decode them as JSON."""

    data_lines: list[str] = []
    async for line in lines:
        line = line.rstrip("\r\n")
        if line == "":
            if data_lines:
                raw = "\n".join(data_lines)
                data_lines = []
                try:
                    yield json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON event data", extra={"data": raw[:200]})
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    if data_lines:
        try:
            yield json.loads("\n".join(data_lines))
        except json.JSONDecodeError:
            logger.debug("Skipping trailing non-JSON event data")


_client_lock = threading.Lock()
_client: AgentClient | None = None


def get_agent_client(base_url: str, *, prompt_timeout: float = 600.0) -> AgentClient:
    """Return the process-wide client, creating it on first use."""

    global _client
    with _client_lock:
        if _client is None:
            _client = AgentClient(base_url, prompt_timeout=prompt_timeout)
        elif _client.base_url != base_url.rstrip("/"):
            logger.warning(
                "Agent client already bound to a different base URL",
                extra={"bound": _client.base_url, "requested": base_url},
            )
        return _client


def reset_agent_client() -> None:
    """Forget the process-wide client so the next call builds a fresh one."""

    global _client
    with _client_lock:
        _client = None


class FakeAgentClient(AgentClient):
    """Test double that records calls and replays scripted events."""

    def __init__(  # type: ignore[override]
        self,
        *,
        events: Iterable[AgentEvent | Exception] | None = None,
        responses: Iterable[PromptResponse] | None = None,
    ) -> None:
        self._base_url = "http://fake-agent"
        self._events = list(events or [])
        self._responses = list(responses or [])
        self.created: list[str] = []
        self.prompts: list[dict[str, Any]] = []
        self.streams_opened = 0
        self.fail_create = False
        self.create_delay = 0.0
        self.hold_stream = False

    async def aclose(self) -> None:  # type: ignore[override]
        return None

    async def create_session(self, directory: str) -> AgentSession:  # type: ignore[override]
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_create:
            raise AgentClientError("agent unavailable")
        self.created.append(directory)
        return AgentSession(id=f"ses_{len(self.created)}", directory=directory)

    async def prompt(  # type: ignore[override]
        self,
        session_id: str,
        *,
        directory: str,
        model: AgentModel | None,
        message: str,
        tools: Mapping[str, bool] | None = None,
    ) -> PromptResponse:
        self.prompts.append(
            {
                "session_id": session_id,
                "directory": directory,
                "model": model,
                "message": message,
                "tools": dict(tools) if tools is not None else None,
            }
        )
        if self._responses:
            return self._responses.pop(0)
        return PromptResponse()

    async def stream_events(self, directory: str) -> AsyncIterator[AgentEvent]:  # type: ignore[override]
        self.streams_opened += 1
        for item in self._events:
            await asyncio.sleep(0)
            if isinstance(item, Exception):
                raise item
            yield item
        if self.hold_stream:
            await asyncio.Event().wait()


__all__ = [
    "AgentClient",
    "AgentClientError",
    "AgentStreamError",
    "FakeAgentClient",
    "get_agent_client",
    "reset_agent_client",
]
