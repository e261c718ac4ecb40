"""Outbound chat platform access."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

THREAD_AUTO_ARCHIVE_MINUTES = 1440
_PUBLIC_THREAD = 11


class ChatClientError(RuntimeError):
    """Raised when the chat platform rejects or fails a request."""


class ChatClient(Protocol):
    """Minimal chat API the relay writes through."""

    async def create_thread(self, channel_id: str, name: str) -> str:
        ...

    async def send_message(self, channel_id: str, content: str) -> str:
        ...

    async def edit_message(self, channel_id: str, message_id: str, content: str) -> None:
        ...

    async def trigger_typing(self, channel_id: str) -> None:
        ...

    async def aclose(self) -> None:
        ...


class DiscordChatClient:
    """Discord REST implementation of :class:`ChatClient`."""

    def __init__(
        self,
        token: str,
        *,
        api_base: str = "https://discord.com/api/v10",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            transport=transport,
            timeout=timeout,
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": "DiscordBot (codesession-relay, 0.1)",
            },
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, url: str, payload: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._http.request(method, url, json=payload)
        except httpx.HTTPError as exc:
            raise ChatClientError(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ChatClientError(f"{method} {url} returned {response.status_code}: {response.text[:300]}")
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def create_thread(self, channel_id: str, name: str) -> str:
        data = await self._call(
            "POST",
            f"/channels/{channel_id}/threads",
            {"name": name[:100], "auto_archive_duration": THREAD_AUTO_ARCHIVE_MINUTES, "type": _PUBLIC_THREAD},
        )
        return str(data["id"])

    async def send_message(self, channel_id: str, content: str) -> str:
        data = await self._call(
            "POST",
            f"/channels/{channel_id}/messages",
            {"content": content, "allowed_mentions": {"parse": ["users"]}},
        )
        return str(data["id"])

    async def edit_message(self, channel_id: str, message_id: str, content: str) -> None:
        await self._call("PATCH", f"/channels/{channel_id}/messages/{message_id}", {"content": content})

    async def trigger_typing(self, channel_id: str) -> None:
        await self._call("POST", f"/channels/{channel_id}/typing")


__all__ = ["ChatClient", "ChatClientError", "DiscordChatClient", "THREAD_AUTO_ARCHIVE_MINUTES"]
