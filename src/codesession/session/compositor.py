"""Outbound message compositor: one live, edited-in-place status message per thread."""

from __future__ import annotations

import logging
import time
from typing import Callable

from ..chat.client import ChatClient, ChatClientError
from ..chat.formatting import (
    append_to_history,
    format_blockquote,
    remove_excessive_newlines,
    trim_to_prefix,
    trim_to_suffix,
)
from ..storage.models import SessionRecord
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

STATUS_HEADER = "**Agent activity**"
CONTINUED_HEADER = "**Agent activity (continued)**"
CONTINUED_MARKER = "\n_(continued below)_"
RESPONSE_PREFIX = "Response:\n"


def render_status(header: str, history: str, response: str) -> str:
    return "\n".join(part for part in (header, history, response) if part)


def split_tail(history: str, response: str, budget: int) -> tuple[str, str]:
    """Keep the newest ``budget`` characters of history + response, cut on a line boundary.

    Returns the surviving ``(history, response)`` pair.
    """

    combined = render_status("", history, response)
    tail = trim_to_suffix(combined, budget)
    if not response:
        return tail, ""
    if len(tail) <= len(response):
        return "", tail
    kept_history = tail[: len(tail) - len(response)].rstrip("\n")
    return kept_history, response


class MessageCompositor:
    """Turns history/response buffers into bounded chat messages.

    Only the thread's own listener calls :meth:`rebuild`, so edits for one thread
    never race each other.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        chat: ChatClient,
        *,
        message_limit: int = 2000,
        safety_margin: int = 100,
        min_edit_interval: float = 0.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._registry = registry
        self._chat = chat
        self._message_limit = message_limit
        self._limit = message_limit - safety_margin
        self._min_edit_interval = min_edit_interval
        self._clock = clock or time.monotonic

    @property
    def limit(self) -> int:
        return self._limit

    async def append_status(self, thread_id: str, fragment: str) -> None:
        """Blockquote ``fragment`` and add it to the thread's tool/reasoning history."""

        quoted = format_blockquote(fragment)
        if not quoted:
            return
        async with self._registry.edit(thread_id) as record:
            if record is not None:
                record.tool_history = append_to_history(record.tool_history, quoted)

    async def set_response(self, thread_id: str, text: str) -> None:
        """Replace the thread's response buffer with the cleaned ``text``."""

        async with self._registry.edit(thread_id) as record:
            if record is not None:
                record.current_response = RESPONSE_PREFIX + remove_excessive_newlines(text)

    @staticmethod
    def render(record: SessionRecord) -> str:
        header = CONTINUED_HEADER if record.status_continued else STATUS_HEADER
        return render_status(header, record.tool_history, record.current_response)

    async def rebuild(self, thread_id: str, *, force: bool = False) -> str | None:
        """Publish the thread's current buffers; returns the live message id, if any."""

        async with self._registry.edit(thread_id) as record:
            if record is None:
                return None
            content = self.render(record)
            message_id = record.status_message_id
            previous = record.status_message_content
            history = record.tool_history
            response = record.current_response
            last = record.status_edited_at

        if len(content) > self._limit:
            return await self._spill(thread_id, message_id, previous, history, response)

        if message_id is not None:
            if content == previous:
                return message_id
            now = self._clock()
            if not force and last is not None and now - last < self._min_edit_interval:
                return message_id
            try:
                await self._chat.edit_message(thread_id, message_id, content)
            except ChatClientError as exc:
                logger.warning("Failed to edit status message", extra={"thread_id": thread_id, "error": str(exc)})
                return message_id
        else:
            try:
                message_id = await self._chat.send_message(thread_id, content)
            except ChatClientError as exc:
                logger.warning("Failed to post status message", extra={"thread_id": thread_id, "error": str(exc)})
                return None
            now = self._clock()

        async with self._registry.edit(thread_id) as record:
            if record is not None:
                record.status_edited_at = now
                record.status_message_id = message_id
                record.status_message_content = content
        return message_id

    def _marked_continued(self, previous: str) -> str:
        """Append the continuation marker, dropping trailing lines of ``previous`` to stay within the platform limit."""

        room = self._message_limit - len(CONTINUED_MARKER)
        return trim_to_prefix(previous, room) + CONTINUED_MARKER

    async def _spill(
        self,
        thread_id: str,
        message_id: str | None,
        previous: str,
        history: str,
        response: str,
    ) -> str | None:
        if message_id is not None:
            try:
                await self._chat.edit_message(thread_id, message_id, self._marked_continued(previous))
            except ChatClientError as exc:
                logger.warning(
                    "Failed to mark status message as continued",
                    extra={"thread_id": thread_id, "error": str(exc)},
                )

        budget = self._limit - len(CONTINUED_HEADER) - 1
        kept_history, kept_response = split_tail(history, response, budget)
        content = render_status(CONTINUED_HEADER, kept_history, kept_response)
        try:
            new_id = await self._chat.send_message(thread_id, content)
        except ChatClientError as exc:
            logger.warning("Failed to post continuation message", extra={"thread_id": thread_id, "error": str(exc)})
            return None
        now = self._clock()

        async with self._registry.edit(thread_id) as record:
            if record is not None:
                record.status_edited_at = now
                record.tool_history = kept_history
                record.current_response = kept_response
                record.status_continued = True
                record.status_message_id = new_id
                record.status_message_content = content
        logger.debug("Status message continued", extra={"thread_id": thread_id, "message_id": new_id})
        return new_id

    async def finalize(self, thread_id: str) -> None:
        """Flush the live message unthrottled and reset buffers for the next turn."""

        async with self._registry.edit(thread_id) as record:
            live = record is not None and (
                record.status_message_id is not None or bool(record.tool_history or record.current_response)
            )
        if live:
            await self.rebuild(thread_id, force=True)
        async with self._registry.edit(thread_id) as record:
            if record is not None:
                record.status_message_id = None
                record.status_message_content = ""
                record.status_continued = False
                record.status_edited_at = None
                record.tool_history = ""
                record.current_response = ""

    async def send(self, thread_id: str, content: str) -> str | None:
        """Post a standalone message outside the live status message."""

        try:
            return await self._chat.send_message(thread_id, content)
        except ChatClientError as exc:
            logger.warning("Failed to send message", extra={"thread_id": thread_id, "error": str(exc)})
            return None


__all__ = [
    "CONTINUED_HEADER",
    "CONTINUED_MARKER",
    "MessageCompositor",
    "RESPONSE_PREFIX",
    "STATUS_HEADER",
    "render_status",
    "split_tail",
]
