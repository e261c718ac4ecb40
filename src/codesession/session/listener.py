"""Per-thread consumer of the agent event stream."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from ..agent.client import AgentClient, AgentClientError
from ..agent.events import MessagePartUpdated, ServerConnected, SessionIdle
from ..agent.models import PART_REASONING, PART_TEXT, PART_TOOL, MessagePart
from .compositor import MessageCompositor
from .listeners import ListenerSet
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

TOOL_FRAGMENT = "|>> tool: {name}"
THINKING_FRAGMENT = "|>> thinking: {text}"
COMPLETION_MENTION = "<@{user_id}> Task completed!"


class EventListener:
    """Streams agent events for one thread into its live status message.

    ``run`` walks connecting -> streaming -> idle (or error) and always
    deregisters itself from the listener set on exit.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        listeners: ListenerSet,
        compositor: MessageCompositor,
        agent_client: AgentClient,
    ) -> None:
        self._registry = registry
        self._listeners = listeners
        self._compositor = compositor
        self._agent = agent_client

    async def spawn_if_absent(self, thread_id: str, *, wait_connected: float | None = None) -> bool:
        """Start the thread's listener unless one is running.

        With ``wait_connected`` the call also waits up to that many seconds for the
        stream to report it is connected, so a prompt sent next is not missed.
        """

        connected = asyncio.Event()
        spawned = await self._listeners.spawn_if_absent(thread_id, lambda: self.run(thread_id, connected))
        if spawned and wait_connected:
            try:
                await asyncio.wait_for(connected.wait(), timeout=wait_connected)
            except asyncio.TimeoutError:
                logger.warning("Agent event stream not connected yet", extra={"thread_id": thread_id})
        return spawned

    async def run(self, thread_id: str, connected: asyncio.Event | None = None) -> None:
        task = asyncio.current_task()
        try:
            async with self._registry.edit(thread_id) as record:
                if record is None:
                    logger.error("Listener started without a session", extra={"thread_id": thread_id})
                    return
                session_id = record.session_id
                directory = record.worktree_path

            logger.debug("Listening for agent events", extra={"thread_id": thread_id, "session_id": session_id})
            async with aclosing(self._agent.stream_events(directory)) as events:
                async for event in events:
                    if isinstance(event, ServerConnected):
                        await self._mark_streaming(thread_id, True)
                        if connected is not None:
                            connected.set()
                    elif isinstance(event, MessagePartUpdated):
                        part = event.part
                        if part.session_id and part.session_id != session_id:
                            continue
                        await self._handle_part(thread_id, part)
                    elif isinstance(event, SessionIdle):
                        if event.session_id and event.session_id != session_id:
                            continue
                        if await self._handle_idle(thread_id, task):
                            return
        except AgentClientError as exc:
            logger.error(
                "Agent event stream failed",
                extra={"thread_id": thread_id, "error": str(exc)},
            )
            await self._mark_streaming(thread_id, False)
            await self._registry.set_active(thread_id, False)
        finally:
            if connected is not None:
                connected.set()
            await self._listeners.remove(thread_id, task)
            logger.debug("Listener stopped", extra={"thread_id": thread_id})

    async def _mark_streaming(self, thread_id: str, streaming: bool) -> None:
        async with self._registry.edit(thread_id) as record:
            if record is not None:
                record.is_streaming = streaming

    async def _handle_part(self, thread_id: str, part: MessagePart) -> None:
        if not part.is_ready:
            return

        if part.type == PART_TOOL:
            if not part.tool:
                return
            await self._compositor.append_status(thread_id, TOOL_FRAGMENT.format(name=part.tool))
        elif part.type == PART_REASONING:
            if not part.text:
                return
            await self._compositor.append_status(thread_id, THINKING_FRAGMENT.format(text=part.text))
        elif part.type == PART_TEXT:
            if not part.text:
                return
            await self._compositor.set_response(thread_id, part.text)
        else:
            return

        logger.debug("Surfacing agent part", extra={"thread_id": thread_id, "part_type": part.type})
        await self._compositor.rebuild(thread_id)

    async def _handle_idle(self, thread_id: str, task: asyncio.Task | None) -> bool:
        """Close out the finished turn; returns ``True`` when the listener should exit.

        The inactive flag is written before the listener releases its slot, and
        restored when a message that arrived meanwhile re-armed it.
        """

        await self._mark_streaming(thread_id, False)
        await self._compositor.finalize(thread_id)

        async with self._registry.edit(thread_id) as record:
            user_id = record.user_id if record is not None else ""
        if user_id:
            await self._compositor.send(thread_id, COMPLETION_MENTION.format(user_id=user_id))

        await self._registry.set_active(thread_id, False)
        if await self._listeners.release(thread_id, task):
            logger.info("Agent turn completed", extra={"thread_id": thread_id})
            return True

        await self._registry.set_active(thread_id, True)
        await self._mark_streaming(thread_id, True)
        logger.info("Agent turn completed, listening for the next one", extra={"thread_id": thread_id})
        return False


__all__ = ["COMPLETION_MENTION", "EventListener", "THINKING_FRAGMENT", "TOOL_FRAGMENT"]
