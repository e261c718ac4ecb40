"""Supervised set of per-thread listener tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ListenerSet:
    """Tracks at most one running listener task per thread.

    Guarded by its own lock, never held together with the registry lock. A spawn
    request refused because a listener is already registered re-arms that listener:
    its next :meth:`release` keeps it registered so it streams the new turn too.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._by_thread: dict[str, asyncio.Task[None]] = {}
        self._rearmed: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    async def spawn_if_absent(self, thread_id: str, factory: Callable[[], Awaitable[None]]) -> bool:
        """Start ``factory()`` as the thread's listener unless one is already registered."""

        async with self._lock:
            if thread_id in self._by_thread:
                self._rearmed.add(thread_id)
                return False
            task: asyncio.Task[None] = asyncio.ensure_future(factory())
            self._by_thread[thread_id] = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.debug("Spawned listener", extra={"thread_id": thread_id})
        return True

    async def release(self, thread_id: str, task: asyncio.Task | None = None) -> bool:
        """Called by a listener whose turn ended; ``True`` means it should exit.

        Returns ``False`` and keeps the entry when a spawn was refused since the
        listener was last released, i.e. a newer turn is waiting on this stream.
        """

        async with self._lock:
            current = self._by_thread.get(thread_id)
            if current is not None and (task is None or current is task):
                if thread_id in self._rearmed:
                    self._rearmed.discard(thread_id)
                    return False
                del self._by_thread[thread_id]
            return True

    async def remove(self, thread_id: str, task: asyncio.Task | None = None) -> None:
        """Deregister ``thread_id``; when ``task`` is given only that task's entry is removed."""

        async with self._lock:
            current = self._by_thread.get(thread_id)
            if current is None:
                return
            if task is not None and current is not task:
                return
            del self._by_thread[thread_id]
            self._rearmed.discard(thread_id)

    async def stop(self, thread_id: str) -> bool:
        """Cancel the thread's listener and wait for it to exit."""

        async with self._lock:
            task = self._by_thread.pop(thread_id, None)
            self._rearmed.discard(thread_id)
        if task is None:
            return False
        task.cancel()
        if task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        logger.debug("Stopped listener", extra={"thread_id": thread_id})
        return True

    async def shutdown(self) -> None:
        """Cancel every listener and block until all spawned tasks have exited."""

        async with self._lock:
            tasks = list(self._tasks)
            self._by_thread.clear()
            self._rearmed.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Stopped all listeners", extra={"count": len(tasks)})

    def is_running(self, thread_id: str) -> bool:
        return thread_id in self._by_thread

    def active_threads(self) -> list[str]:
        return sorted(self._by_thread)

    def __len__(self) -> int:
        return len(self._by_thread)


__all__ = ["ListenerSet"]
