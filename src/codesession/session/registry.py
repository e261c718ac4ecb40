"""In-memory cache of session records backed by the JSON session store."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable

from ..agent.client import AgentClient, AgentClientError
from ..agent.models import AgentSession
from ..catalog.models import AgentModel
from ..storage.models import CommitRecord, CommitStatus, SessionRecord
from ..storage.store import SessionStore, SessionStoreError
from .listeners import ListenerSet

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Single source of truth for which threads have sessions and which are active.

    One lock guards the map and every record's fields. Store writes happen under
    that lock too, so callers must release :meth:`edit` before calling :meth:`save`.
    """

    def __init__(
        self,
        store: SessionStore,
        agent_client: AgentClient,
        *,
        listeners: ListenerSet | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._agent = agent_client
        self._listeners = listeners
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()
        self._create_lock = asyncio.Lock()

    @property
    def store(self) -> SessionStore:
        return self._store

    async def get_or_create(
        self,
        thread_id: str,
        worktree_path: str,
        repository_path: str,
        repository_name: str,
        *,
        user_id: str = "",
        model: AgentModel | None = None,
    ) -> SessionRecord | None:
        """Return the thread's session, creating a remote one when none exists.

        Returns ``None`` when the remote session or the sessions directory cannot be created.
        """

        record = await self.lazy_load(thread_id)
        if record is not None:
            return await self._activate(record, user_id)

        async with self._create_lock:
            record = await self.lazy_load(thread_id)
            if record is not None:
                return await self._activate(record, user_id)

            try:
                self._store.ensure_directory()
            except SessionStoreError as exc:
                logger.error("Cannot initialize session store", extra={"thread_id": thread_id, "error": str(exc)})
                return None

            directory = str(Path(worktree_path).resolve())
            try:
                session = await self._agent.create_session(directory)
            except AgentClientError as exc:
                logger.error("Failed to create agent session", extra={"thread_id": thread_id, "error": str(exc)})
                return None

            record = SessionRecord(
                thread_id=thread_id,
                session_id=session.id,
                model=model,
                worktree_path=directory,
                repository_path=repository_path,
                repository_name=repository_name,
                created_at=self._clock(),
                session=session,
                active=True,
                user_id=user_id,
            )
            async with self._lock:
                self._records[thread_id] = record

        logger.info("Created session", extra={"thread_id": thread_id, "session_id": session.id})
        try:
            await self.save(record)
        except SessionStoreError as exc:
            logger.error("Failed to persist new session", extra={"thread_id": thread_id, "error": str(exc)})
        return record

    async def _activate(self, record: SessionRecord, user_id: str) -> SessionRecord:
        async with self._lock:
            record.active = True
            if user_id:
                record.user_id = user_id
        return record

    async def lazy_load(self, thread_id: str) -> SessionRecord | None:
        """Return the cached record, loading it from disk on first touch.

        The stored agent session id is trusted as-is; an unreadable file counts as absent.
        """

        async with self._lock:
            cached = self._records.get(thread_id)
            if cached is not None:
                return cached
            try:
                record = self._store.load(thread_id)
            except SessionStoreError as exc:
                logger.warning("Ignoring unreadable session file", extra={"thread_id": thread_id, "error": str(exc)})
                return None
            if record is None:
                return None
            if record.session is None:
                record.session = AgentSession(id=record.session_id)
            self._records[thread_id] = record
        logger.debug("Loaded session from disk", extra={"thread_id": thread_id, "session_id": record.session_id})
        return record

    async def get(self, thread_id: str) -> SessionRecord | None:
        async with self._lock:
            return self._records.get(thread_id)

    @asynccontextmanager
    async def edit(self, thread_id: str) -> AsyncIterator[SessionRecord | None]:
        """Hold the registry lock while reading or mutating one cached record."""

        async with self._lock:
            yield self._records.get(thread_id)

    async def set_active(self, thread_id: str, active: bool) -> bool:
        async with self._lock:
            record = self._records.get(thread_id)
            if record is None:
                return False
            record.active = active
            return True

    async def set_active_by_session_id(self, session_id: str, active: bool) -> bool:
        async with self._lock:
            for record in self._records.values():
                if record.session_id == session_id:
                    record.active = active
                    return True
        return False

    async def is_active(self, thread_id: str) -> bool:
        async with self._lock:
            record = self._records.get(thread_id)
            return record is not None and record.active

    async def set_user(self, thread_id: str, user_id: str) -> bool:
        """Record the user to mention when the current agent turn completes."""

        async with self._lock:
            record = self._records.get(thread_id)
            if record is None:
                return False
            record.user_id = user_id
            return True

    async def set_model(self, thread_id: str, model: AgentModel) -> SessionRecord | None:
        async with self._lock:
            record = self._records.get(thread_id)
            if record is not None:
                record.model = model
        if record is not None:
            await self._save_quietly(record)
        return record

    async def append_commit(self, thread_id: str, summary: str) -> CommitRecord | None:
        """Append a pending commit record and persist it."""

        commit = CommitRecord(summary=summary, timestamp=self._clock())
        async with self._lock:
            record = self._records.get(thread_id)
            if record is None:
                return None
            record.commits.append(commit)
        await self._save_quietly(record)
        return commit

    async def update_last_commit(
        self,
        thread_id: str,
        status: CommitStatus,
        *,
        commit_hash: str | None = None,
    ) -> CommitRecord | None:
        """Update the newest commit record only; earlier entries are immutable."""

        async with self._lock:
            record = self._records.get(thread_id)
            if record is None or not record.commits:
                return None
            commit = record.commits[-1]
            commit.status = status
            if commit_hash is not None:
                commit.hash = commit_hash
        await self._save_quietly(record)
        return commit

    async def save(self, record: SessionRecord) -> None:
        """Write the record's persisted fields; store errors propagate."""

        async with self._lock:
            self._store.save(record)

    async def _save_quietly(self, record: SessionRecord) -> None:
        try:
            await self.save(record)
        except SessionStoreError as exc:
            logger.error("Failed to persist session", extra={"thread_id": record.thread_id, "error": str(exc)})

    async def cleanup(self, thread_id: str) -> None:
        """Stop the thread's listener, evict the record and delete its file."""

        if self._listeners is not None:
            await self._listeners.stop(thread_id)
        async with self._lock:
            self._records.pop(thread_id, None)
            try:
                self._store.delete(thread_id)
            except SessionStoreError as exc:
                logger.error("Failed to delete session file", extra={"thread_id": thread_id, "error": str(exc)})
        logger.info("Cleaned up session", extra={"thread_id": thread_id})

    async def snapshot(self) -> list[dict[str, object]]:
        async with self._lock:
            return [
                {
                    "thread_id": record.thread_id,
                    "session_id": record.session_id,
                    "repository": record.repository_name,
                    "model": record.model.label if record.model else None,
                    "active": record.active,
                    "streaming": record.is_streaming,
                    "commits": len(record.commits),
                }
                for record in self._records.values()
            ]


__all__ = ["SessionRegistry"]
