"""JSON file persistence for session records."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from pydantic import ValidationError

from ..agent.models import AgentSession
from ..catalog.models import AgentModel
from .models import CommitRecord, CommitStatus, SessionRecord

logger = logging.getLogger(__name__)


class SessionStoreError(RuntimeError):
    """Raised when a session file cannot be read, parsed or written."""


def to_document(record: SessionRecord) -> dict[str, Any]:
    """Return the persisted fields of ``record`` as a JSON-ready mapping."""

    return {
        "thread_id": record.thread_id,
        "session_id": record.session_id,
        "model": (
            {"provider_id": record.model.provider_id, "model_id": record.model.model_id}
            if record.model is not None
            else None
        ),
        "worktree_path": record.worktree_path,
        "repository_path": record.repository_path,
        "repository_name": record.repository_name,
        "created_at": record.created_at.isoformat(),
        "commits": [
            {
                "hash": commit.hash,
                "summary": commit.summary,
                "timestamp": commit.timestamp.isoformat(),
                "status": commit.status.value,
            }
            for commit in record.commits
        ],
    }


def from_document(document: Any) -> SessionRecord:
    """Rebuild a record from a persisted mapping; in-memory fields start at zero values."""

    if not isinstance(document, dict):
        raise SessionStoreError("session document must be a JSON object")
    try:
        model_raw = document.get("model")
        model = AgentModel.model_validate(model_raw) if model_raw else None
        commits = [
            CommitRecord(
                hash=str(item.get("hash", "")),
                summary=str(item.get("summary", "")),
                timestamp=datetime.fromisoformat(item["timestamp"]),
                status=CommitStatus(item.get("status", CommitStatus.PENDING.value)),
            )
            for item in document.get("commits") or []
        ]
        record = SessionRecord(
            thread_id=str(document["thread_id"]),
            session_id=str(document["session_id"]),
            model=model,
            worktree_path=str(document["worktree_path"]),
            repository_path=str(document.get("repository_path", "")),
            repository_name=str(document.get("repository_name", "")),
            created_at=datetime.fromisoformat(document["created_at"]),
            commits=commits,
        )
    except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as exc:
        raise SessionStoreError(f"invalid session document: {exc}") from exc

    if record.session_id:
        record.session = AgentSession(id=record.session_id)
    return record


class SessionStore:
    """One JSON file per thread under a sessions directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, thread_id: str) -> Path:
        if not thread_id or "/" in thread_id or thread_id in {".", ".."}:
            raise SessionStoreError(f"invalid thread id {thread_id!r}")
        return self._directory / f"{thread_id}.json"

    def ensure_directory(self) -> None:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SessionStoreError(f"cannot create sessions directory {self._directory}: {exc}") from exc

    def load(self, thread_id: str) -> SessionRecord | None:
        """Return the stored record, or ``None`` when the thread has no file."""

        path = self.path_for(thread_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise SessionStoreError(f"cannot read {path}: {exc}") from exc

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SessionStoreError(f"cannot parse {path}: {exc}") from exc
        return from_document(document)

    def save(self, record: SessionRecord) -> None:
        """Atomically replace the thread's file with the record's persisted fields."""

        path = self.path_for(record.thread_id)
        self.ensure_directory()
        payload = json.dumps(to_document(record), indent=2)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{record.thread_id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise SessionStoreError(f"cannot write {path}: {exc}") from exc

        logger.debug(
            "Saved session record",
            extra={"thread_id": record.thread_id, "session_id": record.session_id},
        )

    def delete(self, thread_id: str) -> None:
        path = self.path_for(thread_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise SessionStoreError(f"cannot delete {path}: {exc}") from exc

    def list_records(self, errors: list[str] | None = None) -> Iterator[SessionRecord]:
        """Yield every parsable record; parse failures are appended to ``errors``."""

        if not self._directory.is_dir():
            return
        for path in sorted(self._directory.glob("*.json")):
            try:
                record = self.load(path.stem)
            except SessionStoreError as exc:
                if errors is not None:
                    errors.append(str(exc))
                continue
            if record is not None:
                yield record


__all__ = ["SessionStore", "SessionStoreError", "from_document", "to_document"]
