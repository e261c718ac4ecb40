"""Data models for persisted session tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..agent.models import AgentSession
from ..catalog.models import AgentModel


class CommitStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    NO_CHANGES = "no_changes"


@dataclass(slots=True)
class CommitRecord:
    summary: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: CommitStatus = CommitStatus.PENDING
    hash: str = ""


@dataclass(slots=True)
class SessionRecord:
    """Pairing of a chat thread with an agent session and a worktree.

    Fields after ``commits`` live only in memory and are reset whenever the
    record is loaded from disk.
    """

    thread_id: str
    session_id: str
    model: AgentModel | None
    worktree_path: str
    repository_path: str
    repository_name: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    commits: list[CommitRecord] = field(default_factory=list)

    session: AgentSession | None = None
    active: bool = False
    is_streaming: bool = False
    status_message_id: str | None = None
    status_message_content: str = ""
    status_continued: bool = False
    status_edited_at: float | None = None
    tool_history: str = ""
    current_response: str = ""
    user_id: str = ""

    @property
    def last_commit(self) -> CommitRecord | None:
        return self.commits[-1] if self.commits else None


__all__ = ["CommitRecord", "CommitStatus", "SessionRecord"]
