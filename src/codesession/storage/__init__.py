"""Storage abstractions for session records."""

from .models import CommitRecord, CommitStatus, SessionRecord
from .store import SessionStore, SessionStoreError, from_document, to_document

__all__ = [
    "CommitRecord",
    "CommitStatus",
    "SessionRecord",
    "SessionStore",
    "SessionStoreError",
    "from_document",
    "to_document",
]
