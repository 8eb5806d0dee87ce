"""Error taxonomy for the board engine.

``ValidationError`` is raised (or reported) before any network call and never
mutates state.  ``PersistenceError`` comes from the persistence collaborator
and triggers a rollback.  ``SyncError`` comes from poll fetches and is retried
on the next tick.  None of them is fatal to a session.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class RejectReason(str, Enum):
    CROSS_TEAM = "cross_team"
    PERMISSION_DENIED = "permission_denied"
    TASK_NOT_FOUND = "task_not_found"
    UNKNOWN_COLUMN = "unknown_column"
    INVALID_ASSIGNEE = "invalid_assignee"


class PersistenceErrorKind(str, Enum):
    NETWORK = "network"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    UNEXPECTED = "unexpected"


class BoardSyncError(Exception):
    """Base class for every error raised by ``board_sync``."""


class ValidationError(BoardSyncError):
    def __init__(self, reason: RejectReason, message: str = "") -> None:
        self.reason = reason
        super().__init__(message or reason.value)


class PersistenceError(BoardSyncError):
    def __init__(
        self,
        kind: PersistenceErrorKind,
        message: str = "",
        *,
        task_id: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.task_id = task_id
        super().__init__(message or kind.value)


class SyncError(BoardSyncError):
    """A poll fetch failed."""
