"""Persistence collaborators: the backend interface plus local and HTTP implementations."""

from __future__ import annotations

from .file_repo import BoardRepository, FileBoardRepository, InMemoryBoardRepository
from .http import HttpTaskBackend
from .interfaces import TaskBackend
from .local import LocalBackend

__all__ = [
    "BoardRepository",
    "FileBoardRepository",
    "HttpTaskBackend",
    "InMemoryBoardRepository",
    "LocalBackend",
    "TaskBackend",
]
