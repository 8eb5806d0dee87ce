"""Provide the public `board_sync` package exports."""

from __future__ import annotations

__version__ = "0.1.0"

from .board.model import Column, Role, SortBy, StatusDefinition, Task, TaskFilters, Team, User
from .board.projector import project_columns
from .board.session import BoardSession

__all__ = [
    "BoardSession",
    "Column",
    "Role",
    "SortBy",
    "StatusDefinition",
    "Task",
    "TaskFilters",
    "Team",
    "User",
    "__version__",
    "project_columns",
]
