"""In-process persistence collaborator over a :class:`BoardRepository`."""

from __future__ import annotations

import asyncio

from ..board.errors import PersistenceError, PersistenceErrorKind, SyncError
from ..board.model import StatusDefinition, Task, TaskFilters, Team
from .file_repo import BoardRepository, TaskNotFoundError, UnknownStatusError
from .interfaces import TaskBackend


class LocalBackend(TaskBackend):
    """Run repository calls in a worker thread and translate their errors.

    Usage::

        backend = LocalBackend(FileBoardRepository(project_dir / ".board_sync"))
        tasks = await backend.fetch_tasks(TaskFilters(team=Team.WEB))
    """

    def __init__(self, repository: BoardRepository) -> None:
        self.repository = repository

    async def fetch_tasks(self, filters: TaskFilters) -> list[Task]:
        try:
            return await asyncio.to_thread(self.repository.list_tasks, filters)
        except (OSError, RuntimeError) as exc:
            raise SyncError(f"Task fetch failed: {exc}") from exc

    async def fetch_status_definitions(self, team: Team) -> list[StatusDefinition]:
        try:
            return await asyncio.to_thread(self.repository.status_definitions, team)
        except (OSError, RuntimeError) as exc:
            raise SyncError(f"Status fetch failed: {exc}") from exc

    async def update_task_status(self, task_id: str, new_status: str) -> Task:
        try:
            return await asyncio.to_thread(self.repository.update_status, task_id, new_status)
        except TaskNotFoundError as exc:
            raise PersistenceError(PersistenceErrorKind.NOT_FOUND, f"Task {task_id} not found", task_id=task_id) from exc
        except UnknownStatusError as exc:
            raise PersistenceError(PersistenceErrorKind.REJECTED, str(exc), task_id=task_id) from exc
        except (OSError, RuntimeError) as exc:
            raise PersistenceError(PersistenceErrorKind.NETWORK, str(exc), task_id=task_id) from exc

    async def delete_task(self, task_id: str) -> None:
        try:
            await asyncio.to_thread(self.repository.delete_task, task_id)
        except TaskNotFoundError as exc:
            raise PersistenceError(PersistenceErrorKind.NOT_FOUND, f"Task {task_id} not found", task_id=task_id) from exc
        except (OSError, RuntimeError) as exc:
            raise PersistenceError(PersistenceErrorKind.NETWORK, str(exc), task_id=task_id) from exc

    async def create_task(self, task: Task) -> Task:
        try:
            return await asyncio.to_thread(self.repository.create_task, task)
        except ValueError as exc:
            raise PersistenceError(PersistenceErrorKind.REJECTED, str(exc), task_id=task.id) from exc
        except (OSError, RuntimeError) as exc:
            raise PersistenceError(PersistenceErrorKind.NETWORK, str(exc), task_id=task.id) from exc
