from __future__ import annotations

from abc import ABC, abstractmethod

from ..board.model import StatusDefinition, Task, TaskFilters, Team


class TaskBackend(ABC):
    """Persistence collaborator consumed by the board engine.

    Mutating calls raise :class:`~board_sync.board.errors.PersistenceError`;
    fetches raise :class:`~board_sync.board.errors.SyncError`.
    """

    @abstractmethod
    async def fetch_tasks(self, filters: TaskFilters) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_status_definitions(self, team: Team) -> list[StatusDefinition]:
        raise NotImplementedError

    @abstractmethod
    async def update_task_status(self, task_id: str, new_status: str) -> Task:
        raise NotImplementedError

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create_task(self, task: Task) -> Task:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release transport resources; no-op by default."""
