"""Authoritative task and status storage.

Tasks live in ``tasks.yaml`` and status vocabularies in ``statuses.yaml``
inside the data directory (``.board_sync/`` by default).  All reads and
writes go through :meth:`BoardRepository.transaction`, which holds an
exclusive file lock, so several server processes can share one directory.
Missing vocabularies are seeded with the default Creative and Web sets.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ContextManager, Iterable, Iterator, Optional

from loguru import logger

from ..board.model import DEFAULT_STATUS_DEFINITIONS, StatusDefinition, Task, TaskFilters, Team
from ..constants import LOCK_FILE, STATUSES_FILE, TASKS_FILE
from ..io_utils import FileLock, atomic_write_yaml, load_yaml_with_error
from .query import filter_tasks


class UnknownStatusError(ValueError):
    """The status code is not in the team's vocabulary."""


class TaskNotFoundError(KeyError):
    pass


def _default_vocabularies() -> dict[Team, list[StatusDefinition]]:
    return {team: list(defs) for team, defs in DEFAULT_STATUS_DEFINITIONS.items()}


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------

class BoardTx:
    """In-memory view of the board, flushed when the transaction exits."""

    def __init__(self, tasks: list[Task], statuses: dict[Team, list[StatusDefinition]]) -> None:
        self.tasks = tasks
        self.statuses = statuses
        self.dirty = False

    def get(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def status_codes(self, team: Team) -> set[str]:
        return {d.code for d in self.statuses.get(team, [])}

    def require_status(self, team: Team, status: str) -> None:
        if status not in self.status_codes(team):
            raise UnknownStatusError(f"Unknown status {status!r} for team {team.value}")

    def add(self, task: Task) -> Task:
        if self.get(task.id) is not None:
            raise ValueError(f"Task {task.id} already exists")
        self.require_status(task.team, task.status)
        self.tasks.append(task)
        self.dirty = True
        return task

    def set_status(self, task_id: str, status: str) -> Task:
        for idx, task in enumerate(self.tasks):
            if task.id != task_id:
                continue
            self.require_status(task.team, status)
            if task.status != status:
                task = task.with_status(status)
                self.tasks[idx] = task
                self.dirty = True
            return task
        raise TaskNotFoundError(task_id)

    def remove(self, task_id: str) -> Task:
        for idx, task in enumerate(self.tasks):
            if task.id == task_id:
                del self.tasks[idx]
                self.dirty = True
                return task
        raise TaskNotFoundError(task_id)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class BoardRepository(ABC):
    """Synchronous CRUD over one board.  Subclasses supply :meth:`transaction`."""

    @abstractmethod
    def transaction(self) -> ContextManager[BoardTx]:
        raise NotImplementedError

    def list_tasks(self, filters: TaskFilters) -> list[Task]:
        with self.transaction() as tx:
            return filter_tasks(tx.tasks, filters)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self.transaction() as tx:
            return tx.get(task_id)

    def create_task(self, task: Task) -> Task:
        with self.transaction() as tx:
            return tx.add(task)

    def update_status(self, task_id: str, status: str) -> Task:
        with self.transaction() as tx:
            return tx.set_status(task_id, status)

    def delete_task(self, task_id: str) -> Task:
        with self.transaction() as tx:
            return tx.remove(task_id)

    def status_definitions(self, team: Team) -> list[StatusDefinition]:
        with self.transaction() as tx:
            return sorted(tx.statuses.get(Team(team), []), key=lambda d: d.position)


class InMemoryBoardRepository(BoardRepository):
    """Process-local repository for tests and demos."""

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        statuses: Optional[dict[Team, list[StatusDefinition]]] = None,
    ) -> None:
        self._tasks = list(tasks)
        self._statuses = statuses if statuses is not None else _default_vocabularies()
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[BoardTx]:
        with self._lock:
            tx = BoardTx(list(self._tasks), self._statuses)
            yield tx
            if tx.dirty:
                self._tasks = tx.tasks


class FileBoardRepository(BoardRepository):
    """YAML-backed repository rooted at *data_dir*.

    Usage::

        repo = FileBoardRepository(project_dir / ".board_sync")
        with repo.transaction() as tx:
            tx.set_status("task-abc123", "scripting")
            # saved on exit
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.tasks_path = self.data_dir / TASKS_FILE
        self.statuses_path = self.data_dir / STATUSES_FILE
        self._lock = FileLock(self.data_dir / LOCK_FILE)
        self._thread_lock = threading.Lock()

    # -- low-level I/O -----------------------------------------------------

    def _load_tasks(self) -> list[Task]:
        data, err = load_yaml_with_error(self.tasks_path, {})
        if err:
            raise RuntimeError(f"Cannot read task file: {err}")
        raw = data.get("tasks")
        return [Task.from_dict(item) for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []

    def _load_statuses(self) -> tuple[dict[Team, list[StatusDefinition]], bool]:
        data, err = load_yaml_with_error(self.statuses_path, {})
        if err:
            raise RuntimeError(f"Cannot read status file: {err}")
        raw = data.get("statuses")
        if not isinstance(raw, dict) or not raw:
            logger.info("Seeding default status vocabularies in {}", self.statuses_path)
            return _default_vocabularies(), True
        statuses: dict[Team, list[StatusDefinition]] = {}
        for team_raw, entries in raw.items():
            try:
                team = Team(str(team_raw))
            except ValueError:
                logger.warning("Ignoring status vocabulary for unknown team {!r}", team_raw)
                continue
            statuses[team] = [
                StatusDefinition.from_dict({**entry, "team": team.value})
                for entry in (entries or [])
                if isinstance(entry, dict)
            ]
        return statuses, False

    def _save_tasks(self, tasks: list[Task]) -> None:
        atomic_write_yaml(self.tasks_path, {"version": 1, "tasks": [t.to_dict() for t in tasks]})

    def _save_statuses(self, statuses: dict[Team, list[StatusDefinition]]) -> None:
        payload: dict[str, Any] = {
            team.value: [{k: v for k, v in d.to_dict().items() if k != "team"} for d in defs]
            for team, defs in statuses.items()
        }
        atomic_write_yaml(self.statuses_path, {"version": 1, "statuses": payload})

    # -- transaction -------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[BoardTx]:
        """Acquire the lock, load the board, yield it, and save on exit."""
        with self._thread_lock, self._lock:
            statuses, seeded = self._load_statuses()
            if seeded:
                self._save_statuses(statuses)
            tx = BoardTx(self._load_tasks(), statuses)
            yield tx
            if tx.dirty:
                self._save_tasks(tx.tasks)
