"""Shared fixtures: a controllable in-process backend and sample board data."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Iterable, Optional

import pytest
from loguru import logger

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from board_sync.backend.interfaces import TaskBackend  # noqa: E402
from board_sync.backend.query import filter_tasks  # noqa: E402
from board_sync.board.errors import PersistenceError, PersistenceErrorKind  # noqa: E402
from board_sync.board.model import (  # noqa: E402
    DEFAULT_STATUS_DEFINITIONS,
    Role,
    StatusDefinition,
    Task,
    TaskFilters,
    Team,
    User,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    logger.remove()
    logger.add(lambda message: sys.stderr.write(message))


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeBackend(TaskBackend):
    """In-memory backend whose calls can be held open and failed on demand.

    With ``hold_fetches`` / ``hold_updates`` / ``hold_deletes`` set, each call
    parks on its own event (appended to the matching ``*_waiters`` list)
    until a test releases it.  A fetch snapshots the task set when it is
    called, the way a server answers with the state it saw when the request
    arrived.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        statuses: Optional[dict[Team, list[StatusDefinition]]] = None,
    ) -> None:
        self.tasks: dict[str, Task] = {t.id: t for t in tasks}
        self.statuses = statuses if statuses is not None else {
            team: list(defs) for team, defs in DEFAULT_STATUS_DEFINITIONS.items()
        }
        self.fetch_calls: list[TaskFilters] = []
        self.update_calls: list[tuple[str, str]] = []
        self.delete_calls: list[str] = []
        self.hold_fetches = False
        self.hold_updates = False
        self.hold_deletes = False
        self.fetch_waiters: list[asyncio.Event] = []
        self.update_waiters: list[asyncio.Event] = []
        self.delete_waiters: list[asyncio.Event] = []
        self.fetch_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None

    def release_fetch(self, index: int = 0) -> None:
        self.fetch_waiters[index].set()

    def release_update(self, index: int = 0) -> None:
        self.update_waiters[index].set()

    def release_delete(self, index: int = 0) -> None:
        self.delete_waiters[index].set()

    async def fetch_tasks(self, filters: TaskFilters) -> list[Task]:
        self.fetch_calls.append(filters)
        snapshot = filter_tasks(self.tasks.values(), filters)
        error = self.fetch_error
        if self.hold_fetches:
            waiter = asyncio.Event()
            self.fetch_waiters.append(waiter)
            await waiter.wait()
        if error is not None:
            raise error
        return snapshot

    async def fetch_status_definitions(self, team: Team) -> list[StatusDefinition]:
        if self.status_error is not None:
            raise self.status_error
        return sorted(self.statuses.get(team, []), key=lambda d: d.position)

    async def update_task_status(self, task_id: str, new_status: str) -> Task:
        self.update_calls.append((task_id, new_status))
        if self.hold_updates:
            waiter = asyncio.Event()
            self.update_waiters.append(waiter)
            await waiter.wait()
        if self.update_error is not None:
            raise self.update_error
        task = self.tasks.get(task_id)
        if task is None:
            raise PersistenceError(PersistenceErrorKind.NOT_FOUND, f"Task {task_id} not found", task_id=task_id)
        self.tasks[task_id] = task.with_status(new_status)
        return self.tasks[task_id]

    async def delete_task(self, task_id: str) -> None:
        self.delete_calls.append(task_id)
        if self.hold_deletes:
            waiter = asyncio.Event()
            self.delete_waiters.append(waiter)
            await waiter.wait()
        if self.delete_error is not None:
            raise self.delete_error
        if self.tasks.pop(task_id, None) is None:
            raise PersistenceError(PersistenceErrorKind.NOT_FOUND, f"Task {task_id} not found", task_id=task_id)

    async def create_task(self, task: Task) -> Task:
        self.tasks[task.id] = task
        return task


def make_task(task_id: str, status: str = "not_started", team: Team = Team.CREATIVE, **kwargs) -> Task:
    kwargs.setdefault("title", f"Task {task_id}")
    kwargs.setdefault("created_at", f"2026-01-01T00:00:{len(task_id):02d}+00:00")
    return Task(id=task_id, team=team, status=status, **kwargs)


@pytest.fixture
def creative_tasks() -> list[Task]:
    return [
        make_task("c1", "not_started", title="Launch teaser", created_at="2026-01-01T09:00:00+00:00"),
        make_task("c2", "scripting", title="Brand film", created_at="2026-01-01T10:00:00+00:00"),
        make_task("c3", "approved", title="Product shots", created_at="2026-01-01T11:00:00+00:00"),
    ]


@pytest.fixture
def web_tasks() -> list[Task]:
    return [
        make_task("w1", "ui_started", team=Team.WEB, title="Landing page", created_at="2026-01-02T09:00:00+00:00"),
        make_task("w2", "testing", team=Team.WEB, title="Checkout flow", created_at="2026-01-02T10:00:00+00:00"),
    ]


@pytest.fixture
def backend(creative_tasks: list[Task], web_tasks: list[Task]) -> FakeBackend:
    return FakeBackend([*creative_tasks, *web_tasks])


@pytest.fixture
def admin() -> User:
    return User(id="u-admin", role=Role.ADMIN, team=Team.CREATIVE, name="Admin")


@pytest.fixture
def employee() -> User:
    return User(
        id="u-emp",
        role=Role.EMPLOYEE,
        team=Team.CREATIVE,
        allowed_statuses=frozenset({"not_started", "scripting"}),
        name="Editor",
    )


@pytest.fixture
def creative_statuses() -> list[StatusDefinition]:
    return list(DEFAULT_STATUS_DEFINITIONS[Team.CREATIVE])
