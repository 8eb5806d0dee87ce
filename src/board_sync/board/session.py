"""One user's live view of the board.

``BoardSession`` wires a :class:`TaskStore`, an :class:`OptimisticMutator`
and a :class:`SyncPoller` around a single backend, keeps the status
vocabulary of the active team, and projects columns through the user's
view filter.  Column subscribers are only called when the projection
actually changes by value.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from ..backend.interfaces import TaskBackend
from ..config import BoardSyncConfig
from ..constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SEARCH_DEBOUNCE_SECONDS,
    DEFAULT_SYNC_FAILURE_THRESHOLD,
)
from .errors import PersistenceError, PersistenceErrorKind, RejectReason, SyncError, ValidationError
from .events import MoveEventBus
from .model import Column, StatusDefinition, Task, TaskFilters, Team, User
from .mutator import Destination, MoveResult, OptimisticMutator
from .permissions import can_create_in, users_with_status_access, validate_task_assignment, view_filter
from .poller import SyncPoller
from .projector import project_columns
from .store import PendingMove, TaskStore

ColumnsListener = Callable[[list[Column]], None]


class BoardSession:
    """Facade over the board engine for one user.

    Usage::

        async with BoardSession(backend, user) as session:
            session.subscribe_columns(render)
            result = await session.request_move("task-1", "creative_scripting")
    """

    def __init__(
        self,
        backend: TaskBackend,
        user: User,
        *,
        filters: Optional[TaskFilters] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        search_debounce: float = DEFAULT_SEARCH_DEBOUNCE_SECONDS,
        failure_threshold: int = DEFAULT_SYNC_FAILURE_THRESHOLD,
        events: Optional[MoveEventBus] = None,
        users: Optional[Iterable[User]] = None,
    ) -> None:
        self.backend = backend
        self.user = user
        # assignee directory; None skips assignment checks
        self.users: Optional[dict[str, User]] = None if users is None else {u.id: u for u in users}
        self.store = TaskStore()
        self.events = events or MoveEventBus()
        self._status_defs: dict[Team, list[StatusDefinition]] = {}
        self.mutator = OptimisticMutator(
            self.store,
            backend,
            self.events,
            known_statuses=self._known_codes,
        )
        self.poller = SyncPoller(
            self.store,
            backend,
            filters or TaskFilters(team=user.team),
            interval=poll_interval,
            debounce=search_debounce,
            failure_threshold=failure_threshold,
        )
        self._column_listeners: list[ColumnsListener] = []
        self._last_columns: Optional[list[Column]] = None
        self._unsubscribe_store = self.store.subscribe(self._on_store_change)

    @classmethod
    def from_config(cls, backend: TaskBackend, user: User, config: BoardSyncConfig, **kwargs: Any) -> "BoardSession":
        return cls(
            backend,
            user,
            poll_interval=config.poll_interval_seconds,
            search_debounce=config.search_debounce_seconds,
            failure_threshold=config.sync_failure_threshold,
            **kwargs,
        )

    # -- lifecycle ---------------------------------------------------------

    async def load(self) -> bool:
        """Fetch the active team's vocabulary and the first task set.

        Returns False if the vocabulary could not be loaded; the board then
        stays empty until the next :meth:`load` or team switch.
        """
        loaded = await self._ensure_statuses(self.team)
        await self.poller.refresh()
        self._publish_columns()
        return loaded

    def start(self) -> None:
        self.poller.start()

    async def stop(self) -> None:
        """Stop polling; in-flight moves still run to completion."""
        await self.poller.stop()
        await self.mutator.drain()

    async def close(self) -> None:
        await self.stop()
        self._unsubscribe_store()

    async def __aenter__(self) -> "BoardSession":
        await self.load()
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- reads -------------------------------------------------------------

    @property
    def filters(self) -> TaskFilters:
        return self.poller.filters

    @property
    def team(self) -> Team:
        return self.poller.filters.team

    def status_definitions(self, team: Optional[Team] = None) -> list[StatusDefinition]:
        return list(self._status_defs.get(team or self.team, []))

    def columns(self) -> list[Column]:
        team = self.team
        return project_columns(
            self._status_defs.get(team, []),
            self.store.tasks_for_team(team),
            view_filter(self.user, team),
        )

    def column(self, column_id: str) -> Optional[Column]:
        return next((c for c in self.columns() if c.id == column_id), None)

    def assignable_users(self, status: str) -> list[User]:
        """Users from the directory who may own a task in *status* of the active team."""
        return users_with_status_access(status, (self.users or {}).values(), self.team)

    def subscribe_columns(self, callback: ColumnsListener) -> Callable[[], None]:
        """Call *callback(columns)* whenever the projection changes by value."""
        self._column_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._column_listeners:
                self._column_listeners.remove(callback)

        return _unsubscribe

    def _on_store_change(self, _snapshot: tuple[Task, ...]) -> None:
        self._publish_columns()

    def _publish_columns(self) -> None:
        if not self._column_listeners:
            return
        columns = self.columns()
        if columns == self._last_columns:
            return
        self._last_columns = columns
        for callback in list(self._column_listeners):
            try:
                callback(columns)
            except Exception:
                logger.exception("Column subscriber failed")

    # -- writes ------------------------------------------------------------

    async def request_move(self, task_id: str, dest: Destination) -> MoveResult:
        return await self.mutator.request_move(task_id, dest, self.user)

    async def create_task(
        self,
        title: str,
        status: str,
        *,
        description: str = "",
        priority: str = "medium",
        assignee_id: Optional[str] = None,
        client_id: Optional[str] = None,
        due_date: Optional[str] = None,
    ) -> Task:
        """Create a task in the active team's *status* column.

        Raises:
            ValidationError: unknown column, the user may not create there, or
                the assignee cannot own a task in that column.
            PersistenceError: the backend refused the task.
        """
        team = self.team
        definition = next((d for d in self._status_defs.get(team, []) if d.code == status), None)
        if definition is None:
            raise ValidationError(RejectReason.UNKNOWN_COLUMN, f"Unknown status {status!r} for team {team.value}")
        column = Column(team=team, status=status, name=definition.name, color=definition.color, position=definition.position)
        if not can_create_in(self.user, column):
            raise ValidationError(RejectReason.PERMISSION_DENIED, f"{self.user.id} may not create tasks in {column.id}")
        if assignee_id and self.users is not None:
            error = validate_task_assignment(self.users.get(assignee_id), status, team)
            if error:
                raise ValidationError(RejectReason.INVALID_ASSIGNEE, error)
        created = await self.backend.create_task(Task(
            title=title,
            description=description,
            team=team,
            status=status,
            priority=priority,
            assignee_id=assignee_id,
            client_id=client_id,
            due_date=due_date,
            created_by=self.user.id,
        ))
        self.store.upsert(created)
        logger.info("Created task {} in {}", created.id, column.id)
        return created

    async def delete_task(self, task_id: str) -> Task:
        """Remove a task locally at once, then delete it remotely.

        Any in-flight move for the task is detached.  If the remote delete
        fails the task is put back and the error is re-raised; a move that
        is still persisting is reattached so its commit or rollback lands,
        and one that settled meanwhile leaves the task at the settled status.
        """
        move = self.store.pending_move(task_id)
        self.mutator.cancel(task_id)
        removed = self.store.remove(task_id)
        if removed is None:
            raise ValidationError(RejectReason.TASK_NOT_FOUND, f"Task {task_id} is not on the board")
        try:
            await self.backend.delete_task(task_id)
        except PersistenceError as exc:
            if exc.kind != PersistenceErrorKind.NOT_FOUND:
                self._restore(removed, move)
                logger.warning("Restored task {} after failed delete: {}", task_id, exc)
                raise
            logger.info("Task {} was already deleted remotely", task_id)
        else:
            logger.info("Deleted task {}", task_id)
        if move is not None:
            self.mutator.forget(move)
        return removed

    def _restore(self, task: Task, move: Optional[PendingMove]) -> None:
        if move is None:
            self.store.upsert(task)
            return
        settled = self.mutator.reattach(move)
        if settled is None:
            self.store.restore(task, move)
        else:
            self.store.upsert(task.with_status(settled))

    # -- scope -------------------------------------------------------------

    async def set_filters(
        self,
        filters: Optional[TaskFilters] = None,
        *,
        debounce: Optional[float] = None,
        **changes: Any,
    ) -> asyncio.Task:
        """Change the fetch scope; returns the scheduled refetch.

        Pass a complete :class:`TaskFilters` or keyword changes, e.g.
        ``await session.set_filters(search_query="logo")``.
        """
        new_filters = replace(filters or self.filters, **changes)
        if new_filters.team != self.team:
            await self._ensure_statuses(new_filters.team)
        job = self.poller.set_filters(new_filters, debounce)
        self._publish_columns()
        return job

    async def set_team(self, team: Team) -> asyncio.Task:
        # clients belong to one team, so the client filter does not carry over
        return await self.set_filters(team=Team(team), client_id=None, debounce=0)

    async def search(self, query: str) -> asyncio.Task:
        return await self.set_filters(search_query=query or None)

    # -- internals ---------------------------------------------------------

    def _known_codes(self, team: Team) -> Optional[list[str]]:
        defs = self._status_defs.get(team)
        if defs is None:
            return None
        return [d.code for d in defs]

    async def _ensure_statuses(self, team: Team) -> bool:
        if team in self._status_defs:
            return True
        try:
            defs = await self.backend.fetch_status_definitions(team)
        except SyncError as exc:
            logger.warning("Could not load status vocabulary for {}: {}", team.value, exc)
            return False
        self._status_defs[team] = sorted(defs, key=lambda d: d.position)
        logger.debug("Loaded {} status definition(s) for {}", len(defs), team.value)
        return True
