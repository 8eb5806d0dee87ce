"""In-memory task cache for one board session.

The store is the single shared mutable resource of the engine.  Two writers
touch it:

* the optimistic mutator (:meth:`TaskStore.apply_move`,
  :meth:`TaskStore.commit_move`, :meth:`TaskStore.rollback_move`);
* the sync poller (:meth:`TaskStore.merge`).

Both go through the same in-flight rule: while a task has a pending move its
local value wins over anything a poll returns.  On top of that, every local
write records the newest poll generation issued so far (a *guard*); a poll
response issued at or before that generation cannot overwrite the id, since
it may predate the write.

Subscribers receive the new snapshot after every mutation.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from loguru import logger

from .model import Task, Team

Snapshot = tuple[Task, ...]
Subscriber = Callable[[Snapshot], None]


@dataclass(frozen=True)
class PendingMove:
    """Token for one optimistic move; commit/rollback must present it."""

    token: int
    task_id: str
    previous_status: str
    new_status: str


@dataclass(frozen=True)
class MergeResult:
    generation: int
    added: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    kept_local: tuple[str, ...] = ()
    changed: bool = False


class TaskStore:
    """Session-authoritative cache of :class:`Task` entities.

    Usage::

        store = TaskStore()
        unsubscribe = store.subscribe(lambda snapshot: render(snapshot))
        move = store.apply_move("task-1", "scripting")
        ...
        store.commit_move(move)
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}
        self._pending: dict[str, PendingMove] = {}
        self._guards: dict[str, int] = {}  # task id -> newest generation issued before the local write
        self._issued_generation = 0
        self._tokens = itertools.count(1)
        self._subscribers: list[Subscriber] = []
        self.version = 0

    # -- reads --------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        return tuple(self._tasks.values())

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def tasks_for_team(self, team: Team) -> list[Task]:
        return [t for t in self._tasks.values() if t.team == team]

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def is_in_flight(self, task_id: str) -> bool:
        return task_id in self._pending

    def in_flight_ids(self) -> frozenset[str]:
        return frozenset(self._pending)

    def pending_move(self, task_id: str) -> Optional[PendingMove]:
        return self._pending.get(task_id)

    # -- subscriptions -------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        self.version += 1
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Task store subscriber {} failed", getattr(callback, "__name__", callback))

    def _guard(self, task_id: str) -> None:
        self._guards[task_id] = self._issued_generation

    # -- collaborator writes -------------------------------------------------

    def upsert(self, task: Task) -> Task:
        """Insert or replace a task (creation / edit collaborators).

        A pending move keeps its optimistic status.
        """
        pending = self._pending.get(task.id)
        if pending is not None and task.status != pending.new_status:
            task = task.with_status(pending.new_status)
        self._tasks[task.id] = task
        self._guard(task.id)
        self._notify()
        return task

    def remove(self, task_id: str) -> Optional[Task]:
        """Drop a task and forget any pending move for it."""
        task = self._tasks.pop(task_id, None)
        self._pending.pop(task_id, None)
        if task is None:
            return None
        self._guard(task_id)
        self._notify()
        return task

    def restore(self, task: Task, move: Optional[PendingMove] = None) -> Task:
        """Put back a task dropped by :meth:`remove`, with its pending move.

        With *move* the task shows the optimistic status again and stays in
        flight, so the move's commit or rollback still lands.
        """
        if move is None or move.task_id != task.id:
            return self.upsert(task)
        self._pending[task.id] = move
        return self.upsert(task.with_status(move.new_status))

    # -- optimistic moves ----------------------------------------------------

    def apply_move(self, task_id: str, new_status: str) -> PendingMove:
        """Set *task_id* to *new_status* now and mark it in flight.

        Raises:
            KeyError: if the task is not in the store.
            RuntimeError: if the task already has a pending move.
        """
        task = self._tasks[task_id]
        if task_id in self._pending:
            raise RuntimeError(f"Task {task_id} already has a move in flight")
        move = PendingMove(
            token=next(self._tokens),
            task_id=task_id,
            previous_status=task.status,
            new_status=new_status,
        )
        self._pending[task_id] = move
        self._tasks[task_id] = task.with_status(new_status)
        self._notify()
        return move

    def commit_move(self, move: PendingMove) -> bool:
        """Clear the in-flight mark; the optimistic value stands.

        Returns False when the move is no longer current (task deleted).
        """
        if self._pending.get(move.task_id) != move:
            return False
        del self._pending[move.task_id]
        self._guard(move.task_id)
        self._notify()
        return True

    def rollback_move(self, move: PendingMove) -> bool:
        """Restore the pre-move status and clear the in-flight mark."""
        if self._pending.get(move.task_id) != move:
            return False
        del self._pending[move.task_id]
        task = self._tasks.get(move.task_id)
        if task is not None:
            self._tasks[move.task_id] = task.with_status(move.previous_status)
        self._guard(move.task_id)
        self._notify()
        return True

    # -- sync ----------------------------------------------------------------

    def note_sync_issued(self, generation: int) -> None:
        """Record that a poll with *generation* has been requested."""
        self._issued_generation = max(self._issued_generation, generation)

    def merge(self, fetched: Iterable[Task], generation: int) -> MergeResult:
        """Fold a poll response into the store.

        In-flight tasks and tasks guarded at or after *generation* keep their
        local value (or stay absent if deleted locally).  Everything else
        adopts the fetched value; tasks missing from the fetch are dropped.
        The fetch order becomes the board order.
        """
        protected = set(self._pending)
        protected.update(tid for tid, g in self._guards.items() if g >= generation)

        merged: dict[str, Task] = {}
        added: list[str] = []
        updated: list[str] = []
        kept: list[str] = []
        for task in fetched:
            if task.id in merged:
                continue
            if task.id in protected:
                local = self._tasks.get(task.id)
                if local is not None:
                    merged[task.id] = local
                    kept.append(task.id)
                continue
            previous = self._tasks.get(task.id)
            if previous is None:
                added.append(task.id)
            elif previous != task:
                updated.append(task.id)
            merged[task.id] = task

        removed: list[str] = []
        for task_id, local in self._tasks.items():
            if task_id in merged:
                continue
            if task_id in protected:
                merged[task_id] = local
                kept.append(task_id)
            else:
                removed.append(task_id)

        self._guards = {tid: g for tid, g in self._guards.items() if g >= generation}
        changed = list(merged.items()) != list(self._tasks.items())
        self._tasks = merged
        if changed:
            self._notify()
        return MergeResult(
            generation=generation,
            added=tuple(added),
            updated=tuple(updated),
            removed=tuple(removed),
            kept_local=tuple(kept),
            changed=changed,
        )
