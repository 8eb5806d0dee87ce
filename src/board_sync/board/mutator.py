"""Optimistic status moves.

Each task id runs its own small state machine::

    IDLE -> VALIDATING -> OPTIMISTICALLY_APPLIED -> PERSISTING -> COMMITTED   -> IDLE
                                                              \\-> ROLLED_BACK -> IDLE

Validation and the optimistic write happen before the first suspension
point, so a rejection or the new local status is observable as soon as
``request_move`` is scheduled.  Moves on the same task are serialized: an
intent arriving while another is persisting waits in FIFO order and is
re-validated against the then-current local state.  Moves on different
tasks run concurrently.

The persistence call runs in its own task and is shielded: cancelling the
caller (navigation, shutdown) never abandons a move half way; its commit or
rollback still lands in the store by task id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from loguru import logger

from ..backend.interfaces import TaskBackend
from .errors import PersistenceError, PersistenceErrorKind, RejectReason
from .events import MoveEvent, MoveEventBus, MoveEventType
from .model import Column, ColumnRef, Team, User, parse_column_id
from .store import PendingMove, TaskStore
from .validator import Reject, validate_transition

Destination = Union[str, Column, ColumnRef]
StatusLookup = Callable[[Team], Optional[Iterable[str]]]


class MoveState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    OPTIMISTICALLY_APPLIED = "optimistically_applied"
    PERSISTING = "persisting"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class MoveOutcome(str, Enum):
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"
    NOOP = "noop"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MoveResult:
    outcome: MoveOutcome
    task_id: str
    column_id: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    reject_reason: Optional[RejectReason] = None
    error_kind: Optional[PersistenceErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (MoveOutcome.COMMITTED, MoveOutcome.NOOP)


class OptimisticMutator:
    """Validate, apply locally, persist, then commit or roll back.

    Parameters
    ----------
    store:
        The session's task cache.
    backend:
        Persistence collaborator providing ``update_task_status``.
    events:
        Bus receiving :class:`MoveEvent` notifications.
    known_statuses:
        Optional ``team -> status codes`` lookup; destinations outside a known
        vocabulary are rejected as unknown columns.  Returning ``None`` skips
        the check for that team.
    """

    def __init__(
        self,
        store: TaskStore,
        backend: TaskBackend,
        events: Optional[MoveEventBus] = None,
        known_statuses: Optional[StatusLookup] = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.events = events or MoveEventBus()
        self._known_statuses = known_statuses
        self._locks: dict[str, asyncio.Lock] = {}
        self._slots: dict[str, int] = {}  # task id -> callers holding or waiting on the lock
        self._states: dict[str, MoveState] = {}
        self._jobs: set[asyncio.Task] = set()
        self._detached: dict[int, Optional[str]] = {}  # cancelled move token -> status it settled to
        self._dest_ids: dict[int, str] = {}  # pending move token -> destination column id

    # -- introspection -----------------------------------------------------

    def state_of(self, task_id: str) -> MoveState:
        return self._states.get(task_id, MoveState.IDLE)

    def queued(self, task_id: str) -> int:
        """Number of intents for *task_id* waiting behind the current operation."""
        return max(self._slots.get(task_id, 0) - 1, 0)

    @property
    def persisting_count(self) -> int:
        return len(self._jobs)

    # -- public API --------------------------------------------------------

    async def request_move(self, task_id: str, dest: Destination, user: User) -> MoveResult:
        """Move *task_id* into the column *dest* on behalf of *user*.

        *dest* is a column id such as ``"creative_scripting"`` or a
        :class:`Column` / :class:`ColumnRef`.
        """
        dest_id = dest if isinstance(dest, str) else dest.id
        lock = self._locks.setdefault(task_id, asyncio.Lock())
        self._slots[task_id] = self._slots.get(task_id, 0) + 1
        if lock.locked():
            self._emit(MoveEventType.QUEUED, task_id, dest_id)
        try:
            await lock.acquire()
        except BaseException:
            self._release_slot(task_id)
            raise

        handed_off = False
        try:
            outcome = self._begin(task_id, dest, dest_id, user)
            if isinstance(outcome, MoveResult):
                return outcome
            move = outcome
            job = asyncio.get_running_loop().create_task(self._persist(move, dest_id, lock))
            self._jobs.add(job)
            job.add_done_callback(self._jobs.discard)
            handed_off = True
            return await asyncio.shield(job)
        finally:
            if not handed_off:
                lock.release()
                self._release_slot(task_id)

    def cancel(self, task_id: str) -> bool:
        """Detach the in-flight move of a task that is being deleted.

        The persistence call keeps running; when it resolves its commit or
        rollback is dropped.  Returns True if a move was in flight.
        """
        move = self.store.pending_move(task_id)
        if move is None:
            return False
        self._detached[move.token] = None
        self._emit(
            MoveEventType.CANCELLED,
            task_id,
            self._dest_ids.get(move.token, ""),
            previous_status=move.previous_status,
            new_status=move.new_status,
        )
        logger.info("Cancelled in-flight move of {} ({} -> {})", task_id, move.previous_status, move.new_status)
        return True

    def reattach(self, move: PendingMove) -> Optional[str]:
        """Undo :meth:`cancel` after a failed delete.

        Returns None while the move is still persisting; its commit or
        rollback will land once the caller puts the pending move back in the
        store.  Otherwise returns the status the move settled to.
        """
        if move.token not in self._detached:
            return None
        if move.token in self._dest_ids:
            del self._detached[move.token]
            logger.info("Reattached in-flight move of {}", move.task_id)
            return None
        return self._detached.pop(move.token) or move.previous_status

    def forget(self, move: PendingMove) -> None:
        """Drop bookkeeping for a detached move whose task is gone for good."""
        self._detached.pop(move.token, None)

    async def drain(self) -> None:
        """Wait until every persisting move has resolved."""
        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    # -- internals ---------------------------------------------------------

    def _emit(self, event_type: MoveEventType, task_id: str, column_id: str, **details: Optional[str]) -> None:
        self.events.emit(MoveEvent(type=event_type, task_id=task_id, column_id=column_id, **details))

    def _release_slot(self, task_id: str) -> None:
        remaining = self._slots.get(task_id, 1) - 1
        if remaining <= 0:
            self._slots.pop(task_id, None)
            self._locks.pop(task_id, None)
            self._states.pop(task_id, None)
        else:
            self._slots[task_id] = remaining

    def _reject(self, task_id: str, dest_id: str, reason: RejectReason) -> MoveResult:
        self._states[task_id] = MoveState.IDLE
        self._emit(MoveEventType.REJECTED, task_id, dest_id, reason=reason.value)
        logger.info("Rejected move of {} to {}: {}", task_id, dest_id, reason.value)
        return MoveResult(MoveOutcome.REJECTED, task_id, dest_id, reject_reason=reason, message=reason.value)

    def _begin(
        self,
        task_id: str,
        dest: Destination,
        dest_id: str,
        user: User,
    ) -> Union[MoveResult, PendingMove]:
        """Validate and, if accepted, apply the move locally.  Never suspends.

        Returns the final result for rejections and no-ops, or the pending
        move to persist.
        """
        self._states[task_id] = MoveState.VALIDATING
        self._emit(MoveEventType.VALIDATING, task_id, dest_id)

        if isinstance(dest, str):
            try:
                ref = parse_column_id(dest)
            except ValueError:
                return self._reject(task_id, dest_id, RejectReason.UNKNOWN_COLUMN)
        else:
            ref = ColumnRef(team=dest.team, status=dest.status)

        task = self.store.get(task_id)
        if task is None:
            return self._reject(task_id, dest_id, RejectReason.TASK_NOT_FOUND)

        decision = validate_transition(task, ref, user)
        if isinstance(decision, Reject):
            return self._reject(task_id, dest_id, decision.reason)

        if self._known_statuses is not None:
            known = self._known_statuses(ref.team)
            if known is not None and ref.status not in set(known):
                return self._reject(task_id, dest_id, RejectReason.UNKNOWN_COLUMN)

        if not decision.changed:
            self._states[task_id] = MoveState.IDLE
            return MoveResult(
                MoveOutcome.NOOP, task_id, dest_id,
                previous_status=task.status, new_status=task.status,
            )

        move = self.store.apply_move(task_id, decision.new_status)
        self._dest_ids[move.token] = dest_id
        self._states[task_id] = MoveState.OPTIMISTICALLY_APPLIED
        self._emit(
            MoveEventType.APPLIED, task_id, dest_id,
            previous_status=move.previous_status, new_status=move.new_status,
        )
        return move

    async def _persist(self, move: PendingMove, dest_id: str, lock: asyncio.Lock) -> MoveResult:
        task_id = move.task_id
        try:
            self._states[task_id] = MoveState.PERSISTING
            try:
                await self.backend.update_task_status(task_id, move.new_status)
            except PersistenceError as exc:
                return self._roll_back(move, dest_id, exc.kind, str(exc))
            except Exception as exc:
                logger.exception("Unexpected failure persisting move of {}", task_id)
                return self._roll_back(move, dest_id, PersistenceErrorKind.UNEXPECTED, str(exc) or type(exc).__name__)
            return self._commit(move, dest_id)
        finally:
            self._dest_ids.pop(move.token, None)
            lock.release()
            self._release_slot(task_id)

    def _result(self, outcome: MoveOutcome, move: PendingMove, dest_id: str, **extra) -> MoveResult:
        return MoveResult(
            outcome, move.task_id, dest_id,
            previous_status=move.previous_status, new_status=move.new_status, **extra,
        )

    def _commit(self, move: PendingMove, dest_id: str) -> MoveResult:
        # a detached move still settles the store entry if one is left
        landed = self.store.commit_move(move)
        if move.token in self._detached:
            self._detached[move.token] = move.new_status
            landed = False
        if not landed:
            return self._result(MoveOutcome.CANCELLED, move, dest_id)
        self._states[move.task_id] = MoveState.COMMITTED
        self._emit(
            MoveEventType.COMMITTED, move.task_id, dest_id,
            previous_status=move.previous_status, new_status=move.new_status,
        )
        logger.debug("Committed move of {} to {}", move.task_id, move.new_status)
        return self._result(MoveOutcome.COMMITTED, move, dest_id)

    def _roll_back(
        self,
        move: PendingMove,
        dest_id: str,
        kind: PersistenceErrorKind,
        message: str,
    ) -> MoveResult:
        landed = self.store.rollback_move(move)
        if move.token in self._detached:
            self._detached[move.token] = move.previous_status
            landed = False
        if not landed:
            return self._result(MoveOutcome.CANCELLED, move, dest_id, error_kind=kind)
        self._states[move.task_id] = MoveState.ROLLED_BACK
        reason = f"{kind.value}: {message}" if message and message != kind.value else kind.value
        self._emit(
            MoveEventType.ROLLED_BACK, move.task_id, dest_id,
            previous_status=move.previous_status, new_status=move.new_status, reason=reason,
        )
        logger.warning(
            "Rolled back move of {} ({} -> {}): {}",
            move.task_id, move.previous_status, move.new_status, reason,
        )
        return self._result(MoveOutcome.ROLLED_BACK, move, dest_id, error_kind=kind, message=reason)
