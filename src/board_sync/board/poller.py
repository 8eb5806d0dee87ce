"""Periodic reconciliation of the task store against the backend.

There is no push channel: the board stays fresh by fetching the active
scope on a fixed interval and folding the result into the store.  Every
fetch is tagged with a generation number at request time.  A response is
applied only if its generation is newer than the last one applied and was
issued after the latest scope change, so a slow response can never
overwrite a newer one.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from ..backend.interfaces import TaskBackend
from ..constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SEARCH_DEBOUNCE_SECONDS,
    DEFAULT_SYNC_FAILURE_THRESHOLD,
)
from .errors import SyncError
from .model import Task, TaskFilters, now_iso
from .store import TaskStore

FailureListener = Callable[[int, str], None]


class SyncPoller:
    """Fetch the active scope every *interval* seconds and merge it.

    Usage::

        poller = SyncPoller(store, backend, TaskFilters(team=Team.WEB))
        poller.on_sync_failure(lambda count, error: show_banner(error))
        poller.start()
        ...
        poller.set_filters(replace(poller.filters, search_query="logo"))
        ...
        await poller.stop()
    """

    def __init__(
        self,
        store: TaskStore,
        backend: TaskBackend,
        filters: Optional[TaskFilters] = None,
        *,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        debounce: float = DEFAULT_SEARCH_DEBOUNCE_SECONDS,
        failure_threshold: int = DEFAULT_SYNC_FAILURE_THRESHOLD,
    ) -> None:
        self.store = store
        self.backend = backend
        self.interval = max(float(interval), 0.0)
        self.debounce = max(float(debounce), 0.0)
        self.failure_threshold = max(int(failure_threshold), 1)
        self._filters = filters or TaskFilters()
        self._generation = 0
        self._applied_generation = 0
        self._scope_floor = 0  # generations at or below this belong to an old scope
        self._live: Optional[asyncio.Task] = None
        self._live_generation = 0
        self._detached: set[asyncio.Task] = set()
        self._runner: Optional[asyncio.Task] = None
        self._debounced: Optional[asyncio.Task] = None
        self._failure_listeners: list[FailureListener] = []
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None
        self.last_synced_at: Optional[str] = None
        self.skipped_ticks = 0

    # -- introspection -----------------------------------------------------

    @property
    def filters(self) -> TaskFilters:
        return self._filters

    @property
    def generation(self) -> int:
        """Newest generation issued."""
        return self._generation

    @property
    def applied_generation(self) -> int:
        return self._applied_generation

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    @property
    def is_fetching(self) -> bool:
        return self._live is not None and not self._live.done()

    @property
    def pending_refresh(self) -> Optional[asyncio.Task]:
        """The debounced refetch scheduled by :meth:`set_filters`, if any."""
        if self._debounced is not None and not self._debounced.done():
            return self._debounced
        return None

    def on_sync_failure(self, callback: FailureListener) -> Callable[[], None]:
        """Call *callback(count, error)* when consecutive failures reach the threshold."""
        self._failure_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._failure_listeners:
                self._failure_listeners.remove(callback)

        return _unsubscribe

    # -- generations -------------------------------------------------------

    def next_generation(self) -> int:
        self._generation += 1
        self.store.note_sync_issued(self._generation)
        return self._generation

    def apply(self, generation: int, tasks: list[Task]) -> bool:
        """Merge a response for *generation*; returns False if it was discarded."""
        if generation <= self._scope_floor:
            logger.debug("Discarding poll generation {} issued before scope change", generation)
            return False
        if generation <= self._applied_generation:
            logger.debug(
                "Discarding stale poll generation {} (applied {})", generation, self._applied_generation
            )
            return False
        self._applied_generation = generation
        result = self.store.merge(tasks, generation)
        if result.changed:
            logger.debug(
                "Poll generation {} merged: +{} ~{} -{} kept {}",
                generation,
                len(result.added),
                len(result.updated),
                len(result.removed),
                len(result.kept_local),
            )
        return True

    # -- fetching ----------------------------------------------------------

    async def tick(self) -> bool:
        """Run one poll now unless a fetch is already live.

        Returns True if a response was applied to the store.
        """
        job = self._spawn()
        if job is None:
            return False
        return await job

    async def refresh(self) -> bool:
        """Manual refresh; same single-live-fetch rule as a scheduled tick."""
        return await self.tick()

    def _spawn(self) -> Optional[asyncio.Task]:
        if self.is_fetching:
            self.skipped_ticks += 1
            logger.debug("Poll skipped: generation {} still in flight", self._live_generation)
            return None
        generation = self.next_generation()
        job = asyncio.get_running_loop().create_task(self._fetch(generation, self._filters))
        self._live = job
        self._live_generation = generation
        return job

    async def _fetch(self, generation: int, filters: TaskFilters) -> bool:
        try:
            try:
                tasks = await self.backend.fetch_tasks(filters)
            except SyncError as exc:
                self._record_failure(generation, str(exc))
                return False
            except Exception as exc:
                logger.exception("Unexpected failure fetching tasks for generation {}", generation)
                self._record_failure(generation, str(exc) or type(exc).__name__)
                return False
            if generation > self._scope_floor:
                self._record_success()
            return self.apply(generation, list(tasks))
        finally:
            if self._live_generation == generation:
                self._live = None

    def _record_success(self) -> None:
        if self.consecutive_failures:
            logger.info("Sync recovered after {} failed poll(s)", self.consecutive_failures)
        self.consecutive_failures = 0
        self.last_error = None
        self.last_synced_at = now_iso()

    def _record_failure(self, generation: int, error: str) -> None:
        if generation <= self._scope_floor:
            return
        self.consecutive_failures += 1
        self.last_error = error
        logger.warning(
            "Poll generation {} failed ({} consecutive): {}", generation, self.consecutive_failures, error
        )
        if self.consecutive_failures != self.failure_threshold:
            return
        for callback in list(self._failure_listeners):
            try:
                callback(self.consecutive_failures, error)
            except Exception:
                logger.exception("Sync failure listener failed")

    # -- scope -------------------------------------------------------------

    def set_filters(self, filters: TaskFilters, debounce: Optional[float] = None) -> Optional[asyncio.Task]:
        """Switch to a new scope and schedule a refetch after *debounce* seconds.

        A previously scheduled refetch is cancelled and responses still
        outstanding for the old scope will be discarded.  In-flight status
        moves are untouched.

        The single-live-fetch rule is per scope: an old-scope fetch still
        running is detached rather than awaited, so the new scope's refetch
        can start alongside it.  Its response and any failure it raises are
        ignored.
        """
        self._filters = filters
        self._scope_floor = self._generation
        if self._live is not None and not self._live.done():
            self._detached.add(self._live)
            self._live.add_done_callback(self._detached.discard)
        self._live = None
        self._live_generation = 0
        if self._debounced is not None and not self._debounced.done():
            self._debounced.cancel()
        delay = self.debounce if debounce is None else max(float(debounce), 0.0)
        self._debounced = asyncio.get_running_loop().create_task(self._refetch_after(delay))
        return self._debounced

    async def _refetch_after(self, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        await self.refresh()

    # -- schedule ----------------------------------------------------------

    def start(self, *, immediate: bool = False) -> None:
        """Start the fixed-interval schedule on the running loop."""
        if self.running:
            return
        self._runner = asyncio.get_running_loop().create_task(self._run(immediate))
        logger.debug("Sync poller started (interval {}s)", self.interval)

    async def stop(self) -> None:
        """Stop polling and drop any outstanding fetches."""
        pending = [t for t in (self._runner, self._debounced, self._live) if t is not None]
        pending.extend(self._detached)
        for job in pending:
            job.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._runner = None
        self._debounced = None
        self._live = None
        self._detached.clear()
        logger.debug("Sync poller stopped at generation {}", self._generation)

    async def _run(self, immediate: bool) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() if immediate else loop.time() + self.interval
        while True:
            await asyncio.sleep(max(next_at - loop.time(), 0.0))
            self._spawn()
            next_at += self.interval
            now = loop.time()
            if next_at <= now:
                # fell behind; resume the cadence from now
                next_at = now + self.interval
