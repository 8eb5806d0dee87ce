"""Tests for the sync poller."""

from __future__ import annotations

import asyncio

import pytest

from board_sync.board.errors import SyncError
from board_sync.board.model import TaskFilters, Team, User
from board_sync.board.mutator import OptimisticMutator
from board_sync.board.poller import SyncPoller
from board_sync.board.store import TaskStore

from conftest import FakeBackend, make_task, settle


@pytest.fixture
def store() -> TaskStore:
    return TaskStore()


@pytest.fixture
def poller(store: TaskStore, backend: FakeBackend) -> SyncPoller:
    return SyncPoller(store, backend, TaskFilters(team=Team.CREATIVE), interval=60, failure_threshold=2)


@pytest.mark.anyio
class TestGenerations:
    async def test_tick_fetches_active_scope(self, poller: SyncPoller, store: TaskStore, backend: FakeBackend) -> None:
        assert await poller.tick()
        assert [t.id for t in store.snapshot()] == ["c1", "c2", "c3"]
        assert backend.fetch_calls == [TaskFilters(team=Team.CREATIVE)]
        assert poller.generation == 1
        assert poller.applied_generation == 1
        assert poller.last_synced_at is not None

    async def test_older_generation_is_discarded(self, poller: SyncPoller, store: TaskStore) -> None:
        assert poller.apply(6, [make_task("t6", "approved")])
        assert not poller.apply(5, [make_task("t5")])
        assert [t.id for t in store.snapshot()] == ["t6"]
        assert poller.applied_generation == 6

    async def test_late_response_after_newer_one_is_discarded(
        self, poller: SyncPoller, store: TaskStore, backend: FakeBackend
    ) -> None:
        backend.hold_fetches = True
        first = asyncio.create_task(poller.tick())
        await settle()
        # the first fetch is abandoned for a new scope, then answers last
        poller.set_filters(TaskFilters(team=Team.WEB), debounce=0)
        await settle()
        assert len(backend.fetch_waiters) == 2
        # one live fetch per scope: the new scope still skips overlapping ticks
        assert await poller.tick() is False
        assert poller.skipped_ticks == 1
        assert len(backend.fetch_waiters) == 2

        backend.release_fetch(1)
        await settle()
        assert [t.id for t in store.snapshot()] == ["w1", "w2"]

        backend.release_fetch(0)
        assert await first is False
        assert [t.id for t in store.snapshot()] == ["w1", "w2"]

    async def test_merge_keeps_in_flight_value(
        self, poller: SyncPoller, store: TaskStore, backend: FakeBackend, admin: User
    ) -> None:
        await poller.tick()
        backend.hold_updates = True
        mutator = OptimisticMutator(store, backend)
        move = asyncio.create_task(mutator.request_move("c1", "creative_scripting", admin))
        await settle()

        assert await poller.tick()
        assert store.get("c1").status == "scripting"

        backend.release_update()
        await move
        assert store.get("c1").status == "scripting"

    async def test_committed_move_does_not_flicker_back(
        self, poller: SyncPoller, store: TaskStore, backend: FakeBackend, admin: User
    ) -> None:
        await poller.tick()
        backend.hold_fetches = True
        stale = asyncio.create_task(poller.tick())
        await settle()

        mutator = OptimisticMutator(store, backend)
        result = await mutator.request_move("c1", "creative_scripting", admin)
        assert result.ok

        backend.release_fetch(0)
        assert await stale
        assert store.get("c1").status == "scripting"

        backend.hold_fetches = False
        assert await poller.tick()
        assert store.get("c1").status == "scripting"

    async def test_remote_changes_are_adopted(self, poller: SyncPoller, store: TaskStore, backend: FakeBackend) -> None:
        await poller.tick()
        backend.tasks["c2"] = backend.tasks["c2"].with_status("shoot_pending")
        del backend.tasks["c3"]
        backend.tasks["c4"] = make_task("c4", created_at="2026-01-01T12:00:00+00:00")

        await poller.tick()
        assert {t.id: t.status for t in store.snapshot()} == {
            "c1": "not_started",
            "c2": "shoot_pending",
            "c4": "not_started",
        }


@pytest.mark.anyio
class TestSchedule:
    async def test_tick_skipped_while_fetch_is_live(self, poller: SyncPoller, backend: FakeBackend) -> None:
        backend.hold_fetches = True
        first = asyncio.create_task(poller.tick())
        await settle()

        assert poller.is_fetching
        assert await poller.tick() is False
        assert await poller.refresh() is False
        assert poller.skipped_ticks == 2
        assert len(backend.fetch_calls) == 1

        backend.release_fetch()
        assert await first
        assert not poller.is_fetching

    async def test_start_polls_on_interval(self, store: TaskStore, backend: FakeBackend) -> None:
        poller = SyncPoller(store, backend, TaskFilters(team=Team.CREATIVE), interval=0.01)
        poller.start(immediate=True)
        assert poller.running
        await asyncio.sleep(0.08)
        await poller.stop()

        assert not poller.running
        assert len(backend.fetch_calls) >= 2
        assert len(store) == 3

    async def test_stop_discards_outstanding_fetch(self, poller: SyncPoller, store: TaskStore, backend: FakeBackend) -> None:
        backend.hold_fetches = True
        poller.start(immediate=True)
        await settle()
        assert poller.is_fetching
        await poller.stop()
        assert len(store) == 0
        assert not poller.is_fetching


@pytest.mark.anyio
class TestFailures:
    async def test_failures_are_counted_and_reported_once(self, poller: SyncPoller, backend: FakeBackend) -> None:
        reports: list[tuple[int, str]] = []
        poller.on_sync_failure(lambda count, error: reports.append((count, error)))
        backend.fetch_error = SyncError("backend down")

        for _ in range(3):
            assert await poller.tick() is False

        assert poller.consecutive_failures == 3
        assert poller.last_error == "backend down"
        assert reports == [(2, "backend down")]

        backend.fetch_error = None
        assert await poller.tick()
        assert poller.consecutive_failures == 0
        assert poller.last_error is None

    async def test_unexpected_error_does_not_stop_polling(
        self, poller: SyncPoller, store: TaskStore, backend: FakeBackend
    ) -> None:
        backend.fetch_error = ValueError("bad payload")
        assert await poller.tick() is False
        assert poller.consecutive_failures == 1
        backend.fetch_error = None
        assert await poller.tick()
        assert len(store) == 3

    async def test_failure_of_abandoned_scope_is_not_counted(self, poller: SyncPoller, backend: FakeBackend) -> None:
        backend.hold_fetches = True
        backend.fetch_error = SyncError("timeout")
        first = asyncio.create_task(poller.tick())
        await settle()
        backend.fetch_error = None
        refetch = poller.set_filters(TaskFilters(team=Team.WEB), debounce=0)
        await settle()

        backend.release_fetch(0)
        assert await first is False
        assert poller.consecutive_failures == 0
        backend.release_fetch(1)
        await refetch


@pytest.mark.anyio
class TestScopeChanges:
    async def test_debounced_refetch_collapses_rapid_changes(
        self, poller: SyncPoller, store: TaskStore, backend: FakeBackend
    ) -> None:
        poller.set_filters(TaskFilters(team=Team.CREATIVE, search_query="l"), debounce=0.05)
        poller.set_filters(TaskFilters(team=Team.CREATIVE, search_query="la"), debounce=0.05)
        refetch = poller.set_filters(TaskFilters(team=Team.CREATIVE, search_query="launch"), debounce=0.05)
        assert poller.pending_refresh is refetch

        await refetch
        assert [f.search_query for f in backend.fetch_calls] == ["launch"]
        assert [t.id for t in store.snapshot()] == ["c1"]
        assert poller.pending_refresh is None

    async def test_scope_change_leaves_in_flight_moves_alone(
        self, poller: SyncPoller, store: TaskStore, backend: FakeBackend, admin: User
    ) -> None:
        await poller.tick()
        backend.hold_updates = True
        mutator = OptimisticMutator(store, backend)
        move = asyncio.create_task(mutator.request_move("c1", "creative_scripting", admin))
        await settle()

        await poller.set_filters(TaskFilters(team=Team.WEB), debounce=0)
        assert store.get("c1").status == "scripting"

        backend.release_update()
        assert (await move).ok
        assert backend.tasks["c1"].status == "scripting"
