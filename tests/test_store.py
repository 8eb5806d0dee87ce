"""Tests for the session task store."""

from __future__ import annotations

import pytest

from board_sync.board.model import Team
from board_sync.board.store import TaskStore

from conftest import make_task


@pytest.fixture
def store() -> TaskStore:
    return TaskStore([
        make_task("t1", "not_started"),
        make_task("t2", "scripting"),
        make_task("w1", "testing", team=Team.WEB),
    ])


class TestReadsAndSubscriptions:
    def test_snapshot_and_team_view(self, store: TaskStore) -> None:
        assert [t.id for t in store.snapshot()] == ["t1", "t2", "w1"]
        assert [t.id for t in store.tasks_for_team(Team.WEB)] == ["w1"]
        assert "t1" in store and len(store) == 3

    def test_subscribers_receive_snapshot(self, store: TaskStore) -> None:
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.apply_move("t1", "scripting")
        assert seen[-1][0].status == "scripting"
        unsubscribe()
        store.remove("t2")
        assert len(seen) == 1

    def test_failing_subscriber_does_not_break_mutation(self, store: TaskStore) -> None:
        def boom(_snapshot) -> None:
            raise RuntimeError("render failed")

        seen = []
        store.subscribe(boom)
        store.subscribe(seen.append)
        store.apply_move("t1", "scripting")
        assert store.get("t1").status == "scripting"
        assert len(seen) == 1

    def test_version_increments_on_mutation(self, store: TaskStore) -> None:
        before = store.version
        store.upsert(make_task("t9"))
        assert store.version == before + 1


class TestOptimisticMoves:
    def test_apply_commit(self, store: TaskStore) -> None:
        move = store.apply_move("t1", "scripting")
        assert store.is_in_flight("t1")
        assert store.in_flight_ids() == frozenset({"t1"})
        assert store.commit_move(move)
        assert not store.is_in_flight("t1")
        assert store.get("t1").status == "scripting"

    def test_rollback_restores_previous_status_only(self, store: TaskStore) -> None:
        before = {t.id: t for t in store.snapshot()}
        move = store.apply_move("t1", "approved")
        assert store.rollback_move(move)
        assert store.get("t1") == before["t1"]
        assert store.get("t2") == before["t2"]
        assert store.get("w1") == before["w1"]

    def test_second_apply_while_in_flight_raises(self, store: TaskStore) -> None:
        store.apply_move("t1", "scripting")
        with pytest.raises(RuntimeError):
            store.apply_move("t1", "approved")

    def test_apply_unknown_task_raises(self, store: TaskStore) -> None:
        with pytest.raises(KeyError):
            store.apply_move("missing", "scripting")

    def test_stale_token_is_ignored_after_remove(self, store: TaskStore) -> None:
        move = store.apply_move("t1", "scripting")
        store.remove("t1")
        assert not store.commit_move(move)
        assert not store.rollback_move(move)
        assert store.get("t1") is None

    def test_upsert_keeps_pending_status(self, store: TaskStore) -> None:
        store.apply_move("t1", "scripting")
        stored = store.upsert(make_task("t1", "not_started", title="Renamed"))
        assert stored.status == "scripting"
        assert stored.title == "Renamed"


class TestMerge:
    def test_merge_adopts_adds_and_removes(self, store: TaskStore) -> None:
        store.note_sync_issued(1)
        result = store.merge([make_task("t1", "approved"), make_task("t3")], generation=1)
        assert [t.id for t in store.snapshot()] == ["t1", "t3"]
        assert store.get("t1").status == "approved"
        assert result.added == ("t3",)
        assert result.updated == ("t1",)
        assert set(result.removed) == {"t2", "w1"}
        assert result.changed

    def test_merge_preserves_in_flight_value(self, store: TaskStore) -> None:
        store.apply_move("t1", "scripting")
        store.note_sync_issued(1)
        result = store.merge([make_task("t1", "not_started"), make_task("t2", "approved")], generation=1)
        assert store.get("t1").status == "scripting"
        assert store.get("t2").status == "approved"
        assert result.kept_local == ("t1",)

    def test_in_flight_task_missing_from_fetch_is_kept(self, store: TaskStore) -> None:
        store.apply_move("t2", "script_confirmed")
        store.note_sync_issued(1)
        store.merge([make_task("t1")], generation=1)
        assert store.get("t2").status == "script_confirmed"

    def test_settled_move_survives_older_poll(self, store: TaskStore) -> None:
        store.note_sync_issued(1)  # poll 1 requested before the move
        move = store.apply_move("t1", "scripting")
        store.commit_move(move)
        store.merge([make_task("t1", "not_started"), make_task("t2", "scripting")], generation=1)
        assert store.get("t1").status == "scripting"

        store.note_sync_issued(2)  # a poll requested after the commit wins
        store.merge([make_task("t1", "approved"), make_task("t2", "scripting")], generation=2)
        assert store.get("t1").status == "approved"

    def test_local_delete_survives_older_poll(self, store: TaskStore) -> None:
        store.note_sync_issued(1)
        store.remove("t2")
        store.merge([make_task("t1"), make_task("t2", "scripting")], generation=1)
        assert store.get("t2") is None

    def test_unchanged_merge_does_not_notify(self, store: TaskStore) -> None:
        seen = []
        store.subscribe(seen.append)
        store.merge(list(store.snapshot()), generation=1)
        assert seen == []
