"""Tests for the HTTP persistence collaborator against the real app."""

from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from board_sync.backend.file_repo import InMemoryBoardRepository
from board_sync.backend.http import HttpTaskBackend
from board_sync.board.errors import PersistenceError, PersistenceErrorKind, SyncError
from board_sync.board.model import SortBy, Task, TaskFilters, Team, User
from board_sync.board.mutator import MoveOutcome
from board_sync.board.session import BoardSession
from board_sync.server.api import create_app

from conftest import make_task


@pytest.fixture
def repo() -> InMemoryBoardRepository:
    return InMemoryBoardRepository([
        make_task("c1", title="Teaser", created_at="2026-01-01T00:00:01+00:00"),
        make_task("c2", "scripting", title="Brand film", created_at="2026-01-01T00:00:02+00:00"),
        make_task("w1", "testing", team=Team.WEB, title="Checkout"),
    ])


@pytest.fixture
async def backend(repo: InMemoryBoardRepository):
    app = create_app(repository=repo, enable_cors=False)
    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    async with HttpTaskBackend(client=client) as backend:
        yield backend
    await client.aclose()


def _failing_backend(exc: Exception) -> HttpTaskBackend:
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc

    return HttpTaskBackend(client=AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test"))


@pytest.mark.anyio
class TestFetches:
    async def test_fetch_tasks_passes_filters(self, backend: HttpTaskBackend) -> None:
        tasks = await backend.fetch_tasks(TaskFilters(team=Team.CREATIVE, sort_by=SortBy.CREATED_DATE))
        assert [t.id for t in tasks] == ["c2", "c1"]
        assert all(isinstance(t, Task) for t in tasks)

        tasks = await backend.fetch_tasks(TaskFilters(team=Team.CREATIVE, search_query="brand"))
        assert [t.id for t in tasks] == ["c2"]

    async def test_fetch_status_definitions(self, backend: HttpTaskBackend) -> None:
        defs = await backend.fetch_status_definitions(Team.CREATIVE)
        assert len(defs) == 8
        assert defs[0].code == "not_started"
        assert defs[0].team == Team.CREATIVE

    async def test_transport_failure_is_sync_error(self) -> None:
        backend = _failing_backend(httpx.ConnectError("refused"))
        with pytest.raises(SyncError):
            await backend.fetch_tasks(TaskFilters())
        await backend.client.aclose()

    async def test_server_error_is_sync_error(self) -> None:
        client = AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, json={"detail": "maintenance"})),
            base_url="http://test",
        )
        backend = HttpTaskBackend(client=client)
        with pytest.raises(SyncError, match="maintenance"):
            await backend.fetch_status_definitions(Team.WEB)
        await client.aclose()


@pytest.mark.anyio
class TestMutations:
    async def test_update_status(self, backend: HttpTaskBackend, repo: InMemoryBoardRepository) -> None:
        task = await backend.update_task_status("c1", "scripting")
        assert task.status == "scripting"
        assert repo.get_task("c1").status == "scripting"

    async def test_update_missing_task_is_not_found(self, backend: HttpTaskBackend) -> None:
        with pytest.raises(PersistenceError) as excinfo:
            await backend.update_task_status("nope", "scripting")
        assert excinfo.value.kind == PersistenceErrorKind.NOT_FOUND
        assert excinfo.value.task_id == "nope"

    async def test_update_unknown_status_is_rejected(self, backend: HttpTaskBackend) -> None:
        with pytest.raises(PersistenceError) as excinfo:
            await backend.update_task_status("c1", "testing")
        assert excinfo.value.kind == PersistenceErrorKind.REJECTED

    async def test_network_failure(self) -> None:
        backend = _failing_backend(httpx.ReadTimeout("slow"))
        with pytest.raises(PersistenceError) as excinfo:
            await backend.update_task_status("c1", "scripting")
        assert excinfo.value.kind == PersistenceErrorKind.NETWORK
        await backend.client.aclose()

    async def test_create_and_delete(self, backend: HttpTaskBackend, repo: InMemoryBoardRepository) -> None:
        created = await backend.create_task(Task(id="c9", title="New", team=Team.CREATIVE, status="scripting"))
        assert created.id == "c9"
        assert repo.get_task("c9") is not None

        await backend.delete_task("c9")
        assert repo.get_task("c9") is None
        with pytest.raises(PersistenceError) as excinfo:
            await backend.delete_task("c9")
        assert excinfo.value.kind == PersistenceErrorKind.NOT_FOUND


@pytest.mark.anyio
async def test_session_round_trip_over_http(backend: HttpTaskBackend, repo: InMemoryBoardRepository) -> None:
    user = User(id="u1", team=Team.CREATIVE, allowed_statuses=frozenset({"scripting"}))
    session = BoardSession(backend, user, poll_interval=60)
    await session.load()

    result = await session.request_move("c1", "creative_scripting")
    assert result.outcome == MoveOutcome.COMMITTED
    assert repo.get_task("c1").status == "scripting"

    rolled_back = await session.request_move("c2", "creative_approved")
    assert rolled_back.outcome == MoveOutcome.REJECTED
    await session.close()
