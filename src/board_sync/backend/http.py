"""Persistence collaborator talking to the board HTTP service."""

from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from ..board.errors import PersistenceError, PersistenceErrorKind, SyncError
from ..board.model import StatusDefinition, Task, TaskFilters, Team
from ..constants import DEFAULT_BACKEND_TIMEOUT_SECONDS, DEFAULT_BACKEND_URL
from .interfaces import TaskBackend


def _detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict) and payload.get("detail"):
        return str(payload["detail"])
    return response.reason_phrase


class HttpTaskBackend(TaskBackend):
    """``httpx.AsyncClient`` implementation of :class:`TaskBackend`.

    Usage::

        async with HttpTaskBackend("http://127.0.0.1:8000") as backend:
            tasks = await backend.fetch_tasks(TaskFilters(team=Team.WEB))

    Pass *client* to reuse an existing ``AsyncClient`` (e.g. one built on an
    ``ASGITransport``); it is then left open by :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        *,
        timeout: float = DEFAULT_BACKEND_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
        )

    async def __aenter__(self) -> "HttpTaskBackend":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # -- fetches -----------------------------------------------------------

    async def _get(self, path: str, params: dict[str, str]) -> Any:
        try:
            response = await self.client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise SyncError(f"GET {path} failed: {exc.__class__.__name__}: {exc}") from exc
        if response.status_code != 200:
            raise SyncError(f"GET {path} returned {response.status_code}: {_detail(response)}")
        try:
            return response.json()
        except ValueError as exc:
            raise SyncError(f"GET {path} returned invalid JSON") from exc

    async def fetch_tasks(self, filters: TaskFilters) -> list[Task]:
        payload = await self._get("/api/tasks", filters.to_params())
        items = payload.get("tasks") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise SyncError("Task listing is missing 'tasks'")
        return [Task.from_dict(item) for item in items if isinstance(item, dict)]

    async def fetch_status_definitions(self, team: Team) -> list[StatusDefinition]:
        payload = await self._get("/api/statuses", {"team": Team(team).value})
        items = payload.get("statuses") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise SyncError("Status listing is missing 'statuses'")
        defs = [StatusDefinition.from_dict(item) for item in items if isinstance(item, dict)]
        return sorted(defs, key=lambda d: d.position)

    # -- mutations ---------------------------------------------------------

    async def _send(self, method: str, path: str, task_id: Optional[str], **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.debug("{} {} failed: {}", method, path, exc)
            raise PersistenceError(
                PersistenceErrorKind.NETWORK,
                f"{exc.__class__.__name__}: {exc}",
                task_id=task_id,
            ) from exc
        if response.status_code == 404:
            raise PersistenceError(PersistenceErrorKind.NOT_FOUND, _detail(response), task_id=task_id)
        if response.status_code >= 400:
            raise PersistenceError(
                PersistenceErrorKind.REJECTED,
                f"{response.status_code}: {_detail(response)}",
                task_id=task_id,
            )
        return response

    @staticmethod
    def _task_from(response: httpx.Response, task_id: Optional[str]) -> Task:
        try:
            payload = response.json()
        except ValueError as exc:
            raise PersistenceError(PersistenceErrorKind.UNEXPECTED, "Invalid JSON response", task_id=task_id) from exc
        data = payload.get("task") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise PersistenceError(PersistenceErrorKind.UNEXPECTED, "Response is missing 'task'", task_id=task_id)
        return Task.from_dict(data)

    async def update_task_status(self, task_id: str, new_status: str) -> Task:
        response = await self._send("PATCH", f"/api/tasks/{task_id}/status", task_id, json={"status": new_status})
        return self._task_from(response, task_id)

    async def delete_task(self, task_id: str) -> None:
        await self._send("DELETE", f"/api/tasks/{task_id}", task_id)

    async def create_task(self, task: Task) -> Task:
        response = await self._send("POST", "/api/tasks", task.id, json=task.to_dict())
        return self._task_from(response, task.id)
