"""Task board API endpoints.

This module provides a FastAPI router with task listing, creation, status
updates, deletion and the per-team status vocabulary.  It is mounted under
``/api`` by the main ``create_app`` factory.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, HTTPException, Query
from loguru import logger
from pydantic import BaseModel

from ..backend.file_repo import BoardRepository, TaskNotFoundError, UnknownStatusError
from ..board.model import SortBy, Task, TaskFilters, Team


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    title: str
    description: str = ""
    team: str = Team.CREATIVE.value
    status: str = "not_started"
    priority: str = "medium"
    assignee_id: Optional[str] = None
    client_id: Optional[str] = None
    due_date: Optional[str] = None
    created_by: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class StatusListResponse(BaseModel):
    team: str
    statuses: list[dict[str, Any]]


class DeleteResponse(BaseModel):
    deleted: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_team(raw: str) -> Team:
    try:
        return Team(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown team: {raw}")


def _parse_sort(raw: Optional[str]) -> SortBy:
    if not raw:
        return SortBy.NONE
    try:
        return SortBy(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown sort_by: {raw}")


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_repository: Callable[[], BoardRepository]) -> APIRouter:
    """Create the task board router.

    Parameters
    ----------
    get_repository:
        A callable returning the :class:`BoardRepository` backing the app.
    """
    router = APIRouter(prefix="/api", tags=["tasks"])

    @router.get("/tasks", response_model=TaskListResponse)
    async def list_tasks(
        team: str = Query(Team.CREATIVE.value),
        client_id: Optional[str] = Query(None),
        assignee_id: Optional[str] = Query(None),
        user_id: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        sort_by: Optional[str] = Query(None),
    ) -> TaskListResponse:
        filters = TaskFilters(
            team=_parse_team(team),
            client_id=client_id,
            assignee_id=assignee_id,
            user_id=user_id,
            search_query=search,
            sort_by=_parse_sort(sort_by),
        )
        tasks = get_repository().list_tasks(filters)
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.get("/tasks/{task_id}", response_model=TaskResponse)
    async def get_task(task_id: str) -> TaskResponse:
        task = get_repository().get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return TaskResponse(task=task.to_dict())

    @router.post("/tasks", response_model=TaskResponse, status_code=201)
    async def create_task(body: CreateTaskRequest) -> TaskResponse:
        _parse_team(body.team)
        payload = {k: v for k, v in body.model_dump().items() if v is not None}
        try:
            task = get_repository().create_task(Task.from_dict(payload))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        logger.info("Created task {} ({}/{})", task.id, task.team.value, task.status)
        return TaskResponse(task=task.to_dict())

    @router.patch("/tasks/{task_id}/status", response_model=TaskResponse)
    async def update_status(task_id: str, body: StatusUpdateRequest) -> TaskResponse:
        try:
            task = get_repository().update_status(task_id, body.status)
        except TaskNotFoundError:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        except UnknownStatusError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        logger.info("Task {} moved to {}", task_id, task.status)
        return TaskResponse(task=task.to_dict())

    @router.delete("/tasks/{task_id}", response_model=DeleteResponse)
    async def delete_task(task_id: str) -> DeleteResponse:
        try:
            get_repository().delete_task(task_id)
        except TaskNotFoundError:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        logger.info("Deleted task {}", task_id)
        return DeleteResponse(deleted=True)

    @router.get("/statuses", response_model=StatusListResponse)
    async def list_statuses(team: str = Query(Team.CREATIVE.value)) -> StatusListResponse:
        parsed = _parse_team(team)
        defs = get_repository().status_definitions(parsed)
        return StatusListResponse(team=parsed.value, statuses=[d.to_dict() for d in defs])

    return router
