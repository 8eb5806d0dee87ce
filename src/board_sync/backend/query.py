"""Server-side narrowing and ordering of a task listing."""

from __future__ import annotations

from typing import Iterable

from ..board.model import SortBy, Task, TaskFilters


def matches(task: Task, filters: TaskFilters) -> bool:
    if task.team != filters.team:
        return False
    if filters.client_id and task.client_id != filters.client_id:
        return False
    if filters.assignee_id and task.assignee_id != filters.assignee_id:
        return False
    if filters.user_id and task.assignee_id != filters.user_id:
        return False
    query = (filters.search_query or "").strip().lower()
    if query and query not in task.title.lower() and query not in task.description.lower():
        return False
    return True


def sort_tasks(tasks: Iterable[Task], sort_by: SortBy) -> list[Task]:
    """Order a listing.

    ``none`` keeps creation order, ``created_date`` puts the newest first,
    ``due_date`` is soonest first with undated tasks last, ``title`` is
    case-insensitive A-Z.  Ties keep creation order.
    """
    ordered = sorted(tasks, key=lambda t: t.created_at)
    if sort_by == SortBy.CREATED_DATE:
        return sorted(ordered, key=lambda t: t.created_at, reverse=True)
    if sort_by == SortBy.DUE_DATE:
        return sorted(ordered, key=lambda t: (t.due_date is None, t.due_date or ""))
    if sort_by == SortBy.TITLE:
        return sorted(ordered, key=lambda t: t.title.casefold())
    return ordered


def filter_tasks(tasks: Iterable[Task], filters: TaskFilters) -> list[Task]:
    return sort_tasks((t for t in tasks if matches(t, filters)), filters.sort_by)
