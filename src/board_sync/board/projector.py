"""Derive board columns from a status vocabulary and a task snapshot.

Projection re-runs on every store mutation, so it must stay pure: the same
inputs (by value) always produce the same columns (by value), which lets the
caller skip re-rendering with a plain ``==`` check.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence

from loguru import logger

from .model import Column, StatusDefinition, Task


def _ordered(status_defs: Iterable[StatusDefinition]) -> list[StatusDefinition]:
    # sorted() is stable, so equal positions keep their input order
    return sorted(status_defs, key=lambda d: d.position)


def find_orphans(status_defs: Sequence[StatusDefinition], tasks: Iterable[Task]) -> list[Task]:
    """Return tasks whose (team, status) matches no definition."""
    known = {(d.team, d.code) for d in status_defs}
    return [t for t in tasks if (t.team, t.status) not in known]


def project_columns(
    status_defs: Sequence[StatusDefinition],
    tasks: Sequence[Task],
    permission_filter: Optional[Callable[[str], bool]] = None,
) -> list[Column]:
    """Group *tasks* into ordered columns.

    Args:
        status_defs: One team's vocabulary.  Empty yields an empty board.
        tasks: Tasks already narrowed to the same team.
        permission_filter: ``status_code -> bool`` view gate; all columns are
            visible when omitted.

    Returns:
        Columns in ``position`` order, each holding its tasks in input order.
        Tasks that match no column are left out and logged.
    """
    if not status_defs:
        return []

    ordered = _ordered(status_defs)
    buckets: dict[tuple, list[Task]] = {(d.team, d.code): [] for d in ordered}
    orphans: list[Task] = []
    for task in tasks:
        bucket = buckets.get((task.team, task.status))
        if bucket is None:
            orphans.append(task)
        else:
            bucket.append(task)

    if orphans:
        logger.warning(
            "Data integrity: {} task(s) match no status column: {}",
            len(orphans),
            ", ".join(f"{t.id}({t.team.value}/{t.status})" for t in orphans),
        )

    columns: list[Column] = []
    for d in ordered:
        if permission_filter is not None and not permission_filter(d.code):
            continue
        columns.append(Column(
            team=d.team,
            status=d.code,
            name=d.name,
            color=d.color,
            position=d.position,
            tasks=tuple(buckets[(d.team, d.code)]),
        ))
    return columns
