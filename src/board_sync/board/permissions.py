"""Per-user rights on board columns.

Visibility is read-open within a team: every user sees every column of their
own team.  Write actions (creating a task in a column, moving a task into a
column) are gated by role and the user's allowed-status set.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from .model import Column, Team, User


def can_view_column(user: User, status_code: str, team: Optional[Team] = None) -> bool:
    """Return True if *user* may see the column for *status_code*.

    When *team* is omitted the column is assumed to belong to the user's own
    team, where visibility is never gated.
    """
    if team is None or user.is_admin:
        return True
    return Team(team) == user.team


def can_act(user: User, status_code: str, team: Team) -> bool:
    """Return True if *user* may create a task in, or move a task into, the column."""
    if user.is_admin:
        return True
    if Team(team) != user.team:
        return False
    return status_code in user.allowed_statuses


def can_create_in(user: User, column: Column) -> bool:
    return can_act(user, column.status, column.team)


def view_filter(user: User, team: Team) -> Callable[[str], bool]:
    """Status-code predicate for :func:`project_columns`."""
    return lambda status_code: can_view_column(user, status_code, team)


def action_filter(user: User, team: Team) -> Callable[[str], bool]:
    return lambda status_code: can_act(user, status_code, team)


def validate_task_assignment(assignee: Optional[User], status_code: str, team: Team) -> Optional[str]:
    """Check that *assignee* can own a task in the given column.

    Returns:
        None when the assignment is valid, otherwise an error message.
    """
    if assignee is None:
        return "Selected user not found"
    if not assignee.active:
        return "Cannot assign task to inactive user"
    if not can_act(assignee, status_code, team):
        return (
            f"{assignee.name or assignee.id} does not have permission to access this status. "
            "Please select a different status or assignee."
        )
    return None


def users_with_status_access(status_code: str, users: Iterable[User], team: Optional[Team] = None) -> list[User]:
    """Active users who may act on *status_code*, optionally limited to *team*."""
    result = []
    for user in users:
        if not user.active:
            continue
        if team is not None and not user.is_admin and user.team != Team(team):
            continue
        if can_act(user, status_code, team if team is not None else user.team):
            result.append(user)
    return result
