"""Task board data model.

Tasks are partitioned by team; each team owns an ordered status vocabulary
(:class:`StatusDefinition`) and the board renders one :class:`Column` per
status.  Columns are derived on every projection and never persisted.

All entities are frozen dataclasses so snapshots handed out by the store can
be compared by value and never change underneath a caller.  Mutating a task
means replacing it (``task.with_status(...)``).
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..constants import COLUMN_ID_SEPARATOR


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Team(str, Enum):
    """Partition of tasks, clients and status vocabulary."""

    CREATIVE = "creative"
    WEB = "web"


class Role(str, Enum):
    ADMIN = "admin"          # acts on every status of every team
    MANAGER = "manager"      # restricted to allowed statuses
    EMPLOYEE = "employee"    # restricted to allowed statuses


class SortBy(str, Enum):
    """Server-side ordering of a task fetch."""

    NONE = "none"
    CREATED_DATE = "created_date"
    DUE_DATE = "due_date"
    TITLE = "title"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    return f"task-{uuid.uuid4().hex[:10]}"


def _coerce_enum(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


def _optional_str(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def column_id(team: Team, status: str) -> str:
    """Stable column identifier, e.g. ``creative_scripting``."""
    return f"{Team(team).value}{COLUMN_ID_SEPARATOR}{status}"


def parse_column_id(value: str) -> "ColumnRef":
    """Split a column id back into team and status code.

    Raises:
        ValueError: if the id has no separator or names an unknown team.
    """
    team_raw, sep, status = str(value).partition(COLUMN_ID_SEPARATOR)
    if not sep or not status:
        raise ValueError(f"Malformed column id: {value!r}")
    return ColumnRef(team=Team(team_raw), status=status)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatusDefinition:
    """One entry of a team's status vocabulary."""

    code: str
    team: Team
    name: str = ""
    color: str = "#94a3b8"
    position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "team": self.team.value,
            "name": self.name or self.code,
            "color": self.color,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusDefinition":
        return cls(
            code=str(data.get("code") or ""),
            team=_coerce_enum(Team, data.get("team"), Team.CREATIVE),
            name=str(data.get("name") or data.get("code") or ""),
            color=str(data.get("color") or "#94a3b8"),
            position=int(data.get("position") or 0),
        )


@dataclass(frozen=True)
class Task:
    """A work item on the board.

    ``team`` never changes after creation; only ``status`` moves, and only
    through the optimistic mutator.
    """

    id: str = field(default_factory=_generate_id)
    title: str = ""
    description: str = ""
    team: Team = Team.CREATIVE
    status: str = "not_started"
    priority: str = "medium"
    assignee_id: Optional[str] = None
    client_id: Optional[str] = None
    due_date: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    created_by: Optional[str] = None

    def with_status(self, status: str) -> "Task":
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["team"] = self.team.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing the team gracefully."""
        return cls(
            id=str(data.get("id") or _generate_id()),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            team=_coerce_enum(Team, data.get("team"), Team.CREATIVE),
            status=str(data.get("status") or "not_started"),
            priority=str(data.get("priority") or "medium"),
            assignee_id=_optional_str(data.get("assignee_id")),
            client_id=_optional_str(data.get("client_id")),
            due_date=_optional_str(data.get("due_date")),
            created_at=str(data.get("created_at") or now_iso()),
            created_by=_optional_str(data.get("created_by")),
        )


@dataclass(frozen=True)
class User:
    """A board user.  ``allowed_statuses`` is ignored for admins."""

    id: str
    role: Role = Role.EMPLOYEE
    team: Team = Team.CREATIVE
    allowed_statuses: frozenset[str] = frozenset()
    name: str = ""
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name or self.id,
            "role": self.role.value,
            "team": self.team.value,
            "allowed_statuses": sorted(self.allowed_statuses),
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=str(data.get("id") or ""),
            role=_coerce_enum(Role, data.get("role"), Role.EMPLOYEE),
            team=_coerce_enum(Team, data.get("team"), Team.CREATIVE),
            allowed_statuses=frozenset(str(s) for s in (data.get("allowed_statuses") or [])),
            name=str(data.get("name") or ""),
            active=bool(data.get("active", True)),
        )


@dataclass(frozen=True)
class ColumnRef:
    """Destination of a move: a team and one of its status codes."""

    team: Team
    status: str

    @property
    def id(self) -> str:
        return column_id(self.team, self.status)


@dataclass(frozen=True)
class Column:
    """Derived grouping of same-status tasks within one team."""

    team: Team
    status: str
    name: str = ""
    color: str = ""
    position: int = 0
    tasks: tuple[Task, ...] = ()

    @property
    def id(self) -> str:
        return column_id(self.team, self.status)

    @property
    def count(self) -> int:
        return len(self.tasks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team": self.team.value,
            "status": self.status,
            "name": self.name,
            "color": self.color,
            "position": self.position,
            "count": self.count,
            "tasks": [t.to_dict() for t in self.tasks],
        }


@dataclass(frozen=True)
class TaskFilters:
    """Active fetch scope: one team plus optional narrowing."""

    team: Team = Team.CREATIVE
    client_id: Optional[str] = None
    assignee_id: Optional[str] = None
    user_id: Optional[str] = None  # "my tasks" view
    search_query: Optional[str] = None
    sort_by: SortBy = SortBy.NONE

    def to_params(self) -> dict[str, str]:
        """Query parameters for the HTTP task listing."""
        params = {"team": self.team.value}
        if self.client_id:
            params["client_id"] = self.client_id
        if self.assignee_id:
            params["assignee_id"] = self.assignee_id
        if self.user_id:
            params["user_id"] = self.user_id
        if self.search_query and self.search_query.strip():
            params["search"] = self.search_query.strip()
        if self.sort_by != SortBy.NONE:
            params["sort_by"] = self.sort_by.value
        return params


# ---------------------------------------------------------------------------
# Default vocabularies
# ---------------------------------------------------------------------------

def _vocabulary(team: Team, entries: list[tuple[str, str, str]]) -> list[StatusDefinition]:
    return [
        StatusDefinition(code=code, team=team, name=name, color=color, position=idx)
        for idx, (code, name, color) in enumerate(entries)
    ]


DEFAULT_STATUS_DEFINITIONS: dict[Team, list[StatusDefinition]] = {
    Team.CREATIVE: _vocabulary(Team.CREATIVE, [
        ("not_started", "Not Started", "#94a3b8"),
        ("scripting", "Scripting", "#a78bfa"),
        ("script_confirmed", "Script Confirmed", "#8b5cf6"),
        ("shoot_pending", "Shoot Pending", "#f97316"),
        ("shoot_finished", "Shoot Finished", "#fb923c"),
        ("edit_pending", "Edit Pending", "#3b82f6"),
        ("client_approval", "Client Approval", "#ec4899"),
        ("approved", "Approved", "#22c55e"),
    ]),
    Team.WEB: _vocabulary(Team.WEB, [
        ("proposal_awaiting", "Proposal Awaiting", "#94a3b8"),
        ("not_started", "Not Started", "#6b7280"),
        ("ui_started", "UI Started", "#a78bfa"),
        ("ui_finished", "UI Finished", "#8b5cf6"),
        ("development_started", "Development Started", "#3b82f6"),
        ("development_finished", "Development Finished", "#2563eb"),
        ("testing", "Testing", "#f97316"),
        ("handed_over", "Handed Over", "#fb923c"),
        ("client_reviewing", "Client Reviewing", "#ec4899"),
        ("completed", "Completed", "#22c55e"),
    ]),
}
