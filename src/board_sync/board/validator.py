"""Decide whether a proposed move is allowed.

Rules are checked in order and the first match wins:

1. different team            -> reject (cross team)
2. user may not act there    -> reject (permission denied)
3. same status               -> accept, nothing changes
4. otherwise                 -> accept with the destination status
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

from .errors import RejectReason
from .model import Task, Team, User
from .permissions import can_act


class Destination(Protocol):
    team: Team
    status: str


@dataclass(frozen=True)
class Accept:
    new_status: str
    changed: bool = True


@dataclass(frozen=True)
class Reject:
    reason: RejectReason


Decision = Union[Accept, Reject]


def validate_transition(task: Task, dest: Destination, user: User) -> Decision:
    if task.team != dest.team:
        return Reject(RejectReason.CROSS_TEAM)
    if not can_act(user, dest.status, dest.team):
        return Reject(RejectReason.PERMISSION_DENIED)
    if task.status == dest.status:
        return Accept(new_status=task.status, changed=False)
    return Accept(new_status=dest.status)
