"""Observable state changes of the optimistic mutator.

The UI subscribes to these to show spinners, rejection toasts and rollback
notices.  Delivery is synchronous and in emission order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from .model import now_iso


class MoveEventType(str, Enum):
    VALIDATING = "validating"
    QUEUED = "queued"
    REJECTED = "rejected"
    APPLIED = "applied"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MoveEvent:
    type: MoveEventType
    task_id: str
    column_id: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    reason: Optional[str] = None
    ts: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ts": self.ts,
            "type": self.type.value,
            "task_id": self.task_id,
            "column_id": self.column_id,
        }
        if self.previous_status is not None:
            payload["previous_status"] = self.previous_status
        if self.new_status is not None:
            payload["new_status"] = self.new_status
        if self.reason:
            payload["reason"] = self.reason
        return payload


MoveListener = Callable[[MoveEvent], None]


class MoveEventBus:
    """Fan out move events to subscribers.

    Usage::

        bus = MoveEventBus()
        unsubscribe = bus.subscribe(print)
        bus.subscribe(on_rollback, MoveEventType.ROLLED_BACK)
    """

    def __init__(self) -> None:
        self._listeners: list[tuple[Optional[MoveEventType], MoveListener]] = []

    def subscribe(
        self,
        callback: MoveListener,
        event_type: Optional[MoveEventType] = None,
    ) -> Callable[[], None]:
        entry = (event_type, callback)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def emit(self, event: MoveEvent) -> None:
        logger.debug("Move event {} for {} ({})", event.type.value, event.task_id, event.column_id)
        for event_type, callback in list(self._listeners):
            if event_type is not None and event_type != event.type:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Move event listener failed on {} for {}", event.type.value, event.task_id)
