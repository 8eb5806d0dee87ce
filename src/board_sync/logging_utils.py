"""Configure logging and summarize engine state for logs."""

import json
import sys
from typing import Any

from loguru import logger

from .constants import DEFAULT_LOG_LEVEL

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


def summarize_move_event(event: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a move event.

    Args:
        event: :class:`~board_sync.board.events.MoveEvent` (or None).

    Returns:
        A dictionary suitable for logging or serialization.
    """
    if event is None:
        return {"event": None}

    event_type = getattr(event, "type", None)
    d: dict[str, Any] = {"event": getattr(event_type, "value", str(event_type))}
    d["task_id"] = getattr(event, "task_id", None)

    column_id = getattr(event, "column_id", None)
    if column_id:
        d["column"] = column_id

    previous = getattr(event, "previous_status", None)
    new = getattr(event, "new_status", None)
    if previous is not None or new is not None:
        d["move"] = f"{previous} -> {new}"

    reason = getattr(event, "reason", None)
    if reason:
        d["reason"] = reason
    return d


def summarize_sync_state(poller: Any) -> dict[str, Any]:
    """Summarize a sync poller for status lines and logs."""
    filters = poller.filters
    d: dict[str, Any] = {
        "team": filters.team.value,
        "generation": poller.generation,
        "applied": poller.applied_generation,
        "fetching": poller.is_fetching,
        "failures": poller.consecutive_failures,
    }
    if filters.search_query:
        d["search"] = filters.search_query
    if poller.last_synced_at:
        d["last_synced_at"] = poller.last_synced_at
    if poller.last_error:
        d["last_error"] = poller.last_error
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
