from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_BACKEND_TIMEOUT_SECONDS,
    DEFAULT_BACKEND_URL,
    DEFAULT_LOG_LEVEL,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SEARCH_DEBOUNCE_SECONDS,
    DEFAULT_SYNC_FAILURE_THRESHOLD,
    STATE_DIR_NAME,
)
from .io_utils import load_yaml_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class BoardSyncConfig:
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    search_debounce_seconds: float = DEFAULT_SEARCH_DEBOUNCE_SECONDS
    sync_failure_threshold: int = DEFAULT_SYNC_FAILURE_THRESHOLD
    backend_url: str = DEFAULT_BACKEND_URL
    backend_timeout_seconds: float = DEFAULT_BACKEND_TIMEOUT_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL
    data_dir: str = STATE_DIR_NAME

    def data_path(self, project_dir: Path) -> Path:
        path = Path(self.data_dir)
        return path if path.is_absolute() else project_dir.resolve() / path


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _positive_float(raw: Any, default: float) -> float:
    if isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _non_negative_float(raw: Any, default: float) -> float:
    if isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


def _positive_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _non_empty_str(raw: Any, default: str) -> str:
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return default


def parse_config(data: dict[str, Any]) -> BoardSyncConfig:
    """Build a config from a raw mapping; invalid values fall back to defaults."""
    log_level = _non_empty_str(data.get("log_level"), DEFAULT_LOG_LEVEL).upper()
    if log_level not in VALID_LOG_LEVELS:
        log_level = DEFAULT_LOG_LEVEL
    return BoardSyncConfig(
        poll_interval_seconds=_positive_float(data.get("poll_interval_seconds"), DEFAULT_POLL_INTERVAL_SECONDS),
        search_debounce_seconds=_non_negative_float(
            data.get("search_debounce_seconds"), DEFAULT_SEARCH_DEBOUNCE_SECONDS
        ),
        sync_failure_threshold=_positive_int(data.get("sync_failure_threshold"), DEFAULT_SYNC_FAILURE_THRESHOLD),
        backend_url=_non_empty_str(_get_nested(data, "backend", "url"), DEFAULT_BACKEND_URL).rstrip("/"),
        backend_timeout_seconds=_positive_float(
            _get_nested(data, "backend", "timeout_seconds"), DEFAULT_BACKEND_TIMEOUT_SECONDS
        ),
        log_level=log_level,
        data_dir=_non_empty_str(data.get("data_dir"), STATE_DIR_NAME),
    )


def load_config(project_dir: Path) -> tuple[BoardSyncConfig, Optional[str]]:
    """Load the optional board config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns
        the defaults and `None`; a malformed file returns the defaults and the
        parse error.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    data, err = load_yaml_with_error(path, {})
    if err:
        return BoardSyncConfig(), err
    return parse_config(data), None
