STATE_DIR_NAME = ".board_sync"
CONFIG_FILE = "config.yaml"
TASKS_FILE = "tasks.yaml"
STATUSES_FILE = "statuses.yaml"
LOCK_FILE = "board.lock"
WINDOWS_LOCK_BYTES = 4096

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_SEARCH_DEBOUNCE_SECONDS = 0.2
DEFAULT_SYNC_FAILURE_THRESHOLD = 3
DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
DEFAULT_BACKEND_TIMEOUT_SECONDS = 10.0
DEFAULT_LOG_LEVEL = "INFO"

COLUMN_ID_SEPARATOR = "_"
