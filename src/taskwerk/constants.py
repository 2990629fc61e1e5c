STATE_DIR_NAME = ".taskwerk"
CONFIG_FILE = "config.yaml"
STORE_FILE = "tasks.yaml"
LOCK_FILE = "tasks.lock"
SESSION_FILE = "session.yaml"

STORE_VERSION = 1
WINDOWS_LOCK_BYTES = 4096

DEFAULT_ID_PREFIX = "TASK"
DEFAULT_ID_WIDTH = 3
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_BASE_BRANCH = "main"

MISSING_DEPENDENCY_DESCRIPTION = "MISSING DEPENDENCY"
MISSING_STATUS = "missing"
