"""Load optional project configuration from `.taskwerk/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import CONFIG_FILE, DEFAULT_ID_PREFIX, DEFAULT_LOG_LEVEL, STATE_DIR_NAME
from .io_utils import _load_data_with_error


def load_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional project config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if not path.exists():
        return {}, None
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_lifecycle_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract lifecycle settings.

    Returns:
        A mapping with `cascade` (bool, default False).
    """
    raw = _get_nested(config, "lifecycle")
    raw = raw if isinstance(raw, dict) else {}
    return {"cascade": bool(raw.get("cascade", False))}


VALID_CHILD_POLICIES = {"orphan", "reparent", "cascade"}


def get_delete_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract delete settings.

    `child_policy` stays None unless the project explicitly picks one of
    `orphan`, `reparent` or `cascade`.
    """
    raw = _get_nested(config, "delete", "child_policy")
    policy = raw if isinstance(raw, str) and raw in VALID_CHILD_POLICIES else None
    return {"child_policy": policy}


def get_store_config(config: dict[str, Any]) -> dict[str, Any]:
    raw = _get_nested(config, "store", "id_prefix")
    prefix = raw.strip().upper() if isinstance(raw, str) and raw.strip() else DEFAULT_ID_PREFIX
    return {"id_prefix": prefix}


def get_logging_config(config: dict[str, Any]) -> dict[str, Any]:
    level = _get_nested(config, "logging", "level")
    log_file = _get_nested(config, "logging", "file")
    return {
        "level": str(level).upper() if isinstance(level, str) and level else DEFAULT_LOG_LEVEL,
        "file": str(log_file) if isinstance(log_file, str) and log_file else None,
    }
