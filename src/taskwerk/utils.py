"""Provide utility helpers for timestamps and task identifiers."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from .constants import DEFAULT_ID_WIDTH


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _format_task_id(prefix: str, number: int) -> str:
    return f"{prefix}-{number:0{DEFAULT_ID_WIDTH}d}"


def _next_task_id(prefix: str, existing: Iterable[str]) -> str:
    """Return the next sequential ``PREFIX-NNN`` id not present in *existing*."""
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    highest = 0
    for task_id in existing:
        m = pattern.match(task_id)
        if m:
            highest = max(highest, int(m.group(1)))
    return _format_task_id(prefix, highest + 1)


def _stringify(value: object) -> Optional[str]:
    """Render a field value for history: lists are comma-joined, None stays None."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(getattr(value, "value", value))
