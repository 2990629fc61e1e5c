"""Configure loguru sinks for the CLI and server entry points."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .constants import DEFAULT_LOG_LEVEL

_STDERR_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan> - "
    "{message}"
)


def configure_logging(level: str = DEFAULT_LOG_LEVEL, log_file: Optional[Path] = None) -> None:
    """Replace the default loguru sink with a stderr sink (and an optional file sink).

    Args:
        level: Minimum level name, case-insensitive.
        log_file: When given, also append plain-text records to this file.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_STDERR_FORMAT)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=level.upper(),
            format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level: <8} | {name}:{line} - {message}",
            encoding="utf-8",
        )
