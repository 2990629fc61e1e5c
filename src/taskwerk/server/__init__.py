"""HTTP surface for the task engine."""

from __future__ import annotations

from .api import create_app

__all__ = ["create_app"]
