"""SQLModel storage layer for TaskBuddy."""
from __future__ import annotations

from . import persistence
from .persistence import *  # noqa: F401,F403

__all__ = ["persistence", *persistence.__all__]
