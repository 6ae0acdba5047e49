"""Configuration constants for the TaskBuddy progression engine."""
from __future__ import annotations

import os
from typing import Dict, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


DATABASE_URL = os.environ.get("TASKBUDDY_DATABASE_URL", "sqlite:///taskbuddy.db")
LOG_PATH = os.environ.get("TASKBUDDY_LOG_PATH", "")

# Level curve: XP needed to leave level N is floor(BASE_XP * GROWTH ** (N - 1)).
BASE_XP = _env_int("TASKBUDDY_BASE_XP", 100)
GROWTH_FACTOR = _env_float("TASKBUDDY_GROWTH_FACTOR", 1.5)
MAX_LEVEL = _env_int("TASKBUDDY_MAX_LEVEL", 100)
LEVEL_MULTIPLIER = _env_int("TASKBUDDY_LEVEL_MULTIPLIER", 5)

DEFAULT_DIFFICULTY = "medium"
TASK_XP: Dict[str, int] = {
    "easy": 10,
    "medium": 15,
    "hard": 35,
}

STREAK_MILESTONE_POINTS: Dict[int, int] = {
    7: 35,
    14: 70,
    30: 150,
    60: 300,
    100: 500,
}

# Completions stamped before this hour unlock early_completion achievements.
EARLY_BIRD_HOUR = _env_int("TASKBUDDY_EARLY_BIRD_HOUR", 9)
PERFECT_WEEK_DAYS = 7

MAX_ACTIVE_ASSIGNMENTS = _env_int("TASKBUDDY_MAX_ACTIVE_ASSIGNMENTS", 3)
MAX_ACTIVE_PRIMARY = _env_int("TASKBUDDY_MAX_ACTIVE_PRIMARY", 1)
DEFAULT_TASK_MINUTES = 60

ACTIVE_ASSIGNMENT_STATUSES: Tuple[str, ...] = ("pending", "in_progress")

STREAK_RISK_META_PREFIX = "streak_risk:"

__all__ = [
    "DATABASE_URL",
    "LOG_PATH",
    "BASE_XP",
    "GROWTH_FACTOR",
    "MAX_LEVEL",
    "LEVEL_MULTIPLIER",
    "DEFAULT_DIFFICULTY",
    "TASK_XP",
    "STREAK_MILESTONE_POINTS",
    "EARLY_BIRD_HOUR",
    "PERFECT_WEEK_DAYS",
    "MAX_ACTIVE_ASSIGNMENTS",
    "MAX_ACTIVE_PRIMARY",
    "DEFAULT_TASK_MINUTES",
    "ACTIVE_ASSIGNMENT_STATUSES",
    "STREAK_RISK_META_PREFIX",
]
