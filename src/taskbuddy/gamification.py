"""XP, level and bonus arithmetic for TaskBuddy.

Everything in this module is pure: no database access, no clock. XP is the
lifetime progression currency and is never spent; points are the spendable
currency handled by :mod:`taskbuddy.ledger`.

Level thresholds with the default curve::

    Level 1 -> 2:  100 XP
    Level 2 -> 3:  150 XP
    Level 3 -> 4:  225 XP
"""

from __future__ import annotations

import math

from .config import BASE_XP, DEFAULT_DIFFICULTY, GROWTH_FACTOR, LEVEL_MULTIPLIER, MAX_LEVEL, TASK_XP
from .exceptions import ValidationError
from .models import LevelProgress


def xp_required_for_level(
    level: int,
    *,
    base_xp: int = BASE_XP,
    growth: float = GROWTH_FACTOR,
) -> int:
    """Return the XP needed to advance from ``level`` to ``level + 1``."""

    if level < 1:
        raise ValidationError("level must be 1 or greater.")
    return math.floor(base_xp * growth ** (level - 1))


def calculate_level_from_xp(
    total_xp_earned: int,
    *,
    base_xp: int = BASE_XP,
    growth: float = GROWTH_FACTOR,
    max_level: int = MAX_LEVEL,
) -> LevelProgress:
    """Convert lifetime XP into a level plus the progress inside that level.

    Growth stops at ``max_level``: any XP beyond the ceiling stays in
    ``current_level_xp`` and ``xp_to_next_level`` is reported as 0.
    """

    if total_xp_earned < 0:
        raise ValidationError("total_xp_earned cannot be negative.")
    if max_level < 1:
        raise ValidationError("max_level must be 1 or greater.")

    level = 1
    remaining = total_xp_earned
    while level < max_level:
        threshold = xp_required_for_level(level, base_xp=base_xp, growth=growth)
        if remaining < threshold:
            break
        remaining -= threshold
        level += 1

    if level >= max_level:
        return LevelProgress(level=max_level, current_level_xp=remaining, xp_to_next_level=0)
    return LevelProgress(
        level=level,
        current_level_xp=remaining,
        xp_to_next_level=xp_required_for_level(level, base_xp=base_xp, growth=growth),
    )


def task_xp(difficulty: str | None) -> int:
    """XP for approving a task; unknown difficulties earn the medium value."""

    key = (difficulty or "").strip().lower()
    return TASK_XP.get(key, TASK_XP[DEFAULT_DIFFICULTY])


def level_bonus(old_level: int, new_level: int, *, multiplier: int = LEVEL_MULTIPLIER) -> int:
    """Sum of ``L * multiplier`` for every level in ``(old_level, new_level]``."""

    return sum(level * multiplier for level in range(old_level + 1, new_level + 1))


__all__ = [
    "xp_required_for_level",
    "calculate_level_from_xp",
    "task_xp",
    "level_bonus",
]
