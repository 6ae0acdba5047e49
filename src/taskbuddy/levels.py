"""Level-up detection and milestone bonus payouts."""

from __future__ import annotations

from sqlalchemy.engine import Engine

from .config import BASE_XP, GROWTH_FACTOR, LEVEL_MULTIPLIER, MAX_LEVEL
from .gamification import calculate_level_from_xp, level_bonus
from .ledger import ProgressionLedger
from .models import LevelUpResult
from .storage.persistence import get_child_progress, transaction


class LevelUpAwarder:
    """Compare a child's stored level with the one their lifetime XP implies.

    Runs after the XP deposit has committed. Gaining levels pays one
    ``milestone_bonus`` entry covering every level crossed; an unchanged
    level only repairs a drifted ``level`` column.
    """

    __slots__ = ("_engine", "_ledger", "_multiplier", "_base_xp", "_growth", "_max_level")

    def __init__(
        self,
        engine: Engine,
        ledger: ProgressionLedger,
        *,
        multiplier: int = LEVEL_MULTIPLIER,
        base_xp: int = BASE_XP,
        growth: float = GROWTH_FACTOR,
        max_level: int = MAX_LEVEL,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._multiplier = multiplier
        self._base_xp = base_xp
        self._growth = growth
        self._max_level = max_level

    def apply(self, child_id: str, level_before: int) -> LevelUpResult:
        with transaction(self._engine) as session:
            progress = get_child_progress(session, child_id, for_update=True)
            new_level = calculate_level_from_xp(
                progress.total_xp_earned,
                base_xp=self._base_xp,
                growth=self._growth,
                max_level=self._max_level,
            ).level
            # A concurrent follow-up may already have paid for these levels.
            baseline = max(level_before, progress.level)

            if new_level <= baseline:
                if progress.level != new_level:
                    progress.level = new_level
                    session.add(progress)
                return LevelUpResult(leveled_up=False, old_level=level_before, new_level=new_level)

            bonus = level_bonus(baseline, new_level, multiplier=self._multiplier)
            progress.level = new_level
            session.add(progress)
            if new_level == baseline + 1:
                description = f"Level up! Reached Level {new_level} - bonus {bonus} Points"
            else:
                description = f"Multi-level up! Level {baseline} -> {new_level} - bonus {bonus} Points"
            if bonus > 0:
                self._ledger.record_milestone_bonus(
                    session,
                    child_id,
                    bonus,
                    reference_type="level_up",
                    reference_id=child_id,
                    description=description,
                )
            return LevelUpResult(
                leveled_up=True,
                old_level=baseline,
                new_level=new_level,
                bonus_points_awarded=bonus,
            )


__all__ = ["LevelUpAwarder"]
