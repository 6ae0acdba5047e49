"""Achievement unlock rules for TaskBuddy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .exceptions import ConflictError, ValidationError
from .ledger import ProgressionLedger
from .models import CriteriaType, UnlockedAchievement
from .storage.persistence import (
    Achievement,
    ChildAchievement,
    ChildProgress,
    count_active_redemptions,
    get_child_progress,
    transaction,
    unlocked_achievement_ids,
)


@dataclass(frozen=True, slots=True)
class AchievementStats:
    """Aggregates the generic pass compares criteria against."""

    total_tasks_completed: int
    current_streak_days: int
    longest_streak_days: int
    total_points_earned: int
    level: int
    rewards_redeemed: int


def _never(_stats: AchievementStats, _value: int) -> bool:
    return False


_CHECKS: Dict[CriteriaType, Callable[[AchievementStats, int], bool]] = {
    CriteriaType.TASKS_COMPLETED: lambda stats, value: stats.total_tasks_completed >= value,
    CriteriaType.STREAK_DAYS: lambda stats, value: (
        stats.current_streak_days >= value or stats.longest_streak_days >= value
    ),
    CriteriaType.POINTS_EARNED: lambda stats, value: stats.total_points_earned >= value,
    CriteriaType.LEVEL_REACHED: lambda stats, value: stats.level >= value,
    CriteriaType.REWARDS_REDEEMED: lambda stats, value: stats.rewards_redeemed >= value,
    # Event-only: decided by trigger_event when the caller knows the context.
    CriteriaType.EARLY_COMPLETION: _never,
    CriteriaType.PERFECT_WEEK: _never,
}
_unchecked = set(CriteriaType) - set(_CHECKS)
if _unchecked:
    raise RuntimeError(f"No achievement check for: {sorted(item.value for item in _unchecked)}")


def parse_criteria(achievement: Achievement) -> Tuple[CriteriaType, int]:
    """Validate an achievement definition and return its typed criterion."""

    raw_type = (achievement.unlock_criteria_type or "").strip()
    try:
        criteria_type = CriteriaType(raw_type)
    except ValueError as exc:
        raise ValidationError(
            f"Achievement '{achievement.name}' has unknown criteria type {raw_type!r}."
        ) from exc
    value = achievement.unlock_criteria_value
    if criteria_type.is_event_only:
        return criteria_type, value or 0
    if value is None or value < 0:
        raise ValidationError(
            f"Achievement '{achievement.name}' needs a non-negative criteria value."
        )
    return criteria_type, value


class AchievementRuleEngine:
    """Unlock achievements and pay their rewards as one combined ledger entry."""

    def __init__(
        self,
        engine: Engine,
        ledger: ProgressionLedger,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._clock = clock or datetime.now

    def evaluate(self, child_id: str) -> List[UnlockedAchievement]:
        """Unlock every achievement whose aggregate criterion is now satisfied."""

        with transaction(self._engine) as session:
            progress = get_child_progress(session, child_id, for_update=True)
            already = unlocked_achievement_ids(session, child_id)
            locked = [
                achievement
                for achievement in session.exec(select(Achievement).order_by(Achievement.id)).all()
                if achievement.id not in already
            ]
            if not locked:
                return []
            parsed = [(achievement, *parse_criteria(achievement)) for achievement in locked]

            redemptions: Optional[int] = None
            if any(criteria is CriteriaType.REWARDS_REDEEMED for _, criteria, _ in parsed):
                redemptions = count_active_redemptions(session, child_id)
            stats = AchievementStats(
                total_tasks_completed=progress.total_tasks_completed,
                current_streak_days=progress.current_streak_days,
                longest_streak_days=progress.longest_streak_days,
                total_points_earned=progress.total_points_earned,
                level=progress.level,
                rewards_redeemed=redemptions or 0,
            )
            satisfied = [
                achievement for achievement, criteria, value in parsed if _CHECKS[criteria](stats, value)
            ]
            return self._unlock(session, progress, satisfied)

    def trigger_event(self, child_id: str, criteria_type: CriteriaType | str) -> List[UnlockedAchievement]:
        """Unlock the event-only achievements of ``criteria_type`` for a child."""

        try:
            criteria = CriteriaType(criteria_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown criteria type {criteria_type!r}.") from exc
        if not criteria.is_event_only:
            raise ValidationError(f"'{criteria.value}' is evaluated by the generic pass, not by events.")

        with transaction(self._engine) as session:
            progress = get_child_progress(session, child_id, for_update=True)
            already = unlocked_achievement_ids(session, child_id)
            candidates = session.exec(
                select(Achievement)
                .where(Achievement.unlock_criteria_type == criteria.value)
                .order_by(Achievement.id)
            ).all()
            return self._unlock(
                session,
                progress,
                [achievement for achievement in candidates if achievement.id not in already],
            )

    def unlocked(self, child_id: str) -> Sequence[ChildAchievement]:
        with transaction(self._engine) as session:
            query = (
                select(ChildAchievement)
                .where(ChildAchievement.child_id == child_id)
                .order_by(ChildAchievement.id)
            )
            return session.exec(query).all()

    def _unlock(
        self,
        session: Session,
        progress: ChildProgress,
        achievements: Sequence[Achievement],
    ) -> List[UnlockedAchievement]:
        child_id = progress.child_id
        moment = self._clock()
        unlocked: List[UnlockedAchievement] = []
        for achievement in achievements:
            exists = session.exec(
                select(ChildAchievement)
                .where(ChildAchievement.child_id == child_id)
                .where(ChildAchievement.achievement_id == achievement.id)
            ).first()
            if exists is not None:
                continue
            session.add(
                ChildAchievement(
                    child_id=child_id,
                    achievement_id=achievement.id,
                    unlocked_at=moment,
                    progress_value=100,
                )
            )
            unlocked.append(
                UnlockedAchievement(
                    id=achievement.id,
                    name=achievement.name,
                    points_reward=achievement.points_reward,
                    xp_reward=achievement.xp_reward,
                    tier=achievement.tier,
                )
            )
        if not unlocked:
            return []
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Achievement already unlocked for {child_id}.") from exc

        total_points = sum(item.points_reward for item in unlocked)
        total_xp = sum(item.xp_reward for item in unlocked)
        if total_points > 0:
            self._ledger.record_earn(
                session,
                child_id,
                total_points,
                reference_type="achievement_bonus",
                reference_id=",".join(str(item.id) for item in unlocked),
                description="Achievement bonus: " + ", ".join(item.name for item in unlocked),
            )
        if total_xp > 0:
            # In-level counter only; lifetime XP and level are untouched here.
            progress.experience_points += total_xp
            progress.updated_at = moment
            session.add(progress)
        return unlocked


__all__ = ["AchievementRuleEngine", "AchievementStats", "parse_criteria"]
