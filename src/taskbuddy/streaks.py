"""Daily streak tracking with a per-family grace period."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, Mapping, Optional

from sqlalchemy.engine import Engine

from .config import STREAK_MILESTONE_POINTS
from .ledger import ProgressionLedger
from .models import StreakResult
from .storage.persistence import get_child_progress, get_family_grace_hours, transaction


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole calendar days between two moments, compared at midnight."""

    return (_midnight(later) - _midnight(earlier)).days


def grace_deadline(now: datetime, grace_hours: int) -> datetime:
    return _midnight(now) + timedelta(hours=grace_hours)


def next_streak(current: int, last_activity: Optional[datetime], now: datetime, grace_hours: int) -> int:
    """Streak value after an activity at ``now``.

    A gap of exactly two days survives once when the family has a grace
    period and ``now`` is still inside today's grace window.
    """

    if last_activity is None:
        return 1
    gap = days_between(last_activity, now)
    if gap == 0:
        return current
    if gap == 1:
        return current + 1
    if gap == 2 and grace_hours > 0 and now <= grace_deadline(now, grace_hours):
        return current + 1
    return 1


class StreakTracker:
    """Maintain ``current_streak_days`` / ``longest_streak_days`` for children."""

    def __init__(
        self,
        engine: Engine,
        ledger: ProgressionLedger,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        milestones: Optional[Mapping[int, int]] = None,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._clock = clock or datetime.now
        self._milestones: Dict[int, int] = dict(STREAK_MILESTONE_POINTS if milestones is None else milestones)

    def evaluate(self, child_id: str, now: Optional[datetime] = None) -> StreakResult:
        moment = now or self._clock()
        with transaction(self._engine) as session:
            progress = get_child_progress(session, child_id, for_update=True)
            grace_hours = get_family_grace_hours(session, progress.family_id)
            previous = progress.current_streak_days
            streak = next_streak(previous, progress.last_activity_date, moment, grace_hours)

            progress.current_streak_days = streak
            progress.longest_streak_days = max(progress.longest_streak_days, streak)
            progress.last_activity_date = moment
            progress.updated_at = moment
            session.add(progress)

            bonus = 0
            if streak != previous:
                bonus = self._milestones.get(streak, 0)
            if bonus > 0:
                self._ledger.record_milestone_bonus(
                    session,
                    child_id,
                    bonus,
                    reference_type="streak_milestone",
                    reference_id=child_id,
                    description=f"{streak}-day streak milestone! Bonus {bonus} Points",
                )
            return StreakResult(
                previous_streak=previous,
                current_streak=streak,
                longest_streak=progress.longest_streak_days,
                milestone_bonus=bonus,
            )

    def is_streak_at_risk(self, child_id: str, now: Optional[datetime] = None) -> bool:
        """True once a running streak has no activity today and no grace left."""

        moment = now or self._clock()
        with transaction(self._engine) as session:
            progress = get_child_progress(session, child_id)
            if progress.current_streak_days <= 0 or progress.last_activity_date is None:
                return False
            if days_between(progress.last_activity_date, moment) == 0:
                return False
            grace_hours = get_family_grace_hours(session, progress.family_id)
            within_grace = grace_hours > 0 and moment <= grace_deadline(moment, grace_hours)
            return not within_grace


__all__ = ["StreakTracker", "days_between", "grace_deadline", "next_streak"]
