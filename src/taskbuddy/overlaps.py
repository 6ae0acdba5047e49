"""Advisory schedule-conflict warnings for a child's day."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .config import DEFAULT_TASK_MINUTES
from .models import OverlapWarning
from .storage.persistence import active_assignments, transaction


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval test: back-to-back windows do not overlap."""

    return start_a < end_b and end_a > start_b


class ScheduleOverlapDetector:
    """Find active assignments that clash with a proposed time window.

    All-day proposals (``proposed_start is None``) only clash with other
    all-day tasks; timed proposals only clash with timed tasks. The result is
    a list of warnings and never blocks a write.
    """

    def __init__(self, engine: Engine, *, default_minutes: int = DEFAULT_TASK_MINUTES) -> None:
        self._engine = engine
        self._default_minutes = default_minutes

    def get_overlaps(
        self,
        child_id: str,
        proposed_start: Optional[time],
        duration_minutes: Optional[int],
        day: date,
        exclude_task_id: Optional[int] = None,
        *,
        session: Optional[Session] = None,
    ) -> List[OverlapWarning]:
        if session is None:
            with transaction(self._engine) as own_session:
                return self.get_overlaps(
                    child_id,
                    proposed_start,
                    duration_minutes,
                    day,
                    exclude_task_id,
                    session=own_session,
                )

        rows = active_assignments(session, child_id, day=day, exclude_task_id=exclude_task_id)
        day_start = datetime.combine(day, time.min)
        day_end = day_start + timedelta(days=1)

        if proposed_start is None:
            return [
                OverlapWarning(
                    assignment_id=assignment.id,
                    task_id=task.id,
                    task_title=task.title,
                    child_id=assignment.child_id,
                    start=day_start,
                    end=day_end,
                    all_day=True,
                )
                for assignment, task in rows
                if task.start_time is None
            ]

        start = datetime.combine(day, proposed_start)
        end = start + timedelta(minutes=self._minutes(duration_minutes))
        warnings: List[OverlapWarning] = []
        for assignment, task in rows:
            if task.start_time is None:
                continue
            existing_start = datetime.combine(day, task.start_time)
            existing_end = existing_start + timedelta(minutes=self._minutes(task.estimated_minutes))
            if intervals_overlap(start, end, existing_start, existing_end):
                warnings.append(
                    OverlapWarning(
                        assignment_id=assignment.id,
                        task_id=task.id,
                        task_title=task.title,
                        child_id=assignment.child_id,
                        start=existing_start,
                        end=existing_end,
                    )
                )
        return warnings

    def _minutes(self, value: Optional[int]) -> int:
        return self._default_minutes if value is None else value


__all__ = ["ScheduleOverlapDetector", "intervals_overlap"]
