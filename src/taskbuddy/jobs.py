"""Scheduled jobs: recurring assignment generation and streak-at-risk scans.

Both jobs take the date or moment to process as an argument and are safe to
run more than once for the same calendar day. A failure for one child is
counted, logged and audited; the rest of the batch still runs.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import col, select

from .admin import AuditLog
from .capacity import CapacityGuard
from .config import STREAK_RISK_META_PREFIX
from .models import AssignmentStatus, BatchSummary, TaskStatus
from .notifications import NotificationCenter, Notifier, streak_at_risk, task_limit_reached
from .ops import StructuredLogger
from .storage.persistence import ChildProgress, Task, TaskAssignment, get_meta, set_meta, transaction
from .streaks import StreakTracker

_SOURCE_STATUSES = (
    AssignmentStatus.PENDING.value,
    AssignmentStatus.IN_PROGRESS.value,
    AssignmentStatus.COMPLETED.value,
    AssignmentStatus.APPROVED.value,
)


class RecurringAssignmentGenerator:
    """Create the day's assignments for every active recurring task."""

    def __init__(
        self,
        engine: Engine,
        capacity: CapacityGuard,
        *,
        notifier: Optional[Notifier] = None,
        audit: Optional[AuditLog] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._engine = engine
        self._capacity = capacity
        self._notifier = notifier or NotificationCenter()
        self._audit = audit or AuditLog()
        self._logger = logger or StructuredLogger()

    def generate(self, for_day: date) -> BatchSummary:
        summary = BatchSummary(run_date=for_day)
        targets = self._targets()
        self._logger.log("recurring_generation_started", date=for_day.isoformat(), tasks=len(targets))
        for task_id, child_id in targets:
            try:
                outcome = self._generate_one(task_id, child_id, for_day)
            except Exception as exc:
                summary.errors += 1
                self._logger.error("recurring_generation_failed", exc, task=task_id, child=child_id)
                self._audit.log_system(
                    "ERROR",
                    "task_assignment",
                    task_id,
                    child_id=child_id,
                    date=for_day.isoformat(),
                    error=str(exc),
                )
                continue
            if outcome == "created":
                summary.created += 1
            elif outcome == "skipped":
                summary.skipped += 1
        self._logger.log(
            "recurring_generation_finished",
            date=for_day.isoformat(),
            created=summary.created,
            skipped=summary.skipped,
            errors=summary.errors,
        )
        return summary

    def _targets(self) -> List[Tuple[int, str]]:
        with transaction(self._engine) as session:
            tasks = session.exec(
                select(Task)
                .where(Task.is_recurring == True)  # noqa: E712
                .where(Task.status == TaskStatus.ACTIVE.value)
                .where(col(Task.deleted_at).is_(None))
                .order_by(Task.id)
            ).all()
            targets: List[Tuple[int, str]] = []
            for task in tasks:
                child_ids = session.exec(
                    select(TaskAssignment.child_id)
                    .where(TaskAssignment.task_id == task.id)
                    .where(col(TaskAssignment.status).in_(_SOURCE_STATUSES))
                    .distinct()
                    .order_by(TaskAssignment.child_id)
                ).all()
                targets.extend((task.id, child_id) for child_id in child_ids)
            return targets

    def _generate_one(self, task_id: int, child_id: str, for_day: date) -> str:
        with transaction(self._engine) as session:
            task = session.get(Task, task_id)
            if task is None:
                return "missing"
            existing = session.exec(
                select(TaskAssignment)
                .where(TaskAssignment.task_id == task_id)
                .where(TaskAssignment.child_id == child_id)
                .where(TaskAssignment.instance_date == for_day)
            ).first()
            if existing is not None:
                return "exists"
            title, tag = task.title, task.task_tag
            family_id = session.exec(
                select(ChildProgress.family_id).where(ChildProgress.child_id == child_id)
            ).first()
            if family_id is None:
                family_id = task.family_id
            check = self._capacity.check_assignment_limits(child_id, tag, session=session)
            if check.allowed:
                assignment = TaskAssignment(
                    task_id=task_id,
                    child_id=child_id,
                    instance_date=for_day,
                    status=AssignmentStatus.PENDING.value,
                )
                session.add(assignment)
                session.flush()
                assignment_id = assignment.id

        if not check.allowed:
            reason = check.reason or "Assignment limit reached."
            self._logger.warning("recurring_assignment_skipped", task=task_id, child=child_id, reason=reason)
            self._notifier.publish(task_limit_reached(family_id, child_id, title, reason))
            self._audit.log_system(
                "SKIP",
                "task_assignment",
                task_id,
                reason="assignment_limit_reached",
                child_id=child_id,
                task_title=title,
                task_tag=tag,
                date=for_day.isoformat(),
            )
            return "skipped"

        self._audit.log_system(
            "CREATE",
            "task_assignment",
            assignment_id,
            reason="recurring_scheduler",
            task_id=task_id,
            child_id=child_id,
            date=for_day.isoformat(),
        )
        return "created"


class StreakRiskScanner:
    """Warn about streaks that will break unless the child finishes a task today.

    Each child is warned at most once per calendar date. The marker is a
    ``MetaKV`` row per child and is only written once the warning has been
    published, so children still inside their grace window (or whose check
    failed) are looked at again by the next run that day.
    """

    def __init__(
        self,
        engine: Engine,
        streaks: StreakTracker,
        *,
        notifier: Optional[Notifier] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        meta_prefix: str = STREAK_RISK_META_PREFIX,
    ) -> None:
        self._engine = engine
        self._streaks = streaks
        self._notifier = notifier or NotificationCenter()
        self._logger = logger or StructuredLogger()
        self._clock = clock or datetime.now
        self._meta_prefix = meta_prefix

    def scan(self, now: Optional[datetime] = None) -> BatchSummary:
        moment = now or self._clock()
        summary = BatchSummary(run_date=moment.date())
        today = summary.run_date.isoformat()
        with transaction(self._engine) as session:
            children = session.exec(
                select(ChildProgress.child_id, ChildProgress.current_streak_days)
                .where(ChildProgress.current_streak_days > 0)
                .order_by(ChildProgress.child_id)
            ).all()
            warned = {
                child_id
                for child_id, _ in children
                if get_meta(session, self._marker(child_id)) == today
            }

        for child_id, current_streak in children:
            if child_id in warned:
                summary.skipped += 1
                continue
            try:
                at_risk = self._streaks.is_streak_at_risk(child_id, moment)
                if at_risk:
                    self._notifier.publish(streak_at_risk(child_id, current_streak))
                    with transaction(self._engine) as session:
                        set_meta(session, self._marker(child_id), today)
            except Exception as exc:
                summary.errors += 1
                self._logger.error("streak_scan_failed", exc, child=child_id)
                continue
            if at_risk:
                summary.notified += 1
            else:
                summary.skipped += 1
        summary.already_processed = bool(children) and len(warned) == len(children)
        self._logger.log(
            "streak_scan_finished",
            date=today,
            notified=summary.notified,
            skipped=summary.skipped,
            errors=summary.errors,
        )
        return summary

    def _marker(self, child_id: str) -> str:
        return f"{self._meta_prefix}{child_id}"


__all__ = ["RecurringAssignmentGenerator", "StreakRiskScanner"]
