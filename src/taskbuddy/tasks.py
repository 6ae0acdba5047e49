"""Task assignment lifecycle: completion, approval and the reward pipeline."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from .achievements import AchievementRuleEngine
from .config import EARLY_BIRD_HOUR, PERFECT_WEEK_DAYS
from .exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .gamification import task_xp
from .ledger import ProgressionLedger
from .levels import LevelUpAwarder
from .models import (
    Actor,
    ApprovalResult,
    AssignmentStatus,
    CompletionResult,
    CriteriaType,
    UnlockedAchievement,
)
from .notifications import NotificationCenter, Notifier, achievements_unlocked, level_up
from .ops import StructuredLogger
from .storage.persistence import Task, TaskAssignment, get_child_progress, transaction
from .streaks import StreakTracker


class TaskCompletionStateMachine:
    """Drive assignments through ``pending -> in_progress -> completed -> approved|rejected``.

    Approval pays points and XP in a single transaction. Once it commits the
    follow-ups run in a fixed order, each in its own transaction: level-up
    bonus, achievements, streak. A failing follow-up is logged and skipped;
    the approval itself stands.
    """

    def __init__(
        self,
        engine: Engine,
        ledger: ProgressionLedger,
        levels: LevelUpAwarder,
        achievements: AchievementRuleEngine,
        streaks: StreakTracker,
        *,
        notifier: Optional[Notifier] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        early_bird_hour: int = EARLY_BIRD_HOUR,
        perfect_week_days: int = PERFECT_WEEK_DAYS,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._levels = levels
        self._achievements = achievements
        self._streaks = streaks
        self._notifier = notifier or NotificationCenter()
        self._logger = logger or StructuredLogger()
        self._clock = clock or datetime.now
        self._early_bird_hour = early_bird_hour
        self._perfect_week_days = perfect_week_days

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def start(self, assignment_id: int, actor: Actor) -> TaskAssignment:
        with transaction(self._engine) as session:
            assignment, _task = self._load(session, assignment_id)
            self._ensure_owner(assignment, actor, "start")
            if assignment.status != AssignmentStatus.PENDING.value:
                raise ConflictError("Only pending tasks can be started.")
            assignment.status = AssignmentStatus.IN_PROGRESS.value
            session.add(assignment)
            return assignment

    def complete(self, assignment_id: int, actor: Actor, note: str | None = None) -> CompletionResult:
        moment = self._clock()
        with transaction(self._engine) as session:
            assignment, task = self._load(session, assignment_id)
            self._ensure_owner(assignment, actor, "complete")
            if not AssignmentStatus(assignment.status).is_active:
                raise ConflictError("Task is already completed or processed.")
            assignment.status = AssignmentStatus.COMPLETED.value
            assignment.completed_at = moment
            if note and note.strip():
                assignment.completion_note = note.strip()
            session.add(assignment)
            auto_approve = task.auto_approve
            child_id = assignment.child_id

        self._logger.log("assignment_completed", assignment=assignment_id, child=child_id)
        result = CompletionResult(
            assignment_id=assignment_id,
            child_id=child_id,
            status=AssignmentStatus.COMPLETED,
            completed_at=moment,
        )
        if auto_approve:
            result.approval = self._pay(assignment_id, approver_id=None, auto=True)
            result.status = result.approval.status
        return result

    def approve(
        self,
        assignment_id: int,
        approved: bool = True,
        rejection_reason: str | None = None,
        *,
        approver_id: str | None = None,
    ) -> ApprovalResult:
        if approved:
            return self._pay(assignment_id, approver_id=approver_id, auto=False)
        return self._reject(assignment_id, rejection_reason, approver_id)

    def reject(self, assignment_id: int, reason: str | None = None, *, approver_id: str | None = None) -> ApprovalResult:
        return self._reject(assignment_id, reason, approver_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _reject(self, assignment_id: int, reason: str | None, approver_id: str | None) -> ApprovalResult:
        with transaction(self._engine) as session:
            assignment, _task = self._load(session, assignment_id)
            self._ensure_completed(assignment)
            assignment.status = AssignmentStatus.REJECTED.value
            assignment.rejection_reason = (reason or "").strip() or None
            assignment.approved_by = approver_id
            session.add(assignment)
            child_id = assignment.child_id
        self._logger.log("assignment_rejected", assignment=assignment_id, child=child_id)
        return ApprovalResult(assignment_id=assignment_id, child_id=child_id, status=AssignmentStatus.REJECTED)

    def _pay(self, assignment_id: int, *, approver_id: str | None, auto: bool) -> ApprovalResult:
        moment = self._clock()
        with transaction(self._engine) as session:
            assignment, task = self._load(session, assignment_id)
            self._ensure_completed(assignment)
            if task.points_value < 0:
                raise ValidationError(f"Task '{task.title}' has a negative points value.")
            child_id = assignment.child_id
            progress = get_child_progress(session, child_id, for_update=True)
            level_before = progress.level
            points = task.points_value
            xp = task_xp(task.difficulty)

            assignment.status = AssignmentStatus.APPROVED.value
            assignment.approved_at = moment
            assignment.approved_by = approver_id
            assignment.points_awarded = points
            assignment.xp_awarded = xp
            session.add(assignment)

            if points > 0:
                label = "Auto-approved" if auto else "Completed"
                self._ledger.record_earn(
                    session,
                    child_id,
                    points,
                    reference_type="task_completion",
                    reference_id=str(assignment.id),
                    description=f"{label}: {task.title}",
                    created_by=approver_id,
                )
            progress.experience_points += xp
            progress.total_xp_earned += xp
            progress.total_tasks_completed += 1
            progress.updated_at = moment
            session.add(progress)
            completed_at = assignment.completed_at
            new_balance = progress.points_balance

        self._logger.log(
            "assignment_approved",
            assignment=assignment_id,
            child=child_id,
            points=points,
            xp=xp,
            auto=auto,
        )
        result = ApprovalResult(
            assignment_id=assignment_id,
            child_id=child_id,
            status=AssignmentStatus.APPROVED,
            points_awarded=points,
            xp_awarded=xp,
            new_balance=new_balance,
            auto_approved=auto,
        )
        self._run_followups(result, level_before, completed_at, moment)
        return result

    def _run_followups(
        self,
        result: ApprovalResult,
        level_before: int,
        completed_at: Optional[datetime],
        moment: datetime,
    ) -> None:
        child_id = result.child_id
        result.level_up = self._guarded("level_up", child_id, self._levels.apply, child_id, level_before)

        unlocked: List[UnlockedAchievement] = []
        unlocked += self._guarded("achievements", child_id, self._achievements.evaluate, child_id) or []
        if completed_at is not None and completed_at.hour < self._early_bird_hour:
            unlocked += self._guarded(
                "early_completion",
                child_id,
                self._achievements.trigger_event,
                child_id,
                CriteriaType.EARLY_COMPLETION,
            ) or []
        if self._guarded("perfect_week_check", child_id, self._has_perfect_week, child_id, moment):
            unlocked += self._guarded(
                "perfect_week",
                child_id,
                self._achievements.trigger_event,
                child_id,
                CriteriaType.PERFECT_WEEK,
            ) or []
        result.unlocked_achievements = unlocked

        result.streak = self._guarded("streak", child_id, self._streaks.evaluate, child_id, moment)

        if result.level_up is not None and result.level_up.leveled_up:
            self._guarded("notify_level_up", child_id, self._notifier.publish, level_up(child_id, result.level_up))
        if unlocked:
            self._guarded(
                "notify_achievements",
                child_id,
                self._notifier.publish,
                achievements_unlocked(child_id, unlocked),
            )

    def _guarded(self, step: str, child_id: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except Exception as exc:
            self._logger.error("followup_failed", exc, step=step, child=child_id)
            return None

    def _has_perfect_week(self, child_id: str, moment: datetime) -> bool:
        """True when every one of the last N calendar days has an approval."""

        today = moment.date()
        first_day = today - timedelta(days=self._perfect_week_days - 1)
        window_start = datetime.combine(first_day, datetime.min.time())
        with transaction(self._engine) as session:
            approved_at = session.exec(
                select(TaskAssignment.approved_at)
                .where(TaskAssignment.child_id == child_id)
                .where(TaskAssignment.status == AssignmentStatus.APPROVED.value)
                .where(col(TaskAssignment.approved_at) >= window_start)
            ).all()
        days = {stamp.date() for stamp in approved_at if stamp is not None}
        return all(first_day + timedelta(days=offset) in days for offset in range(self._perfect_week_days))

    def _load(self, session: Session, assignment_id: int) -> Tuple[TaskAssignment, Task]:
        assignment = session.get(TaskAssignment, assignment_id, with_for_update=True)
        if assignment is None:
            raise NotFoundError(f"Assignment {assignment_id} not found.")
        task = session.get(Task, assignment.task_id)
        if task is None or task.deleted_at is not None:
            raise NotFoundError(f"Task for assignment {assignment_id} not found.")
        return assignment, task

    @staticmethod
    def _ensure_owner(assignment: TaskAssignment, actor: Actor, verb: str) -> None:
        if actor.is_child and assignment.child_id != actor.user_id:
            raise ForbiddenError(f"Cannot {verb} another child's task.")

    @staticmethod
    def _ensure_completed(assignment: TaskAssignment) -> None:
        if assignment.status != AssignmentStatus.COMPLETED.value:
            raise ConflictError(
                f"Assignment {assignment.id} is {assignment.status}; only completed tasks can be reviewed."
            )


__all__ = ["TaskCompletionStateMachine"]
