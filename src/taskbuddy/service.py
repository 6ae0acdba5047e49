"""High level service wiring every TaskBuddy collaborator to one database."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import select

from .achievements import AchievementRuleEngine
from .admin import AuditLog
from .assignments import AssignmentPlanner
from .capacity import CapacityGuard
from .config import DATABASE_URL
from .exceptions import ConflictError, ValidationError
from .gamification import calculate_level_from_xp
from .jobs import RecurringAssignmentGenerator, StreakRiskScanner
from .ledger import ProgressionLedger
from .levels import LevelUpAwarder
from .models import (
    Actor,
    ApprovalResult,
    AssignmentPlan,
    BatchSummary,
    CapacityCheck,
    CompletionResult,
    LevelProgress,
    OverlapWarning,
    StreakResult,
    UnlockedAchievement,
)
from .notifications import NotificationCenter, Notifier
from .ops import StructuredLogger
from .overlaps import ScheduleOverlapDetector
from .rewards import RewardRedemptions
from .storage.persistence import (
    ChildProgress,
    LedgerEntry,
    RewardRedemption,
    TaskAssignment,
    create_db_and_tables,
    create_engine_for,
    get_child_progress,
    transaction,
)
from .streaks import StreakTracker
from .tasks import TaskCompletionStateMachine


class TaskBuddy:
    """Coordinate task approvals, points, levels, streaks and scheduled jobs."""

    __slots__ = (
        "_engine",
        "_clock",
        "_logger",
        "_audit_log",
        "_notifications",
        "_ledger",
        "_levels",
        "_achievements",
        "_streaks",
        "_capacity",
        "_overlaps",
        "_planner",
        "_rewards",
        "_tasks",
        "_recurring",
        "_streak_scanner",
    )

    def __init__(
        self,
        engine: Engine | None = None,
        *,
        database_url: str = DATABASE_URL,
        clock: Optional[Callable[[], datetime]] = None,
        notifier: Optional[Notifier] = None,
        logger: Optional[StructuredLogger] = None,
        create_tables: bool = True,
    ) -> None:
        self._engine = engine if engine is not None else create_engine_for(database_url)
        if create_tables:
            create_db_and_tables(self._engine)
        self._clock = clock or datetime.now
        self._logger = logger or StructuredLogger(clock=self._clock)
        self._audit_log = AuditLog()
        self._notifications = notifier or NotificationCenter()
        self._ledger = ProgressionLedger(clock=self._clock)
        self._levels = LevelUpAwarder(self._engine, self._ledger)
        self._achievements = AchievementRuleEngine(self._engine, self._ledger, clock=self._clock)
        self._streaks = StreakTracker(self._engine, self._ledger, clock=self._clock)
        self._capacity = CapacityGuard(self._engine)
        self._overlaps = ScheduleOverlapDetector(self._engine)
        self._planner = AssignmentPlanner(self._engine, self._capacity, self._overlaps, logger=self._logger)
        self._rewards = RewardRedemptions(
            self._engine,
            self._ledger,
            self._achievements,
            notifier=self._notifications,
            logger=self._logger,
            clock=self._clock,
        )
        self._tasks = TaskCompletionStateMachine(
            self._engine,
            self._ledger,
            self._levels,
            self._achievements,
            self._streaks,
            notifier=self._notifications,
            logger=self._logger,
            clock=self._clock,
        )
        self._recurring = RecurringAssignmentGenerator(
            self._engine,
            self._capacity,
            notifier=self._notifications,
            audit=self._audit_log,
            logger=self._logger,
        )
        self._streak_scanner = StreakRiskScanner(
            self._engine,
            self._streaks,
            notifier=self._notifications,
            logger=self._logger,
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def notifications(self) -> Notifier:
        return self._notifications

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def ledger(self) -> ProgressionLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------
    def register_child(self, child_id: str, *, family_id: int | None = None) -> ChildProgress:
        """Create the progress row a child needs before earning anything."""

        child_id = child_id.strip()
        if not child_id:
            raise ValidationError("child_id must not be empty.")
        with transaction(self._engine) as session:
            existing = session.exec(select(ChildProgress).where(ChildProgress.child_id == child_id)).first()
            if existing is not None:
                raise ConflictError(f"Child '{child_id}' is already registered.")
            progress = ChildProgress(child_id=child_id, family_id=family_id, level=1)
            session.add(progress)
            session.flush()
        self._logger.log("child_registered", child=child_id, family=family_id)
        return progress

    def progress(self, child_id: str) -> ChildProgress:
        with transaction(self._engine) as session:
            return get_child_progress(session, child_id)

    def level_progress(self, child_id: str) -> LevelProgress:
        return calculate_level_from_xp(self.progress(child_id).total_xp_earned)

    def balance(self, child_id: str) -> int:
        with transaction(self._engine) as session:
            return self._ledger.balance(session, child_id)

    def ledger_entries(self, child_id: str) -> Sequence[LedgerEntry]:
        with transaction(self._engine) as session:
            return self._ledger.entries(session, child_id)

    def reconcile(self, child_id: str) -> Tuple[int, int]:
        with transaction(self._engine) as session:
            return self._ledger.reconcile(session, child_id)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------
    def assign_task(self, task_id: int, child_ids: Iterable[str], instance_date: date) -> AssignmentPlan:
        return self._planner.assign(task_id, child_ids, instance_date)

    def check_assignment_limits(self, child_id: str, tag: str) -> CapacityCheck:
        return self._capacity.check_assignment_limits(child_id, tag)

    def schedule_overlaps(
        self,
        child_id: str,
        proposed_start: time | None,
        duration_minutes: int | None,
        day: date,
        exclude_task_id: int | None = None,
    ) -> List[OverlapWarning]:
        return self._overlaps.get_overlaps(child_id, proposed_start, duration_minutes, day, exclude_task_id)

    def start_task(self, assignment_id: int, actor: Actor) -> TaskAssignment:
        return self._tasks.start(assignment_id, actor)

    def complete_task(self, assignment_id: int, actor: Actor, note: str | None = None) -> CompletionResult:
        return self._tasks.complete(assignment_id, actor, note)

    def approve_task(
        self,
        assignment_id: int,
        approved: bool = True,
        rejection_reason: str | None = None,
        *,
        approver_id: str | None = None,
    ) -> ApprovalResult:
        return self._tasks.approve(assignment_id, approved, rejection_reason, approver_id=approver_id)

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------
    def evaluate_achievements(self, child_id: str) -> List[UnlockedAchievement]:
        return self._achievements.evaluate(child_id)

    def evaluate_streak(self, child_id: str, now: datetime | None = None) -> StreakResult:
        return self._streaks.evaluate(child_id, now)

    def is_streak_at_risk(self, child_id: str, now: datetime | None = None) -> bool:
        return self._streaks.is_streak_at_risk(child_id, now)

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------
    def redeem_reward(self, child_id: str, reward_id: int) -> Tuple[RewardRedemption, List[UnlockedAchievement]]:
        return self._rewards.redeem(child_id, reward_id)

    def cancel_redemption(self, redemption_id: int, actor: Actor) -> RewardRedemption:
        return self._rewards.cancel(redemption_id, actor)

    def fulfil_redemption(self, redemption_id: int, actor: Actor) -> RewardRedemption:
        return self._rewards.fulfil(redemption_id, actor)

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------
    def generate_recurring_assignments(self, for_day: date | None = None) -> BatchSummary:
        return self._recurring.generate(for_day or self._clock().date())

    def scan_streak_risks(self, now: datetime | None = None) -> BatchSummary:
        return self._streak_scanner.scan(now)


__all__ = ["TaskBuddy"]
