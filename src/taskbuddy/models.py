"""Enumerations and value objects shared across the progression engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Tuple


class TransactionType(str, Enum):
    """Enumerates the ledger entry kinds."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    ADJUSTMENT = "adjustment"
    MILESTONE_BONUS = "milestone_bonus"


class AssignmentStatus(str, Enum):
    """Forward-only lifecycle of a task assignment."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (AssignmentStatus.APPROVED, AssignmentStatus.REJECTED)

    @property
    def is_active(self) -> bool:
        return self in (AssignmentStatus.PENDING, AssignmentStatus.IN_PROGRESS)


class TaskTag(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class TaskStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class CriteriaType(str, Enum):
    """Closed set of achievement unlock criteria."""

    TASKS_COMPLETED = "tasks_completed"
    STREAK_DAYS = "streak_days"
    POINTS_EARNED = "points_earned"
    LEVEL_REACHED = "level_reached"
    REWARDS_REDEEMED = "rewards_redeemed"
    EARLY_COMPLETION = "early_completion"
    PERFECT_WEEK = "perfect_week"

    @property
    def is_event_only(self) -> bool:
        """True for criteria that persisted aggregates cannot decide."""

        return self in (CriteriaType.EARLY_COMPLETION, CriteriaType.PERFECT_WEEK)


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    PARENT = "parent"
    CHILD = "child"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class Actor:
    """Who is performing an action."""

    user_id: str
    role: ActorRole = ActorRole.PARENT

    @classmethod
    def child(cls, child_id: str) -> "Actor":
        return cls(user_id=child_id, role=ActorRole.CHILD)

    @classmethod
    def parent(cls, parent_id: str) -> "Actor":
        return cls(user_id=parent_id, role=ActorRole.PARENT)

    @property
    def is_child(self) -> bool:
        return self.role is ActorRole.CHILD


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Result of converting lifetime XP into a level."""

    level: int
    current_level_xp: int
    xp_to_next_level: int


@dataclass(frozen=True, slots=True)
class LevelUpResult:
    leveled_up: bool
    old_level: int
    new_level: int
    bonus_points_awarded: int = 0


@dataclass(frozen=True, slots=True)
class UnlockedAchievement:
    id: int
    name: str
    points_reward: int
    xp_reward: int
    tier: str = ""


@dataclass(frozen=True, slots=True)
class StreakResult:
    previous_streak: int
    current_streak: int
    longest_streak: int
    milestone_bonus: int = 0

    @property
    def changed(self) -> bool:
        return self.previous_streak != self.current_streak


@dataclass(frozen=True, slots=True)
class CapacityCheck:
    """Outcome of the per-child assignment limit check."""

    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ChildCapacity:
    total_active: int
    primary_active: int
    max_total: int
    max_primary: int


@dataclass(frozen=True, slots=True)
class OverlapWarning:
    """An existing assignment whose time window clashes with a proposal."""

    assignment_id: int
    task_id: int
    task_title: str
    child_id: str
    start: datetime
    end: datetime
    all_day: bool = False


@dataclass(slots=True)
class ApprovalResult:
    """Everything an approval (or rejection) produced."""

    assignment_id: int
    child_id: str
    status: AssignmentStatus
    points_awarded: int = 0
    xp_awarded: int = 0
    new_balance: Optional[int] = None
    level_up: Optional[LevelUpResult] = None
    unlocked_achievements: List[UnlockedAchievement] = field(default_factory=list)
    streak: Optional[StreakResult] = None
    auto_approved: bool = False


@dataclass(slots=True)
class CompletionResult:
    assignment_id: int
    child_id: str
    status: AssignmentStatus
    completed_at: datetime
    approval: Optional[ApprovalResult] = None

    @property
    def auto_approved(self) -> bool:
        return self.approval is not None


@dataclass(slots=True)
class AssignmentPlan:
    """Outcome of creating assignments for several children at once."""

    created: List[int] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[OverlapWarning] = field(default_factory=list)


@dataclass(slots=True)
class BatchSummary:
    """Counters reported by the scheduled jobs."""

    run_date: date
    created: int = 0
    skipped: int = 0
    notified: int = 0
    errors: int = 0
    already_processed: bool = False


__all__ = [
    "Actor",
    "ActorRole",
    "ApprovalResult",
    "AssignmentPlan",
    "AssignmentStatus",
    "BatchSummary",
    "CapacityCheck",
    "ChildCapacity",
    "CompletionResult",
    "CriteriaType",
    "LevelProgress",
    "LevelUpResult",
    "OverlapWarning",
    "RedemptionStatus",
    "StreakResult",
    "TaskStatus",
    "TaskTag",
    "TransactionType",
    "UnlockedAchievement",
]
