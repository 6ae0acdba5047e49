"""TaskBuddy progression engine: points, XP, levels, streaks and achievements for children."""

from .achievements import AchievementRuleEngine
from .admin import AuditEvent, AuditLog
from .assignments import AssignmentPlanner
from .capacity import CapacityGuard
from .exceptions import (
    ConflictError,
    ForbiddenError,
    InsufficientPointsError,
    NotFoundError,
    TaskBuddyError,
    ValidationError,
)
from .gamification import calculate_level_from_xp, level_bonus, task_xp, xp_required_for_level
from .jobs import RecurringAssignmentGenerator, StreakRiskScanner
from .ledger import ProgressionLedger
from .levels import LevelUpAwarder
from .models import (
    Actor,
    ActorRole,
    ApprovalResult,
    AssignmentPlan,
    AssignmentStatus,
    BatchSummary,
    CapacityCheck,
    ChildCapacity,
    CompletionResult,
    CriteriaType,
    LevelProgress,
    LevelUpResult,
    OverlapWarning,
    RedemptionStatus,
    StreakResult,
    TaskStatus,
    TaskTag,
    TransactionType,
    UnlockedAchievement,
)
from .notifications import Notification, NotificationCenter, NotificationType, Notifier
from .ops import StructuredLogger
from .overlaps import ScheduleOverlapDetector
from .rewards import RewardRedemptions
from .service import TaskBuddy
from .streaks import StreakTracker
from .tasks import TaskCompletionStateMachine

__all__ = [
    "AchievementRuleEngine",
    "Actor",
    "ActorRole",
    "ApprovalResult",
    "AssignmentPlan",
    "AssignmentPlanner",
    "AssignmentStatus",
    "AuditEvent",
    "AuditLog",
    "BatchSummary",
    "CapacityCheck",
    "CapacityGuard",
    "ChildCapacity",
    "CompletionResult",
    "ConflictError",
    "CriteriaType",
    "ForbiddenError",
    "InsufficientPointsError",
    "LevelProgress",
    "LevelUpAwarder",
    "LevelUpResult",
    "NotFoundError",
    "Notification",
    "NotificationCenter",
    "NotificationType",
    "Notifier",
    "OverlapWarning",
    "ProgressionLedger",
    "RecurringAssignmentGenerator",
    "RedemptionStatus",
    "RewardRedemptions",
    "ScheduleOverlapDetector",
    "StreakResult",
    "StreakRiskScanner",
    "StreakTracker",
    "StructuredLogger",
    "TaskBuddy",
    "TaskBuddyError",
    "TaskCompletionStateMachine",
    "TaskStatus",
    "TaskTag",
    "TransactionType",
    "UnlockedAchievement",
    "ValidationError",
    "calculate_level_from_xp",
    "level_bonus",
    "task_xp",
    "xp_required_for_level",
]
