"""Notification primitives for TaskBuddy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Protocol, Sequence

from .models import LevelUpResult, UnlockedAchievement


class NotificationType(str, Enum):
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    LEVEL_UP = "level_up"
    STREAK_AT_RISK = "streak_at_risk"
    TASK_LIMIT_REACHED = "task_limit_reached"


@dataclass(slots=True)
class Notification:
    """An engine event waiting to be delivered to a family."""

    recipient: str
    type: NotificationType
    subject: str
    body: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "recipient": self.recipient,
            "type": self.type.value,
            "subject": self.subject,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
        }
        payload.update(self.metadata)
        return payload


class Notifier(Protocol):
    def publish(self, notification: Notification) -> None: ...


def achievements_unlocked(child_id: str, unlocked: Sequence[UnlockedAchievement]) -> Notification:
    names = ", ".join(item.name for item in unlocked)
    return Notification(
        recipient=child_id,
        type=NotificationType.ACHIEVEMENT_UNLOCKED,
        subject="Achievement unlocked!" if len(unlocked) == 1 else "Achievements unlocked!",
        body=f"You unlocked: {names}",
        metadata={
            "child_id": child_id,
            "achievements": [
                {
                    "id": item.id,
                    "name": item.name,
                    "points_reward": item.points_reward,
                    "xp_reward": item.xp_reward,
                }
                for item in unlocked
            ],
        },
    )


def level_up(child_id: str, result: LevelUpResult) -> Notification:
    return Notification(
        recipient=child_id,
        type=NotificationType.LEVEL_UP,
        subject=f"Level {result.new_level} reached!",
        body=f"Level {result.old_level} -> {result.new_level}, bonus {result.bonus_points_awarded} points.",
        metadata={
            "child_id": child_id,
            "old_level": result.old_level,
            "new_level": result.new_level,
            "bonus": result.bonus_points_awarded,
        },
    )


def streak_at_risk(child_id: str, current_streak: int) -> Notification:
    return Notification(
        recipient=child_id,
        type=NotificationType.STREAK_AT_RISK,
        subject=f"{current_streak}-day streak is at risk today",
        body="Complete a task today to keep the streak going.",
        metadata={"child_id": child_id, "current_streak": current_streak},
    )


def task_limit_reached(family_id: int | None, child_id: str, task_title: str, reason: str) -> Notification:
    """Tell the parents of a family that a recurring task could not be assigned."""

    return Notification(
        recipient=f"family:{family_id}" if family_id is not None else "parents",
        type=NotificationType.TASK_LIMIT_REACHED,
        subject="Recurring task skipped",
        body=(
            f'"{task_title}" was not auto-assigned to {child_id} because they already have '
            "the maximum number of active tasks."
        ),
        metadata={"family_id": family_id, "child_id": child_id, "task_title": task_title, "reason": reason},
    )


class NotificationCenter:
    """In-memory notification inbox used for tests and integrations."""

    def __init__(self) -> None:
        self._queue: List[Notification] = []
        self._sent: List[Notification] = []

    def publish(self, notification: Notification) -> None:
        self._queue.append(notification)

    def pending(self, *, notification_type: NotificationType | None = None) -> Sequence[Notification]:
        if notification_type is None:
            return tuple(self._queue)
        return tuple(item for item in self._queue if item.type is notification_type)

    def pop_all(self) -> Sequence[Notification]:
        pending = tuple(self._queue)
        self._queue.clear()
        self._sent.extend(pending)
        return pending

    def history(self) -> Sequence[Notification]:
        return tuple(self._sent)


__all__ = [
    "Notification",
    "NotificationCenter",
    "NotificationType",
    "Notifier",
    "achievements_unlocked",
    "level_up",
    "streak_at_risk",
    "task_limit_reached",
]
