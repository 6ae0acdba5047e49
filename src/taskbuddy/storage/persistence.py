"""Persistence and SQLModel definitions for the TaskBuddy progression engine."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Any, Iterator, List, Optional, Sequence

from sqlalchemy import UniqueConstraint, event, func
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, col, create_engine, select

from ..config import ACTIVE_ASSIGNMENT_STATUSES, DATABASE_URL
from ..exceptions import NotFoundError

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------


class Family(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    streak_grace_period_hours: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChildProgress(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: str = Field(index=True, unique=True)
    family_id: Optional[int] = Field(default=None, foreign_key="family.id")
    points_balance: int = 0
    total_points_earned: int = 0
    experience_points: int = 0
    total_xp_earned: int = 0
    level: int = 1
    current_streak_days: int = 0
    longest_streak_days: int = 0
    last_activity_date: Optional[datetime] = None
    total_tasks_completed: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LedgerEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: str = Field(index=True)
    transaction_type: str  # earned|redeemed|adjustment|milestone_bonus
    points_amount: int
    balance_after: int
    reference_type: str = ""
    reference_id: str = ""
    description: str = ""
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Achievement(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: str = ""
    unlock_criteria_type: Optional[str] = None
    unlock_criteria_value: Optional[int] = None
    points_reward: int = 0
    xp_reward: int = 0
    tier: str = "bronze"


class ChildAchievement(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("child_id", "achievement_id", name="uq_child_achievement"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: str = Field(index=True)
    achievement_id: int = Field(foreign_key="achievement.id")
    unlocked_at: datetime = Field(default_factory=datetime.utcnow)
    progress_value: int = 100


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: Optional[int] = Field(default=None, foreign_key="family.id")
    title: str
    points_value: int = 0
    difficulty: str = "medium"  # easy|medium|hard
    task_tag: str = "secondary"  # primary|secondary
    auto_approve: bool = False
    start_time: Optional[time] = None
    estimated_minutes: Optional[int] = None
    is_recurring: bool = False
    status: str = "active"  # active|paused|archived
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TaskAssignment(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("task_id", "child_id", "instance_date", name="uq_assignment_instance"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: int = Field(foreign_key="task.id", index=True)
    child_id: str = Field(index=True)
    instance_date: date
    status: str = "pending"  # pending|in_progress|completed|approved|rejected
    completed_at: Optional[datetime] = None
    completion_note: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    points_awarded: Optional[int] = None
    xp_awarded: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Reward(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: Optional[int] = Field(default=None, foreign_key="family.id")
    name: str
    points_cost: int
    is_active: bool = True
    expires_at: Optional[datetime] = None
    max_redemptions_total: Optional[int] = None
    max_redemptions_per_child: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class RewardRedemption(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    reward_id: int = Field(foreign_key="reward.id")
    child_id: str = Field(index=True)
    points_spent: int
    status: str = "pending"  # pending|fulfilled|cancelled
    created_at: datetime = Field(default_factory=datetime.utcnow)
    cancelled_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    fulfilled_by: Optional[str] = None


class MetaKV(SQLModel, table=True):
    k: str = Field(primary_key=True)
    v: str


# ---------------------------------------------------------------------------
# Engine & sessions
# ---------------------------------------------------------------------------
def create_engine_for(url: str = DATABASE_URL, *, echo: bool = False) -> Engine:
    """Build an engine whose transactions serialize writers for the same rows.

    On SQLite every transaction starts with ``BEGIN IMMEDIATE`` so the write
    lock is taken before the first read; other backends rely on the
    ``SELECT ... FOR UPDATE`` issued by :func:`get_child_progress`.
    """

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection: Any, _record: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(connection: Any) -> None:
            connection.exec_driver_sql("BEGIN IMMEDIATE")

        return engine
    return create_engine(url, echo=echo)


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


@contextmanager
def transaction(engine: Engine) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error."""

    with Session(engine, expire_on_commit=False) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------
def get_child_progress(session: Session, child_id: str, *, for_update: bool = False) -> ChildProgress:
    query = select(ChildProgress).where(ChildProgress.child_id == child_id)
    if for_update:
        query = query.with_for_update()
    progress = session.exec(query).first()
    if progress is None:
        raise NotFoundError(f"Child '{child_id}' has no progress record.")
    return progress


def get_family_grace_hours(session: Session, family_id: Optional[int]) -> int:
    if family_id is None:
        return 0
    family = session.get(Family, family_id)
    if family is None or not family.streak_grace_period_hours:
        return 0
    return max(0, family.streak_grace_period_hours)


def active_assignments(
    session: Session,
    child_id: str,
    *,
    day: Optional[date] = None,
    exclude_task_id: Optional[int] = None,
) -> List[tuple[TaskAssignment, Task]]:
    query = (
        select(TaskAssignment, Task)
        .where(TaskAssignment.task_id == Task.id)
        .where(TaskAssignment.child_id == child_id)
        .where(col(TaskAssignment.status).in_(ACTIVE_ASSIGNMENT_STATUSES))
    )
    if day is not None:
        query = query.where(TaskAssignment.instance_date == day)
    if exclude_task_id is not None:
        query = query.where(TaskAssignment.task_id != exclude_task_id)
    return list(session.exec(query.order_by(TaskAssignment.id)).all())


def unlocked_achievement_ids(session: Session, child_id: str) -> set[int]:
    rows = session.exec(select(ChildAchievement.achievement_id).where(ChildAchievement.child_id == child_id))
    return set(rows.all())


def count_active_redemptions(session: Session, child_id: str) -> int:
    query = (
        select(func.count())
        .select_from(RewardRedemption)
        .where(RewardRedemption.child_id == child_id)
        .where(RewardRedemption.status != "cancelled")
    )
    return int(session.exec(query).one())


def count_reward_redemptions(session: Session, reward_id: int, *, child_id: Optional[str] = None) -> int:
    """Non-cancelled redemptions of one reward, optionally for a single child."""

    query = (
        select(func.count())
        .select_from(RewardRedemption)
        .where(RewardRedemption.reward_id == reward_id)
        .where(RewardRedemption.status != "cancelled")
    )
    if child_id is not None:
        query = query.where(RewardRedemption.child_id == child_id)
    return int(session.exec(query).one())


def ledger_entries(session: Session, child_id: str) -> Sequence[LedgerEntry]:
    query = select(LedgerEntry).where(LedgerEntry.child_id == child_id).order_by(LedgerEntry.id)
    return session.exec(query).all()


def get_meta(session: Session, key: str) -> Optional[str]:
    row = session.get(MetaKV, key)
    return row.v if row else None


def set_meta(session: Session, key: str, value: str) -> None:
    row = session.get(MetaKV, key)
    if row is None:
        session.add(MetaKV(k=key, v=value))
    else:
        row.v = value
        session.add(row)


__all__ = [
    "Family",
    "ChildProgress",
    "LedgerEntry",
    "Achievement",
    "ChildAchievement",
    "Task",
    "TaskAssignment",
    "Reward",
    "RewardRedemption",
    "MetaKV",
    "create_engine_for",
    "create_db_and_tables",
    "transaction",
    "get_child_progress",
    "get_family_grace_hours",
    "active_assignments",
    "unlocked_achievement_ids",
    "count_active_redemptions",
    "count_reward_redemptions",
    "ledger_entries",
    "get_meta",
    "set_meta",
]
