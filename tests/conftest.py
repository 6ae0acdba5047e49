from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytest

from taskbuddy.ledger import ProgressionLedger
from taskbuddy.ops import StructuredLogger
from taskbuddy.service import TaskBuddy
from taskbuddy.storage.persistence import (
    Achievement,
    ChildProgress,
    Family,
    Reward,
    Task,
    TaskAssignment,
    create_db_and_tables,
    create_engine_for,
    transaction,
)


class FakeClock:
    """Deterministic replacement for ``datetime.now``."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **delta: float) -> datetime:
        self.moment += timedelta(**delta)
        return self.moment

    def set(self, moment: datetime) -> datetime:
        self.moment = moment
        return moment


class Seeder:
    """Insert fixture rows directly, the way admin tooling would."""

    def __init__(self, engine, clock: FakeClock) -> None:
        self.engine = engine
        self.clock = clock
        self._ledger = ProgressionLedger(clock=clock)

    def family(self, name: str = "Rivera", *, grace_hours: Optional[int] = None) -> Family:
        with transaction(self.engine) as session:
            family = Family(name=name, streak_grace_period_hours=grace_hours)
            session.add(family)
            session.flush()
            return family

    def child(self, child_id: str = "ava", *, family_id: Optional[int] = None, **fields) -> ChildProgress:
        with transaction(self.engine) as session:
            progress = ChildProgress(child_id=child_id, family_id=family_id, **fields)
            session.add(progress)
            session.flush()
            return progress

    def task(
        self,
        title: str = "Tidy room",
        *,
        points: int = 20,
        difficulty: str = "medium",
        tag: str = "secondary",
        auto_approve: bool = False,
        start_time: Optional[time] = None,
        minutes: Optional[int] = None,
        recurring: bool = False,
        status: str = "active",
        deleted_at: Optional[datetime] = None,
    ) -> Task:
        with transaction(self.engine) as session:
            task = Task(
                title=title,
                points_value=points,
                difficulty=difficulty,
                task_tag=tag,
                auto_approve=auto_approve,
                start_time=start_time,
                estimated_minutes=minutes,
                is_recurring=recurring,
                status=status,
                deleted_at=deleted_at,
            )
            session.add(task)
            session.flush()
            return task

    def assignment(
        self,
        task_id: int,
        child_id: str = "ava",
        *,
        day: Optional[date] = None,
        status: str = "pending",
        completed_at: Optional[datetime] = None,
    ) -> TaskAssignment:
        if status == "completed" and completed_at is None:
            completed_at = self.clock()
        with transaction(self.engine) as session:
            assignment = TaskAssignment(
                task_id=task_id,
                child_id=child_id,
                instance_date=day or self.clock().date(),
                status=status,
                completed_at=completed_at,
            )
            session.add(assignment)
            session.flush()
            return assignment

    def completed(self, child_id: str = "ava", **task_fields) -> TaskAssignment:
        """A fresh task with one completed assignment awaiting review."""

        task = self.task(**task_fields)
        return self.assignment(task.id, child_id, status="completed")

    def achievement(
        self,
        name: str,
        criteria_type: Optional[str],
        value: Optional[int] = None,
        *,
        points: int = 0,
        xp: int = 0,
        tier: str = "bronze",
    ) -> Achievement:
        with transaction(self.engine) as session:
            achievement = Achievement(
                name=name,
                unlock_criteria_type=criteria_type,
                unlock_criteria_value=value,
                points_reward=points,
                xp_reward=xp,
                tier=tier,
            )
            session.add(achievement)
            session.flush()
            return achievement

    def reward(
        self,
        name: str = "Movie night",
        *,
        cost: int = 30,
        active: bool = True,
        expires_at: Optional[datetime] = None,
        max_total: Optional[int] = None,
        max_per_child: Optional[int] = None,
    ) -> Reward:
        with transaction(self.engine) as session:
            reward = Reward(
                name=name,
                points_cost=cost,
                is_active=active,
                expires_at=expires_at,
                max_redemptions_total=max_total,
                max_redemptions_per_child=max_per_child,
            )
            session.add(reward)
            session.flush()
            return reward

    def fund(self, child_id: str, amount: int) -> None:
        with transaction(self.engine) as session:
            self._ledger.record_earn(
                session,
                child_id,
                amount,
                reference_type="test",
                reference_id="seed",
                description="Starting points",
            )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 4, 12, 0))


@pytest.fixture
def engine(tmp_path):
    engine = create_engine_for(f"sqlite:///{tmp_path / 'taskbuddy.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seed(engine, clock) -> Seeder:
    return Seeder(engine, clock)


@pytest.fixture
def logger(clock) -> StructuredLogger:
    return StructuredLogger(clock=clock)


@pytest.fixture
def buddy(engine, clock, logger) -> TaskBuddy:
    return TaskBuddy(engine, clock=clock, logger=logger)
