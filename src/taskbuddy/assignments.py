"""Create task assignments for children, honouring capacity limits."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from sqlalchemy.engine import Engine
from sqlmodel import select

from .capacity import CapacityGuard
from .exceptions import NotFoundError
from .models import AssignmentPlan, AssignmentStatus
from .ops import StructuredLogger
from .overlaps import ScheduleOverlapDetector
from .storage.persistence import Task, TaskAssignment, transaction


class AssignmentPlanner:
    """Assign a task to several children for one calendar day.

    Children at capacity are skipped with the guard's reason, the others get
    a pending assignment. Overlap warnings are collected for the caller and
    never stop the write.
    """

    def __init__(
        self,
        engine: Engine,
        capacity: CapacityGuard,
        overlaps: ScheduleOverlapDetector,
        *,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._engine = engine
        self._capacity = capacity
        self._overlaps = overlaps
        self._logger = logger or StructuredLogger()

    def assign(self, task_id: int, child_ids: Iterable[str], instance_date: date) -> AssignmentPlan:
        plan = AssignmentPlan()
        with transaction(self._engine) as session:
            task = session.get(Task, task_id)
            if task is None or task.deleted_at is not None:
                raise NotFoundError(f"Task {task_id} not found.")

            for child_id in dict.fromkeys(child_ids):
                duplicate = session.exec(
                    select(TaskAssignment)
                    .where(TaskAssignment.task_id == task_id)
                    .where(TaskAssignment.child_id == child_id)
                    .where(TaskAssignment.instance_date == instance_date)
                ).first()
                if duplicate is not None:
                    plan.skipped.append((child_id, "Already assigned for this date."))
                    continue

                check = self._capacity.check_assignment_limits(child_id, task.task_tag, session=session)
                if not check.allowed:
                    plan.skipped.append((child_id, check.reason or "Assignment limit reached."))
                    self._logger.warning("assignment_skipped", task=task_id, child=child_id, reason=check.reason)
                    continue

                plan.warnings.extend(
                    self._overlaps.get_overlaps(
                        child_id,
                        task.start_time,
                        task.estimated_minutes,
                        instance_date,
                        task_id,
                        session=session,
                    )
                )
                assignment = TaskAssignment(
                    task_id=task_id,
                    child_id=child_id,
                    instance_date=instance_date,
                    status=AssignmentStatus.PENDING.value,
                )
                session.add(assignment)
                session.flush()
                plan.created.append(assignment.id)
        return plan


__all__ = ["AssignmentPlanner"]
