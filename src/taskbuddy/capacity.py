"""Per-child limits on concurrently active task assignments."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .config import MAX_ACTIVE_ASSIGNMENTS, MAX_ACTIVE_PRIMARY
from .exceptions import ValidationError
from .models import CapacityCheck, ChildCapacity, TaskTag
from .storage.persistence import active_assignments, transaction


class CapacityGuard:
    """Allow or deny a new assignment based on the child's active workload.

    A denial is advisory for the caller: assignment creation and recurring
    generation skip that child and carry on with the rest.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        max_total: int = MAX_ACTIVE_ASSIGNMENTS,
        max_primary: int = MAX_ACTIVE_PRIMARY,
    ) -> None:
        self._engine = engine
        self.max_total = max_total
        self.max_primary = max_primary

    def check_assignment_limits(
        self,
        child_id: str,
        tag: TaskTag | str,
        *,
        session: Optional[Session] = None,
    ) -> CapacityCheck:
        if session is None:
            with transaction(self._engine) as own_session:
                return self.check_assignment_limits(child_id, tag, session=own_session)

        try:
            requested = TaskTag(tag)
        except ValueError as exc:
            raise ValidationError(f"Unknown task tag {tag!r}.") from exc
        capacity = self._capacity(session, child_id)
        if capacity.total_active >= self.max_total:
            return CapacityCheck(
                allowed=False,
                reason=(
                    f"This child already has {self.max_total} active tasks. "
                    "Complete or remove an existing task first."
                ),
            )
        if requested is TaskTag.PRIMARY and capacity.primary_active >= self.max_primary:
            return CapacityCheck(
                allowed=False,
                reason=(
                    "This child already has an active primary task. "
                    f"Only {self.max_primary} primary task is allowed at a time."
                ),
            )
        return CapacityCheck(allowed=True)

    def child_capacity(self, child_id: str) -> ChildCapacity:
        with transaction(self._engine) as session:
            return self._capacity(session, child_id)

    def _capacity(self, session: Session, child_id: str) -> ChildCapacity:
        rows = active_assignments(session, child_id)
        return ChildCapacity(
            total_active=len(rows),
            primary_active=sum(1 for _, task in rows if task.task_tag == TaskTag.PRIMARY.value),
            max_total=self.max_total,
            max_primary=self.max_primary,
        )


__all__ = ["CapacityGuard"]
