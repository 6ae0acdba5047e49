"""Audit trail for system actions taken by TaskBuddy jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(slots=True)
class AuditEvent:
    """One auditable action, e.g. a recurring assignment created or skipped."""

    actor: str
    action: str
    resource_type: str
    resource_id: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    details: Dict[str, Any] = field(default_factory=dict)


class AuditLog:
    """Collect audit events for system and admin actions."""

    def __init__(self) -> None:
        self._entries: list[AuditEvent] = []

    def record(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str | int,
        *,
        details: Optional[dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            timestamp=timestamp or datetime.utcnow(),
            details=dict(details or {}),
        )
        self._entries.append(event)
        return event

    def log_system(self, action: str, resource_type: str, resource_id: str | int, **details: Any) -> AuditEvent:
        return self.record("system", action, resource_type, resource_id, details=details)

    def entries(
        self,
        *,
        action: str | None = None,
        resource_type: str | None = None,
    ) -> tuple[AuditEvent, ...]:
        records = self._entries
        if action is not None:
            records = [entry for entry in records if entry.action == action]
        if resource_type is not None:
            records = [entry for entry in records if entry.resource_type == resource_type]
        return tuple(records)

    def latest(self) -> AuditEvent | None:
        return self._entries[-1] if self._entries else None


__all__ = ["AuditEvent", "AuditLog"]
