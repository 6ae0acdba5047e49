"""Operational logging for TaskBuddy."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .config import LOG_PATH


class StructuredLogger:
    """Write JSON lines log entries describing engine and job events."""

    def __init__(
        self,
        *,
        path: Path | None = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_entries: int = 1000,
    ) -> None:
        if path is None and LOG_PATH:
            path = Path(LOG_PATH)
        self.path = path
        self._clock = clock or datetime.utcnow
        self._max_entries = max_entries
        self._entries: list[dict] = []

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> dict:
        entry = {
            "timestamp": self._clock().isoformat(),
            "level": level,
            "event": event_type,
            **fields,
        }
        self._entries.append(entry)
        if len(self._entries) > self._max_entries:
            del self._entries[: len(self._entries) - self._max_entries]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="warning", **fields)

    def error(self, event_type: str, exc: BaseException | None = None, **fields: object) -> dict:
        if exc is not None:
            fields.setdefault("error", str(exc))
            fields.setdefault("error_type", type(exc).__name__)
        return self.log(event_type, level="error", **fields)

    def tail(self, limit: int = 50, *, event_type: str | None = None) -> tuple[dict, ...]:
        entries = self._entries
        if event_type is not None:
            entries = [entry for entry in entries if entry["event"] == event_type]
        return tuple(entries[-limit:])


__all__ = ["StructuredLogger"]
