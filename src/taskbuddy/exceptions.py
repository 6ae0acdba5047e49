"""Custom exception hierarchy for the TaskBuddy package."""

from __future__ import annotations


class TaskBuddyError(Exception):
    """Base class for all TaskBuddy specific errors."""


class ValidationError(TaskBuddyError, ValueError):
    """Raised for malformed input such as a bad amount or criteria config."""


class InsufficientPointsError(ValidationError):
    """Raised when a spend or adjustment would leave a negative balance."""


class ConflictError(TaskBuddyError):
    """Raised when an operation is illegal for the current state."""


class NotFoundError(TaskBuddyError, LookupError):
    """Raised when a referenced child, task, assignment or reward is missing."""


class ForbiddenError(TaskBuddyError):
    """Raised when an actor acts on a record that is not theirs."""
