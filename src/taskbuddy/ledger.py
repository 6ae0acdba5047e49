"""Append-only points ledger for TaskBuddy children."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Sequence, Tuple

from sqlmodel import Session

from .exceptions import InsufficientPointsError, ValidationError
from .models import TransactionType
from .storage.persistence import LedgerEntry, get_child_progress, ledger_entries


class ProgressionLedger:
    """Record point movements and keep ``points_balance`` equal to the ledger sum.

    Every method works inside the caller's session: the progress row is read
    with a row lock, the new balance is computed from it, one entry is
    appended and the cached balance updated. Committing is the caller's job.
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or datetime.now

    def record_earn(
        self,
        session: Session,
        child_id: str,
        amount: int,
        *,
        reference_type: str,
        reference_id: str,
        description: str,
        created_by: str | None = None,
    ) -> LedgerEntry:
        _require_positive(amount)
        return self._append(
            session,
            child_id,
            amount,
            TransactionType.EARNED,
            reference_type,
            reference_id,
            description,
            created_by,
        )

    def record_spend(
        self,
        session: Session,
        child_id: str,
        amount: int,
        *,
        reference_type: str,
        reference_id: str,
        description: str,
        created_by: str | None = None,
    ) -> LedgerEntry:
        _require_positive(amount)
        return self._append(
            session,
            child_id,
            -amount,
            TransactionType.REDEEMED,
            reference_type,
            reference_id,
            description,
            created_by,
        )

    def record_adjustment(
        self,
        session: Session,
        child_id: str,
        amount: int,
        *,
        reference_type: str,
        reference_id: str,
        description: str,
        created_by: str | None = None,
    ) -> LedgerEntry:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount == 0:
            raise ValidationError("Adjustment amount must be a non-zero whole number.")
        return self._append(
            session,
            child_id,
            amount,
            TransactionType.ADJUSTMENT,
            reference_type,
            reference_id,
            description,
            created_by,
        )

    def record_milestone_bonus(
        self,
        session: Session,
        child_id: str,
        amount: int,
        *,
        reference_type: str,
        reference_id: str,
        description: str,
    ) -> LedgerEntry:
        _require_positive(amount)
        return self._append(
            session,
            child_id,
            amount,
            TransactionType.MILESTONE_BONUS,
            reference_type,
            reference_id,
            description,
            None,
        )

    def balance(self, session: Session, child_id: str) -> int:
        return get_child_progress(session, child_id).points_balance

    def entries(self, session: Session, child_id: str) -> Sequence[LedgerEntry]:
        return ledger_entries(session, child_id)

    def reconcile(self, session: Session, child_id: str) -> Tuple[int, int]:
        """Return ``(stored_balance, ledger_sum)`` for auditing the invariant."""

        stored = self.balance(session, child_id)
        total = sum(entry.points_amount for entry in self.entries(session, child_id))
        return stored, total

    def _append(
        self,
        session: Session,
        child_id: str,
        signed_amount: int,
        transaction_type: TransactionType,
        reference_type: str,
        reference_id: str,
        description: str,
        created_by: str | None,
    ) -> LedgerEntry:
        progress = get_child_progress(session, child_id, for_update=True)
        balance_after = progress.points_balance + signed_amount
        if balance_after < 0:
            raise InsufficientPointsError(
                f"Not enough points. {child_id} has {progress.points_balance} "
                f"but needs {-signed_amount}."
            )
        moment = self._clock()
        entry = LedgerEntry(
            child_id=child_id,
            transaction_type=transaction_type.value,
            points_amount=signed_amount,
            balance_after=balance_after,
            reference_type=reference_type,
            reference_id=str(reference_id),
            description=description,
            created_by=created_by,
            created_at=moment,
        )
        progress.points_balance = balance_after
        if transaction_type is TransactionType.EARNED:
            progress.total_points_earned += signed_amount
        progress.updated_at = moment
        session.add(entry)
        session.add(progress)
        session.flush()
        return entry


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Amount must be a whole number greater than zero.")


__all__ = ["ProgressionLedger"]
