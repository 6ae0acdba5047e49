"""Spending points on rewards and refunding cancelled redemptions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .achievements import AchievementRuleEngine
from .exceptions import ConflictError, ForbiddenError, NotFoundError
from .ledger import ProgressionLedger
from .models import Actor, RedemptionStatus, UnlockedAchievement
from .notifications import NotificationCenter, Notifier, achievements_unlocked
from .ops import StructuredLogger
from .storage.persistence import Reward, RewardRedemption, count_reward_redemptions, transaction


class RewardRedemptions:
    """Redeem rewards through the ledger's ``redeemed`` entries."""

    def __init__(
        self,
        engine: Engine,
        ledger: ProgressionLedger,
        achievements: AchievementRuleEngine,
        *,
        notifier: Optional[Notifier] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._achievements = achievements
        self._notifier = notifier or NotificationCenter()
        self._logger = logger or StructuredLogger()
        self._clock = clock or datetime.now

    def redeem(self, child_id: str, reward_id: int) -> Tuple[RewardRedemption, List[UnlockedAchievement]]:
        moment = self._clock()
        with transaction(self._engine) as session:
            reward = session.get(Reward, reward_id, with_for_update=True)
            if reward is None:
                raise NotFoundError(f"Reward {reward_id} not found.")
            if not reward.is_active:
                raise ConflictError("This reward is no longer available.")
            self._check_caps(session, reward, child_id, moment)
            redemption = RewardRedemption(
                reward_id=reward.id,
                child_id=child_id,
                points_spent=reward.points_cost,
                status=RedemptionStatus.PENDING.value,
                created_at=moment,
            )
            session.add(redemption)
            session.flush()
            self._ledger.record_spend(
                session,
                child_id,
                reward.points_cost,
                reference_type="reward_redemption",
                reference_id=str(redemption.id),
                description=f"Redeemed: {reward.name}",
            )

        self._logger.log("reward_redeemed", child=child_id, reward=reward_id, points=redemption.points_spent)
        unlocked = self._guarded("achievements", child_id, self._achievements.evaluate, child_id) or []
        if unlocked:
            self._guarded(
                "notify_achievements",
                child_id,
                self._notifier.publish,
                achievements_unlocked(child_id, unlocked),
            )
        return redemption, unlocked

    def fulfil(self, redemption_id: int, actor: Actor) -> RewardRedemption:
        """Mark a pending redemption as handed over. Parents only."""

        if actor.is_child:
            raise ForbiddenError("Only a parent can fulfil a redemption.")
        moment = self._clock()
        with transaction(self._engine) as session:
            redemption = session.get(RewardRedemption, redemption_id, with_for_update=True)
            if redemption is None or redemption.status != RedemptionStatus.PENDING.value:
                raise NotFoundError("Pending redemption not found.")
            redemption.status = RedemptionStatus.FULFILLED.value
            redemption.fulfilled_at = moment
            redemption.fulfilled_by = actor.user_id
            session.add(redemption)
        self._logger.log("redemption_fulfilled", redemption=redemption_id, child=redemption.child_id)
        return redemption

    def cancel(self, redemption_id: int, actor: Actor) -> RewardRedemption:
        moment = self._clock()
        with transaction(self._engine) as session:
            redemption = session.get(RewardRedemption, redemption_id, with_for_update=True)
            if redemption is None or redemption.status != RedemptionStatus.PENDING.value:
                raise NotFoundError("Pending redemption not found.")
            if actor.is_child and redemption.child_id != actor.user_id:
                raise ForbiddenError("Cannot cancel another child's redemption.")
            reward = session.get(Reward, redemption.reward_id)
            name = reward.name if reward else f"reward {redemption.reward_id}"
            redemption.status = RedemptionStatus.CANCELLED.value
            redemption.cancelled_at = moment
            session.add(redemption)
            self._ledger.record_adjustment(
                session,
                redemption.child_id,
                redemption.points_spent,
                reference_type="reward_cancellation",
                reference_id=str(redemption.id),
                description=f"Refund: {name} (cancelled)",
                created_by=actor.user_id,
            )
        self._logger.log("redemption_cancelled", redemption=redemption_id, child=redemption.child_id)
        return redemption

    @staticmethod
    def _check_caps(session: Session, reward: Reward, child_id: str, moment: datetime) -> None:
        # Cancelled redemptions free their slot again.
        if reward.expires_at is not None and reward.expires_at <= moment:
            raise ConflictError("This reward has expired.")
        if reward.max_redemptions_total is not None:
            if count_reward_redemptions(session, reward.id) >= reward.max_redemptions_total:
                raise ConflictError("This reward has been fully claimed by the household.")
        if reward.max_redemptions_per_child is not None:
            claimed = count_reward_redemptions(session, reward.id, child_id=child_id)
            if claimed >= reward.max_redemptions_per_child:
                raise ConflictError("You have already claimed this reward the maximum number of times.")

    def _guarded(self, step: str, child_id: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except Exception as exc:
            self._logger.error("followup_failed", exc, step=step, child=child_id)
            return None


__all__ = ["RewardRedemptions"]
