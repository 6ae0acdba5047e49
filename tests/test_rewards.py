from datetime import datetime

import pytest
from sqlmodel import select

from taskbuddy.exceptions import ConflictError, ForbiddenError, InsufficientPointsError, NotFoundError
from taskbuddy.models import Actor, RedemptionStatus
from taskbuddy.storage.persistence import RewardRedemption, transaction


def test_redeem_spends_points_through_the_ledger(buddy, seed) -> None:
    buddy.register_child("ava")
    seed.fund("ava", 50)
    reward = seed.reward("Movie night", cost=30)

    redemption, unlocked = buddy.redeem_reward("ava", reward.id)

    assert redemption.status == RedemptionStatus.PENDING.value
    assert redemption.points_spent == 30
    assert unlocked == []
    assert buddy.balance("ava") == 20
    last = buddy.ledger_entries("ava")[-1]
    assert (last.transaction_type, last.points_amount, last.description) == ("redeemed", -30, "Redeemed: Movie night")
    assert buddy.reconcile("ava") == (20, 20)


def test_redeem_without_enough_points_creates_nothing(buddy, seed, engine) -> None:
    buddy.register_child("ava")
    seed.fund("ava", 10)
    reward = seed.reward(cost=30)

    with pytest.raises(InsufficientPointsError):
        buddy.redeem_reward("ava", reward.id)

    assert buddy.balance("ava") == 10
    with transaction(engine) as session:
        assert session.exec(select(RewardRedemption)).all() == []


def test_unavailable_rewards_are_refused(buddy, seed) -> None:
    buddy.register_child("ava")
    seed.fund("ava", 100)
    retired = seed.reward("Old toy", cost=5, active=False)

    with pytest.raises(ConflictError):
        buddy.redeem_reward("ava", retired.id)
    with pytest.raises(NotFoundError):
        buddy.redeem_reward("ava", 4242)


def test_cancel_refunds_with_an_adjustment(buddy, seed) -> None:
    buddy.register_child("ava")
    buddy.register_child("ben")
    seed.fund("ava", 40)
    reward = seed.reward("Sleepover", cost=25)
    redemption, _ = buddy.redeem_reward("ava", reward.id)

    with pytest.raises(ForbiddenError):
        buddy.cancel_redemption(redemption.id, Actor.child("ben"))

    cancelled = buddy.cancel_redemption(redemption.id, Actor.child("ava"))

    assert cancelled.status == RedemptionStatus.CANCELLED.value
    assert buddy.balance("ava") == 40
    last = buddy.ledger_entries("ava")[-1]
    assert (last.transaction_type, last.points_amount, last.created_by) == ("adjustment", 25, "ava")
    assert buddy.reconcile("ava") == (40, 40)
    with pytest.raises(NotFoundError):
        buddy.cancel_redemption(redemption.id, Actor.parent("mom"))


def test_redemption_can_unlock_achievements(buddy, seed) -> None:
    buddy.register_child("ava")
    seed.fund("ava", 30)
    seed.achievement("Big Spender", "rewards_redeemed", 1, points=5)
    reward = seed.reward(cost=30)

    _, unlocked = buddy.redeem_reward("ava", reward.id)

    assert [item.name for item in unlocked] == ["Big Spender"]
    assert buddy.balance("ava") == 5


def test_expired_rewards_are_refused(buddy, seed, clock) -> None:
    buddy.register_child("ava")
    seed.fund("ava", 100)
    lapsed = seed.reward("Spring fair", cost=10, expires_at=clock(), max_total=0)
    later = seed.reward("Summer fair", cost=10, expires_at=datetime(2024, 3, 5, 0, 0))

    with pytest.raises(ConflictError, match="expired"):
        buddy.redeem_reward("ava", lapsed.id)
    redemption, _ = buddy.redeem_reward("ava", later.id)

    assert redemption.points_spent == 10
    assert buddy.balance("ava") == 90


def test_household_cap_counts_every_child(buddy, seed) -> None:
    for child_id in ("ava", "ben", "cam"):
        buddy.register_child(child_id)
        seed.fund(child_id, 50)
    reward = seed.reward("Zoo trip", cost=20, max_total=2)
    first, _ = buddy.redeem_reward("ava", reward.id)
    buddy.redeem_reward("ben", reward.id)

    with pytest.raises(ConflictError, match="fully claimed by the household"):
        buddy.redeem_reward("cam", reward.id)
    assert buddy.balance("cam") == 50

    buddy.cancel_redemption(first.id, Actor.parent("mom"))
    redemption, _ = buddy.redeem_reward("cam", reward.id)
    assert redemption.child_id == "cam"
    assert buddy.balance("cam") == 30


def test_per_child_cap_leaves_siblings_alone(buddy, seed) -> None:
    buddy.register_child("ava")
    buddy.register_child("ben")
    seed.fund("ava", 50)
    seed.fund("ben", 50)
    reward = seed.reward("Pick dinner", cost=10, max_per_child=1)
    buddy.redeem_reward("ava", reward.id)

    with pytest.raises(ConflictError, match="maximum number of times"):
        buddy.redeem_reward("ava", reward.id)

    assert buddy.balance("ava") == 40
    buddy.redeem_reward("ben", reward.id)
    assert buddy.balance("ben") == 40


def test_parent_fulfils_pending_redemption(buddy, seed, clock) -> None:
    buddy.register_child("ava")
    seed.fund("ava", 30)
    reward = seed.reward(cost=30)
    redemption, _ = buddy.redeem_reward("ava", reward.id)

    with pytest.raises(ForbiddenError):
        buddy.fulfil_redemption(redemption.id, Actor.child("ava"))

    fulfilled = buddy.fulfil_redemption(redemption.id, Actor.parent("dad"))

    assert fulfilled.status == RedemptionStatus.FULFILLED.value
    assert (fulfilled.fulfilled_at, fulfilled.fulfilled_by) == (clock(), "dad")
    with pytest.raises(NotFoundError):
        buddy.fulfil_redemption(redemption.id, Actor.parent("dad"))
    with pytest.raises(NotFoundError):
        buddy.cancel_redemption(redemption.id, Actor.parent("dad"))
    with pytest.raises(NotFoundError):
        buddy.fulfil_redemption(4242, Actor.parent("dad"))
    assert buddy.balance("ava") == 0


def test_failed_unlock_notice_does_not_undo_redemption(buddy, seed, logger, monkeypatch) -> None:
    buddy.register_child("ava")
    seed.fund("ava", 30)
    seed.achievement("Big Spender", "rewards_redeemed", 1, points=5)
    reward = seed.reward(cost=30)

    def offline(notification):
        raise RuntimeError("inbox offline")

    monkeypatch.setattr(buddy.notifications, "publish", offline)

    redemption, unlocked = buddy.redeem_reward("ava", reward.id)

    assert redemption.status == RedemptionStatus.PENDING.value
    assert [item.name for item in unlocked] == ["Big Spender"]
    assert buddy.balance("ava") == 5
    failures = logger.tail(event_type="followup_failed")
    assert [(entry["step"], entry["error_type"]) for entry in failures] == [("notify_achievements", "RuntimeError")]
