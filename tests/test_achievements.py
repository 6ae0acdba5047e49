import pytest

from taskbuddy.achievements import _CHECKS, AchievementRuleEngine
from taskbuddy.exceptions import ValidationError
from taskbuddy.ledger import ProgressionLedger
from taskbuddy.models import CriteriaType
from taskbuddy.storage.persistence import RewardRedemption, get_child_progress, ledger_entries, transaction


@pytest.fixture
def rules(engine, clock) -> AchievementRuleEngine:
    return AchievementRuleEngine(engine, ProgressionLedger(clock=clock), clock=clock)


def test_generic_pass_unlocks_once_with_combined_entry(engine, seed, rules) -> None:
    seed.child("ava", total_tasks_completed=1)
    first = seed.achievement("First Task", "tasks_completed", 1, points=10, xp=5)
    second = seed.achievement("Getting Going", "tasks_completed", 1, points=5)
    seed.achievement("Ten Tasks", "tasks_completed", 10, points=50)

    unlocked = rules.evaluate("ava")
    again = rules.evaluate("ava")

    assert [item.id for item in unlocked] == [first.id, second.id]
    assert again == []
    assert len(rules.unlocked("ava")) == 2
    with transaction(engine) as session:
        entries = ledger_entries(session, "ava")
        assert len(entries) == 1
        assert entries[0].points_amount == 15
        assert entries[0].reference_type == "achievement_bonus"
        assert entries[0].description == "Achievement bonus: First Task, Getting Going"
        progress = get_child_progress(session, "ava")
        assert progress.points_balance == 15
        assert progress.experience_points == 5
        assert progress.total_xp_earned == 0


def test_streak_criterion_accepts_longest_streak(seed, rules) -> None:
    seed.child("ava", current_streak_days=1, longest_streak_days=7)
    seed.achievement("Week Warrior", "streak_days", 7)
    seed.achievement("Level Five", "level_reached", 5)

    unlocked = rules.evaluate("ava")

    assert [item.name for item in unlocked] == ["Week Warrior"]


def test_event_only_criteria_wait_for_their_trigger(seed, rules) -> None:
    seed.child("ava", total_tasks_completed=50)
    seed.achievement("Early Bird", "early_completion", points=15)
    seed.achievement("Perfect Week", "perfect_week", points=50)

    assert rules.evaluate("ava") == []

    unlocked = rules.trigger_event("ava", CriteriaType.EARLY_COMPLETION)
    assert [item.name for item in unlocked] == ["Early Bird"]
    assert rules.trigger_event("ava", "early_completion") == []


def test_trigger_event_rejects_aggregate_and_unknown_types(seed, rules) -> None:
    seed.child("ava")

    with pytest.raises(ValidationError):
        rules.trigger_event("ava", CriteriaType.TASKS_COMPLETED)
    with pytest.raises(ValidationError):
        rules.trigger_event("ava", "moon_landing")


@pytest.mark.parametrize(
    ("criteria_type", "value"),
    [("collect_stamps", 3), (None, 3), ("tasks_completed", None), ("points_earned", -1)],
)
def test_malformed_definitions_fail_before_any_write(engine, seed, rules, criteria_type, value) -> None:
    seed.child("ava", total_tasks_completed=5)
    seed.achievement("Valid", "tasks_completed", 1, points=10)
    seed.achievement("Broken", criteria_type, value)

    with pytest.raises(ValidationError):
        rules.evaluate("ava")

    assert list(rules.unlocked("ava")) == []
    with transaction(engine) as session:
        assert list(ledger_entries(session, "ava")) == []


def test_rewards_redeemed_counts_active_redemptions(engine, seed, rules) -> None:
    seed.child("ava")
    reward = seed.reward()
    seed.achievement("Shopper", "rewards_redeemed", 2, points=5)
    with transaction(engine) as session:
        session.add(RewardRedemption(reward_id=reward.id, child_id="ava", points_spent=30))
        session.add(RewardRedemption(reward_id=reward.id, child_id="ava", points_spent=30, status="cancelled"))

    assert rules.evaluate("ava") == []

    with transaction(engine) as session:
        session.add(RewardRedemption(reward_id=reward.id, child_id="ava", points_spent=30, status="fulfilled"))

    assert [item.name for item in rules.evaluate("ava")] == ["Shopper"]


def test_every_criteria_type_has_a_check() -> None:
    assert set(_CHECKS) == set(CriteriaType)
    assert all(not _CHECKS[item](None, 0) for item in CriteriaType if item.is_event_only)
