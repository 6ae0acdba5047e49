from taskbuddy.ledger import ProgressionLedger
from taskbuddy.levels import LevelUpAwarder
from taskbuddy.storage.persistence import get_child_progress, ledger_entries, transaction


def _awarder(engine, clock) -> LevelUpAwarder:
    return LevelUpAwarder(engine, ProgressionLedger(clock=clock), multiplier=5)


def test_multi_level_jump_pays_one_combined_bonus(engine, seed, clock) -> None:
    seed.child("ava", total_xp_earned=250, experience_points=250)

    result = _awarder(engine, clock).apply("ava", 1)

    assert result.leveled_up
    assert (result.old_level, result.new_level) == (1, 3)
    assert result.bonus_points_awarded == 2 * 5 + 3 * 5
    with transaction(engine) as session:
        entries = ledger_entries(session, "ava")
        assert len(entries) == 1
        assert entries[0].transaction_type == "milestone_bonus"
        assert entries[0].points_amount == 25
        assert entries[0].description.startswith("Multi-level up!")
        assert get_child_progress(session, "ava").level == 3


def test_level_bonus_is_not_paid_twice(engine, seed, clock) -> None:
    seed.child("ava", total_xp_earned=120)
    awarder = _awarder(engine, clock)

    first = awarder.apply("ava", 1)
    second = awarder.apply("ava", 1)

    assert first.leveled_up and first.bonus_points_awarded == 10
    assert not second.leveled_up
    with transaction(engine) as session:
        entries = ledger_entries(session, "ava")
        assert [entry.description for entry in entries] == ["Level up! Reached Level 2 - bonus 10 Points"]
        assert get_child_progress(session, "ava").points_balance == 10


def test_no_level_change_writes_nothing(engine, seed, clock) -> None:
    seed.child("ava", total_xp_earned=60)

    result = _awarder(engine, clock).apply("ava", 1)

    assert not result.leveled_up
    assert result.new_level == 1
    with transaction(engine) as session:
        assert list(ledger_entries(session, "ava")) == []


def test_drifted_level_is_repaired_without_bonus(engine, seed, clock) -> None:
    seed.child("ava", total_xp_earned=0, level=4)

    result = _awarder(engine, clock).apply("ava", 4)

    assert not result.leveled_up
    with transaction(engine) as session:
        assert get_child_progress(session, "ava").level == 1
        assert list(ledger_entries(session, "ava")) == []
