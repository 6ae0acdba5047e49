from datetime import date, time

import pytest

from taskbuddy.capacity import CapacityGuard
from taskbuddy.exceptions import ValidationError
from taskbuddy.overlaps import ScheduleOverlapDetector

DAY = date(2024, 3, 4)


def test_fourth_active_assignment_is_denied(engine, seed) -> None:
    seed.child("ava")
    for index in range(3):
        task = seed.task(f"Chore {index}")
        seed.assignment(task.id, "ava", status="in_progress" if index == 0 else "pending")
    guard = CapacityGuard(engine)

    check = guard.check_assignment_limits("ava", "secondary")

    assert not check.allowed
    assert "3 active tasks" in check.reason
    assert guard.child_capacity("ava").total_active == 3


def test_finished_assignments_free_capacity(engine, seed) -> None:
    seed.child("ava")
    for index, status in enumerate(["pending", "completed", "approved", "rejected"]):
        task = seed.task(f"Chore {index}")
        seed.assignment(task.id, "ava", status=status)

    check = CapacityGuard(engine).check_assignment_limits("ava", "secondary")

    assert check.allowed
    assert check.reason is None


def test_second_primary_assignment_is_denied(engine, seed) -> None:
    seed.child("ava")
    primary = seed.task("Homework", tag="primary")
    seed.assignment(primary.id, "ava")
    guard = CapacityGuard(engine)

    assert not guard.check_assignment_limits("ava", "primary").allowed
    assert guard.check_assignment_limits("ava", "secondary").allowed
    capacity = guard.child_capacity("ava")
    assert (capacity.total_active, capacity.primary_active) == (1, 1)


def test_unknown_tag_is_a_validation_error(engine, seed) -> None:
    seed.child("ava")

    with pytest.raises(ValidationError):
        CapacityGuard(engine).check_assignment_limits("ava", "urgent")


def test_timed_overlap_uses_half_open_windows(engine, seed) -> None:
    seed.child("ava")
    piano = seed.task("Piano", start_time=time(9, 0), minutes=60)
    seed.assignment(piano.id, "ava", day=DAY)
    detector = ScheduleOverlapDetector(engine)

    clash = detector.get_overlaps("ava", time(9, 30), 60, DAY)
    back_to_back = detector.get_overlaps("ava", time(10, 0), 60, DAY)
    other_day = detector.get_overlaps("ava", time(9, 30), 60, date(2024, 3, 5))
    excluded = detector.get_overlaps("ava", time(9, 30), 60, DAY, piano.id)

    assert [warning.task_title for warning in clash] == ["Piano"]
    assert clash[0].end.time() == time(10, 0)
    assert back_to_back == []
    assert other_day == []
    assert excluded == []


def test_missing_duration_uses_default_minutes(engine, seed) -> None:
    seed.child("ava")
    reading = seed.task("Reading", start_time=time(16, 0))
    seed.assignment(reading.id, "ava", day=DAY)

    assert ScheduleOverlapDetector(engine).get_overlaps("ava", time(16, 45), None, DAY)
    assert not ScheduleOverlapDetector(engine, default_minutes=30).get_overlaps("ava", time(16, 45), None, DAY)


def test_all_day_tasks_only_clash_with_all_day_tasks(engine, seed) -> None:
    seed.child("ava")
    timed = seed.task("Piano", start_time=time(9, 0), minutes=60)
    seed.assignment(timed.id, "ava", day=DAY)
    detector = ScheduleOverlapDetector(engine)

    assert detector.get_overlaps("ava", None, None, DAY) == []

    laundry = seed.task("Laundry")
    seed.assignment(laundry.id, "ava", day=DAY)

    all_day = detector.get_overlaps("ava", None, None, DAY)
    assert [(warning.task_title, warning.all_day) for warning in all_day] == [("Laundry", True)]
    assert [warning.task_title for warning in detector.get_overlaps("ava", time(9, 15), 30, DAY)] == ["Piano"]
