from datetime import datetime, timedelta, timezone

import pytest

from habitquest.errors import InvalidIndexError, SessionStateError, ValidationError
from habitquest.services import session_engine as engine
from habitquest.services.session_engine import SessionStatus, StepStatus

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)  # a Monday


def _items(n, duration="10 min"):
    return [{"habit_id": str(i + 1), "habit_name": f"habit {i + 1}", "duration": duration} for i in range(n)]


def _assert_invariants(run):
    assert all(step.order == i for i, step in enumerate(run.steps))
    terminal = sum(1 for s in run.steps if s.status in (StepStatus.COMPLETED, StepStatus.SKIPPED))
    assert run.completed_habits_count == terminal
    assert 0 <= run.completion_rate <= 100
    assert run.completion_rate == int(terminal * 100 / run.total_habits + 0.5)
    assert run.is_active == (run.status is SessionStatus.ACTIVE)


def test_new_run_snapshot():
    run = engine.new_run(_items(3), T0)
    assert run.total_habits == 3
    assert run.total_duration_minutes == 30
    assert run.total_duration == "30 min"
    assert run.status is SessionStatus.ACTIVE and run.is_active
    assert [s.status for s in run.steps] == [StepStatus.PENDING] * 3
    assert run.day_of_week == 0 and run.hour_of_day == 8
    _assert_invariants(run)


def test_new_run_analytics_use_user_timezone():
    run = engine.new_run(_items(1), T0, tz_name="Asia/Tokyo")
    assert run.hour_of_day == 17


def test_new_run_size_limits():
    with pytest.raises(ValidationError):
        engine.new_run([], T0)
    with pytest.raises(ValidationError):
        engine.new_run(_items(21), T0)
    assert engine.new_run(_items(20), T0).total_habits == 20


def test_complete_two_skip_one_finishes_session():
    run = engine.new_run(_items(3), T0)
    engine.complete_step(run, 0, T0 + timedelta(minutes=10))
    _assert_invariants(run)
    engine.complete_step(run, 1, T0 + timedelta(minutes=20))
    _assert_invariants(run)
    t = engine.skip_step(run, 2, T0 + timedelta(minutes=25))

    assert t.session_completed
    assert run.status is SessionStatus.COMPLETED
    assert not run.is_active
    assert run.completion_rate == 100
    assert run.completed_habits_count == 3
    assert run.success_rate == 67
    assert run.actual_duration == 25
    # 2 of 3 completed -> partial band
    assert run.xp_earned == 2 * 20 + 30 + 2 * 5
    _assert_invariants(run)


def test_finished_fields_are_set_once():
    run = engine.new_run(_items(2), T0)
    engine.complete_step(run, 0, T0 + timedelta(minutes=5))
    engine.complete_step(run, 1, T0 + timedelta(minutes=12))
    snapshot = (run.completed_at, run.actual_duration, run.xp_earned)

    t = engine.complete_step(run, 1, T0 + timedelta(hours=3))
    assert not t.changed
    t = engine.skip_step(run, 0, T0 + timedelta(hours=3))
    assert not t.changed
    assert (run.completed_at, run.actual_duration, run.xp_earned) == snapshot


def test_five_habits_three_completed_partial_band():
    run = engine.new_run(_items(5), T0)
    for i in range(3):
        engine.complete_step(run, i, T0 + timedelta(minutes=i + 1))
    assert run.status is SessionStatus.ACTIVE
    assert run.xp_earned == 0

    engine.skip_step(run, 3, T0 + timedelta(minutes=10))
    assert run.status is SessionStatus.ACTIVE
    engine.skip_step(run, 4, T0 + timedelta(minutes=11))

    assert run.status is SessionStatus.COMPLETED
    assert run.success_rate == 60
    assert run.xp_earned == 3 * 20 + 30 + 3 * 5


def test_pointer_advances_to_next_open_step():
    run = engine.new_run(_items(4), T0)
    engine.skip_step(run, 1, T0)
    assert run.current_habit_index == 2
    engine.complete_step(run, 3, T0)
    # nothing open after 3, wrap to the first open step
    assert run.current_habit_index == 0


def test_start_step_rules():
    run = engine.new_run(_items(2), T0)
    t = engine.start_step(run, 1, T0 + timedelta(minutes=1))
    assert t.changed
    assert run.steps[1].status is StepStatus.ACTIVE
    assert run.steps[1].started_at == T0 + timedelta(minutes=1)
    assert run.current_habit_index == 1

    assert not engine.start_step(run, 1, T0 + timedelta(minutes=2)).changed

    with pytest.raises(InvalidIndexError):
        engine.start_step(run, 5, T0)
    with pytest.raises(InvalidIndexError):
        engine.start_step(run, -1, T0)

    engine.complete_step(run, 1, T0 + timedelta(minutes=3))
    with pytest.raises(InvalidIndexError):
        engine.start_step(run, 1, T0)


def test_complete_pending_starts_it_implicitly():
    run = engine.new_run(_items(2), T0)
    engine.complete_step(run, 0, T0 + timedelta(minutes=4))
    step = run.steps[0]
    assert step.status is StepStatus.COMPLETED
    assert step.started_at == T0 + timedelta(minutes=4)
    assert step.time_spent == 0


def test_completing_a_skipped_step_is_rejected():
    run = engine.new_run(_items(2), T0)
    engine.skip_step(run, 0, T0)
    with pytest.raises(InvalidIndexError):
        engine.complete_step(run, 0, T0)


def test_pause_time_is_subtracted_and_capped():
    run = engine.new_run(_items(1), T0)
    engine.pause(run, T0 + timedelta(minutes=5))
    assert not engine.pause(run, T0 + timedelta(minutes=6)).changed
    engine.resume(run, T0 + timedelta(minutes=15))
    assert run.pause_duration == 10
    assert run.paused_at is None

    with pytest.raises(SessionStateError):
        engine.resume(run, T0 + timedelta(minutes=16))

    engine.pause(run, T0 + timedelta(minutes=20))
    engine.resume(run, T0 + timedelta(hours=10))
    assert run.pause_duration == 300

    engine.complete_step(run, 0, T0 + timedelta(hours=11))
    assert run.actual_duration == 11 * 60 - 300


def test_break_window():
    run = engine.new_run(_items(2), T0)
    with pytest.raises(SessionStateError):
        engine.end_break(run, T0)
    engine.start_break(run, T0 + timedelta(minutes=1))
    assert run.on_break
    engine.end_break(run, T0 + timedelta(minutes=6))
    assert not run.on_break and run.break_started_at is None
    assert run.pause_duration == 5


def test_pause_and_break_cannot_overlap():
    run = engine.new_run(_items(1), T0)
    engine.pause(run, T0 + timedelta(minutes=10))
    with pytest.raises(SessionStateError):
        engine.start_break(run, T0 + timedelta(minutes=10))
    assert not run.on_break

    engine.complete_step(run, 0, T0 + timedelta(minutes=40))
    assert run.pause_duration == 30
    assert run.actual_duration == 10

    run = engine.new_run(_items(1), T0)
    engine.start_break(run, T0 + timedelta(minutes=5))
    with pytest.raises(SessionStateError):
        engine.pause(run, T0 + timedelta(minutes=6))
    assert run.paused_at is None


def test_new_run_order_none_falls_back_to_position():
    items = _items(3)
    items[0]["order"] = 5
    items[1]["order"] = None
    items[2]["order"] = 0
    run = engine.new_run(items, T0)
    assert [s.habit_id for s in run.steps] == ["3", "2", "1"]
    assert [s.order for s in run.steps] == [0, 1, 2]


def test_open_pause_is_closed_on_finish():
    run = engine.new_run(_items(1), T0)
    engine.pause(run, T0 + timedelta(minutes=10))
    engine.complete_step(run, 0, T0 + timedelta(minutes=30))
    assert run.paused_at is None
    assert run.pause_duration == 20
    assert run.actual_duration == 10


def test_abandon():
    run = engine.new_run(_items(2), T0)
    engine.complete_step(run, 0, T0)
    engine.abandon(run, T0 + timedelta(minutes=1))
    assert run.status is SessionStatus.ABANDONED
    assert not run.is_active
    assert run.completed_at == T0 + timedelta(minutes=1)
    assert engine.calculate_xp(run) == 0
    with pytest.raises(SessionStateError):
        engine.pause(run, T0)
    # step actions on a closed session are no-ops
    assert not engine.complete_step(run, 1, T0).changed


def test_column_values_round_trip_shape():
    run = engine.new_run(_items(2), T0)
    values = run.column_values()
    assert values["status"] == "active"
    assert values["habits"][0]["status"] == "pending"
    assert values["habits"][1]["order"] == 1
    assert "steps" not in values
