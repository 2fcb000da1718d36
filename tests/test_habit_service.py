import pytest
from datetime import date, datetime, timedelta, timezone

from sqlmodel import select

from habitquest.config import settings
from habitquest.errors import NotFoundError, ValidationError
from habitquest.models.habit import HabitFeedback
from habitquest.services.habit_service import HabitService
from habitquest.services.profile_service import ProfileService

MONDAY = datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_habit_streak(db_session):
    habit = await HabitService.create_habit(db_session, "u1", "Test Habit", frequency="Daily", priority="High")

    yesterday = MONDAY - timedelta(days=1)
    first = await HabitService.complete_habit(db_session, "u1", habit.id, tz_name="UTC", now=yesterday)
    assert first.streak == 1
    assert first.award.amount == 25
    # the only habit scheduled today is done -> daily bonus
    assert first.daily_bonus is not None

    second = await HabitService.complete_habit(db_session, "u1", habit.id, tz_name="UTC", now=MONDAY)
    assert second.streak == 2

    await db_session.refresh(habit)
    assert habit.streak == 2

    with pytest.raises(ValidationError):
        await HabitService.complete_habit(db_session, "u1", habit.id, tz_name="UTC", now=MONDAY)

    profile = await ProfileService.get_or_create_profile(db_session, "u1")
    assert profile.total_completions == 2
    assert profile.longest_streak == 2


@pytest.mark.asyncio
async def test_uncomplete_reverses_xp_and_streak(db_session):
    habit = await HabitService.create_habit(db_session, "u1", "Read", priority="Low")
    done = await HabitService.complete_habit(db_session, "u1", habit.id, tz_name="UTC", now=MONDAY)
    total_after = done.daily_bonus.new_total

    habit = await HabitService.uncomplete_habit(db_session, "u1", habit.id, tz_name="UTC", now=MONDAY)
    assert habit.streak == 0
    profile = await ProfileService.get_or_create_profile(db_session, "u1")
    assert profile.xp_total == total_after - 10

    with pytest.raises(NotFoundError):
        await HabitService.uncomplete_habit(db_session, "u1", habit.id, tz_name="UTC", now=MONDAY)


def test_should_do_habit_on_day():
    # Monday=0 ... Sunday=6
    assert all(HabitService.should_do_habit_on_day("Daily", d) for d in range(7))
    assert [d for d in range(7) if HabitService.should_do_habit_on_day("Weekdays", d)] == [0, 1, 2, 3, 4]
    assert [d for d in range(7) if HabitService.should_do_habit_on_day("Weekends", d)] == [5, 6]
    assert [d for d in range(7) if HabitService.should_do_habit_on_day("Mon, Wed, Fri", d)] == [0, 2, 4]
    assert [d for d in range(7) if HabitService.should_do_habit_on_day("Tue, Thu", d)] == [1, 3]
    with pytest.raises(ValidationError):
        HabitService.should_do_habit_on_day("Fortnightly", 0)


def test_streak_steps_over_unscheduled_days():
    monday = date(2026, 3, 2)
    friday, thursday = date(2026, 2, 27), date(2026, 2, 26)

    assert HabitService.calculate_streak([monday, friday, thursday], "Weekdays", monday) == 3
    # today not done yet: count from yesterday, which is a weekend day
    assert HabitService.calculate_streak([friday, thursday], "Weekdays", monday) == 2
    assert HabitService.calculate_streak([friday], "Daily", monday) == 0
    assert HabitService.calculate_streak([], "Daily", monday) == 0


@pytest.mark.asyncio
async def test_ownership_and_validation(db_session):
    habit = await HabitService.create_habit(db_session, "u1", "Walk")
    with pytest.raises(NotFoundError):
        await HabitService.get_habit(db_session, "u2", habit.id)
    with pytest.raises(ValidationError):
        await HabitService.create_habit(db_session, "u1", "Bad", frequency="Sometimes")

    await HabitService.update_status(db_session, "u1", habit.id, "paused")
    assert await HabitService.list_habits(db_session, "u1") == []
    assert len(await HabitService.list_habits(db_session, "u1", active_only=False)) == 1

    await HabitService.delete_habit(db_session, "u1", habit.id)
    assert await HabitService.list_habits(db_session, "u1", active_only=False) == []


@pytest.mark.asyncio
async def test_update_habit_edits_only_given_fields(db_session):
    habit = await HabitService.create_habit(
        db_session, "u1", "Read", category="Learning", time_to_complete="20 min"
    )

    updated = await HabitService.update_habit(
        db_session, "u1", habit.id, name="  Read fiction ", frequency="Weekends", priority="Low"
    )
    assert updated.name == "Read fiction"
    assert updated.frequency == "Weekends"
    assert updated.priority == "Low"
    assert updated.category == "Learning"
    assert updated.time_to_complete == "20 min"

    with pytest.raises(ValidationError):
        await HabitService.update_habit(db_session, "u1", habit.id, category="Hobbies")
    with pytest.raises(ValidationError):
        await HabitService.update_habit(db_session, "u1", habit.id, name="   ")
    with pytest.raises(NotFoundError):
        await HabitService.update_habit(db_session, "u2", habit.id, name="Mine now")

    await db_session.refresh(habit)
    assert habit.category == "Learning"
    assert habit.name == "Read fiction"


@pytest.mark.asyncio
async def test_feedback_one_per_day(db_session):
    habit = await HabitService.create_habit(db_session, "u1", "Journal")
    await HabitService.complete_habit(db_session, "u1", habit.id, tz_name="UTC", now=MONDAY)

    await HabitService.submit_daily_feedback(
        db_session, "u1", [{"habit_id": habit.id, "feedback": "ok", "mood": "neutral"}], tz_name="UTC", now=MONDAY
    )
    await HabitService.submit_daily_feedback(
        db_session, "u1", [{"habit_id": habit.id, "feedback": " great day ", "mood": "very_positive"}],
        tz_name="UTC", now=MONDAY + timedelta(hours=1),
    )

    rows = (await db_session.execute(select(HabitFeedback).where(HabitFeedback.habit_id == habit.id))).scalars().all()
    assert len(rows) == 1
    assert rows[0].feedback == "great day"
    assert rows[0].mood == "very_positive"
    assert rows[0].completed is True


@pytest.mark.asyncio
async def test_feedback_is_capped(db_session, monkeypatch):
    monkeypatch.setattr(settings, "FEEDBACK_LIMIT", 3)
    habit = await HabitService.create_habit(db_session, "u1", "Journal")
    for i in range(5):
        await HabitService.submit_daily_feedback(
            db_session, "u1", [{"habit_id": habit.id, "feedback": f"day {i}"}],
            tz_name="UTC", now=MONDAY + timedelta(days=i),
        )

    rows = (
        await db_session.execute(
            select(HabitFeedback).where(HabitFeedback.habit_id == habit.id).order_by(HabitFeedback.feedback_date)
        )
    ).scalars().all()
    assert [r.feedback for r in rows] == ["day 2", "day 3", "day 4"]


@pytest.mark.asyncio
async def test_feedback_rejects_foreign_habits(db_session):
    habit = await HabitService.create_habit(db_session, "u2", "Not yours")
    with pytest.raises(NotFoundError):
        await HabitService.submit_daily_feedback(
            db_session, "u1", [{"habit_id": habit.id, "feedback": "hi"}], tz_name="UTC", now=MONDAY
        )


@pytest.mark.asyncio
async def test_todays_habits_for_feedback(db_session):
    daily = await HabitService.create_habit(db_session, "u1", "Daily thing")
    await HabitService.create_habit(db_session, "u1", "Weekend thing", frequency="Weekends")
    await HabitService.complete_habit(db_session, "u1", daily.id, tz_name="UTC", now=MONDAY)

    items = await HabitService.get_todays_habits_for_feedback(db_session, "u1", tz_name="UTC", now=MONDAY)
    assert [i["name"] for i in items] == ["Daily thing"]
    assert items[0]["completed_today"] is True
    assert items[0]["has_feedback"] is False


def test_feedback_window():
    closed = HabitService.feedback_window("UTC", datetime(2026, 3, 2, 11, 30, tzinfo=timezone.utc))
    assert not closed.can_submit
    assert closed.time_until_available == "0h 30m"

    open_ = HabitService.feedback_window("UTC", datetime(2026, 3, 2, 13, 15, tzinfo=timezone.utc))
    assert open_.can_submit
    assert open_.time_until_expires == "10h 45m"

    # 04:00 UTC is 13:00 in Tokyo
    assert HabitService.feedback_window("Asia/Tokyo", datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)).can_submit
    # unknown zones fall back to UTC
    assert not HabitService.feedback_window("Mars/Olympus", datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)).can_submit


@pytest.mark.asyncio
async def test_record_chain_completion_is_idempotent(db_session):
    habit = await HabitService.create_habit(db_session, "u1", "Stretch")
    today = date(2026, 3, 2)
    assert await HabitService.record_chain_completion(db_session, "u1", habit.id, today=today) is True
    assert await HabitService.record_chain_completion(db_session, "u1", habit.id, today=today) is False
    await db_session.refresh(habit)
    assert habit.streak == 1
