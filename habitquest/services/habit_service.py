from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from loguru import logger

from ..config import settings
from ..errors import NotFoundError, ValidationError
from ..models.habit import (
    Habit,
    HabitCategory,
    HabitCompletion,
    HabitFeedback,
    HabitFrequency,
    HabitStatus,
    Mood,
    TimeOfDay,
)
from ..utils.user_time import format_span, local_now, local_today
from .profile_service import ProfileService
from .progression import HabitPriority, XPSource, habit_completion_xp
from .xp_service import XPAward, XPService

MAX_STREAK_LOOKBACK_DAYS = 365


@dataclass
class CompletionResult:
    habit: Habit
    streak: int
    award: XPAward
    milestone: Optional[XPAward] = None
    daily_bonus: Optional[XPAward] = None

    @property
    def xp_total_awarded(self) -> int:
        return sum(a.amount for a in (self.award, self.milestone, self.daily_bonus) if a)


@dataclass(frozen=True)
class FeedbackWindow:
    can_submit: bool
    time_until_available: Optional[str] = None
    time_until_expires: Optional[str] = None


def _enum_value(enum_cls, value: str, field: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}' (expected one of: {allowed})")


class HabitService:
    """
    CRUD, completions, streaks and daily feedback for habits.
    """

    @staticmethod
    async def create_habit(
        session: AsyncSession,
        user_id: str,
        name: str,
        description: str = "",
        category: str = HabitCategory.PRODUCTIVITY.value,
        frequency: str = HabitFrequency.DAILY.value,
        time_of_day: str = TimeOfDay.MORNING.value,
        time_to_complete: str = "15 min",
        priority: str = HabitPriority.MEDIUM.value,
        impact_score: int = 5,
    ) -> Habit:
        """Create a new habit."""
        name = (name or "").strip()
        if not name or len(name) > 200:
            raise ValidationError("Habit name must be 1-200 characters")
        if not 1 <= impact_score <= 10:
            raise ValidationError("impact_score must be between 1 and 10")

        habit = Habit(
            user_id=user_id,
            name=name,
            description=description or "",
            category=_enum_value(HabitCategory, category, "category"),
            frequency=_enum_value(HabitFrequency, frequency, "frequency"),
            time_of_day=_enum_value(TimeOfDay, time_of_day, "time_of_day"),
            time_to_complete=time_to_complete,
            priority=_enum_value(HabitPriority, priority, "priority"),
            impact_score=impact_score,
        )
        session.add(habit)
        await session.flush()
        logger.info("Created habit {} for user {}", habit.id, user_id)

        await ProfileService.refresh_stats(session, user_id)
        return habit

    @staticmethod
    async def list_habits(session: AsyncSession, user_id: str, active_only: bool = True) -> List[Habit]:
        """List user's habits."""
        stmt = select(Habit).where(Habit.user_id == user_id)
        if active_only:
            stmt = stmt.where(Habit.status == HabitStatus.ACTIVE.value)

        result = await session.execute(stmt.order_by(Habit.created_at, Habit.id))
        return list(result.scalars().all())

    @staticmethod
    async def get_habit(session: AsyncSession, user_id: str, habit_id: int) -> Habit:
        habit = await session.get(Habit, habit_id)
        if not habit or habit.user_id != user_id:
            raise NotFoundError(f"Habit {habit_id} not found")
        return habit

    @staticmethod
    async def update_habit(
        session: AsyncSession,
        user_id: str,
        habit_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
        frequency: Optional[str] = None,
        time_of_day: Optional[str] = None,
        time_to_complete: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> Habit:
        """Edit a habit's details; fields left as None are unchanged."""
        habit = await HabitService.get_habit(session, user_id, habit_id)

        if name is not None:
            name = name.strip()
            if not name or len(name) > 200:
                raise ValidationError("Habit name must be 1-200 characters")
            habit.name = name
        if description is not None:
            habit.description = description
        if category is not None:
            habit.category = _enum_value(HabitCategory, category, "category")
        if frequency is not None:
            habit.frequency = _enum_value(HabitFrequency, frequency, "frequency")
        if time_of_day is not None:
            habit.time_of_day = _enum_value(TimeOfDay, time_of_day, "time_of_day")
        if time_to_complete is not None:
            habit.time_to_complete = time_to_complete
        if priority is not None:
            habit.priority = _enum_value(HabitPriority, priority, "priority")

        habit.touch()
        session.add(habit)
        await session.flush()
        logger.info("Updated habit {} for user {}", habit_id, user_id)
        return habit

    @staticmethod
    async def update_status(session: AsyncSession, user_id: str, habit_id: int, status: str) -> Habit:
        habit = await HabitService.get_habit(session, user_id, habit_id)
        habit.status = _enum_value(HabitStatus, status, "status")
        habit.touch()
        session.add(habit)
        await session.flush()
        logger.info("Habit {} is now {}", habit_id, habit.status)
        return habit

    @staticmethod
    async def delete_habit(session: AsyncSession, user_id: str, habit_id: int) -> None:
        """Delete a habit with its completions and feedback. Chains that reference it are left alone."""
        habit = await HabitService.get_habit(session, user_id, habit_id)
        await session.execute(delete(HabitCompletion).where(HabitCompletion.habit_id == habit_id))
        await session.execute(delete(HabitFeedback).where(HabitFeedback.habit_id == habit_id))
        await session.delete(habit)
        await session.flush()
        logger.info("Deleted habit {} for user {}", habit_id, user_id)

        await ProfileService.refresh_stats(session, user_id)

    # --- schedule & streaks ---

    @staticmethod
    def should_do_habit_on_day(frequency: str, weekday: int) -> bool:
        """`weekday` follows date.weekday(): Monday is 0."""
        try:
            freq = HabitFrequency(frequency)
        except ValueError:
            raise ValidationError(f"Unknown habit frequency '{frequency}'")

        if freq is HabitFrequency.DAILY:
            return True
        elif freq is HabitFrequency.WEEKDAYS:
            return weekday < 5
        elif freq is HabitFrequency.WEEKENDS:
            return weekday >= 5
        elif freq is HabitFrequency.MON_WED_FRI:
            return weekday in (0, 2, 4)
        elif freq is HabitFrequency.TUE_THU:
            return weekday in (1, 3)
        raise ValidationError(f"Unhandled habit frequency '{frequency}'")

    @staticmethod
    def calculate_streak(completed_dates: Iterable[date], frequency: str, today: date) -> int:
        """
        Consecutive scheduled days completed, counting back from today (or
        from yesterday when today is not done yet). Unscheduled days are
        stepped over without breaking the streak.
        """
        done = set(completed_dates)
        day = today if today in done else today - timedelta(days=1)

        streak = 0
        for _ in range(MAX_STREAK_LOOKBACK_DAYS):
            if HabitService.should_do_habit_on_day(frequency, day.weekday()):
                if day not in done:
                    break
                streak += 1
            day -= timedelta(days=1)
        return streak

    @staticmethod
    async def _completed_dates(session: AsyncSession, habit_id: int) -> List[date]:
        result = await session.execute(
            select(HabitCompletion.completion_date).where(
                HabitCompletion.habit_id == habit_id,
                HabitCompletion.completed == True,  # noqa: E712
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def _completion_on(session: AsyncSession, habit_id: int, day: date) -> Optional[HabitCompletion]:
        result = await session.execute(
            select(HabitCompletion).where(
                HabitCompletion.habit_id == habit_id,
                HabitCompletion.completion_date == day,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _update_streak(session: AsyncSession, habit: Habit, today: date) -> int:
        dates = await HabitService._completed_dates(session, habit.id)
        habit.streak = HabitService.calculate_streak(dates, habit.frequency, today)
        habit.touch()
        session.add(habit)
        await session.flush()
        return habit.streak

    # --- completions ---

    @staticmethod
    async def complete_habit(
        session: AsyncSession,
        user_id: str,
        habit_id: int,
        tz_name: Optional[str] = None,
        notes: Optional[str] = None,
        time_spent: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CompletionResult:
        """
        Mark a habit done for today (user's timezone), then award priority
        XP, any streak milestone and the daily bonus.
        """
        habit = await HabitService.get_habit(session, user_id, habit_id)
        if habit.status != HabitStatus.ACTIVE.value:
            raise ValidationError(f"Habit {habit_id} is {habit.status}")

        tz_name = tz_name or await ProfileService.get_timezone(session, user_id)
        today = local_today(tz_name, now)
        if await HabitService._completion_on(session, habit_id, today):
            raise ValidationError(f"Habit {habit_id} is already completed for {today.isoformat()}")

        session.add(HabitCompletion(habit_id=habit_id, completion_date=today, notes=notes, time_spent=time_spent))
        await session.flush()
        streak = await HabitService._update_streak(session, habit, today)

        award = await XPService.award_xp(
            session,
            user_id,
            habit_completion_xp(habit.priority),
            XPSource.HABIT_COMPLETION,
            f"Completed '{habit.name}'"[:200],
            metadata={"habit_id": habit.id, "priority": habit.priority},
        )
        milestone = await XPService.check_streak_milestone(session, user_id, streak, habit.name)

        scheduled = [
            h.id for h in await HabitService.list_habits(session, user_id)
            if HabitService.should_do_habit_on_day(h.frequency, today.weekday())
        ]
        done_today = 0
        if scheduled:
            result = await session.execute(
                select(HabitCompletion.habit_id).where(
                    HabitCompletion.habit_id.in_(scheduled),
                    HabitCompletion.completion_date == today,
                    HabitCompletion.completed == True,  # noqa: E712
                )
            )
            done_today = len(set(result.scalars().all()))
        bonus = await XPService.check_daily_bonus(session, user_id, done_today, len(scheduled), today)

        await ProfileService.refresh_stats(session, user_id)
        logger.info("Habit {} completed by user {} (streak {})", habit_id, user_id, streak)
        return CompletionResult(habit=habit, streak=streak, award=award, milestone=milestone, daily_bonus=bonus)

    @staticmethod
    async def uncomplete_habit(
        session: AsyncSession,
        user_id: str,
        habit_id: int,
        tz_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Habit:
        habit = await HabitService.get_habit(session, user_id, habit_id)
        tz_name = tz_name or await ProfileService.get_timezone(session, user_id)
        today = local_today(tz_name, now)

        completion = await HabitService._completion_on(session, habit_id, today)
        if not completion:
            raise NotFoundError(f"Habit {habit_id} has no completion for {today.isoformat()}")

        await session.delete(completion)
        await session.flush()
        await HabitService._update_streak(session, habit, today)

        await XPService.remove_xp(
            session,
            user_id,
            habit_completion_xp(habit.priority),
            XPSource.HABIT_COMPLETION,
            f"Unmarked '{habit.name}'"[:200],
            metadata={"habit_id": habit.id},
        )
        await ProfileService.refresh_stats(session, user_id)
        logger.info("Habit {} unmarked by user {}", habit_id, user_id)
        return habit

    @staticmethod
    async def record_chain_completion(
        session: AsyncSession,
        user_id: str,
        habit_id: int,
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> bool:
        """
        Keep the habit's completions and streak in step with a chain session.
        No XP here; the chain reward covers it. Returns False if already done today.
        """
        habit = await HabitService.get_habit(session, user_id, habit_id)
        today = today or local_today(await ProfileService.get_timezone(session, user_id))

        if await HabitService._completion_on(session, habit_id, today):
            return False

        session.add(HabitCompletion(habit_id=habit_id, completion_date=today, notes=notes))
        await session.flush()
        await HabitService._update_streak(session, habit, today)
        logger.info("Recorded chain completion of habit {} for user {}", habit_id, user_id)
        return True

    # --- daily feedback ---

    @staticmethod
    def feedback_window(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> FeedbackWindow:
        """
        Feedback opens at FEEDBACK_WINDOW_START_HOUR local time and closes at midnight.
        """
        local = local_now(tz_name, now)
        start_hour = settings.FEEDBACK_WINDOW_START_HOUR
        minutes_now = local.hour * 60 + local.minute

        if local.hour >= start_hour:
            return FeedbackWindow(can_submit=True, time_until_expires=format_span(24 * 60 - minutes_now))
        return FeedbackWindow(can_submit=False, time_until_available=format_span(start_hour * 60 - minutes_now))

    @staticmethod
    async def submit_daily_feedback(
        session: AsyncSession,
        user_id: str,
        entries: List[Dict[str, Any]],
        tz_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[HabitFeedback]:
        """
        Store today's feedback for each habit, replacing any entry already
        written today, and keep only the newest FEEDBACK_LIMIT per habit.
        """
        if not entries:
            raise ValidationError("No feedback entries given")

        habit_ids = [int(e["habit_id"]) for e in entries]
        result = await session.execute(
            select(Habit.id).where(Habit.id.in_(habit_ids), Habit.user_id == user_id)
        )
        owned = set(result.scalars().all())
        missing = [hid for hid in habit_ids if hid not in owned]
        if missing:
            raise NotFoundError(f"Habits not found or not owned: {missing}")

        tz_name = tz_name or await ProfileService.get_timezone(session, user_id)
        today = local_today(tz_name, now)

        saved = []
        for entry in entries:
            habit_id = int(entry["habit_id"])
            text = (entry.get("feedback") or "").strip()
            if not text or len(text) > 500:
                raise ValidationError(f"Feedback for habit {habit_id} must be 1-500 characters")
            mood = _enum_value(Mood, entry.get("mood") or Mood.NEUTRAL.value, "mood")

            completion = await HabitService._completion_on(session, habit_id, today)
            existing = await session.execute(
                select(HabitFeedback).where(
                    HabitFeedback.habit_id == habit_id,
                    HabitFeedback.feedback_date == today,
                )
            )
            for old in existing.scalars().all():
                await session.delete(old)
            await session.flush()

            feedback = HabitFeedback(
                habit_id=habit_id,
                feedback_date=today,
                feedback=text,
                completed=bool(completion and completion.completed),
                mood=mood,
            )
            session.add(feedback)
            await session.flush()
            await HabitService._trim_feedback(session, habit_id)
            saved.append(feedback)

        logger.info("Saved {} feedback entries for user {} on {}", len(saved), user_id, today)
        return saved

    @staticmethod
    async def _trim_feedback(session: AsyncSession, habit_id: int) -> None:
        result = await session.execute(
            select(HabitFeedback.id)
            .where(HabitFeedback.habit_id == habit_id)
            .order_by(HabitFeedback.feedback_date.desc())
            .offset(settings.FEEDBACK_LIMIT)
        )
        stale = list(result.scalars().all())
        if stale:
            await session.execute(delete(HabitFeedback).where(HabitFeedback.id.in_(stale)))
            logger.debug("Evicted {} old feedback entries for habit {}", len(stale), habit_id)

    @staticmethod
    async def get_todays_habits_for_feedback(
        session: AsyncSession,
        user_id: str,
        tz_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        tz_name = tz_name or await ProfileService.get_timezone(session, user_id)
        today = local_today(tz_name, now)

        todays = [
            h for h in await HabitService.list_habits(session, user_id)
            if HabitService.should_do_habit_on_day(h.frequency, today.weekday())
        ]
        items = []
        for habit in todays:
            completion = await HabitService._completion_on(session, habit.id, today)
            result = await session.execute(
                select(HabitFeedback).where(
                    HabitFeedback.habit_id == habit.id,
                    HabitFeedback.feedback_date == today,
                )
            )
            feedback = result.scalar_one_or_none()
            items.append({
                "habit_id": habit.id,
                "name": habit.name,
                "description": habit.description,
                "category": habit.category,
                "priority": habit.priority,
                "completed_today": bool(completion and completion.completed),
                "has_feedback": feedback is not None,
                "existing_feedback": {
                    "feedback": feedback.feedback,
                    "mood": feedback.mood,
                    "completed": feedback.completed,
                } if feedback else None,
            })
        return items
