from __future__ import annotations
from typing import Optional
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, func
from loguru import logger

from ..errors import ValidationError
from ..models.profile import GroupMembership, Profile, ProfileVisibility
from ..models.habit import Habit, HabitCompletion, HabitStatus
from ..models.chain_session import ChainSession
from ..utils.user_time import utcnow
from .progression import calculate_rank


class ProfileService:
    """
    Per-user profile row: creation, privacy settings and aggregate stats.
    XP and rank are written only by XPService.
    """

    @staticmethod
    async def get_profile(session: AsyncSession, user_id: str) -> Optional[Profile]:
        result = await session.execute(
            select(Profile).where(Profile.user_id == user_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_profile(
        session: AsyncSession,
        user_id: str,
        timezone: Optional[str] = None,
    ) -> Profile:
        profile = await ProfileService.get_profile(session, user_id)
        if profile:
            return profile

        rank = calculate_rank(0)
        profile = Profile(
            user_id=user_id,
            timezone=timezone or "UTC",
            rank_title=rank.title,
            rank_level=rank.level,
            rank_progress=rank.progress,
            rank_calculated_at=utcnow(),
        )
        session.add(profile)
        await session.flush()
        logger.info("Created profile {} for user {}", profile.id, user_id)
        return profile

    @staticmethod
    async def get_timezone(session: AsyncSession, user_id: str) -> str:
        result = await session.execute(select(Profile.timezone).where(Profile.user_id == user_id))
        return result.scalar_one_or_none() or "UTC"

    @staticmethod
    async def update_privacy(
        session: AsyncSession,
        user_id: str,
        profile_visibility: Optional[str] = None,
        show_streak: Optional[bool] = None,
        show_progress: Optional[bool] = None,
        show_rank: Optional[bool] = None,
    ) -> Profile:
        """Update only the flags that were passed."""
        profile = await ProfileService.get_or_create_profile(session, user_id)

        if profile_visibility is not None:
            try:
                profile.profile_visibility = ProfileVisibility(profile_visibility).value
            except ValueError:
                raise ValidationError(f"Unknown profile visibility '{profile_visibility}'")
        if show_streak is not None:
            profile.show_streak = show_streak
        if show_progress is not None:
            profile.show_progress = show_progress
        if show_rank is not None:
            profile.show_rank = show_rank

        profile.touch()
        session.add(profile)
        await session.flush()
        logger.info("Updated privacy for user {}: visibility={}", user_id, profile.profile_visibility)
        return profile

    @staticmethod
    async def update_details(
        session: AsyncSession,
        user_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        user_name: Optional[str] = None,
        bio: Optional[str] = None,
        timezone: Optional[str] = None,
        daily_habit_target: Optional[int] = None,
        weekly_goal: Optional[int] = None,
    ) -> Profile:
        profile = await ProfileService.get_or_create_profile(session, user_id)

        if daily_habit_target is not None and not 1 <= daily_habit_target <= 20:
            raise ValidationError("daily_habit_target must be between 1 and 20")
        if weekly_goal is not None and not 1 <= weekly_goal <= 140:
            raise ValidationError("weekly_goal must be between 1 and 140")
        if bio is not None and len(bio) > 500:
            raise ValidationError("bio must be at most 500 characters")

        for field, value in (
            ("first_name", first_name),
            ("last_name", last_name),
            ("user_name", user_name),
            ("bio", bio),
            ("timezone", timezone),
            ("daily_habit_target", daily_habit_target),
            ("weekly_goal", weekly_goal),
        ):
            if value is not None:
                setattr(profile, field, value)

        profile.touch()
        session.add(profile)
        await session.flush()
        return profile

    @staticmethod
    async def refresh_stats(session: AsyncSession, user_id: str) -> Profile:
        """
        Recompute denormalized aggregates from the habit and session tables.
        These columns are not version-checked; they are rebuilt from scratch each time.
        """
        profile = await ProfileService.get_or_create_profile(session, user_id)

        habits_created = (
            await session.execute(select(func.count(Habit.id)).where(Habit.user_id == user_id))
        ).scalar_one()
        completions = (
            await session.execute(
                select(func.count(HabitCompletion.id))
                .join(Habit, Habit.id == HabitCompletion.habit_id)
                .where(Habit.user_id == user_id, HabitCompletion.completed == True)  # noqa: E712
            )
        ).scalar_one()
        current_streak = (
            await session.execute(
                select(func.max(Habit.streak)).where(
                    Habit.user_id == user_id, Habit.status == HabitStatus.ACTIVE.value
                )
            )
        ).scalar_one() or 0
        chains_completed = (
            await session.execute(
                select(func.count(ChainSession.id)).where(
                    ChainSession.user_id == user_id, ChainSession.status == "completed"
                )
            )
        ).scalar_one()
        groups_joined = (
            await session.execute(
                select(func.count(GroupMembership.id)).where(
                    GroupMembership.user_id == user_id, GroupMembership.is_active == True  # noqa: E712
                )
            )
        ).scalar_one()

        await session.execute(
            update(Profile)
            .where(Profile.id == profile.id)
            .values(
                total_habits_created=habits_created,
                total_completions=completions,
                current_streak=current_streak,
                longest_streak=max(profile.longest_streak, current_streak),
                total_chains_completed=chains_completed,
                total_groups_joined=groups_joined,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await session.refresh(profile)
        logger.debug(
            "Refreshed stats for user {}: habits={} completions={} chains={}",
            user_id, habits_created, completions, chains_completed,
        )
        return profile
