from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple
from sqlalchemy import update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from loguru import logger

from ..config import settings
from ..errors import ConcurrencyConflict, TransactionFailure, ValidationError
from ..models.profile import Group, GroupActivity, GroupActivityType, GroupMembership, Profile, XPHistory
from ..utils.user_time import as_utc, utcnow
from .profile_service import ProfileService
from .progression import (
    RankInfo,
    XPSource,
    calculate_rank,
    daily_bonus_amount,
    streak_milestone_xp,
)

ACTIVITY_FOR_SOURCE = {
    XPSource.HABIT_COMPLETION: GroupActivityType.HABIT_COMPLETED,
    XPSource.CHAIN_COMPLETION: GroupActivityType.CHAIN_COMPLETED,
}


@dataclass(frozen=True)
class XPAward:
    user_id: str
    amount: int
    source: XPSource
    previous_total: int
    new_total: int
    previous_rank: RankInfo
    rank: RankInfo

    @property
    def ranked_up(self) -> bool:
        return self.rank.level > self.previous_rank.level


class XPService:
    """
    The only writer of Profile.xp_total and the rank cache.

    An award is two writes (history row, total increment) made inside the
    caller's unit of work; any database error surfaces as TransactionFailure
    and the unit of work rolls both back.
    """

    @staticmethod
    async def award_xp(
        session: AsyncSession,
        user_id: str,
        amount: int,
        source: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        group_id: Optional[int] = None,
    ) -> XPAward:
        source = XPService._validate(amount, source, description)

        try:
            profile = await ProfileService.get_or_create_profile(session, user_id)

            group = None
            if group_id is not None:
                group = await XPService._active_group(session, user_id, group_id)
                if group:
                    amount = math.floor(amount * group.xp_multiplier)
                    metadata = {**(metadata or {}), "group_id": group_id, "multiplier": group.xp_multiplier}

            await XPService._append_history(session, user_id, amount, source, description, metadata)
            previous_total, previous_rank = await XPService._increment_total(session, profile, amount)
            await XPService._trim_history(session, user_id)

            if group:
                await XPService._credit_group(session, group.id, profile, amount, source, description)
        except SQLAlchemyError as e:
            logger.error("XP award of {} to user {} failed: {}", amount, user_id, e)
            raise TransactionFailure(f"Could not award {amount} XP to user {user_id}") from e

        award = XPAward(
            user_id=user_id,
            amount=amount,
            source=source,
            previous_total=previous_total,
            new_total=profile.xp_total,
            previous_rank=previous_rank,
            rank=calculate_rank(profile.xp_total),
        )
        logger.info(
            "Awarded {} XP ({}) to user {}: total {} -> {}",
            amount, source.value, user_id, previous_total, award.new_total,
        )
        if award.ranked_up:
            logger.info("User {} ranked up to {} (level {})", user_id, award.rank.title, award.rank.level)
        return award

    @staticmethod
    async def remove_xp(
        session: AsyncSession,
        user_id: str,
        amount: int,
        source: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> XPAward:
        """Reverse an award (e.g. a habit unmarked); the total never drops below 0."""
        source = XPService._validate(amount, source, description)

        try:
            profile = await ProfileService.get_or_create_profile(session, user_id)
            await XPService._append_history(session, user_id, -amount, source, description, metadata)
            previous_total, previous_rank = await XPService._increment_total(session, profile, -amount)
            await XPService._trim_history(session, user_id)
        except SQLAlchemyError as e:
            logger.error("XP removal of {} from user {} failed: {}", amount, user_id, e)
            raise TransactionFailure(f"Could not remove {amount} XP from user {user_id}") from e

        logger.info("Removed {} XP from user {}: total {} -> {}", amount, user_id, previous_total, profile.xp_total)
        return XPAward(
            user_id=user_id,
            amount=-amount,
            source=source,
            previous_total=previous_total,
            new_total=profile.xp_total,
            previous_rank=previous_rank,
            rank=calculate_rank(profile.xp_total),
        )

    @staticmethod
    def _validate(amount: int, source: str, description: str) -> XPSource:
        if amount is None or amount < 0:
            raise ValidationError(f"XP amount must be non-negative, got {amount}")
        try:
            source = XPSource(source)
        except ValueError:
            raise ValidationError(f"Unknown XP source '{source}'")
        if not description or len(description) > 200:
            raise ValidationError("XP description must be 1-200 characters")
        return source

    @staticmethod
    async def _active_group(session: AsyncSession, user_id: str, group_id: int) -> Optional[Group]:
        result = await session.execute(
            select(Group)
            .join(GroupMembership, GroupMembership.group_id == Group.id)
            .where(
                Group.id == group_id,
                GroupMembership.user_id == user_id,
                GroupMembership.is_active == True,  # noqa: E712
            )
        )
        group = result.scalar_one_or_none()
        if group is None:
            logger.warning("User {} is not an active member of group {}; no multiplier applied", user_id, group_id)
        return group

    @staticmethod
    async def _credit_group(
        session: AsyncSession,
        group_id: int,
        profile: Profile,
        amount: int,
        source: XPSource,
        description: str,
    ) -> None:
        """Group total, the member's cached XP/rank and one feed entry."""
        await session.execute(
            update(Group)
            .where(Group.id == group_id)
            .values(total_xp_earned=Group.total_xp_earned + amount)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(GroupMembership)
            .where(GroupMembership.group_id == group_id, GroupMembership.user_id == profile.user_id)
            .values(total_xp=profile.xp_total, rank_title=profile.rank_title)
            .execution_options(synchronize_session=False)
        )

        session.add(GroupActivity(
            group_id=group_id,
            user_id=profile.user_id,
            user_name=profile.display_name[:100],
            activity_type=ACTIVITY_FOR_SOURCE.get(source, GroupActivityType.DAILY_GOAL_ACHIEVED).value,
            description=description,
            xp_earned=amount,
        ))
        await session.flush()

        keep = (
            select(GroupActivity.id)
            .where(GroupActivity.group_id == group_id)
            .order_by(GroupActivity.created_at.desc(), GroupActivity.id.desc())
            .limit(settings.GROUP_ACTIVITY_LIMIT)
        )
        kept_ids = list((await session.execute(keep)).scalars().all())
        if len(kept_ids) >= settings.GROUP_ACTIVITY_LIMIT:
            await session.execute(
                delete(GroupActivity)
                .where(GroupActivity.group_id == group_id, GroupActivity.id.not_in(kept_ids))
                .execution_options(synchronize_session=False)
            )

    @staticmethod
    async def _append_history(
        session: AsyncSession,
        user_id: str,
        amount: int,
        source: XPSource,
        description: str,
        metadata: Optional[Dict[str, Any]],
    ) -> XPHistory:
        entry = XPHistory(
            user_id=user_id,
            amount=amount,
            source=source.value,
            description=description,
            metadata_json=metadata,
        )
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def _increment_total(session: AsyncSession, profile: Profile, amount: int) -> Tuple[int, RankInfo]:
        """
        Version-checked increment of xp_total with the rank cache rewritten in
        the same statement. Returns the total and rank before the change.
        """
        for attempt in range(settings.CONFLICT_RETRIES + 1):
            previous_total = profile.xp_total
            new_total = max(0, previous_total + amount)
            rank = calculate_rank(new_total)
            now = utcnow()
            days_active = max(1, (now - as_utc(profile.joined_at)).days + 1)

            result = await session.execute(
                update(Profile)
                .where(Profile.id == profile.id, Profile.version == profile.version)
                .values(
                    xp_total=new_total,
                    xp_last_updated=now,
                    rank_title=rank.title,
                    rank_level=rank.level,
                    rank_progress=rank.progress,
                    rank_calculated_at=now,
                    avg_daily_xp=new_total // days_active,
                    last_activity_at=now,
                    updated_at=now,
                    version=profile.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await session.refresh(profile)
                return previous_total, calculate_rank(previous_total)

            logger.warning("Profile {} changed concurrently (attempt {}), reloading", profile.user_id, attempt + 1)
            await session.refresh(profile)

        raise ConcurrencyConflict(f"Could not update XP for user {profile.user_id}")

    @staticmethod
    async def _trim_history(session: AsyncSession, user_id: str) -> int:
        """Evict the oldest history rows beyond XP_HISTORY_LIMIT."""
        keep = (
            select(XPHistory.id)
            .where(XPHistory.user_id == user_id)
            .order_by(XPHistory.created_at.desc(), XPHistory.id.desc())
            .limit(settings.XP_HISTORY_LIMIT)
        )
        kept_ids = list((await session.execute(keep)).scalars().all())
        if len(kept_ids) < settings.XP_HISTORY_LIMIT:
            return 0

        result = await session.execute(
            delete(XPHistory)
            .where(XPHistory.user_id == user_id, XPHistory.id.not_in(kept_ids))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.debug("Trimmed {} XP history rows for user {}", result.rowcount, user_id)
        return result.rowcount

    @staticmethod
    async def get_history(session: AsyncSession, user_id: str, limit: int = 50):
        result = await session.execute(
            select(XPHistory)
            .where(XPHistory.user_id == user_id)
            .order_by(XPHistory.created_at.desc(), XPHistory.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def check_daily_bonus(
        session: AsyncSession,
        user_id: str,
        completed_today: int,
        total_today: int,
        today: date,
    ) -> Optional[XPAward]:
        """Award the daily bonus once per day when every habit scheduled today is done."""
        if total_today <= 0 or completed_today < total_today:
            return None

        description = f"Daily bonus for {today.isoformat()}"
        already = await session.execute(
            select(XPHistory.id).where(
                XPHistory.user_id == user_id,
                XPHistory.source == XPSource.DAILY_BONUS.value,
                XPHistory.description == description,
            )
        )
        if already.first() is not None:
            return None

        profile = await ProfileService.get_or_create_profile(session, user_id)
        amount = daily_bonus_amount(profile.longest_streak)
        award = await XPService.award_xp(
            session, user_id, amount, XPSource.DAILY_BONUS, description,
            metadata={"date": today.isoformat(), "habits": total_today},
        )
        await session.execute(
            update(Profile)
            .where(Profile.id == profile.id)
            .values(daily_bonuses_earned=Profile.daily_bonuses_earned + 1)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(profile)
        return award

    @staticmethod
    async def check_streak_milestone(
        session: AsyncSession,
        user_id: str,
        streak: int,
        habit_name: Optional[str] = None,
    ) -> Optional[XPAward]:
        amount = streak_milestone_xp(streak)
        if amount is None:
            return None
        label = f" on '{habit_name}'" if habit_name else ""
        description = f"{streak}-day streak{label}"[:200]
        return await XPService.award_xp(
            session, user_id, amount, XPSource.STREAK_MILESTONE, description, metadata={"streak": streak}
        )

    @staticmethod
    async def get_rank_info(session: AsyncSession, user_id: str) -> RankInfo:
        """Rank derived from xp_total; a stale cache on the profile is rewritten."""
        profile = await ProfileService.get_or_create_profile(session, user_id)
        rank = calculate_rank(profile.xp_total)
        if (profile.rank_title, profile.rank_level, profile.rank_progress) != (rank.title, rank.level, rank.progress):
            logger.warning(
                "Stale rank cache for user {} ({} {}%), repairing to {} {}%",
                user_id, profile.rank_title, profile.rank_progress, rank.title, rank.progress,
            )
            await session.execute(
                update(Profile)
                .where(Profile.id == profile.id)
                .values(
                    rank_title=rank.title,
                    rank_level=rank.level,
                    rank_progress=rank.progress,
                    rank_calculated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.refresh(profile)
        return rank
