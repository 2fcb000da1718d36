from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from loguru import logger

from ..config import settings
from ..errors import NotFoundError
from ..models.profile import Group, GroupActivity, GroupMembership, Profile, ProfileVisibility
from .progression import calculate_rank

# Total order; user_id breaks ties so positions are stable between queries.
LEADERBOARD_ORDER = (Profile.xp_total.desc(), Profile.rank_level.desc(), Profile.user_id.asc())

NOT_RANKED = -1


@dataclass
class LeaderboardEntry:
    position: int
    user_id: str
    display_name: str
    xp_total: int
    rank_title: Optional[str]
    rank_level: Optional[int]
    rank_progress: Optional[int]
    current_streak: Optional[int]
    longest_streak: Optional[int]
    total_completions: Optional[int]
    total_chains_completed: Optional[int]

    @classmethod
    def from_profile(cls, position: int, profile: Profile) -> "LeaderboardEntry":
        # rank shown from xp_total rather than the cache, so a stale cache never leaks out
        rank = calculate_rank(profile.xp_total)
        return cls(
            position=position,
            user_id=profile.user_id,
            display_name=profile.display_name,
            xp_total=profile.xp_total,
            rank_title=rank.title if profile.show_rank else None,
            rank_level=rank.level if profile.show_rank else None,
            rank_progress=rank.progress if profile.show_rank else None,
            current_streak=profile.current_streak if profile.show_streak else None,
            longest_streak=profile.longest_streak if profile.show_streak else None,
            total_completions=profile.total_completions if profile.show_progress else None,
            total_chains_completed=profile.total_chains_completed if profile.show_progress else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _visible(stmt, include_private: bool):
    if include_private:
        return stmt
    return stmt.where(Profile.profile_visibility == ProfileVisibility.PUBLIC.value)


class LeaderboardService:

    @staticmethod
    async def get_leaderboard(
        session: AsyncSession,
        limit: Optional[int] = None,
        include_private: bool = False,
    ) -> List[LeaderboardEntry]:
        limit = limit or settings.LEADERBOARD_DEFAULT_LIMIT
        stmt = _visible(select(Profile), include_private).order_by(*LEADERBOARD_ORDER).limit(limit)
        result = await session.execute(stmt)
        return [LeaderboardEntry.from_profile(i, p) for i, p in enumerate(result.scalars().all(), start=1)]

    @staticmethod
    async def get_user_position(session: AsyncSession, user_id: str, include_private: bool = False) -> int:
        """
        1-based position in the same ordering get_leaderboard uses, or -1 when
        the user has no profile or is filtered out by privacy.
        """
        stmt = _visible(select(Profile.user_id), include_private).order_by(*LEADERBOARD_ORDER)
        result = await session.execute(stmt)
        for position, uid in enumerate(result.scalars().all(), start=1):
            if uid == user_id:
                return position
        return NOT_RANKED

    @staticmethod
    async def get_public_profile(session: AsyncSession, user_id: str) -> Dict[str, Any]:
        result = await session.execute(select(Profile).where(Profile.user_id == user_id))
        profile = result.scalar_one_or_none()
        if not profile or profile.profile_visibility != ProfileVisibility.PUBLIC.value:
            raise NotFoundError(f"Profile for user {user_id} not found")

        position = await LeaderboardService.get_user_position(session, user_id)
        entry = LeaderboardEntry.from_profile(position, profile)
        data = entry.to_dict()
        data.update(
            bio=profile.bio,
            joined_at=profile.joined_at.isoformat() if profile.joined_at else None,
            total_habits_created=profile.total_habits_created if profile.show_progress else None,
            daily_bonuses_earned=profile.daily_bonuses_earned if profile.show_progress else None,
        )
        return data

    @staticmethod
    async def get_group_leaderboard(session: AsyncSession, group_id: int, user_id: str) -> List[LeaderboardEntry]:
        """Active members ranked by profile XP; only members may look."""
        await LeaderboardService._require_member(session, group_id, user_id)
        result = await session.execute(
            select(Profile)
            .join(GroupMembership, GroupMembership.user_id == Profile.user_id)
            .where(GroupMembership.group_id == group_id, GroupMembership.is_active == True)  # noqa: E712
            .order_by(*LEADERBOARD_ORDER)
        )
        return [LeaderboardEntry.from_profile(i, p) for i, p in enumerate(result.scalars().all(), start=1)]

    @staticmethod
    async def get_group_activity(
        session: AsyncSession, group_id: int, user_id: str, limit: Optional[int] = None
    ) -> List[GroupActivity]:
        """Newest first."""
        await LeaderboardService._require_member(session, group_id, user_id)
        result = await session.execute(
            select(GroupActivity)
            .where(GroupActivity.group_id == group_id)
            .order_by(GroupActivity.created_at.desc(), GroupActivity.id.desc())
            .limit(limit or settings.GROUP_ACTIVITY_LIMIT)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _require_member(session: AsyncSession, group_id: int, user_id: str) -> Group:
        group = await session.get(Group, group_id)
        membership = await session.execute(
            select(GroupMembership.id).where(
                GroupMembership.group_id == group_id,
                GroupMembership.user_id == user_id,
                GroupMembership.is_active == True,  # noqa: E712
            )
        )
        if not group or membership.first() is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    @staticmethod
    async def refresh_rank_cache(session: AsyncSession) -> int:
        """
        Write global_position from the public leaderboard ordering, so it
        always matches get_user_position. Private profiles are cleared to
        None. Returns how many rows changed.
        """
        result = await session.execute(
            _visible(select(Profile.id, Profile.global_position), include_private=False)
            .order_by(*LEADERBOARD_ORDER)
        )
        changed = 0
        for position, (profile_id, cached) in enumerate(result.all(), start=1):
            if cached == position:
                continue
            await session.execute(
                update(Profile)
                .where(Profile.id == profile_id)
                .values(global_position=position)
                .execution_options(synchronize_session=False)
            )
            changed += 1

        cleared = await session.execute(
            update(Profile)
            .where(
                Profile.profile_visibility != ProfileVisibility.PUBLIC.value,
                Profile.global_position.is_not(None),
            )
            .values(global_position=None)
            .execution_options(synchronize_session=False)
        )
        changed += cleared.rowcount or 0
        logger.info("Rank cache refreshed: {} positions changed", changed)
        return changed
