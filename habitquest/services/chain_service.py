from __future__ import annotations
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from loguru import logger

from ..config import settings
from ..errors import NotFoundError, ValidationError
from ..models.chain import HabitChain
from ..models.habit import Habit, TimeOfDay
from ..utils.duration import format_minutes, parse_duration
from .session_engine import order_key


class HabitChainService:
    """
    Chain templates. Items are validated and normalized once, at creation;
    after that a chain is only read (to seed sessions) or deleted.
    """

    @staticmethod
    async def create_chain(
        session: AsyncSession,
        user_id: str,
        name: str,
        description: str,
        items: List[Dict[str, Any]],
        time_of_day: str = TimeOfDay.MORNING.value,
        total_time: Optional[str] = None,
    ) -> HabitChain:
        if not items or len(items) > settings.MAX_CHAIN_HABITS:
            raise ValidationError(
                f"A chain must contain between 1 and {settings.MAX_CHAIN_HABITS} habits, got {len(items or [])}"
            )
        name = (name or "").strip()
        if not name:
            raise ValidationError("Chain name is required")
        try:
            time_of_day = TimeOfDay(time_of_day).value
        except ValueError:
            raise ValidationError(f"Invalid time_of_day '{time_of_day}'")

        try:
            habit_ids = [int(item["habit_id"]) for item in items]
        except (KeyError, TypeError, ValueError):
            raise ValidationError("Every chain item needs a numeric habit_id")

        result = await session.execute(
            select(Habit).where(Habit.id.in_(habit_ids), Habit.user_id == user_id)
        )
        habits = {h.id: h for h in result.scalars().all()}
        missing = [hid for hid in habit_ids if hid not in habits]
        if missing:
            raise NotFoundError(f"Habits not found or not owned: {missing}")

        # stable sort on the given order, then renumber 0..N-1
        ordered = sorted(enumerate(items), key=lambda pair: (order_key(pair[1], pair[0]), pair[0]))
        normalized = []
        for position, (_, item) in enumerate(ordered):
            habit = habits[int(item["habit_id"])]
            normalized.append({
                "habit_id": str(habit.id),
                "habit_name": item.get("habit_name") or habit.name,
                "duration": item.get("duration") or habit.time_to_complete,
                "order": position,
            })

        if not total_time:
            total_time = format_minutes(sum(parse_duration(i["duration"]) for i in normalized))

        chain = HabitChain(
            user_id=user_id,
            name=name,
            description=description or "",
            time_of_day=time_of_day,
            total_time=total_time,
            items=normalized,
        )
        session.add(chain)
        await session.flush()
        logger.info("Created chain {} ({} habits) for user {}", chain.id, len(normalized), user_id)
        return chain

    @staticmethod
    async def list_chains(session: AsyncSession, user_id: str) -> List[HabitChain]:
        result = await session.execute(
            select(HabitChain)
            .where(HabitChain.user_id == user_id)
            .order_by(HabitChain.created_at.desc(), HabitChain.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_chain(session: AsyncSession, user_id: str, chain_id: int) -> HabitChain:
        chain = await session.get(HabitChain, chain_id)
        if not chain or chain.user_id != user_id:
            raise NotFoundError(f"Chain {chain_id} not found")
        return chain

    @staticmethod
    async def delete_chain(session: AsyncSession, user_id: str, chain_id: int) -> None:
        """Sessions already started from the chain keep their snapshot."""
        chain = await HabitChainService.get_chain(session, user_id, chain_id)
        await session.delete(chain)
        await session.flush()
        logger.info("Deleted chain {} for user {}", chain_id, user_id)
