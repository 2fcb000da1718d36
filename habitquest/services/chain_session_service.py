from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from loguru import logger

from ..config import settings
from ..errors import ActiveSessionExistsError, ConcurrencyConflict, HabitQuestError, NotFoundError
from ..models.chain_session import ChainSession
from ..utils.user_time import local_today, utcnow
from . import session_engine as engine
from .chain_service import HabitChainService
from .habit_service import HabitService
from .profile_service import ProfileService
from .progression import XPSource
from .session_engine import ChainRun, SessionStatus, Transition
from .xp_service import XPService

Rule = Callable[[ChainRun, datetime], Transition]


class ChainSessionService:
    """
    Persistence for chain sessions.

    Every mutation is load -> pure rule -> conditional UPDATE on `version`.
    A lost race reloads and reapplies the rule, at most CONFLICT_RETRIES times.
    """

    @staticmethod
    async def start_chain(
        session: AsyncSession,
        user_id: str,
        chain_id: int,
        tz_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChainSession:
        chain = await HabitChainService.get_chain(session, user_id, chain_id)
        return await ChainSessionService.create_session(
            session, user_id, chain.id, chain.name, chain.items, tz_name=tz_name, now=now
        )

    @staticmethod
    async def create_session(
        session: AsyncSession,
        user_id: str,
        chain_id: int,
        chain_name: str,
        items: List[Dict[str, Any]],
        tz_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChainSession:
        existing = await ChainSessionService.get_active_session(session, user_id)
        if existing:
            raise ActiveSessionExistsError(user_id, existing.id)

        now = now or utcnow()
        tz_name = tz_name or await ProfileService.get_timezone(session, user_id)
        run = engine.new_run(items, now, tz_name)

        row = ChainSession(
            user_id=user_id,
            chain_id=chain_id,
            chain_name=chain_name,
            created_at=now,
            updated_at=now,
            **run.column_values(),
        )
        session.add(row)
        try:
            await session.flush()
        except IntegrityError as e:
            # another request created an active session between our check and insert
            logger.warning("Active session race for user {}: {}", user_id, e.orig)
            raise ActiveSessionExistsError(user_id, None) from e

        logger.info(
            "Started chain session {} ('{}', {} habits, {}) for user {}",
            row.id, chain_name, row.total_habits, row.total_duration, user_id,
        )
        return row

    @staticmethod
    async def get_session(session: AsyncSession, user_id: str, session_id: int) -> ChainSession:
        return await ChainSessionService._load(session, user_id, session_id)

    @staticmethod
    async def get_active_session(session: AsyncSession, user_id: str) -> Optional[ChainSession]:
        result = await session.execute(
            select(ChainSession)
            .where(ChainSession.user_id == user_id, ChainSession.is_active == True)  # noqa: E712
            .order_by(ChainSession.started_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_past_sessions(
        session: AsyncSession, user_id: str, limit: Optional[int] = None
    ) -> List[ChainSession]:
        result = await session.execute(
            select(ChainSession)
            .where(
                ChainSession.user_id == user_id,
                ChainSession.status.in_([SessionStatus.COMPLETED.value, SessionStatus.ABANDONED.value]),
            )
            .order_by(ChainSession.completed_at.desc(), ChainSession.id.desc())
            .limit(limit or settings.PAST_SESSIONS_LIMIT)
        )
        return list(result.scalars().all())

    # --- step actions ---

    @staticmethod
    async def start_habit(
        session: AsyncSession, user_id: str, session_id: int, index: int, now: Optional[datetime] = None
    ) -> ChainSession:
        row, _ = await ChainSessionService._mutate(
            session, user_id, session_id, lambda run, ts: engine.start_step(run, index, ts), now
        )
        return row

    @staticmethod
    async def complete_habit(
        session: AsyncSession,
        user_id: str,
        session_id: int,
        index: int,
        notes: Optional[str] = None,
        time_spent: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ChainSession:
        now = now or utcnow()
        row, transition = await ChainSessionService._mutate(
            session,
            user_id,
            session_id,
            lambda run, ts: engine.complete_step(run, index, ts, notes=notes, time_spent=time_spent),
            now,
        )
        if transition.step_completed:
            await ChainSessionService._notify_habit_store(session, row, index, notes, now)
        if transition.session_completed:
            await ChainSessionService._credit_completion(session, row)
        return row

    @staticmethod
    async def skip_habit(
        session: AsyncSession,
        user_id: str,
        session_id: int,
        index: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChainSession:
        row, transition = await ChainSessionService._mutate(
            session, user_id, session_id, lambda run, ts: engine.skip_step(run, index, ts, reason=reason), now
        )
        if transition.session_completed:
            await ChainSessionService._credit_completion(session, row)
        return row

    # --- session actions ---

    @staticmethod
    async def pause(session: AsyncSession, user_id: str, session_id: int, now: Optional[datetime] = None) -> ChainSession:
        row, _ = await ChainSessionService._mutate(session, user_id, session_id, engine.pause, now)
        return row

    @staticmethod
    async def resume(session: AsyncSession, user_id: str, session_id: int, now: Optional[datetime] = None) -> ChainSession:
        row, _ = await ChainSessionService._mutate(session, user_id, session_id, engine.resume, now)
        return row

    @staticmethod
    async def start_break(session: AsyncSession, user_id: str, session_id: int, now: Optional[datetime] = None) -> ChainSession:
        row, _ = await ChainSessionService._mutate(session, user_id, session_id, engine.start_break, now)
        return row

    @staticmethod
    async def end_break(session: AsyncSession, user_id: str, session_id: int, now: Optional[datetime] = None) -> ChainSession:
        row, _ = await ChainSessionService._mutate(session, user_id, session_id, engine.end_break, now)
        return row

    @staticmethod
    async def abandon(session: AsyncSession, user_id: str, session_id: int, now: Optional[datetime] = None) -> ChainSession:
        row, _ = await ChainSessionService._mutate(session, user_id, session_id, engine.abandon, now)
        logger.info("User {} abandoned chain session {}", user_id, session_id)
        return row

    # --- idle sweep support ---

    @staticmethod
    async def find_idle_sessions(session: AsyncSession, cutoff: datetime) -> List[ChainSession]:
        result = await session.execute(
            select(ChainSession).where(
                ChainSession.status == SessionStatus.ACTIVE.value,
                ChainSession.last_activity_at < cutoff,
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def abandon_if_idle(
        session: AsyncSession, session_id: int, version: int, cutoff: datetime, now: datetime
    ) -> bool:
        """False when the session was touched (or closed) since it was found."""
        result = await session.execute(
            update(ChainSession)
            .where(
                ChainSession.id == session_id,
                ChainSession.version == version,
                ChainSession.status == SessionStatus.ACTIVE.value,
                ChainSession.last_activity_at < cutoff,
            )
            .values(
                status=SessionStatus.ABANDONED.value,
                is_active=False,
                completed_at=now,
                paused_at=None,
                on_break=False,
                break_started_at=None,
                updated_at=now,
                version=version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # --- internals ---

    @staticmethod
    async def _load(session: AsyncSession, user_id: str, session_id: int) -> ChainSession:
        result = await session.execute(
            select(ChainSession)
            .where(ChainSession.id == session_id, ChainSession.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if not row:
            raise NotFoundError(f"Chain session {session_id} not found")
        return row

    @staticmethod
    async def _write(session: AsyncSession, row: ChainSession, run: ChainRun, now: datetime) -> bool:
        values = run.column_values()
        values["updated_at"] = now
        values["version"] = row.version + 1

        result = await session.execute(
            update(ChainSession)
            .where(ChainSession.id == row.id, ChainSession.version == row.version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await session.refresh(row)
        return True

    @staticmethod
    async def _mutate(
        session: AsyncSession,
        user_id: str,
        session_id: int,
        rule: Rule,
        now: Optional[datetime] = None,
    ) -> Tuple[ChainSession, Transition]:
        now = now or utcnow()
        for attempt in range(settings.CONFLICT_RETRIES + 1):
            row = await ChainSessionService._load(session, user_id, session_id)
            run = ChainRun.from_model(row)
            transition = rule(run, now)
            if not transition.changed:
                logger.debug("Chain session {}: no change", session_id)
                return row, transition

            if await ChainSessionService._write(session, row, run, now):
                if transition.session_completed:
                    logger.info(
                        "Chain session {} completed: {}/{} done, {}% success, {} XP",
                        session_id, run.completed_steps, run.total_habits, run.success_rate, run.xp_earned,
                    )
                return row, transition

            logger.warning("Version conflict on chain session {} (attempt {}), retrying", session_id, attempt + 1)

        raise ConcurrencyConflict(f"Chain session {session_id} kept changing; try again")

    @staticmethod
    async def _notify_habit_store(
        session: AsyncSession, row: ChainSession, index: int, notes: Optional[str], now: datetime
    ) -> None:
        step = row.habits[index]
        try:
            tz_name = await ProfileService.get_timezone(session, row.user_id)
            await HabitService.record_chain_completion(
                session, row.user_id, int(step["habit_id"]), notes=notes, today=local_today(tz_name, now)
            )
        except (HabitQuestError, ValueError) as e:
            # one-way notification; the session result stands either way
            logger.warning("Could not sync habit {} from chain session {}: {}", step["habit_id"], row.id, e)

    @staticmethod
    async def _credit_completion(session: AsyncSession, row: ChainSession) -> None:
        if row.xp_earned > 0:
            await XPService.award_xp(
                session,
                row.user_id,
                row.xp_earned,
                XPSource.CHAIN_COMPLETION,
                f"Completed chain '{row.chain_name}'"[:200],
                metadata={
                    "session_id": row.id,
                    "chain_id": row.chain_id,
                    "completion_rate": row.completion_rate,
                    "success_rate": row.success_rate,
                },
            )
        await ProfileService.refresh_stats(session, row.user_id)
