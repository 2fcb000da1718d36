from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional
from loguru import logger

from ..config import settings
from ..db import Database
from ..utils.user_time import utcnow
from .chain_session_service import ChainSessionService


async def sweep_idle_sessions(
    db: Database,
    idle_hours: Optional[float] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Abandon active sessions idle for longer than `idle_hours`.
    Each session gets its own unit of work; one failure does not stop the pass.
    Returns the number of sessions abandoned.
    """
    idle_hours = settings.SESSION_IDLE_HOURS if idle_hours is None else idle_hours
    now = now or utcnow()
    cutoff = now - timedelta(hours=idle_hours)

    async with db.session() as session:
        candidates = [
            (row.id, row.version, row.user_id)
            for row in await ChainSessionService.find_idle_sessions(session, cutoff)
        ]

    abandoned = 0
    for session_id, version, user_id in candidates:
        try:
            async with db.session() as session:
                if await ChainSessionService.abandon_if_idle(session, session_id, version, cutoff, now):
                    abandoned += 1
                    logger.info("Abandoned idle chain session {} for user {}", session_id, user_id)
                else:
                    logger.warning("Chain session {} changed since the sweep found it; left alone", session_id)
        except Exception:
            logger.exception("Failed to abandon idle chain session {}", session_id)

    if candidates:
        logger.info("Idle session sweep: {}/{} abandoned (cutoff {})", abandoned, len(candidates), cutoff.isoformat())
    return abandoned
