from __future__ import annotations
from loguru import logger

from ..db import Database
from ..services.leaderboard_service import LeaderboardService
from ..services.session_sweep import sweep_idle_sessions


async def abandon_idle_sessions_job(db: Database):
    """Periodic idle-session sweep."""
    logger.info("Running idle chain session sweep")
    try:
        count = await sweep_idle_sessions(db)
        logger.info("Idle chain session sweep finished: {} abandoned", count)
    except Exception as e:
        logger.exception("Error in abandon_idle_sessions_job: {}", e)


async def refresh_rank_cache_job(db: Database):
    """Rewrite Profile.global_position from the leaderboard ordering."""
    logger.info("Refreshing leaderboard rank cache")
    try:
        async with db.session() as session:
            await LeaderboardService.refresh_rank_cache(session)
    except Exception as e:
        logger.exception("Error in refresh_rank_cache_job: {}", e)
