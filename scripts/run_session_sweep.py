import argparse
import asyncio

from loguru import logger

from habitquest.config import settings
from habitquest.db import Database
from habitquest.services.session_sweep import sweep_idle_sessions


async def main(idle_hours: float):
    db = Database.from_settings(settings)
    try:
        count = await sweep_idle_sessions(db, idle_hours=idle_hours)
        logger.info("Abandoned {} idle chain sessions", count)
    finally:
        await db.dispose()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Abandon chain sessions idle for too long")
    parser.add_argument("--idle-hours", type=float, default=settings.SESSION_IDLE_HOURS)
    args = parser.parse_args()
    asyncio.run(main(args.idle_hours))
