from __future__ import annotations
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from .config import settings
from .db import Database
from .errors import (
    ActiveSessionExistsError,
    ConcurrencyConflict,
    InvalidIndexError,
    NotFoundError,
    SessionStateError,
    TransactionFailure,
    ValidationError,
)
from .routers import chain_sessions, chains, habits, leaderboard, profile
from .scheduler.scheduler_instance import create_scheduler, start_scheduler, shutdown_scheduler


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse({"detail": str(exc), "error": type(exc).__name__, **extra}, status_code=status_code)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(InvalidIndexError)
    async def invalid_index(request: Request, exc: InvalidIndexError):
        return _error(400, exc)

    @app.exception_handler(ValidationError)
    async def validation(request: Request, exc: ValidationError):
        return _error(400, exc)

    @app.exception_handler(SessionStateError)
    async def session_state(request: Request, exc: SessionStateError):
        return _error(409, exc)

    @app.exception_handler(ActiveSessionExistsError)
    async def active_session(request: Request, exc: ActiveSessionExistsError):
        return _error(409, exc, session_id=exc.session_id)

    @app.exception_handler(ConcurrencyConflict)
    async def conflict(request: Request, exc: ConcurrencyConflict):
        logger.warning("Concurrency conflict on {}: {}", request.url.path, exc)
        return _error(409, exc)

    @app.exception_handler(TransactionFailure)
    async def transaction_failure(request: Request, exc: TransactionFailure):
        logger.error("Transaction failure on {}: {}", request.url.path, exc)
        return _error(500, exc)


def create_app(db: Optional[Database] = None) -> FastAPI:
    """
    Build the API. Pass `db` to reuse an existing client (tests); otherwise one
    is created from settings at startup and disposed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # --- startup ---
        logger.remove()
        logger.add(lambda msg: print(msg, end=""), level=settings.LOG_LEVEL)

        owns_db = db is None
        app.state.db = db or Database.from_settings(settings)
        await app.state.db.create_all()

        app.state.scheduler = None
        if settings.ENABLE_SCHEDULER:
            app.state.scheduler = create_scheduler(app.state.db)
            start_scheduler(app.state.scheduler)
        logger.info("HabitQuest started ({})", settings.ENV)

        yield

        # --- shutdown ---
        if app.state.scheduler:
            shutdown_scheduler(app.state.scheduler)
        if owns_db:
            await app.state.db.dispose()
        logger.info("HabitQuest shut down")

    app = FastAPI(title="HabitQuest", lifespan=lifespan)
    if db is not None:
        app.state.db = db
    app.state.scheduler = None

    register_exception_handlers(app)
    app.include_router(habits.router)
    app.include_router(chains.router)
    app.include_router(chain_sessions.router)
    app.include_router(leaderboard.router)
    app.include_router(profile.router)

    @app.get("/health")
    async def health():
        scheduler = app.state.scheduler
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "scheduler_running": scheduler.running if scheduler else False,
            "jobs_count": len(scheduler.get_jobs()) if scheduler and scheduler.running else 0,
        }

    return app


app = create_app()
