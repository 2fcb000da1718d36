from __future__ import annotations
from typing import AsyncIterator
from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .db import Database


def get_db(request: Request) -> Database:
    return request.app.state.db


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """One unit of work per request."""
    async with get_db(request).session() as session:
        yield session


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    # identity is established upstream; the header is trusted as-is
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
