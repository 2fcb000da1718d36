from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, get_user_id
from ..services.leaderboard_service import LeaderboardService

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("")
async def get_leaderboard(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    entries = await LeaderboardService.get_leaderboard(session, limit=limit)
    return {
        "entries": [e.to_dict() for e in entries],
        "user_position": await LeaderboardService.get_user_position(session, user_id),
    }


@router.get("/position")
async def get_position(user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return {"position": await LeaderboardService.get_user_position(session, user_id)}


@router.get("/profiles/{target_user_id}")
async def get_public_profile(
    target_user_id: str,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await LeaderboardService.get_public_profile(session, target_user_id)


@router.get("/groups/{group_id}")
async def get_group_leaderboard(
    group_id: int,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    entries = await LeaderboardService.get_group_leaderboard(session, group_id, user_id)
    return {"entries": [e.to_dict() for e in entries]}


@router.get("/groups/{group_id}/activity")
async def get_group_activity(
    group_id: int,
    limit: Optional[int] = Query(default=None, ge=1, le=50),
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await LeaderboardService.get_group_activity(session, group_id, user_id, limit=limit)
