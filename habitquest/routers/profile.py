from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, get_user_id
from ..schemas import PrivacyRequest, ProfileDetailsRequest
from ..services.profile_service import ProfileService
from ..services.xp_service import XPService

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("")
async def get_profile(user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    rank = await XPService.get_rank_info(session, user_id)
    profile = await ProfileService.get_or_create_profile(session, user_id)
    return {"profile": profile, "rank": {"title": rank.title, "level": rank.level, "progress": rank.progress}}


@router.patch("")
async def update_details(
    req: ProfileDetailsRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await ProfileService.update_details(session, user_id, **req.model_dump())


@router.patch("/privacy")
async def update_privacy(
    req: PrivacyRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await ProfileService.update_privacy(session, user_id, **req.model_dump())


@router.get("/xp-history")
async def xp_history(
    limit: int = Query(default=50, ge=1, le=1000),
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await XPService.get_history(session, user_id, limit=limit)
