from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, get_user_id
from ..schemas import CompleteStepRequest, SkipStepRequest
from ..services.chain_session_service import ChainSessionService

router = APIRouter(prefix="/sessions", tags=["chain sessions"])


@router.get("/active")
async def get_active_session(user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return {"session": await ChainSessionService.get_active_session(session, user_id)}


@router.get("/past")
async def list_past_sessions(
    limit: Optional[int] = None,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await ChainSessionService.list_past_sessions(session, user_id, limit)


@router.get("/{session_id}")
async def get_session_by_id(session_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await ChainSessionService.get_session(session, user_id, session_id)


@router.post("/{session_id}/habits/{index}/start")
async def start_habit(
    session_id: int, index: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)
):
    return await ChainSessionService.start_habit(session, user_id, session_id, index)


@router.post("/{session_id}/habits/{index}/complete")
async def complete_habit(
    session_id: int,
    index: int,
    req: Optional[CompleteStepRequest] = None,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    req = req or CompleteStepRequest()
    return await ChainSessionService.complete_habit(
        session, user_id, session_id, index, notes=req.notes, time_spent=req.time_spent
    )


@router.post("/{session_id}/habits/{index}/skip")
async def skip_habit(
    session_id: int,
    index: int,
    req: Optional[SkipStepRequest] = None,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    req = req or SkipStepRequest()
    return await ChainSessionService.skip_habit(session, user_id, session_id, index, reason=req.reason)


@router.post("/{session_id}/pause")
async def pause(session_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await ChainSessionService.pause(session, user_id, session_id)


@router.post("/{session_id}/resume")
async def resume(session_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await ChainSessionService.resume(session, user_id, session_id)


@router.post("/{session_id}/break/start")
async def start_break(session_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await ChainSessionService.start_break(session, user_id, session_id)


@router.post("/{session_id}/break/end")
async def end_break(session_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await ChainSessionService.end_break(session, user_id, session_id)


@router.post("/{session_id}/abandon")
async def abandon(session_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await ChainSessionService.abandon(session, user_id, session_id)
