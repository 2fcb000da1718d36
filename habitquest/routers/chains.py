from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, get_user_id
from ..schemas import CreateChainRequest
from ..services.chain_service import HabitChainService
from ..services.chain_session_service import ChainSessionService

router = APIRouter(prefix="/chains", tags=["chains"])


@router.post("", status_code=201)
async def create_chain(
    req: CreateChainRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await HabitChainService.create_chain(
        session,
        user_id,
        name=req.name,
        description=req.description,
        items=[item.model_dump(exclude_none=True) for item in req.items],
        time_of_day=req.time_of_day,
        total_time=req.total_time,
    )


@router.get("")
async def list_chains(user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await HabitChainService.list_chains(session, user_id)


@router.get("/{chain_id}")
async def get_chain(chain_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await HabitChainService.get_chain(session, user_id, chain_id)


@router.delete("/{chain_id}", status_code=204)
async def delete_chain(chain_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    await HabitChainService.delete_chain(session, user_id, chain_id)


@router.post("/{chain_id}/start", status_code=201)
async def start_chain(chain_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await ChainSessionService.start_chain(session, user_id, chain_id)
