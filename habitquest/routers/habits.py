from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, get_user_id
from ..schemas import (
    CompleteHabitRequest,
    CreateHabitRequest,
    HabitStatusRequest,
    SubmitFeedbackRequest,
    UpdateHabitRequest,
)
from ..services.habit_service import HabitService
from ..services.profile_service import ProfileService

router = APIRouter(prefix="/habits", tags=["habits"])


@router.post("", status_code=201)
async def create_habit(
    req: CreateHabitRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await HabitService.create_habit(session, user_id, **req.model_dump())


@router.get("")
async def list_habits(
    active_only: bool = True,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await HabitService.list_habits(session, user_id, active_only=active_only)


@router.get("/feedback/window")
async def feedback_window(user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    tz_name = await ProfileService.get_timezone(session, user_id)
    window = HabitService.feedback_window(tz_name)
    return {
        "can_submit": window.can_submit,
        "time_until_available": window.time_until_available,
        "time_until_expires": window.time_until_expires,
    }


@router.get("/feedback/today")
async def todays_habits_for_feedback(user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await HabitService.get_todays_habits_for_feedback(session, user_id)


@router.post("/feedback")
async def submit_feedback(
    req: SubmitFeedbackRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    saved = await HabitService.submit_daily_feedback(session, user_id, [e.model_dump() for e in req.entries])
    return {"success": True, "saved": len(saved)}


@router.get("/{habit_id}")
async def get_habit(habit_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    return await HabitService.get_habit(session, user_id, habit_id)


@router.patch("/{habit_id}")
async def update_habit(
    habit_id: int,
    req: UpdateHabitRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await HabitService.update_habit(session, user_id, habit_id, **req.model_dump(exclude_none=True))


@router.patch("/{habit_id}/status")
async def update_status(
    habit_id: int,
    req: HabitStatusRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    return await HabitService.update_status(session, user_id, habit_id, req.status)


@router.delete("/{habit_id}", status_code=204)
async def delete_habit(habit_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    await HabitService.delete_habit(session, user_id, habit_id)


@router.post("/{habit_id}/complete")
async def complete_habit(
    habit_id: int,
    req: CompleteHabitRequest | None = None,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    req = req or CompleteHabitRequest()
    result = await HabitService.complete_habit(session, user_id, habit_id, notes=req.notes, time_spent=req.time_spent)
    return {
        "habit_id": result.habit.id,
        "streak": result.streak,
        "xp_awarded": result.xp_total_awarded,
        "xp_total": (result.daily_bonus or result.milestone or result.award).new_total,
        "rank": (result.daily_bonus or result.milestone or result.award).rank.title,
    }


@router.delete("/{habit_id}/complete")
async def uncomplete_habit(habit_id: int, user_id: str = Depends(get_user_id), session: AsyncSession = Depends(get_session)):
    habit = await HabitService.uncomplete_habit(session, user_id, habit_id)
    return {"habit_id": habit.id, "streak": habit.streak}
