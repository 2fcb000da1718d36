from pydantic import BaseModel, Field
from typing import Optional, List


class ChainItemIn(BaseModel):
    habit_id: int
    habit_name: Optional[str] = None
    duration: Optional[str] = None
    order: Optional[int] = None


class CreateChainRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    time_of_day: str = "Morning"
    total_time: Optional[str] = None
    items: List[ChainItemIn]


class CompleteStepRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)
    time_spent: Optional[int] = Field(default=None, ge=0)


class SkipStepRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CreateHabitRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    category: str = "Productivity"
    frequency: str = "Daily"
    time_of_day: str = "Morning"
    time_to_complete: str = "15 min"
    priority: str = "Medium"
    impact_score: int = Field(default=5, ge=1, le=10)


class UpdateHabitRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    frequency: Optional[str] = None
    time_of_day: Optional[str] = None
    time_to_complete: Optional[str] = None
    priority: Optional[str] = None


class HabitStatusRequest(BaseModel):
    status: str


class CompleteHabitRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)
    time_spent: Optional[int] = Field(default=None, ge=0)


class FeedbackEntry(BaseModel):
    habit_id: int
    feedback: str = Field(min_length=1, max_length=500)
    mood: str = "neutral"


class SubmitFeedbackRequest(BaseModel):
    entries: List[FeedbackEntry]


class PrivacyRequest(BaseModel):
    profile_visibility: Optional[str] = None
    show_streak: Optional[bool] = None
    show_progress: Optional[bool] = None
    show_rank: Optional[bool] = None


class ProfileDetailsRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    user_name: Optional[str] = Field(default=None, max_length=30)
    bio: Optional[str] = Field(default=None, max_length=500)
    timezone: Optional[str] = Field(default=None, max_length=50)
    daily_habit_target: Optional[int] = Field(default=None, ge=1, le=20)
    weekly_goal: Optional[int] = Field(default=None, ge=1, le=140)
