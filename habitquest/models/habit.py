from enum import Enum
from typing import Optional
from datetime import datetime, date, timezone
from sqlmodel import SQLModel, Field, UniqueConstraint
from sqlalchemy import DateTime, Column


class HabitCategory(str, Enum):
    MINDFULNESS = "Mindfulness"
    HEALTH = "Health"
    LEARNING = "Learning"
    PRODUCTIVITY = "Productivity"
    DIGITAL_WELLBEING = "Digital Wellbeing"


class HabitFrequency(str, Enum):
    DAILY = "Daily"
    WEEKDAYS = "Weekdays"
    WEEKENDS = "Weekends"
    MON_WED_FRI = "Mon, Wed, Fri"
    TUE_THU = "Tue, Thu"


class TimeOfDay(str, Enum):
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"
    THROUGHOUT_DAY = "Throughout day"


class HabitStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class Mood(str, Enum):
    VERY_NEGATIVE = "very_negative"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    POSITIVE = "positive"
    VERY_POSITIVE = "very_positive"


class Habit(SQLModel, table=True):
    """
    User habit definition with frequency and streak tracking.
    """
    __tablename__ = "habits"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=100)

    name: str = Field(max_length=200)
    description: str = Field(default="", max_length=1000)

    category: str = Field(default=HabitCategory.PRODUCTIVITY.value, max_length=40)
    frequency: str = Field(default=HabitFrequency.DAILY.value, max_length=20)
    time_of_day: str = Field(default=TimeOfDay.MORNING.value, max_length=20)
    time_to_complete: str = Field(default="15 min", max_length=50)
    priority: str = Field(default="Medium", max_length=10)

    streak: int = Field(default=0)
    status: str = Field(default=HabitStatus.ACTIVE.value, max_length=20, index=True)
    impact_score: int = Field(default=5, ge=1, le=10)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


class HabitCompletion(SQLModel, table=True):
    """
    One row per completed calendar day (in the user's timezone).
    """
    __tablename__ = "habit_completions"
    __table_args__ = (UniqueConstraint("habit_id", "completion_date", name="uq_habit_completion_day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    habit_id: int = Field(index=True, foreign_key="habits.id")

    completion_date: date = Field(index=True)
    completed: bool = Field(default=True)
    notes: Optional[str] = Field(default=None, max_length=500)
    time_spent: Optional[int] = None  # minutes

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class HabitFeedback(SQLModel, table=True):
    """
    Daily free-text feedback; at most one per habit per date, newest 90 kept.
    """
    __tablename__ = "habit_feedbacks"
    __table_args__ = (UniqueConstraint("habit_id", "feedback_date", name="uq_habit_feedback_day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    habit_id: int = Field(index=True, foreign_key="habits.id")

    feedback_date: date = Field(index=True)
    feedback: str = Field(max_length=500)
    completed: bool = Field(default=False)
    mood: str = Field(default=Mood.NEUTRAL.value, max_length=20)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
