from typing import Optional, List
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field, Column, JSON
from sqlalchemy import DateTime


class HabitChain(SQLModel, table=True):
    """
    Ordered template of habits used to seed chain sessions.
    `items` is a list of {habit_id, habit_name, duration, order}; habits are
    referenced by id only, so deleting a habit leaves the chain in place.
    """
    __tablename__ = "habit_chains"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=100)

    name: str = Field(max_length=200)
    description: str = Field(default="", max_length=1000)
    time_of_day: str = Field(default="Morning", max_length=20)
    total_time: str = Field(default="0 min", max_length=50)

    items: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
