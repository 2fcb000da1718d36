from typing import Optional, List
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field, Column, JSON
from sqlalchemy import DateTime, Index, text


class ChainSession(SQLModel, table=True):
    """
    One run through a habit chain.

    `habits` is a snapshot of the chain's steps taken at creation time; each
    entry carries its own status and timestamps. Derived fields (counts, rates,
    XP) are written by the session engine on every mutation, and `version`
    guards every read-modify-write.
    """
    __tablename__ = "chain_sessions"
    __table_args__ = (
        Index("ix_chain_sessions_user_status", "user_id", "status"),
        Index("ix_chain_sessions_status_activity", "status", "last_activity_at"),
        # at most one active session per user
        Index(
            "uq_chain_sessions_one_active",
            "user_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=100)
    chain_id: int = Field(index=True)
    chain_name: str = Field(max_length=200)

    status: str = Field(default="active", max_length=20)
    is_active: bool = Field(default=True)

    habits: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    current_habit_index: int = Field(default=0)
    total_habits: int = Field(default=0)

    total_duration: str = Field(default="0 min", max_length=50)
    total_duration_minutes: int = Field(default=0)
    actual_duration: Optional[int] = None  # minutes, set once on completion

    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    last_activity_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    paused_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    pause_duration: int = Field(default=0)  # minutes
    break_started_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    on_break: bool = Field(default=False)

    completed_habits_count: int = Field(default=0)
    completion_rate: int = Field(default=0)
    success_rate: int = Field(default=0)
    xp_earned: int = Field(default=0)

    # analytics cache, captured at creation in the user's timezone
    day_of_week: int = Field(default=0)
    hour_of_day: int = Field(default=0)

    version: int = Field(default=1)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
