from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field, Column, JSON, UniqueConstraint
from sqlalchemy import DateTime, Index


class ProfileVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class GroupRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"


class GroupActivityType(str, Enum):
    MEMBER_JOINED = "member_joined"
    MEMBER_LEFT = "member_left"
    HABIT_COMPLETED = "habit_completed"
    CHAIN_COMPLETED = "chain_completed"
    DAILY_GOAL_ACHIEVED = "daily_goal_achieved"


class Profile(SQLModel, table=True):
    """
    Per-user XP, rank and aggregate stats.

    `xp_total` is the only XP counter; the rank_* columns are a cache of
    calculate_rank(xp_total) and are rewritten whenever the total changes.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_profiles_user"),
        Index("ix_profiles_leaderboard", "xp_total", "rank_level"),
        Index("ix_profiles_visibility_xp", "profile_visibility", "xp_total"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=100)

    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    user_name: Optional[str] = Field(default=None, max_length=30)
    bio: Optional[str] = Field(default=None, max_length=500)
    timezone: str = Field(default="UTC", max_length=50)

    # Privacy
    profile_visibility: str = Field(default=ProfileVisibility.PRIVATE.value, max_length=10)
    show_streak: bool = Field(default=True)
    show_progress: bool = Field(default=True)
    show_rank: bool = Field(default=True)

    # Goals
    daily_habit_target: int = Field(default=3, ge=1, le=20)
    weekly_goal: int = Field(default=21, ge=1, le=140)

    # XP
    xp_total: int = Field(default=0, ge=0)
    xp_last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    # Rank cache
    rank_title: str = Field(default="Novice", max_length=20)
    rank_level: int = Field(default=1)
    rank_progress: int = Field(default=0)
    rank_calculated_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    global_position: Optional[int] = None

    # Stats
    total_habits_created: int = Field(default=0)
    total_completions: int = Field(default=0)
    longest_streak: int = Field(default=0)
    current_streak: int = Field(default=0)
    total_chains_completed: int = Field(default=0)
    daily_bonuses_earned: int = Field(default=0)
    total_groups_joined: int = Field(default=0)
    avg_daily_xp: int = Field(default=0)
    joined_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    last_activity_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )

    version: int = Field(default=1)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    @property
    def display_name(self) -> str:
        if self.user_name:
            return self.user_name
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or "Anonymous"

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


class XPHistory(SQLModel, table=True):
    """
    Immutable XP ledger; trimmed to the newest XP_HISTORY_LIMIT rows per user.
    """
    __tablename__ = "xp_history"
    __table_args__ = (Index("ix_xp_history_user_created", "user_id", "created_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=100)

    amount: int
    source: str = Field(max_length=30, index=True)
    description: str = Field(max_length=200)
    metadata_json: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Group(SQLModel, table=True):
    __tablename__ = "groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    owner_id: str = Field(max_length=100)
    xp_multiplier: float = Field(default=1.0, ge=0.5, le=2.0)
    total_xp_earned: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class GroupMembership(SQLModel, table=True):
    __tablename__ = "group_memberships"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_membership"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(index=True, foreign_key="groups.id")
    user_id: str = Field(index=True, max_length=100)
    role: str = Field(default=GroupRole.MEMBER.value, max_length=10)
    is_active: bool = Field(default=True)
    # cached copies of the member's profile, written on each group award
    total_xp: int = Field(default=0)
    rank_title: str = Field(default="Novice", max_length=20)

    joined_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class GroupActivity(SQLModel, table=True):
    """Group feed; trimmed to the newest GROUP_ACTIVITY_LIMIT rows per group."""
    __tablename__ = "group_activity"
    __table_args__ = (Index("ix_group_activity_group_created", "group_id", "created_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="groups.id")
    user_id: str = Field(max_length=100)
    user_name: str = Field(max_length=100)
    activity_type: str = Field(max_length=30)
    description: str = Field(max_length=200)
    xp_earned: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
