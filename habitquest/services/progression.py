"""
Rank tiers and XP reward tables.

Everything here is a pure function of its inputs; callers persist the results.
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class XPSource(str, Enum):
    HABIT_COMPLETION = "habit_completion"
    DAILY_BONUS = "daily_bonus"
    CHAIN_COMPLETION = "chain_completion"
    STREAK_MILESTONE = "streak_milestone"
    GROUP_ACTIVITY = "group_activity"


class HabitPriority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class RewardBand(str, Enum):
    PERFECT = "perfect"
    GOOD = "good"
    PARTIAL = "partial"
    NONE = "none"


@dataclass(frozen=True)
class RankTier:
    level: int
    title: str
    min_xp: int
    max_xp: Optional[int]  # None = unbounded


@dataclass(frozen=True)
class RankInfo:
    title: str
    level: int
    progress: int


RANK_TIERS: List[RankTier] = [
    RankTier(1, "Novice", 0, 499),
    RankTier(2, "Beginner", 500, 1499),
    RankTier(3, "Apprentice", 1500, 3499),
    RankTier(4, "Practitioner", 3500, 6999),
    RankTier(5, "Expert", 7000, 12499),
    RankTier(6, "Master", 12500, 19999),
    RankTier(7, "Grandmaster", 20000, 29999),
    RankTier(8, "Legend", 30000, None),
]

HABIT_COMPLETION_XP: Dict[HabitPriority, int] = {
    HabitPriority.HIGH: 25,
    HabitPriority.MEDIUM: 15,
    HabitPriority.LOW: 10,
}

DAILY_BONUS_BASE = 50
DAILY_BONUS_STREAK_MULTIPLIER = 1.5

STREAK_MILESTONES: Dict[int, int] = {
    7: 100,
    30: 500,
    100: 1500,
    365: 5000,
}

# Chain rewards
CHAIN_HABIT_XP = 20
PERFECT_BONUS_BASE, PERFECT_BONUS_PER_HABIT = 100, 15
GOOD_BONUS_BASE, GOOD_BONUS_PER_HABIT = 60, 10
PARTIAL_BONUS_BASE, PARTIAL_BONUS_PER_HABIT = 30, 5


def calculate_rank(total_xp: int) -> RankInfo:
    """Derive rank title/level/progress from total XP."""
    total_xp = max(0, int(total_xp))
    for tier in reversed(RANK_TIERS):
        if total_xp >= tier.min_xp:
            if tier.max_xp is None:
                progress = 100
            else:
                span = tier.max_xp - tier.min_xp
                progress = math.floor((total_xp - tier.min_xp) / span * 100)
                progress = min(100, max(0, progress))
            return RankInfo(title=tier.title, level=tier.level, progress=progress)
    # unreachable: the first tier starts at 0
    return RankInfo(title=RANK_TIERS[0].title, level=1, progress=0)


def habit_completion_xp(priority: str) -> int:
    return HABIT_COMPLETION_XP[HabitPriority(priority)]


def daily_bonus_amount(longest_streak: int) -> int:
    """Flat daily bonus plus a streak-scaled extra."""
    if longest_streak <= 0:
        return DAILY_BONUS_BASE
    extra = math.floor(DAILY_BONUS_BASE * ((longest_streak / 10) * (DAILY_BONUS_STREAK_MULTIPLIER - 1)))
    return DAILY_BONUS_BASE + extra


def streak_milestone_xp(streak: int) -> Optional[int]:
    return STREAK_MILESTONES.get(streak)


def reward_band(completed: int, total: int) -> RewardBand:
    """
    Band by the share of steps actually completed (skips excluded).
    Lower bounds are inclusive: 100, 80, 50.
    """
    if total <= 0:
        return RewardBand.NONE
    rate = completed * 100 / total
    if rate >= 100:
        return RewardBand.PERFECT
    if rate >= 80:
        return RewardBand.GOOD
    if rate >= 50:
        return RewardBand.PARTIAL
    return RewardBand.NONE


def band_bonus(band: RewardBand, completed: int, total: int) -> int:
    if band is RewardBand.PERFECT:
        return PERFECT_BONUS_BASE + total * PERFECT_BONUS_PER_HABIT
    elif band is RewardBand.GOOD:
        return GOOD_BONUS_BASE + completed * GOOD_BONUS_PER_HABIT
    elif band is RewardBand.PARTIAL:
        return PARTIAL_BONUS_BASE + completed * PARTIAL_BONUS_PER_HABIT
    elif band is RewardBand.NONE:
        return 0
    raise ValueError(f"Unhandled reward band: {band!r}")


def chain_xp(completed: int, total: int) -> int:
    """Per-step reward for every completed step plus the banded chain bonus."""
    band = reward_band(completed, total)
    return completed * CHAIN_HABIT_XP + band_bonus(band, completed, total)
