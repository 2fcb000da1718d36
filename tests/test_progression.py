import pytest

from habitquest.services.progression import (
    RewardBand,
    band_bonus,
    calculate_rank,
    chain_xp,
    daily_bonus_amount,
    habit_completion_xp,
    reward_band,
    streak_milestone_xp,
)


@pytest.mark.parametrize(
    "total,title,level,progress",
    [
        (0, "Novice", 1, 0),
        (499, "Novice", 1, 100),
        (500, "Beginner", 2, 0),
        (1000, "Beginner", 2, 50),
        (7000, "Expert", 5, 0),
        (30000, "Legend", 8, 100),
        (250000, "Legend", 8, 100),
        (-20, "Novice", 1, 0),
    ],
)
def test_calculate_rank(total, title, level, progress):
    rank = calculate_rank(total)
    assert (rank.title, rank.level, rank.progress) == (title, level, progress)


def test_rank_is_pure_function_of_total():
    assert calculate_rank(4242) == calculate_rank(4242)


def test_reward_band_boundaries():
    assert reward_band(10, 10) is RewardBand.PERFECT
    assert reward_band(8, 10) is RewardBand.GOOD
    assert reward_band(79, 100) is RewardBand.PARTIAL
    assert reward_band(5, 10) is RewardBand.PARTIAL
    assert reward_band(49, 100) is RewardBand.NONE
    assert reward_band(0, 0) is RewardBand.NONE


def test_band_bonus_values():
    assert band_bonus(RewardBand.PERFECT, 3, 3) == 100 + 3 * 15
    assert band_bonus(RewardBand.GOOD, 4, 5) == 60 + 4 * 10
    assert band_bonus(RewardBand.PARTIAL, 3, 5) == 30 + 3 * 5
    assert band_bonus(RewardBand.NONE, 1, 5) == 0


def test_band_bonus_rejects_unknown_band():
    with pytest.raises(ValueError):
        band_bonus("perfect", 1, 1)


def test_chain_xp():
    # 3 of 5 completed -> partial band
    assert chain_xp(3, 5) == 3 * 20 + 30 + 3 * 5
    assert chain_xp(0, 5) == 0


def test_reward_tables():
    assert habit_completion_xp("High") == 25
    assert habit_completion_xp("Medium") == 15
    assert habit_completion_xp("Low") == 10
    assert daily_bonus_amount(0) == 50
    assert daily_bonus_amount(10) == 75
    assert streak_milestone_xp(7) == 100
    assert streak_milestone_xp(8) is None
