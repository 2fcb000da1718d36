import pytest

from habitquest.errors import NotFoundError
from habitquest.models.profile import Group, GroupMembership, Profile
from habitquest.services.leaderboard_service import NOT_RANKED, LeaderboardService
from habitquest.services.progression import calculate_rank


async def _profile(session, user_id, xp, visibility="public", **extra):
    rank = calculate_rank(xp)
    profile = Profile(
        user_id=user_id,
        xp_total=xp,
        rank_title=rank.title,
        rank_level=rank.level,
        rank_progress=rank.progress,
        profile_visibility=visibility,
        **extra,
    )
    session.add(profile)
    await session.flush()
    return profile


@pytest.mark.asyncio
async def test_ordering_with_deterministic_ties(db_session):
    await _profile(db_session, "carol", 900)
    await _profile(db_session, "bob", 1200)
    await _profile(db_session, "alice", 900)
    await _profile(db_session, "dave", 50)

    board = await LeaderboardService.get_leaderboard(db_session, limit=10)
    assert [e.user_id for e in board] == ["bob", "alice", "carol", "dave"]
    assert [e.position for e in board] == [1, 2, 3, 4]
    assert board[0].rank_title == "Beginner"

    top_two = await LeaderboardService.get_leaderboard(db_session, limit=2)
    assert [e.user_id for e in top_two] == ["bob", "alice"]
    # position comes from the full ordering, not the truncated page
    assert await LeaderboardService.get_user_position(db_session, "carol") == 3


@pytest.mark.asyncio
async def test_unranked_users_get_minus_one(db_session):
    await _profile(db_session, "bob", 1200)
    await _profile(db_session, "hidden", 5000, visibility="private")

    assert await LeaderboardService.get_user_position(db_session, "nobody") == NOT_RANKED
    assert await LeaderboardService.get_user_position(db_session, "hidden") == NOT_RANKED
    assert await LeaderboardService.get_user_position(db_session, "hidden", include_private=True) == 1

    board = await LeaderboardService.get_leaderboard(db_session)
    assert [e.user_id for e in board] == ["bob"]


@pytest.mark.asyncio
async def test_privacy_flags_hide_fields(db_session):
    await _profile(db_session, "bob", 1200, show_streak=False, show_rank=False, current_streak=4)
    entry = (await LeaderboardService.get_leaderboard(db_session))[0]
    assert entry.current_streak is None
    assert entry.rank_title is None
    assert entry.xp_total == 1200


@pytest.mark.asyncio
async def test_public_profile(db_session):
    await _profile(db_session, "bob", 1200, user_name="bobby", bio="hi")
    await _profile(db_session, "hidden", 10, visibility="private")

    data = await LeaderboardService.get_public_profile(db_session, "bob")
    assert data["display_name"] == "bobby"
    assert data["position"] == 1
    assert data["bio"] == "hi"

    with pytest.raises(NotFoundError):
        await LeaderboardService.get_public_profile(db_session, "hidden")
    with pytest.raises(NotFoundError):
        await LeaderboardService.get_public_profile(db_session, "nobody")


@pytest.mark.asyncio
async def test_group_leaderboard_members_only(db_session):
    for uid, xp in (("a", 300), ("b", 700), ("c", 5000), ("d", 100)):
        await _profile(db_session, uid, xp, visibility="private")
    group = Group(name="Crew", owner_id="a")
    db_session.add(group)
    await db_session.flush()
    for uid, active in (("a", True), ("b", True), ("c", False)):
        db_session.add(GroupMembership(group_id=group.id, user_id=uid, is_active=active))
    await db_session.flush()

    board = await LeaderboardService.get_group_leaderboard(db_session, group.id, "a")
    assert [e.user_id for e in board] == ["b", "a"]

    with pytest.raises(NotFoundError):
        await LeaderboardService.get_group_leaderboard(db_session, group.id, "d")
    with pytest.raises(NotFoundError):
        await LeaderboardService.get_group_leaderboard(db_session, group.id, "c")


@pytest.mark.asyncio
async def test_refresh_rank_cache(db_session):
    low = await _profile(db_session, "low", 10, visibility="private")
    high = await _profile(db_session, "high", 900)

    mid = await _profile(db_session, "mid", 400)

    assert await LeaderboardService.refresh_rank_cache(db_session) == 2
    for p in (low, high, mid):
        await db_session.refresh(p)
    assert (high.global_position, mid.global_position, low.global_position) == (1, 2, None)

    assert await LeaderboardService.refresh_rank_cache(db_session) == 0


@pytest.mark.asyncio
async def test_rank_cache_matches_public_position(db_session):
    hidden = await _profile(db_session, "private_high", 900, visibility="private", global_position=1)
    public = await _profile(db_session, "public_low", 100)

    await LeaderboardService.refresh_rank_cache(db_session)
    await db_session.refresh(public)
    await db_session.refresh(hidden)

    assert public.global_position == await LeaderboardService.get_user_position(db_session, "public_low") == 1
    assert hidden.global_position is None
