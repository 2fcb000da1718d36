import pytest

from habitquest.errors import NotFoundError, ValidationError
from habitquest.services.chain_service import HabitChainService
from habitquest.services.habit_service import HabitService


@pytest.mark.asyncio
async def test_create_chain_normalizes_items(db_session):
    a = await HabitService.create_habit(db_session, "u1", "Meditate", time_to_complete="10 min")
    b = await HabitService.create_habit(db_session, "u1", "Journal", time_to_complete="15 min")

    chain = await HabitChainService.create_chain(
        db_session,
        "u1",
        "Morning",
        "start the day",
        [
            {"habit_id": b.id, "order": 5},
            {"habit_id": a.id, "order": 2, "duration": "1hr 5min"},
        ],
    )
    assert [i["habit_name"] for i in chain.items] == ["Meditate", "Journal"]
    assert [i["order"] for i in chain.items] == [0, 1]
    assert chain.items[0]["duration"] == "1hr 5min"
    assert chain.total_time == "1hr 20min"

    assert [c.id for c in await HabitChainService.list_chains(db_session, "u1")] == [chain.id]


@pytest.mark.asyncio
async def test_create_chain_validation(db_session):
    mine = await HabitService.create_habit(db_session, "u1", "Mine")
    theirs = await HabitService.create_habit(db_session, "u2", "Theirs")

    with pytest.raises(ValidationError):
        await HabitChainService.create_chain(db_session, "u1", "Empty", "", [])
    with pytest.raises(ValidationError):
        await HabitChainService.create_chain(db_session, "u1", "Huge", "", [{"habit_id": mine.id}] * 21)
    with pytest.raises(NotFoundError):
        await HabitChainService.create_chain(db_session, "u1", "Mixed", "", [{"habit_id": mine.id}, {"habit_id": theirs.id}])


@pytest.mark.asyncio
async def test_chain_survives_habit_deletion(db_session):
    habit = await HabitService.create_habit(db_session, "u1", "Walk")
    chain = await HabitChainService.create_chain(db_session, "u1", "Evening", "", [{"habit_id": habit.id}])

    await HabitService.delete_habit(db_session, "u1", habit.id)
    again = await HabitChainService.get_chain(db_session, "u1", chain.id)
    assert again.items[0]["habit_name"] == "Walk"

    with pytest.raises(NotFoundError):
        await HabitChainService.get_chain(db_session, "u2", chain.id)

    await HabitChainService.delete_chain(db_session, "u1", chain.id)
    assert await HabitChainService.list_chains(db_session, "u1") == []


@pytest.mark.asyncio
async def test_create_chain_accepts_missing_order(db_session):
    a = await HabitService.create_habit(db_session, "u1", "Stretch")
    b = await HabitService.create_habit(db_session, "u1", "Read")

    chain = await HabitChainService.create_chain(
        db_session,
        "u1",
        "Mixed order",
        "",
        [{"habit_id": a.id, "order": 3}, {"habit_id": b.id, "order": None}],
    )
    assert [i["habit_name"] for i in chain.items] == ["Read", "Stretch"]
