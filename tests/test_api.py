import httpx
import pytest

from habitquest.main import create_app

HEADERS = {"X-User-Id": "user-1"}


@pytest.fixture
def app(db):
    return create_app(db)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_identity_is_rejected(client):
    resp = await client.get("/habits")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_chain_session_flow(client):
    resp = await client.post("/habits", json={"name": "Stretch", "time_to_complete": "5 min"}, headers=HEADERS)
    assert resp.status_code == 201
    habit_id = resp.json()["id"]

    resp = await client.post(
        "/chains",
        json={"name": "Morning", "items": [{"habit_id": habit_id}]},
        headers=HEADERS,
    )
    assert resp.status_code == 201
    chain = resp.json()
    assert chain["total_time"] == "5 min"

    resp = await client.post(f"/chains/{chain['id']}/start", headers=HEADERS)
    assert resp.status_code == 201
    session_id = resp.json()["id"]

    resp = await client.post(f"/chains/{chain['id']}/start", headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["session_id"] == session_id

    resp = await client.post(f"/sessions/{session_id}/habits/5/start", headers=HEADERS)
    assert resp.status_code == 400

    resp = await client.post(f"/sessions/{session_id}/habits/0/complete", json={"notes": "done"}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["xp_earned"] == 20 + 100 + 15

    resp = await client.post(f"/sessions/{session_id}/resume", headers=HEADERS)
    assert resp.status_code == 409

    resp = await client.get("/profile", headers=HEADERS)
    assert resp.json()["profile"]["xp_total"] == 135


@pytest.mark.asyncio
async def test_not_found_and_leaderboard(client):
    resp = await client.get("/sessions/999", headers=HEADERS)
    assert resp.status_code == 404

    resp = await client.get("/leaderboard", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["user_position"] == -1

    resp = await client.patch("/profile/privacy", json={"profile_visibility": "public"}, headers=HEADERS)
    assert resp.status_code == 200

    resp = await client.get("/leaderboard/position", headers=HEADERS)
    assert resp.json()["position"] == 1

    resp = await client.patch("/profile/privacy", json={"profile_visibility": "everyone"}, headers=HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_edit_habit(client):
    resp = await client.post("/habits", json={"name": "Run"}, headers=HEADERS)
    habit_id = resp.json()["id"]

    resp = await client.patch(f"/habits/{habit_id}", json={"name": "Run 5k", "priority": "High"}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Run 5k"
    assert resp.json()["priority"] == "High"
    assert resp.json()["frequency"] == "Daily"

    resp = await client.patch(f"/habits/{habit_id}", json={"frequency": "Hourly"}, headers=HEADERS)
    assert resp.status_code == 400

    resp = await client.patch(f"/habits/{habit_id}", json={"name": "Mine"}, headers={"X-User-Id": "someone-else"})
    assert resp.status_code == 404
