import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agent_crew.main import create_app

ALICE = {"X-User-Id": "alice"}
MALLORY = {"X-User-Id": "mallory"}


@pytest_asyncio.fixture
async def api_client(settings, client, store):
    app = create_app(settings, client, store)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


async def _wait_until_finished(api_client, task_id, headers=ALICE):
    for _ in range(500):
        resp = await api_client.get(f"/tasks/{task_id}", headers=headers)
        body = resp.json()
        if body["status"] in ("completed", "error", "stopped"):
            return body
        await asyncio.sleep(0.01)
    raise AssertionError(f"task {task_id} did not finish")


@pytest.mark.asyncio
async def test_root(api_client):
    resp = await api_client.get("/")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_requests_without_identity_are_rejected(api_client):
    resp = await api_client.post("/tasks", json={"goal_text": "goal"})
    assert resp.status_code == 401

    resp = await api_client.get("/tasks", headers={"X-User-Id": "  "})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_submit_and_poll_task(api_client):
    resp = await api_client.post("/tasks", json={"goal_text": "  Assess tidal power  "}, headers=ALICE)
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "planning"
    assert created["goal_text"] == "Assess tidal power"
    assert created["user_id"] == "alice"

    body = await _wait_until_finished(api_client, created["id"])
    assert body["status"] == "completed"
    assert body["final_output"] == "Final answer"
    assert [s["status"] for s in body["subtasks"]] == ["completed"] * 3
    assert [s["step_number"] for s in body["subtasks"]] == [1, 2, 3]

    listed = (await api_client.get("/tasks", headers=ALICE)).json()
    assert [t["id"] for t in listed] == [created["id"]]

    events = (await api_client.get(f"/tasks/{created['id']}/events", headers=ALICE)).json()
    assert events[0]["message"].startswith("Task received")
    assert events[-1]["type"] == "done"


@pytest.mark.asyncio
async def test_blank_or_missing_goal_is_rejected(api_client):
    assert (await api_client.post("/tasks", json={"goal_text": "   "}, headers=ALICE)).status_code == 422
    assert (await api_client.post("/tasks", json={"goal_text": ""}, headers=ALICE)).status_code == 422
    assert (await api_client.post("/tasks", json={}, headers=ALICE)).status_code == 422


@pytest.mark.asyncio
async def test_other_users_cannot_see_or_stop_a_task(api_client):
    created = (await api_client.post("/tasks", json={"goal_text": "goal"}, headers=ALICE)).json()
    await _wait_until_finished(api_client, created["id"])

    assert (await api_client.get(f"/tasks/{created['id']}", headers=MALLORY)).status_code == 403
    assert (await api_client.post(f"/tasks/{created['id']}/stop", headers=MALLORY)).status_code == 403
    assert (await api_client.get(f"/tasks/{created['id']}/events", headers=MALLORY)).status_code == 403
    assert (await api_client.get("/tasks", headers=MALLORY)).json() == []


@pytest.mark.asyncio
async def test_unknown_task_is_404(api_client):
    assert (await api_client.get("/tasks/missing", headers=ALICE)).status_code == 404
    assert (await api_client.post("/tasks/missing/stop", headers=ALICE)).status_code == 404


@pytest.mark.asyncio
async def test_stopping_a_finished_task_reports_failure(api_client):
    created = (await api_client.post("/tasks", json={"goal_text": "goal"}, headers=ALICE)).json()
    before = await _wait_until_finished(api_client, created["id"])

    resp = await api_client.post(f"/tasks/{created['id']}/stop", headers=ALICE)
    assert resp.status_code == 200
    assert resp.json() == {"success": False}

    after = (await api_client.get(f"/tasks/{created['id']}", headers=ALICE)).json()
    assert after["status"] == before["status"] == "completed"
    assert after["final_output"] == before["final_output"]


@pytest.mark.asyncio
async def test_role_preferences(api_client):
    roles = (await api_client.get("/roles", headers=ALICE)).json()
    assert roles == {"researcher": True, "analyst": True, "writer": True, "executor": True}

    resp = await api_client.put("/roles/analyst", json={"enabled": False}, headers=ALICE)
    assert resp.status_code == 200
    assert resp.json()["analyst"] is False

    created = (await api_client.post("/tasks", json={"goal_text": "goal"}, headers=ALICE)).json()
    body = await _wait_until_finished(api_client, created["id"])
    assert [s["role"] for s in body["subtasks"]] == ["researcher", "executor"]

    assert (await api_client.put("/roles/planner", json={"enabled": False}, headers=ALICE)).status_code == 404
    assert (await api_client.put("/roles/wizard", json={"enabled": False}, headers=ALICE)).status_code == 404
