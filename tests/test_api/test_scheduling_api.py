"""DB-backed integration tests for the scheduling API."""

import uuid

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cardio_sched.api.routes import (
    assignments,
    availability,
    calendar,
    health,
    history,
    rooms,
    templates,
)
from cardio_sched.core.database import get_db
from cardio_sched.core.repository import TemplateRepository
from cardio_sched.scheduling.conflicts import OverrideRegistry

MON = "2026-03-02"
TUE = "2026-03-03"
SUN = "2026-03-01"
SAT = "2026-03-07"


# ---------------------------------------------------------------------------
# Fixtures: app bound to the in-memory test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(session_factory, seed):
    async def _override_get_db():
        async with session_factory() as sess:
            try:
                yield sess
                await sess.commit()
            except Exception:
                await sess.rollback()
                raise

    app = FastAPI()
    app.state.override_registry = OverrideRegistry()
    app.include_router(health.router)
    for module in (availability, assignments, templates, rooms, history, calendar):
        app.include_router(module.router, prefix="/api/v1")
    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def template_id(session, seed):
    row = await TemplateRepository(session).create(
        name="Week A",
        type="weekly",
        entries=[
            dict(
                day_of_week=1, provider_id=uuid.UUID(seed["ann"]),
                service_id=uuid.UUID(seed["rooms_am"]), time_block="AM", room_count=4,
            ),
            dict(
                day_of_week=2, provider_id=uuid.UUID(seed["bob"]),
                service_id=uuid.UUID(seed["rooms_am"]), time_block="AM", room_count=3,
            ),
        ],
    )
    await session.commit()
    return str(row.id)


def _assignment(seed, provider, service, day=MON, block="AM", **kw) -> dict:
    return {
        "provider_id": seed[provider],
        "service_id": seed[service],
        "date": day,
        "time_block": block,
        **kw,
    }


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "cardio-sched"

    async def test_ready(self, client: AsyncClient):
        resp = await client.get("/health/ready")
        assert resp.json()["status"] == "ready"


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class TestAvailability:
    async def test_rule_crud_and_check(self, client: AsyncClient, seed):
        resp = await client.post(
            "/api/v1/availability/rules",
            json={
                "provider_id": seed["ann"], "day_of_week": 1, "time_block": "AM",
                "rule_type": "block", "enforcement": "hard", "reason": "Research",
            },
        )
        assert resp.status_code == 201
        rule_id = resp.json()["id"]

        resp = await client.get(
            "/api/v1/availability/check",
            params={"provider_id": seed["ann"], "service_id": seed["rooms_am"], "date": MON, "time_block": "AM"},
        )
        assert resp.json() == {"allowed": False, "enforcement": "hard", "reason": "Research"}

        resp = await client.post(
            "/api/v1/availability/bulk-check",
            json=[
                _assignment(seed, "ann", "rooms_am"),
                _assignment(seed, "ann", "rooms_am", day=TUE),
            ],
        )
        body = resp.json()
        assert len(body["violations"]) == 1
        assert body["violations"][0]["provider_initials"] == "AA"
        assert len(body["hard_blocks"]) == 1

        resp = await client.get("/api/v1/availability/rules", params={"provider_id": seed["ann"]})
        assert [r["id"] for r in resp.json()] == [rule_id]

        assert (await client.delete(f"/api/v1/availability/rules/{rule_id}")).status_code == 204
        assert (await client.delete(f"/api/v1/availability/rules/{rule_id}")).status_code == 404


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


class TestAssignments:
    async def test_create_list_patch_delete(self, client: AsyncClient, seed):
        resp = await client.post("/api/v1/assignments", json=_assignment(seed, "ann", "rooms_am"))
        assert resp.status_code == 201
        created = resp.json()["assignment"]
        assert created["room_count"] == 4

        resp = await client.get("/api/v1/assignments", params={"start_date": SUN, "end_date": SAT})
        assert [a["id"] for a in resp.json()] == [created["id"]]

        resp = await client.patch(f"/api/v1/assignments/{created['id']}", json={"notes": "late"})
        assert resp.json()["notes"] == "late"

        assert (await client.delete(f"/api/v1/assignments/{created['id']}")).status_code == 204
        assert (await client.delete(f"/api/v1/assignments/{created['id']}")).status_code == 404

    async def test_work_over_pto_conflict_and_session_override(self, client: AsyncClient, seed):
        resp = await client.post(
            "/api/v1/assignments", json=_assignment(seed, "bob", "pto", block="BOTH")
        )
        assert resp.status_code == 201

        resp = await client.post("/api/v1/assignments", json=_assignment(seed, "bob", "rooms_am"))
        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["code"] == "work_over_pto"
        assert detail["requires_override"] is True

        headers = {"X-Session-Id": "tab-1"}
        resp = await client.post(
            "/api/v1/assignments",
            json=_assignment(seed, "bob", "rooms_am", override=True),
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.json()["check"]["overridden"] is True

        resp = await client.post(
            "/api/v1/assignments",
            json=_assignment(seed, "bob", "rooms_pm", block="PM"),
            headers=headers,
        )
        assert resp.status_code == 201

        # another session has to confirm again
        resp = await client.post(
            "/api/v1/assignments/validate",
            json=_assignment(seed, "bob", "echo_am", day=MON, block="AM"),
            headers={"X-Session-Id": "tab-2"},
        )
        assert resp.json()["code"] == "work_over_pto"

        resp = await client.get(
            "/api/v1/assignments/pto-conflicts", params={"provider_id": seed["bob"], "date": MON}
        )
        assert len(resp.json()) == 2

    async def test_patch_time_block_uses_session_override(self, client: AsyncClient, seed):
        await client.post("/api/v1/assignments", json=_assignment(seed, "bob", "pto", block="BOTH"))
        headers = {"X-Session-Id": "tab-1"}
        resp = await client.post(
            "/api/v1/assignments",
            json=_assignment(seed, "bob", "rooms_am", override=True),
            headers=headers,
        )
        row_id = resp.json()["assignment"]["id"]

        resp = await client.patch(f"/api/v1/assignments/{row_id}", json={"time_block": "PM"})
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "work_over_pto"

        resp = await client.patch(
            f"/api/v1/assignments/{row_id}", json={"time_block": "PM"}, headers=headers
        )
        assert resp.status_code == 200
        assert resp.json()["time_block"] == "PM"

        assert (await client.delete("/api/v1/overrides", headers=headers)).status_code == 204

    async def test_validation_errors(self, client: AsyncClient, seed):
        resp = await client.post(
            "/api/v1/assignments", json=_assignment(seed, "ann", "rooms_am", block="XX")
        )
        assert resp.status_code == 422

        resp = await client.post(
            "/api/v1/assignments",
            json={**_assignment(seed, "ann", "rooms_am"), "provider_id": str(uuid.uuid4())},
        )
        assert resp.status_code == 404

    async def test_bulk_provider_and_undo(self, client: AsyncClient, seed):
        body = {
            "provider_id": seed["cat"],
            "action": "add",
            "start_date": MON,
            "end_date": "2026-03-06",
            "pattern": {"type": "all", "time_block": "PM", "service_id": seed["rooms_pm"]},
            "room_count": 2,
        }
        resp = await client.post("/api/v1/assignments/bulk-provider", json={**body, "preview": True})
        assert resp.json()["affected_count"] == 5
        assert resp.json()["history_id"] is None

        resp = await client.post("/api/v1/assignments/bulk-provider", json=body)
        history_id = resp.json()["history_id"]
        assert resp.json()["affected_count"] == 5

        resp = await client.post(f"/api/v1/history/{history_id}/undo")
        assert resp.json()["success"] is True
        resp = await client.get("/api/v1/assignments", params={"start_date": SUN, "end_date": SAT})
        assert resp.json() == []

    async def test_bulk_add_without_service_is_rejected(self, client: AsyncClient, seed):
        resp = await client.post(
            "/api/v1/assignments/bulk-provider",
            json={"provider_id": seed["cat"], "action": "add", "start_date": MON, "end_date": TUE},
        )
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Templates + history
# ---------------------------------------------------------------------------


class TestTemplates:
    async def test_list_and_get(self, client: AsyncClient, template_id):
        resp = await client.get("/api/v1/templates")
        assert [t["id"] for t in resp.json()] == [template_id]
        resp = await client.get(f"/api/v1/templates/{template_id}")
        assert len(resp.json()["entries"]) == 2
        assert (await client.get(f"/api/v1/templates/{uuid.uuid4()}")).status_code == 404

    async def test_apply_drift_undo_redo(self, client: AsyncClient, template_id):
        resp = await client.post(
            "/api/v1/templates/apply",
            json={"template_id": template_id, "start_date": SUN, "end_date": SAT},
        )
        assert resp.status_code == 200
        result = resp.json()
        assert result["created"] == 2
        assert result["coverage_needed"] == 0
        history_id = result["history_id"]

        resp = await client.get("/api/v1/assignments", params={"start_date": SUN, "end_date": SAT})
        monday = next(a for a in resp.json() if a["date"] == MON)
        await client.patch(f"/api/v1/assignments/{monday['id']}", json={"room_count": 6})

        resp = await client.post(f"/api/v1/history/{history_id}/undo")
        body = resp.json()
        assert body["requires_confirmation"] is True
        assert body["conflicts"][0]["change_type"] == "modified"

        resp = await client.post(f"/api/v1/history/{history_id}/undo", json={"force": True})
        assert resp.json()["success"] is True

        resp = await client.post(f"/api/v1/history/{history_id}/undo")
        assert resp.status_code == 400

        resp = await client.post(f"/api/v1/history/{history_id}/redo")
        assert resp.json()["created_count"] == 2

        resp = await client.get("/api/v1/history")
        entries = resp.json()
        assert entries[0]["id"] == history_id
        assert entries[0]["is_redone"] is True

    async def test_alternating_validation(self, client: AsyncClient, template_id):
        resp = await client.post(
            "/api/v1/templates/apply-alternating",
            json={
                "template_ids": [template_id],
                "rotation_pattern": [0],
                "start_date": SUN,
                "end_date": SAT,
            },
        )
        assert resp.status_code == 400
        assert "At least 2 templates" in resp.json()["detail"]

    async def test_from_week(self, client: AsyncClient, seed):
        await client.post("/api/v1/assignments", json=_assignment(seed, "ann", "rooms_am"))
        resp = await client.post(
            "/api/v1/templates/from-week", json={"name": "Snapshot", "week_date": TUE}
        )
        assert resp.status_code == 201
        assert resp.json()["entries"][0]["day_of_week"] == 1

    async def test_history_unknown_id(self, client: AsyncClient, seed):
        resp = await client.post(f"/api/v1/history/{uuid.uuid4()}/undo")
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Rooms + calendar
# ---------------------------------------------------------------------------


class TestRooms:
    async def test_capacity_suggestions_coverage(self, client: AsyncClient, seed):
        await client.post("/api/v1/assignments", json=_assignment(seed, "ann", "rooms_am"))

        resp = await client.get("/api/v1/rooms/capacity", params={"date": MON, "time_block": "AM"})
        assert resp.json()["current"] == 4
        assert resp.json()["zone"] == "under"

        resp = await client.get("/api/v1/rooms/capacity", params={"date": MON, "time_block": "BOTH"})
        assert resp.status_code == 400

        resp = await client.post(
            "/api/v1/rooms/suggestions",
            json={"date": MON, "time_block": "AM", "assigned_provider_ids": [seed["cat"]]},
        )
        assert [s["initials"] for s in resp.json()["suggestions"]] == ["BB"]

        resp = await client.get(
            "/api/v1/coverage/suggestions",
            params={"service_id": seed["consults"], "date": MON, "time_block": "PM"},
        )
        assert [s["initials"] for s in resp.json()["suggestions"]] == ["AA"]

        resp = await client.get("/api/v1/coverage/gaps", params={"start_date": SAT, "end_date": SAT})
        assert resp.json() == []


class TestCalendar:
    async def test_holidays(self, client: AsyncClient):
        resp = await client.post("/api/v1/holidays", json={"date": MON, "name": "Snow Day"})
        assert resp.status_code == 201
        resp = await client.get(
            "/api/v1/holidays", params={"start_date": "2026-01-01", "end_date": "2026-03-31"}
        )
        names = [h["name"] for h in resp.json()]
        assert names == ["New Year's Day", "Martin Luther King Jr. Day", "Presidents' Day", "Snow Day"]

    async def test_leave_crud(self, client: AsyncClient, seed):
        resp = await client.post(
            "/api/v1/leaves",
            json={"provider_id": seed["cat"], "start_date": MON, "end_date": TUE, "leave_type": "maternity"},
        )
        assert resp.status_code == 201
        leave_id = resp.json()["id"]

        resp = await client.get("/api/v1/leaves", params={"start_date": TUE, "end_date": SAT})
        assert [lv["id"] for lv in resp.json()] == [leave_id]

        resp = await client.post(
            "/api/v1/leaves",
            json={"provider_id": seed["cat"], "start_date": TUE, "end_date": MON},
        )
        assert resp.status_code == 400

        assert (await client.delete(f"/api/v1/leaves/{leave_id}")).status_code == 204

    async def test_day_metadata_upsert(self, client: AsyncClient):
        body = {"date": MON, "time_block": "DAY", "day_note": "Fire drill"}
        first = (await client.put("/api/v1/day-metadata", json=body)).json()
        second = (await client.put("/api/v1/day-metadata", json={**body, "extra_room_available": True})).json()
        assert first["id"] == second["id"]
        assert second["extra_room_available"] is True

        resp = await client.get("/api/v1/day-metadata", params={"start_date": MON, "end_date": MON})
        assert len(resp.json()) == 1
