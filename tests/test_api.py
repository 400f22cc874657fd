from __future__ import annotations

import asyncio
import datetime

import httpx
import pytest
from fastapi.testclient import TestClient

from streamdesk import api
from streamdesk.backends import HttpBackend
from streamdesk.errors import NotAuthorized, StateConflict, TransportFailure
from streamdesk.roles import CurrentUser
from streamdesk.sync import ScheduleSyncLayer

from scheduling_fixtures import WEEK_END, WEEK_START, build_schedule, seed_week


@pytest.fixture()
def schedule():
    schedule = build_schedule()

    def override_db():
        session = schedule.session_factory()
        try:
            yield session
        finally:
            session.close()

    api.app.dependency_overrides[api.get_db] = override_db
    yield schedule
    api.app.dependency_overrides.clear()
    schedule.engine.dispose()


@pytest.fixture()
def client(schedule):
    return TestClient(api.app)


def as_user(employee):
    return {"X-User-Id": str(employee.id)}


def week_payload(schedule):
    return {
        "start_date": WEEK_START.isoformat(),
        "end_date": WEEK_END.isoformat(),
        "channel_id": schedule.channel_id,
    }


def test_caller_must_identify(client, schedule):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/api/v1/me").status_code == 401
    response = client.get("/api/v1/me", headers={"X-User-Id": "9999"})
    assert response.status_code == 403
    assert response.json() == {"detail": "Unknown user."}
    me = client.get("/api/v1/me", headers=as_user(schedule.crew.leader)).json()
    assert me["roles"] == ["livestream-leader"]


def test_range_lifecycle(client, schedule):
    leader = as_user(schedule.crew.leader)
    host = as_user(schedule.crew.host)

    assert client.post("/api/v1/livestreams/range", json=week_payload(schedule), headers=host).status_code == 403
    created = client.post("/api/v1/livestreams/range", json=week_payload(schedule), headers=leader)
    assert created.status_code == 201
    assert len(created.json()) == 7
    assert all(len(day["snapshots"]) == 3 for day in created.json())

    params = {"start_date": "2024-04-01", "end_date": "2024-04-07", "channel_id": schedule.channel_id}
    fetched = client.get("/api/v1/livestreams/by-date-range", params=params, headers=host).json()
    assert [day["date"] for day in fetched][0] == "2024-04-01"

    synced = client.post("/api/v1/livestreams/sync-snapshots", json=week_payload(schedule), headers=leader)
    assert synced.json() == {"added": 0, "removed": 0}

    locked = client.post("/api/v1/livestreams/fix-by-date", json=week_payload(schedule), headers=leader)
    assert locked.json() == {"fixed": 7}
    again = client.post("/api/v1/livestreams/range", json=week_payload(schedule), headers=leader)
    assert again.status_code == 409


def test_range_requires_its_fields(client, schedule):
    response = client.post(
        "/api/v1/livestreams/range",
        json={"start_date": "2024-04-01"},
        headers=as_user(schedule.crew.leader),
    )
    assert response.status_code == 400
    assert "end_date" in response.json()["detail"]


def test_snapshot_endpoints(client, schedule):
    monday = seed_week(schedule)
    host = as_user(schedule.crew.host)
    leader = as_user(schedule.crew.leader)

    moved = client.put(
        f"/api/v1/livestreams/snapshots/{monday['id']}/time",
        json={"start_time": "09:00", "end_time": "10:25"},
        headers=host,
    )
    assert moved.status_code == 200
    assert moved.json()["period"]["end_time"] == "10:25"

    backwards = client.put(
        f"/api/v1/livestreams/snapshots/{monday['id']}/time",
        json={"start_time": "11:00", "end_time": "10:00"},
        headers=host,
    )
    assert backwards.status_code == 400

    taken = client.post(
        "/api/v1/livestreams/snapshots/assign",
        json={"user_id": schedule.crew.other_host.id, "role": "host", "snapshot_id": monday["id"]},
        headers=as_user(schedule.crew.other_host),
    )
    assert taken.status_code == 403

    added = client.post(
        "/api/v1/livestreams/snapshots",
        json={
            "channel_id": schedule.channel_id,
            "date": "2024-04-02",
            "start_time": "14:00",
            "end_time": "15:00",
            "role": "assistant",
        },
        headers=leader,
    )
    assert added.status_code == 201
    assert added.json()["period"]["id"] is None
    deleted = client.delete(f"/api/v1/livestreams/snapshots/{added.json()['id']}", headers=leader)
    assert deleted.json() == {"deleted": added.json()["id"]}

    client.post("/api/v1/livestreams/fix-by-date", json=week_payload(schedule), headers=leader)
    released = client.post(f"/api/v1/livestreams/snapshots/{monday['id']}/unassign", headers=host)
    assert released.status_code == 409


def test_alt_request_endpoints(client, schedule):
    monday = seed_week(schedule, locked=True)
    host = as_user(schedule.crew.host)
    leader = as_user(schedule.crew.leader)

    assert client.get(f"/api/v1/alt-requests/by-snapshot/{monday['id']}", headers=host).json() is None
    created = client.post(
        "/api/v1/alt-requests",
        json={"snapshot_id": monday["id"], "alt_note": "Sick"},
        headers=host,
    )
    assert created.status_code == 201
    request_id = created.json()["id"]
    duplicate = client.post(
        "/api/v1/alt-requests",
        json={"snapshot_id": monday["id"], "alt_note": "Sick"},
        headers=host,
    )
    assert duplicate.status_code == 409

    listing = client.get("/api/v1/alt-requests", params={"status": "pending"}, headers=leader).json()
    assert listing["total"] == 1

    accepted = client.put(
        f"/api/v1/alt-requests/{request_id}/status",
        json={"status": "accepted", "alt_assignee_id": schedule.crew.other_host.id},
        headers=leader,
    )
    assert accepted.json()["status"] == "accepted"

    day = client.get(
        "/api/v1/livestreams/by-date-range",
        params={"start_date": "2024-04-01", "end_date": "2024-04-01"},
        headers=host,
    ).json()[0]
    snapshot = next(item for item in day["snapshots"] if item["id"] == monday["id"])
    assert snapshot["alt_assignee"]["kind"] == "employee"
    assert snapshot["alt_assignee"]["id"] == schedule.crew.other_host.id
    assert snapshot["alt_note"] == "Sick"


def test_alt_override_accepts_the_legacy_form(client, schedule):
    monday = seed_week(schedule, locked=True)
    response = client.put(
        f"/api/v1/livestreams/snapshots/{monday['id']}/alt",
        json={"alt_assignee": "other", "alt_other_assignee": "Cousin Sam", "alt_note": "family"},
        headers=as_user(schedule.crew.leader),
    )
    assert response.status_code == 200
    assert response.json()["alt_assignee"] == {"kind": "external", "name": "Cousin Sam"}

    bad = client.put(
        f"/api/v1/livestreams/snapshots/{monday['id']}/alt",
        json={"alt_assignee": {"kind": "robot"}},
        headers=as_user(schedule.crew.leader),
    )
    assert bad.status_code == 400


def _http_backend(employee):
    transport = httpx.ASGITransport(app=api.app)
    return HttpBackend(
        "http://test",
        employee.id,
        client=httpx.AsyncClient(transport=transport, base_url="http://test"),
    )


def test_http_backend_drives_the_sync_layer(schedule):
    monday = seed_week(schedule)

    async def scenario():
        backend = _http_backend(schedule.crew.host)
        try:
            user = CurrentUser.from_payload(await backend.current_user())
            notices = []
            sync = ScheduleSyncLayer(
                backend,
                user,
                channel_id=schedule.channel_id,
                notify=lambda message, severity: notices.append((severity, message)),
            )
            assert await sync.load_week(WEEK_START)
            assert await sync.resize_time(monday["id"], datetime.time(9, 0), datetime.time(10, 25))
            assert sync.snapshot(monday["id"]).end_minute == 625
            assert not await sync.delete_shift(monday["id"])
            assert notices[-1][0] == "error"
        finally:
            await backend.aclose()

    asyncio.run(scenario())


def test_http_backend_maps_error_statuses(schedule):
    monday = seed_week(schedule, locked=True)

    async def scenario():
        backend = _http_backend(schedule.crew.other_host)
        try:
            with pytest.raises(NotAuthorized):
                await backend.delete_snapshot(monday["id"])
            with pytest.raises(StateConflict):
                await backend.unassign(monday["id"])
            assert await backend.get_alt_request(monday["id"]) is None
        finally:
            await backend.aclose()

    asyncio.run(scenario())


def test_http_backend_rejects_an_unreadable_body():
    async def scenario():
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>proxy login</html>"))
        backend = HttpBackend(
            "http://test",
            1,
            client=httpx.AsyncClient(transport=transport, base_url="http://test"),
        )
        try:
            with pytest.raises(TransportFailure):
                await backend.list_channels()
        finally:
            await backend.aclose()

    asyncio.run(scenario())
