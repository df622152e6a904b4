from __future__ import annotations

import pytest
from conftest import MONDAY_0800, fixed_clock
from fastapi.testclient import TestClient

from carpool.app import create_app
from carpool.errors import TransientStoreError
from carpool.services.assignments import AssignmentManager


@pytest.fixture
def app(settings, world):
    app = create_app(settings)
    # pin "now" so the fixed March 2026 slots stay in the future
    app.state.assignments = AssignmentManager(
        app.state.session_factory, settings, clock=fixed_clock
    )
    yield app
    app.state.engine.dispose()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _as(user_id: str) -> dict:
    return {"X-User-Id": user_id}


def _create(client, world, vehicle_id=None, user=None, **body):
    payload = {"datetime": MONDAY_0800, "vehicle_id": vehicle_id or world.van, **body}
    return client.post(
        f"/groups/{world.group}/schedule-slots", json=payload, headers=_as(user or world.alice)
    )


def test_health(client) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_caller_header_is_required(client, world) -> None:
    r = client.get(f"/groups/{world.group}/schedule")
    assert r.status_code == 401


def test_create_slot_returns_details(client, world) -> None:
    r = _create(client, world, driver_id=world.alice)
    assert r.status_code == 201
    body = r.json()
    assert body["group_id"] == world.group
    assert body["datetime"].startswith("2026-03-02T08:00:00")
    [va] = body["vehicle_assignments"]
    assert va["vehicle"]["name"] == "Van"
    assert va["driver"]["id"] == world.alice
    assert (va["effective_capacity"], va["occupancy"], va["available_seats"]) == (4, 0, 4)
    assert body["total_capacity"] == 4


def test_full_vehicle_maps_to_409(client, world) -> None:
    slot = _create(client, world).json()
    slot_id = slot["id"]
    va_id = slot["vehicle_assignments"][0]["id"]
    for child in (world.amy, world.ann, world.abe, world.ava):
        r = client.post(
            f"/schedule-slots/{slot_id}/children",
            json={"child_id": child, "vehicle_assignment_id": va_id},
            headers=_as(world.alice),
        )
        assert r.status_code == 201

    r = client.post(
        f"/schedule-slots/{slot_id}/children",
        json={"child_id": world.art, "vehicle_assignment_id": va_id},
        headers=_as(world.alice),
    )
    assert r.status_code == 409
    assert r.json() == {
        "detail": "Vehicle Van is at full capacity (4/4)",
        "code": "CapacityConflict",
        "occupancy": 4,
        "capacity": 4,
    }

    r = client.get(f"/schedule-slots/{slot_id}/stats", headers=_as(world.alice))
    assert r.json()["is_at_capacity"] is True


def test_duplicate_vehicle_is_already_assigned(client, world) -> None:
    _create(client, world)
    r = _create(client, world)
    assert r.status_code == 409
    assert r.json()["code"] == "ALREADY_ASSIGNED"


def test_validation_errors_map_to_400(client, world) -> None:
    assert _create(client, world, datetime="2026-03-02T09:00:00Z").status_code == 400
    assert _create(client, world, datetime="2026-02-23T08:00:00Z").status_code == 400
    assert _create(client, world, datetime="yesterday").status_code == 400
    assert _create(client, world, seat_override=11).status_code == 400


def test_hidden_slot_maps_to_404(client, world) -> None:
    slot_id = _create(client, world).json()["id"]
    assert client.get(f"/schedule-slots/{slot_id}", headers=_as(world.carl)).status_code == 404
    assert client.get("/schedule-slots/nope", headers=_as(world.alice)).status_code == 404


def test_vehicle_driver_and_override_routes(client, world) -> None:
    slot_id = _create(client, world).json()["id"]

    r = client.post(
        f"/schedule-slots/{slot_id}/vehicles",
        json={"vehicle_id": world.sedan, "seat_override": 2},
        headers=_as(world.bob),
    )
    assert r.status_code == 201
    sedan = r.json()
    assert sedan["effective_capacity"] == 2

    r = client.patch(
        f"/schedule-slots/{slot_id}/vehicles/{world.sedan}/driver",
        json={"driver_id": world.bob},
        headers=_as(world.bob),
    )
    assert r.status_code == 200
    assert r.json()["driver"]["name"] == "Bob"

    r = client.patch(
        f"/vehicle-assignments/{sedan['id']}/seat-override",
        json={"seat_override": None},
        headers=_as(world.bob),
    )
    assert r.status_code == 200
    assert r.json()["effective_capacity"] == 3

    r = client.delete(f"/schedule-slots/{slot_id}/vehicles/{world.sedan}", headers=_as(world.bob))
    assert r.json()["slot_deleted"] is False
    r = client.delete(f"/schedule-slots/{slot_id}/vehicles/{world.van}", headers=_as(world.alice))
    assert r.json()["slot_deleted"] is True
    assert client.get(f"/schedule-slots/{slot_id}", headers=_as(world.alice)).status_code == 404


def test_child_routes(client, world) -> None:
    slot = _create(client, world).json()
    slot_id = slot["id"]
    va_id = slot["vehicle_assignments"][0]["id"]

    r = client.post(
        f"/schedule-slots/{slot_id}/children",
        json={"child_id": world.ben, "vehicle_assignment_id": va_id},
        headers=_as(world.bob),
    )
    assert r.status_code == 201
    assert r.json()["child"]["name"] == "Ben"

    r = client.get(f"/schedule-slots/{slot_id}/available-children", headers=_as(world.bob))
    assert r.status_code == 200
    assert world.ben not in {c["id"] for c in r.json()}

    r = client.get(f"/schedule-slots/{slot_id}/conflicts", headers=_as(world.bob))
    assert r.status_code == 200
    assert r.json() == []

    r = client.delete(f"/schedule-slots/{slot_id}/children/{world.ben}", headers=_as(world.bob))
    assert r.status_code == 204
    r = client.delete(f"/schedule-slots/{slot_id}/children/{world.ben}", headers=_as(world.bob))
    assert r.status_code == 404


def test_schedule_listing(client, world) -> None:
    _create(client, world)
    r = client.get(
        f"/groups/{world.group}/schedule",
        params={"start_date": "2026-03-02T00:00:00Z", "end_date": "2026-03-03T00:00:00Z"},
        headers=_as(world.bob),
    )
    assert r.status_code == 200
    assert len(r.json()) == 1


def test_transient_store_error_maps_to_503(app, client, world, monkeypatch) -> None:
    slot_id = _create(client, world).json()["id"]

    def busy(*args, **kwargs):
        raise TransientStoreError("Schedule store is busy; retry the request")

    monkeypatch.setattr(app.state.assignments, "assign_vehicle", busy)
    r = client.post(
        f"/schedule-slots/{slot_id}/vehicles",
        json={"vehicle_id": world.sedan},
        headers=_as(world.bob),
    )
    assert r.status_code == 503
    assert r.json()["code"] == "TransientStoreError"
