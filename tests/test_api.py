import uuid
from datetime import date

import pytest

BASE = "/api/v1/yard"
FUTURE_DAY = date(2031, 6, 2)


@pytest.fixture
def appointment_body(warehouse_id):
    return {
        "warehouse_id": str(warehouse_id),
        "preferred_date": FUTURE_DAY.isoformat(),
        "operation_type": "receiving",
        "expected_duration": 90,
        "carrier": "Northline Freight",
        "special_requirements": {"live_unload": True},
    }


async def test_schedule_and_fetch_appointment(client, headers, appointment_body, notifications):
    response = await client.post(f"{BASE}/appointments", json=appointment_body, headers=headers)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "scheduled"
    assert data["dock_number"] == "DOCK-01"
    assert data["scheduled_date"] == FUTURE_DAY.isoformat()
    assert data["created_by"] == "dock.clerk"
    assert data["special_requirements"]["live_unload"] is True
    assert notifications.names() == ["appointment.scheduled"]

    fetched = await client.get(f"{BASE}/appointments/{data['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["appointment_number"] == data["appointment_number"]


async def test_cancel_flow_and_conflict_body(client, headers, appointment_body):
    created = (await client.post(f"{BASE}/appointments", json=appointment_body, headers=headers)).json()
    url = f"{BASE}/appointments/{created['id']}/cancel"

    cancelled = await client.post(url, json={"reason": "Carrier no-show"}, headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["cancelled_by"] == "dock.clerk"

    again = await client.post(url, json={"reason": "twice"}, headers=headers)
    assert again.status_code == 409
    body = again.json()
    assert body["type"] == "ConflictError"
    assert body["path"] == url
    assert "error" in body and "details" in body

    listing = await client.get(
        f"{BASE}/appointments",
        params={"warehouse_id": appointment_body["warehouse_id"], "status": "cancelled"},
        headers=headers,
    )
    assert listing.json()["total"] == 1


async def test_unknown_appointment_is_404(client, headers):
    response = await client.get(f"{BASE}/appointments/{uuid.uuid4()}", headers=headers)
    assert response.status_code == 404
    assert response.json()["type"] == "NotFoundError"


async def test_other_tenant_cannot_see_appointment(client, headers, appointment_body):
    created = (await client.post(f"{BASE}/appointments", json=appointment_body, headers=headers)).json()

    other = {"X-Tenant-ID": str(uuid.uuid4())}
    response = await client.get(f"{BASE}/appointments/{created['id']}", headers=other)
    assert response.status_code == 404


async def test_missing_tenant_header_is_rejected(client, appointment_body):
    response = await client.post(f"{BASE}/appointments", json=appointment_body)
    assert response.status_code == 400

    response = await client.post(
        f"{BASE}/appointments", json=appointment_body, headers={"X-Tenant-ID": "not-a-uuid"}
    )
    assert response.status_code == 400


async def test_trailer_visit_over_http(client, headers, warehouse_id):
    checked_in = await client.post(
        f"{BASE}/trailers/check-in",
        json={"warehouse_id": str(warehouse_id), "trailer_number": "TRL-9001", "dock_number": "DOCK-02"},
        headers=headers,
    )
    assert checked_in.status_code == 200
    trailer = checked_in.json()["trailer"]
    assert trailer["status"] == "at_dock"
    assert trailer["checked_in_by"] == "dock.clerk"

    checked_out = await client.post(
        f"{BASE}/trailers/{trailer['id']}/check-out", json={"notes": "Seal intact"}, headers=headers
    )
    assert checked_out.status_code == 200
    assert checked_out.json()["trailer"]["status"] == "departed"
    assert checked_out.json()["detention_charge"] == 0


async def test_check_out_before_check_in_is_412(client, headers, warehouse_id):
    arrived = await client.post(
        f"{BASE}/trailers/arrivals",
        json={"warehouse_id": str(warehouse_id), "trailer_number": "TRL-9002"},
        headers=headers,
    )
    assert arrived.status_code == 201

    response = await client.post(f"{BASE}/trailers/{arrived.json()['id']}/check-out", headers=headers)
    assert response.status_code == 412
    assert response.json()["type"] == "PreconditionFailedError"


async def test_check_in_needs_single_destination(client, headers, warehouse_id):
    response = await client.post(
        f"{BASE}/trailers/check-in",
        json={
            "warehouse_id": str(warehouse_id),
            "trailer_number": "TRL-9003",
            "dock_number": "DOCK-01",
            "yard_location": "A-01",
        },
        headers=headers,
    )
    assert response.status_code == 422


async def test_config_round_trip(client, headers, warehouse_id):
    url = f"{BASE}/config/{warehouse_id}"

    default = (await client.get(url, headers=headers)).json()
    assert default["is_default"] is True
    assert default["dock_count"] == 12

    updated = await client.put(url, json={"dock_count": 4, "detention_rate_per_hour": 75}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["dock_count"] == 4
    assert updated.json()["detention_rate_per_hour"] == 75
    assert updated.json()["is_default"] is False

    schedule = await client.get(
        f"{BASE}/dock-schedule",
        params={"warehouse_id": str(warehouse_id), "schedule_date": FUTURE_DAY.isoformat()},
        headers=headers,
    )
    assert schedule.json()["total_slots"] == 4 * 32


async def test_snapshot_endpoint(client, headers, warehouse_id):
    response = await client.get(
        f"{BASE}/snapshot", params={"warehouse_id": str(warehouse_id)}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["partial_errors"] == []


async def test_inverted_report_range_is_400(client, headers, warehouse_id):
    response = await client.get(
        f"{BASE}/reports/utilization",
        params={"warehouse_id": str(warehouse_id), "start_date": "2031-06-10", "end_date": "2031-06-01"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["type"] == "YardError"


async def test_health(client, session_factory, monkeypatch):
    monkeypatch.setattr("dockyard.main.async_session_factory", session_factory)

    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"
