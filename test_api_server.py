import pytest
from fastapi.testclient import TestClient

from api_server import app, booking_rate_limiter
from conftest import MONDAY

PUBLIC = {"X-API-Key": "test-booking-key"}
ADMIN = {"X-Admin-API-Key": "test-admin-key"}


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    booking_rate_limiter.reset()
    yield
    booking_rate_limiter.reset()


def test_health_live(client):
    response = client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_health_ready_checks_schema(client):
    assert client.get("/health/ready").status_code == 200


def test_public_routes_require_api_key(client, studio):
    _, service = studio
    url = f"/v1/services/{service.id}/slots"

    assert client.get(url, params={"day": MONDAY.isoformat()}).status_code == 401
    assert client.get(url, params={"day": MONDAY.isoformat()}, headers={"X-API-Key": "wrong"}).status_code == 401


def test_slots_endpoint(client, studio):
    _, service = studio

    response = client.get(f"/v1/services/{service.id}/slots", params={"day": MONDAY.isoformat()}, headers=PUBLIC)

    assert response.status_code == 200
    body = response.json()
    assert body["day"] == MONDAY.isoformat()
    assert body["slots"][0] == "09:00"
    assert body["slots"][-1] == "11:00"


def test_unknown_service_maps_to_404(client):
    response = client.get("/v1/services/999/slots", params={"day": MONDAY.isoformat()}, headers=PUBLIC)
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_available_dates_endpoint(client, studio):
    _, service = studio
    response = client.get(f"/v1/services/{service.id}/available-dates", headers=PUBLIC)
    assert response.status_code == 200
    assert response.json()["service_id"] == service.id


def test_booking_then_capacity_conflict(client, studio, make_payload):
    tenant, service = studio
    payload = make_payload(tenant, service)

    created = client.post("/v1/bookings", json=payload, headers=PUBLIC)
    rejected = client.post("/v1/bookings", json=payload, headers=PUBLIC)

    assert created.status_code == 201
    assert created.json()["booking"]["status"] == "pending"
    assert rejected.status_code == 409
    assert rejected.json()["code"] == "CAPACITY_EXCEEDED"


def test_blocked_booking_maps_to_409(client, factory, studio, make_payload):
    tenant, service = studio
    factory.exception(tenant)

    response = client.post("/v1/bookings", json=make_payload(tenant, service), headers=PUBLIC)

    assert response.status_code == 409
    assert response.json()["code"] == "BLOCKED"


def test_admin_routes_require_admin_key(client, studio, make_payload):
    tenant, service = studio
    booking_id = client.post("/v1/bookings", json=make_payload(tenant, service), headers=PUBLIC).json()["booking"][
        "booking_id"
    ]

    response = client.patch(
        f"/v1/admin/bookings/{booking_id}/status",
        json={"tenant_id": tenant.id, "status": "confirmed"},
        headers=PUBLIC,
    )

    assert response.status_code == 401


def test_admin_status_flow(client, studio, make_payload):
    tenant, service = studio
    booking_id = client.post("/v1/bookings", json=make_payload(tenant, service), headers=PUBLIC).json()["booking"][
        "booking_id"
    ]
    url = f"/v1/admin/bookings/{booking_id}/status"

    confirmed = client.patch(url, json={"tenant_id": tenant.id, "status": "confirmed"}, headers=ADMIN)
    skipped = client.patch(url, json={"tenant_id": tenant.id, "status": "pending"}, headers=ADMIN)

    assert confirmed.status_code == 200
    assert confirmed.json()["notification_url"].startswith("https://wa.me/")
    assert skipped.status_code == 400
    assert skipped.json()["code"] == "INVALID_INPUT"


def test_admin_schedule_conflict_maps_to_409(client, factory, studio):
    tenant, _ = studio
    other = factory.service(tenant, title="Color")

    response = client.post(
        "/v1/admin/schedules",
        json={"service_id": other.id, "day_of_week": 1, "start_time": "10:00", "end_time": "11:00"},
        headers=ADMIN,
    )

    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"


def test_admin_staff_routes(client, factory, studio):
    tenant, service = studio
    staff = factory.staff(tenant)

    linked = client.put(f"/v1/admin/staff/{staff.id}/services", json={"service_ids": [service.id]}, headers=ADMIN)
    scheduled = client.post(
        f"/v1/admin/staff/{staff.id}/schedules",
        json={"day_of_week": 1, "start_time": "13:00", "end_time": "15:00"},
        headers=ADMIN,
    )
    time_off = client.post(
        f"/v1/admin/staff/{staff.id}/time-off",
        json={"date_from": "2030-01-14", "date_to": "2030-01-14"},
        headers=ADMIN,
    )
    slots = client.get(
        f"/v1/services/{service.id}/slots",
        params={"day": MONDAY.isoformat(), "staff_id": staff.id},
        headers=PUBLIC,
    )

    assert linked.status_code == 200
    assert scheduled.status_code == 201
    assert time_off.status_code == 201
    assert slots.json()["slots"] == ["13:00", "13:15", "13:30", "13:45", "14:00"]


def test_admin_exception_route(client, studio):
    tenant, service = studio

    created = client.post(
        "/v1/admin/exceptions",
        json={"tenant_id": tenant.id, "exception_date": MONDAY.isoformat(), "start_time": "10:00"},
        headers=ADMIN,
    )
    slots = client.get(f"/v1/services/{service.id}/slots", params={"day": MONDAY.isoformat()}, headers=PUBLIC)

    assert created.status_code == 201
    assert slots.json()["slots"] == ["09:00", "11:00"]


def test_booking_route_is_rate_limited_per_client(client, studio, make_payload):
    tenant, service = studio
    payload = make_payload(tenant, service)

    statuses = [client.post("/v1/bookings", json=payload, headers=PUBLIC).status_code for _ in range(10)]
    limited = client.post("/v1/bookings", json=payload, headers=PUBLIC)
    other_client = client.post(
        "/v1/bookings",
        json=make_payload(tenant, service, time="11:00"),
        headers={**PUBLIC, "X-Forwarded-For": "203.0.113.9"},
    )

    assert statuses == [201] + [409] * 9
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1
    assert other_client.status_code == 201


def test_admin_schedule_update_and_delete_routes(client, studio):
    _, service = studio
    schedule_id = client.post(
        "/v1/admin/schedules",
        json={"service_id": service.id, "day_of_week": 1, "start_time": "13:00", "end_time": "14:00"},
        headers=ADMIN,
    ).json()["record_id"]

    moved = client.patch(f"/v1/admin/schedules/{schedule_id}", json={"end_time": "15:00"}, headers=ADMIN)
    clashing = client.patch(f"/v1/admin/schedules/{schedule_id}", json={"start_time": "11:00"}, headers=ADMIN)
    deleted = client.delete(f"/v1/admin/schedules/{schedule_id}", headers=ADMIN)
    missing = client.delete(f"/v1/admin/schedules/{schedule_id}", headers=ADMIN)

    assert moved.status_code == 200
    assert clashing.status_code == 409
    assert deleted.status_code == 200
    assert missing.status_code == 404


def test_admin_exception_update_and_delete_routes(client, studio):
    tenant, service = studio
    exception_id = client.post(
        "/v1/admin/exceptions",
        json={"tenant_id": tenant.id, "exception_date": MONDAY.isoformat(), "start_time": "10:00"},
        headers=ADMIN,
    ).json()["record_id"]

    updated = client.patch(f"/v1/admin/exceptions/{exception_id}", json={"end_time": "12:00"}, headers=ADMIN)
    slots = client.get(f"/v1/services/{service.id}/slots", params={"day": MONDAY.isoformat()}, headers=PUBLIC)
    deleted = client.delete(f"/v1/admin/exceptions/{exception_id}", headers=ADMIN)

    assert updated.status_code == 200
    assert slots.json()["slots"] == ["09:00"]
    assert deleted.status_code == 200


def test_admin_staff_delete_routes(client, factory, studio):
    tenant, _ = studio
    staff = factory.staff(tenant)
    schedule = factory.staff_schedule(staff)
    leave = factory.time_off(staff, MONDAY, MONDAY)

    assert client.delete(f"/v1/admin/staff/{staff.id}/schedules/{schedule.id}", headers=ADMIN).status_code == 200
    assert client.delete(f"/v1/admin/staff/{staff.id}/time-off/{leave.id}", headers=ADMIN).status_code == 200
    assert client.delete(f"/v1/admin/staff/{staff.id}/time-off/{leave.id}", headers=ADMIN).status_code == 404


def test_admin_booking_listing_route(client, studio, make_payload):
    tenant, service = studio
    client.post("/v1/bookings", json=make_payload(tenant, service), headers=PUBLIC)
    client.post("/v1/bookings", json=make_payload(tenant, service, time="11:00"), headers=PUBLIC)

    listed = client.get(
        "/v1/admin/bookings",
        params={"tenant_id": tenant.id, "day": MONDAY.isoformat(), "status": "pending"},
        headers=ADMIN,
    )
    unauthorized = client.get("/v1/admin/bookings", params={"tenant_id": tenant.id}, headers=PUBLIC)

    assert listed.status_code == 200
    assert [item["booking_time"] for item in listed.json()["bookings"]] == ["11:00", "09:00"]
    assert unauthorized.status_code == 401
