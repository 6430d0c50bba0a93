import pytest
from fastapi.testclient import TestClient

from telemed_booking import dependencies
from telemed_booking.dependencies import get_availability_cache, get_facade, get_settings_store
from telemed_booking.exceptions import ExternalWriteError
from telemed_booking.main import app

from conftest import at, transient_query_error

ADMIN = {"X-Admin-Api-Key": "secret"}


@pytest.fixture
def client(facade, monkeypatch):
    monkeypatch.setattr(dependencies.settings, "admin_api_key", "secret")
    app.dependency_overrides[get_facade] = lambda: facade
    app.dependency_overrides[get_settings_store] = lambda: facade.settings_store
    app.dependency_overrides[get_availability_cache] = lambda: facade.cache
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_availability_endpoint(client, pm):
    pm.add("10:00", "10:30")

    resp = client.get("/availability/CA", params={"from_date": "2024-06-10", "to_date": "2024-06-10"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["region"] == "CA"
    assert body["meta"]["total"] == 15
    assert body["slots"][0]["duration"] == 30


def test_unknown_region_is_bad_request(client):
    assert client.get("/availability/ZZ").status_code == 400


def test_book_returns_adjusted_interval(client, pm):
    pm.add("10:00", "10:15")

    resp = client.post("/appointments/", json={
        "start": at("10:00").isoformat(),
        "end": at("10:30").isoformat(),
        "region": "CA",
        "reason": "follow-up",
    })

    assert resp.status_code == 201
    body = resp.json()
    assert body["auto_adjusted"] is True
    assert body["shifts"] == 1
    assert body["id"] == "appt-1"
    assert pm.created[0]["reason"] == "follow-up"


def test_book_conflict_is_409(client, pm):
    pm.add("09:00", "17:00")

    resp = client.post("/appointments/", json={"start": at("10:00").isoformat(), "region": "CA"})

    assert resp.status_code == 409


def test_upstream_write_failure_is_502(client, pm):
    pm.create_errors = [ExternalWriteError("rejected", status_code=422)]

    resp = client.post("/appointments/", json={"start": at("10:00").isoformat(), "region": "CA"})

    assert resp.status_code == 502


def test_cancel_and_reschedule(client, pm):
    created = client.post("/appointments/", json={"start": at("10:00").isoformat(), "region": "CA"}).json()

    resp = client.post(f"/appointments/{created['id']}/reschedule", json={
        "start": at("15:00").isoformat(),
        "region": "CA",
        "original_start": at("10:00").isoformat(),
    })
    assert resp.status_code == 200
    assert resp.json()["status"] == "rescheduled"
    assert resp.json()["degraded"] is False

    new_id = resp.json()["appointment"]["id"]
    resp = client.delete(f"/appointments/{new_id}", params={"provider_id": "prov-1"})
    assert resp.status_code == 200
    assert pm.cancelled == [created["id"], new_id]


def test_admin_endpoints_require_key(client):
    assert client.get("/availability/settings").status_code == 403
    assert client.get("/availability/settings", headers={"X-Admin-Api-Key": "wrong"}).status_code == 403
    assert client.get("/availability/settings", headers=ADMIN).status_code == 200


def test_admin_block_date_invalidates_availability(client):
    params = {"from_date": "2024-06-10", "to_date": "2024-06-10"}
    assert client.get("/availability/CA", params=params).json()["meta"]["total"] == 16

    resp = client.post("/availability/settings/blocked-dates", json={"date": "2024-06-10"}, headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["settings"]["blocked_dates"] == ["2024-06-10"]
    assert resp.json()["invalidated_keys"] == 1

    body = client.get("/availability/CA", params=params).json()
    assert body["meta"]["total"] == 0
    assert body["cached"] is False


def test_admin_invalid_settings_is_bad_request(client):
    resp = client.patch("/availability/settings", json={"timezone": "Nowhere/Special"}, headers=ADMIN)
    assert resp.status_code == 400


def test_admin_business_hours(client):
    resp = client.put(
        "/availability/settings/hours/saturday",
        json={"start": "10:00", "end": "12:00", "enabled": True},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    assert resp.json()["settings"]["business_hours"]["saturday"]["enabled"] is True


def test_unreachable_upstream_is_503(client, pm):
    # both attempts of the retried create
    pm.create_errors = [ExternalWriteError("connection refused", transient=True) for _ in range(2)]
    assert client.post("/appointments/", json={"start": at("10:00").isoformat(), "region": "CA"}).status_code == 503

    pm.query_error = transient_query_error()
    assert client.post("/appointments/", json={"start": at("11:00").isoformat(), "region": "CA"}).status_code == 503
