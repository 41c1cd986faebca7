import pytest

from conftest import new_request
from resq import config


def _create(client, headers=None, **overrides):
    response = client.post("/requests/", json=new_request(**overrides), headers=headers or {})
    assert response.status_code == 200, response.text
    return response.json()


def _advance(client, request_id, status, headers, **extra):
    return client.patch(f"/requests/{request_id}/status", json={"status": status, **extra}, headers=headers)


def test_health(client):
    assert client.get("/").json() == {"status": "ok", "service": "resq"}


# ────────────────────────────── REQUESTS ──────────────────────────────

def test_create_and_fetch(client):
    created = _create(client, phone="(555) 123-4567")
    assert created["status"] == "pending"
    assert created["phone"] == "555-123-4567"
    assert created["mechanic_id"] is None
    fetched = client.get(f"/requests/{created['id']}").json()
    assert fetched == created


def test_create_validation_error(client):
    response = client.post("/requests/", json=new_request(location="abc"))
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"
    assert response.json()["field"] == "location"


def test_create_with_preselected_mechanic(client):
    created = _create(client, mechanic_id="mech-002")
    assert created["status"] == "matched"
    assert created["mechanic_id"] == "mech-002"


def test_unknown_request(client):
    response = client.get("/requests/req-missing")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_status_updates_need_staff(client, customer_headers, mechanic_headers):
    request_id = _create(client)["id"]
    assert _advance(client, request_id, "matched", {}, mechanic_id="mech-001").status_code == 401
    assert _advance(client, request_id, "matched", customer_headers, mechanic_id="mech-001").status_code == 403
    response = _advance(client, request_id, "matched", mechanic_headers, mechanic_id="mech-001")
    assert response.status_code == 200
    assert response.json()["estimated_arrival_time"] is None


def test_invalid_transition(client, mechanic_headers):
    request_id = _create(client)["id"]
    response = _advance(client, request_id, "en_route", mechanic_headers)
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "invalid_transition"
    assert body["current"] == "pending"
    assert body["requested"] == "en_route"
    assert client.get(f"/requests/{request_id}").json()["status"] == "pending"


def test_cancel_twice(client):
    request_id = _create(client)["id"]
    assert client.post(f"/requests/{request_id}/cancel").json()["status"] == "cancelled"
    response = client.post(f"/requests/{request_id}/cancel")
    assert response.status_code == 409
    assert response.json()["error"] == "already_terminal"


def test_only_owner_cancels(client, customer_headers, mechanic_headers):
    request_id = _create(client, headers=customer_headers)["id"]
    assert client.post(f"/requests/{request_id}/cancel").status_code == 403
    assert client.post(f"/requests/{request_id}/cancel", headers=customer_headers).status_code == 200


def test_full_lifecycle_and_review(client, mechanic_headers):
    request_id = _create(client)["id"]
    _advance(client, request_id, "matched", mechanic_headers, mechanic_id="mech-001", estimated_arrival_minutes=15)
    for status in ("en_route", "arrived", "completed"):
        assert _advance(client, request_id, status, mechanic_headers).status_code == 200

    response = client.post(f"/requests/{request_id}/review", json={"rating": 5, "review": "great"})
    assert response.status_code == 200
    assert response.json()["rating"] == 5
    assert response.json()["review"] == "great"

    messages = [n["status"] for n in client.get(f"/requests/{request_id}/notifications").json()]
    assert messages == ["matched", "en_route", "arrived", "completed"]


def test_review_rejected_before_completion(client, mechanic_headers):
    request_id = _create(client)["id"]
    _advance(client, request_id, "matched", mechanic_headers, mechanic_id="mech-001")
    _advance(client, request_id, "en_route", mechanic_headers)
    response = client.post(f"/requests/{request_id}/review", json={"rating": 5, "review": "great"})
    assert response.status_code == 409


def test_review_rating_bounds(client):
    request_id = _create(client)["id"]
    assert client.post(f"/requests/{request_id}/review", json={"rating": 6}).status_code == 422


def test_sms_for_opted_in_customer(client, mechanic_headers, sms, services):
    request_id = _create(client, sms_opt_in=True)["id"]
    _advance(client, request_id, "matched", mechanic_headers, mechanic_id="mech-001")
    services.bridge.drain()
    assert sms.sent == [("555-123-4567", "ResQ Auto: A mechanic has been assigned to your request")]


def test_staff_lists_requests(client, admin_headers, mechanic_headers, customer_headers):
    _create(client)
    assert client.get("/requests/").status_code == 401
    assert client.get("/requests/", headers=customer_headers).status_code == 403
    response = client.get("/requests/", params={"status": "pending"}, headers=admin_headers)
    assert len(response.json()) == 1
    response = client.get("/requests/", params={"status": "pending"}, headers=mechanic_headers)
    assert response.status_code == 200
    assert len(response.json()) == 1


def test_mechanic_accepts_request(client, mechanic_headers, admin_headers, customer_headers):
    request_id = _create(client)["id"]
    assert client.post(f"/requests/{request_id}/accept", headers=customer_headers).status_code == 403
    assert client.post(f"/requests/{request_id}/accept", headers=admin_headers).status_code == 403

    response = client.post(f"/requests/{request_id}/accept", headers=mechanic_headers)
    assert response.status_code == 200
    accepted = response.json()
    assert accepted["status"] == "matched"
    assert accepted["mechanic_id"] == "mech-001"
    assert accepted["estimated_arrival_time"] is not None

    again = client.post(f"/requests/{request_id}/accept", headers=mechanic_headers)
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_transition"


def test_accept_with_custom_eta(client, mechanic_headers):
    request_id = _create(client)["id"]
    response = client.post(
        f"/requests/{request_id}/accept", json={"estimated_arrival_minutes": 30}, headers=mechanic_headers
    )
    assert response.status_code == 200
    eta = response.json()["estimated_arrival_time"]
    assert eta.startswith("2024-05-01T12:30:00")


def test_emergency_form_can_be_switched_off(client, admin_headers):
    client.put("/admin/features/emergency-form", json={"enabled": False}, headers=admin_headers)
    response = client.post("/requests/", json=new_request())
    assert response.status_code == 503
    assert response.json()["error"] == "feature_disabled"


# ────────────────────────────── LIVE STATUS ──────────────────────────────

def test_status_stream(client, mechanic_headers, services):
    request_id = _create(client)["id"]
    with client.websocket_connect(f"/requests/{request_id}/events") as websocket:
        assert websocket.receive_json()["status"] == "pending"
        assert services.sequencer.is_watched(request_id)
        _advance(client, request_id, "matched", mechanic_headers, mechanic_id="mech-001")
        assert websocket.receive_json()["status"] == "matched"
        client.post(f"/requests/{request_id}/cancel")
        last = websocket.receive_json()
        assert last["status"] == "cancelled"
        assert last["mechanic_id"] is None
    assert not services.sequencer.is_watched(request_id)


def test_status_stream_unknown_request(client):
    with client.websocket_connect("/requests/req-missing/events") as websocket:
        assert websocket.receive_json()["error"] == "not_found"


def test_leaving_the_stream_unsubscribes(client, services):
    request_id = _create(client)["id"]
    with client.websocket_connect(f"/requests/{request_id}/events") as websocket:
        websocket.receive_json()
    assert not services.sequencer.is_watched(request_id)


# ────────────────────────────── MECHANICS ──────────────────────────────

def test_filter_mechanics(client, services):
    response = client.get("/mechanics/", params={"status": "available"})
    assert [m["id"] for m in response.json()] == ["mech-001", "mech-003"]
    assert services.analytics.recent()[-1].action == "Apply Filters"


def test_filter_by_specialty_and_distance(client):
    params = [("specialty", "Towing"), ("specialty", "Electrical"), ("lon", -74.006), ("lat", 40.7128)]
    response = client.get("/mechanics/", params=params)
    mechanics = response.json()
    assert [m["id"] for m in mechanics] == ["mech-001", "mech-002"]
    assert all(m["distance"] is not None for m in mechanics)


def test_bad_filter(client, services):
    response = client.get("/mechanics/", params={"status": "sleeping"})
    assert response.status_code == 422
    assert response.json()["field"] == "status"
    event = services.analytics.recent()[-1]
    assert (event.category, event.action, event.label) == ("Map", "Filter Error", "status")


def test_specialties(client):
    assert client.get("/mechanics/specialties").json() == [
        "Emergency Repair", "Towing", "Electrical", "Diagnostics", "Tire Service", "Battery Jump",
    ]


def test_select_mechanic(client):
    assert client.post("/mechanics/mech-003/select").json()["name"] == "Mike Wilson"
    assert client.post("/mechanics/mech-999/select").status_code == 404


def test_mechanic_list_can_be_switched_off(client, admin_headers):
    client.put("/admin/features/mechanic-list", json={"enabled": False}, headers=admin_headers)
    assert client.get("/mechanics/").status_code == 503


def test_mechanic_toggles_own_availability(client, mechanic_headers):
    response = client.patch("/mechanics/mech-001/status", json={"status": "busy"}, headers=mechanic_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "busy"
    available = client.get("/mechanics/", params={"status": "available"}).json()
    assert [m["id"] for m in available] == ["mech-003"]

    response = client.patch("/mechanics/mech-003/status", json={"status": "busy"}, headers=mechanic_headers)
    assert response.status_code == 403
    response = client.patch("/mechanics/mech-001/status", json={"status": "asleep"}, headers=mechanic_headers)
    assert response.status_code == 422


def test_admin_sets_any_availability(client, admin_headers, customer_headers):
    body = {"status": "available"}
    assert client.patch("/mechanics/mech-002/status", json=body, headers=customer_headers).status_code == 403
    response = client.patch("/mechanics/mech-002/status", json=body, headers=admin_headers)
    assert response.json()["status"] == "available"
    assert client.patch("/mechanics/mech-999/status", json=body, headers=admin_headers).status_code == 404


def test_availability_change_reaches_location_feed(client, mechanic_headers):
    with client.websocket_connect("/mechanics/locations?mechanic_id=mech-001") as websocket:
        assert websocket.receive_json()["status"] == "available"
        client.patch("/mechanics/mech-001/status", json={"status": "busy"}, headers=mechanic_headers)
        assert websocket.receive_json()["status"] == "busy"


def test_location_feed(client, mechanic_headers):
    with client.websocket_connect("/mechanics/locations?mechanic_id=mech-001") as websocket:
        assert websocket.receive_json()["current_location"] == [-74.005, 40.7125]
        response = client.post(
            "/mechanics/mech-001/location", json={"coordinates": [-74.0, 40.72]}, headers=mechanic_headers
        )
        assert response.status_code == 200
        assert websocket.receive_json()["current_location"] == [-74.0, 40.72]


# ────────────────────────────── MAP ──────────────────────────────

def test_map_without_credentials_is_retryable(client, monkeypatch, services):
    monkeypatch.setattr(config, "MAPBOX_ACCESS_TOKEN", None)
    view = client.get("/map/").json()
    event = services.analytics.recent()[-1]
    assert (event.category, event.action, event.label) == ("Map", "Provider Error", "mapbox")
    assert view["provider"] == "mapbox"
    assert view["state"] == "error"
    assert view["retryable"]
    response = client.post("/map/markers/mech-001/click")
    assert response.status_code == 503
    assert response.json()["error"] == "provider_init_error"


def test_map_uses_default_location(client, monkeypatch):
    monkeypatch.setattr(config, "MAPBOX_ACCESS_TOKEN", "pk.test")
    view = client.get("/map/").json()
    assert view["state"] == "ready"
    assert view["used_default_location"]
    assert view["center"] == list(config.DEFAULT_COORDINATES)
    assert [m["id"] for m in view["mechanics"]] == ["mech-001", "mech-002", "mech-003"]


def test_map_with_leaflet_and_filters(client, admin_headers):
    client.put("/admin/features/map-leaflet", json={"enabled": True}, headers=admin_headers)
    view = client.get("/map/", params={"lon": -74.001, "lat": 40.715, "status": "available"}).json()
    assert view["provider"] == "leaflet"
    assert view["center"] == [-74.001, 40.715]
    assert [m["id"] for m in view["scene"]["markers"]] == ["user", "mech-001", "mech-003"]


def test_marker_click_selects(client, monkeypatch, services):
    monkeypatch.setattr(config, "MAPBOX_ACCESS_TOKEN", "pk.test")
    response = client.post("/map/markers/mech-002/click")
    assert response.json()["id"] == "mech-002"
    assert services.analytics.recent()[-1].action == "Select Mechanic"
    assert client.post("/map/markers/mech-002/click", params={"status": "available"}).status_code == 404


# ────────────────────────────── ADMIN ──────────────────────────────

def test_features_endpoint(client, admin_headers, customer_headers):
    assert client.get("/admin/features").json()["map_provider"] == "mapbox"
    assert client.put("/admin/features/map-google", json={"enabled": True}, headers=customer_headers).status_code == 403
    response = client.put("/admin/features/map-google", json={"enabled": True}, headers=admin_headers)
    assert response.json()["map_provider"] == "google"
    assert not response.json()["features"]["map-mapbox"]
    assert client.put("/admin/features/teleport", json={"enabled": True}, headers=admin_headers).status_code == 404


def test_admin_upserts_mechanic(client, admin_headers):
    body = {
        "name": "Ana Lopez",
        "phone": "555-000-1111",
        "rating": 4.6,
        "specialties": ["Lockout"],
        "current_location": [-73.99, 40.72],
    }
    assert client.put("/admin/mechanics/mech-004", json=body, headers=admin_headers).status_code == 200
    assert "Lockout" in client.get("/mechanics/specialties").json()


def test_admin_analytics(client, admin_headers):
    _create(client)
    events = client.get("/admin/analytics", headers=admin_headers).json()
    assert ("Form", "Submission Attempt") in [(e["category"], e["action"]) for e in events]


@pytest.mark.parametrize("path", ["/admin/analytics", "/requests/"])
def test_invalid_token(client, path):
    response = client.get(path, headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
