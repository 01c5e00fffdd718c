# rm_core/ambulances/tests/test_dispatch_api.py
import pytest

from rm_core.ambulances.models import Ambulance
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


@pytest.fixture
def ambulance(tenant, facility):
    return Ambulance.objects.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        vehicle_number="KA-05-9999",
        current_latitude="12.975000",
        current_longitude="77.590000",
    )


@pytest.fixture
def dispatcher_client(client_for, dispatcher):
    return client_for(dispatcher)


def _dispatch(c, tenant, facility, ambulance, **extra):
    payload = {
        "ambulance_id": str(ambulance.id),
        "pickup_latitude": 12.9716,
        "pickup_longitude": 77.5946,
        "destination_latitude": 12.93,
        "destination_longitude": 77.62,
        "priority": "high",
        **extra,
    }
    return c.post("/api/v1/dispatches/", payload, format="json", **scoped(tenant, facility))


def test_create_and_cancel(dispatcher_client, tenant, facility, ambulance):
    res = _dispatch(dispatcher_client, tenant, facility, ambulance)
    assert res.status_code == 201, res.data
    did = res.data["id"]
    assert res.data["status"] == "dispatched"

    amb = dispatcher_client.get(f"/api/v1/ambulances/{ambulance.id}/", **scoped(tenant, facility))
    assert amb.data["status"] == "dispatched"

    cancel = dispatcher_client.post(
        f"/api/v1/dispatches/{did}/cancel/", {"reason": "weather"}, format="json", **scoped(tenant, facility)
    )
    assert cancel.status_code == 200, cancel.data
    assert cancel.data["status"] == "cancelled"

    amb = dispatcher_client.get(f"/api/v1/ambulances/{ambulance.id}/", **scoped(tenant, facility))
    assert amb.data["status"] == "available"


def test_skipping_a_step_is_422(dispatcher_client, tenant, facility, ambulance):
    did = _dispatch(dispatcher_client, tenant, facility, ambulance).data["id"]
    res = dispatcher_client.post(f"/api/v1/dispatches/{did}/at-pickup/", {}, format="json", **scoped(tenant, facility))
    assert res.status_code == 422
    assert res.data["error"]["details"]["current_status"] == "dispatched"


def test_timeline_lists_every_step(dispatcher_client, tenant, facility, ambulance):
    did = _dispatch(dispatcher_client, tenant, facility, ambulance).data["id"]
    for path in ("acknowledge", "en-route-pickup", "at-pickup"):
        r = dispatcher_client.post(f"/api/v1/dispatches/{did}/{path}/", {}, format="json", **scoped(tenant, facility))
        assert r.status_code == 200, (path, r.data)

    timeline = dispatcher_client.get(f"/api/v1/dispatches/{did}/timeline/", **scoped(tenant, facility))
    assert timeline.status_code == 200
    assert [u["to_status"] for u in timeline.data] == ["dispatched", "acknowledged", "en_route_pickup", "at_pickup"]


def test_progress_from_last_known_position(dispatcher_client, tenant, facility, ambulance):
    did = _dispatch(dispatcher_client, tenant, facility, ambulance).data["id"]
    res = dispatcher_client.get(f"/api/v1/dispatches/{did}/progress/", **scoped(tenant, facility))
    assert res.status_code == 200, res.data
    assert 0 <= res.data["progress_percentage"] <= 100


def test_location_endpoint(client_for, crew, tenant, facility, ambulance):
    c = client_for(crew)
    res = c.post(
        f"/api/v1/ambulances/{ambulance.id}/location/",
        {"latitude": 12.96, "longitude": 77.60, "speed": 30},
        format="json",
        **scoped(tenant, facility),
    )
    assert res.status_code == 201, res.data

    bad = c.post(
        f"/api/v1/ambulances/{ambulance.id}/location/",
        {"latitude": 120, "longitude": 77.60},
        format="json",
        **scoped(tenant, facility),
    )
    assert bad.status_code == 400


def test_nearby_endpoint(dispatcher_client, tenant, facility, ambulance):
    res = dispatcher_client.get(
        "/api/v1/ambulances/nearby/?lat=12.9716&lng=77.5946&radius_km=5", **scoped(tenant, facility)
    )
    assert res.status_code == 200
    assert len(res.data) == 1
    assert res.data[0]["distance_km"] < 5


def test_analytics_counts(dispatcher_client, tenant, facility, ambulance):
    did = _dispatch(dispatcher_client, tenant, facility, ambulance).data["id"]
    dispatcher_client.post(f"/api/v1/dispatches/{did}/cancel/", {"reason": "x"}, format="json", **scoped(tenant, facility))

    res = dispatcher_client.get("/api/v1/dispatches/analytics/", **scoped(tenant, facility))
    assert res.status_code == 200
    assert res.data["total"] == 1
    assert res.data["cancelled"] == 1
    assert res.data["by_priority"]["high"] == 1


def test_ambulance_with_active_dispatch_cannot_be_deleted(dispatcher_client, tenant, facility, ambulance):
    _dispatch(dispatcher_client, tenant, facility, ambulance)
    res = dispatcher_client.delete(f"/api/v1/ambulances/{ambulance.id}/", **scoped(tenant, facility))
    assert res.status_code == 422


def test_decommission_locks_row_and_blocks_new_dispatch(monkeypatch, dispatcher_client, tenant, facility, ambulance):
    locked = []
    original = Ambulance.objects.select_for_update

    def select_for_update(*args, **kwargs):
        locked.append(True)
        return original(*args, **kwargs)

    monkeypatch.setattr(Ambulance.objects, "select_for_update", select_for_update)

    res = dispatcher_client.delete(f"/api/v1/ambulances/{ambulance.id}/", **scoped(tenant, facility))
    assert res.status_code == 204
    assert locked

    ambulance.refresh_from_db()
    assert ambulance.is_active is False

    late = _dispatch(dispatcher_client, tenant, facility, ambulance)
    assert late.status_code == 400
    assert late.json()["error"]["code"] == "validation_error"


def test_receptionist_cannot_dispatch(client_for, receptionist, tenant, facility, ambulance):
    res = _dispatch(client_for(receptionist), tenant, facility, ambulance)
    assert res.status_code == 403
