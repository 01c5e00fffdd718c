# rm_core/ambulances/tests/test_tracking.py
import pytest
from django.core.cache.backends.locmem import LocMemCache

from rm_core.ambulances.models import Ambulance, AmbulanceLocation
from rm_core.ambulances.selectors import nearby_available
from rm_core.ambulances.services import AmbulanceService, DispatchService
from rm_core.ambulances.tracking import RouteProgressStore, compute_progress, progress_key
from rm_core.common.results import ErrorKind

pytestmark = pytest.mark.django_db


@pytest.fixture
def store():
    return RouteProgressStore(LocMemCache("route-progress-test", {}), ttl_seconds=60)


@pytest.fixture
def ambulance(tenant, facility):
    return Ambulance.objects.create(tenant_id=tenant.id, facility_id=facility.id, vehicle_number="AMB-7")


def test_compute_progress_clamps():
    assert compute_progress(total_distance_km=10, remaining_km=4)["progress_percentage"] == 60.0
    assert compute_progress(total_distance_km=10, remaining_km=25)["progress_percentage"] == 0.0
    assert compute_progress(total_distance_km=0, remaining_km=0)["progress_percentage"] == 0.0


def test_location_ping_moves_ambulance(crew_caller, ambulance):
    r = AmbulanceService.update_location(
        caller=crew_caller, ambulance_id=ambulance.id, latitude=12.95, longitude=77.61, speed=42, heading=180
    )
    assert r.ok, r.error
    ambulance.refresh_from_db()
    assert float(ambulance.current_latitude) == pytest.approx(12.95)
    assert ambulance.last_location_at is not None
    assert AmbulanceLocation.objects.filter(ambulance=ambulance).count() == 1


@pytest.mark.parametrize(
    "fields,bad",
    [
        ({"latitude": 91, "longitude": 10}, "lat"),
        ({"latitude": 10, "longitude": -181}, "lng"),
        ({"latitude": 10, "longitude": 10, "heading": 400}, "heading"),
        ({"latitude": 10, "longitude": 10, "speed": -1}, "speed"),
    ],
)
def test_location_validation(crew_caller, ambulance, fields, bad):
    r = AmbulanceService.update_location(caller=crew_caller, ambulance_id=ambulance.id, **fields)
    assert r.error.kind == ErrorKind.VALIDATION
    assert bad in r.error.details


def test_receptionist_cannot_track(receptionist_caller, ambulance):
    r = AmbulanceService.update_location(caller=receptionist_caller, ambulance_id=ambulance.id, latitude=1, longitude=1)
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_ping_during_dispatch_updates_progress(dispatcher_caller, crew_caller, crew, ambulance, store):
    dispatch = DispatchService.create_dispatch(
        caller=dispatcher_caller,
        ambulance_id=ambulance.id,
        crew_ids=[crew.id],
        pickup_latitude=12.90,
        pickup_longitude=77.60,
        destination_latitude=13.00,
        destination_longitude=77.60,
    ).value

    r = AmbulanceService.update_location(
        caller=crew_caller, ambulance_id=ambulance.id, latitude=12.95, longitude=77.60, store=store
    )
    assert r.value.dispatch_id == dispatch.id

    progress = store.get(dispatch.id)
    assert progress is not None
    assert progress["progress_percentage"] == pytest.approx(50.0, abs=1.0)
    assert store.cache.get(progress_key(dispatch.id)) == progress


def test_progress_cleared_when_dispatch_ends(dispatcher_caller, ambulance, store):
    dispatch = DispatchService.create_dispatch(
        caller=dispatcher_caller,
        ambulance_id=ambulance.id,
        pickup_latitude=12.90,
        pickup_longitude=77.60,
        destination_latitude=13.00,
        destination_longitude=77.60,
    ).value
    store.put(dispatch.id, compute_progress(total_distance_km=11, remaining_km=5))

    r = DispatchService._transition(
        caller=dispatcher_caller,
        dispatch_id=dispatch.id,
        target="cancelled",
        action="cancel",
        notes="stood down",
        store=store,
    )
    assert r.ok
    assert store.get(dispatch.id) is None


def test_nearby_orders_by_distance(tenant, facility):
    near = Ambulance.objects.create(
        tenant_id=tenant.id, facility_id=facility.id, vehicle_number="N-1",
        current_latitude="12.971000", current_longitude="77.594000",
    )
    far = Ambulance.objects.create(
        tenant_id=tenant.id, facility_id=facility.id, vehicle_number="F-1",
        current_latitude="13.050000", current_longitude="77.594000",
    )
    Ambulance.objects.create(
        tenant_id=tenant.id, facility_id=facility.id, vehicle_number="B-1", status="maintenance",
        current_latitude="12.971000", current_longitude="77.594000",
    )
    Ambulance.objects.create(tenant_id=tenant.id, facility_id=facility.id, vehicle_number="U-1")

    found = nearby_available(tenant_id=tenant.id, facility_id=facility.id, lat=12.9716, lng=77.5946, radius_km=20)
    assert [a.id for a, _ in found] == [near.id, far.id]

    tight = nearby_available(tenant_id=tenant.id, facility_id=facility.id, lat=12.9716, lng=77.5946, radius_km=1)
    assert [a.id for a, _ in tight] == [near.id]
