# rm_core/ambulances/tests/test_dispatch_lifecycle.py
import pytest

from rm_core.ambulances.models import Ambulance, AmbulanceStatus, DispatchStatus, DispatchStatusUpdate
from rm_core.ambulances.services import AmbulanceService, DispatchService
from rm_core.common.results import ErrorKind
from rm_core.common.routing import RouteEstimationError
from rm_core.referrals.models import ReferralStatus
from rm_core.referrals.services import ReferralService

pytestmark = pytest.mark.django_db

PICKUP = {"pickup_latitude": 12.9716, "pickup_longitude": 77.5946, "pickup_address": "MG Road"}
DEST = {"destination_latitude": 12.9300, "destination_longitude": 77.6200, "destination_address": "General Hospital"}


class BrokenEstimator:
    def estimate_route(self, origin, destination):
        raise RouteEstimationError("provider down")


@pytest.fixture
def ambulance(tenant, facility):
    return Ambulance.objects.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        vehicle_number="KA-01-AB-1234",
        call_sign="ALS-1",
        current_latitude="12.980000",
        current_longitude="77.600000",
    )


@pytest.fixture
def dispatch(dispatcher_caller, ambulance, crew):
    r = DispatchService.create_dispatch(
        caller=dispatcher_caller, ambulance_id=ambulance.id, crew_ids=[crew.id], **PICKUP, **DEST
    )
    assert r.ok, r.error
    return r.value


def _ambulance_status(ambulance):
    ambulance.refresh_from_db()
    return ambulance.status


def test_create_marks_ambulance_dispatched(dispatch, ambulance):
    assert dispatch.status == DispatchStatus.DISPATCHED
    assert dispatch.dispatch_number.startswith("DISP-")
    assert dispatch.estimated_distance_km is not None
    assert dispatch.eta_pickup is not None
    assert _ambulance_status(ambulance) == AmbulanceStatus.DISPATCHED
    assert DispatchStatusUpdate.objects.filter(dispatch=dispatch, to_status=DispatchStatus.DISPATCHED).exists()


def test_cancel_before_any_step_frees_ambulance(dispatch, dispatcher_caller, ambulance):
    r = DispatchService.cancel(caller=dispatcher_caller, dispatch_id=dispatch.id, reason="weather")
    assert r.ok, r.error
    assert r.value.status == DispatchStatus.CANCELLED
    assert r.value.cancellation_reason == "weather"
    assert _ambulance_status(ambulance) == AmbulanceStatus.AVAILABLE


def test_cancel_requires_reason(dispatch, dispatcher_caller):
    r = DispatchService.cancel(caller=dispatcher_caller, dispatch_id=dispatch.id, reason=" ")
    assert r.error.kind == ErrorKind.VALIDATION


def test_full_sequence_keeps_ambulance_in_step(dispatch, crew_caller, ambulance):
    steps = [
        (DispatchService.acknowledge, AmbulanceStatus.DISPATCHED),
        (DispatchService.start_en_route_to_pickup, AmbulanceStatus.DISPATCHED),
        (DispatchService.arrive_at_pickup, AmbulanceStatus.DISPATCHED),
        (DispatchService.load_patient, AmbulanceStatus.ON_TRIP),
        (DispatchService.start_en_route_to_destination, AmbulanceStatus.ON_TRIP),
        (DispatchService.arrive_at_destination, AmbulanceStatus.ON_TRIP),
    ]
    for step, expected in steps:
        r = step(caller=crew_caller, dispatch_id=dispatch.id)
        assert r.ok, (step.__name__, r.error)
        assert _ambulance_status(ambulance) == expected

    delivered = DispatchService.deliver_patient(
        caller=crew_caller, dispatch_id=dispatch.id, handover_notes="Stable", receiving_staff="Dr. Rao"
    )
    assert delivered.value.status == DispatchStatus.PATIENT_DELIVERED
    assert delivered.value.receiving_staff == "Dr. Rao"

    done = DispatchService.complete(caller=crew_caller, dispatch_id=dispatch.id, distance_km=7.4, fuel_consumed=1.2)
    assert done.ok, done.error
    assert done.value.completed_at is not None
    assert done.value.arrived_pickup_at is not None
    assert _ambulance_status(ambulance) == AmbulanceStatus.AVAILABLE

    assert dispatch.status_updates.count() == 9


def test_steps_cannot_be_skipped(dispatch, crew_caller):
    r = DispatchService.arrive_at_pickup(caller=crew_caller, dispatch_id=dispatch.id)
    assert r.error.kind == ErrorKind.INVALID_TRANSITION
    assert r.error.current_status == DispatchStatus.DISPATCHED


def test_terminal_dispatch_cannot_be_cancelled(dispatch, dispatcher_caller):
    assert DispatchService.cancel(caller=dispatcher_caller, dispatch_id=dispatch.id, reason="dup").ok
    again = DispatchService.cancel(caller=dispatcher_caller, dispatch_id=dispatch.id, reason="dup")
    assert again.error.kind == ErrorKind.INVALID_TRANSITION
    assert again.error.current_status == DispatchStatus.CANCELLED


def test_unassigned_crew_is_denied(dispatch, tenant, facility):
    from rm_core.common.permissions import Role
    from rm_core.iam.services.caller import resolve_caller
    from rm_core.tests.helpers import make_member

    stranger = make_member("crew2", tenant=tenant, facility=facility, roles=[Role.AMBULANCE_CREW])
    caller = resolve_caller(stranger, tenant_id=tenant.id, facility_id=facility.id)

    r = DispatchService.acknowledge(caller=caller, dispatch_id=dispatch.id)
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_crew_cannot_cancel(dispatch, crew_caller):
    r = DispatchService.cancel(caller=crew_caller, dispatch_id=dispatch.id, reason="x")
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_second_dispatch_for_busy_ambulance_fails(dispatch, dispatcher_caller, ambulance):
    r = DispatchService.create_dispatch(caller=dispatcher_caller, ambulance_id=ambulance.id, **PICKUP, **DEST)
    assert r.error.kind == ErrorKind.INVALID_TRANSITION
    assert r.error.current_status == AmbulanceStatus.DISPATCHED


def test_crew_must_hold_crew_role(dispatcher_caller, ambulance, doctor):
    r = DispatchService.create_dispatch(
        caller=dispatcher_caller, ambulance_id=ambulance.id, crew_ids=[doctor.id], **PICKUP, **DEST
    )
    assert r.error.kind == ErrorKind.VALIDATION
    assert "crew_ids" in r.error.details


def test_invalid_coordinates_rejected(dispatcher_caller, ambulance):
    r = DispatchService.create_dispatch(
        caller=dispatcher_caller,
        ambulance_id=ambulance.id,
        pickup_latitude=95,
        pickup_longitude=77.5,
        **DEST,
    )
    assert r.error.kind == ErrorKind.VALIDATION
    assert "pickup_latitude" in r.error.details


def test_estimator_failure_still_dispatches_with_warning(dispatcher_caller, ambulance):
    r = DispatchService.create_dispatch(
        caller=dispatcher_caller, ambulance_id=ambulance.id, estimator=BrokenEstimator(), **PICKUP, **DEST
    )
    assert r.ok
    assert r.value.eta_destination is None
    assert r.value.estimated_distance_km is None
    assert r.warnings


def test_doctor_cannot_dispatch(doctor_caller, ambulance):
    r = DispatchService.create_dispatch(caller=doctor_caller, ambulance_id=ambulance.id, **PICKUP, **DEST)
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_update_status_routes_to_step(dispatch, dispatcher_caller):
    r = DispatchService.update_status(caller=dispatcher_caller, dispatch_id=dispatch.id, status="acknowledged")
    assert r.value.status == DispatchStatus.ACKNOWLEDGED

    bad = DispatchService.update_status(caller=dispatcher_caller, dispatch_id=dispatch.id, status="dispatched")
    assert bad.error.kind == ErrorKind.VALIDATION

    cancelled = DispatchService.update_status(
        caller=dispatcher_caller, dispatch_id=dispatch.id, status="cancelled", notes="duplicate call"
    )
    assert cancelled.value.cancellation_reason == "duplicate call"


def test_referral_follows_its_dispatch(
    doctor_caller, receiving_caller, dispatcher_caller, crew_caller, crew, patient, receiving_facility, ambulance
):
    referral = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        urgency="urgent",
        reason="Transfer for dialysis",
    ).value
    assert ReferralService.accept(caller=receiving_caller, referral_id=referral.id).ok

    dispatch = DispatchService.create_dispatch(
        caller=dispatcher_caller,
        ambulance_id=ambulance.id,
        referral_id=referral.id,
        crew_ids=[crew.id],
        **PICKUP,
        **DEST,
    ).value

    for step in (
        DispatchService.acknowledge,
        DispatchService.start_en_route_to_pickup,
        DispatchService.arrive_at_pickup,
        DispatchService.load_patient,
    ):
        assert step(caller=crew_caller, dispatch_id=dispatch.id).ok

    referral.refresh_from_db()
    assert referral.status == ReferralStatus.IN_TRANSIT

    DispatchService.start_en_route_to_destination(caller=crew_caller, dispatch_id=dispatch.id)
    DispatchService.arrive_at_destination(caller=crew_caller, dispatch_id=dispatch.id)

    referral.refresh_from_db()
    assert referral.status == ReferralStatus.ARRIVED
    assert referral.arrived_at is not None


def test_dispatch_for_closed_referral_rejected(doctor_caller, dispatcher_caller, patient, receiving_facility, ambulance):
    referral = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        reason="x",
    ).value
    assert ReferralService.cancel(caller=doctor_caller, referral_id=referral.id, reason="not needed").ok

    r = DispatchService.create_dispatch(
        caller=dispatcher_caller, ambulance_id=ambulance.id, referral_id=referral.id, **PICKUP, **DEST
    )
    assert r.error.kind == ErrorKind.VALIDATION


def test_manual_status_refused_while_dispatched(dispatch, dispatcher_caller, ambulance):
    r = AmbulanceService.set_status(caller=dispatcher_caller, ambulance_id=ambulance.id, status="maintenance")
    assert r.error.kind == ErrorKind.INVALID_TRANSITION

    derived = AmbulanceService.set_status(caller=dispatcher_caller, ambulance_id=ambulance.id, status="on_trip")
    assert derived.error.kind == ErrorKind.VALIDATION


def test_manual_status_when_idle(dispatcher_caller, ambulance):
    r = AmbulanceService.set_status(
        caller=dispatcher_caller, ambulance_id=ambulance.id, status="maintenance", reason="oil change"
    )
    assert r.ok
    assert _ambulance_status(ambulance) == AmbulanceStatus.MAINTENANCE
