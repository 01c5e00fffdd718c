# rm_core/beds/tests/test_reservations.py
from datetime import timedelta

import pytest
from django.utils import timezone

from rm_core.beds.models import Bed, BedReservation, BedStatus, ReservationStatus
from rm_core.beds.selectors import available_beds, occupancy_summary
from rm_core.beds.services import BedService
from rm_core.common.results import ErrorKind

pytestmark = pytest.mark.django_db


@pytest.fixture
def bed(tenant, facility):
    return Bed.objects.create(tenant_id=tenant.id, facility_id=facility.id, bed_number="W1-01", ward="W1")


@pytest.fixture
def reservation(admin_caller, bed, patient):
    r = BedService.reserve(caller=admin_caller, bed_id=bed.id, patient_id=patient.id, priority="high")
    assert r.ok, r.error
    return r.value


def test_reserve_holds_bed(reservation, bed, tenant, facility):
    assert reservation.status == ReservationStatus.ACTIVE
    assert reservation.reserved_until > timezone.now()
    assert bed.is_reserved
    assert not available_beds(tenant_id=tenant.id, facility_id=facility.id).exists()
    assert occupancy_summary(tenant_id=tenant.id, facility_id=facility.id)["reserved"] == 1


def test_second_reservation_is_refused(reservation, admin_caller, bed, patient):
    r = BedService.reserve(caller=admin_caller, bed_id=bed.id, patient_id=patient.id)
    assert r.error.kind == ErrorKind.INVALID_TRANSITION
    assert r.error.current_status == "reserved"


def test_stale_reservation_is_replaced(admin_caller, bed, patient):
    stale = BedService.reserve(caller=admin_caller, bed_id=bed.id, patient_id=patient.id).value
    BedReservation.objects.filter(pk=stale.pk).update(reserved_until=timezone.now() - timedelta(minutes=1))

    fresh = BedService.reserve(caller=admin_caller, bed_id=bed.id, patient_id=patient.id)
    assert fresh.ok, fresh.error
    stale.refresh_from_db()
    assert stale.status == ReservationStatus.EXPIRED


def test_reserved_until_must_be_future(admin_caller, bed, patient):
    r = BedService.reserve(
        caller=admin_caller, bed_id=bed.id, patient_id=patient.id, reserved_until=timezone.now() - timedelta(hours=1)
    )
    assert r.error.kind == ErrorKind.VALIDATION


def test_confirm_occupies_bed(reservation, admin_caller, bed, patient):
    r = BedService.confirm_reservation(caller=admin_caller, reservation_id=reservation.id)
    assert r.ok, r.error
    bed.refresh_from_db()
    assert bed.status == BedStatus.OCCUPIED
    assert bed.current_patient_id == patient.id

    released = BedService.release_bed(caller=admin_caller, bed_id=bed.id)
    assert released.value.status == BedStatus.AVAILABLE
    assert released.value.current_patient_id is None


def test_cancel_frees_bed(reservation, admin_caller, bed):
    r = BedService.cancel_reservation(caller=admin_caller, reservation_id=reservation.id, reason="Patient diverted")
    assert r.value.status == ReservationStatus.CANCELLED
    assert not bed.is_reserved

    again = BedService.confirm_reservation(caller=admin_caller, reservation_id=reservation.id)
    assert again.error.kind == ErrorKind.INVALID_TRANSITION
    assert again.error.current_status == ReservationStatus.CANCELLED


def test_expire_sweeps_past_due(reservation):
    assert BedService.expire_reservations(now=timezone.now()) == 0
    assert BedService.expire_reservations(now=reservation.reserved_until + timedelta(seconds=1)) == 1

    reservation.refresh_from_db()
    assert reservation.status == ReservationStatus.EXPIRED
    assert reservation.expired_at is not None


def test_maintenance_round_trip(admin_caller, bed):
    assert BedService.set_maintenance(caller=admin_caller, bed_id=bed.id, notes="Broken rail").value.status == BedStatus.MAINTENANCE

    occupied = BedService.set_maintenance(caller=admin_caller, bed_id=bed.id)
    assert occupied.error.kind == ErrorKind.INVALID_TRANSITION

    assert BedService.clear_maintenance(caller=admin_caller, bed_id=bed.id).value.status == BedStatus.AVAILABLE


def test_reserved_bed_cannot_go_to_maintenance(reservation, admin_caller, bed):
    r = BedService.set_maintenance(caller=admin_caller, bed_id=bed.id)
    assert r.error.kind == ErrorKind.INVALID_TRANSITION
    assert r.error.current_status == "reserved"


def test_permissions(doctor_caller, receptionist_caller, bed, patient):
    assert BedService.reserve(caller=doctor_caller, bed_id=bed.id, patient_id=patient.id).ok
    assert BedService.set_maintenance(caller=doctor_caller, bed_id=bed.id).error.kind == ErrorKind.PERMISSION_DENIED
    assert (
        BedService.reserve(caller=receptionist_caller, bed_id=bed.id, patient_id=patient.id).error.kind
        == ErrorKind.PERMISSION_DENIED
    )
