# rm_core/referrals/tests/test_referral_lifecycle.py
import pytest

from rm_core.audit.models import AuditEvent
from rm_core.beds.models import Bed, BedReservation, ReservationStatus
from rm_core.common.permissions import Caller, Role
from rm_core.common.results import ErrorKind
from rm_core.referrals.models import ReferralStatus, Urgency
from rm_core.referrals.services import ReferralService

pytestmark = pytest.mark.django_db


@pytest.fixture
def pending(doctor_caller, patient, receiving_facility):
    r = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        urgency=Urgency.EMERGENCY,
        reason="Suspected STEMI, needs cath lab",
    )
    assert r.ok, r.error
    return r.value


def test_create_sets_number_deadline_and_audit(pending, doctor):
    assert pending.status == ReferralStatus.PENDING
    assert pending.referral_number.startswith("REF")
    assert pending.referring_doctor_id == doctor.id
    # emergency window is 30 minutes
    assert (pending.response_deadline - pending.referred_at).total_seconds() == 30 * 60
    assert AuditEvent.objects.filter(entity_id=pending.id, event_code="REFERRAL_CREATED").exists()


def test_create_to_own_facility_is_rejected(doctor_caller, patient, facility):
    r = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=facility.id,
        reason="x",
    )
    assert not r.ok
    assert r.error.kind == ErrorKind.VALIDATION
    assert "receiving_facility_id" in r.error.details


def test_create_requires_facility_accepting_referrals(doctor_caller, patient, receiving_facility):
    receiving_facility.accepts_referrals = False
    receiving_facility.save(update_fields=["accepts_referrals"])

    r = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        reason="x",
    )
    assert r.error.kind == ErrorKind.VALIDATION


def test_create_denied_for_crew(crew_caller, patient, receiving_facility):
    r = ReferralService.create(
        caller=crew_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        reason="x",
    )
    assert r.error.kind == ErrorKind.PERMISSION_DENIED
    assert AuditEvent.objects.filter(event_code="SECURITY_PERMISSION_DENIED").exists()


def test_accept_then_complete_with_outcome(pending, receiving_caller, receiving_doctor):
    accepted = ReferralService.accept(caller=receiving_caller, referral_id=pending.id, notes="Cath lab ready")
    assert accepted.ok, accepted.error
    assert accepted.value.status == ReferralStatus.ACCEPTED
    assert accepted.value.receiving_doctor_id == receiving_doctor.id
    assert accepted.value.accepted_at is not None

    done = ReferralService.complete(
        caller=receiving_caller,
        referral_id=pending.id,
        outcome={"disposition": "admitted", "procedure": "PCI"},
    )
    assert done.ok, done.error
    assert done.value.status == ReferralStatus.COMPLETED
    assert done.value.completed_at is not None
    assert done.value.outcome["disposition"] == "admitted"


def test_second_accept_sees_current_status(pending, receiving_caller):
    first = ReferralService.accept(caller=receiving_caller, referral_id=pending.id)
    second = ReferralService.accept(caller=receiving_caller, referral_id=pending.id)

    assert first.ok
    assert not second.ok
    assert second.error.kind == ErrorKind.INVALID_TRANSITION
    assert second.error.current_status == ReferralStatus.ACCEPTED


def test_referring_side_cannot_accept(pending, doctor_caller):
    r = ReferralService.accept(caller=doctor_caller, referral_id=pending.id)
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_other_tenant_cannot_see_referral(pending, other_tenant, other_facility):
    outsider = Caller.for_roles(
        user_id=999, tenant_id=other_tenant.id, facility_id=other_facility.id, roles=[Role.ADMIN]
    )
    r = ReferralService.cancel(caller=outsider, referral_id=pending.id, reason="nope")
    assert r.error.kind == ErrorKind.NOT_FOUND


def test_reject_requires_reason_and_is_terminal(pending, receiving_caller, doctor_caller):
    blank = ReferralService.reject(caller=receiving_caller, referral_id=pending.id, reason="  ")
    assert blank.error.kind == ErrorKind.VALIDATION

    r = ReferralService.reject(caller=receiving_caller, referral_id=pending.id, reason="No ICU beds")
    assert r.ok
    assert r.value.rejection_reason == "No ICU beds"

    again = ReferralService.cancel(caller=doctor_caller, referral_id=pending.id, reason="late")
    assert again.error.kind == ErrorKind.INVALID_TRANSITION
    assert again.error.current_status == ReferralStatus.REJECTED


def test_progress_requires_accepted(pending, doctor_caller, receiving_caller):
    early = ReferralService.mark_in_transit(caller=doctor_caller, referral_id=pending.id)
    assert early.error.kind == ErrorKind.INVALID_TRANSITION

    assert ReferralService.accept(caller=receiving_caller, referral_id=pending.id).ok
    assert ReferralService.mark_in_transit(caller=doctor_caller, referral_id=pending.id).value.status == "in_transit"
    arrived = ReferralService.mark_arrived(caller=receiving_caller, referral_id=pending.id)
    assert arrived.value.status == ReferralStatus.ARRIVED
    assert arrived.value.arrived_at is not None


def test_accept_with_bed_holds_it(pending, receiving_caller, tenant, receiving_facility):
    bed = Bed.objects.create(tenant_id=tenant.id, facility_id=receiving_facility.id, bed_number="ICU-1")

    r = ReferralService.accept(caller=receiving_caller, referral_id=pending.id, bed_id=bed.id)
    assert r.ok, r.error

    res = BedReservation.objects.get(referral_id=pending.id)
    assert res.status == ReservationStatus.ACTIVE
    assert res.bed_id == bed.id


def test_accept_fails_whole_when_bed_is_taken(pending, receiving_caller, tenant, receiving_facility):
    bed = Bed.objects.create(
        tenant_id=tenant.id, facility_id=receiving_facility.id, bed_number="ICU-2", status="occupied"
    )

    r = ReferralService.accept(caller=receiving_caller, referral_id=pending.id, bed_id=bed.id)
    assert r.error.kind == ErrorKind.INVALID_TRANSITION

    pending.refresh_from_db()
    assert pending.status == ReferralStatus.PENDING


def test_cancel_releases_bed_reservation(pending, receiving_caller, doctor_caller, tenant, receiving_facility):
    bed = Bed.objects.create(tenant_id=tenant.id, facility_id=receiving_facility.id, bed_number="W-7")
    assert ReferralService.accept(caller=receiving_caller, referral_id=pending.id, bed_id=bed.id).ok

    r = ReferralService.cancel(caller=doctor_caller, referral_id=pending.id, reason="Patient stabilised")
    assert r.ok, r.error
    assert r.value.status == ReferralStatus.CANCELLED

    res = BedReservation.objects.get(referral_id=pending.id)
    assert res.status == ReservationStatus.CANCELLED
    assert "Patient stabilised" in res.cancellation_reason


def test_receiving_side_cannot_cancel(pending, receiving_caller):
    r = ReferralService.cancel(caller=receiving_caller, referral_id=pending.id, reason="x")
    assert r.error.kind == ErrorKind.PERMISSION_DENIED
