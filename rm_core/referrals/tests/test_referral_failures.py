# rm_core/referrals/tests/test_referral_failures.py
import pytest
from django.db import IntegrityError, OperationalError

from rm_core.audit.models import AuditEvent
from rm_core.audit.services import AuditService
from rm_core.beds.models import Bed, BedReservation
from rm_core.common.results import ErrorKind
from rm_core.referrals.models import Referral, ReferralStatus, Urgency
from rm_core.referrals.services import ReferralService
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def _fail_on(monkeypatch, event_code, exc):
    """Make the audit write for `event_code` raise `exc` mid-transaction."""
    original = AuditService.log

    def log(**kwargs):
        if kwargs.get("event_code") == event_code:
            raise exc
        return original(**kwargs)

    monkeypatch.setattr(AuditService, "log", staticmethod(log))


@pytest.fixture
def pending(doctor_caller, patient, receiving_facility):
    r = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        urgency=Urgency.URGENT,
        reason="Head injury, needs CT",
        bed_required=True,
    )
    assert r.ok, r.error
    return r.value


def test_integrity_error_is_conflict_and_nothing_applied(monkeypatch, pending, receiving_caller, tenant, receiving_facility):
    bed = Bed.objects.create(tenant_id=tenant.id, facility_id=receiving_facility.id, bed_number="HDU-1")
    _fail_on(monkeypatch, "REFERRAL_ACCEPTED", IntegrityError("duplicate key"))

    r = ReferralService.accept(caller=receiving_caller, referral_id=pending.id, bed_id=bed.id)
    assert r.error.kind == ErrorKind.CONFLICT
    assert r.error.retryable is True

    pending.refresh_from_db()
    assert pending.status == ReferralStatus.PENDING
    assert pending.accepted_at is None
    assert not BedReservation.objects.filter(referral_id=pending.id).exists()
    assert not AuditEvent.objects.filter(entity_id=pending.id, event_code="REFERRAL_ACCEPTED").exists()


def test_database_error_is_dependency_failure(monkeypatch, pending, receiving_caller):
    _fail_on(monkeypatch, "REFERRAL_ACCEPTED", OperationalError("lock timeout"))

    r = ReferralService.accept(caller=receiving_caller, referral_id=pending.id)
    assert r.error.kind == ErrorKind.DEPENDENCY_FAILURE
    assert r.error.retryable is True

    pending.refresh_from_db()
    assert pending.status == ReferralStatus.PENDING

    # a retry after the collaborator recovers goes through
    monkeypatch.undo()
    assert ReferralService.accept(caller=receiving_caller, referral_id=pending.id).ok


def test_create_failure_leaves_no_referral(monkeypatch, doctor_caller, patient, receiving_facility):
    _fail_on(monkeypatch, "REFERRAL_CREATED", OperationalError("connection reset"))

    r = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        reason="x",
    )
    assert r.error.kind == ErrorKind.DEPENDENCY_FAILURE
    assert Referral.objects.count() == 0


def test_conflict_returns_409_envelope(monkeypatch, client_for, receiving_doctor, pending, tenant, receiving_facility):
    _fail_on(monkeypatch, "REFERRAL_ACCEPTED", IntegrityError("duplicate key"))

    res = client_for(receiving_doctor).post(
        f"/api/v1/referrals/{pending.id}/accept/", {}, format="json", **scoped(tenant, receiving_facility)
    )
    assert res.status_code == 409
    body = res.json()
    assert body["error"]["code"] == "conflict"
    assert body["error"]["details"]["retryable"] is True
    assert body["error"]["request_id"] == res["X-Request-ID"]


def test_dependency_failure_returns_503_envelope(monkeypatch, client_for, receiving_doctor, pending, tenant, receiving_facility):
    _fail_on(monkeypatch, "REFERRAL_ACCEPTED", OperationalError("lock timeout"))

    res = client_for(receiving_doctor).post(
        f"/api/v1/referrals/{pending.id}/accept/", {}, format="json", **scoped(tenant, receiving_facility)
    )
    assert res.status_code == 503
    body = res.json()
    assert body["error"]["code"] == "dependency_failure"
    assert body["error"]["details"]["retryable"] is True

    pending.refresh_from_db()
    assert pending.status == ReferralStatus.PENDING
