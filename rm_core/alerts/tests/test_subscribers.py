# rm_core/alerts/tests/test_subscribers.py
import pytest
from django.db import DatabaseError

from rm_core.alerts.models import Alert, AlertSeverity, Notification
from rm_core.alerts.services import EntityRef, NotificationService
from rm_core.referrals.services import ReferralService
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def _emergency(doctor_caller, patient, receiving_facility):
    r = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        urgency="emergency",
        reason="Suspected stroke",
    )
    assert r.ok, r.error
    return r.value


def test_emergency_referral_alerts_receiving_facility(doctor_caller, patient, receiving_facility, receiving_doctor):
    referral = _emergency(doctor_caller, patient, receiving_facility)

    alert = Alert.objects.get(entity_id=referral.id)
    assert alert.facility_id == receiving_facility.id
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.code == "emergency-referral"

    note = Notification.objects.get(event_code="referral.created", recipient_id=receiving_doctor.id)
    assert note.alert_id == alert.id
    assert note.facility_id == receiving_facility.id


def test_routine_referral_has_no_alert(doctor_caller, patient, receiving_facility, receiving_doctor):
    referral = ReferralService.create(
        caller=doctor_caller,
        patient_id=patient.id,
        receiving_facility_id=receiving_facility.id,
        reason="Elective review",
    ).value
    assert not Alert.objects.filter(entity_id=referral.id).exists()
    assert Notification.objects.filter(entity_id=referral.id, recipient_id=receiving_doctor.id).exists()


def test_accept_notifies_referring_doctor(doctor_caller, receiving_caller, doctor, patient, receiving_facility):
    referral = _emergency(doctor_caller, patient, receiving_facility)
    assert ReferralService.accept(caller=receiving_caller, referral_id=referral.id).ok

    assert Notification.objects.filter(event_code="referral.accepted", recipient_id=doctor.id).exists()


def test_notification_failure_does_not_block_transition(
    monkeypatch, doctor_caller, receiving_caller, patient, receiving_facility
):
    referral = _emergency(doctor_caller, patient, receiving_facility)

    def boom(*args, **kwargs):
        raise DatabaseError("notification table unavailable")

    monkeypatch.setattr(Notification.objects, "bulk_create", boom)

    r = ReferralService.accept(caller=receiving_caller, referral_id=referral.id)
    assert r.ok, r.error
    referral.refresh_from_db()
    assert referral.status == "accepted"


def test_recipient_lookup_failure_does_not_block_create(monkeypatch, doctor_caller, patient, receiving_facility):
    def unavailable(**kwargs):
        raise DatabaseError("membership table unavailable")

    monkeypatch.setattr("rm_core.alerts.subscribers.user_ids_with_roles", unavailable)

    referral = _emergency(doctor_caller, patient, receiving_facility)
    assert referral.status == "pending"
    assert Alert.objects.filter(entity_id=referral.id, code="emergency-referral").exists()
    assert not Notification.objects.filter(entity_id=referral.id).exists()


def test_notify_dedupes_and_skips_empty(tenant, facility, doctor):
    entity = EntityRef("REFERRAL", None)
    sent = NotificationService.notify(
        event="referral.accepted",
        entity=entity,
        recipients=[doctor.id, doctor.id, None],
        title="x",
        tenant_id=tenant.id,
        facility_id=facility.id,
    )
    assert sent == 1
    assert NotificationService.notify(
        event="referral.accepted", entity=entity, recipients=[None], title="x", tenant_id=tenant.id, facility_id=facility.id
    ) == 0


def test_notifications_api(client_for, doctor_caller, receiving_doctor, patient, receiving_facility, tenant):
    _emergency(doctor_caller, patient, receiving_facility)
    c = client_for(receiving_doctor)

    listed = c.get("/api/v1/notifications/?is_read=false", **scoped(tenant, receiving_facility))
    assert listed.status_code == 200
    assert listed.data["count"] == 1

    marked = c.post("/api/v1/notifications/mark-all-read/", {}, format="json", **scoped(tenant, receiving_facility))
    assert marked.data == {"updated": 1}

    alerts = c.get("/api/v1/alerts/?severity=critical", **scoped(tenant, receiving_facility))
    assert alerts.data["count"] == 1
    ack = c.post(f"/api/v1/alerts/{alerts.data['results'][0]['id']}/ack/", {}, format="json", **scoped(tenant, receiving_facility))
    assert ack.data["status"] == "ACKED"
