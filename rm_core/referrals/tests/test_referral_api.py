# rm_core/referrals/tests/test_referral_api.py
import pytest

from rm_core.facilities.models import Specialty
from rm_core.referrals.models import Referral
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


@pytest.fixture
def doctor_client(client_for, doctor):
    return client_for(doctor)


@pytest.fixture
def receiving_client(client_for, receiving_doctor):
    return client_for(receiving_doctor)


def _create(c, tenant, facility, patient, receiving_facility, **extra):
    payload = {
        "patient_id": str(patient.id),
        "receiving_facility_id": str(receiving_facility.id),
        "urgency": "urgent",
        "reason": "Needs neurosurgical opinion",
        **extra,
    }
    return c.post("/api/v1/referrals/", payload, format="json", **scoped(tenant, facility))


def test_create_returns_201(doctor_client, tenant, facility, patient, receiving_facility):
    res = _create(doctor_client, tenant, facility, patient, receiving_facility)
    assert res.status_code == 201, res.data
    assert res.data["status"] == "pending"
    assert res.data["referral_number"].startswith("REF")
    assert res.data["referring_facility_id"] == str(facility.id)


def test_created_referral_reads_back_unchanged(doctor_client, tenant, facility, patient, receiving_facility):
    cardiology = Specialty.objects.create(tenant=tenant, code="cardiology", name="Cardiology")
    receiving_facility.specialties.add(cardiology)
    submitted = {
        "urgency": "emergency",
        "referral_type": "transfer",
        "specialty_id": str(cardiology.id),
        "clinical_summary": "Chest pain for 2h, ST elevation in V2-V4",
        "vital_signs": {"bp": "90/60", "pulse": 112, "spo2": 94},
        "transport_required": "emergency_ambulance",
        "bed_required": True,
        "bed_type": "icu",
    }
    created = _create(doctor_client, tenant, facility, patient, receiving_facility, **submitted)
    assert created.status_code == 201, created.data

    res = doctor_client.get(f"/api/v1/referrals/{created.data['id']}/", **scoped(tenant, facility))
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "pending"
    assert body["patient"] == str(patient.id)
    assert body["receiving_facility"] == str(receiving_facility.id)
    assert body["specialty"] == str(cardiology.id)
    assert body["reason"] == "Needs neurosurgical opinion"
    for name in ("urgency", "referral_type", "clinical_summary", "vital_signs", "transport_required", "bed_required", "bed_type"):
        assert body[name] == submitted[name], name


def test_create_with_idempotency_key_replays(doctor_client, tenant, facility, patient, receiving_facility):
    headers = {"HTTP_IDEMPOTENCY_KEY": "ref-create-1"}
    a = _create(doctor_client, tenant, facility, patient, receiving_facility)
    assert a.status_code == 201

    payload = {
        "patient_id": str(patient.id),
        "receiving_facility_id": str(receiving_facility.id),
        "urgency": "routine",
        "reason": "Follow-up",
    }
    b1 = doctor_client.post("/api/v1/referrals/", payload, format="json", **headers, **scoped(tenant, facility))
    b2 = doctor_client.post("/api/v1/referrals/", payload, format="json", **headers, **scoped(tenant, facility))
    assert b1.status_code == 201
    assert b2.status_code == 201
    assert b1.data["id"] == b2.data["id"]
    assert Referral.objects.count() == 2


def test_invalid_transition_returns_422_with_current_status(
    doctor_client, receiving_client, tenant, facility, receiving_facility, patient
):
    rid = _create(doctor_client, tenant, facility, patient, receiving_facility).data["id"]

    ok = receiving_client.post(f"/api/v1/referrals/{rid}/accept/", {}, format="json", **scoped(tenant, receiving_facility))
    assert ok.status_code == 200, ok.data
    assert ok.data["status"] == "accepted"

    again = receiving_client.post(
        f"/api/v1/referrals/{rid}/reject/", {"reason": "late"}, format="json", **scoped(tenant, receiving_facility)
    )
    assert again.status_code == 422
    assert again.data["error"]["code"] == "invalid_transition"
    assert again.data["error"]["details"]["current_status"] == "accepted"


def test_referring_doctor_cannot_accept(doctor_client, tenant, facility, receiving_facility, patient):
    rid = _create(doctor_client, tenant, facility, patient, receiving_facility).data["id"]
    res = doctor_client.post(f"/api/v1/referrals/{rid}/accept/", {}, format="json", **scoped(tenant, facility))
    assert res.status_code == 403
    assert res.data["error"]["code"] == "permission_denied"


def test_crew_cannot_create(client_for, crew, tenant, facility, patient, receiving_facility):
    res = _create(client_for(crew), tenant, facility, patient, receiving_facility)
    assert res.status_code == 403


def test_unknown_referral_is_404(api_client, tenant, facility):
    res = api_client.get(
        "/api/v1/referrals/00000000-0000-0000-0000-0000000000aa/", **scoped(tenant, facility)
    )
    assert res.status_code == 404


def test_bed_required_without_bed_warns(doctor_client, receiving_client, tenant, facility, receiving_facility, patient):
    rid = _create(doctor_client, tenant, facility, patient, receiving_facility, bed_required=True).data["id"]
    res = receiving_client.post(f"/api/v1/referrals/{rid}/accept/", {}, format="json", **scoped(tenant, receiving_facility))
    assert res.status_code == 200
    assert "bed" in res["Warning"].lower()


def test_list_direction_filters(doctor_client, receiving_client, tenant, facility, receiving_facility, patient):
    _create(doctor_client, tenant, facility, patient, receiving_facility)

    outgoing = doctor_client.get("/api/v1/referrals/?direction=outgoing", **scoped(tenant, facility))
    assert outgoing.status_code == 200
    assert outgoing.data["count"] == 1

    incoming_at_sender = doctor_client.get("/api/v1/referrals/?direction=incoming", **scoped(tenant, facility))
    assert incoming_at_sender.data["count"] == 0

    incoming = receiving_client.get("/api/v1/referrals/?direction=incoming", **scoped(tenant, receiving_facility))
    assert incoming.data["count"] == 1

    bad = doctor_client.get("/api/v1/referrals/?direction=sideways", **scoped(tenant, facility))
    assert bad.status_code == 400


def test_stats_and_priority(doctor_client, tenant, facility, receiving_facility, patient):
    rid = _create(doctor_client, tenant, facility, patient, receiving_facility, urgency="emergency").data["id"]

    stats = doctor_client.get("/api/v1/referrals/stats/", **scoped(tenant, facility))
    assert stats.status_code == 200
    assert stats.data["total"] == 1
    assert stats.data["by_urgency"]["emergency"] == 1

    prio = doctor_client.get(f"/api/v1/referrals/{rid}/priority/", **scoped(tenant, facility))
    assert prio.status_code == 200
    assert prio.data["priority_score"] == 100
