# rm_core/patients/tests/test_patient_registry.py
import pytest

from rm_core.audit.models import AuditEvent
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def _register(c, tenant, facility, **fields):
    return c.post("/api/v1/patients/", fields, format="json", **scoped(tenant, facility))


def test_register_and_read_back(api_client, tenant, facility):
    res = _register(api_client, tenant, facility, full_name="Asha Rao", mrn="MRN-100", phone="9000000001", gender="female")
    assert res.status_code == 201, res.data
    pid = res.data["id"]

    got = api_client.get(f"/api/v1/patients/{pid}/", **scoped(tenant, facility))
    assert got.status_code == 200
    assert got.data["mrn"] == "MRN-100"
    assert AuditEvent.objects.filter(entity_id=pid, event_code="PATIENT_REGISTERED").exists()


def test_search_by_name_or_mrn(api_client, tenant, facility):
    _register(api_client, tenant, facility, full_name="Asha Rao", mrn="MRN-100")
    _register(api_client, tenant, facility, full_name="Vikram Shah", mrn="MRN-200")

    res = api_client.get("/api/v1/patients/?q=vikram", **scoped(tenant, facility))
    assert [p["mrn"] for p in res.data["results"]] == ["MRN-200"]

    res = api_client.get("/api/v1/patients/?q=MRN-1", **scoped(tenant, facility))
    assert [p["full_name"] for p in res.data["results"]] == ["Asha Rao"]


def test_duplicate_mrn_on_update_is_400(api_client, tenant, facility):
    _register(api_client, tenant, facility, full_name="A", mrn="MRN-1")
    bid = _register(api_client, tenant, facility, full_name="B", mrn="MRN-2").data["id"]

    dup = api_client.patch(f"/api/v1/patients/{bid}/", {"mrn": "MRN-1"}, format="json", **scoped(tenant, facility))
    assert dup.status_code == 400
    assert dup.data["error"]["code"] == "validation_error"


def test_patients_are_facility_local(api_client, client_for, receiving_doctor, tenant, facility, receiving_facility):
    pid = _register(api_client, tenant, facility, full_name="Asha Rao", mrn="MRN-100").data["id"]

    other = client_for(receiving_doctor).get(f"/api/v1/patients/{pid}/", **scoped(tenant, receiving_facility))
    assert other.status_code == 404


def test_crew_cannot_register(client_for, crew, tenant, facility):
    res = _register(client_for(crew), tenant, facility, full_name="X", mrn="MRN-X")
    assert res.status_code == 403
