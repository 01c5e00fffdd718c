# rm_core/conftest.py
import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from rm_core.common.permissions import Role
from rm_core.facilities.models import Facility
from rm_core.iam.services.caller import resolve_caller
from rm_core.patients.models import Patient
from rm_core.tenants.models import Tenant
from rm_core.tests.helpers import make_member


@pytest.fixture(autouse=True)
def _clear_cache():
    """Route progress lives in the cache; keep tests isolated."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(code="test-tenant", name="Test Tenant")


@pytest.fixture
def facility(db, tenant):
    return Facility.objects.create(
        tenant=tenant,
        code="main",
        name="Main Facility",
        latitude="12.971600",
        longitude="77.594600",
    )


@pytest.fixture
def receiving_facility(db, tenant):
    return Facility.objects.create(
        tenant=tenant,
        code="general",
        name="General Hospital",
        latitude="12.930000",
        longitude="77.620000",
        accepts_referrals=True,
        emergency_capable=True,
    )


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(code="other-tenant", name="Other Tenant")


@pytest.fixture
def other_facility(db, other_tenant):
    return Facility.objects.create(tenant=other_tenant, code="other", name="Other Facility")


# -------------------------
# Users (one role each, at the main facility unless noted)
# -------------------------
@pytest.fixture
def user(db, tenant, facility):
    """ADMIN at the main facility. The default api_client user."""
    return make_member("testuser", tenant=tenant, facility=facility, roles=[Role.ADMIN])


@pytest.fixture
def doctor(db, tenant, facility):
    return make_member("dr_ref", tenant=tenant, facility=facility, roles=[Role.DOCTOR])


@pytest.fixture
def receiving_doctor(db, tenant, receiving_facility):
    return make_member("dr_recv", tenant=tenant, facility=receiving_facility, roles=[Role.DOCTOR])


@pytest.fixture
def nurse(db, tenant, facility):
    return make_member("nurse1", tenant=tenant, facility=facility, roles=[Role.NURSE])


@pytest.fixture
def dispatcher(db, tenant, facility):
    return make_member("dispatch1", tenant=tenant, facility=facility, roles=[Role.DISPATCHER])


@pytest.fixture
def crew(db, tenant, facility):
    return make_member("crew1", tenant=tenant, facility=facility, roles=[Role.AMBULANCE_CREW])


@pytest.fixture
def technician(db, tenant, facility):
    return make_member("tech1", tenant=tenant, facility=facility, roles=[Role.TECHNICIAN])


@pytest.fixture
def receptionist(db, tenant, facility):
    return make_member("desk1", tenant=tenant, facility=facility, roles=[Role.RECEPTIONIST])


# -------------------------
# Callers
# -------------------------
@pytest.fixture
def admin_caller(user, tenant, facility):
    return resolve_caller(user, tenant_id=tenant.id, facility_id=facility.id)


@pytest.fixture
def doctor_caller(doctor, tenant, facility):
    return resolve_caller(doctor, tenant_id=tenant.id, facility_id=facility.id)


@pytest.fixture
def receiving_caller(receiving_doctor, tenant, receiving_facility):
    return resolve_caller(receiving_doctor, tenant_id=tenant.id, facility_id=receiving_facility.id)


@pytest.fixture
def dispatcher_caller(dispatcher, tenant, facility):
    return resolve_caller(dispatcher, tenant_id=tenant.id, facility_id=facility.id)


@pytest.fixture
def crew_caller(crew, tenant, facility):
    return resolve_caller(crew, tenant_id=tenant.id, facility_id=facility.id)


@pytest.fixture
def technician_caller(technician, tenant, facility):
    return resolve_caller(technician, tenant_id=tenant.id, facility_id=facility.id)


@pytest.fixture
def receptionist_caller(receptionist, tenant, facility):
    return resolve_caller(receptionist, tenant_id=tenant.id, facility_id=facility.id)


# -------------------------
# Clients / data
# -------------------------
@pytest.fixture
def api_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def client_for():
    """APIClient authenticated as any user: client_for(doctor)."""
    def _make(u):
        c = APIClient()
        c.force_authenticate(user=u)
        return c
    return _make


@pytest.fixture
def patient(db, tenant, facility):
    return Patient.objects.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        full_name="Test Patient",
        mrn="MRN-TEST-001",
    )
