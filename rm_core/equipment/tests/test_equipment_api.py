# rm_core/equipment/tests/test_equipment_api.py
from datetime import timedelta

import pytest
from django.utils import timezone

from rm_core.equipment.models import Equipment
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


@pytest.fixture
def tech_client(client_for, technician):
    return client_for(technician)


@pytest.fixture
def monitor(tenant, facility):
    return Equipment.objects.create(tenant_id=tenant.id, facility_id=facility.id, name="Monitor", code="MON-01")


def test_register_and_duplicate_code(tech_client, tenant, facility, monitor):
    res = tech_client.post(
        "/api/v1/equipment/", {"name": "Defibrillator", "code": "DEF-01"}, format="json", **scoped(tenant, facility)
    )
    assert res.status_code == 201, res.data
    assert res.data["status"] == "available"

    dup = tech_client.post(
        "/api/v1/equipment/", {"name": "Other", "code": "MON-01"}, format="json", **scoped(tenant, facility)
    )
    assert dup.status_code == 400


def test_maintenance_flow_over_http(tech_client, tenant, facility, monitor):
    scheduled = tech_client.post(
        f"/api/v1/equipment/{monitor.id}/schedule-maintenance/",
        {
            "maintenance_type": "calibration",
            "scheduled_date": (timezone.now() + timedelta(days=2)).isoformat(),
            "description": "Annual calibration",
            "estimated_duration_hours": "1.5",
        },
        format="json",
        **scoped(tenant, facility),
    )
    assert scheduled.status_code == 201, scheduled.data
    rid = scheduled.data["id"]

    started = tech_client.post(f"/api/v1/maintenance/{rid}/start/", {}, format="json", **scoped(tenant, facility))
    assert started.status_code == 200, started.data

    busy = tech_client.delete(f"/api/v1/equipment/{monitor.id}/", **scoped(tenant, facility))
    assert busy.status_code == 422

    done = tech_client.post(
        f"/api/v1/maintenance/{rid}/complete/",
        {
            "completion_notes": "Within tolerance",
            "condition": "excellent",
            "work_performed": ["calibrate"],
            "return_to_service": True,
        },
        format="json",
        **scoped(tenant, facility),
    )
    assert done.status_code == 200, done.data

    history = tech_client.get(f"/api/v1/equipment/{monitor.id}/history/", **scoped(tenant, facility))
    assert [h["status"] for h in history.data] == ["completed"]


def test_start_twice_is_422(tech_client, tenant, facility, monitor):
    rid = tech_client.post(
        f"/api/v1/equipment/{monitor.id}/schedule-maintenance/",
        {
            "maintenance_type": "inspection",
            "scheduled_date": (timezone.now() + timedelta(days=1)).isoformat(),
            "description": "Visual inspection",
            "estimated_duration_hours": "0.5",
        },
        format="json",
        **scoped(tenant, facility),
    ).data["id"]
    tech_client.post(f"/api/v1/maintenance/{rid}/start/", {}, format="json", **scoped(tenant, facility))

    again = tech_client.post(f"/api/v1/maintenance/{rid}/start/", {}, format="json", **scoped(tenant, facility))
    assert again.status_code == 422
    assert again.data["error"]["details"]["current_status"] == "in_progress"


def test_delete_decommissions(tech_client, tenant, facility, monitor):
    res = tech_client.delete(f"/api/v1/equipment/{monitor.id}/", **scoped(tenant, facility))
    assert res.status_code == 204
    monitor.refresh_from_db()
    assert monitor.is_active is False


def test_receptionist_cannot_see_equipment(client_for, receptionist, tenant, facility, monitor):
    res = client_for(receptionist).get("/api/v1/equipment/", **scoped(tenant, facility))
    assert res.status_code == 403
