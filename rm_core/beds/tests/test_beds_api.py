# rm_core/beds/tests/test_beds_api.py
import pytest

from rm_core.beds.models import Bed
from rm_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


@pytest.fixture
def bed(tenant, facility):
    return Bed.objects.create(tenant_id=tenant.id, facility_id=facility.id, bed_number="ICU-1", ward="ICU", bed_type="icu")


def test_reserve_confirm_over_http(api_client, tenant, facility, bed, patient):
    res = api_client.post(
        f"/api/v1/beds/{bed.id}/reserve/", {"patient_id": str(patient.id)}, format="json", **scoped(tenant, facility)
    )
    assert res.status_code == 201, res.data
    rid = res.data["id"]

    available = api_client.get("/api/v1/beds/available/?bed_type=icu", **scoped(tenant, facility))
    assert available.status_code == 200
    assert available.data["count"] == 0

    confirmed = api_client.post(f"/api/v1/bed-reservations/{rid}/confirm/", {}, format="json", **scoped(tenant, facility))
    assert confirmed.status_code == 200, confirmed.data
    assert confirmed.data["status"] == "confirmed"

    occupancy = api_client.get("/api/v1/beds/occupancy/", **scoped(tenant, facility))
    assert occupancy.data["occupied"] == 1


def test_occupied_bed_cannot_be_decommissioned(api_client, admin_caller, tenant, facility, bed, patient):
    from rm_core.beds.services import BedService

    reservation = BedService.reserve(caller=admin_caller, bed_id=bed.id, patient_id=patient.id).value
    BedService.confirm_reservation(caller=admin_caller, reservation_id=reservation.id)

    res = api_client.delete(f"/api/v1/beds/{bed.id}/", **scoped(tenant, facility))
    assert res.status_code == 422
    assert res.data["error"]["details"]["current_status"] == "occupied"


def test_unknown_patient_is_404(api_client, tenant, facility, bed):
    res = api_client.post(
        f"/api/v1/beds/{bed.id}/reserve/",
        {"patient_id": "00000000-0000-0000-0000-000000000001"},
        format="json",
        **scoped(tenant, facility),
    )
    assert res.status_code == 404
