# rm_core/iam/tests/test_commands.py
from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from rm_core.beds.models import Bed, BedReservation, ReservationStatus
from rm_core.beds.services import BedService
from rm_core.iam.services.membership import roles_at_facility

pytestmark = pytest.mark.django_db


def test_grant_role_is_idempotent(nurse, tenant, facility):
    out = StringIO()
    call_command("grant_role", "nurse1", tenant.code, facility.code, "DISPATCHER", stdout=out)
    call_command("grant_role", "nurse1", tenant.code, facility.code, "DISPATCHER", stdout=out)

    assert "Granted DISPATCHER" in out.getvalue()
    assert "Kept DISPATCHER" in out.getvalue()
    assert roles_at_facility(user_id=nurse.id, tenant_id=tenant.id, facility_id=facility.id) == {"NURSE", "DISPATCHER"}


def test_grant_role_unknown_facility(nurse, tenant):
    with pytest.raises(CommandError):
        call_command("grant_role", "nurse1", tenant.code, "nowhere", "NURSE")


def test_expire_bed_reservations_command(admin_caller, tenant, facility, patient):
    bed = Bed.objects.create(tenant_id=tenant.id, facility_id=facility.id, bed_number="B-9")
    held = BedService.reserve(caller=admin_caller, bed_id=bed.id, patient_id=patient.id).value
    BedReservation.objects.filter(pk=held.pk).update(reserved_until=timezone.now() - timedelta(minutes=5))

    out = StringIO()
    call_command("expire_bed_reservations", stdout=out)

    held.refresh_from_db()
    assert held.status == ReservationStatus.EXPIRED
    assert "Expired 1 reservation(s)." in out.getvalue()
