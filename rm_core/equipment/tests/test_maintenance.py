# rm_core/equipment/tests/test_maintenance.py
from datetime import timedelta

import pytest
from django.utils import timezone

from rm_core.common.results import ErrorKind
from rm_core.equipment.models import Equipment, EquipmentStatus, MaintenanceStatus
from rm_core.equipment.selectors import overdue_equipment
from rm_core.equipment.services import EquipmentService

pytestmark = pytest.mark.django_db


@pytest.fixture
def ventilator(tenant, facility):
    return Equipment.objects.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        name="Ventilator",
        code="VENT-01",
        category="respiratory",
    )


def _schedule(caller, equipment, **extra):
    fields = {
        "maintenance_type": "preventive",
        "scheduled_date": timezone.now() + timedelta(days=1),
        "description": "Quarterly filter change",
        "estimated_duration_hours": 2,
        **extra,
    }
    return EquipmentService.schedule_maintenance(caller=caller, equipment_id=equipment.id, **fields)


def _status(equipment):
    equipment.refresh_from_db()
    return equipment.status


def test_schedule_start_complete_returns_to_service(technician_caller, technician, ventilator):
    scheduled = _schedule(technician_caller, ventilator, technician_id=technician.id)
    assert scheduled.ok, scheduled.error
    record = scheduled.value
    assert record.status == MaintenanceStatus.SCHEDULED
    assert _status(ventilator) == EquipmentStatus.AVAILABLE

    started = EquipmentService.start_maintenance(caller=technician_caller, record_id=record.id)
    assert started.ok, started.error
    assert _status(ventilator) == EquipmentStatus.UNDER_MAINTENANCE

    done = EquipmentService.complete_maintenance(
        caller=technician_caller,
        record_id=record.id,
        completion_notes="Filters replaced",
        condition="good",
        work_performed=["replace filters", "leak test"],
        return_to_service=True,
        cost="120.50",
        next_maintenance_due=timezone.localdate() + timedelta(days=90),
    )
    assert done.ok, done.error
    assert done.value.status == MaintenanceStatus.COMPLETED
    assert done.value.returned_to_service is True

    ventilator.refresh_from_db()
    assert ventilator.status == EquipmentStatus.AVAILABLE
    assert ventilator.last_maintenance is not None
    assert ventilator.next_maintenance_due == timezone.localdate() + timedelta(days=90)


def test_complete_without_return_marks_out_of_order(technician_caller, ventilator):
    record = _schedule(technician_caller, ventilator).value
    EquipmentService.start_maintenance(caller=technician_caller, record_id=record.id)

    done = EquipmentService.complete_maintenance(
        caller=technician_caller,
        record_id=record.id,
        completion_notes="Compressor failed",
        condition="poor",
        work_performed=["diagnosis"],
        return_to_service=False,
        issues_found="Compressor seized",
    )
    assert done.ok
    assert _status(ventilator) == EquipmentStatus.OUT_OF_ORDER


def test_start_conflicts_while_in_use(technician_caller, doctor_caller, ventilator):
    record = _schedule(technician_caller, ventilator).value
    assert EquipmentService.mark_in_use(caller=doctor_caller, equipment_id=ventilator.id).ok

    r = EquipmentService.start_maintenance(caller=technician_caller, record_id=record.id)
    assert r.error.kind == ErrorKind.CONFLICT

    assert EquipmentService.release(caller=doctor_caller, equipment_id=ventilator.id).ok
    assert EquipmentService.start_maintenance(caller=technician_caller, record_id=record.id).ok


def test_one_maintenance_in_progress(technician_caller, ventilator):
    first = _schedule(technician_caller, ventilator).value
    second = _schedule(technician_caller, ventilator, description="Calibrate sensors").value
    assert EquipmentService.start_maintenance(caller=technician_caller, record_id=first.id).ok

    r = EquipmentService.start_maintenance(caller=technician_caller, record_id=second.id)
    assert r.error.kind == ErrorKind.CONFLICT


def test_cancel_in_progress_returns_to_service(technician_caller, ventilator):
    record = _schedule(technician_caller, ventilator).value
    EquipmentService.start_maintenance(caller=technician_caller, record_id=record.id)

    r = EquipmentService.cancel_maintenance(caller=technician_caller, record_id=record.id, reason="Parts not delivered")
    assert r.ok, r.error
    assert r.value.status == MaintenanceStatus.CANCELLED
    assert _status(ventilator) == EquipmentStatus.AVAILABLE

    again = EquipmentService.cancel_maintenance(caller=technician_caller, record_id=record.id, reason="dup")
    assert again.error.kind == ErrorKind.INVALID_TRANSITION
    assert again.error.current_status == MaintenanceStatus.CANCELLED


def test_cancel_scheduled_keeps_repair_in_progress(technician_caller, doctor_caller, ventilator):
    repair = _schedule(technician_caller, ventilator).value
    inspection = _schedule(technician_caller, ventilator, maintenance_type="inspection").value
    assert EquipmentService.start_maintenance(caller=technician_caller, record_id=repair.id).ok

    r = EquipmentService.cancel_maintenance(caller=technician_caller, record_id=inspection.id, reason="Merged into repair")
    assert r.ok, r.error

    repair.refresh_from_db()
    assert repair.status == MaintenanceStatus.IN_PROGRESS
    assert _status(ventilator) == EquipmentStatus.UNDER_MAINTENANCE

    busy = EquipmentService.mark_in_use(caller=doctor_caller, equipment_id=ventilator.id)
    assert busy.error.kind == ErrorKind.INVALID_TRANSITION
    assert _status(ventilator) == EquipmentStatus.UNDER_MAINTENANCE


def test_complete_requires_in_progress(technician_caller, ventilator):
    record = _schedule(technician_caller, ventilator).value
    r = EquipmentService.complete_maintenance(
        caller=technician_caller,
        record_id=record.id,
        completion_notes="n/a",
        condition="good",
        work_performed=["check"],
        return_to_service=True,
    )
    assert r.error.kind == ErrorKind.INVALID_TRANSITION
    assert r.error.current_status == MaintenanceStatus.SCHEDULED


def test_schedule_validation(technician_caller, ventilator, doctor):
    r = _schedule(
        technician_caller,
        ventilator,
        maintenance_type="repaint",
        scheduled_date=timezone.now() - timedelta(hours=1),
        description=" ",
        estimated_duration_hours="0.2",
        technician_id=doctor.id,
    )
    assert r.error.kind == ErrorKind.VALIDATION
    assert set(r.error.details) >= {
        "maintenance_type",
        "scheduled_date",
        "description",
        "estimated_duration_hours",
        "technician_id",
    }


def test_doctor_cannot_maintain(doctor_caller, ventilator):
    r = _schedule(doctor_caller, ventilator)
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_overdue_lists_past_due_only(tenant, facility, ventilator):
    ventilator.next_maintenance_due = timezone.localdate() - timedelta(days=3)
    ventilator.save()
    Equipment.objects.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        name="Monitor",
        code="MON-01",
        next_maintenance_due=timezone.localdate() + timedelta(days=3),
    )

    overdue = list(overdue_equipment(tenant_id=tenant.id, facility_id=facility.id))
    assert [e.id for e in overdue] == [ventilator.id]
