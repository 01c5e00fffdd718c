# rm_core/equipment/services.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from django.utils import timezone

from rm_core.audit.services import AuditService, record_denial
from rm_core.common.events import publish
from rm_core.common.permissions import Caller, Role, can
from rm_core.common.results import ErrorKind, Result, invalid, invalid_transition, not_found, run_atomic
from rm_core.equipment.models import (
    Equipment,
    EquipmentCondition,
    EquipmentStatus,
    MaintenancePriority,
    MaintenanceRecord,
    MaintenanceStatus,
    MaintenanceType,
)
from rm_core.iam.services.membership import user_has_role

logger = logging.getLogger(__name__)

EQUIPMENT = "EQUIPMENT"
MAINTENANCE = "MAINTENANCE"

MIN_DURATION_HOURS = Decimal("0.5")
MAX_DURATION_HOURS = Decimal("168")


def _locked_equipment(*, tenant_id, facility_id, equipment_id) -> Optional[Equipment]:
    return Equipment.objects.select_for_update().filter(id=equipment_id, tenant_id=tenant_id, facility_id=facility_id).first()


def _locked_record(caller: Caller, record_id) -> Optional[MaintenanceRecord]:
    return (
        MaintenanceRecord.objects.select_for_update()
        .filter(id=record_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id)
        .first()
    )


def _as_list(values: Optional[Iterable]) -> list:
    return [v for v in (values or []) if v not in (None, "")]


def _set_equipment_status(*, caller: Optional[Caller], equipment: Equipment, status: str, **metadata) -> None:
    previous = equipment.status
    if previous == status:
        return
    equipment.status = status
    equipment.save(update_fields=["status", "updated_at"])
    AuditService.log(
        caller=caller,
        tenant_id=equipment.tenant_id,
        facility_id=equipment.facility_id,
        event_code="EQUIPMENT_STATUS_CHANGED",
        entity_type=EQUIPMENT,
        entity_id=equipment.id,
        from_status=previous,
        to_status=status,
        metadata=metadata or None,
    )


class EquipmentService:
    """
    Equipment usage and the maintenance workflow.

        scheduled -> in_progress -> completed
        scheduled | in_progress -> cancelled

    Equipment is `under_maintenance` exactly while one of its records is
    in progress. Scheduling alone does not take it out of service.
    """

    # -------------------------
    # Usage
    # -------------------------
    @staticmethod
    def _switch(*, caller: Caller, equipment_id, source: str, target: str, action: str) -> Result[Equipment]:
        if not can(caller, "equipment.use"):
            return record_denial(caller=caller, action="equipment.use", entity_type=EQUIPMENT, entity_id=equipment_id)

        def body() -> Result[Equipment]:
            eq = _locked_equipment(tenant_id=caller.tenant_id, facility_id=caller.facility_id, equipment_id=equipment_id)
            if eq is None:
                return not_found("Equipment")
            if not eq.is_active:
                return invalid("Equipment is decommissioned.", equipment_id=str(eq.id))
            if eq.status != source:
                return invalid_transition("equipment", eq.status, action)
            _set_equipment_status(caller=caller, equipment=eq, status=target)
            logger.info("equipment %s %s -> %s", eq.code, source, target)
            return Result.success(eq)

        return run_atomic(body, label=f"equipment.{action.replace(' ', '_')}")

    @staticmethod
    def mark_in_use(*, caller: Caller, equipment_id) -> Result[Equipment]:
        return EquipmentService._switch(
            caller=caller,
            equipment_id=equipment_id,
            source=EquipmentStatus.AVAILABLE,
            target=EquipmentStatus.IN_USE,
            action="use",
        )

    @staticmethod
    def release(*, caller: Caller, equipment_id) -> Result[Equipment]:
        return EquipmentService._switch(
            caller=caller,
            equipment_id=equipment_id,
            source=EquipmentStatus.IN_USE,
            target=EquipmentStatus.AVAILABLE,
            action="release",
        )

    @staticmethod
    def check_decommission(equipment: Equipment) -> Result[Equipment]:
        if equipment.status in (EquipmentStatus.IN_USE, EquipmentStatus.UNDER_MAINTENANCE):
            return invalid_transition("equipment", equipment.status, "decommission")
        return Result.success(equipment)

    # -------------------------
    # Maintenance
    # -------------------------
    @staticmethod
    def schedule_maintenance(
        *,
        caller: Caller,
        equipment_id,
        maintenance_type: str,
        scheduled_date: datetime,
        description: str,
        estimated_duration_hours,
        priority: str = MaintenancePriority.NORMAL,
        technician_id: Optional[int] = None,
        required_parts: Optional[Iterable] = None,
        required_tools: Optional[Iterable] = None,
        safety_requirements: Optional[Iterable] = None,
    ) -> Result[MaintenanceRecord]:
        if not can(caller, "equipment.maintain"):
            return record_denial(caller=caller, action="equipment.maintain", entity_type=EQUIPMENT, entity_id=equipment_id)

        problems: dict[str, str] = {}
        if maintenance_type not in MaintenanceType.values:
            problems["maintenance_type"] = "Invalid choice."
        if priority not in MaintenancePriority.values:
            problems["priority"] = "Invalid choice."
        if scheduled_date is None or scheduled_date <= timezone.now():
            problems["scheduled_date"] = "Must be in the future."
        description = (description or "").strip()
        if not description:
            problems["description"] = "This field may not be blank."
        elif len(description) > 1000:
            problems["description"] = "At most 1000 characters."
        hours = Decimal(str(estimated_duration_hours))
        if not MIN_DURATION_HOURS <= hours <= MAX_DURATION_HOURS:
            problems["estimated_duration_hours"] = f"Must be between {MIN_DURATION_HOURS} and {MAX_DURATION_HOURS} hours."
        if technician_id is not None and not user_has_role(
            user_id=technician_id,
            tenant_id=caller.tenant_id,
            facility_id=caller.facility_id,
            role=Role.TECHNICIAN,
        ):
            problems["technician_id"] = "Not a technician at this facility."
        if problems:
            return invalid("Invalid maintenance request.", **problems)

        def body() -> Result[MaintenanceRecord]:
            eq = _locked_equipment(tenant_id=caller.tenant_id, facility_id=caller.facility_id, equipment_id=equipment_id)
            if eq is None:
                return not_found("Equipment")
            if not eq.is_active:
                return invalid("Equipment is decommissioned.", equipment_id=str(eq.id))

            record = MaintenanceRecord.objects.create(
                tenant_id=eq.tenant_id,
                facility_id=eq.facility_id,
                equipment=eq,
                maintenance_type=maintenance_type,
                status=MaintenanceStatus.SCHEDULED,
                priority=priority,
                scheduled_date=scheduled_date,
                description=description,
                estimated_duration_hours=hours,
                technician_id=technician_id,
                scheduled_by_user_id=caller.user_id,
                required_parts=_as_list(required_parts),
                required_tools=_as_list(required_tools),
                safety_requirements=_as_list(safety_requirements),
            )
            AuditService.log(
                caller=caller,
                event_code="MAINTENANCE_SCHEDULED",
                entity_type=MAINTENANCE,
                entity_id=record.id,
                to_status=MaintenanceStatus.SCHEDULED,
                metadata={"equipment_id": str(eq.id), "maintenance_type": maintenance_type},
            )
            publish(
                "maintenance.scheduled",
                {
                    "record_id": record.id,
                    "equipment_id": eq.id,
                    "equipment_name": eq.name,
                    "technician_id": technician_id,
                    "scheduled_date": timezone.localtime(scheduled_date).strftime("%Y-%m-%d %H:%M"),
                    "tenant_id": eq.tenant_id,
                    "facility_id": eq.facility_id,
                    "actor_user_id": caller.user_id,
                },
            )
            logger.info("maintenance %s scheduled for %s on %s", maintenance_type, eq.code, scheduled_date.isoformat())
            return Result.success(record)

        return run_atomic(body, label="equipment.schedule_maintenance")

    @staticmethod
    def start_maintenance(*, caller: Caller, record_id) -> Result[MaintenanceRecord]:
        if not can(caller, "equipment.maintain"):
            return record_denial(caller=caller, action="equipment.maintain", entity_type=MAINTENANCE, entity_id=record_id)

        def body() -> Result[MaintenanceRecord]:
            record = _locked_record(caller, record_id)
            if record is None:
                return not_found("Maintenance record")
            if record.status != MaintenanceStatus.SCHEDULED:
                return invalid_transition("maintenance", record.status, "start")

            eq = _locked_equipment(tenant_id=record.tenant_id, facility_id=record.facility_id, equipment_id=record.equipment_id)
            if eq.status == EquipmentStatus.IN_USE:
                return Result.failure(
                    ErrorKind.CONFLICT,
                    "Equipment is in use; release it before starting maintenance.",
                    details={"equipment_status": eq.status},
                )
            if eq.maintenance_records.filter(status=MaintenanceStatus.IN_PROGRESS).exists():
                return Result.failure(
                    ErrorKind.CONFLICT,
                    "Another maintenance is already in progress for this equipment.",
                )

            record.status = MaintenanceStatus.IN_PROGRESS
            record.started_at = timezone.now()
            record.performed_by_user_id = caller.user_id
            record.save(update_fields=["status", "started_at", "performed_by_user_id", "updated_at"])
            _set_equipment_status(
                caller=caller,
                equipment=eq,
                status=EquipmentStatus.UNDER_MAINTENANCE,
                maintenance_id=str(record.id),
            )
            AuditService.log(
                caller=caller,
                event_code="MAINTENANCE_STARTED",
                entity_type=MAINTENANCE,
                entity_id=record.id,
                from_status=MaintenanceStatus.SCHEDULED,
                to_status=MaintenanceStatus.IN_PROGRESS,
            )
            logger.info("maintenance %s started on %s", record.id, eq.code)
            return Result.success(record)

        return run_atomic(body, label="equipment.start_maintenance")

    @staticmethod
    def complete_maintenance(
        *,
        caller: Caller,
        record_id,
        completion_notes: str,
        condition: str,
        work_performed: Iterable,
        return_to_service: bool,
        parts_used: Optional[Iterable] = None,
        cost=None,
        issues_found: str = "",
        recommendations: str = "",
        next_maintenance_due: Optional[date] = None,
    ) -> Result[MaintenanceRecord]:
        if not can(caller, "equipment.maintain"):
            return record_denial(caller=caller, action="equipment.maintain", entity_type=MAINTENANCE, entity_id=record_id)

        problems: dict[str, str] = {}
        if not (completion_notes or "").strip():
            problems["completion_notes"] = "This field may not be blank."
        if condition not in EquipmentCondition.values:
            problems["condition"] = "Invalid choice."
        work = _as_list(work_performed)
        if not work:
            problems["work_performed"] = "List at least one item."
        if cost is not None and Decimal(str(cost)) < 0:
            problems["cost"] = "Must be zero or greater."
        if next_maintenance_due is not None and next_maintenance_due <= timezone.localdate():
            problems["next_maintenance_due"] = "Must be in the future."
        if problems:
            return invalid("Invalid maintenance completion.", **problems)

        def body() -> Result[MaintenanceRecord]:
            record = _locked_record(caller, record_id)
            if record is None:
                return not_found("Maintenance record")
            if record.status != MaintenanceStatus.IN_PROGRESS:
                return invalid_transition("maintenance", record.status, "complete")

            now = timezone.now()
            record.status = MaintenanceStatus.COMPLETED
            record.completed_at = now
            record.completion_notes = completion_notes.strip()
            record.work_performed = work
            record.parts_used = _as_list(parts_used)
            record.cost = Decimal(str(cost)) if cost is not None else None
            record.issues_found = issues_found or ""
            record.recommendations = recommendations or ""
            record.condition_after = condition
            record.returned_to_service = bool(return_to_service)
            record.save()

            eq = _locked_equipment(tenant_id=record.tenant_id, facility_id=record.facility_id, equipment_id=record.equipment_id)
            eq.condition = condition
            eq.last_maintenance = now
            fields = ["condition", "last_maintenance", "updated_at"]
            if next_maintenance_due is not None:
                eq.next_maintenance_due = next_maintenance_due
                fields.append("next_maintenance_due")
            eq.save(update_fields=fields)

            target = EquipmentStatus.AVAILABLE if return_to_service else EquipmentStatus.OUT_OF_ORDER
            _set_equipment_status(caller=caller, equipment=eq, status=target, maintenance_id=str(record.id))

            AuditService.log(
                caller=caller,
                event_code="MAINTENANCE_COMPLETED",
                entity_type=MAINTENANCE,
                entity_id=record.id,
                from_status=MaintenanceStatus.IN_PROGRESS,
                to_status=MaintenanceStatus.COMPLETED,
                metadata={"condition": condition, "return_to_service": bool(return_to_service)},
            )
            if not return_to_service:
                publish(
                    "equipment.out_of_order",
                    {
                        "equipment_id": eq.id,
                        "equipment_name": eq.name,
                        "issues": record.issues_found,
                        "tenant_id": eq.tenant_id,
                        "facility_id": eq.facility_id,
                        "actor_user_id": caller.user_id,
                    },
                )
            logger.info("maintenance %s completed on %s -> %s", record.id, eq.code, target)
            return Result.success(record)

        return run_atomic(body, label="equipment.complete_maintenance")

    @staticmethod
    def cancel_maintenance(*, caller: Caller, record_id, reason: str) -> Result[MaintenanceRecord]:
        if not can(caller, "equipment.maintain"):
            return record_denial(caller=caller, action="equipment.maintain", entity_type=MAINTENANCE, entity_id=record_id)
        reason = (reason or "").strip()
        if not reason:
            return invalid("A cancellation reason is required.", reason="This field may not be blank.")
        if len(reason) > 500:
            return invalid("Cancellation reason is too long.", reason="At most 500 characters.")

        def body() -> Result[MaintenanceRecord]:
            record = _locked_record(caller, record_id)
            if record is None:
                return not_found("Maintenance record")
            if not record.is_open:
                return invalid_transition("maintenance", record.status, "cancel")

            previous = record.status
            record.status = MaintenanceStatus.CANCELLED
            record.cancelled_at = timezone.now()
            record.cancellation_reason = reason
            record.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])

            eq = _locked_equipment(tenant_id=record.tenant_id, facility_id=record.facility_id, equipment_id=record.equipment_id)
            # only the in-progress record holds the equipment out of service
            if previous == MaintenanceStatus.IN_PROGRESS and eq.status == EquipmentStatus.UNDER_MAINTENANCE:
                _set_equipment_status(caller=caller, equipment=eq, status=EquipmentStatus.AVAILABLE, maintenance_id=str(record.id))

            AuditService.log(
                caller=caller,
                event_code="MAINTENANCE_CANCELLED",
                entity_type=MAINTENANCE,
                entity_id=record.id,
                from_status=previous,
                to_status=MaintenanceStatus.CANCELLED,
                metadata={"reason": reason},
            )
            logger.info("maintenance %s cancelled from %s", record.id, previous)
            return Result.success(record)

        return run_atomic(body, label="equipment.cancel_maintenance")
