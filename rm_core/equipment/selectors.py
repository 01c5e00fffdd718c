# rm_core/equipment/selectors.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from django.db.models import QuerySet
from django.utils import timezone

from rm_core.equipment.models import Equipment, MaintenanceRecord

HISTORY_LIMIT = 50


def equipment_for_scope(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[Equipment]:
    return Equipment.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def maintenance_history(equipment: Equipment, *, limit: int = HISTORY_LIMIT) -> QuerySet[MaintenanceRecord]:
    return equipment.maintenance_records.order_by("-scheduled_date")[:limit]


def overdue_equipment(*, tenant_id: UUID, facility_id: UUID, today: Optional[date] = None) -> QuerySet[Equipment]:
    today = today or timezone.localdate()
    return equipment_for_scope(tenant_id=tenant_id, facility_id=facility_id).filter(
        is_active=True,
        next_maintenance_due__lt=today,
    ).order_by("next_maintenance_due")


def maintenance_for_scope(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    status: Optional[str] = None,
    equipment_id: Optional[UUID] = None,
) -> QuerySet[MaintenanceRecord]:
    qs = MaintenanceRecord.objects.filter(tenant_id=tenant_id, facility_id=facility_id).select_related("equipment")
    if status:
        qs = qs.filter(status=status)
    if equipment_id:
        qs = qs.filter(equipment_id=equipment_id)
    return qs
