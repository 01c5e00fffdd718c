# rm_core/appointments/selectors.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from django.db.models import QuerySet

from rm_core.appointments.models import Appointment


def appointments_for_scope(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    doctor_id: Optional[int] = None,
    patient_id: Optional[UUID] = None,
    status: Optional[str] = None,
    day: Optional[date] = None,
) -> QuerySet[Appointment]:
    qs = Appointment.objects.filter(tenant_id=tenant_id, facility_id=facility_id).select_related("patient", "doctor")
    if doctor_id:
        qs = qs.filter(doctor_id=doctor_id)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if status:
        qs = qs.filter(status=status)
    if day:
        qs = qs.filter(scheduled_at__date=day)
    return qs.order_by("scheduled_at")
