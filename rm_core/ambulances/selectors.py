# rm_core/ambulances/selectors.py
from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from django.db.models import Count, QuerySet

from rm_core.ambulances.models import (
    Ambulance,
    AmbulanceDispatch,
    AmbulanceLocation,
    AmbulanceStatus,
    DispatchStatus,
    DispatchStatusUpdate,
)
from rm_core.common.geo import haversine_km


def ambulances_for_scope(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[Ambulance]:
    return Ambulance.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def nearby_available(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    lat: float,
    lng: float,
    radius_km: float = 20,
) -> list[tuple[Ambulance, float]]:
    """Available ambulances with a known position within `radius_km`, nearest first."""
    candidates = ambulances_for_scope(tenant_id=tenant_id, facility_id=facility_id).filter(
        status=AmbulanceStatus.AVAILABLE,
        is_active=True,
        current_latitude__isnull=False,
        current_longitude__isnull=False,
    )
    found = []
    for amb in candidates:
        d = haversine_km(lat, lng, amb.current_latitude, amb.current_longitude)
        if d <= radius_km:
            found.append((amb, round(d, 2)))
    found.sort(key=lambda pair: pair[1])
    return found


def recent_locations(ambulance: Ambulance, *, limit: int = 50) -> QuerySet[AmbulanceLocation]:
    return ambulance.locations.order_by("-recorded_at")[:limit]


def dispatches_for_scope(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    status: Optional[str] = None,
    ambulance_id: Optional[UUID] = None,
    referral_id: Optional[UUID] = None,
    active_only: bool = False,
) -> QuerySet[AmbulanceDispatch]:
    qs = AmbulanceDispatch.objects.filter(tenant_id=tenant_id, facility_id=facility_id).select_related("ambulance")
    if status:
        qs = qs.filter(status=status)
    if active_only:
        qs = qs.exclude(status__in=[DispatchStatus.COMPLETED, DispatchStatus.CANCELLED])
    if ambulance_id:
        qs = qs.filter(ambulance_id=ambulance_id)
    if referral_id:
        qs = qs.filter(referral_id=referral_id)
    return qs


def dispatch_timeline(dispatch: AmbulanceDispatch) -> QuerySet[DispatchStatusUpdate]:
    return dispatch.status_updates.order_by("created_at")


def _average(values: list[float]) -> Optional[float]:
    return round(sum(values) / len(values), 1) if values else None


def dispatch_analytics(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict:
    qs = dispatches_for_scope(tenant_id=tenant_id, facility_id=facility_id)
    if date_from:
        qs = qs.filter(dispatched_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(dispatched_at__date__lte=date_to)

    by_status = {row["status"]: row["n"] for row in qs.values("status").annotate(n=Count("id")).order_by()}
    by_priority = {row["priority"]: row["n"] for row in qs.values("priority").annotate(n=Count("id")).order_by()}

    timed = list(qs.exclude(dispatched_at__isnull=True).only("dispatched_at", "arrived_pickup_at", "arrived_destination_at"))
    response = [d.response_minutes for d in timed if d.response_minutes is not None]
    transport = [d.transport_minutes for d in timed if d.transport_minutes is not None]

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_priority": by_priority,
        "completed": by_status.get(DispatchStatus.COMPLETED, 0),
        "cancelled": by_status.get(DispatchStatus.CANCELLED, 0),
        "average_response_minutes": _average(response),
        "average_transport_minutes": _average(transport),
    }
