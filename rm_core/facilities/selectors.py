# rm_core/facilities/selectors.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from django.db.models import Count, Q, QuerySet

from rm_core.facilities.models import Facility, Specialty


def facilities_for_tenant(*, tenant_id: UUID, active_only: bool = True) -> QuerySet[Facility]:
    qs = Facility.objects.filter(tenant_id=tenant_id).prefetch_related("specialties")
    if active_only:
        qs = qs.filter(is_active=True)
    return qs.order_by("name")


def facility_by_id(*, tenant_id: UUID, facility_id: UUID) -> Facility:
    return Facility.objects.get(id=facility_id, tenant_id=tenant_id)


def specialties_for_tenant(*, tenant_id: UUID) -> QuerySet[Specialty]:
    return Specialty.objects.filter(tenant_id=tenant_id, is_active=True).order_by("name")


def suitable_facilities(
    *,
    tenant_id: UUID,
    specialty_id: Optional[UUID] = None,
    bed_type: Optional[str] = None,
    emergency: bool = False,
    exclude_facility_id: Optional[UUID] = None,
    lat=None,
    lng=None,
) -> list[dict]:
    """
    Receiving-facility candidates for a referral: active, accepting referrals,
    offering the specialty and, when asked, with a free bed of the given type.
    Sorted by distance when an origin is given, else by free beds.
    """
    from rm_core.beds.models import Bed, BedStatus, ReservationStatus

    qs = Facility.objects.filter(tenant_id=tenant_id, is_active=True, accepts_referrals=True)
    if exclude_facility_id:
        qs = qs.exclude(id=exclude_facility_id)
    if specialty_id:
        qs = qs.filter(specialties__id=specialty_id)
    if emergency:
        qs = qs.filter(emergency_capable=True)

    bed_filter = Q(status=BedStatus.AVAILABLE, is_active=True) & ~Q(reservations__status=ReservationStatus.ACTIVE)
    if bed_type:
        bed_filter &= Q(bed_type=bed_type)
    free_beds = dict(
        Bed.objects.filter(bed_filter, tenant_id=tenant_id)
        .values_list("facility_id")
        .annotate(n=Count("id", distinct=True))
    )

    items = []
    for f in qs.distinct():
        beds = free_beds.get(f.id, 0)
        if bed_type and beds == 0:
            continue
        distance = f.distance_to(lat, lng) if lat is not None and lng is not None else None
        items.append(
            {
                "facility": f,
                "available_beds": beds,
                "distance_km": None if distance is None else round(distance, 2),
            }
        )

    if lat is not None and lng is not None:
        items.sort(key=lambda i: (i["distance_km"] is None, i["distance_km"] or 0.0))
    else:
        items.sort(key=lambda i: -i["available_beds"])
    return items
