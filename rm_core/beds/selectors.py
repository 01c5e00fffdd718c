# rm_core/beds/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import Exists, OuterRef, QuerySet
from django.utils import timezone

from rm_core.beds.models import Bed, BedReservation, BedStatus, ReservationStatus


def _live_reservation(now=None):
    return BedReservation.objects.filter(
        bed=OuterRef("pk"),
        status=ReservationStatus.ACTIVE,
        reserved_until__gt=now or timezone.now(),
    )


def beds_for_scope(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[Bed]:
    return (
        Bed.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
        .annotate(reserved=Exists(_live_reservation()))
        .order_by("ward", "bed_number")
    )


def available_beds(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    ward: str | None = None,
    bed_type: str | None = None,
) -> QuerySet[Bed]:
    """Active, physically available beds with no live reservation."""
    qs = beds_for_scope(tenant_id=tenant_id, facility_id=facility_id).filter(
        is_active=True,
        status=BedStatus.AVAILABLE,
        reserved=False,
    )
    if ward:
        qs = qs.filter(ward=ward)
    if bed_type:
        qs = qs.filter(bed_type=bed_type)
    return qs


def occupancy_summary(*, tenant_id: UUID, facility_id: UUID) -> dict:
    beds = list(beds_for_scope(tenant_id=tenant_id, facility_id=facility_id).filter(is_active=True))
    summary = {"total": len(beds), "available": 0, "reserved": 0, "occupied": 0, "maintenance": 0}
    for bed in beds:
        if bed.status == BedStatus.AVAILABLE and bed.reserved:
            summary["reserved"] += 1
        else:
            summary[bed.status] += 1
    return summary


def reservations_for_scope(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    status: str | None = None,
    referral_id: UUID | None = None,
) -> QuerySet[BedReservation]:
    qs = BedReservation.objects.filter(tenant_id=tenant_id, facility_id=facility_id).select_related("bed", "patient")
    if status:
        qs = qs.filter(status=status)
    if referral_id:
        qs = qs.filter(referral_id=referral_id)
    return qs.order_by("-created_at")
