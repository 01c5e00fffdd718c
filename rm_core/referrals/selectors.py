# rm_core/referrals/selectors.py
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from django.db.models import Q, QuerySet
from django.utils import timezone

from rm_core.common.permissions import Caller
from rm_core.referrals.models import Referral, ReferralStatus, Urgency


def visible_referrals(caller: Caller) -> QuerySet[Referral]:
    """Referrals sent from or addressed to the caller's facility."""
    return (
        Referral.objects.filter(tenant_id=caller.tenant_id)
        .filter(Q(facility_id=caller.facility_id) | Q(receiving_facility_id=caller.facility_id))
        .select_related("patient", "receiving_facility", "specialty")
    )


def get_visible_referral(caller: Caller, referral_id) -> Optional[Referral]:
    return visible_referrals(caller).filter(id=referral_id).first()


def list_referrals(
    caller: Caller,
    *,
    status: str | None = None,
    urgency: str | None = None,
    direction: str | None = None,
    patient_id: UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
) -> QuerySet[Referral]:
    qs = visible_referrals(caller)

    if direction == "incoming":
        qs = qs.filter(receiving_facility_id=caller.facility_id)
    elif direction == "outgoing":
        qs = qs.filter(facility_id=caller.facility_id)

    if status:
        qs = qs.filter(status=status)
    if urgency:
        qs = qs.filter(urgency=urgency)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if date_from:
        qs = qs.filter(referred_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(referred_at__date__lte=date_to)

    s = (search or "").strip()
    if s:
        qs = qs.filter(
            Q(referral_number__icontains=s)
            | Q(patient__full_name__icontains=s)
            | Q(patient__mrn__icontains=s)
            | Q(reason__icontains=s)
        )

    return qs.order_by("-referred_at")


def overdue_referrals(caller: Caller) -> QuerySet[Referral]:
    """Incoming referrals still pending past their response deadline."""
    return visible_referrals(caller).filter(
        receiving_facility_id=caller.facility_id,
        status=ReferralStatus.PENDING,
        response_deadline__lt=timezone.now(),
    ).order_by("response_deadline")


def due_soon_referrals(caller: Caller, *, hours: int = 2) -> QuerySet[Referral]:
    now = timezone.now()
    return visible_referrals(caller).filter(
        receiving_facility_id=caller.facility_id,
        status=ReferralStatus.PENDING,
        response_deadline__gte=now,
        response_deadline__lte=now + timedelta(hours=hours),
    ).order_by("response_deadline")


def referral_stats(caller: Caller, *, date_from: date | None = None, date_to: date | None = None) -> dict:
    """
    Counts by status and urgency plus the average response time (minutes
    from referral to accept/reject) for referrals visible to the caller.
    """
    qs = list_referrals(caller, date_from=date_from, date_to=date_to)
    rows = list(qs.values("status", "urgency", "referred_at", "responded_at"))

    by_status = {s: 0 for s in ReferralStatus.values}
    by_urgency = {u: 0 for u in Urgency.values}
    response_minutes = []
    for row in rows:
        by_status[row["status"]] += 1
        by_urgency[row["urgency"]] += 1
        if row["responded_at"] is not None:
            response_minutes.append((row["responded_at"] - row["referred_at"]).total_seconds() / 60)

    avg = round(sum(response_minutes) / len(response_minutes), 1) if response_minutes else None
    return {
        "total": len(rows),
        "by_status": by_status,
        "by_urgency": by_urgency,
        "average_response_minutes": avg,
    }


URGENCY_BASE_PRIORITY = {
    Urgency.EMERGENCY: 100,
    Urgency.URGENT: 75,
    Urgency.SEMI_URGENT: 50,
    Urgency.ROUTINE: 25,
}


def calculate_priority(referral: Referral) -> int:
    """
    0-100 triage score: urgency base, +10 for children (<18), +5 for the
    elderly (>65), capped at 100.
    """
    score = URGENCY_BASE_PRIORITY.get(referral.urgency, 0)
    age = referral.patient.age_on(timezone.localdate(referral.referred_at))
    if age is not None:
        if age < 18:
            score += 10
        elif age > 65:
            score += 5
    return min(score, 100)
