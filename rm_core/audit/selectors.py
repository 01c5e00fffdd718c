# rm_core/audit/selectors.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from django.db.models import QuerySet

from rm_core.audit.models import AuditEvent


def list_audit_events(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    event_code: str | None = None,
    actor_user_id: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
) -> QuerySet[AuditEvent]:
    qs = AuditEvent.objects.filter(tenant_id=tenant_id, facility_id=facility_id)

    if entity_type:
        qs = qs.filter(entity_type=entity_type)
    if entity_id:
        qs = qs.filter(entity_id=entity_id)
    if event_code:
        qs = qs.filter(event_code=event_code)
    if actor_user_id is not None:
        qs = qs.filter(actor_user_id=actor_user_id)
    if since:
        qs = qs.filter(occurred_at__gte=since)
    if until:
        qs = qs.filter(occurred_at__lt=until)

    return qs.order_by("-occurred_at")


def entity_timeline(*, entity_type: str, entity_id: UUID) -> QuerySet[AuditEvent]:
    """Oldest first; used by tests and admin to read a lifecycle back."""
    return AuditEvent.objects.filter(entity_type=entity_type, entity_id=entity_id).order_by("occurred_at")
