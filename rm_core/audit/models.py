# rm_core/audit/models.py
from django.conf import settings
from django.db import models

from rm_core.common.models import ScopedModel


class AuditEvent(ScopedModel):
    """
    Append-only audit record. Written by AuditService only; never updated.

    Lifecycle transitions store `from_status` / `to_status` in metadata;
    permission denials use event_code SECURITY_PERMISSION_DENIED.
    """
    event_code = models.CharField(max_length=128, db_index=True)  # e.g. "REFERRAL_ACCEPTED"
    entity_type = models.CharField(max_length=64, db_index=True)  # e.g. "REFERRAL"
    entity_id = models.UUIDField(null=True, blank=True, db_index=True)

    actor_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="audit_events",
        null=True,
        blank=True,
    )

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict)

    class Meta:
        db_table = "audit_audit_event"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "occurred_at"]),
            models.Index(fields=["entity_type", "entity_id"]),
            models.Index(fields=["tenant_id", "facility_id", "event_code"]),
        ]

    def __str__(self) -> str:
        return f"{self.event_code} {self.entity_type}:{self.entity_id}"
