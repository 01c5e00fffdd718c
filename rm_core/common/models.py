# rm_core/common/models.py
from __future__ import annotations

import uuid
from django.db import models


class TimeStampedModel(models.Model):
    """
    Standard timestamps for all entities.
    """
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ScopedModel(TimeStampedModel):
    """
    Owning tenant + facility for every lifecycle entity.
    (Middleware enforces request scope; this enforces persistence scope.)

    The facility that creates a record owns it. Cross-facility links
    (receiving facility, referral on a dispatch) are plain lookups.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    class Meta:
        abstract = True


class IdempotencyRecord(TimeStampedModel):
    """
    Stored response for a create call retried with the same Idempotency-Key.

    Keyed by:
      (tenant_id, facility_id, user_id, method, path, idempotency_key)
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    user_id = models.BigIntegerField(db_index=True)
    method = models.CharField(max_length=16)
    path = models.CharField(max_length=255)
    idempotency_key = models.CharField(max_length=255)

    status_code = models.PositiveIntegerField(default=201)
    response_data = models.JSONField(default=dict)

    class Meta:
        db_table = "common_idempotency_record"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "user_id", "method", "path", "idempotency_key"],
                name="uq_idempo_scope_user_key",
            )
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.method} {self.path} {self.idempotency_key}"
