from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from rm_core.common.models import ScopedModel


class AlertSeverity(models.TextChoices):
    INFO = "INFO", "Info"
    WARNING = "WARNING", "Warning"
    CRITICAL = "CRITICAL", "Critical"


class AlertStatus(models.TextChoices):
    OPEN = "OPEN", "Open"
    ACKED = "ACKED", "Acknowledged"
    RESOLVED = "RESOLVED", "Resolved"
    DISMISSED = "DISMISSED", "Dismissed"


class Alert(ScopedModel):
    """
    Facility-wide alert shown on dashboards (e.g. an incoming emergency referral).
    Links are loose (entity type + UUID) so apps don't import each other.
    """
    code = models.SlugField(max_length=64, db_index=True)  # e.g. "emergency-referral"
    title = models.CharField(max_length=255)
    message = models.TextField(blank=True, default="")

    severity = models.CharField(
        max_length=16,
        choices=AlertSeverity.choices,
        default=AlertSeverity.INFO,
        db_index=True,
    )
    status = models.CharField(
        max_length=16,
        choices=AlertStatus.choices,
        default=AlertStatus.OPEN,
        db_index=True,
    )

    entity_type = models.CharField(max_length=64, blank=True, default="")
    entity_id = models.UUIDField(null=True, blank=True, db_index=True)
    patient_id = models.UUIDField(null=True, blank=True, db_index=True)

    created_by_user_id = models.IntegerField(null=True, blank=True)
    acked_by_user_id = models.IntegerField(null=True, blank=True)
    acked_at = models.DateTimeField(null=True, blank=True)

    meta = models.JSONField(default=dict, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status", "severity"]),
            models.Index(fields=["entity_type", "entity_id"]),
        ]

    def __str__(self) -> str:
        return f"[{self.severity}] {self.title}"


class NotificationChannel(models.TextChoices):
    IN_APP = "IN_APP", "In App"
    EMAIL = "EMAIL", "Email"
    SMS = "SMS", "SMS"
    WHATSAPP = "WHATSAPP", "WhatsApp"


class NotificationStatus(models.TextChoices):
    QUEUED = "QUEUED", "Queued"
    SENT = "SENT", "Sent"
    FAILED = "FAILED", "Failed"


class Notification(ScopedModel):
    """
    One queued message per recipient. Rows are written by NotificationService;
    channel delivery (push/SMS/WhatsApp/email) picks QUEUED rows up elsewhere.
    """
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )

    event_code = models.CharField(max_length=64, db_index=True)  # e.g. "referral.created"
    channel = models.CharField(
        max_length=16,
        choices=NotificationChannel.choices,
        default=NotificationChannel.IN_APP,
        db_index=True,
    )
    status = models.CharField(
        max_length=16,
        choices=NotificationStatus.choices,
        default=NotificationStatus.QUEUED,
        db_index=True,
    )

    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default="")

    alert = models.ForeignKey(
        Alert,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="notifications",
    )

    entity_type = models.CharField(max_length=64, blank=True, default="")
    entity_id = models.UUIDField(null=True, blank=True, db_index=True)

    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    meta = models.JSONField(default=dict, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "recipient", "is_read"]),
        ]

    def mark_read(self) -> None:
        if not self.is_read:
            self.is_read = True
            self.read_at = timezone.now()
