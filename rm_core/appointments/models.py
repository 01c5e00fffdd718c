# rm_core/appointments/models.py
from __future__ import annotations

from datetime import datetime, timedelta

from django.conf import settings
from django.db import models

from rm_core.common.models import ScopedModel
from rm_core.patients.models import Patient


class AppointmentType(models.TextChoices):
    CONSULTATION = "consultation", "Consultation"
    FOLLOW_UP = "follow_up", "Follow-up"
    PROCEDURE = "procedure", "Procedure"
    TELEMEDICINE = "telemedicine", "Telemedicine"


class AppointmentStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    CONFIRMED = "confirmed", "Confirmed"
    CHECKED_IN = "checked_in", "Checked in"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class AppointmentPriority(models.TextChoices):
    LOW = "low", "Low"
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"
    URGENT = "urgent", "Urgent"


MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480


class Appointment(ScopedModel):
    appointment_number = models.CharField(max_length=32)

    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="appointments")
    doctor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="appointments")
    booked_by_user_id = models.BigIntegerField(null=True, blank=True)

    # [scheduled_at, ends_at) is the occupied interval.
    scheduled_at = models.DateTimeField(db_index=True)
    duration_minutes = models.PositiveSmallIntegerField(default=30)
    ends_at = models.DateTimeField(db_index=True)

    appointment_type = models.CharField(
        max_length=16,
        choices=AppointmentType.choices,
        default=AppointmentType.CONSULTATION,
    )
    status = models.CharField(
        max_length=16,
        choices=AppointmentStatus.choices,
        default=AppointmentStatus.SCHEDULED,
        db_index=True,
    )
    priority = models.CharField(max_length=16, choices=AppointmentPriority.choices, default=AppointmentPriority.NORMAL)
    reason = models.TextField(blank=True, default="")
    notes = models.TextField(blank=True, default="")

    confirmed_at = models.DateTimeField(null=True, blank=True)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=500, blank=True, default="")

    doctor_notes = models.TextField(blank=True, default="")
    diagnosis = models.TextField(blank=True, default="")
    treatment_plan = models.TextField(blank=True, default="")
    follow_up_required = models.BooleanField(default=False)
    follow_up_of = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="follow_ups",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "appointment_number"], name="uq_appointment_tenant_number"),
        ]
        indexes = [
            models.Index(fields=["doctor", "scheduled_at"]),
            models.Index(fields=["tenant_id", "facility_id", "scheduled_at"]),
        ]
        ordering = ["scheduled_at"]

    def __str__(self) -> str:
        return f"{self.appointment_number} ({self.status})"

    def save(self, *args, **kwargs):
        if self.scheduled_at and self.duration_minutes:
            self.ends_at = self.scheduled_at + timedelta(minutes=self.duration_minutes)
        super().save(*args, **kwargs)

    def can_be_cancelled(self, *, now: datetime, cutoff_minutes: int) -> bool:
        if self.status in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED):
            return False
        return self.scheduled_at - now >= timedelta(minutes=cutoff_minutes)
