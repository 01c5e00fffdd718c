# rm_core/beds/models.py
from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from rm_core.common.models import ScopedModel
from rm_core.patients.models import Patient


class BedType(models.TextChoices):
    GENERAL = "general", "General"
    ICU = "icu", "ICU"
    MATERNITY = "maternity", "Maternity"
    PEDIATRIC = "pediatric", "Pediatric"
    ISOLATION = "isolation", "Isolation"


class BedStatus(models.TextChoices):
    AVAILABLE = "available", "Available"
    OCCUPIED = "occupied", "Occupied"
    MAINTENANCE = "maintenance", "Maintenance"


class ReservationStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    CONFIRMED = "confirmed", "Confirmed"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"


class ReservationPriority(models.TextChoices):
    LOW = "low", "Low"
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


class Bed(ScopedModel):
    """
    A bed at a facility. `status` is physical state; "reserved" is derived
    from an active reservation and never stored.
    """
    bed_number = models.CharField(max_length=32)
    ward = models.CharField(max_length=64, blank=True, default="")
    room = models.CharField(max_length=32, blank=True, default="")
    bed_type = models.CharField(max_length=16, choices=BedType.choices, default=BedType.GENERAL, db_index=True)

    status = models.CharField(max_length=16, choices=BedStatus.choices, default=BedStatus.AVAILABLE, db_index=True)
    current_patient = models.ForeignKey(
        Patient,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    occupied_since = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "beds_bed"
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "facility_id", "bed_number"], name="uq_bed_scope_number"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status", "bed_type"]),
        ]

    def __str__(self) -> str:
        return f"Bed {self.bed_number} ({self.ward})"

    def active_reservation(self):
        return self.reservations.filter(status=ReservationStatus.ACTIVE).first()

    @property
    def is_reserved(self) -> bool:
        return self.reservations.filter(
            status=ReservationStatus.ACTIVE,
            reserved_until__gt=timezone.now(),
        ).exists()


class BedReservation(ScopedModel):
    """
    Hold on a bed for an incoming patient (usually an accepted referral).
    At most one ACTIVE reservation per bed, enforced by the database.
    """
    bed = models.ForeignKey(Bed, on_delete=models.PROTECT, related_name="reservations")
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="bed_reservations")
    referral_id = models.UUIDField(null=True, blank=True, db_index=True)

    reserved_by_user_id = models.IntegerField(null=True, blank=True)
    reserved_until = models.DateTimeField()
    priority = models.CharField(
        max_length=16,
        choices=ReservationPriority.choices,
        default=ReservationPriority.NORMAL,
    )
    notes = models.TextField(blank=True, default="")

    status = models.CharField(
        max_length=16,
        choices=ReservationStatus.choices,
        default=ReservationStatus.ACTIVE,
        db_index=True,
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=500, blank=True, default="")
    expired_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "beds_reservation"
        constraints = [
            models.UniqueConstraint(
                fields=["bed"],
                condition=Q(status="active"),
                name="uq_bed_one_active_reservation",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status"]),
            models.Index(fields=["status", "reserved_until"]),
        ]

    def __str__(self) -> str:
        return f"Reservation {self.bed_id} -> {self.patient_id} ({self.status})"

    def is_stale(self, at=None) -> bool:
        return self.status == ReservationStatus.ACTIVE and self.reserved_until <= (at or timezone.now())
