# rm_core/ambulances/models.py
from __future__ import annotations

import uuid
from typing import Optional

from django.db import models
from django.db.models import Q

from rm_core.common.models import ScopedModel


class AmbulanceType(models.TextChoices):
    BASIC = "basic", "Basic life support"
    ADVANCED = "advanced", "Advanced life support"
    CRITICAL_CARE = "critical_care", "Critical care"
    NEONATAL = "neonatal", "Neonatal"


class AmbulanceStatus(models.TextChoices):
    AVAILABLE = "available", "Available"
    DISPATCHED = "dispatched", "Dispatched"
    ON_TRIP = "on_trip", "On trip"
    MAINTENANCE = "maintenance", "Maintenance"
    OUT_OF_SERVICE = "out_of_service", "Out of service"


class DispatchStatus(models.TextChoices):
    DISPATCHED = "dispatched", "Dispatched"
    ACKNOWLEDGED = "acknowledged", "Acknowledged"
    EN_ROUTE_PICKUP = "en_route_pickup", "En route to pickup"
    AT_PICKUP = "at_pickup", "At pickup"
    PATIENT_LOADED = "patient_loaded", "Patient loaded"
    EN_ROUTE_DESTINATION = "en_route_destination", "En route to destination"
    AT_DESTINATION = "at_destination", "At destination"
    PATIENT_DELIVERED = "patient_delivered", "Patient delivered"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class DispatchPriority(models.TextChoices):
    LOW = "low", "Low"
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


# Forward path; every step has exactly one predecessor.
DISPATCH_SEQUENCE = (
    DispatchStatus.DISPATCHED,
    DispatchStatus.ACKNOWLEDGED,
    DispatchStatus.EN_ROUTE_PICKUP,
    DispatchStatus.AT_PICKUP,
    DispatchStatus.PATIENT_LOADED,
    DispatchStatus.EN_ROUTE_DESTINATION,
    DispatchStatus.AT_DESTINATION,
    DispatchStatus.PATIENT_DELIVERED,
    DispatchStatus.COMPLETED,
)

TERMINAL_DISPATCH_STATUSES = frozenset({DispatchStatus.COMPLETED, DispatchStatus.CANCELLED})
ACTIVE_DISPATCH_STATUSES = tuple(s for s in DispatchStatus.values if s not in TERMINAL_DISPATCH_STATUSES)

# Status entered -> timestamp field stamped.
DISPATCH_STAMP_FIELDS = {
    DispatchStatus.DISPATCHED: "dispatched_at",
    DispatchStatus.ACKNOWLEDGED: "acknowledged_at",
    DispatchStatus.EN_ROUTE_PICKUP: "en_route_pickup_at",
    DispatchStatus.AT_PICKUP: "arrived_pickup_at",
    DispatchStatus.PATIENT_LOADED: "patient_loaded_at",
    DispatchStatus.EN_ROUTE_DESTINATION: "en_route_destination_at",
    DispatchStatus.AT_DESTINATION: "arrived_destination_at",
    DispatchStatus.PATIENT_DELIVERED: "patient_delivered_at",
    DispatchStatus.COMPLETED: "completed_at",
    DispatchStatus.CANCELLED: "cancelled_at",
}


def previous_status(target: str) -> Optional[str]:
    """The only status `target` may be entered from on the forward path."""
    if target not in DISPATCH_SEQUENCE:
        return None
    i = DISPATCH_SEQUENCE.index(target)
    return DISPATCH_SEQUENCE[i - 1] if i > 0 else None


def next_status(current: str) -> Optional[str]:
    if current not in DISPATCH_SEQUENCE:
        return None
    i = DISPATCH_SEQUENCE.index(current)
    return DISPATCH_SEQUENCE[i + 1] if i + 1 < len(DISPATCH_SEQUENCE) else None


def ambulance_status_for(dispatch_status: str) -> str:
    """Ambulance status implied by the status of its current dispatch."""
    if dispatch_status in TERMINAL_DISPATCH_STATUSES:
        return AmbulanceStatus.AVAILABLE
    if DISPATCH_SEQUENCE.index(dispatch_status) >= DISPATCH_SEQUENCE.index(DispatchStatus.PATIENT_LOADED):
        return AmbulanceStatus.ON_TRIP
    return AmbulanceStatus.DISPATCHED


class Ambulance(ScopedModel):
    vehicle_number = models.CharField(max_length=32)
    call_sign = models.CharField(max_length=32, blank=True, default="")
    ambulance_type = models.CharField(max_length=16, choices=AmbulanceType.choices, default=AmbulanceType.BASIC)
    status = models.CharField(
        max_length=16,
        choices=AmbulanceStatus.choices,
        default=AmbulanceStatus.AVAILABLE,
        db_index=True,
    )

    current_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    last_location_at = models.DateTimeField(null=True, blank=True)

    fuel_level = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "vehicle_number"],
                name="uq_ambulance_scope_vehicle",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status"]),
        ]
        ordering = ["vehicle_number"]

    def __str__(self) -> str:
        return f"{self.vehicle_number} ({self.status})"

    def current_dispatch(self) -> Optional["AmbulanceDispatch"]:
        return self.dispatches.filter(status__in=ACTIVE_DISPATCH_STATUSES).first()

    @property
    def has_location(self) -> bool:
        return self.current_latitude is not None and self.current_longitude is not None


class AmbulanceDispatch(ScopedModel):
    """
    One ambulance assignment between a pickup and a destination.
    The referral link is a lookup used to move the referral along.
    """
    dispatch_number = models.CharField(max_length=32)

    ambulance = models.ForeignKey(Ambulance, on_delete=models.PROTECT, related_name="dispatches")
    referral = models.ForeignKey(
        "referrals.Referral",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="dispatches",
    )
    dispatcher_user_id = models.BigIntegerField(null=True, blank=True)
    crew_ids = models.JSONField(default=list, blank=True)

    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.CharField(max_length=255, blank=True, default="")
    destination_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    destination_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    destination_address = models.CharField(max_length=255, blank=True, default="")

    priority = models.CharField(max_length=16, choices=DispatchPriority.choices, default=DispatchPriority.NORMAL)
    status = models.CharField(
        max_length=24,
        choices=DispatchStatus.choices,
        default=DispatchStatus.DISPATCHED,
        db_index=True,
    )
    special_instructions = models.TextField(blank=True, default="")

    dispatched_at = models.DateTimeField(null=True, blank=True, db_index=True)
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    en_route_pickup_at = models.DateTimeField(null=True, blank=True)
    arrived_pickup_at = models.DateTimeField(null=True, blank=True)
    patient_loaded_at = models.DateTimeField(null=True, blank=True)
    en_route_destination_at = models.DateTimeField(null=True, blank=True)
    arrived_destination_at = models.DateTimeField(null=True, blank=True)
    patient_delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    eta_pickup = models.DateTimeField(null=True, blank=True)
    eta_destination = models.DateTimeField(null=True, blank=True)
    estimated_distance_km = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    estimated_duration_minutes = models.PositiveIntegerField(null=True, blank=True)

    distance_km = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    fuel_consumed = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)

    handover_notes = models.TextField(blank=True, default="")
    receiving_staff = models.CharField(max_length=255, blank=True, default="")
    crew_notes = models.TextField(blank=True, default="")
    cancellation_reason = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "dispatch_number"], name="uq_dispatch_tenant_number"),
            models.UniqueConstraint(
                fields=["ambulance"],
                condition=Q(status__in=ACTIVE_DISPATCH_STATUSES),
                name="uq_ambulance_one_active_dispatch",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status"]),
            models.Index(fields=["tenant_id", "facility_id", "dispatched_at"]),
        ]
        ordering = ["-dispatched_at"]

    def __str__(self) -> str:
        return f"{self.dispatch_number} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DISPATCH_STATUSES

    @property
    def response_minutes(self) -> Optional[float]:
        if not (self.dispatched_at and self.arrived_pickup_at):
            return None
        return (self.arrived_pickup_at - self.dispatched_at).total_seconds() / 60

    @property
    def transport_minutes(self) -> Optional[float]:
        if not (self.dispatched_at and self.arrived_destination_at):
            return None
        return (self.arrived_destination_at - self.dispatched_at).total_seconds() / 60


class DispatchStatusUpdate(models.Model):
    """Append-only trail of dispatch status changes (creation included)."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    dispatch = models.ForeignKey(AmbulanceDispatch, on_delete=models.CASCADE, related_name="status_updates")
    from_status = models.CharField(max_length=24, blank=True, default="")
    to_status = models.CharField(max_length=24)
    actor_user_id = models.BigIntegerField(null=True, blank=True)
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "ambulances_dispatch_status_update"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.dispatch_id}: {self.from_status or '-'} -> {self.to_status}"


class AmbulanceLocation(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    ambulance = models.ForeignKey(Ambulance, on_delete=models.CASCADE, related_name="locations")
    dispatch = models.ForeignKey(
        AmbulanceDispatch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="locations",
    )
    latitude = models.DecimalField(max_digits=9, decimal_places=6)
    longitude = models.DecimalField(max_digits=9, decimal_places=6)
    speed_kmh = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    heading = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    accuracy_m = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)

    recorded_at = models.DateTimeField(db_index=True)

    class Meta:
        db_table = "ambulances_location"
        ordering = ["-recorded_at"]
        indexes = [
            models.Index(fields=["ambulance", "recorded_at"]),
        ]
