# rm_core/referrals/models.py
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from rm_core.beds.models import BedType
from rm_core.common.models import ScopedModel
from rm_core.facilities.models import Facility, Specialty
from rm_core.patients.models import Patient


class Urgency(models.TextChoices):
    EMERGENCY = "emergency", "Emergency"
    URGENT = "urgent", "Urgent"
    SEMI_URGENT = "semi_urgent", "Semi-urgent"
    ROUTINE = "routine", "Routine"


class ReferralStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"
    IN_TRANSIT = "in_transit", "In transit"
    ARRIVED = "arrived", "Arrived"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class ReferralType(models.TextChoices):
    CONSULTATION = "consultation", "Consultation"
    TRANSFER = "transfer", "Transfer"
    EMERGENCY = "emergency", "Emergency"
    DIAGNOSTIC = "diagnostic", "Diagnostic"


class TransportMode(models.TextChoices):
    NONE = "none", "None"
    AMBULANCE = "ambulance", "Ambulance"
    EMERGENCY_AMBULANCE = "emergency_ambulance", "Emergency ambulance"


TERMINAL_STATUSES = frozenset({ReferralStatus.REJECTED, ReferralStatus.COMPLETED, ReferralStatus.CANCELLED})

# pending -> accepted -> (in_transit ->) arrived -> completed
# pending -> rejected; any non-terminal -> cancelled
ALLOWED_TRANSITIONS = {
    ReferralStatus.PENDING: frozenset({ReferralStatus.ACCEPTED, ReferralStatus.REJECTED, ReferralStatus.CANCELLED}),
    ReferralStatus.ACCEPTED: frozenset({
        ReferralStatus.IN_TRANSIT,
        ReferralStatus.ARRIVED,
        ReferralStatus.COMPLETED,
        ReferralStatus.CANCELLED,
    }),
    ReferralStatus.IN_TRANSIT: frozenset({ReferralStatus.ARRIVED, ReferralStatus.CANCELLED}),
    ReferralStatus.ARRIVED: frozenset({ReferralStatus.COMPLETED, ReferralStatus.CANCELLED}),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class Referral(ScopedModel):
    """
    Transfer of a patient's care to another facility.

    `facility_id` is the referring facility and owns the record; the receiving
    facility sees it through `receiving_facility`. Status changes only through
    ReferralService; referrals are cancelled, never deleted.
    """
    referral_number = models.CharField(max_length=32)

    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="referrals")
    receiving_facility = models.ForeignKey(Facility, on_delete=models.PROTECT, related_name="incoming_referrals")
    specialty = models.ForeignKey(Specialty, on_delete=models.PROTECT, null=True, blank=True, related_name="referrals")

    referring_doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="referrals_sent",
    )
    receiving_doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="referrals_received",
    )
    accepted_by_user_id = models.IntegerField(null=True, blank=True)

    urgency = models.CharField(max_length=16, choices=Urgency.choices, default=Urgency.ROUTINE, db_index=True)
    referral_type = models.CharField(max_length=16, choices=ReferralType.choices, default=ReferralType.CONSULTATION)
    status = models.CharField(max_length=16, choices=ReferralStatus.choices, default=ReferralStatus.PENDING, db_index=True)

    reason = models.TextField()
    clinical_summary = models.TextField(blank=True, default="")
    vital_signs = models.JSONField(default=dict, blank=True)
    investigations = models.JSONField(default=list, blank=True)
    current_medications = models.JSONField(default=list, blank=True)

    transport_required = models.CharField(max_length=24, choices=TransportMode.choices, default=TransportMode.NONE)
    bed_required = models.BooleanField(default=False)
    bed_type = models.CharField(max_length=16, choices=BedType.choices, blank=True, default="")

    referred_at = models.DateTimeField(default=timezone.now, db_index=True)
    response_deadline = models.DateTimeField(null=True, blank=True, db_index=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)
    in_transit_at = models.DateTimeField(null=True, blank=True)
    arrived_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    acceptance_notes = models.TextField(blank=True, default="")
    rejection_reason = models.CharField(max_length=1000, blank=True, default="")
    cancellation_reason = models.CharField(max_length=500, blank=True, default="")
    outcome = models.JSONField(default=dict, blank=True)
    completion_notes = models.TextField(blank=True, default="")
    estimated_cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "referrals_referral"
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "referral_number"], name="uq_referral_tenant_number"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status"]),
            models.Index(fields=["tenant_id", "receiving_facility", "status"]),
            models.Index(fields=["status", "response_deadline"]),
        ]
        ordering = ["-referred_at"]

    def __str__(self) -> str:
        return f"{self.referral_number} ({self.status})"

    @property
    def referring_facility_id(self):
        return self.facility_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_overdue(self) -> bool:
        return (
            self.status == ReferralStatus.PENDING
            and self.response_deadline is not None
            and self.response_deadline < timezone.now()
        )
