# rm_core/facilities/models.py
from __future__ import annotations

import uuid

from django.db import models

from rm_core.common.geo import haversine_km
from rm_core.tenants.models import Tenant


class FacilityType(models.TextChoices):
    REFERRAL_HOSPITAL = "REFERRAL_HOSPITAL", "Referral hospital"
    HOSPITAL = "HOSPITAL", "Hospital"
    HEALTH_CENTER = "HEALTH_CENTER", "Health center"
    CLINIC = "CLINIC", "Clinic"
    AMBULANCE_BASE = "AMBULANCE_BASE", "Ambulance base"


class Specialty(models.Model):
    """
    Clinical specialty a referral is addressed to (cardiology, obstetrics, ...).
    Defined per tenant so networks can keep their own catalogue.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="specialties")

    code = models.SlugField(max_length=64)
    name = models.CharField(max_length=128)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "facilities_specialty"
        constraints = [
            models.UniqueConstraint(fields=["tenant", "code"], name="uq_specialty_tenant_code"),
        ]
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Facility(models.Model):
    """
    A hospital/clinic in the referral network.

    Location is used for dispatch routing; `accepts_referrals` gates it as a
    receiving facility.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="facilities")

    name = models.CharField(max_length=255)
    code = models.SlugField(max_length=64)  # unique per tenant

    facility_type = models.CharField(
        max_length=24,
        choices=FacilityType.choices,
        default=FacilityType.HOSPITAL,
        db_index=True,
    )
    parent_facility = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        related_name="child_facilities",
        null=True,
        blank=True,
    )

    phone = models.CharField(max_length=32, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    address = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=128, blank=True, default="")

    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    accepts_referrals = models.BooleanField(default=True)
    emergency_capable = models.BooleanField(default=False)
    specialties = models.ManyToManyField(Specialty, related_name="facilities", blank=True)

    is_active = models.BooleanField(default=True, db_index=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)
    deactivation_reason = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "facilities_facility"
        constraints = [
            models.UniqueConstraint(fields=["tenant", "code"], name="uq_facility_tenant_code"),
        ]
        indexes = [
            models.Index(fields=["tenant", "is_active"]),
            models.Index(fields=["tenant", "facility_type"]),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def distance_to(self, lat, lng) -> float | None:
        if not self.has_location:
            return None
        return haversine_km(self.latitude, self.longitude, lat, lng)
