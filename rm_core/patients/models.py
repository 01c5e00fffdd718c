# rm_core/patients/models.py
from __future__ import annotations

from datetime import date

from django.db import models
from django.utils import timezone

from rm_core.common.models import ScopedModel


class Gender(models.TextChoices):
    MALE = "male", "Male"
    FEMALE = "female", "Female"
    OTHER = "other", "Other"
    UNKNOWN = "unknown", "Unknown"


class Patient(ScopedModel):
    """
    Patient registered at a facility. Referrals, appointments and bed
    reservations point at it; other facilities in the tenant see it through
    the referral it travels with.
    """
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=16, choices=Gender.choices, default=Gender.UNKNOWN)
    national_id = models.CharField(max_length=64, blank=True, default="")
    address = models.CharField(max_length=255, blank=True, default="")

    emergency_contact_name = models.CharField(max_length=255, blank=True, default="")
    emergency_contact_phone = models.CharField(max_length=32, blank=True, default="")

    # facility-local medical record number
    mrn = models.CharField(max_length=64)

    class Meta:
        db_table = "patients_patient"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "mrn"],
                name="uq_patient_scope_mrn",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "full_name"]),
            models.Index(fields=["tenant_id", "facility_id", "phone"]),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.mrn})"

    def age_on(self, day: date) -> int | None:
        if self.date_of_birth is None:
            return None
        dob = self.date_of_birth
        return day.year - dob.year - ((day.month, day.day) < (dob.month, dob.day))

    @property
    def age(self) -> int | None:
        return self.age_on(timezone.localdate())
