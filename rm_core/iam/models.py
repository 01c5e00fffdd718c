# rm_core/iam/models.py
import uuid
from django.conf import settings
from django.db import models

from rm_core.common.permissions import Role
from rm_core.facilities.models import Facility, Specialty
from rm_core.tenants.models import Tenant


class UserProfile(models.Model):
    """
    Network identity of a Django user (one tenant per user).
    Doctors may carry a specialty, used when routing referrals to them.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="rm_profile")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="user_profiles")

    phone = models.CharField(max_length=32, blank=True, default="")
    specialty = models.ForeignKey(Specialty, on_delete=models.SET_NULL, null=True, blank=True, related_name="doctors")
    license_number = models.CharField(max_length=64, blank=True, default="")
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "iam_user_profile"
        indexes = [
            models.Index(fields=["tenant", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.user.username} ({self.tenant.code})"


class FacilityMembership(models.Model):
    """
    A user's role at one facility. This is what scope enforcement and caller
    resolution read: no membership at the active facility, no capabilities.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="facility_memberships")
    facility = models.ForeignKey(Facility, on_delete=models.PROTECT, related_name="memberships")

    user_profile = models.ForeignKey(UserProfile, on_delete=models.CASCADE, related_name="memberships")
    role = models.CharField(max_length=24, choices=Role.choices, default=Role.READONLY)

    is_primary = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "iam_facility_membership"
        constraints = [
            models.UniqueConstraint(
                fields=["facility", "user_profile", "role"],
                name="uq_facility_user_role",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "facility", "role"]),
            models.Index(fields=["tenant", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.user_profile_id} @ {self.facility_id} as {self.role}"
