# rm_core/tests/helpers.py
from django.contrib.auth import get_user_model

from rm_core.iam.models import FacilityMembership, UserProfile


def scoped(tenant, facility):
    return {
        "HTTP_X_TENANT_ID": str(tenant.id),
        "HTTP_X_FACILITY_ID": str(facility.id),
    }


def make_member(username, *, tenant, facility, roles, password="pass12345"):
    """
    auth_user -> UserProfile -> FacilityMembership (one row per role).
    Reuses the profile when the user already exists, so a second call adds
    memberships at another facility.
    """
    User = get_user_model()
    user, created = User.objects.get_or_create(username=username, defaults={"is_active": True})
    if created:
        user.set_password(password)
        user.save(update_fields=["password"])

    profile, _ = UserProfile.objects.get_or_create(user=user, defaults={"tenant": tenant})
    for i, role in enumerate(roles):
        FacilityMembership.objects.get_or_create(
            tenant=tenant,
            facility=facility,
            user_profile=profile,
            role=role,
            defaults={"is_primary": i == 0, "is_active": True},
        )
    return user
