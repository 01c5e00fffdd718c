# rm_core/iam/services/membership.py
from __future__ import annotations

from typing import Iterable
from uuid import UUID

from rm_core.common.permissions import Role
from rm_core.iam.models import FacilityMembership


def _active(**filters):
    return FacilityMembership.objects.filter(is_active=True, user_profile__is_active=True, **filters)


def list_user_facilities(user_id: int) -> list[dict]:
    """
    Facility memberships for /me.

      auth_user -> UserProfile -> FacilityMembership -> Facility (+ Tenant)
    """
    qs = (
        _active(user_profile__user_id=user_id)
        .select_related("facility", "tenant")
        .order_by("facility__name", "role")
    )

    return [
        {
            "tenant_id": str(m.tenant_id),
            "tenant_code": m.tenant.code,
            "facility_id": str(m.facility_id),
            "facility_code": m.facility.code,
            "facility_name": m.facility.name,
            "role": m.role,
            "is_primary": m.is_primary,
        }
        for m in qs
    ]


def is_user_member_of_facility(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> bool:
    """
    Single source of truth for scope enforcement.
    """
    return _active(tenant_id=tenant_id, facility_id=facility_id, user_profile__user_id=user_id).exists()


def roles_at_facility(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> set[str]:
    return set(
        _active(tenant_id=tenant_id, facility_id=facility_id, user_profile__user_id=user_id)
        .values_list("role", flat=True)
    )


def user_has_role(*, user_id: int, tenant_id: UUID, facility_id: UUID, role: Role) -> bool:
    return _active(
        tenant_id=tenant_id,
        facility_id=facility_id,
        user_profile__user_id=user_id,
        role=role,
    ).exists()


def user_ids_with_roles(*, tenant_id: UUID, facility_id: UUID, roles: Iterable[Role]) -> list[int]:
    """Recipients for facility-addressed notifications."""
    return sorted(
        set(
            _active(tenant_id=tenant_id, facility_id=facility_id, role__in=[Role(r) for r in roles])
            .values_list("user_profile__user_id", flat=True)
        )
    )
