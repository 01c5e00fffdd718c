# rm_core/iam/scope.py
from __future__ import annotations

from rest_framework.exceptions import PermissionDenied, ValidationError

from rm_core.common.scope import (
    HDR_FACILITY,
    HDR_TENANT,
    INVALID_SCOPE_MSG,
    MISSING_SCOPE_MSG,
    Scope,
    _get_header,
    _parse_uuid,
)
from rm_core.iam.services.membership import is_user_member_of_facility


def resolve_scope_from_headers(request) -> Scope | None:
    """
    Reads scope headers. Returns Scope if both are present.
    - neither present: None
    - only one present: 400 with MISSING_SCOPE_MSG
    - not UUIDs: 400 with INVALID_SCOPE_MSG
    """
    tenant_raw = _get_header(request, HDR_TENANT)
    facility_raw = _get_header(request, HDR_FACILITY)

    if not tenant_raw and not facility_raw:
        return None
    if not tenant_raw or not facility_raw:
        raise ValidationError(MISSING_SCOPE_MSG)

    tenant_id = _parse_uuid(tenant_raw)
    facility_id = _parse_uuid(facility_raw)
    if tenant_id is None or facility_id is None:
        raise ValidationError(INVALID_SCOPE_MSG)
    return Scope(tenant_id=tenant_id, facility_id=facility_id)


def assert_user_membership(user, scope: Scope) -> None:
    """
    403 unless the user is an active member of (tenant_id, facility_id).
    Superusers may act for any facility.
    """
    if not user or not getattr(user, "is_authenticated", False):
        raise PermissionDenied("Authentication required to set scope.")
    if getattr(user, "is_superuser", False):
        return

    if not is_user_member_of_facility(user_id=user.id, tenant_id=scope.tenant_id, facility_id=scope.facility_id):
        raise PermissionDenied("You do not have access to the selected facility.")


def apply_scope_from_headers(request, user=None) -> Scope | None:
    """
    Used by CookieOrHeaderJWTAuthentication.

    With scope headers: validate, check membership, attach request.scope /
    tenant_id / facility_id and return the Scope. Without: return None.
    """
    scope = resolve_scope_from_headers(request)
    if scope is None:
        return None

    assert_user_membership(user or getattr(request, "user", None), scope)

    request.tenant_id = scope.tenant_id
    request.facility_id = scope.facility_id
    request.scope = scope
    return scope
