# rm_core/common/scope.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from rest_framework.exceptions import ValidationError

MISSING_SCOPE_MSG = "Missing scope headers. Provide X-Tenant-Id and X-Facility-Id."
INVALID_SCOPE_MSG = "Invalid scope headers. Provide valid UUIDs for X-Tenant-Id and X-Facility-Id."


@dataclass(frozen=True)
class Scope:
    tenant_id: Optional[UUID]
    facility_id: Optional[UUID]

    @property
    def is_valid(self) -> bool:
        return self.tenant_id is not None and self.facility_id is not None


HDR_TENANT = "X-Tenant-Id"
HDR_FACILITY = "X-Facility-Id"

_INVALID = Scope(tenant_id=None, facility_id=None)


def _parse_uuid(value) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _get_header(request, name: str) -> Optional[str]:
    """
    request.headers is case-insensitive; fall back to META for test requests.
    """
    headers = getattr(request, "headers", None)
    if headers is not None:
        v = headers.get(name)
        if v:
            return v
    meta_key = "HTTP_" + name.upper().replace("-", "_")
    return request.META.get(meta_key)


def resolve_scope(request) -> Optional[Scope]:
    """
    Returns:
      - None when no scope headers are present at all
      - an invalid Scope (both ids None) when only one header is present or a value is not a UUID
      - a valid Scope otherwise

    Values already attached by middleware/auth win over headers.
    """
    t = getattr(request, "tenant_id", None)
    f = getattr(request, "facility_id", None)
    if t and f:
        tu, fu = _parse_uuid(t), _parse_uuid(f)
        if tu and fu:
            return Scope(tenant_id=tu, facility_id=fu)

    tenant_raw = _get_header(request, HDR_TENANT)
    facility_raw = _get_header(request, HDR_FACILITY)

    if not tenant_raw and not facility_raw:
        return None
    if not tenant_raw or not facility_raw:
        return _INVALID

    tenant_id = _parse_uuid(tenant_raw)
    facility_id = _parse_uuid(facility_raw)
    if not tenant_id or not facility_id:
        return _INVALID
    return Scope(tenant_id=tenant_id, facility_id=facility_id)


def require_scope(request) -> Scope:
    """
    Scope for a view, or a 400 (ValidationError) with the canonical message.
    Membership is checked by the auth/permission layer, not here.
    """
    scope = resolve_scope(request)
    if scope is None:
        raise ValidationError(MISSING_SCOPE_MSG)
    if not scope.is_valid:
        both_present = bool(_get_header(request, HDR_TENANT) and _get_header(request, HDR_FACILITY))
        raise ValidationError(INVALID_SCOPE_MSG if both_present else MISSING_SCOPE_MSG)

    request.tenant_id = scope.tenant_id
    request.facility_id = scope.facility_id
    return scope
