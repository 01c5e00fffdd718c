# rm_core/common/permissions.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Optional
from uuid import UUID

from django.db import models
from rest_framework.permissions import BasePermission, SAFE_METHODS

logger = logging.getLogger(__name__)


class Role(models.TextChoices):
    ADMIN = "ADMIN", "Administrator"
    DOCTOR = "DOCTOR", "Doctor"
    NURSE = "NURSE", "Nurse"
    DISPATCHER = "DISPATCHER", "Dispatcher"
    AMBULANCE_CREW = "AMBULANCE_CREW", "Ambulance crew"
    RECEPTIONIST = "RECEPTIONIST", "Receptionist"
    TECHNICIAN = "TECHNICIAN", "Biomedical technician"
    READONLY = "READONLY", "Read only"


# -----------------------------
# Capabilities
# -----------------------------

VIEW_CAPABILITIES = frozenset({
    "patients.view",
    "facilities.view",
    "referrals.view",
    "ambulances.view",
    "dispatches.view",
    "appointments.view",
    "equipment.view",
    "beds.view",
    "alerts.view",
})

ALL_CAPABILITIES = VIEW_CAPABILITIES | frozenset({
    "patients.manage",
    "facilities.manage",
    "referrals.create",
    "referrals.accept",
    "referrals.reject",
    "referrals.progress",
    "referrals.complete",
    "referrals.cancel",
    "ambulances.manage",
    "ambulances.track",
    "dispatches.create",
    "dispatches.transition",
    "dispatches.cancel",
    "dispatches.analytics",
    "appointments.book",
    "appointments.front_desk",
    "appointments.treat",
    "appointments.cancel",
    "equipment.manage",
    "equipment.use",
    "equipment.maintain",
    "beds.manage",
    "beds.reserve",
    "audit.view",
})

ROLE_CAPABILITIES: Dict[Role, FrozenSet[str]] = {
    Role.ADMIN: ALL_CAPABILITIES,
    Role.DOCTOR: VIEW_CAPABILITIES | {
        "patients.manage",
        "referrals.create", "referrals.accept", "referrals.reject",
        "referrals.progress", "referrals.complete", "referrals.cancel",
        "appointments.book", "appointments.front_desk", "appointments.treat", "appointments.cancel",
        "beds.reserve",
        "equipment.use",
    },
    Role.NURSE: VIEW_CAPABILITIES | {
        "patients.manage",
        "referrals.create", "referrals.progress",
        "appointments.book", "appointments.front_desk", "appointments.cancel",
        "beds.reserve", "beds.manage",
        "equipment.use",
    },
    Role.DISPATCHER: VIEW_CAPABILITIES | {
        "referrals.progress",
        "ambulances.manage", "ambulances.track",
        "dispatches.create", "dispatches.transition", "dispatches.cancel", "dispatches.analytics",
    },
    Role.AMBULANCE_CREW: frozenset({
        "patients.view", "facilities.view", "referrals.view",
        "ambulances.view", "ambulances.track",
        "dispatches.view", "dispatches.transition",
        "alerts.view",
    }),
    Role.RECEPTIONIST: frozenset({
        "patients.view", "patients.manage", "facilities.view",
        "appointments.view", "appointments.book", "appointments.front_desk", "appointments.cancel",
        "beds.view",
        "alerts.view",
    }),
    Role.TECHNICIAN: frozenset({
        "facilities.view",
        "equipment.view", "equipment.manage", "equipment.use", "equipment.maintain",
        "alerts.view",
    }),
    Role.READONLY: VIEW_CAPABILITIES,
}


def capabilities_for(roles) -> FrozenSet[str]:
    caps: set[str] = set()
    for role in roles:
        caps |= ROLE_CAPABILITIES.get(Role(role), frozenset())
    return frozenset(caps)


@dataclass(frozen=True)
class Caller:
    """
    Who is acting, where, and with which capabilities.
    Resolved once per request (see rm_core.iam.services.caller).
    """
    user_id: Optional[int]
    tenant_id: Optional[UUID]
    facility_id: Optional[UUID]
    roles: FrozenSet[Role] = frozenset()
    capabilities: FrozenSet[str] = frozenset()

    @classmethod
    def for_roles(cls, *, user_id, tenant_id, facility_id, roles) -> "Caller":
        roles = frozenset(Role(r) for r in roles)
        return cls(
            user_id=user_id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            roles=roles,
            capabilities=capabilities_for(roles),
        )

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    def has(self, capability: str) -> bool:
        return capability in self.capabilities


# -----------------------------
# Object-level rules
# -----------------------------

Rule = Callable[[Caller, Any], bool]

_rules: Dict[str, Rule] = {}


def rule(action: str):
    """
    Register the object-level check for an action.

        @rule("referrals.accept")
        def _at_receiving_facility(caller, referral): ...
    """
    def _decorator(fn: Rule) -> Rule:
        _rules[action] = fn
        return fn
    return _decorator


def can(caller: Optional[Caller], action: str, resource: Any = None) -> bool:
    """
    Capability check, then the object rule for `action` if one is registered
    and a resource was given. Admins still go through object rules that
    concern scope (tenant), so rules must allow admins explicitly when intended.
    """
    if caller is None or not caller.has(action):
        return False
    if resource is None:
        return True
    check = _rules.get(action)
    if check is None:
        return True
    return bool(check(caller, resource))


# -----------------------------
# Scope helpers (Tenant/Facility)
# -----------------------------

def ensure_scope_on_request(request) -> bool:
    """
    Ensure request.tenant_id and request.facility_id exist.

    Permissions must not raise ValidationError (it becomes 400), so a missing or
    invalid scope returns False and DRF answers 403.
    """
    from rm_core.common.scope import resolve_scope

    if getattr(request, "tenant_id", None) and getattr(request, "facility_id", None):
        return True

    scope = resolve_scope(request)
    if scope is None or scope.tenant_id is None or scope.facility_id is None:
        return False

    setattr(request, "tenant_id", scope.tenant_id)
    setattr(request, "facility_id", scope.facility_id)
    return True


def get_request_caller(request) -> Optional[Caller]:
    """
    Caller set by CookieOrHeaderJWTAuthentication, or resolved here once for
    requests that skipped it (force_authenticate in tests).
    """
    caller = getattr(request, "caller", None)
    if caller is not None:
        return caller

    user = getattr(request, "user", None)
    if not user or not getattr(user, "is_authenticated", False):
        return None

    from rm_core.iam.services.caller import resolve_caller

    caller = resolve_caller(
        user,
        tenant_id=getattr(request, "tenant_id", None),
        facility_id=getattr(request, "facility_id", None),
    )
    setattr(request, "caller", caller)
    return caller


class BaseCapabilityPermission(BasePermission):
    """
    Maps view actions to capabilities.

    - Scope headers are required.
    - Unknown SAFE actions fall back to list/retrieve.
    - Unknown unsafe actions are denied.
    - Denials by an authenticated caller are recorded as security events.
    """
    message = "You do not have permission to perform this action."

    # Override in subclasses: action -> capability
    required_capability_per_action: Dict[str, str] = {}

    def _infer_action(self, request, view) -> str | None:
        action = getattr(view, "action", None)
        if action:
            return action

        kwargs = getattr(view, "kwargs", {}) or {}
        is_detail = "pk" in kwargs or "id" in kwargs

        method = request.method.upper()
        if method in ("GET", "HEAD", "OPTIONS"):
            return "retrieve" if is_detail else "list"
        if method == "POST":
            return "create"
        if method == "PUT":
            return "update"
        if method == "PATCH":
            return "partial_update"
        if method == "DELETE":
            return "destroy"
        return None

    def _required_capability(self, request, view) -> str | None:
        action = self._infer_action(request, view)
        capability = self.required_capability_per_action.get(action)

        if capability is None and request.method in SAFE_METHODS:
            kwargs = getattr(view, "kwargs", {}) or {}
            is_detail = "pk" in kwargs or "id" in kwargs
            capability = self.required_capability_per_action.get("retrieve" if is_detail else "list")

        return capability

    def has_permission(self, request, view) -> bool:
        if not ensure_scope_on_request(request):
            return False

        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False

        caller = get_request_caller(request)
        capability = self._required_capability(request, view)

        if capability is not None and caller is not None and caller.has(capability):
            return True

        self._record_denial(request, view, caller, capability)
        return False

    def _record_denial(self, request, view, caller: Optional[Caller], capability: str | None) -> None:
        from rm_core.audit.services import AuditService

        logger.info(
            "permission denied user=%s action=%s capability=%s",
            getattr(caller, "user_id", None),
            self._infer_action(request, view),
            capability,
        )
        AuditService.log_security_event(
            caller=caller,
            action=capability or str(self._infer_action(request, view)),
            entity_type=view.__class__.__name__,
            entity_id=(getattr(view, "kwargs", {}) or {}).get("pk"),
            reason="capability_missing",
        )
