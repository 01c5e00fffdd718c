# rm_core/iam/services/caller.py
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from rm_core.common.permissions import Caller, Role, capabilities_for
from rm_core.iam.services.membership import roles_at_facility

logger = logging.getLogger(__name__)


def resolve_caller(user, *, tenant_id: Optional[UUID], facility_id: Optional[UUID]) -> Caller:
    """
    Build the Caller for one request.

    Roles come from the user's membership at the active facility, plus Django
    groups named after a Role (only for members). Superusers are ADMIN
    everywhere. A member with no recognised role is READONLY; a non-member
    gets no capabilities.
    """
    if getattr(user, "is_superuser", False):
        roles = frozenset({Role.ADMIN})
    elif tenant_id is None or facility_id is None:
        roles = frozenset()
    else:
        raw = roles_at_facility(user_id=user.id, tenant_id=tenant_id, facility_id=facility_id)
        if raw and hasattr(user, "groups"):
            raw |= set(user.groups.values_list("name", flat=True))
        roles = frozenset(Role(r) for r in raw if r in Role.values)
        if raw and not roles:
            roles = frozenset({Role.READONLY})

    caller = Caller(
        user_id=user.id,
        tenant_id=tenant_id,
        facility_id=facility_id,
        roles=roles,
        capabilities=capabilities_for(roles),
    )
    logger.debug("resolved caller user=%s roles=%s", user.id, sorted(r.value for r in roles))
    return caller
