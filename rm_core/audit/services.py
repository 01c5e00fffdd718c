# rm_core/audit/services.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID

from rm_core.audit.models import AuditEvent
from rm_core.common.permissions import Caller
from rm_core.common.scope import _parse_uuid

logger = logging.getLogger(__name__)

SECURITY_PERMISSION_DENIED = "SECURITY_PERMISSION_DENIED"


@dataclass(frozen=True)
class AuditEntry:
    event_code: str
    entity_type: str
    entity_id: Optional[UUID]
    tenant_id: UUID
    facility_id: UUID
    actor_user_id: Optional[int] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def payload(self) -> Dict[str, Any]:
        data = dict(self.metadata)
        if self.from_status is not None or self.to_status is not None:
            data["from_status"] = self.from_status
            data["to_status"] = self.to_status
        return data


class AuditService:
    """
    Central audit writer.

    `append` runs inside the caller's transaction, so a transition and its
    audit row commit or roll back together.
    """

    @staticmethod
    def append(entry: AuditEntry) -> AuditEvent:
        return AuditEvent.objects.create(
            tenant_id=entry.tenant_id,
            facility_id=entry.facility_id,
            event_code=entry.event_code,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            actor_user_id=entry.actor_user_id,
            metadata=entry.payload(),
        )

    @staticmethod
    def log(
        *,
        caller: Optional[Caller],
        event_code: str,
        entity_type: str,
        entity_id: Optional[UUID],
        tenant_id: Optional[UUID] = None,
        facility_id: Optional[UUID] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Keyword form of `append`. Scope defaults to the caller's active scope.
        """
        return AuditService.append(
            AuditEntry(
                event_code=event_code,
                entity_type=entity_type,
                entity_id=entity_id,
                tenant_id=tenant_id or caller.tenant_id,
                facility_id=facility_id or caller.facility_id,
                actor_user_id=getattr(caller, "user_id", None),
                from_status=from_status,
                to_status=to_status,
                metadata=metadata or {},
            )
        )

    @staticmethod
    def log_security_event(
        *,
        caller: Optional[Caller],
        action: str,
        entity_type: str,
        entity_id=None,
        reason: str = "",
    ) -> Optional[AuditEvent]:
        """
        Record a permission denial. Without a resolved scope there is nothing
        to attach the row to, so it is only logged.
        """
        if caller is None or caller.tenant_id is None or caller.facility_id is None:
            logger.warning(
                "security event without scope user=%s action=%s",
                getattr(caller, "user_id", None),
                action,
            )
            return None

        return AuditService.append(
            AuditEntry(
                event_code=SECURITY_PERMISSION_DENIED,
                entity_type=entity_type,
                entity_id=_parse_uuid(entity_id) if entity_id is not None else None,
                tenant_id=caller.tenant_id,
                facility_id=caller.facility_id,
                actor_user_id=caller.user_id,
                metadata={
                    "action": action,
                    "reason": reason,
                    "roles": sorted(r.value for r in caller.roles),
                },
            )
        )


def record_denial(*, caller: Optional[Caller], action: str, entity_type: str, entity_id=None, reason: str = "not_allowed"):
    """
    Audit a denied operation and return the PERMISSION_DENIED result.
    Services call this before any write, so the audit row is the only effect.
    """
    from rm_core.common.results import denied

    logger.info("denied user=%s action=%s %s:%s (%s)", getattr(caller, "user_id", None), action, entity_type, entity_id, reason)
    AuditService.log_security_event(
        caller=caller,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )
    return denied(action)
