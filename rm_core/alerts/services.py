from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from django.db import DatabaseError, transaction
from django.utils import timezone

from rm_core.alerts.models import Alert, AlertSeverity, AlertStatus, Notification, NotificationChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertContext:
    tenant_id: UUID
    facility_id: UUID
    actor_user_id: int | None


@dataclass(frozen=True)
class EntityRef:
    entity_type: str
    entity_id: Optional[UUID]


class AlertService:
    @staticmethod
    @transaction.atomic
    def create_alert(
        *,
        ctx: AlertContext,
        code: str,
        title: str,
        message: str = "",
        severity: str = AlertSeverity.INFO,
        entity: EntityRef | None = None,
        patient_id: UUID | None = None,
        meta: dict | None = None,
    ) -> Alert:
        return Alert.objects.create(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            created_by_user_id=ctx.actor_user_id,
            code=code,
            title=title,
            message=message,
            severity=severity,
            status=AlertStatus.OPEN,
            entity_type=entity.entity_type if entity else "",
            entity_id=entity.entity_id if entity else None,
            patient_id=patient_id,
            meta=meta or {},
        )

    @staticmethod
    @transaction.atomic
    def ack_alert(*, ctx: AlertContext, alert_id: UUID) -> Alert:
        alert = Alert.objects.select_for_update().get(id=alert_id, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
        if alert.status == AlertStatus.OPEN:
            alert.status = AlertStatus.ACKED
            alert.acked_by_user_id = ctx.actor_user_id
            alert.acked_at = timezone.now()
            alert.save(update_fields=["status", "acked_by_user_id", "acked_at", "updated_at"])
        return alert


class NotificationService:
    """
    Fire-and-forget enqueue.

    notify() writes inside a savepoint. If the write fails the savepoint is
    rolled back, the failure is logged, and the surrounding transition
    carries on: a notification never decides a transition's outcome.
    """

    @staticmethod
    def notify(
        *,
        event: str,
        entity: EntityRef,
        recipients: Iterable[int],
        title: str,
        body: str = "",
        tenant_id: UUID,
        facility_id: UUID,
        channel: str = NotificationChannel.IN_APP,
        alert: Alert | None = None,
        meta: dict | None = None,
    ) -> int:
        user_ids = sorted({uid for uid in recipients if uid is not None})
        if not user_ids:
            logger.debug("notify %s: no recipients for %s:%s", event, entity.entity_type, entity.entity_id)
            return 0

        objs = [
            Notification(
                tenant_id=tenant_id,
                facility_id=facility_id,
                recipient_id=uid,
                event_code=event,
                channel=channel,
                title=title[:255],
                body=body,
                alert=alert,
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
                meta=meta or {},
            )
            for uid in user_ids
        ]
        try:
            with transaction.atomic():
                Notification.objects.bulk_create(objs)
        except DatabaseError:
            logger.exception(
                "notify %s failed for %s:%s (%d recipient(s))",
                event,
                entity.entity_type,
                entity.entity_id,
                len(user_ids),
            )
            return 0

        logger.info("notify %s -> %d recipient(s)", event, len(user_ids))
        return len(user_ids)

    @staticmethod
    @transaction.atomic
    def mark_all_read(*, tenant_id: UUID, facility_id: UUID, user_id: int) -> int:
        return Notification.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            recipient_id=user_id,
            is_read=False,
        ).update(is_read=True, read_at=timezone.now())
