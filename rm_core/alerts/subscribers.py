"""
Domain events -> notifications and alerts.

Handlers run inside the publishing transaction. Notification writes are
savepointed by NotificationService; alert writes and recipient lookups are
savepointed here.
"""
from __future__ import annotations

import logging

from django.db import DatabaseError, transaction

from rm_core.alerts.models import AlertSeverity
from rm_core.alerts.services import AlertContext, AlertService, EntityRef, NotificationService
from rm_core.common.events import subscribe
from rm_core.common.permissions import Role
from rm_core.iam.services.membership import user_ids_with_roles

logger = logging.getLogger(__name__)


def _raise_alert(*, ctx: AlertContext, **kwargs):
    try:
        with transaction.atomic():
            return AlertService.create_alert(ctx=ctx, **kwargs)
    except DatabaseError:
        logger.exception("alert %s could not be stored", kwargs.get("code"))
        return None


def _facility_staff(*, tenant_id, facility_id) -> list[int]:
    """Doctors and admins at a facility; empty when the lookup fails."""
    try:
        with transaction.atomic():
            return user_ids_with_roles(tenant_id=tenant_id, facility_id=facility_id, roles=[Role.DOCTOR, Role.ADMIN])
    except DatabaseError:
        logger.exception("recipients for facility %s could not be resolved", facility_id)
        return []


# -----------------------------
# Referrals
# -----------------------------

@subscribe("referral.created")
def on_referral_created(payload: dict) -> None:
    entity = EntityRef("REFERRAL", payload["referral_id"])
    tenant_id = payload["tenant_id"]
    receiving_facility_id = payload["receiving_facility_id"]

    alert = None
    if payload.get("urgency") == "emergency":
        alert = _raise_alert(
            ctx=AlertContext(tenant_id=tenant_id, facility_id=receiving_facility_id, actor_user_id=payload.get("actor_user_id")),
            code="emergency-referral",
            title=f"Emergency referral {payload['referral_number']}",
            message="An emergency referral is waiting for a response.",
            severity=AlertSeverity.CRITICAL,
            entity=entity,
            patient_id=payload.get("patient_id"),
        )

    NotificationService.notify(
        event="referral.created",
        entity=entity,
        recipients=_facility_staff(tenant_id=tenant_id, facility_id=receiving_facility_id),
        title=f"New referral {payload['referral_number']} ({payload.get('urgency')})",
        body="A referral has been sent to your facility.",
        tenant_id=tenant_id,
        facility_id=receiving_facility_id,
        alert=alert,
    )


def _notify_referring_side(payload: dict, event: str, title: str, body: str = "") -> None:
    NotificationService.notify(
        event=event,
        entity=EntityRef("REFERRAL", payload["referral_id"]),
        recipients=[payload.get("referring_doctor_id")],
        title=title,
        body=body,
        tenant_id=payload["tenant_id"],
        facility_id=payload["facility_id"],
    )


@subscribe("referral.accepted")
def on_referral_accepted(payload: dict) -> None:
    _notify_referring_side(payload, "referral.accepted", f"Referral {payload['referral_number']} accepted")


@subscribe("referral.rejected")
def on_referral_rejected(payload: dict) -> None:
    _notify_referring_side(
        payload,
        "referral.rejected",
        f"Referral {payload['referral_number']} rejected",
        payload.get("reason", ""),
    )


@subscribe("referral.completed")
def on_referral_completed(payload: dict) -> None:
    _notify_referring_side(payload, "referral.completed", f"Referral {payload['referral_number']} completed")


@subscribe("referral.cancelled")
def on_referral_cancelled(payload: dict) -> None:
    receiving_doctor_id = payload.get("receiving_doctor_id")
    recipients = [receiving_doctor_id] if receiving_doctor_id else _facility_staff(
        tenant_id=payload["tenant_id"], facility_id=payload["receiving_facility_id"]
    )
    NotificationService.notify(
        event="referral.cancelled",
        entity=EntityRef("REFERRAL", payload["referral_id"]),
        recipients=recipients,
        title=f"Referral {payload['referral_number']} cancelled",
        body=payload.get("reason", ""),
        tenant_id=payload["tenant_id"],
        facility_id=payload["receiving_facility_id"],
    )


# -----------------------------
# Dispatch
# -----------------------------

@subscribe("dispatch.created")
def on_dispatch_created(payload: dict) -> None:
    NotificationService.notify(
        event="dispatch.created",
        entity=EntityRef("DISPATCH", payload["dispatch_id"]),
        recipients=payload.get("crew_ids") or [],
        title=f"New dispatch {payload['dispatch_number']}",
        body=payload.get("pickup_address", ""),
        tenant_id=payload["tenant_id"],
        facility_id=payload["facility_id"],
    )


@subscribe("dispatch.status_changed")
def on_dispatch_status_changed(payload: dict) -> None:
    if not payload.get("notify"):
        return
    to_status = payload["to_status"]
    NotificationService.notify(
        event=f"dispatch.{to_status}",
        entity=EntityRef("DISPATCH", payload["dispatch_id"]),
        recipients=[payload.get("dispatcher_id"), *(payload.get("crew_ids") or [])],
        title=f"Dispatch {payload['dispatch_number']}: {to_status.replace('_', ' ')}",
        body=payload.get("notes", ""),
        tenant_id=payload["tenant_id"],
        facility_id=payload["facility_id"],
        meta={"from_status": payload.get("from_status"), "to_status": to_status},
    )


# -----------------------------
# Appointments
# -----------------------------

def _notify_doctor(payload: dict, event: str, title: str) -> None:
    NotificationService.notify(
        event=event,
        entity=EntityRef("APPOINTMENT", payload["appointment_id"]),
        recipients=[payload.get("doctor_id")],
        title=title,
        body=payload.get("scheduled_at", ""),
        tenant_id=payload["tenant_id"],
        facility_id=payload["facility_id"],
    )


@subscribe("appointment.booked")
def on_appointment_booked(payload: dict) -> None:
    _notify_doctor(payload, "appointment.booked", f"Appointment {payload['appointment_number']} booked")


@subscribe("appointment.rescheduled")
def on_appointment_rescheduled(payload: dict) -> None:
    _notify_doctor(payload, "appointment.rescheduled", f"Appointment {payload['appointment_number']} rescheduled")


@subscribe("appointment.cancelled")
def on_appointment_cancelled(payload: dict) -> None:
    _notify_doctor(payload, "appointment.cancelled", f"Appointment {payload['appointment_number']} cancelled")


# -----------------------------
# Equipment
# -----------------------------

@subscribe("maintenance.scheduled")
def on_maintenance_scheduled(payload: dict) -> None:
    NotificationService.notify(
        event="maintenance.scheduled",
        entity=EntityRef("MAINTENANCE", payload["record_id"]),
        recipients=[payload.get("technician_id")],
        title=f"Maintenance scheduled: {payload['equipment_name']}",
        body=payload.get("scheduled_date", ""),
        tenant_id=payload["tenant_id"],
        facility_id=payload["facility_id"],
    )


@subscribe("equipment.out_of_order")
def on_equipment_out_of_order(payload: dict) -> None:
    _raise_alert(
        ctx=AlertContext(
            tenant_id=payload["tenant_id"],
            facility_id=payload["facility_id"],
            actor_user_id=payload.get("actor_user_id"),
        ),
        code="equipment-out-of-order",
        title=f"{payload['equipment_name']} is out of order",
        message=payload.get("issues", ""),
        severity=AlertSeverity.WARNING,
        entity=EntityRef("EQUIPMENT", payload["equipment_id"]),
    )
