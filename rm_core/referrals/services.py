# rm_core/referrals/services.py
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from django.conf import settings
from django.utils import timezone

from rm_core.audit.services import AuditService, record_denial
from rm_core.beds.models import BedType, ReservationPriority
from rm_core.beds.services import BedService
from rm_core.common.events import publish
from rm_core.common.numbering import next_number
from rm_core.common.permissions import Caller, Role, can
from rm_core.common.results import Result, invalid, invalid_transition, not_found, run_atomic
from rm_core.facilities.models import Facility, Specialty
from rm_core.iam.services.membership import user_has_role
from rm_core.patients.models import Patient
from rm_core.referrals import permissions  # noqa: F401  (registers object rules)
from rm_core.referrals.models import (
    Referral,
    ReferralStatus,
    ReferralType,
    TransportMode,
    Urgency,
    can_transition,
)
from rm_core.referrals.selectors import visible_referrals

logger = logging.getLogger(__name__)

ENTITY = "REFERRAL"

DEFAULT_RESPONSE_WINDOW_MINUTES = {
    Urgency.EMERGENCY: 30,
    Urgency.URGENT: 120,
    Urgency.SEMI_URGENT: 720,
    Urgency.ROUTINE: 2880,
}

RESERVATION_PRIORITY_BY_URGENCY = {
    Urgency.EMERGENCY: ReservationPriority.CRITICAL,
    Urgency.URGENT: ReservationPriority.HIGH,
    Urgency.SEMI_URGENT: ReservationPriority.NORMAL,
    Urgency.ROUTINE: ReservationPriority.LOW,
}


def response_window(urgency: str) -> timedelta:
    windows = getattr(settings, "REFERRALS_RESPONSE_WINDOW_MINUTES", None) or DEFAULT_RESPONSE_WINDOW_MINUTES
    return timedelta(minutes=int(windows.get(urgency, DEFAULT_RESPONSE_WINDOW_MINUTES[Urgency.ROUTINE])))


def _locked(caller: Caller, referral_id) -> Optional[Referral]:
    return visible_referrals(caller).select_for_update(of=("self",)).filter(id=referral_id).first()


def _event_payload(referral: Referral, caller: Optional[Caller], **extra) -> dict:
    return {
        "referral_id": referral.id,
        "referral_number": referral.referral_number,
        "tenant_id": referral.tenant_id,
        "facility_id": referral.facility_id,
        "receiving_facility_id": referral.receiving_facility_id,
        "referring_doctor_id": referral.referring_doctor_id,
        "receiving_doctor_id": referral.receiving_doctor_id,
        "patient_id": referral.patient_id,
        "urgency": referral.urgency,
        "status": referral.status,
        "actor_user_id": getattr(caller, "user_id", None),
        **extra,
    }


def _is_receiving_doctor(*, user_id, referral: Referral) -> bool:
    return user_has_role(
        user_id=user_id,
        tenant_id=referral.tenant_id,
        facility_id=referral.receiving_facility_id,
        role=Role.DOCTOR,
    )


class ReferralService:
    """
    Referral lifecycle.

        pending -> accepted -> (in_transit ->) arrived -> completed
        pending -> rejected
        any non-terminal -> cancelled

    Every method returns a Result. The guard (visibility, object rule, source
    status) runs on the locked row before anything is written, so a losing
    concurrent writer sees the winner's status and gets INVALID_TRANSITION.
    """

    # -------------------------
    # Create
    # -------------------------
    @staticmethod
    def create(
        *,
        caller: Caller,
        patient_id: UUID,
        receiving_facility_id: UUID,
        reason: str,
        urgency: str = Urgency.ROUTINE,
        referral_type: str = ReferralType.CONSULTATION,
        specialty_id: Optional[UUID] = None,
        receiving_doctor_id: Optional[int] = None,
        clinical_summary: str = "",
        vital_signs: Optional[dict] = None,
        investigations: Optional[list] = None,
        current_medications: Optional[list] = None,
        transport_required: str = TransportMode.NONE,
        bed_required: bool = False,
        bed_type: str = "",
        notes: str = "",
    ) -> Result[Referral]:
        if not can(caller, "referrals.create"):
            return record_denial(caller=caller, action="referrals.create", entity_type=ENTITY)

        if urgency not in Urgency.values:
            return invalid("Invalid urgency.", urgency="Invalid choice.")
        if referral_type not in ReferralType.values:
            return invalid("Invalid referral type.", referral_type="Invalid choice.")
        if transport_required not in TransportMode.values:
            return invalid("Invalid transport mode.", transport_required="Invalid choice.")
        if not (reason or "").strip():
            return invalid("A reason is required.", reason="This field may not be blank.")
        if bed_type and bed_type not in BedType.values:
            return invalid("Invalid bed type.", bed_type="Invalid choice.")

        patient = Patient.objects.filter(
            id=patient_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id
        ).first()
        if patient is None:
            return invalid("Patient not found at the referring facility.", patient_id="Not found.")

        if str(receiving_facility_id) == str(caller.facility_id):
            return invalid(
                "A referral must go to another facility.",
                receiving_facility_id="Must differ from the referring facility.",
            )
        receiving = Facility.objects.filter(id=receiving_facility_id, tenant_id=caller.tenant_id).first()
        if receiving is None:
            return invalid("Receiving facility not found.", receiving_facility_id="Not found.")
        if not receiving.is_active or not receiving.accepts_referrals:
            return invalid(
                "The receiving facility is not accepting referrals.",
                receiving_facility_id="Not accepting referrals.",
            )

        specialty = None
        if specialty_id:
            specialty = Specialty.objects.filter(id=specialty_id, tenant_id=caller.tenant_id, is_active=True).first()
            if specialty is None:
                return invalid("Specialty not found.", specialty_id="Not found.")
            offered = receiving.specialties.all()
            if offered.exists() and not offered.filter(id=specialty.id).exists():
                return invalid(
                    "The receiving facility does not offer this specialty.",
                    specialty_id="Not offered by the receiving facility.",
                )

        if receiving_doctor_id is not None and not user_has_role(
            user_id=receiving_doctor_id,
            tenant_id=caller.tenant_id,
            facility_id=receiving.id,
            role=Role.DOCTOR,
        ):
            return invalid(
                "The receiving doctor must be a doctor at the receiving facility.",
                receiving_doctor_id="Not a doctor at the receiving facility.",
            )

        def body() -> Result[Referral]:
            now = timezone.now()
            number = next_number(
                Referral.objects.filter(tenant_id=caller.tenant_id),
                field="referral_number",
                prefix=f"REF{now:%Y%m}",
                width=6,
            )
            referral = Referral.objects.create(
                tenant_id=caller.tenant_id,
                facility_id=caller.facility_id,
                referral_number=number,
                patient=patient,
                receiving_facility=receiving,
                specialty=specialty,
                referring_doctor_id=caller.user_id,
                receiving_doctor_id=receiving_doctor_id,
                urgency=urgency,
                referral_type=referral_type,
                status=ReferralStatus.PENDING,
                reason=reason.strip(),
                clinical_summary=clinical_summary or "",
                vital_signs=vital_signs or {},
                investigations=investigations or [],
                current_medications=current_medications or [],
                transport_required=transport_required,
                bed_required=bool(bed_required),
                bed_type=bed_type or "",
                referred_at=now,
                response_deadline=now + response_window(urgency),
                notes=notes or "",
            )
            AuditService.log(
                caller=caller,
                event_code="REFERRAL_CREATED",
                entity_type=ENTITY,
                entity_id=referral.id,
                to_status=ReferralStatus.PENDING,
                metadata={
                    "referral_number": number,
                    "receiving_facility_id": str(receiving.id),
                    "urgency": urgency,
                },
            )
            publish("referral.created", _event_payload(referral, caller))
            logger.info("referral %s created urgency=%s -> facility=%s", number, urgency, receiving.id)
            return Result.success(referral)

        return run_atomic(body, label="referrals.create")

    # -------------------------
    # Decisions (receiving side)
    # -------------------------
    @staticmethod
    def accept(
        *,
        caller: Caller,
        referral_id,
        receiving_doctor_id: Optional[int] = None,
        notes: str = "",
        estimated_cost: Optional[Decimal] = None,
        bed_id: Optional[UUID] = None,
    ) -> Result[Referral]:
        """
        pending -> accepted. With `bed_id` the bed is reserved for the patient
        in the same transaction: both are applied or neither is.
        """
        if not caller or not caller.has("referrals.accept"):
            return record_denial(caller=caller, action="referrals.accept", entity_type=ENTITY, entity_id=referral_id)
        if estimated_cost is not None and Decimal(estimated_cost) < 0:
            return invalid("Estimated cost cannot be negative.", estimated_cost="Must be >= 0.")

        def body() -> Result[Referral]:
            referral = _locked(caller, referral_id)
            if referral is None:
                return not_found("Referral")
            if not can(caller, "referrals.accept", referral):
                return record_denial(
                    caller=caller,
                    action="referrals.accept",
                    entity_type=ENTITY,
                    entity_id=referral.id,
                    reason="not_receiving_side",
                )
            if referral.status != ReferralStatus.PENDING:
                return invalid_transition("referral", referral.status, "accept")

            doctor_id = receiving_doctor_id or referral.receiving_doctor_id
            if doctor_id is None and Role.DOCTOR in caller.roles:
                doctor_id = caller.user_id
            if doctor_id is None:
                return invalid("A receiving doctor is required.", receiving_doctor_id="This field is required.")
            if not _is_receiving_doctor(user_id=doctor_id, referral=referral):
                return invalid(
                    "The receiving doctor must be a doctor at the receiving facility.",
                    receiving_doctor_id="Not a doctor at the receiving facility.",
                )

            warnings: tuple[str, ...] = ()
            reservation = None
            if bed_id is not None:
                held = BedService.hold(
                    caller=caller,
                    tenant_id=referral.tenant_id,
                    facility_id=referral.receiving_facility_id,
                    bed_id=bed_id,
                    patient_id=referral.patient_id,
                    referral_id=referral.id,
                    priority=RESERVATION_PRIORITY_BY_URGENCY.get(referral.urgency, ReservationPriority.NORMAL),
                    bed_type=referral.bed_type or None,
                    notes=f"Referral {referral.referral_number}",
                )
                if not held.ok:
                    return Result.from_error(held.error)
                reservation = held.value
            elif referral.bed_required:
                warnings = ("A bed is required but none was reserved.",)

            now = timezone.now()
            referral.status = ReferralStatus.ACCEPTED
            referral.receiving_doctor_id = doctor_id
            referral.accepted_by_user_id = caller.user_id
            referral.accepted_at = now
            referral.responded_at = now
            referral.acceptance_notes = notes or ""
            if estimated_cost is not None:
                referral.estimated_cost = estimated_cost
            referral.save(
                update_fields=[
                    "status",
                    "receiving_doctor",
                    "accepted_by_user_id",
                    "accepted_at",
                    "responded_at",
                    "acceptance_notes",
                    "estimated_cost",
                    "updated_at",
                ]
            )

            AuditService.log(
                caller=caller,
                tenant_id=referral.tenant_id,
                facility_id=referral.facility_id,
                event_code="REFERRAL_ACCEPTED",
                entity_type=ENTITY,
                entity_id=referral.id,
                from_status=ReferralStatus.PENDING,
                to_status=ReferralStatus.ACCEPTED,
                metadata={
                    "receiving_doctor_id": doctor_id,
                    "bed_reservation_id": str(reservation.id) if reservation else None,
                },
            )
            publish("referral.accepted", _event_payload(referral, caller))
            logger.info("referral %s accepted by user=%s", referral.referral_number, caller.user_id)
            return Result.success(referral, warnings=warnings)

        return run_atomic(body, label="referrals.accept")

    @staticmethod
    def reject(*, caller: Caller, referral_id, reason: str) -> Result[Referral]:
        if not caller or not caller.has("referrals.reject"):
            return record_denial(caller=caller, action="referrals.reject", entity_type=ENTITY, entity_id=referral_id)
        reason = (reason or "").strip()
        if not reason:
            return invalid("A rejection reason is required.", reason="This field may not be blank.")
        if len(reason) > 1000:
            return invalid("Rejection reason is too long.", reason="At most 1000 characters.")

        def body() -> Result[Referral]:
            referral = _locked(caller, referral_id)
            if referral is None:
                return not_found("Referral")
            if not can(caller, "referrals.reject", referral):
                return record_denial(
                    caller=caller,
                    action="referrals.reject",
                    entity_type=ENTITY,
                    entity_id=referral.id,
                    reason="not_receiving_side",
                )
            if referral.status != ReferralStatus.PENDING:
                return invalid_transition("referral", referral.status, "reject")

            now = timezone.now()
            referral.status = ReferralStatus.REJECTED
            referral.rejected_at = now
            referral.responded_at = now
            referral.rejection_reason = reason
            referral.save(update_fields=["status", "rejected_at", "responded_at", "rejection_reason", "updated_at"])

            AuditService.log(
                caller=caller,
                tenant_id=referral.tenant_id,
                facility_id=referral.facility_id,
                event_code="REFERRAL_REJECTED",
                entity_type=ENTITY,
                entity_id=referral.id,
                from_status=ReferralStatus.PENDING,
                to_status=ReferralStatus.REJECTED,
                metadata={"reason": reason},
            )
            publish("referral.rejected", _event_payload(referral, caller, reason=reason))
            logger.info("referral %s rejected", referral.referral_number)
            return Result.success(referral)

        return run_atomic(body, label="referrals.reject")

    # -------------------------
    # Progress (transport)
    # -------------------------
    @staticmethod
    def _advance_locked(
        *,
        caller: Optional[Caller],
        referral: Referral,
        target: str,
        stamp_field: str,
        event_code: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Result[Referral]:
        if not can_transition(referral.status, target):
            return invalid_transition("referral", referral.status, f"mark {target.replace('_', ' ')}")

        previous = referral.status
        referral.status = target
        setattr(referral, stamp_field, timezone.now())
        referral.save(update_fields=["status", stamp_field, "updated_at"])

        AuditService.log(
            caller=caller,
            tenant_id=referral.tenant_id,
            facility_id=referral.facility_id,
            event_code=event_code,
            entity_type=ENTITY,
            entity_id=referral.id,
            from_status=previous,
            to_status=target,
            metadata=metadata,
        )
        publish(f"referral.{target}", _event_payload(referral, caller))
        logger.info("referral %s %s -> %s", referral.referral_number, previous, target)
        return Result.success(referral)

    @staticmethod
    def _progress(*, caller: Caller, referral_id, target: str, stamp_field: str, event_code: str) -> Result[Referral]:
        if not caller or not caller.has("referrals.progress"):
            return record_denial(caller=caller, action="referrals.progress", entity_type=ENTITY, entity_id=referral_id)

        def body() -> Result[Referral]:
            referral = _locked(caller, referral_id)
            if referral is None:
                return not_found("Referral")
            if not can(caller, "referrals.progress", referral):
                return record_denial(caller=caller, action="referrals.progress", entity_type=ENTITY, entity_id=referral.id)
            return ReferralService._advance_locked(
                caller=caller,
                referral=referral,
                target=target,
                stamp_field=stamp_field,
                event_code=event_code,
            )

        return run_atomic(body, label=f"referrals.{target}")

    @staticmethod
    def mark_in_transit(*, caller: Caller, referral_id) -> Result[Referral]:
        """accepted -> in_transit"""
        return ReferralService._progress(
            caller=caller,
            referral_id=referral_id,
            target=ReferralStatus.IN_TRANSIT,
            stamp_field="in_transit_at",
            event_code="REFERRAL_IN_TRANSIT",
        )

    @staticmethod
    def mark_arrived(*, caller: Caller, referral_id) -> Result[Referral]:
        """accepted | in_transit -> arrived"""
        return ReferralService._progress(
            caller=caller,
            referral_id=referral_id,
            target=ReferralStatus.ARRIVED,
            stamp_field="arrived_at",
            event_code="REFERRAL_ARRIVED",
        )

    @staticmethod
    def follow_dispatch(*, caller: Optional[Caller], referral_id, dispatch_status: str, dispatch_id) -> Result[Referral]:
        """
        Move the referral along with its ambulance dispatch. Runs inside the
        dispatch transaction; the dispatch crew does not need referral
        capabilities for this.
          patient_loaded  -> in_transit
          at_destination  -> arrived
        """
        targets = {
            "patient_loaded": (ReferralStatus.IN_TRANSIT, "in_transit_at", "REFERRAL_IN_TRANSIT"),
            "at_destination": (ReferralStatus.ARRIVED, "arrived_at", "REFERRAL_ARRIVED"),
        }
        if dispatch_status not in targets:
            return invalid("Dispatch status does not move referrals.", dispatch_status=dispatch_status)

        referral = Referral.objects.select_for_update().filter(id=referral_id).first()
        if referral is None:
            return not_found("Referral")

        target, stamp_field, event_code = targets[dispatch_status]
        return ReferralService._advance_locked(
            caller=caller,
            referral=referral,
            target=target,
            stamp_field=stamp_field,
            event_code=event_code,
            metadata={"dispatch_id": str(dispatch_id), "dispatch_status": dispatch_status},
        )

    # -------------------------
    # Close
    # -------------------------
    @staticmethod
    def complete(*, caller: Caller, referral_id, outcome: Optional[dict] = None, notes: str = "") -> Result[Referral]:
        """accepted | arrived -> completed, recording the outcome payload."""
        if not caller or not caller.has("referrals.complete"):
            return record_denial(caller=caller, action="referrals.complete", entity_type=ENTITY, entity_id=referral_id)
        if outcome is not None and not isinstance(outcome, dict):
            return invalid("Outcome must be an object.", outcome="Expected a JSON object.")

        def body() -> Result[Referral]:
            referral = _locked(caller, referral_id)
            if referral is None:
                return not_found("Referral")
            if not can(caller, "referrals.complete", referral):
                return record_denial(
                    caller=caller,
                    action="referrals.complete",
                    entity_type=ENTITY,
                    entity_id=referral.id,
                    reason="not_receiving_side",
                )
            if referral.status not in (ReferralStatus.ACCEPTED, ReferralStatus.ARRIVED):
                return invalid_transition("referral", referral.status, "complete")

            previous = referral.status
            referral.status = ReferralStatus.COMPLETED
            referral.completed_at = timezone.now()
            referral.outcome = outcome or {}
            referral.completion_notes = notes or ""
            referral.save(update_fields=["status", "completed_at", "outcome", "completion_notes", "updated_at"])

            AuditService.log(
                caller=caller,
                tenant_id=referral.tenant_id,
                facility_id=referral.facility_id,
                event_code="REFERRAL_COMPLETED",
                entity_type=ENTITY,
                entity_id=referral.id,
                from_status=previous,
                to_status=ReferralStatus.COMPLETED,
                metadata={"outcome": referral.outcome},
            )
            publish("referral.completed", _event_payload(referral, caller))
            logger.info("referral %s completed", referral.referral_number)
            return Result.success(referral)

        return run_atomic(body, label="referrals.complete")

    @staticmethod
    def cancel(*, caller: Caller, referral_id, reason: str) -> Result[Referral]:
        """Any non-terminal status -> cancelled. Admin or the referring facility only."""
        if not caller or not caller.has("referrals.cancel"):
            return record_denial(caller=caller, action="referrals.cancel", entity_type=ENTITY, entity_id=referral_id)
        reason = (reason or "").strip()
        if not reason:
            return invalid("A cancellation reason is required.", reason="This field may not be blank.")
        if len(reason) > 500:
            return invalid("Cancellation reason is too long.", reason="At most 500 characters.")

        def body() -> Result[Referral]:
            referral = _locked(caller, referral_id)
            if referral is None:
                return not_found("Referral")
            if not can(caller, "referrals.cancel", referral):
                return record_denial(
                    caller=caller,
                    action="referrals.cancel",
                    entity_type=ENTITY,
                    entity_id=referral.id,
                    reason="not_owner",
                )
            if referral.is_terminal:
                return invalid_transition("referral", referral.status, "cancel")

            previous = referral.status
            released = BedService.release_for_referral(
                caller=caller,
                tenant_id=referral.tenant_id,
                referral_id=referral.id,
                reason=f"Referral cancelled: {reason}"[:500],
            )

            referral.status = ReferralStatus.CANCELLED
            referral.cancelled_at = timezone.now()
            referral.cancellation_reason = reason
            referral.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])

            AuditService.log(
                caller=caller,
                tenant_id=referral.tenant_id,
                facility_id=referral.facility_id,
                event_code="REFERRAL_CANCELLED",
                entity_type=ENTITY,
                entity_id=referral.id,
                from_status=previous,
                to_status=ReferralStatus.CANCELLED,
                metadata={"reason": reason, "released_reservations": released},
            )
            publish("referral.cancelled", _event_payload(referral, caller, reason=reason))
            logger.info("referral %s cancelled from %s", referral.referral_number, previous)
            return Result.success(referral)

        return run_atomic(body, label="referrals.cancel")
