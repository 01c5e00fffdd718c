# rm_core/beds/services.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.utils import timezone

from rm_core.audit.services import AuditService, record_denial
from rm_core.beds.models import Bed, BedReservation, BedStatus, ReservationPriority, ReservationStatus
from rm_core.common.permissions import Caller, can
from rm_core.common.results import Result, invalid, invalid_transition, not_found, run_atomic
from rm_core.patients.selectors import patient_in_tenant

logger = logging.getLogger(__name__)

BED = "BED"
RESERVATION = "BED_RESERVATION"


def _ttl() -> timedelta:
    return timedelta(minutes=int(getattr(settings, "BEDS_RESERVATION_TTL_MINUTES", 240)))


def _locked_bed(*, tenant_id: UUID, facility_id: UUID, bed_id) -> Optional[Bed]:
    return Bed.objects.select_for_update().filter(id=bed_id, tenant_id=tenant_id, facility_id=facility_id).first()


def _locked_reservation(caller: Caller, reservation_id) -> Optional[BedReservation]:
    return (
        BedReservation.objects.select_for_update()
        .select_related("bed")
        .filter(id=reservation_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id)
        .first()
    )


class BedService:
    """
    Bed reservations and physical bed state.

    `hold` is the transactional core and runs inside the caller's transaction
    (referral acceptance reserves a bed atomically with the status change).
    The public methods check capabilities and open their own transaction.
    """

    @staticmethod
    def hold(
        *,
        caller: Caller,
        tenant_id: UUID,
        facility_id: UUID,
        bed_id,
        patient_id,
        referral_id: Optional[UUID] = None,
        reserved_until: Optional[datetime] = None,
        priority: str = ReservationPriority.NORMAL,
        notes: str = "",
        bed_type: Optional[str] = None,
    ) -> Result[BedReservation]:
        now = timezone.now()
        bed = _locked_bed(tenant_id=tenant_id, facility_id=facility_id, bed_id=bed_id)
        if bed is None:
            return not_found("Bed")
        if not bed.is_active:
            return invalid("Bed is decommissioned.", bed_id=str(bed.id))
        if bed.status != BedStatus.AVAILABLE:
            return invalid_transition("bed", bed.status, "reserve")
        if bed_type and bed.bed_type != bed_type:
            return invalid("Bed type does not match the request.", bed_id=f"Expected a {bed_type} bed.")

        patient = patient_in_tenant(tenant_id=tenant_id, patient_id=patient_id)
        if patient is None:
            return not_found("Patient")

        until = reserved_until or now + _ttl()
        if until <= now:
            return invalid("reserved_until must be in the future.", reserved_until="Must be in the future.")
        if priority not in ReservationPriority.values:
            return invalid("Invalid priority.", priority="Invalid choice.")

        current = BedReservation.objects.select_for_update().filter(bed=bed, status=ReservationStatus.ACTIVE).first()
        if current is not None:
            if not current.is_stale(now):
                return invalid_transition("bed", "reserved", "reserve")
            current.status = ReservationStatus.EXPIRED
            current.expired_at = now
            current.save(update_fields=["status", "expired_at", "updated_at"])
            logger.info("expired stale reservation %s on bed %s", current.id, bed.id)

        reservation = BedReservation.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            bed=bed,
            patient=patient,
            referral_id=referral_id,
            reserved_by_user_id=caller.user_id,
            reserved_until=until,
            priority=priority,
            notes=notes or "",
            status=ReservationStatus.ACTIVE,
        )
        AuditService.log(
            caller=caller,
            tenant_id=tenant_id,
            facility_id=facility_id,
            event_code="BED_RESERVED",
            entity_type=RESERVATION,
            entity_id=reservation.id,
            to_status=ReservationStatus.ACTIVE,
            metadata={"bed_id": str(bed.id), "patient_id": str(patient.id), "referral_id": str(referral_id) if referral_id else None},
        )
        logger.info("bed %s reserved until %s", bed.bed_number, until.isoformat())
        return Result.success(reservation)

    @staticmethod
    def reserve(
        *,
        caller: Caller,
        bed_id,
        patient_id,
        reserved_until: Optional[datetime] = None,
        priority: str = ReservationPriority.NORMAL,
        notes: str = "",
    ) -> Result[BedReservation]:
        if not can(caller, "beds.reserve"):
            return record_denial(caller=caller, action="beds.reserve", entity_type=BED, entity_id=bed_id)
        return run_atomic(
            lambda: BedService.hold(
                caller=caller,
                tenant_id=caller.tenant_id,
                facility_id=caller.facility_id,
                bed_id=bed_id,
                patient_id=patient_id,
                reserved_until=reserved_until,
                priority=priority,
                notes=notes,
            ),
            label="beds.reserve",
        )

    @staticmethod
    def confirm_reservation(*, caller: Caller, reservation_id) -> Result[BedReservation]:
        """active -> confirmed; the bed becomes occupied by the patient."""
        if not can(caller, "beds.reserve"):
            return record_denial(caller=caller, action="beds.reserve", entity_type=RESERVATION, entity_id=reservation_id)

        def body() -> Result[BedReservation]:
            res = _locked_reservation(caller, reservation_id)
            if res is None:
                return not_found("Reservation")
            if res.status != ReservationStatus.ACTIVE:
                return invalid_transition("reservation", res.status, "confirm")
            if res.is_stale():
                return invalid_transition("reservation", ReservationStatus.EXPIRED, "confirm")

            bed = _locked_bed(tenant_id=res.tenant_id, facility_id=res.facility_id, bed_id=res.bed_id)
            if bed.status != BedStatus.AVAILABLE:
                return invalid_transition("bed", bed.status, "occupy")

            now = timezone.now()
            res.status = ReservationStatus.CONFIRMED
            res.confirmed_at = now
            res.save(update_fields=["status", "confirmed_at", "updated_at"])

            bed.status = BedStatus.OCCUPIED
            bed.current_patient_id = res.patient_id
            bed.occupied_since = now
            bed.save(update_fields=["status", "current_patient", "occupied_since", "updated_at"])

            AuditService.log(
                caller=caller,
                event_code="BED_RESERVATION_CONFIRMED",
                entity_type=RESERVATION,
                entity_id=res.id,
                from_status=ReservationStatus.ACTIVE,
                to_status=ReservationStatus.CONFIRMED,
            )
            AuditService.log(
                caller=caller,
                event_code="BED_OCCUPIED",
                entity_type=BED,
                entity_id=bed.id,
                from_status=BedStatus.AVAILABLE,
                to_status=BedStatus.OCCUPIED,
                metadata={"patient_id": str(res.patient_id)},
            )
            return Result.success(res)

        return run_atomic(body, label="beds.confirm_reservation")

    @staticmethod
    def cancel_reservation(*, caller: Caller, reservation_id, reason: str = "") -> Result[BedReservation]:
        if not can(caller, "beds.reserve"):
            return record_denial(caller=caller, action="beds.reserve", entity_type=RESERVATION, entity_id=reservation_id)
        if len(reason or "") > 500:
            return invalid("Reason is too long.", reason="At most 500 characters.")

        def body() -> Result[BedReservation]:
            res = _locked_reservation(caller, reservation_id)
            if res is None:
                return not_found("Reservation")
            if res.status != ReservationStatus.ACTIVE:
                return invalid_transition("reservation", res.status, "cancel")
            BedService._cancel_locked(caller=caller, reservation=res, reason=reason)
            return Result.success(res)

        return run_atomic(body, label="beds.cancel_reservation")

    @staticmethod
    def _cancel_locked(*, caller: Caller, reservation: BedReservation, reason: str) -> None:
        reservation.status = ReservationStatus.CANCELLED
        reservation.cancelled_at = timezone.now()
        reservation.cancellation_reason = (reason or "").strip()
        reservation.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])
        AuditService.log(
            caller=caller,
            tenant_id=reservation.tenant_id,
            facility_id=reservation.facility_id,
            event_code="BED_RESERVATION_CANCELLED",
            entity_type=RESERVATION,
            entity_id=reservation.id,
            from_status=ReservationStatus.ACTIVE,
            to_status=ReservationStatus.CANCELLED,
            metadata={"reason": reservation.cancellation_reason},
        )

    @staticmethod
    def release_for_referral(*, caller: Caller, tenant_id: UUID, referral_id: UUID, reason: str) -> int:
        """
        Cancel the active reservation held for a referral. Runs inside the
        referral's transaction; returns how many were released.
        """
        held = list(
            BedReservation.objects.select_for_update().filter(
                tenant_id=tenant_id,
                referral_id=referral_id,
                status=ReservationStatus.ACTIVE,
            )
        )
        for res in held:
            BedService._cancel_locked(caller=caller, reservation=res, reason=reason)
        return len(held)

    @staticmethod
    def release_bed(*, caller: Caller, bed_id) -> Result[Bed]:
        """occupied -> available (discharge/transfer out)."""
        if not can(caller, "beds.manage"):
            return record_denial(caller=caller, action="beds.manage", entity_type=BED, entity_id=bed_id)

        def body() -> Result[Bed]:
            bed = _locked_bed(tenant_id=caller.tenant_id, facility_id=caller.facility_id, bed_id=bed_id)
            if bed is None:
                return not_found("Bed")
            if bed.status != BedStatus.OCCUPIED:
                return invalid_transition("bed", bed.status, "release")
            patient_id = bed.current_patient_id
            bed.status = BedStatus.AVAILABLE
            bed.current_patient = None
            bed.occupied_since = None
            bed.save(update_fields=["status", "current_patient", "occupied_since", "updated_at"])
            AuditService.log(
                caller=caller,
                event_code="BED_RELEASED",
                entity_type=BED,
                entity_id=bed.id,
                from_status=BedStatus.OCCUPIED,
                to_status=BedStatus.AVAILABLE,
                metadata={"patient_id": str(patient_id) if patient_id else None},
            )
            return Result.success(bed)

        return run_atomic(body, label="beds.release")

    @staticmethod
    def set_maintenance(*, caller: Caller, bed_id, notes: str = "") -> Result[Bed]:
        if not can(caller, "beds.manage"):
            return record_denial(caller=caller, action="beds.manage", entity_type=BED, entity_id=bed_id)

        def body() -> Result[Bed]:
            bed = _locked_bed(tenant_id=caller.tenant_id, facility_id=caller.facility_id, bed_id=bed_id)
            if bed is None:
                return not_found("Bed")
            if bed.status != BedStatus.AVAILABLE:
                return invalid_transition("bed", bed.status, "take out for maintenance")
            if bed.is_reserved:
                return invalid_transition("bed", "reserved", "take out for maintenance")
            bed.status = BedStatus.MAINTENANCE
            if notes:
                bed.notes = notes
            bed.save(update_fields=["status", "notes", "updated_at"])
            AuditService.log(
                caller=caller,
                event_code="BED_MAINTENANCE_STARTED",
                entity_type=BED,
                entity_id=bed.id,
                from_status=BedStatus.AVAILABLE,
                to_status=BedStatus.MAINTENANCE,
            )
            return Result.success(bed)

        return run_atomic(body, label="beds.set_maintenance")

    @staticmethod
    def clear_maintenance(*, caller: Caller, bed_id) -> Result[Bed]:
        if not can(caller, "beds.manage"):
            return record_denial(caller=caller, action="beds.manage", entity_type=BED, entity_id=bed_id)

        def body() -> Result[Bed]:
            bed = _locked_bed(tenant_id=caller.tenant_id, facility_id=caller.facility_id, bed_id=bed_id)
            if bed is None:
                return not_found("Bed")
            if bed.status != BedStatus.MAINTENANCE:
                return invalid_transition("bed", bed.status, "return to service")
            bed.status = BedStatus.AVAILABLE
            bed.save(update_fields=["status", "updated_at"])
            AuditService.log(
                caller=caller,
                event_code="BED_MAINTENANCE_CLEARED",
                entity_type=BED,
                entity_id=bed.id,
                from_status=BedStatus.MAINTENANCE,
                to_status=BedStatus.AVAILABLE,
            )
            return Result.success(bed)

        return run_atomic(body, label="beds.clear_maintenance")

    @staticmethod
    def expire_reservations(*, now: Optional[datetime] = None) -> int:
        """Mark every ACTIVE reservation past `reserved_until` as EXPIRED."""
        now = now or timezone.now()

        def body() -> Result[int]:
            stale = list(
                BedReservation.objects.select_for_update().filter(
                    status=ReservationStatus.ACTIVE,
                    reserved_until__lte=now,
                )
            )
            for res in stale:
                res.status = ReservationStatus.EXPIRED
                res.expired_at = now
                res.save(update_fields=["status", "expired_at", "updated_at"])
                AuditService.log(
                    caller=None,
                    tenant_id=res.tenant_id,
                    facility_id=res.facility_id,
                    event_code="BED_RESERVATION_EXPIRED",
                    entity_type=RESERVATION,
                    entity_id=res.id,
                    from_status=ReservationStatus.ACTIVE,
                    to_status=ReservationStatus.EXPIRED,
                )
            return Result.success(len(stale))

        result = run_atomic(body, label="beds.expire_reservations")
        if not result.ok:
            logger.error("expire_reservations failed: %s", result.error.message)
            return 0
        if result.value:
            logger.info("expired %d bed reservation(s)", result.value)
        return result.value
