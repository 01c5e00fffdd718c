# rm_core/appointments/services.py
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from rm_core.appointments import permissions  # noqa: F401  (registers object rules)
from rm_core.appointments.models import (
    MAX_DURATION_MINUTES,
    MIN_DURATION_MINUTES,
    Appointment,
    AppointmentPriority,
    AppointmentStatus,
    AppointmentType,
)
from rm_core.audit.services import AuditService, record_denial
from rm_core.common.events import publish
from rm_core.common.numbering import next_number
from rm_core.common.permissions import Caller, Role, can
from rm_core.common.results import ErrorKind, Result, invalid, invalid_transition, not_found, run_atomic
from rm_core.iam.services.membership import user_has_role
from rm_core.patients.models import Patient

logger = logging.getLogger(__name__)

ENTITY = "APPOINTMENT"


def _minutes_setting(name: str, default: int) -> int:
    return int(getattr(settings, name, default))


def _clock_setting(name: str, default: str) -> time:
    hh, mm = str(getattr(settings, name, default)).split(":")
    return time(int(hh), int(mm))


def check_availability(
    *,
    doctor_id: int,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: Optional[UUID] = None,
) -> bool:
    """
    True when no non-cancelled appointment of the doctor overlaps
    [start, start + duration). Back-to-back slots do not overlap.
    """
    end = start + timedelta(minutes=duration_minutes)
    clashes = Appointment.objects.filter(
        doctor_id=doctor_id,
        scheduled_at__lt=end,
        ends_at__gt=start,
    ).exclude(status=AppointmentStatus.CANCELLED)
    if exclude_appointment_id is not None:
        clashes = clashes.exclude(id=exclude_appointment_id)
    return not clashes.exists()


def _lock_doctor(doctor_id: int) -> None:
    # Bookings for one doctor serialize on the doctor row.
    get_user_model().objects.select_for_update().filter(id=doctor_id).first()


def _slot_taken(start: datetime) -> Result:
    return Result.failure(
        ErrorKind.CONFLICT,
        "The doctor already has an appointment in this time slot.",
        details={"scheduled_at": start.isoformat()},
    )


def _event_payload(appt: Appointment, caller: Optional[Caller], **extra) -> dict:
    return {
        "appointment_id": appt.id,
        "appointment_number": appt.appointment_number,
        "tenant_id": appt.tenant_id,
        "facility_id": appt.facility_id,
        "doctor_id": appt.doctor_id,
        "patient_id": appt.patient_id,
        "scheduled_at": timezone.localtime(appt.scheduled_at).strftime("%Y-%m-%d %H:%M"),
        "status": appt.status,
        "actor_user_id": getattr(caller, "user_id", None),
        **extra,
    }


def _locked(caller: Caller, appointment_id) -> Optional[Appointment]:
    return (
        Appointment.objects.select_for_update()
        .filter(id=appointment_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id)
        .first()
    )


def _validate_slot(scheduled_at: datetime, duration_minutes: int, *, now: datetime) -> Optional[Result]:
    if not MIN_DURATION_MINUTES <= int(duration_minutes) <= MAX_DURATION_MINUTES:
        return invalid(
            "Invalid duration.",
            duration_minutes=f"Must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes.",
        )
    if timezone.is_naive(scheduled_at):
        return invalid("scheduled_at must include a timezone.", scheduled_at="Timezone required.")
    if scheduled_at <= now:
        return invalid("Appointments must be in the future.", scheduled_at="Must be in the future.")
    return None


class AppointmentService:
    """
    Appointment scheduling.

        scheduled -> confirmed -> checked_in -> in_progress -> completed
        scheduled -> checked_in
        checked_in -> completed
        scheduled | confirmed | checked_in | in_progress -> cancelled (outside the cutoff)
    """

    @staticmethod
    def _record(caller: Caller, appt: Appointment, *, event_code: str, previous: str, metadata: Optional[dict] = None) -> None:
        AuditService.log(
            caller=caller,
            tenant_id=appt.tenant_id,
            facility_id=appt.facility_id,
            event_code=event_code,
            entity_type=ENTITY,
            entity_id=appt.id,
            from_status=previous or None,
            to_status=appt.status,
            metadata=metadata,
        )

    @staticmethod
    def _book_locked(
        *,
        caller: Caller,
        patient: Patient,
        doctor_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
        appointment_type: str,
        priority: str,
        reason: str = "",
        notes: str = "",
        follow_up_of: Optional[Appointment] = None,
    ) -> Result[Appointment]:
        _lock_doctor(doctor_id)
        if not check_availability(doctor_id=doctor_id, start=scheduled_at, duration_minutes=duration_minutes):
            return _slot_taken(scheduled_at)

        now = timezone.now()
        number = next_number(
            Appointment.objects.filter(tenant_id=patient.tenant_id),
            field="appointment_number",
            prefix=f"APT-{now:%Y%m%d}-",
            width=4,
        )
        appt = Appointment.objects.create(
            tenant_id=patient.tenant_id,
            facility_id=patient.facility_id,
            appointment_number=number,
            patient=patient,
            doctor_id=doctor_id,
            booked_by_user_id=caller.user_id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            appointment_type=appointment_type,
            priority=priority,
            status=AppointmentStatus.SCHEDULED,
            reason=reason or "",
            notes=notes or "",
            follow_up_of=follow_up_of,
        )
        AppointmentService._record(
            caller,
            appt,
            event_code="APPOINTMENT_BOOKED",
            previous="",
            metadata={"appointment_number": number, "doctor_id": doctor_id, "follow_up_of": str(follow_up_of.id) if follow_up_of else None},
        )
        publish("appointment.booked", _event_payload(appt, caller))
        logger.info("appointment %s booked doctor=%s at %s", number, doctor_id, scheduled_at.isoformat())
        return Result.success(appt)

    @staticmethod
    def create(
        *,
        caller: Caller,
        patient_id: UUID,
        doctor_id: int,
        scheduled_at: datetime,
        duration_minutes: int = 30,
        appointment_type: str = AppointmentType.CONSULTATION,
        priority: str = AppointmentPriority.NORMAL,
        reason: str = "",
        notes: str = "",
    ) -> Result[Appointment]:
        if not can(caller, "appointments.book"):
            return record_denial(caller=caller, action="appointments.book", entity_type=ENTITY)

        problem = _validate_slot(scheduled_at, duration_minutes, now=timezone.now())
        if problem is not None:
            return problem
        if appointment_type not in AppointmentType.values:
            return invalid("Invalid appointment type.", appointment_type="Invalid choice.")
        if priority not in AppointmentPriority.values:
            return invalid("Invalid priority.", priority="Invalid choice.")

        patient = Patient.objects.filter(id=patient_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id).first()
        if patient is None:
            return invalid("Patient not found at this facility.", patient_id="Not found.")
        if not user_has_role(user_id=doctor_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id, role=Role.DOCTOR):
            return invalid("The doctor must be a doctor at this facility.", doctor_id="Not a doctor at this facility.")

        return run_atomic(
            lambda: AppointmentService._book_locked(
                caller=caller,
                patient=patient,
                doctor_id=doctor_id,
                scheduled_at=scheduled_at,
                duration_minutes=int(duration_minutes),
                appointment_type=appointment_type,
                priority=priority,
                reason=reason,
                notes=notes,
            ),
            label="appointments.create",
        )

    @staticmethod
    def _advance(
        *,
        caller: Caller,
        appointment_id,
        capability: str,
        sources: tuple[str, ...],
        target: str,
        stamp_field: str,
        action: str,
    ) -> Result[Appointment]:
        if not caller or not caller.has(capability):
            return record_denial(caller=caller, action=capability, entity_type=ENTITY, entity_id=appointment_id)

        def body() -> Result[Appointment]:
            appt = _locked(caller, appointment_id)
            if appt is None:
                return not_found("Appointment")
            if not can(caller, capability, appt):
                return record_denial(caller=caller, action=capability, entity_type=ENTITY, entity_id=appt.id, reason="not_treating_doctor")
            if appt.status not in sources:
                return invalid_transition("appointment", appt.status, action)

            previous = appt.status
            appt.status = target
            setattr(appt, stamp_field, timezone.now())
            appt.save(update_fields=["status", stamp_field, "updated_at"])
            AppointmentService._record(caller, appt, event_code=f"APPOINTMENT_{target.upper()}", previous=previous)
            logger.info("appointment %s %s -> %s", appt.appointment_number, previous, target)
            return Result.success(appt)

        return run_atomic(body, label=f"appointments.{target}")

    @staticmethod
    def confirm(*, caller: Caller, appointment_id) -> Result[Appointment]:
        return AppointmentService._advance(
            caller=caller,
            appointment_id=appointment_id,
            capability="appointments.front_desk",
            sources=(AppointmentStatus.SCHEDULED,),
            target=AppointmentStatus.CONFIRMED,
            stamp_field="confirmed_at",
            action="confirm",
        )

    @staticmethod
    def check_in(*, caller: Caller, appointment_id) -> Result[Appointment]:
        return AppointmentService._advance(
            caller=caller,
            appointment_id=appointment_id,
            capability="appointments.front_desk",
            sources=(AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED),
            target=AppointmentStatus.CHECKED_IN,
            stamp_field="checked_in_at",
            action="check in",
        )

    @staticmethod
    def start(*, caller: Caller, appointment_id) -> Result[Appointment]:
        return AppointmentService._advance(
            caller=caller,
            appointment_id=appointment_id,
            capability="appointments.treat",
            sources=(AppointmentStatus.CHECKED_IN,),
            target=AppointmentStatus.IN_PROGRESS,
            stamp_field="started_at",
            action="start",
        )

    @staticmethod
    def complete(
        *,
        caller: Caller,
        appointment_id,
        doctor_notes: str = "",
        diagnosis: str = "",
        treatment_plan: str = "",
        follow_up_date: Optional[datetime] = None,
        follow_up_duration_minutes: Optional[int] = None,
    ) -> Result[Appointment]:
        """
        checked_in | in_progress -> completed. A `follow_up_date` books a
        follow-up with the same doctor in the same transaction; if that slot
        is taken nothing is applied.
        """
        if not caller or not caller.has("appointments.treat"):
            return record_denial(caller=caller, action="appointments.treat", entity_type=ENTITY, entity_id=appointment_id)

        now = timezone.now()
        if follow_up_date is not None:
            problem = _validate_slot(follow_up_date, follow_up_duration_minutes or 30, now=now)
            if problem is not None:
                return invalid(f"Follow-up: {problem.error.message}", follow_up_date=problem.error.details)

        def body() -> Result[Appointment]:
            appt = _locked(caller, appointment_id)
            if appt is None:
                return not_found("Appointment")
            if not can(caller, "appointments.treat", appt):
                return record_denial(
                    caller=caller,
                    action="appointments.treat",
                    entity_type=ENTITY,
                    entity_id=appt.id,
                    reason="not_treating_doctor",
                )
            if appt.status not in (AppointmentStatus.CHECKED_IN, AppointmentStatus.IN_PROGRESS):
                return invalid_transition("appointment", appt.status, "complete")

            duration = int(follow_up_duration_minutes or appt.duration_minutes)
            if follow_up_date is not None:
                _lock_doctor(appt.doctor_id)
            if follow_up_date is not None and not check_availability(
                doctor_id=appt.doctor_id, start=follow_up_date, duration_minutes=duration
            ):
                return invalid(
                    "The follow-up slot is not available.",
                    follow_up_date="The doctor already has an appointment in this time slot.",
                )

            previous = appt.status
            appt.status = AppointmentStatus.COMPLETED
            appt.completed_at = now
            appt.doctor_notes = doctor_notes or ""
            appt.diagnosis = diagnosis or ""
            appt.treatment_plan = treatment_plan or ""
            appt.follow_up_required = follow_up_date is not None
            appt.save(
                update_fields=[
                    "status",
                    "completed_at",
                    "doctor_notes",
                    "diagnosis",
                    "treatment_plan",
                    "follow_up_required",
                    "updated_at",
                ]
            )
            AppointmentService._record(caller, appt, event_code="APPOINTMENT_COMPLETED", previous=previous)

            if follow_up_date is not None:
                booked = AppointmentService._book_locked(
                    caller=caller,
                    patient=appt.patient,
                    doctor_id=appt.doctor_id,
                    scheduled_at=follow_up_date,
                    duration_minutes=duration,
                    appointment_type=AppointmentType.FOLLOW_UP,
                    priority=appt.priority,
                    reason=f"Follow-up of {appt.appointment_number}",
                    follow_up_of=appt,
                )
                if not booked.ok:
                    transaction.set_rollback(True)
                    return booked

            logger.info("appointment %s completed follow_up=%s", appt.appointment_number, follow_up_date is not None)
            return Result.success(appt)

        return run_atomic(body, label="appointments.complete")

    @staticmethod
    def cancel(*, caller: Caller, appointment_id, reason: str) -> Result[Appointment]:
        if not caller or not caller.has("appointments.cancel"):
            return record_denial(caller=caller, action="appointments.cancel", entity_type=ENTITY, entity_id=appointment_id)
        reason = (reason or "").strip()
        if not reason:
            return invalid("A cancellation reason is required.", reason="This field may not be blank.")
        if len(reason) > 500:
            return invalid("Cancellation reason is too long.", reason="At most 500 characters.")

        cutoff = _minutes_setting("APPOINTMENTS_CANCEL_CUTOFF_MINUTES", 120)

        def body() -> Result[Appointment]:
            appt = _locked(caller, appointment_id)
            if appt is None:
                return not_found("Appointment")
            if appt.status in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED):
                return invalid_transition("appointment", appt.status, "cancel")
            if not appt.can_be_cancelled(now=timezone.now(), cutoff_minutes=cutoff):
                return Result.failure(
                    ErrorKind.INVALID_TRANSITION,
                    f"Appointments cannot be cancelled less than {cutoff} minutes before the start.",
                    current_status=appt.status,
                )

            previous = appt.status
            appt.status = AppointmentStatus.CANCELLED
            appt.cancelled_at = timezone.now()
            appt.cancellation_reason = reason
            appt.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])
            AppointmentService._record(caller, appt, event_code="APPOINTMENT_CANCELLED", previous=previous, metadata={"reason": reason})
            publish("appointment.cancelled", _event_payload(appt, caller, reason=reason))
            logger.info("appointment %s cancelled", appt.appointment_number)
            return Result.success(appt)

        return run_atomic(body, label="appointments.cancel")

    @staticmethod
    def reschedule(
        *,
        caller: Caller,
        appointment_id,
        scheduled_at: datetime,
        duration_minutes: Optional[int] = None,
    ) -> Result[Appointment]:
        if not can(caller, "appointments.book"):
            return record_denial(caller=caller, action="appointments.book", entity_type=ENTITY, entity_id=appointment_id)

        now = timezone.now()
        cutoff = _minutes_setting("APPOINTMENTS_RESCHEDULE_CUTOFF_MINUTES", 240)

        def body() -> Result[Appointment]:
            appt = _locked(caller, appointment_id)
            if appt is None:
                return not_found("Appointment")
            if appt.status not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
                return invalid_transition("appointment", appt.status, "reschedule")
            if appt.scheduled_at - now < timedelta(minutes=cutoff):
                return Result.failure(
                    ErrorKind.INVALID_TRANSITION,
                    f"Appointments cannot be rescheduled less than {cutoff} minutes before the start.",
                    current_status=appt.status,
                )

            duration = int(duration_minutes or appt.duration_minutes)
            problem = _validate_slot(scheduled_at, duration, now=now)
            if problem is not None:
                return problem

            _lock_doctor(appt.doctor_id)
            if not check_availability(
                doctor_id=appt.doctor_id,
                start=scheduled_at,
                duration_minutes=duration,
                exclude_appointment_id=appt.id,
            ):
                return _slot_taken(scheduled_at)

            previous = appt.status
            old_start = appt.scheduled_at
            appt.scheduled_at = scheduled_at
            appt.duration_minutes = duration
            appt.status = AppointmentStatus.SCHEDULED
            appt.confirmed_at = None
            appt.save(update_fields=["scheduled_at", "duration_minutes", "ends_at", "status", "confirmed_at", "updated_at"])
            AppointmentService._record(
                caller,
                appt,
                event_code="APPOINTMENT_RESCHEDULED",
                previous=previous,
                metadata={"from": old_start.isoformat(), "to": scheduled_at.isoformat()},
            )
            publish("appointment.rescheduled", _event_payload(appt, caller))
            logger.info("appointment %s moved %s -> %s", appt.appointment_number, old_start.isoformat(), scheduled_at.isoformat())
            return Result.success(appt)

        return run_atomic(body, label="appointments.reschedule")


def available_slots(*, doctor_id: int, day: date, slot_minutes: int = 30) -> list[datetime]:
    """Free slot starts for the doctor on `day`, within the working day, from now on."""
    tz = timezone.get_current_timezone()
    start = timezone.make_aware(datetime.combine(day, _clock_setting("APPOINTMENTS_DAY_START", "08:00")), tz)
    end = timezone.make_aware(datetime.combine(day, _clock_setting("APPOINTMENTS_DAY_END", "18:00")), tz)
    step = timedelta(minutes=slot_minutes)
    now = timezone.now()

    taken = list(
        Appointment.objects.filter(doctor_id=doctor_id, scheduled_at__lt=end, ends_at__gt=start)
        .exclude(status=AppointmentStatus.CANCELLED)
        .values_list("scheduled_at", "ends_at")
    )

    slots = []
    cursor = start
    while cursor + step <= end:
        slot_end = cursor + step
        if cursor > now and not any(s < slot_end and e > cursor for s, e in taken):
            slots.append(cursor)
        cursor = slot_end
    return slots
