# rm_core/appointments/tests/test_scheduling.py
from datetime import datetime, timedelta

import pytest
from django.utils import timezone

from rm_core.appointments.models import Appointment, AppointmentStatus
from rm_core.appointments.services import AppointmentService, available_slots, check_availability
from rm_core.common.results import ErrorKind

pytestmark = pytest.mark.django_db


def _at(days: int, hour: int, minute: int = 0):
    day = timezone.localdate() + timedelta(days=days)
    return timezone.make_aware(datetime(day.year, day.month, day.day, hour, minute))


@pytest.fixture
def booked(receptionist_caller, patient, doctor):
    r = AppointmentService.create(
        caller=receptionist_caller,
        patient_id=patient.id,
        doctor_id=doctor.id,
        scheduled_at=_at(3, 10),
        duration_minutes=30,
        reason="Chest pain review",
    )
    assert r.ok, r.error
    return r.value


def test_create_sets_number_and_end(booked):
    assert booked.appointment_number.startswith("APT-")
    assert booked.status == AppointmentStatus.SCHEDULED
    assert booked.ends_at == booked.scheduled_at + timedelta(minutes=30)


def test_overlap_is_conflict(booked, receptionist_caller, patient, doctor):
    r = AppointmentService.create(
        caller=receptionist_caller,
        patient_id=patient.id,
        doctor_id=doctor.id,
        scheduled_at=_at(3, 10, 15),
        duration_minutes=30,
    )
    assert r.error.kind == ErrorKind.CONFLICT


def test_back_to_back_is_allowed(booked, doctor):
    assert check_availability(doctor_id=doctor.id, start=_at(3, 10, 30), duration_minutes=30)
    assert check_availability(doctor_id=doctor.id, start=_at(3, 9, 30), duration_minutes=30)
    assert not check_availability(doctor_id=doctor.id, start=_at(3, 9, 45), duration_minutes=30)


def test_cancelled_slot_is_free_again(booked, receptionist_caller, doctor):
    assert AppointmentService.cancel(caller=receptionist_caller, appointment_id=booked.id, reason="Patient travelling").ok
    assert check_availability(doctor_id=doctor.id, start=booked.scheduled_at, duration_minutes=30)


@pytest.mark.parametrize("minutes", [10, 481])
def test_duration_bounds(receptionist_caller, patient, doctor, minutes):
    r = AppointmentService.create(
        caller=receptionist_caller,
        patient_id=patient.id,
        doctor_id=doctor.id,
        scheduled_at=_at(4, 11),
        duration_minutes=minutes,
    )
    assert r.error.kind == ErrorKind.VALIDATION
    assert "duration_minutes" in r.error.details


def test_past_slot_rejected(receptionist_caller, patient, doctor):
    r = AppointmentService.create(
        caller=receptionist_caller,
        patient_id=patient.id,
        doctor_id=doctor.id,
        scheduled_at=timezone.now() - timedelta(hours=1),
    )
    assert r.error.kind == ErrorKind.VALIDATION


def test_doctor_must_be_a_doctor_here(receptionist_caller, patient, nurse):
    r = AppointmentService.create(
        caller=receptionist_caller,
        patient_id=patient.id,
        doctor_id=nurse.id,
        scheduled_at=_at(3, 12),
    )
    assert r.error.kind == ErrorKind.VALIDATION
    assert "doctor_id" in r.error.details


def test_cancel_inside_cutoff_is_refused(receptionist_caller, patient, doctor, settings):
    settings.APPOINTMENTS_CANCEL_CUTOFF_MINUTES = 120
    soon = AppointmentService.create(
        caller=receptionist_caller,
        patient_id=patient.id,
        doctor_id=doctor.id,
        scheduled_at=timezone.now() + timedelta(minutes=60),
    ).value

    r = AppointmentService.cancel(caller=receptionist_caller, appointment_id=soon.id, reason="late")
    assert r.error.kind == ErrorKind.INVALID_TRANSITION
    assert r.error.current_status == AppointmentStatus.SCHEDULED


def test_reschedule_moves_and_resets_confirmation(booked, receptionist_caller):
    assert AppointmentService.confirm(caller=receptionist_caller, appointment_id=booked.id).ok

    r = AppointmentService.reschedule(caller=receptionist_caller, appointment_id=booked.id, scheduled_at=_at(5, 14))
    assert r.ok, r.error
    assert r.value.status == AppointmentStatus.SCHEDULED
    assert r.value.confirmed_at is None
    assert r.value.ends_at == _at(5, 14, 30)


def test_reschedule_onto_own_slot_is_fine(booked, receptionist_caller):
    r = AppointmentService.reschedule(
        caller=receptionist_caller, appointment_id=booked.id, scheduled_at=_at(3, 10, 15)
    )
    assert r.ok, r.error


def test_visit_flow_and_follow_up(booked, receptionist_caller, doctor_caller):
    assert AppointmentService.check_in(caller=receptionist_caller, appointment_id=booked.id).ok
    assert AppointmentService.start(caller=doctor_caller, appointment_id=booked.id).value.started_at is not None

    r = AppointmentService.complete(
        caller=doctor_caller,
        appointment_id=booked.id,
        diagnosis="Stable angina",
        follow_up_date=_at(10, 9),
    )
    assert r.ok, r.error
    assert r.value.status == AppointmentStatus.COMPLETED
    assert r.value.follow_up_required is True

    follow_up = Appointment.objects.get(follow_up_of=booked)
    assert follow_up.appointment_type == "follow_up"
    assert follow_up.doctor_id == booked.doctor_id


def test_follow_up_slot_taken_rolls_back(booked, receptionist_caller, doctor_caller, patient, doctor):
    AppointmentService.create(
        caller=receptionist_caller, patient_id=patient.id, doctor_id=doctor.id, scheduled_at=_at(10, 9)
    )
    AppointmentService.check_in(caller=receptionist_caller, appointment_id=booked.id)

    r = AppointmentService.complete(caller=doctor_caller, appointment_id=booked.id, follow_up_date=_at(10, 9, 15))
    assert r.error.kind == ErrorKind.VALIDATION

    booked.refresh_from_db()
    assert booked.status == AppointmentStatus.CHECKED_IN


def test_only_booked_doctor_treats(booked, receptionist_caller, tenant, facility):
    from rm_core.common.permissions import Role
    from rm_core.iam.services.caller import resolve_caller
    from rm_core.tests.helpers import make_member

    other = make_member("dr_other", tenant=tenant, facility=facility, roles=[Role.DOCTOR])
    caller = resolve_caller(other, tenant_id=tenant.id, facility_id=facility.id)
    AppointmentService.check_in(caller=receptionist_caller, appointment_id=booked.id)

    r = AppointmentService.start(caller=caller, appointment_id=booked.id)
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_receptionist_cannot_treat(booked, receptionist_caller):
    AppointmentService.check_in(caller=receptionist_caller, appointment_id=booked.id)
    r = AppointmentService.start(caller=receptionist_caller, appointment_id=booked.id)
    assert r.error.kind == ErrorKind.PERMISSION_DENIED


def test_available_slots_skip_booked(booked, doctor, settings):
    settings.APPOINTMENTS_DAY_START = "09:00"
    settings.APPOINTMENTS_DAY_END = "12:00"

    slots = available_slots(doctor_id=doctor.id, day=timezone.localdate() + timedelta(days=3), slot_minutes=30)
    assert len(slots) == 5
    assert booked.scheduled_at not in slots
    assert _at(3, 10, 30) in slots
