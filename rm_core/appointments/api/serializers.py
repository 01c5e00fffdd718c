# rm_core/appointments/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from rm_core.appointments.models import (
    MAX_DURATION_MINUTES,
    MIN_DURATION_MINUTES,
    Appointment,
    AppointmentPriority,
    AppointmentType,
)


class AppointmentSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source="patient.full_name", read_only=True)
    doctor_name = serializers.SerializerMethodField()

    class Meta:
        model = Appointment
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "appointment_number",
            "patient",
            "patient_name",
            "doctor",
            "doctor_name",
            "scheduled_at",
            "duration_minutes",
            "ends_at",
            "appointment_type",
            "status",
            "priority",
            "reason",
            "notes",
            "confirmed_at",
            "checked_in_at",
            "started_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "doctor_notes",
            "diagnosis",
            "treatment_plan",
            "follow_up_required",
            "follow_up_of",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_doctor_name(self, obj) -> str:
        return obj.doctor.get_full_name() or obj.doctor.get_username()


class AppointmentCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    doctor_id = serializers.IntegerField(min_value=1)
    scheduled_at = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField(min_value=MIN_DURATION_MINUTES, max_value=MAX_DURATION_MINUTES, default=30)
    appointment_type = serializers.ChoiceField(choices=AppointmentType.choices, default=AppointmentType.CONSULTATION)
    priority = serializers.ChoiceField(choices=AppointmentPriority.choices, default=AppointmentPriority.NORMAL)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class AppointmentCompleteSerializer(serializers.Serializer):
    doctor_notes = serializers.CharField(required=False, allow_blank=True, default="")
    diagnosis = serializers.CharField(required=False, allow_blank=True, default="")
    treatment_plan = serializers.CharField(required=False, allow_blank=True, default="")
    follow_up_date = serializers.DateTimeField(required=False, allow_null=True, default=None)
    follow_up_duration_minutes = serializers.IntegerField(
        min_value=MIN_DURATION_MINUTES, max_value=MAX_DURATION_MINUTES, required=False, allow_null=True, default=None
    )


class AppointmentCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)


class AppointmentRescheduleSerializer(serializers.Serializer):
    scheduled_at = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField(
        min_value=MIN_DURATION_MINUTES, max_value=MAX_DURATION_MINUTES, required=False, allow_null=True, default=None
    )


class AvailabilitySerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField()
    scheduled_at = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField()
    available = serializers.BooleanField()


class SlotsSerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField()
    date = serializers.DateField()
    slot_minutes = serializers.IntegerField()
    slots = serializers.ListField(child=serializers.DateTimeField())
