# rm_core/referrals/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from rm_core.beds.models import BedType
from rm_core.referrals.models import Referral, ReferralType, TransportMode, Urgency
from rm_core.referrals.selectors import calculate_priority


class ReferralSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source="patient.full_name", read_only=True)
    receiving_facility_name = serializers.CharField(source="receiving_facility.name", read_only=True)
    referring_facility_id = serializers.UUIDField(source="facility_id", read_only=True)
    is_overdue = serializers.BooleanField(read_only=True)
    priority_score = serializers.SerializerMethodField()

    class Meta:
        model = Referral
        fields = [
            "id",
            "referral_number",
            "tenant_id",
            "referring_facility_id",
            "receiving_facility",
            "receiving_facility_name",
            "patient",
            "patient_name",
            "specialty",
            "referring_doctor",
            "receiving_doctor",
            "urgency",
            "referral_type",
            "status",
            "reason",
            "clinical_summary",
            "vital_signs",
            "investigations",
            "current_medications",
            "transport_required",
            "bed_required",
            "bed_type",
            "referred_at",
            "response_deadline",
            "accepted_at",
            "rejected_at",
            "responded_at",
            "in_transit_at",
            "arrived_at",
            "completed_at",
            "cancelled_at",
            "acceptance_notes",
            "rejection_reason",
            "cancellation_reason",
            "outcome",
            "completion_notes",
            "estimated_cost",
            "notes",
            "is_overdue",
            "priority_score",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_priority_score(self, obj) -> int:
        return calculate_priority(obj)


class ReferralCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    receiving_facility_id = serializers.UUIDField()
    specialty_id = serializers.UUIDField(required=False, allow_null=True)
    receiving_doctor_id = serializers.IntegerField(required=False, allow_null=True)
    urgency = serializers.ChoiceField(choices=Urgency.choices)
    referral_type = serializers.ChoiceField(choices=ReferralType.choices, default=ReferralType.CONSULTATION)
    reason = serializers.CharField()
    clinical_summary = serializers.CharField(required=False, allow_blank=True, default="")
    vital_signs = serializers.JSONField(required=False, default=dict)
    investigations = serializers.ListField(child=serializers.JSONField(), required=False, default=list)
    current_medications = serializers.ListField(child=serializers.JSONField(), required=False, default=list)
    transport_required = serializers.ChoiceField(choices=TransportMode.choices, default=TransportMode.NONE)
    bed_required = serializers.BooleanField(default=False)
    bed_type = serializers.ChoiceField(choices=BedType.choices, required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_vital_signs(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Expected a JSON object.")
        return value

    def validate(self, attrs):
        if attrs.get("bed_type") and not attrs.get("bed_required"):
            attrs["bed_required"] = True
        return attrs


class ReferralAcceptSerializer(serializers.Serializer):
    receiving_doctor_id = serializers.IntegerField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    estimated_cost = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0)
    bed_id = serializers.UUIDField(required=False, allow_null=True)


class ReferralRejectSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=1000)


class ReferralCompleteSerializer(serializers.Serializer):
    outcome = serializers.JSONField(required=False, default=dict)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_outcome(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Expected a JSON object.")
        return value


class ReferralCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)


class ReferralStatsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    by_urgency = serializers.DictField(child=serializers.IntegerField())
    average_response_minutes = serializers.FloatField(allow_null=True)


class ReferralPrioritySerializer(serializers.Serializer):
    referral_id = serializers.UUIDField()
    priority_score = serializers.IntegerField()


