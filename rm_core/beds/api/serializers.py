# rm_core/beds/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from rm_core.beds.models import Bed, BedReservation, ReservationPriority


class BedSerializer(serializers.ModelSerializer):
    is_reserved = serializers.SerializerMethodField()

    class Meta:
        model = Bed
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "bed_number",
            "ward",
            "room",
            "bed_type",
            "status",
            "is_reserved",
            "current_patient",
            "occupied_since",
            "is_active",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "tenant_id",
            "facility_id",
            "status",
            "is_reserved",
            "current_patient",
            "occupied_since",
            "created_at",
            "updated_at",
        ]

    def get_is_reserved(self, obj) -> bool:
        reserved = getattr(obj, "reserved", None)
        return obj.is_reserved if reserved is None else bool(reserved)

    def validate_bed_number(self, value: str) -> str:
        request = self.context.get("request")
        qs = Bed.objects.filter(
            tenant_id=getattr(request, "tenant_id", None),
            facility_id=getattr(request, "facility_id", None),
            bed_number=value,
        )
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError("A bed with this number already exists.")
        return value


class BedReservationSerializer(serializers.ModelSerializer):
    bed_number = serializers.CharField(source="bed.bed_number", read_only=True)

    class Meta:
        model = BedReservation
        fields = [
            "id",
            "bed",
            "bed_number",
            "patient",
            "referral_id",
            "reserved_by_user_id",
            "reserved_until",
            "priority",
            "notes",
            "status",
            "confirmed_at",
            "cancelled_at",
            "cancellation_reason",
            "expired_at",
            "created_at",
        ]
        read_only_fields = fields


class ReserveBedSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    reserved_until = serializers.DateTimeField(required=False, allow_null=True)
    priority = serializers.ChoiceField(choices=ReservationPriority.choices, default=ReservationPriority.NORMAL)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)


class MaintenanceNotesSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class OccupancySerializer(serializers.Serializer):
    total = serializers.IntegerField()
    available = serializers.IntegerField()
    reserved = serializers.IntegerField()
    occupied = serializers.IntegerField()
    maintenance = serializers.IntegerField()
