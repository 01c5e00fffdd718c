# rm_core/equipment/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from rm_core.equipment.models import (
    Equipment,
    EquipmentCondition,
    MaintenancePriority,
    MaintenanceRecord,
    MaintenanceType,
)


class EquipmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Equipment
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "name",
            "code",
            "category",
            "serial_number",
            "manufacturer",
            "location",
            "status",
            "condition",
            "last_maintenance",
            "next_maintenance_due",
            "notes",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "tenant_id", "facility_id", "status", "last_maintenance", "created_at", "updated_at"]

    def validate_code(self, value: str) -> str:
        request = self.context.get("request")
        qs = Equipment.objects.filter(
            tenant_id=getattr(request, "tenant_id", None),
            facility_id=getattr(request, "facility_id", None),
            code=value,
        )
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError("Equipment with this code already exists.")
        return value


class MaintenanceRecordSerializer(serializers.ModelSerializer):
    equipment_name = serializers.CharField(source="equipment.name", read_only=True)

    class Meta:
        model = MaintenanceRecord
        fields = [
            "id",
            "equipment",
            "equipment_name",
            "maintenance_type",
            "status",
            "priority",
            "scheduled_date",
            "description",
            "estimated_duration_hours",
            "technician",
            "scheduled_by_user_id",
            "performed_by_user_id",
            "required_parts",
            "required_tools",
            "safety_requirements",
            "started_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "completion_notes",
            "work_performed",
            "parts_used",
            "cost",
            "issues_found",
            "recommendations",
            "condition_after",
            "returned_to_service",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ScheduleMaintenanceSerializer(serializers.Serializer):
    maintenance_type = serializers.ChoiceField(choices=MaintenanceType.choices)
    scheduled_date = serializers.DateTimeField()
    description = serializers.CharField(max_length=1000)
    estimated_duration_hours = serializers.DecimalField(max_digits=5, decimal_places=1, min_value=Decimal("0.5"), max_value=Decimal("168"))
    priority = serializers.ChoiceField(choices=MaintenancePriority.choices, default=MaintenancePriority.NORMAL)
    technician_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    required_parts = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    required_tools = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    safety_requirements = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class CompleteMaintenanceSerializer(serializers.Serializer):
    completion_notes = serializers.CharField()
    condition = serializers.ChoiceField(choices=EquipmentCondition.choices)
    work_performed = serializers.ListField(child=serializers.CharField(), allow_empty=False)
    return_to_service = serializers.BooleanField()
    parts_used = serializers.ListField(child=serializers.JSONField(), required=False, default=list)
    cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, allow_null=True, default=None)
    issues_found = serializers.CharField(required=False, allow_blank=True, default="")
    recommendations = serializers.CharField(required=False, allow_blank=True, default="")
    next_maintenance_due = serializers.DateField(required=False, allow_null=True, default=None)


class CancelMaintenanceSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)
