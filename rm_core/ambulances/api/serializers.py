# rm_core/ambulances/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from rm_core.ambulances.models import (
    Ambulance,
    AmbulanceDispatch,
    AmbulanceLocation,
    AmbulanceStatus,
    DispatchPriority,
    DispatchStatus,
    DispatchStatusUpdate,
)


class AmbulanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Ambulance
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "vehicle_number",
            "call_sign",
            "ambulance_type",
            "status",
            "current_latitude",
            "current_longitude",
            "last_location_at",
            "fuel_level",
            "notes",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "tenant_id",
            "facility_id",
            "status",
            "current_latitude",
            "current_longitude",
            "last_location_at",
            "created_at",
            "updated_at",
        ]

    def validate_vehicle_number(self, value: str) -> str:
        request = self.context.get("request")
        qs = Ambulance.objects.filter(
            tenant_id=getattr(request, "tenant_id", None),
            facility_id=getattr(request, "facility_id", None),
            vehicle_number=value,
        )
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError("An ambulance with this vehicle number already exists.")
        return value

    def validate_fuel_level(self, value):
        if value is not None and not 0 <= value <= 100:
            raise serializers.ValidationError("Fuel level is a percentage (0-100).")
        return value


class NearbyAmbulanceSerializer(serializers.Serializer):
    ambulance = AmbulanceSerializer()
    distance_km = serializers.FloatField()


class AmbulanceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=[AmbulanceStatus.AVAILABLE, AmbulanceStatus.MAINTENANCE, AmbulanceStatus.OUT_OF_SERVICE]
    )
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)


class LocationUpdateSerializer(serializers.Serializer):
    # Ranges are checked by the service so every caller gets the same errors.
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    speed = serializers.FloatField(required=False, allow_null=True)
    heading = serializers.FloatField(required=False, allow_null=True)
    accuracy = serializers.FloatField(required=False, allow_null=True)


class AmbulanceLocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = AmbulanceLocation
        fields = ["id", "ambulance", "dispatch", "latitude", "longitude", "speed_kmh", "heading", "accuracy_m", "recorded_at"]
        read_only_fields = fields


class DispatchSerializer(serializers.ModelSerializer):
    vehicle_number = serializers.CharField(source="ambulance.vehicle_number", read_only=True)

    class Meta:
        model = AmbulanceDispatch
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "dispatch_number",
            "ambulance",
            "vehicle_number",
            "referral",
            "dispatcher_user_id",
            "crew_ids",
            "pickup_latitude",
            "pickup_longitude",
            "pickup_address",
            "destination_latitude",
            "destination_longitude",
            "destination_address",
            "priority",
            "status",
            "special_instructions",
            "dispatched_at",
            "acknowledged_at",
            "en_route_pickup_at",
            "arrived_pickup_at",
            "patient_loaded_at",
            "en_route_destination_at",
            "arrived_destination_at",
            "patient_delivered_at",
            "completed_at",
            "cancelled_at",
            "eta_pickup",
            "eta_destination",
            "estimated_distance_km",
            "estimated_duration_minutes",
            "distance_km",
            "fuel_consumed",
            "handover_notes",
            "receiving_staff",
            "crew_notes",
            "cancellation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class DispatchCreateSerializer(serializers.Serializer):
    ambulance_id = serializers.UUIDField()
    referral_id = serializers.UUIDField(required=False, allow_null=True)
    pickup_latitude = serializers.FloatField()
    pickup_longitude = serializers.FloatField()
    pickup_address = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    destination_latitude = serializers.FloatField()
    destination_longitude = serializers.FloatField()
    destination_address = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    priority = serializers.ChoiceField(choices=DispatchPriority.choices, default=DispatchPriority.NORMAL)
    crew_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False, default=list)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default="")


class DispatchStepSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    latitude = serializers.FloatField(required=False, allow_null=True, default=None)
    longitude = serializers.FloatField(required=False, allow_null=True, default=None)


class DispatchDeliverSerializer(serializers.Serializer):
    handover_notes = serializers.CharField(required=False, allow_blank=True, default="")
    receiving_staff = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    latitude = serializers.FloatField(required=False, allow_null=True, default=None)
    longitude = serializers.FloatField(required=False, allow_null=True, default=None)


class DispatchCompleteSerializer(serializers.Serializer):
    distance_km = serializers.DecimalField(max_digits=8, decimal_places=2, required=False, allow_null=True, default=None)
    fuel_consumed = serializers.DecimalField(max_digits=8, decimal_places=2, required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DispatchCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)


class DispatchStatusChangeSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s for s in DispatchStatus.values if s != DispatchStatus.DISPATCHED])
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DispatchStatusUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = DispatchStatusUpdate
        fields = ["id", "from_status", "to_status", "actor_user_id", "latitude", "longitude", "notes", "created_at"]
        read_only_fields = fields


class RouteProgressSerializer(serializers.Serializer):
    total_distance_km = serializers.FloatField()
    completed_distance_km = serializers.FloatField()
    progress_percentage = serializers.FloatField()
    updated_at = serializers.CharField()


class DispatchAnalyticsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    by_priority = serializers.DictField(child=serializers.IntegerField())
    completed = serializers.IntegerField()
    cancelled = serializers.IntegerField()
    average_response_minutes = serializers.FloatField(allow_null=True)
    average_transport_minutes = serializers.FloatField(allow_null=True)
