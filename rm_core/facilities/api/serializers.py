# rm_core/facilities/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from rm_core.facilities.models import Facility, FacilityType, Specialty


class SpecialtySerializer(serializers.ModelSerializer):
    class Meta:
        model = Specialty
        fields = ["id", "code", "name", "is_active"]
        read_only_fields = ["id", "is_active"]


class FacilitySerializer(serializers.ModelSerializer):
    parent_facility_id = serializers.UUIDField(read_only=True)
    specialties = SpecialtySerializer(many=True, read_only=True)

    class Meta:
        model = Facility
        fields = [
            "id",
            "tenant_id",
            "name",
            "code",
            "facility_type",
            "parent_facility_id",
            "phone",
            "email",
            "address",
            "city",
            "latitude",
            "longitude",
            "accepts_referrals",
            "emergency_capable",
            "specialties",
            "is_active",
            "deactivated_at",
            "deactivation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class FacilityCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    code = serializers.SlugField(max_length=64)
    facility_type = serializers.ChoiceField(choices=FacilityType.choices, required=False, default=FacilityType.HOSPITAL)
    parent_facility_id = serializers.UUIDField(required=False, allow_null=True)

    phone = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    address = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    city = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")

    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)

    accepts_referrals = serializers.BooleanField(required=False, default=True)
    emergency_capable = serializers.BooleanField(required=False, default=False)
    specialty_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)


class FacilityUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    facility_type = serializers.ChoiceField(choices=FacilityType.choices, required=False)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    city = serializers.CharField(max_length=128, required=False, allow_blank=True)
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False)
    accepts_referrals = serializers.BooleanField(required=False)
    emergency_capable = serializers.BooleanField(required=False)
    specialty_ids = serializers.ListField(child=serializers.UUIDField(), required=False)


class SuitableFacilitySerializer(serializers.Serializer):
    facility = FacilitySerializer()
    available_beds = serializers.IntegerField()
    distance_km = serializers.FloatField(allow_null=True)
