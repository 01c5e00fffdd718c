# rm_core/facilities/admin.py
from __future__ import annotations

from django.contrib import admin

from rm_core.facilities.models import Facility, Specialty


@admin.register(Facility)
class FacilityAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "code",
        "tenant",
        "facility_type",
        "accepts_referrals",
        "emergency_capable",
        "is_active",
        "city",
    )
    list_filter = ("is_active", "accepts_referrals", "emergency_capable", "facility_type", "tenant")
    search_fields = ("name", "code", "tenant__code", "city")
    filter_horizontal = ("specialties",)
    readonly_fields = ("id", "created_at", "updated_at")
    ordering = ("tenant", "name")


@admin.register(Specialty)
class SpecialtyAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "tenant", "is_active")
    list_filter = ("tenant", "is_active")
    search_fields = ("name", "code")
