# rm_core/iam/admin.py
from __future__ import annotations

from django.contrib import admin

from rm_core.iam.models import FacilityMembership, UserProfile


class FacilityMembershipInline(admin.TabularInline):
    model = FacilityMembership
    extra = 0
    autocomplete_fields = ("facility",)


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "tenant", "specialty", "is_active", "created_at")
    list_filter = ("tenant", "is_active")
    search_fields = ("user__username", "user__email", "license_number")
    autocomplete_fields = ("user", "tenant")
    inlines = [FacilityMembershipInline]
    ordering = ("-created_at",)


@admin.register(FacilityMembership)
class FacilityMembershipAdmin(admin.ModelAdmin):
    list_display = ("tenant", "facility", "user_profile", "role", "is_primary", "is_active")
    list_filter = ("tenant", "facility", "role", "is_active")
    search_fields = ("facility__name", "facility__code", "user_profile__user__username")
    autocomplete_fields = ("tenant", "facility", "user_profile")
