from django.contrib import admin

from rm_core.referrals.models import Referral


@admin.register(Referral)
class ReferralAdmin(admin.ModelAdmin):
    list_display = ("referral_number", "patient", "urgency", "status", "receiving_facility", "referred_at")
    list_filter = ("status", "urgency", "referral_type", "transport_required")
    search_fields = ("referral_number", "patient__full_name", "patient__mrn", "reason")
    readonly_fields = (
        "referral_number",
        "status",
        "referred_at",
        "response_deadline",
        "accepted_at",
        "rejected_at",
        "in_transit_at",
        "arrived_at",
        "completed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    )
    ordering = ("-referred_at",)
