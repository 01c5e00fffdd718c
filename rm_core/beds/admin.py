from django.contrib import admin

from rm_core.beds.models import Bed, BedReservation


@admin.register(Bed)
class BedAdmin(admin.ModelAdmin):
    list_display = ("bed_number", "ward", "room", "bed_type", "status", "is_active", "facility_id")
    list_filter = ("bed_type", "status", "is_active")
    search_fields = ("bed_number", "ward", "room")
    readonly_fields = ("status", "current_patient", "occupied_since", "created_at", "updated_at")


@admin.register(BedReservation)
class BedReservationAdmin(admin.ModelAdmin):
    list_display = ("bed", "patient", "status", "priority", "reserved_until", "created_at")
    list_filter = ("status", "priority")
    readonly_fields = [f.name for f in BedReservation._meta.fields]
    ordering = ("-created_at",)
