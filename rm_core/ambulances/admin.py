from django.contrib import admin

from rm_core.ambulances.models import Ambulance, AmbulanceDispatch, DispatchStatusUpdate


@admin.register(Ambulance)
class AmbulanceAdmin(admin.ModelAdmin):
    list_display = ("vehicle_number", "call_sign", "ambulance_type", "status", "is_active", "last_location_at")
    list_filter = ("ambulance_type", "status", "is_active")
    search_fields = ("vehicle_number", "call_sign")
    readonly_fields = ("status", "current_latitude", "current_longitude", "last_location_at", "created_at", "updated_at")


class DispatchStatusUpdateInline(admin.TabularInline):
    model = DispatchStatusUpdate
    extra = 0
    can_delete = False
    readonly_fields = ("from_status", "to_status", "actor_user_id", "latitude", "longitude", "notes", "created_at")


@admin.register(AmbulanceDispatch)
class AmbulanceDispatchAdmin(admin.ModelAdmin):
    list_display = ("dispatch_number", "ambulance", "priority", "status", "dispatched_at")
    list_filter = ("status", "priority")
    search_fields = ("dispatch_number", "pickup_address", "destination_address")
    readonly_fields = [f.name for f in AmbulanceDispatch._meta.fields]
    inlines = [DispatchStatusUpdateInline]
    ordering = ("-dispatched_at",)
