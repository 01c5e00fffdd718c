from django.contrib import admin

from rm_core.equipment.models import Equipment, MaintenanceRecord


@admin.register(Equipment)
class EquipmentAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "category", "status", "condition", "next_maintenance_due", "is_active")
    list_filter = ("status", "condition", "category", "is_active")
    search_fields = ("name", "code", "serial_number")
    readonly_fields = ("status", "last_maintenance", "created_at", "updated_at")


@admin.register(MaintenanceRecord)
class MaintenanceRecordAdmin(admin.ModelAdmin):
    list_display = ("equipment", "maintenance_type", "status", "priority", "scheduled_date")
    list_filter = ("status", "maintenance_type", "priority")
    readonly_fields = ("status", "started_at", "completed_at", "cancelled_at", "created_at", "updated_at")
