from django.contrib import admin

from rm_core.appointments.models import Appointment


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ("appointment_number", "patient", "doctor", "scheduled_at", "duration_minutes", "status")
    list_filter = ("status", "appointment_type", "priority")
    search_fields = ("appointment_number", "patient__full_name", "patient__mrn")
    readonly_fields = ("appointment_number", "ends_at", "status", "created_at", "updated_at")
    date_hierarchy = "scheduled_at"
