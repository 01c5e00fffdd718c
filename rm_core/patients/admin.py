# rm_core/patients/admin.py
from django.contrib import admin

from rm_core.patients.models import Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = (
        "full_name",
        "mrn",
        "gender",
        "date_of_birth",
        "phone",
        "facility_id",
        "created_at",
    )
    list_filter = ("gender",)
    search_fields = ("full_name", "mrn", "phone", "email", "national_id")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-created_at",)
