from django.contrib import admin

from rm_core.tenants.models import Tenant


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "region", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("name", "code", "region")
    ordering = ("name",)
    readonly_fields = ("id", "created_at", "updated_at")
