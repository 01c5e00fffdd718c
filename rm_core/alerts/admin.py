from django.contrib import admin

from rm_core.alerts.models import Alert, Notification


@admin.register(Alert)
class AlertAdmin(admin.ModelAdmin):
    list_display = ("title", "severity", "status", "entity_type", "facility_id", "created_at")
    list_filter = ("severity", "status", "code")
    search_fields = ("title", "code")
    ordering = ("-created_at",)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "event_code", "recipient", "channel", "status", "is_read", "created_at")
    list_filter = ("channel", "status", "is_read", "event_code")
    search_fields = ("title", "recipient__username")
    ordering = ("-created_at",)
