from rest_framework import serializers

from rm_core.alerts.models import Alert, Notification


class AlertSerializer(serializers.ModelSerializer):
    class Meta:
        model = Alert
        fields = [
            "id",
            "code",
            "title",
            "message",
            "severity",
            "status",
            "entity_type",
            "entity_id",
            "patient_id",
            "acked_by_user_id",
            "acked_at",
            "created_at",
            "updated_at",
            "meta",
        ]
        read_only_fields = fields


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = [
            "id",
            "event_code",
            "title",
            "body",
            "channel",
            "status",
            "is_read",
            "read_at",
            "alert_id",
            "entity_type",
            "entity_id",
            "created_at",
            "meta",
        ]
        read_only_fields = fields


class MarkAllReadResponseSerializer(serializers.Serializer):
    updated = serializers.IntegerField()
