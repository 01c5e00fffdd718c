from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from rm_core.alerts.api.serializers import AlertSerializer, MarkAllReadResponseSerializer, NotificationSerializer
from rm_core.alerts.models import Alert, Notification
from rm_core.alerts.permissions import AlertPermission, NotificationPermission
from rm_core.alerts.selectors import alerts_qs, notifications_qs
from rm_core.alerts.services import AlertContext, AlertService, NotificationService


class ScopedContextMixin:
    def ctx(self) -> AlertContext:
        return AlertContext(
            tenant_id=self.request.tenant_id,
            facility_id=self.request.facility_id,
            actor_user_id=getattr(self.request.user, "id", None),
        )


class AlertViewSet(ScopedContextMixin, mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = AlertSerializer
    permission_classes = [AlertPermission]
    queryset = Alert.objects.none()

    def get_queryset(self):
        c = self.ctx()
        qs = alerts_qs(tenant_id=c.tenant_id, facility_id=c.facility_id)
        status_q = self.request.query_params.get("status")
        severity_q = self.request.query_params.get("severity")
        entity_id = self.request.query_params.get("entity_id")
        if status_q:
            qs = qs.filter(status=status_q)
        if severity_q:
            qs = qs.filter(severity=severity_q)
        if entity_id:
            qs = qs.filter(entity_id=entity_id)
        return qs.order_by("-created_at")

    @extend_schema(request=None, responses={200: AlertSerializer})
    @action(methods=["POST"], detail=True, url_path="ack")
    def ack(self, request, pk=None):
        try:
            alert = AlertService.ack_alert(ctx=self.ctx(), alert_id=pk)
        except (Alert.DoesNotExist, ValueError):
            raise NotFound("Alert not found.")
        return Response(AlertSerializer(alert).data, status=status.HTTP_200_OK)


class NotificationViewSet(ScopedContextMixin, mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = NotificationSerializer
    permission_classes = [NotificationPermission]
    queryset = Notification.objects.none()

    def get_queryset(self):
        c = self.ctx()
        qs = notifications_qs(tenant_id=c.tenant_id, facility_id=c.facility_id, user_id=c.actor_user_id)
        is_read = self.request.query_params.get("is_read")
        if is_read in ("true", "false"):
            qs = qs.filter(is_read=(is_read == "true"))
        return qs.order_by("-created_at")

    @extend_schema(request=None, responses={200: NotificationSerializer})
    @action(methods=["POST"], detail=True, url_path="mark-read")
    def mark_read(self, request, pk=None):
        notif = self.get_object()
        notif.mark_read()
        notif.save(update_fields=["is_read", "read_at", "updated_at"])
        return Response(NotificationSerializer(notif).data, status=status.HTTP_200_OK)

    @extend_schema(request=None, responses={200: MarkAllReadResponseSerializer})
    @action(methods=["POST"], detail=False, url_path="mark-all-read")
    def mark_all_read(self, request):
        c = self.ctx()
        updated = NotificationService.mark_all_read(
            tenant_id=c.tenant_id, facility_id=c.facility_id, user_id=c.actor_user_id
        )
        return Response({"updated": updated}, status=status.HTTP_200_OK)
