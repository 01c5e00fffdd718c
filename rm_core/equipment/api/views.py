# rm_core/equipment/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from rm_core.common.api.exceptions import unwrap
from rm_core.common.api.pagination import paginate
from rm_core.common.permissions import get_request_caller
from rm_core.common.scope import require_scope
from rm_core.common.views import UUID_LOOKUP, ScopedViewSet
from rm_core.equipment.api.serializers import (
    CancelMaintenanceSerializer,
    CompleteMaintenanceSerializer,
    EquipmentSerializer,
    MaintenanceRecordSerializer,
    ScheduleMaintenanceSerializer,
)
from rm_core.equipment.models import Equipment, MaintenanceRecord
from rm_core.equipment.permissions import EquipmentPermission, MaintenancePermission
from rm_core.equipment.selectors import equipment_for_scope, maintenance_for_scope, maintenance_history, overdue_equipment
from rm_core.equipment.services import EquipmentService


class EquipmentViewSet(ScopedViewSet):
    queryset = Equipment.objects.all()
    serializer_class = EquipmentSerializer
    permission_classes = [EquipmentPermission]
    audit_entity_type = "EQUIPMENT"
    filterset_fields = ["status", "category", "condition", "is_active"]

    def get_queryset(self):
        if not getattr(self.request, "tenant_id", None):
            return Equipment.objects.none()
        return equipment_for_scope(tenant_id=self.request.tenant_id, facility_id=self.request.facility_id)

    def check_destroy(self, instance):
        return EquipmentService.check_decommission(instance)

    @extend_schema(responses={200: EquipmentSerializer(many=True)})
    @action(detail=False, methods=["get"], url_path="overdue")
    def overdue(self, request):
        scope = require_scope(request)
        return paginate(request, overdue_equipment(tenant_id=scope.tenant_id, facility_id=scope.facility_id), EquipmentSerializer)

    @extend_schema(responses={200: MaintenanceRecordSerializer(many=True)})
    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, pk=None):
        equipment = self.get_object()
        return Response(MaintenanceRecordSerializer(maintenance_history(equipment), many=True).data)

    @extend_schema(request=None, responses={200: EquipmentSerializer})
    @action(detail=True, methods=["post"], url_path="use")
    def use(self, request, pk=None):
        eq = unwrap(EquipmentService.mark_in_use(caller=get_request_caller(request), equipment_id=pk))
        return Response(EquipmentSerializer(eq).data, status=status.HTTP_200_OK)

    @extend_schema(request=None, responses={200: EquipmentSerializer})
    @action(detail=True, methods=["post"], url_path="release")
    def release(self, request, pk=None):
        eq = unwrap(EquipmentService.release(caller=get_request_caller(request), equipment_id=pk))
        return Response(EquipmentSerializer(eq).data, status=status.HTTP_200_OK)

    @extend_schema(request=ScheduleMaintenanceSerializer, responses={201: MaintenanceRecordSerializer})
    @action(detail=True, methods=["post"], url_path="schedule-maintenance")
    def schedule_maintenance(self, request, pk=None):
        s = ScheduleMaintenanceSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        record = unwrap(
            EquipmentService.schedule_maintenance(caller=get_request_caller(request), equipment_id=pk, **s.validated_data)
        )
        return Response(MaintenanceRecordSerializer(record).data, status=status.HTTP_201_CREATED)


class MaintenanceViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = MaintenanceRecord.objects.none()
    lookup_value_regex = UUID_LOOKUP
    serializer_class = MaintenanceRecordSerializer
    permission_classes = [MaintenancePermission]

    def get_queryset(self):
        if not getattr(self.request, "tenant_id", None):
            return MaintenanceRecord.objects.none()
        return maintenance_for_scope(
            tenant_id=self.request.tenant_id,
            facility_id=self.request.facility_id,
            status=self.request.query_params.get("status") or None,
            equipment_id=self.request.query_params.get("equipment_id") or None,
        )

    @extend_schema(request=None, responses={200: MaintenanceRecordSerializer})
    @action(detail=True, methods=["post"], url_path="start")
    def start(self, request, pk=None):
        record = unwrap(EquipmentService.start_maintenance(caller=get_request_caller(request), record_id=pk))
        return Response(MaintenanceRecordSerializer(record).data, status=status.HTTP_200_OK)

    @extend_schema(request=CompleteMaintenanceSerializer, responses={200: MaintenanceRecordSerializer})
    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        s = CompleteMaintenanceSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        record = unwrap(
            EquipmentService.complete_maintenance(caller=get_request_caller(request), record_id=pk, **s.validated_data)
        )
        return Response(MaintenanceRecordSerializer(record).data, status=status.HTTP_200_OK)

    @extend_schema(request=CancelMaintenanceSerializer, responses={200: MaintenanceRecordSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        s = CancelMaintenanceSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        record = unwrap(
            EquipmentService.cancel_maintenance(
                caller=get_request_caller(request),
                record_id=pk,
                reason=s.validated_data["reason"],
            )
        )
        return Response(MaintenanceRecordSerializer(record).data, status=status.HTTP_200_OK)
