# rm_core/beds/api/views.py
from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from rm_core.beds.api.serializers import (
    BedReservationSerializer,
    BedSerializer,
    MaintenanceNotesSerializer,
    OccupancySerializer,
    ReasonSerializer,
    ReserveBedSerializer,
)
from rm_core.beds.models import Bed, BedReservation, BedStatus
from rm_core.beds.permissions import BedPermission, BedReservationPermission
from rm_core.beds.selectors import available_beds, beds_for_scope, occupancy_summary, reservations_for_scope
from rm_core.beds.services import BedService
from rm_core.common.api.exceptions import unwrap
from rm_core.common.api.pagination import paginate
from rm_core.common.permissions import get_request_caller
from rm_core.common.results import Result, invalid_transition
from rm_core.common.scope import require_scope
from rm_core.common.views import UUID_LOOKUP, ScopedViewSet


class BedViewSet(ScopedViewSet):
    """
    Bed registry (CRUD) plus the reservation/occupancy actions.
    """
    queryset = Bed.objects.all()
    serializer_class = BedSerializer
    permission_classes = [BedPermission]
    audit_entity_type = "BED"
    filterset_fields = ["ward", "bed_type", "status", "is_active"]

    def get_queryset(self):
        if not getattr(self.request, "tenant_id", None):
            return Bed.objects.none()
        return beds_for_scope(tenant_id=self.request.tenant_id, facility_id=self.request.facility_id)

    def check_destroy(self, instance) -> Result:
        if instance.status == BedStatus.OCCUPIED:
            return invalid_transition("bed", instance.status, "decommission")
        if instance.is_reserved:
            return invalid_transition("bed", "reserved", "decommission")
        return Result.success(instance)

    @extend_schema(
        parameters=[
            OpenApiParameter("ward", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("bed_type", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: BedSerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="available")
    def available(self, request):
        scope = require_scope(request)
        qs = available_beds(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            ward=request.query_params.get("ward") or None,
            bed_type=request.query_params.get("bed_type") or None,
        )
        return paginate(request, qs, BedSerializer)

    @extend_schema(responses={200: OccupancySerializer})
    @action(detail=False, methods=["get"], url_path="occupancy")
    def occupancy(self, request):
        scope = require_scope(request)
        return Response(occupancy_summary(tenant_id=scope.tenant_id, facility_id=scope.facility_id))

    @extend_schema(request=ReserveBedSerializer, responses={201: BedReservationSerializer})
    @action(detail=True, methods=["post"], url_path="reserve")
    def reserve(self, request, pk=None):
        s = ReserveBedSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        reservation = unwrap(
            BedService.reserve(
                caller=get_request_caller(request),
                bed_id=pk,
                patient_id=s.validated_data["patient_id"],
                reserved_until=s.validated_data.get("reserved_until"),
                priority=s.validated_data["priority"],
                notes=s.validated_data["notes"],
            )
        )
        return Response(BedReservationSerializer(reservation).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=None, responses={200: BedSerializer})
    @action(detail=True, methods=["post"], url_path="release")
    def release(self, request, pk=None):
        bed = unwrap(BedService.release_bed(caller=get_request_caller(request), bed_id=pk))
        return Response(BedSerializer(bed).data, status=status.HTTP_200_OK)

    @extend_schema(request=MaintenanceNotesSerializer, responses={200: BedSerializer})
    @action(detail=True, methods=["post"], url_path="maintenance")
    def maintenance(self, request, pk=None):
        s = MaintenanceNotesSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        bed = unwrap(BedService.set_maintenance(caller=get_request_caller(request), bed_id=pk, notes=s.validated_data["notes"]))
        return Response(BedSerializer(bed).data, status=status.HTTP_200_OK)

    @extend_schema(request=None, responses={200: BedSerializer})
    @action(detail=True, methods=["post"], url_path="clear-maintenance")
    def clear_maintenance(self, request, pk=None):
        bed = unwrap(BedService.clear_maintenance(caller=get_request_caller(request), bed_id=pk))
        return Response(BedSerializer(bed).data, status=status.HTTP_200_OK)


class BedReservationViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = BedReservation.objects.none()
    lookup_value_regex = UUID_LOOKUP
    serializer_class = BedReservationSerializer
    permission_classes = [BedReservationPermission]

    def get_queryset(self):
        if not getattr(self.request, "tenant_id", None):
            return BedReservation.objects.none()
        return reservations_for_scope(
            tenant_id=self.request.tenant_id,
            facility_id=self.request.facility_id,
            status=self.request.query_params.get("status") or None,
            referral_id=self.request.query_params.get("referral_id") or None,
        )

    @extend_schema(request=None, responses={200: BedReservationSerializer})
    @action(detail=True, methods=["post"], url_path="confirm")
    def confirm(self, request, pk=None):
        res = unwrap(BedService.confirm_reservation(caller=get_request_caller(request), reservation_id=pk))
        return Response(BedReservationSerializer(res).data, status=status.HTTP_200_OK)

    @extend_schema(request=ReasonSerializer, responses={200: BedReservationSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        s = ReasonSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        res = unwrap(
            BedService.cancel_reservation(
                caller=get_request_caller(request),
                reservation_id=pk,
                reason=s.validated_data["reason"],
            )
        )
        return Response(BedReservationSerializer(res).data, status=status.HTTP_200_OK)
