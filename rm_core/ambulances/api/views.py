# rm_core/ambulances/api/views.py
from __future__ import annotations

from django.conf import settings
from django.utils.dateparse import parse_date
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from rm_core.ambulances.api.serializers import (
    AmbulanceLocationSerializer,
    AmbulanceSerializer,
    AmbulanceStatusSerializer,
    DispatchAnalyticsSerializer,
    DispatchCancelSerializer,
    DispatchCompleteSerializer,
    DispatchCreateSerializer,
    DispatchDeliverSerializer,
    DispatchSerializer,
    DispatchStatusChangeSerializer,
    DispatchStatusUpdateSerializer,
    DispatchStepSerializer,
    LocationUpdateSerializer,
    NearbyAmbulanceSerializer,
    RouteProgressSerializer,
)
from rm_core.ambulances.models import Ambulance, AmbulanceDispatch
from rm_core.ambulances.permissions import AmbulancePermission, DispatchPermission
from rm_core.ambulances.selectors import (
    ambulances_for_scope,
    dispatch_analytics,
    dispatch_timeline,
    dispatches_for_scope,
    nearby_available,
    recent_locations,
)
from rm_core.ambulances.services import AmbulanceService, DispatchService
from rm_core.ambulances.tracking import default_store
from rm_core.common.api.exceptions import unwrap
from rm_core.common.api.pagination import paginate
from rm_core.common.idempotency import replay_or_run
from rm_core.common.permissions import get_request_caller
from rm_core.common.scope import _parse_uuid, require_scope
from rm_core.common.views import UUID_LOOKUP, ScopedViewSet


def _float_param(request, name: str, default=None):
    raw = request.query_params.get(name)
    if raw in (None, ""):
        if default is None:
            raise ValidationError({name: "This parameter is required."})
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError({name: "Expected a number."})


def _date_param(request, name: str):
    raw = request.query_params.get(name) or None
    if raw is None:
        return None
    value = parse_date(raw)
    if value is None:
        raise ValidationError({name: "Invalid date (YYYY-MM-DD expected)."})
    return value


class AmbulanceViewSet(ScopedViewSet):
    """
    Fleet registry plus location pings. Status is read-only here: it follows
    dispatches, or changes through the `status` action when idle.
    """
    queryset = Ambulance.objects.all()
    serializer_class = AmbulanceSerializer
    permission_classes = [AmbulancePermission]
    audit_entity_type = "AMBULANCE"
    filterset_fields = ["status", "ambulance_type", "is_active"]

    def get_queryset(self):
        if not getattr(self.request, "tenant_id", None):
            return Ambulance.objects.none()
        return ambulances_for_scope(tenant_id=self.request.tenant_id, facility_id=self.request.facility_id)

    def check_destroy(self, instance):
        return AmbulanceService.check_decommission(instance)

    @extend_schema(
        parameters=[
            OpenApiParameter("lat", OpenApiTypes.NUMBER, OpenApiParameter.QUERY, required=True),
            OpenApiParameter("lng", OpenApiTypes.NUMBER, OpenApiParameter.QUERY, required=True),
            OpenApiParameter("radius_km", OpenApiTypes.NUMBER, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: NearbyAmbulanceSerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="nearby")
    def nearby(self, request):
        scope = require_scope(request)
        radius = _float_param(request, "radius_km", float(getattr(settings, "DISPATCH_NEARBY_RADIUS_KM", 20)))
        if radius <= 0:
            raise ValidationError({"radius_km": "Must be greater than zero."})
        found = nearby_available(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            lat=_float_param(request, "lat"),
            lng=_float_param(request, "lng"),
            radius_km=radius,
        )
        data = [{"ambulance": amb, "distance_km": d} for amb, d in found]
        return Response(NearbyAmbulanceSerializer(data, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(request=LocationUpdateSerializer, responses={201: AmbulanceLocationSerializer})
    @action(detail=True, methods=["post"], url_path="location")
    def location(self, request, pk=None):
        s = LocationUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        ping = unwrap(AmbulanceService.update_location(caller=get_request_caller(request), ambulance_id=pk, **s.validated_data))
        return Response(AmbulanceLocationSerializer(ping).data, status=status.HTTP_201_CREATED)

    @extend_schema(responses={200: AmbulanceLocationSerializer(many=True)})
    @action(detail=True, methods=["get"], url_path="locations")
    def locations(self, request, pk=None):
        ambulance = self.get_object()
        return Response(AmbulanceLocationSerializer(recent_locations(ambulance), many=True).data)

    @extend_schema(request=AmbulanceStatusSerializer, responses={200: AmbulanceSerializer})
    @action(detail=True, methods=["post"], url_path="status")
    def set_status(self, request, pk=None):
        s = AmbulanceStatusSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        ambulance = unwrap(AmbulanceService.set_status(caller=get_request_caller(request), ambulance_id=pk, **s.validated_data))
        return Response(AmbulanceSerializer(ambulance).data, status=status.HTTP_200_OK)


class DispatchViewSet(viewsets.ViewSet):
    """
    Dispatch lifecycle: one POST action per step, plus `status` for clients
    that send the target status instead.
    """
    permission_classes = [DispatchPermission]
    lookup_value_regex = UUID_LOOKUP

    serializer_class = DispatchSerializer
    queryset = AmbulanceDispatch.objects.none()

    def _respond(self, result, *, status_code=status.HTTP_200_OK) -> Response:
        dispatch = unwrap(result)
        headers = {"Warning": "; ".join(result.warnings)} if result.warnings else None
        return Response(DispatchSerializer(dispatch).data, status=status_code, headers=headers)

    def _get(self, request, pk) -> AmbulanceDispatch:
        scope = require_scope(request)
        dispatch = dispatches_for_scope(tenant_id=scope.tenant_id, facility_id=scope.facility_id).filter(id=pk).first()
        if dispatch is None:
            raise NotFound("Dispatch not found.")
        return dispatch

    def _step(self, request, pk, method):
        s = DispatchStepSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(method(caller=get_request_caller(request), dispatch_id=pk, **s.validated_data))

    # ----------------------------
    # Reads
    # ----------------------------
    @extend_schema(
        parameters=[
            OpenApiParameter("status", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("ambulance_id", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("referral_id", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("active", OpenApiTypes.BOOL, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: DispatchSerializer(many=True)},
    )
    def list(self, request):
        scope = require_scope(request)
        qp = request.query_params
        qs = dispatches_for_scope(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            status=qp.get("status") or None,
            ambulance_id=_parse_uuid(qp["ambulance_id"]) if qp.get("ambulance_id") else None,
            referral_id=_parse_uuid(qp["referral_id"]) if qp.get("referral_id") else None,
            active_only=(qp.get("active") or "").lower() in {"1", "true", "yes"},
        )
        return paginate(request, qs, DispatchSerializer)

    def retrieve(self, request, pk=None):
        return Response(DispatchSerializer(self._get(request, pk)).data, status=status.HTTP_200_OK)

    @extend_schema(responses={200: DispatchStatusUpdateSerializer(many=True)})
    @action(detail=True, methods=["get"], url_path="timeline")
    def timeline(self, request, pk=None):
        updates = dispatch_timeline(self._get(request, pk))
        return Response(DispatchStatusUpdateSerializer(updates, many=True).data)

    @extend_schema(responses={200: RouteProgressSerializer})
    @action(detail=True, methods=["get"], url_path="progress")
    def progress(self, request, pk=None):
        dispatch = self._get(request, pk)
        store = default_store()
        data = store.get(dispatch.id)
        if data is None and not dispatch.is_terminal and dispatch.ambulance.has_location:
            data = store.refresh(
                dispatch,
                latitude=dispatch.ambulance.current_latitude,
                longitude=dispatch.ambulance.current_longitude,
            )
        if data is None:
            raise NotFound("No route progress for this dispatch.")
        return Response(RouteProgressSerializer(data).data)

    @extend_schema(
        parameters=[
            OpenApiParameter("date_from", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("date_to", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: DispatchAnalyticsSerializer},
    )
    @action(detail=False, methods=["get"], url_path="analytics")
    def analytics(self, request):
        scope = require_scope(request)
        data = dispatch_analytics(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            date_from=_date_param(request, "date_from"),
            date_to=_date_param(request, "date_to"),
        )
        return Response(data)

    # ----------------------------
    # Writes
    # ----------------------------
    @extend_schema(request=DispatchCreateSerializer, responses={201: DispatchSerializer})
    def create(self, request):
        require_scope(request)
        s = DispatchCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        def run() -> Response:
            return self._respond(
                DispatchService.create_dispatch(caller=get_request_caller(request), **s.validated_data),
                status_code=status.HTTP_201_CREATED,
            )

        return replay_or_run(request, run)

    @extend_schema(request=DispatchStepSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="acknowledge")
    def acknowledge(self, request, pk=None):
        return self._step(request, pk, DispatchService.acknowledge)

    @extend_schema(request=DispatchStepSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="en-route-pickup")
    def en_route_pickup(self, request, pk=None):
        return self._step(request, pk, DispatchService.start_en_route_to_pickup)

    @extend_schema(request=DispatchStepSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="at-pickup")
    def at_pickup(self, request, pk=None):
        return self._step(request, pk, DispatchService.arrive_at_pickup)

    @extend_schema(request=DispatchStepSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="patient-loaded")
    def patient_loaded(self, request, pk=None):
        return self._step(request, pk, DispatchService.load_patient)

    @extend_schema(request=DispatchStepSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="en-route-destination")
    def en_route_destination(self, request, pk=None):
        return self._step(request, pk, DispatchService.start_en_route_to_destination)

    @extend_schema(request=DispatchStepSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="at-destination")
    def at_destination(self, request, pk=None):
        return self._step(request, pk, DispatchService.arrive_at_destination)

    @extend_schema(request=DispatchDeliverSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="deliver")
    def deliver(self, request, pk=None):
        s = DispatchDeliverSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            DispatchService.deliver_patient(caller=get_request_caller(request), dispatch_id=pk, **s.validated_data)
        )

    @extend_schema(request=DispatchCompleteSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        s = DispatchCompleteSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            DispatchService.complete(caller=get_request_caller(request), dispatch_id=pk, **s.validated_data)
        )

    @extend_schema(request=DispatchCancelSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        s = DispatchCancelSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            DispatchService.cancel(caller=get_request_caller(request), dispatch_id=pk, reason=s.validated_data["reason"])
        )

    @extend_schema(request=DispatchStatusChangeSerializer, responses={200: DispatchSerializer})
    @action(detail=True, methods=["post"], url_path="status")
    def update_status(self, request, pk=None):
        s = DispatchStatusChangeSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            DispatchService.update_status(
                caller=get_request_caller(request),
                dispatch_id=pk,
                status=s.validated_data["status"],
                notes=s.validated_data["notes"],
            )
        )
