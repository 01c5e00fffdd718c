# rm_core/facilities/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from rm_core.common.scope import require_scope
from rm_core.facilities.api.permissions import FacilityPermission, SpecialtyPermission
from rm_core.facilities.api.serializers import (
    FacilityCreateSerializer,
    FacilitySerializer,
    FacilityUpdateSerializer,
    SpecialtySerializer,
    SuitableFacilitySerializer,
)
from rm_core.facilities.models import Facility
from rm_core.facilities.selectors import (
    facilities_for_tenant,
    facility_by_id,
    specialties_for_tenant,
    suitable_facilities,
)
from rm_core.facilities.services import FacilityService, FacilityUpdate, SpecialtyService


def _truthy(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


class FacilityViewSet(viewsets.ViewSet):
    permission_classes = [FacilityPermission]

    def list(self, request):
        scope = require_scope(request)
        qs = facilities_for_tenant(
            tenant_id=scope.tenant_id,
            active_only=_truthy(request.query_params.get("active_only"), True),
        )
        return Response(FacilitySerializer(qs, many=True).data, status=status.HTTP_200_OK)

    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        try:
            obj = facility_by_id(tenant_id=scope.tenant_id, facility_id=UUID(str(pk)))
        except (ValueError, Facility.DoesNotExist):
            raise NotFound("Facility not found in this tenant.")
        return Response(FacilitySerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(request=FacilityCreateSerializer, responses={201: FacilitySerializer})
    def create(self, request):
        scope = require_scope(request)

        s = FacilityCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        d = s.validated_data

        obj = FacilityService.create(tenant_id=scope.tenant_id, **d)
        return Response(FacilitySerializer(obj).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=FacilityUpdateSerializer, responses={200: FacilitySerializer})
    def partial_update(self, request, pk=None):
        scope = require_scope(request)

        s = FacilityUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        try:
            obj = FacilityService.update(
                tenant_id=scope.tenant_id,
                facility_id=UUID(str(pk)),
                patch=FacilityUpdate(**s.validated_data),
            )
        except (ValueError, Facility.DoesNotExist):
            raise NotFound("Facility not found in this tenant.")
        return Response(FacilitySerializer(obj).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="deactivate")
    def deactivate(self, request, pk=None):
        scope = require_scope(request)
        try:
            obj = FacilityService.deactivate(
                tenant_id=scope.tenant_id,
                facility_id=UUID(str(pk)),
                reason=(request.data.get("reason") or "").strip(),
            )
        except (ValueError, Facility.DoesNotExist):
            raise NotFound("Facility not found in this tenant.")
        return Response(FacilitySerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(
        parameters=[
            OpenApiParameter("specialty_id", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("bed_type", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("emergency", OpenApiTypes.BOOL, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("lat", OpenApiTypes.NUMBER, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("lng", OpenApiTypes.NUMBER, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: SuitableFacilitySerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="suitable")
    def suitable(self, request):
        scope = require_scope(request)
        qp = request.query_params
        try:
            lat = float(qp["lat"]) if qp.get("lat") else None
            lng = float(qp["lng"]) if qp.get("lng") else None
            specialty_id = UUID(qp["specialty_id"]) if qp.get("specialty_id") else None
        except ValueError:
            raise ValidationError({"detail": "lat/lng must be numbers and specialty_id a UUID."})

        items = suitable_facilities(
            tenant_id=scope.tenant_id,
            specialty_id=specialty_id,
            bed_type=qp.get("bed_type") or None,
            emergency=_truthy(qp.get("emergency"), False),
            exclude_facility_id=scope.facility_id,
            lat=lat,
            lng=lng,
        )
        return Response(SuitableFacilitySerializer(items, many=True).data, status=status.HTTP_200_OK)


class SpecialtyViewSet(viewsets.ViewSet):
    permission_classes = [SpecialtyPermission]

    def list(self, request):
        scope = require_scope(request)
        qs = specialties_for_tenant(tenant_id=scope.tenant_id)
        return Response(SpecialtySerializer(qs, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(request=SpecialtySerializer, responses={201: SpecialtySerializer})
    def create(self, request):
        scope = require_scope(request)
        s = SpecialtySerializer(data=request.data)
        s.is_valid(raise_exception=True)
        obj = SpecialtyService.create(tenant_id=scope.tenant_id, **s.validated_data)
        return Response(SpecialtySerializer(obj).data, status=status.HTTP_201_CREATED)
