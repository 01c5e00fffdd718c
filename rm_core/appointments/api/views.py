# rm_core/appointments/api/views.py
from __future__ import annotations

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from rm_core.appointments.api.serializers import (
    AppointmentCancelSerializer,
    AppointmentCompleteSerializer,
    AppointmentCreateSerializer,
    AppointmentRescheduleSerializer,
    AppointmentSerializer,
    AvailabilitySerializer,
    SlotsSerializer,
)
from rm_core.appointments.models import Appointment
from rm_core.appointments.permissions import AppointmentPermission
from rm_core.appointments.selectors import appointments_for_scope
from rm_core.appointments.services import AppointmentService, available_slots, check_availability
from rm_core.common.api.exceptions import unwrap
from rm_core.common.api.pagination import paginate
from rm_core.common.permissions import get_request_caller
from rm_core.common.scope import _parse_uuid, require_scope
from rm_core.common.views import UUID_LOOKUP


def _int_param(request, name: str, default=None) -> int:
    raw = request.query_params.get(name)
    if raw in (None, ""):
        if default is None:
            raise ValidationError({name: "This parameter is required."})
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError({name: "Expected an integer."})


class AppointmentViewSet(viewsets.ViewSet):
    permission_classes = [AppointmentPermission]
    lookup_value_regex = UUID_LOOKUP

    serializer_class = AppointmentSerializer
    queryset = Appointment.objects.none()

    def _respond(self, result, *, status_code=status.HTTP_200_OK) -> Response:
        return Response(AppointmentSerializer(unwrap(result)).data, status=status_code)

    @extend_schema(
        parameters=[
            OpenApiParameter("doctor_id", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("patient_id", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("status", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("date", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: AppointmentSerializer(many=True)},
    )
    def list(self, request):
        scope = require_scope(request)
        qp = request.query_params
        day = parse_date(qp["date"]) if qp.get("date") else None
        if qp.get("date") and day is None:
            raise ValidationError({"date": "Invalid date (YYYY-MM-DD expected)."})
        qs = appointments_for_scope(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            doctor_id=_int_param(request, "doctor_id", 0) or None,
            patient_id=_parse_uuid(qp["patient_id"]) if qp.get("patient_id") else None,
            status=qp.get("status") or None,
            day=day,
        )
        return paginate(request, qs, AppointmentSerializer)

    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        appt = appointments_for_scope(tenant_id=scope.tenant_id, facility_id=scope.facility_id).filter(id=pk).first()
        if appt is None:
            raise NotFound("Appointment not found.")
        return Response(AppointmentSerializer(appt).data, status=status.HTTP_200_OK)

    @extend_schema(
        parameters=[
            OpenApiParameter("doctor_id", OpenApiTypes.INT, OpenApiParameter.QUERY, required=True),
            OpenApiParameter("scheduled_at", OpenApiTypes.DATETIME, OpenApiParameter.QUERY, required=True),
            OpenApiParameter("duration_minutes", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: AvailabilitySerializer},
    )
    @action(detail=False, methods=["get"], url_path="availability")
    def availability(self, request):
        require_scope(request)
        doctor_id = _int_param(request, "doctor_id")
        duration = _int_param(request, "duration_minutes", 30)
        start = parse_datetime(request.query_params.get("scheduled_at") or "")
        if start is None:
            raise ValidationError({"scheduled_at": "Invalid datetime."})
        if timezone.is_naive(start):
            start = timezone.make_aware(start)
        return Response(
            {
                "doctor_id": doctor_id,
                "scheduled_at": start,
                "duration_minutes": duration,
                "available": check_availability(doctor_id=doctor_id, start=start, duration_minutes=duration),
            }
        )

    @extend_schema(
        parameters=[
            OpenApiParameter("doctor_id", OpenApiTypes.INT, OpenApiParameter.QUERY, required=True),
            OpenApiParameter("date", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=True),
            OpenApiParameter("slot_minutes", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: SlotsSerializer},
    )
    @action(detail=False, methods=["get"], url_path="slots")
    def slots(self, request):
        require_scope(request)
        doctor_id = _int_param(request, "doctor_id")
        slot_minutes = _int_param(request, "slot_minutes", 30)
        if not 5 <= slot_minutes <= 480:
            raise ValidationError({"slot_minutes": "Must be between 5 and 480."})
        day = parse_date(request.query_params.get("date") or "")
        if day is None:
            raise ValidationError({"date": "Invalid date (YYYY-MM-DD expected)."})
        data = {
            "doctor_id": doctor_id,
            "date": day,
            "slot_minutes": slot_minutes,
            "slots": available_slots(doctor_id=doctor_id, day=day, slot_minutes=slot_minutes),
        }
        return Response(SlotsSerializer(data).data)

    @extend_schema(request=AppointmentCreateSerializer, responses={201: AppointmentSerializer})
    def create(self, request):
        require_scope(request)
        s = AppointmentCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            AppointmentService.create(caller=get_request_caller(request), **s.validated_data),
            status_code=status.HTTP_201_CREATED,
        )

    @extend_schema(request=None, responses={200: AppointmentSerializer})
    @action(detail=True, methods=["post"], url_path="confirm")
    def confirm(self, request, pk=None):
        return self._respond(AppointmentService.confirm(caller=get_request_caller(request), appointment_id=pk))

    @extend_schema(request=None, responses={200: AppointmentSerializer})
    @action(detail=True, methods=["post"], url_path="check-in")
    def check_in(self, request, pk=None):
        return self._respond(AppointmentService.check_in(caller=get_request_caller(request), appointment_id=pk))

    @extend_schema(request=None, responses={200: AppointmentSerializer})
    @action(detail=True, methods=["post"], url_path="start")
    def start(self, request, pk=None):
        return self._respond(AppointmentService.start(caller=get_request_caller(request), appointment_id=pk))

    @extend_schema(request=AppointmentCompleteSerializer, responses={200: AppointmentSerializer})
    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        s = AppointmentCompleteSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            AppointmentService.complete(caller=get_request_caller(request), appointment_id=pk, **s.validated_data)
        )

    @extend_schema(request=AppointmentCancelSerializer, responses={200: AppointmentSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        s = AppointmentCancelSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            AppointmentService.cancel(caller=get_request_caller(request), appointment_id=pk, reason=s.validated_data["reason"])
        )

    @extend_schema(request=AppointmentRescheduleSerializer, responses={200: AppointmentSerializer})
    @action(detail=True, methods=["post"], url_path="reschedule")
    def reschedule(self, request, pk=None):
        s = AppointmentRescheduleSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            AppointmentService.reschedule(caller=get_request_caller(request), appointment_id=pk, **s.validated_data)
        )
