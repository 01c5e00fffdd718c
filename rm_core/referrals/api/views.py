# rm_core/referrals/api/views.py
from __future__ import annotations

from django.utils.dateparse import parse_date
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from rm_core.common.api.exceptions import unwrap
from rm_core.common.api.pagination import paginate
from rm_core.common.idempotency import replay_or_run
from rm_core.common.permissions import get_request_caller
from rm_core.common.scope import _parse_uuid, require_scope
from rm_core.common.views import UUID_LOOKUP
from rm_core.referrals.api.serializers import (
    ReferralAcceptSerializer,
    ReferralCancelSerializer,
    ReferralCompleteSerializer,
    ReferralCreateSerializer,
    ReferralPrioritySerializer,
    ReferralRejectSerializer,
    ReferralSerializer,
    ReferralStatsSerializer,
)
from rm_core.referrals.models import Referral
from rm_core.referrals.permissions import ReferralPermission
from rm_core.referrals.selectors import (
    calculate_priority,
    due_soon_referrals,
    get_visible_referral,
    list_referrals,
    overdue_referrals,
    referral_stats,
)
from rm_core.referrals.services import ReferralService


def _date_param(request, name: str):
    raw = request.query_params.get(name) or None
    if raw is None:
        return None
    value = parse_date(raw)
    if value is None:
        raise ValidationError({name: "Invalid date (YYYY-MM-DD expected)."})
    return value


class ReferralViewSet(viewsets.ViewSet):
    """
    Thin API layer over ReferralService: parse, call, unwrap.
    One POST action per transition.
    """
    permission_classes = [ReferralPermission]
    lookup_value_regex = UUID_LOOKUP

    serializer_class = ReferralSerializer
    queryset = Referral.objects.none()

    def _respond(self, result, *, status_code=status.HTTP_200_OK) -> Response:
        referral = unwrap(result)
        headers = {"Warning": "; ".join(result.warnings)} if result.warnings else None
        return Response(ReferralSerializer(referral).data, status=status_code, headers=headers)

    # ----------------------------
    # Reads
    # ----------------------------
    @extend_schema(
        parameters=[
            OpenApiParameter("status", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("urgency", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("direction", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False,
                             enum=["incoming", "outgoing"]),
            OpenApiParameter("patient_id", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("date_from", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("date_to", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("search", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: ReferralSerializer(many=True)},
    )
    def list(self, request):
        require_scope(request)
        qp = request.query_params
        direction = qp.get("direction") or None
        if direction not in (None, "incoming", "outgoing"):
            raise ValidationError({"direction": "Expected 'incoming' or 'outgoing'."})
        patient_raw = qp.get("patient_id") or None
        patient_id = _parse_uuid(patient_raw) if patient_raw else None
        if patient_raw and patient_id is None:
            raise ValidationError({"patient_id": "Invalid UUID."})

        qs = list_referrals(
            get_request_caller(request),
            status=qp.get("status") or None,
            urgency=qp.get("urgency") or None,
            direction=direction,
            patient_id=patient_id,
            date_from=_date_param(request, "date_from"),
            date_to=_date_param(request, "date_to"),
            search=qp.get("search") or None,
        )
        return paginate(request, qs, ReferralSerializer)

    def retrieve(self, request, pk=None):
        require_scope(request)
        referral = get_visible_referral(get_request_caller(request), pk)
        if referral is None:
            raise NotFound("Referral not found.")
        return Response(ReferralSerializer(referral).data, status=status.HTTP_200_OK)

    @extend_schema(responses={200: ReferralSerializer(many=True)})
    @action(detail=False, methods=["get"], url_path="overdue")
    def overdue(self, request):
        require_scope(request)
        return paginate(request, overdue_referrals(get_request_caller(request)), ReferralSerializer)

    @extend_schema(
        parameters=[OpenApiParameter("hours", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False)],
        responses={200: ReferralSerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="due-soon")
    def due_soon(self, request):
        require_scope(request)
        try:
            hours = int(request.query_params.get("hours") or 2)
        except ValueError:
            raise ValidationError({"hours": "Expected an integer."})
        hours = max(1, min(hours, 72))
        return paginate(request, due_soon_referrals(get_request_caller(request), hours=hours), ReferralSerializer)

    @extend_schema(
        parameters=[
            OpenApiParameter("date_from", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("date_to", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=False),
        ],
        responses={200: ReferralStatsSerializer},
    )
    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        require_scope(request)
        data = referral_stats(
            get_request_caller(request),
            date_from=_date_param(request, "date_from"),
            date_to=_date_param(request, "date_to"),
        )
        return Response(data, status=status.HTTP_200_OK)

    @extend_schema(responses={200: ReferralPrioritySerializer})
    @action(detail=True, methods=["get"], url_path="priority")
    def priority(self, request, pk=None):
        require_scope(request)
        referral = get_visible_referral(get_request_caller(request), pk)
        if referral is None:
            raise NotFound("Referral not found.")
        return Response({"referral_id": referral.id, "priority_score": calculate_priority(referral)})

    # ----------------------------
    # Writes
    # ----------------------------
    @extend_schema(request=ReferralCreateSerializer, responses={201: ReferralSerializer})
    def create(self, request):
        require_scope(request)
        s = ReferralCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        def run() -> Response:
            return self._respond(
                ReferralService.create(caller=get_request_caller(request), **s.validated_data),
                status_code=status.HTTP_201_CREATED,
            )

        return replay_or_run(request, run)

    @extend_schema(request=ReferralAcceptSerializer, responses={200: ReferralSerializer})
    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        require_scope(request)
        s = ReferralAcceptSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(ReferralService.accept(caller=get_request_caller(request), referral_id=pk, **s.validated_data))

    @extend_schema(request=ReferralRejectSerializer, responses={200: ReferralSerializer})
    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        require_scope(request)
        s = ReferralRejectSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            ReferralService.reject(caller=get_request_caller(request), referral_id=pk, reason=s.validated_data["reason"])
        )

    @extend_schema(request=None, responses={200: ReferralSerializer})
    @action(detail=True, methods=["post"], url_path="in-transit")
    def in_transit(self, request, pk=None):
        require_scope(request)
        return self._respond(ReferralService.mark_in_transit(caller=get_request_caller(request), referral_id=pk))

    @extend_schema(request=None, responses={200: ReferralSerializer})
    @action(detail=True, methods=["post"], url_path="arrived")
    def arrived(self, request, pk=None):
        require_scope(request)
        return self._respond(ReferralService.mark_arrived(caller=get_request_caller(request), referral_id=pk))

    @extend_schema(request=ReferralCompleteSerializer, responses={200: ReferralSerializer})
    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        require_scope(request)
        s = ReferralCompleteSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            ReferralService.complete(
                caller=get_request_caller(request),
                referral_id=pk,
                outcome=s.validated_data["outcome"],
                notes=s.validated_data["notes"],
            )
        )

    @extend_schema(request=ReferralCancelSerializer, responses={200: ReferralSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        require_scope(request)
        s = ReferralCancelSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return self._respond(
            ReferralService.cancel(caller=get_request_caller(request), referral_id=pk, reason=s.validated_data["reason"])
        )
