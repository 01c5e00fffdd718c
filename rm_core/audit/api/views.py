# rm_core/audit/api/views.py
from __future__ import annotations

from uuid import UUID

from django.utils.dateparse import parse_datetime
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import viewsets
from rest_framework.exceptions import ValidationError

from rm_core.audit.api.serializers import AuditEventSerializer
from rm_core.audit.models import AuditEvent
from rm_core.audit.permissions import AuditPermission
from rm_core.audit.selectors import list_audit_events
from rm_core.common.api.pagination import paginate
from rm_core.common.scope import require_scope


def _uuid_param(request, name: str) -> UUID | None:
    raw = request.query_params.get(name) or None
    if raw is None:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        raise ValidationError({name: "Invalid UUID."})


def _datetime_param(request, name: str):
    raw = request.query_params.get(name) or None
    if raw is None:
        return None
    value = parse_datetime(raw)
    if value is None:
        raise ValidationError({name: "Invalid datetime (ISO 8601 expected)."})
    return value


class AuditEventViewSet(viewsets.GenericViewSet):
    """
    Audit timeline for the active facility.
    """
    permission_classes = [AuditPermission]
    serializer_class = AuditEventSerializer
    queryset = AuditEvent.objects.none()

    @extend_schema(
        tags=["Audit"],
        responses={200: AuditEventSerializer(many=True)},
        parameters=[
            OpenApiParameter("entity_type", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False,
                             description="Filter by entity type (REFERRAL, DISPATCH, ...)."),
            OpenApiParameter("entity_id", OpenApiTypes.UUID, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("event_code", OpenApiTypes.STR, OpenApiParameter.QUERY, required=False,
                             description="Filter by event code (REFERRAL_ACCEPTED, SECURITY_PERMISSION_DENIED, ...)."),
            OpenApiParameter("actor_user_id", OpenApiTypes.INT, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("since", OpenApiTypes.DATETIME, OpenApiParameter.QUERY, required=False),
            OpenApiParameter("until", OpenApiTypes.DATETIME, OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        actor_raw = request.query_params.get("actor_user_id")
        actor_user_id = None
        if actor_raw not in (None, ""):
            try:
                actor_user_id = int(actor_raw)
            except ValueError:
                raise ValidationError({"actor_user_id": "Invalid actor_user_id (int expected)."})

        qs = list_audit_events(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            entity_type=request.query_params.get("entity_type") or None,
            entity_id=_uuid_param(request, "entity_id"),
            event_code=request.query_params.get("event_code") or None,
            actor_user_id=actor_user_id,
            since=_datetime_param(request, "since"),
            until=_datetime_param(request, "until"),
        )
        return paginate(request, qs, AuditEventSerializer)
