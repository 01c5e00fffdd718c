# rm_core/iam/api/me.py

from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from rm_core.common.scope import Scope
from rm_core.iam.api.schema_serializers import (
    MeResponseSerializer,
    ScopeSwitchRequestSerializer,
    ScopeSwitchResponseSerializer,
)
from rm_core.iam.scope import assert_user_membership, resolve_scope_from_headers
from rm_core.iam.services.caller import resolve_caller
from rm_core.iam.services.membership import list_user_facilities


def _caller_payload(user, scope: Scope | None) -> dict:
    caller = resolve_caller(
        user,
        tenant_id=getattr(scope, "tenant_id", None),
        facility_id=getattr(scope, "facility_id", None),
    )
    return {
        "roles": sorted(r.value for r in caller.roles),
        "capabilities": sorted(caller.capabilities),
    }


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: MeResponseSerializer}, tags=["IAM"])
    def get(self, request):
        """
        User, memberships and, for the active scope, roles + capabilities.

        Scope headers are optional here. When given they must be valid and
        the user must be a member (400/403). Without them the primary (or
        first) membership is used.
        """
        scope = resolve_scope_from_headers(request)
        memberships = list_user_facilities(request.user.id)

        if scope is not None:
            assert_user_membership(request.user, scope)
        elif memberships:
            chosen = next((m for m in memberships if m["is_primary"]), memberships[0])
            scope = Scope(tenant_id=chosen["tenant_id"], facility_id=chosen["facility_id"])

        active_scope = None
        if scope is not None:
            active_scope = {"tenant_id": str(scope.tenant_id), "facility_id": str(scope.facility_id)}

        return Response(
            {
                "user": {
                    "id": request.user.id,
                    "username": getattr(request.user, "username", None),
                    "email": getattr(request.user, "email", None),
                    "is_superuser": bool(getattr(request.user, "is_superuser", False)),
                },
                "memberships": memberships,
                "active_scope": active_scope,
                **_caller_payload(request.user, scope),
            },
            status=status.HTTP_200_OK,
        )

    @extend_schema(request=ScopeSwitchRequestSerializer, responses={200: ScopeSwitchResponseSerializer}, tags=["IAM"])
    def post(self, request):
        """
        Validate a scope switch. The client keeps sending the returned ids as
        X-Tenant-Id / X-Facility-Id.
        """
        s = ScopeSwitchRequestSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        scope = Scope(tenant_id=s.validated_data["tenant_id"], facility_id=s.validated_data["facility_id"])

        assert_user_membership(request.user, scope)

        return Response(
            {
                "message": "Scope switched successfully",
                "active_scope": {"tenant_id": str(scope.tenant_id), "facility_id": str(scope.facility_id)},
                **_caller_payload(request.user, scope),
            },
            status=status.HTTP_200_OK,
        )
