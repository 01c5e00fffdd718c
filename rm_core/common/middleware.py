from __future__ import annotations

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from rm_core.common.api.exceptions import build_error_envelope, ensure_request_id
from rm_core.common.scope import INVALID_SCOPE_MSG, MISSING_SCOPE_MSG, Scope, _parse_uuid

NOT_A_MEMBER_MSG = "You do not have access to the selected facility."


class TenantFacilityScopeMiddleware(MiddlewareMixin):
    """
    Tenant/facility scope for session-authenticated API requests.

    JWT requests reach DRF anonymous; CookieOrHeaderJWTAuthentication applies
    the same rules once the token is verified.

      - /api/v1/* and the /api/* alias need X-Tenant-Id + X-Facility-Id (400 if
        missing or not UUIDs, 403 if the user is not a member).
      - /me/ works without headers but checks them when given.
      - Auth endpoints, docs, schema and admin are never scoped.
      - Every response carries X-Request-ID.
    """

    API_PREFIXES = ("/api/v1/", "/api/")
    UNSCOPED_PREFIXES = ("/admin/", "/api/docs/", "/api/schema/")
    UNSCOPED_SUFFIXES = ("/auth/login/", "/auth/refresh/", "/auth/logout/")
    API_ROOTS = ("/api/v1/", "/api/")
    OPTIONAL_SCOPE_SUFFIXES = ("/me/",)

    def _needs_scope(self, path: str) -> bool:
        if path.startswith(self.UNSCOPED_PREFIXES) or not path.startswith(self.API_PREFIXES):
            return False
        if path in self.API_ROOTS:
            return False
        return not path.endswith(self.UNSCOPED_SUFFIXES)

    def _reject(self, request, *, status_code: int, code: str, message: str) -> JsonResponse:
        return JsonResponse(
            build_error_envelope(request=request, code=code, message=message, details=None),
            status=status_code,
        )

    def process_request(self, request):
        ensure_request_id(request)
        request.scope = None
        request.tenant_id = None
        request.facility_id = None
        request.caller = None

        path = getattr(request, "path", "") or ""
        if not self._needs_scope(path):
            return None

        # anonymous here means JWT or nothing; DRF decides
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return None

        tenant_raw = request.META.get("HTTP_X_TENANT_ID")
        facility_raw = request.META.get("HTTP_X_FACILITY_ID")

        if not tenant_raw and not facility_raw and path.endswith(self.OPTIONAL_SCOPE_SUFFIXES):
            return None
        if not tenant_raw or not facility_raw:
            return self._reject(request, status_code=400, code="validation_error", message=MISSING_SCOPE_MSG)

        tenant_id = _parse_uuid(tenant_raw)
        facility_id = _parse_uuid(facility_raw)
        if not tenant_id or not facility_id:
            return self._reject(request, status_code=400, code="validation_error", message=INVALID_SCOPE_MSG)

        from rm_core.iam.services.membership import is_user_member_of_facility

        if not user.is_superuser and not is_user_member_of_facility(
            user_id=user.id, tenant_id=tenant_id, facility_id=facility_id
        ):
            return self._reject(request, status_code=403, code="permission_denied", message=NOT_A_MEMBER_MSG)

        request.scope = Scope(tenant_id=tenant_id, facility_id=facility_id)
        request.tenant_id = tenant_id
        request.facility_id = facility_id
        return None

    def process_response(self, request, response):
        response["X-Request-ID"] = ensure_request_id(request)
        return response
