# rm_core/iam/auth.py

from __future__ import annotations

from django.conf import settings
from rest_framework_simplejwt.authentication import JWTAuthentication

from rm_core.iam.scope import apply_scope_from_headers
from rm_core.iam.services.caller import resolve_caller


class CookieOrHeaderJWTAuthentication(JWTAuthentication):
    """
    Authenticate using:
      1) Authorization: Bearer <access>
      2) HttpOnly cookie containing access token

    After the user is known: enforce scope headers (membership) and resolve
    the Caller (roles + capabilities) once, as request.caller.
    """

    def authenticate(self, request):
        header = self.get_header(request)
        if header:
            auth_result = super().authenticate(request)
            if auth_result is None:
                return None
            user, token = auth_result
        else:
            cookie_name = settings.SIMPLE_JWT.get("AUTH_COOKIE", "rm_access")
            raw_token = request.COOKIES.get(cookie_name)
            if not raw_token:
                return None
            token = self.get_validated_token(raw_token)
            user = self.get_user(token)

        scope = apply_scope_from_headers(request, user=user)
        request.caller = resolve_caller(
            user,
            tenant_id=getattr(scope, "tenant_id", None),
            facility_id=getattr(scope, "facility_id", None),
        )
        return user, token
