# rm_core/common/api/exceptions.py

from __future__ import annotations

import logging
import uuid
from typing import Any, TypeVar

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    NotAuthenticated,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from rm_core.common.results import ErrorKind, Result, ServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    Safe to call from middleware and DRF exception handler.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    """
    Canonical error envelope, shared by Django middleware (JsonResponse) and DRF (Response).
    """
    rid = ensure_request_id(request)
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": rid,
        }
    }


class ConflictError(APIException):
    """
    409: a concurrent writer won. The client should refetch and retry.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail or self.default_detail, code=code or self.default_code)


class InvalidTransitionError(APIException):
    """
    422: the entity is not in a state that allows the requested transition.
    The response carries the current status so the client can correct itself.
    """
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Invalid state transition."
    default_code = "invalid_transition"

    def __init__(self, detail=None, *, current_status: str | None = None):
        super().__init__(detail=detail or self.default_detail, code=self.default_code)
        self.current_status = current_status


class ServiceValidationError(APIException):
    """
    400 raised from a service validation result; field details ride along.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    default_code = "validation_error"

    def __init__(self, detail=None, *, fields: dict[str, Any] | None = None):
        super().__init__(detail=detail or self.default_detail, code=self.default_code)
        self.fields = fields or {}


class DependencyFailureError(APIException):
    """
    503: storage or another collaborator failed; nothing was applied. Retryable.
    """
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "A dependency failed. Retry the request."
    default_code = "dependency_failure"


def exception_for(error: ServiceError) -> APIException:
    """Translate a service error into the DRF exception the handler renders."""
    if error.kind == ErrorKind.INVALID_TRANSITION:
        return InvalidTransitionError(error.message, current_status=error.current_status)
    if error.kind == ErrorKind.PERMISSION_DENIED:
        return PermissionDenied(error.message)
    if error.kind == ErrorKind.NOT_FOUND:
        return NotFound(error.message)
    if error.kind == ErrorKind.CONFLICT:
        return ConflictError(error.message)
    if error.kind == ErrorKind.DEPENDENCY_FAILURE:
        return DependencyFailureError(error.message)
    return ServiceValidationError(error.message, fields=error.details)


def unwrap(result: Result[T]) -> T:
    """
    Value of a successful result; otherwise raise the mapped API exception.
    Views call this at the boundary; services never raise for outcomes.
    """
    if result.ok:
        return result.value  # type: ignore[return-value]
    raise exception_for(result.error)  # type: ignore[arg-type]


def _code_for(exc: Exception, http_status: int) -> str:
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, NotAuthenticated):
        return "not_authenticated"
    if isinstance(exc, PermissionDenied):
        return "permission_denied"
    if isinstance(exc, (Http404, NotFound)):
        return "not_found"
    if isinstance(exc, APIException):
        return getattr(exc, "default_code", "api_error") or "api_error"
    if http_status >= 500:
        return "server_error"
    return "error"


def _extra_details(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, ServiceValidationError):
        return dict(exc.fields)
    if isinstance(exc, InvalidTransitionError) and exc.current_status:
        return {"current_status": exc.current_status}
    if isinstance(exc, (DependencyFailureError, ConflictError)):
        return {"retryable": True}
    return {}


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")
    response = drf_exception_handler(exc, context)

    # Truly unhandled error
    if response is None:
        logger.exception("unhandled error", exc_info=exc)
        return Response(
            build_error_envelope(
                request=request,
                code="server_error",
                message="Unexpected server error.",
                details=None,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    http_status = response.status_code
    code = _code_for(exc, http_status)

    data = response.data

    # Message + details rules:
    # 1) {"detail": "..."} only -> message=detail, details=None
    # 2) {"detail": "...", ...} -> message=detail, details={...without detail}
    # 3) otherwise -> message="Request failed.", details=data
    message = "Request failed."
    details = data

    if isinstance(data, dict) and "detail" in data:
        message = str(data.get("detail"))
        rest = {k: v for k, v in data.items() if k != "detail"}
        details = rest or None
    elif isinstance(data, list) and len(data) == 1:
        message = str(data[0])
        details = None

    extra = _extra_details(exc)
    if extra:
        details = {**(details or {}), **extra}

    return Response(
        build_error_envelope(
            request=request,
            code=code,
            message=message,
            details=details,
        ),
        status=http_status,
        headers=response.headers,
    )
