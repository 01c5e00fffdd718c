# rm_core/common/results.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

from django.db import DatabaseError, IntegrityError, transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation_error"
    INVALID_TRANSITION = "invalid_transition"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DEPENDENCY_FAILURE = "dependency_failure"


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str
    details: Optional[dict[str, Any]] = None
    current_status: Optional[str] = None
    retryable: bool = False


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a service call.

    Services never raise for expected business outcomes (wrong state, overlap,
    missing reference, caller not allowed). They return Result.failure(...) and
    the API layer decides what that means over HTTP.
    """
    value: Optional[T] = None
    error: Optional[ServiceError] = None
    warnings: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return None if self.error is None else self.error.kind

    @classmethod
    def success(cls, value: T, *, warnings: tuple[str, ...] = ()) -> "Result[T]":
        return cls(value=value, warnings=warnings)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        current_status: Optional[str] = None,
        retryable: bool = False,
    ) -> "Result[T]":
        return cls(
            error=ServiceError(
                kind=kind,
                message=message,
                details=details,
                current_status=current_status,
                retryable=retryable,
            )
        )

    @classmethod
    def from_error(cls, error: ServiceError) -> "Result[T]":
        return cls(error=error)


def invalid_transition(entity: str, current: str, action: str) -> Result:
    return Result.failure(
        ErrorKind.INVALID_TRANSITION,
        f"Cannot {action} a {entity} in status '{current}'.",
        current_status=current,
    )


def not_found(entity: str) -> Result:
    return Result.failure(ErrorKind.NOT_FOUND, f"{entity} not found.")


def denied(action: str) -> Result:
    return Result.failure(
        ErrorKind.PERMISSION_DENIED,
        "You do not have permission to perform this action.",
        details={"action": action},
    )


def invalid(message: str, **fields: Any) -> Result:
    return Result.failure(ErrorKind.VALIDATION, message, details=fields or None)


def run_atomic(fn: Callable[[], Result[T]], *, label: str) -> Result[T]:
    """
    Run a service body in one transaction.

    Guards run before any write, so a failure result has nothing to undo.
    Database errors roll the whole body back and come back as results:
      - IntegrityError (unique/conditional constraint lost a race) -> CONFLICT
      - any other DatabaseError (lock timeout, serialization) -> DEPENDENCY_FAILURE
    """
    try:
        with transaction.atomic():
            return fn()
    except IntegrityError as exc:
        logger.warning("%s: integrity conflict: %s", label, exc)
        return Result.failure(
            ErrorKind.CONFLICT,
            "The record was changed by another request. Refetch and retry.",
            retryable=True,
        )
    except DatabaseError as exc:
        logger.error("%s: persistence failure: %s", label, exc)
        return Result.failure(
            ErrorKind.DEPENDENCY_FAILURE,
            "Storage is temporarily unavailable. Retry the request.",
            retryable=True,
        )
