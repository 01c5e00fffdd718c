# rm_core/common/idempotency.py
from __future__ import annotations

import hashlib
import logging
from typing import Callable, Optional

from django.conf import settings
from django.core.cache import caches
from django.db import IntegrityError, transaction
from rest_framework.response import Response

from rm_core.common.models import IdempotencyRecord

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 24 * 3600


def _use_db() -> bool:
    """
    COMMON_IDEMPOTENCY_USE_DB = True stores replies in IdempotencyRecord;
    otherwise they live in the default cache for a day.
    """
    return bool(getattr(settings, "COMMON_IDEMPOTENCY_USE_DB", False))


def get_key(request) -> Optional[str]:
    # DRF test client: "HTTP_IDEMPOTENCY_KEY" -> request.META["HTTP_IDEMPOTENCY_KEY"]
    return request.META.get("HTTP_IDEMPOTENCY_KEY")


def _cache_key(tenant_id, facility_id, user_id, method, path, key) -> str:
    raw = "|".join(str(p) for p in (tenant_id, facility_id, user_id, method.upper(), path, key))
    return "idempotency:" + hashlib.sha256(raw.encode()).hexdigest()


def load_response(tenant_id, facility_id, user_id, method, path, key) -> Optional[tuple[int, dict]]:
    if not key:
        return None

    if not _use_db():
        return caches["default"].get(_cache_key(tenant_id, facility_id, user_id, method, path, key))

    rec = (
        IdempotencyRecord.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            user_id=int(user_id),
            method=method.upper(),
            path=path,
            idempotency_key=str(key),
        )
        .order_by("-created_at")
        .first()
    )
    return None if rec is None else (rec.status_code, rec.response_data)


def save_response(tenant_id, facility_id, user_id, method, path, key, response_data, status_code: int = 201) -> None:
    if not key:
        return

    if not _use_db():
        caches["default"].set(
            _cache_key(tenant_id, facility_id, user_id, method, path, key),
            (int(status_code), response_data),
            CACHE_TTL_SECONDS,
        )
        return

    try:
        with transaction.atomic():
            IdempotencyRecord.objects.create(
                tenant_id=tenant_id,
                facility_id=facility_id,
                user_id=int(user_id),
                method=method.upper(),
                path=path,
                idempotency_key=str(key),
                status_code=int(status_code),
                response_data=response_data,
            )
    except IntegrityError:
        # A concurrent request with the same key stored its reply first.
        logger.info("idempotency key %s already stored for %s %s", key, method, path)


def replay_or_run(request, run: Callable[[], Response]) -> Response:
    """
    Return the stored reply for a repeated Idempotency-Key, or run the view
    body and store its reply when it succeeded.
    """
    key = get_key(request)
    ident = (request.tenant_id, request.facility_id, request.user.id, request.method, request.path)

    if key:
        stored = load_response(*ident, key)
        if stored is not None:
            status_code, data = stored
            return Response(data, status=status_code, headers={"Idempotent-Replay": "true"})

    response = run()
    if key and 200 <= response.status_code < 300:
        save_response(*ident, key, response.data, status_code=response.status_code)
    return response
