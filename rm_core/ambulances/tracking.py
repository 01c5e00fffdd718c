# rm_core/ambulances/tracking.py
"""
Live route progress for active dispatches.

Progress is derived data: it lives in a cache under
`route_progress:{dispatch_id}` and is never the source of truth. The store
takes the cache backend as a constructor argument; `default_store()` builds
one from ROUTE_PROGRESS_CACHE_ALIAS / ROUTE_PROGRESS_TTL_SECONDS.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone

from rm_core.common.geo import haversine_km

logger = logging.getLogger(__name__)

KEY_PREFIX = "route_progress"
DEFAULT_TTL_SECONDS = 3600


def progress_key(dispatch_id) -> str:
    return f"{KEY_PREFIX}:{dispatch_id}"


def compute_progress(*, total_distance_km: float, remaining_km: float) -> dict[str, Any]:
    total = max(float(total_distance_km or 0), 0.0)
    completed = max(total - max(float(remaining_km), 0.0), 0.0)
    pct = round(min(completed / total * 100, 100.0), 1) if total > 0 else 0.0
    return {
        "total_distance_km": round(total, 2),
        "completed_distance_km": round(completed, 2),
        "progress_percentage": pct,
        "updated_at": timezone.now().isoformat(),
    }


class RouteProgressStore:
    def __init__(self, cache, *, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def get(self, dispatch_id) -> Optional[dict[str, Any]]:
        try:
            return self.cache.get(progress_key(dispatch_id))
        except Exception:
            logger.exception("route progress read failed dispatch=%s", dispatch_id)
            return None

    def put(self, dispatch_id, progress: dict[str, Any]) -> None:
        try:
            self.cache.set(progress_key(dispatch_id), progress, self.ttl_seconds)
        except Exception:
            logger.exception("route progress write failed dispatch=%s", dispatch_id)

    def clear(self, dispatch_id) -> None:
        try:
            self.cache.delete(progress_key(dispatch_id))
        except Exception:
            logger.exception("route progress delete failed dispatch=%s", dispatch_id)

    def refresh(self, dispatch, *, latitude, longitude) -> dict[str, Any]:
        """
        Recompute progress of `dispatch` from the ambulance position.
        Distance is measured along the pickup -> destination leg.
        """
        total = dispatch.estimated_distance_km
        if total is None:
            total = haversine_km(
                dispatch.pickup_latitude,
                dispatch.pickup_longitude,
                dispatch.destination_latitude,
                dispatch.destination_longitude,
            )
        remaining = haversine_km(latitude, longitude, dispatch.destination_latitude, dispatch.destination_longitude)
        progress = compute_progress(total_distance_km=float(total), remaining_km=remaining)
        self.put(dispatch.id, progress)
        return progress


def default_store() -> RouteProgressStore:
    alias = getattr(settings, "ROUTE_PROGRESS_CACHE_ALIAS", "default")
    ttl = int(getattr(settings, "ROUTE_PROGRESS_TTL_SECONDS", DEFAULT_TTL_SECONDS))
    return RouteProgressStore(caches[alias], ttl_seconds=ttl)
