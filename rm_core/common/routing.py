# rm_core/common/routing.py
"""
Route estimation port.

The lifecycle code asks for a distance/duration between two points and never
does routing itself. A maps provider plugs in through ROUTING_ESTIMATOR
(dotted path to a class with `estimate_route(origin, destination)`); the
default is a straight-line estimate at a fixed average speed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from django.conf import settings
from django.utils.module_loading import import_string

from rm_core.common.geo import GeoPoint, haversine_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_minutes: int
    source: str = "haversine"


class RouteEstimator(Protocol):
    def estimate_route(self, origin: GeoPoint, destination: GeoPoint) -> RouteEstimate: ...


class RouteEstimationError(Exception):
    """Raised by estimators when the provider cannot produce a route."""


class HaversineRouteEstimator:
    def __init__(self, average_speed_kmh: Optional[float] = None):
        self.average_speed_kmh = average_speed_kmh or float(getattr(settings, "ROUTING_AVERAGE_SPEED_KMH", 50))

    def estimate_route(self, origin: GeoPoint, destination: GeoPoint) -> RouteEstimate:
        distance = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
        minutes = round(distance / self.average_speed_kmh * 60)
        return RouteEstimate(distance_km=round(distance, 2), duration_minutes=int(minutes))


def get_route_estimator() -> RouteEstimator:
    path = getattr(settings, "ROUTING_ESTIMATOR", "rm_core.common.routing.HaversineRouteEstimator")
    return import_string(path)()


def safe_estimate(estimator: RouteEstimator, origin: GeoPoint, destination: GeoPoint) -> Optional[RouteEstimate]:
    """Estimate, or None when the provider fails (logged)."""
    try:
        return estimator.estimate_route(origin, destination)
    except (RouteEstimationError, OSError, ValueError) as exc:
        logger.warning("route estimation failed %s -> %s: %s", origin, destination, exc)
        return None
