# rm_core/common/geo.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from math import asin, cos, radians, sin, sqrt
from typing import Optional

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float
    address: str = ""


def coordinate_errors(lat, lng) -> dict[str, str]:
    """Field -> message for out-of-range coordinates (empty when valid)."""
    errors: dict[str, str] = {}
    if lat is None or not -90 <= float(lat) <= 90:
        errors["lat"] = "Latitude must be between -90 and 90."
    if lng is None or not -180 <= float(lng) <= 180:
        errors["lng"] = "Longitude must be between -180 and 180."
    return errors


def heading_error(heading) -> Optional[str]:
    if heading is not None and not 0 <= float(heading) <= 360:
        return "Heading must be between 0 and 360."
    return None


def haversine_km(lat1, lng1, lat2, lng2) -> float:
    """Great-circle distance in kilometres."""
    lat1, lng1, lat2, lng2 = (float(v) for v in (lat1, lng1, lat2, lng2))
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(sqrt(a))


def to_decimal(value, places: int = 6) -> Decimal:
    return Decimal(str(round(float(value), places)))
