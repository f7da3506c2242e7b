# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

EARTH_RADIUS_KM = 6371.0088  # mean Earth radius

MIN_RADIUS_KM = 5.0
MAX_RADIUS_KM = 500.0
CIRCLE_POINTS = 28

SEVERITY_BASE_RADIUS_KM = {
    "critical": 150.0,
    "warning": 75.0,
    "caution": 40.0,
    "informative": 20.0,
}

SCOPE_MULTIPLIER = {
    "multinational": 3.0,
    "national": 2.0,
    "regional": 1.5,
    "city": 1.1,
    "local": 1.0,
}

_WEATHER_HINTS = (
    "weather", "storm", "hurricane", "typhoon", "cyclone", "flood", "snow", "blizzard",
    "heatwave", "heat wave", "wildfire", "tornado", "monsoon", "natural disaster",
)
_UNREST_HINTS = ("civil unrest", "unrest", "protest", "demonstration", "riot", "strike", "march")


def clamp_radius(radius_km: float) -> float:
    return max(MIN_RADIUS_KM, min(MAX_RADIUS_KM, float(radius_km)))


def default_radius_km(severity: Optional[str], geo_scope: Optional[str], event_type: Optional[str]) -> float:
    base = SEVERITY_BASE_RADIUS_KM.get((severity or "informative").lower(), SEVERITY_BASE_RADIUS_KM["informative"])
    base *= SCOPE_MULTIPLIER.get((geo_scope or "local").lower(), 1.0)

    et = (event_type or "").lower()
    if any(h in et for h in _WEATHER_HINTS):
        base *= 1.3
    elif any(h in et for h in _UNREST_HINTS):
        base *= 0.9

    return round(clamp_radius(base), 1)


def valid_coordinates(lat: Optional[float], lng: Optional[float]) -> bool:
    if lat is None or lng is None:
        return False
    try:
        la, lo = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(la) or math.isnan(lo):
        return False
    if la == 0.0 and lo == 0.0:
        return False
    return -90.0 <= la <= 90.0 and -180.0 <= lo <= 180.0


def circle_polygon(lat: float, lng: float, radius_km: float, *, points: int = CIRCLE_POINTS) -> Dict[str, Any]:
    """
    GeoJSON Feature with a closed Polygon ring of `points` vertices
    offset along great circles from (lat, lng).
    """
    ang = radius_km / EARTH_RADIUS_KM
    lat_r = math.radians(lat)
    lng_r = math.radians(lng)

    ring: List[List[float]] = []
    for i in range(points):
        bearing = 2 * math.pi * i / points
        lat2 = math.asin(
            math.sin(lat_r) * math.cos(ang) + math.cos(lat_r) * math.sin(ang) * math.cos(bearing)
        )
        lng2 = lng_r + math.atan2(
            math.sin(bearing) * math.sin(ang) * math.cos(lat_r),
            math.cos(ang) - math.sin(lat_r) * math.sin(lat2),
        )
        lng_deg = (math.degrees(lng2) + 540.0) % 360.0 - 180.0
        ring.append([round(lng_deg, 6), round(math.degrees(lat2), 6)])
    ring.append(list(ring[0]))

    return {
        "type": "Feature",
        "properties": {"radius_km": radius_km, "generated": True},
        "geometry": {"type": "Polygon", "coordinates": [ring]},
    }


def is_polygon_feature(geo: Any) -> bool:
    if not isinstance(geo, dict):
        return False
    geom = geo.get("geometry") if geo.get("type") == "Feature" else geo
    if not isinstance(geom, dict):
        return False
    if geom.get("type") not in ("Polygon", "MultiPolygon"):
        return False
    coords = geom.get("coordinates")
    return isinstance(coords, list) and len(coords) > 0
