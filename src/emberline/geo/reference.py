"""Geo-reference — coordinate transforms between lat/lng and local meters.

All engine geometry runs in local meters (cells, centroids, depots).  Feeds
that arrive in lat/lng are converted once at ingestion against a reference
point, so the tick pipeline never touches spherical math.

Convention:
    - Local origin (0, 0) = reference point (lat, lng)
    - 1 local unit = 1 meter
    - +X = East, +Y = North
"""

from __future__ import annotations

import math
from dataclasses import dataclass

METERS_PER_DEG_LAT = 111_320.0
EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeoReference:
    """A real-world point that anchors local coordinates."""

    lat: float = 0.0
    lng: float = 0.0

    @property
    def meters_per_deg_lng(self) -> float:
        return METERS_PER_DEG_LAT * math.cos(math.radians(self.lat))


def local_to_latlng(x: float, y: float, ref: GeoReference) -> tuple[float, float]:
    """Convert local meters (x=East, y=North) to (lat, lng)."""
    lat = ref.lat + y / METERS_PER_DEG_LAT
    lng = ref.lng + x / ref.meters_per_deg_lng
    return (lat, lng)


def latlng_to_local(lat: float, lng: float, ref: GeoReference) -> tuple[float, float]:
    """Convert (lat, lng) to local meters (x=East, y=North)."""
    y = (lat - ref.lat) * METERS_PER_DEG_LAT
    x = (lng - ref.lng) * ref.meters_per_deg_lng
    return (x, y)


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two lat/lng points."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (math.sin(dlat / 2.0) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
         * math.sin(dlng / 2.0) ** 2)
    return EARTH_RADIUS_M * 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))


def distance_m(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Planar distance between two local-meter points."""
    return math.hypot(b[0] - a[0], b[1] - a[1])
