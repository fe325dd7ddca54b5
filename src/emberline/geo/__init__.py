"""Coordinate helpers — local meters, lat/lng conversion, distances."""

from emberline.geo.reference import (
    GeoReference,
    distance_m,
    haversine_m,
    latlng_to_local,
    local_to_latlng,
)

__all__ = [
    "GeoReference",
    "distance_m",
    "haversine_m",
    "latlng_to_local",
    "local_to_latlng",
]
