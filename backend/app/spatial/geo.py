"""
geo.py — Great-circle distance and radius filtering for tourist locations.

Provides:
    - Coordinate value type with range validation
    - Haversine distance between two points (meters)
    - Bounding-box pre-filter for scanning many last-known locations
    - Inclusive radius check used by the proximity index

All distances are in **meters**. Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude and λ longitude in radians, and R is the Earth's mean
radius (6,371,008.8 m). Accurate to ~0.5%, which is well inside the
precision of a phone GPS fix.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple, TypeVar

from backend.app.core.errors import ValidationError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M: float = 6_371_008.8  # IAU mean radius

# Bounding box is padded so points exactly on the circle survive the
# rectangular pre-filter despite float rounding.
_BBOX_PAD_DEG: float = 1e-7

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for name, value in (("latitude", self.latitude), ("longitude", self.longitude)):
            if not isinstance(value, (int, float)) or isinstance(value, bool) or math.isnan(value):
                raise ValidationError(f"{name} must be a number", field=name)
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValidationError(
                f"Latitude must be in [-90, 90], got {self.latitude}",
                field="latitude",
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValidationError(
                f"Longitude must be in [-180, 180], got {self.longitude}",
                field="longitude",
            )

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Coordinate":
        try:
            return cls(latitude=raw["latitude"], longitude=raw["longitude"])
        except KeyError as exc:
            raise ValidationError(f"Missing coordinate field {exc}", field=str(exc)) from exc


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine_m(point1: Coordinate, point2: Coordinate) -> float:
    """
    Compute the great-circle distance between two points.

    Parameters
    ----------
    point1 : Coordinate
        Origin point (e.g. the emergency location).
    point2 : Coordinate
        Target point (e.g. a tourist's last-known location).

    Returns
    -------
    float
        Distance in meters, unrounded so boundary comparisons stay exact.

    Examples
    --------
    >>> round(haversine_m(Coordinate(0, 0), Coordinate(0, 1)))
    111195
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before Haversine)
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Lat/lon box that fully contains the circle (center, radius_m).

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees.
    """
    angular = radius_m / EARTH_RADIUS_M

    min_lat = center.latitude - math.degrees(angular) - _BBOX_PAD_DEG
    max_lat = center.latitude + math.degrees(angular) + _BBOX_PAD_DEG

    # Longitude delta shrinks toward the poles
    cos_lat = math.cos(center.lat_rad)
    if cos_lat > 1e-10:
        delta_lon = math.degrees(angular / cos_lat) + _BBOX_PAD_DEG
    else:
        delta_lon = 180.0

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon

    # Circle covers a pole or straddles the antimeridian: all longitudes
    if max_lat >= 90.0 or min_lat <= -90.0 or min_lon < -180.0 or max_lon > 180.0:
        min_lon, max_lon = -180.0, 180.0

    return (
        max(min_lat, -90.0),
        min(max_lat, 90.0),
        min_lon,
        max_lon,
    )


def _inside_bbox(point: Coordinate, box: Tuple[float, float, float, float]) -> bool:
    min_lat, max_lat, min_lon, max_lon = box
    return min_lat <= point.latitude <= max_lat and min_lon <= point.longitude <= max_lon


# ---------------------------------------------------------------------------
# Radius filtering
# ---------------------------------------------------------------------------

def is_within_radius(center: Coordinate, point: Coordinate, radius_m: float) -> bool:
    """Inclusive check: a point exactly ``radius_m`` away is inside."""
    if radius_m < 0:
        raise ValidationError(f"Radius must be non-negative, got {radius_m}", field="radius")
    return haversine_m(center, point) <= radius_m


def filter_within_radius(
    center: Coordinate,
    candidates: Iterable[Tuple[T, Coordinate]],
    radius_m: float,
) -> List[Tuple[T, float]]:
    """
    Keep the candidates whose coordinate lies within ``radius_m`` of center.

    Parameters
    ----------
    center : Coordinate
        Query point.
    candidates : iterable of (key, Coordinate)
        Items to test, e.g. (tourist_id, last_known_location).
    radius_m : float
        Radius in meters; boundary is inclusive.

    Returns
    -------
    list of (key, distance_m)
        Matches sorted nearest-first.
    """
    if radius_m < 0:
        raise ValidationError(f"Radius must be non-negative, got {radius_m}", field="radius")

    box = bounding_box(center, radius_m)
    matched: List[Tuple[T, float]] = []

    for key, point in candidates:
        if not _inside_bbox(point, box):
            continue
        dist = haversine_m(center, point)
        if dist <= radius_m:
            matched.append((key, dist))

    matched.sort(key=lambda item: item[1])
    return matched


def format_distance(meters: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(450.2)
    '450 m'
    >>> format_distance(3726.6)
    '3.73 km'
    """
    if meters < 1000.0:
        return f"{int(meters)} m"
    return f"{meters / 1000.0:.2f} km"
