"""
lookup.py — Geofence containment lookup.

The polygon-containment engine is an external service; the scoring engine
only depends on ``GeofenceLookup.find_containing_geofences``. The
in-process implementation here models each zone as a circle so the API
runs standalone.

Safety classification → numeric score used by the safety engine:

    very_safe   90
    safe        75
    moderate    50
    unsafe      25
    dangerous   10
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.core.errors import NotFoundError
from backend.app.spatial.geo import Coordinate, haversine_m

logger = logging.getLogger(__name__)


class SafetyLevel(str, Enum):
    VERY_SAFE = "very_safe"
    SAFE      = "safe"
    MODERATE  = "moderate"
    UNSAFE    = "unsafe"
    DANGEROUS = "dangerous"

    @property
    def score(self) -> int:
        return SAFETY_LEVEL_SCORES[self]


SAFETY_LEVEL_SCORES: Dict[SafetyLevel, int] = {
    SafetyLevel.VERY_SAFE: 90,
    SafetyLevel.SAFE: 75,
    SafetyLevel.MODERATE: 50,
    SafetyLevel.UNSAFE: 25,
    SafetyLevel.DANGEROUS: 10,
}


@dataclass(frozen=True)
class GeofenceZone:
    geofence_id: str
    name: str
    safety_level: SafetyLevel
    type: str = "area"
    center: Optional[Coordinate] = None
    radius_m: float = 0.0

    def contains(self, point: Coordinate) -> bool:
        if self.center is None:
            return False
        return haversine_m(self.center, point) <= self.radius_m

    def to_dict(self) -> Dict[str, Any]:
        return {
            "geofence_id": self.geofence_id,
            "name": self.name,
            "type": self.type,
            "safety_level": self.safety_level.value,
            "center": self.center.to_dict() if self.center else None,
            "radius_m": self.radius_m,
        }


class GeofenceLookup(ABC):
    """Finds the zones that contain a point. Argument order is GeoJSON (lon, lat)."""

    @abstractmethod
    async def find_containing_geofences(self, longitude: float, latitude: float) -> List[GeofenceZone]:
        """Raise CollaboratorUnavailableError when the backing service is down."""

    @abstractmethod
    async def get(self, geofence_id: str) -> GeofenceZone:
        """Raise NotFoundError for an unknown id."""


class InMemoryGeofenceLookup(GeofenceLookup):
    """Circular zones held in a dict; linear scan per lookup."""

    def __init__(self, zones: Optional[List[GeofenceZone]] = None) -> None:
        self._zones: Dict[str, GeofenceZone] = {z.geofence_id: z for z in zones or []}

    def add(self, zone: GeofenceZone) -> None:
        self._zones[zone.geofence_id] = zone

    async def find_containing_geofences(self, longitude: float, latitude: float) -> List[GeofenceZone]:
        point = Coordinate(latitude=latitude, longitude=longitude)
        return [z for z in self._zones.values() if z.contains(point)]

    async def get(self, geofence_id: str) -> GeofenceZone:
        zone = self._zones.get(geofence_id)
        if zone is None:
            raise NotFoundError("Geofence", geofence_id=geofence_id)
        return zone
