"""
location_store.py — Latest location per tourist.

Fed by the realtime ``location_update`` event and the SOS path; read by
the safety engine (recency sample) and the proximity index (who is near).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.spatial.geo import Coordinate

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LocationSample:
    tourist_id: str
    coordinates: Coordinate
    timestamp: datetime = field(default_factory=_now)
    accuracy_m: Optional[float] = None

    def age_minutes(self, now: Optional[datetime] = None) -> float:
        now = now or _now()
        return (now - self.timestamp).total_seconds() / 60.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tourist_id": self.tourist_id,
            "coordinates": self.coordinates.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "accuracy_m": self.accuracy_m,
        }


class LocationStore(ABC):

    @abstractmethod
    async def get_latest_location(self, tourist_id: str) -> Optional[LocationSample]:
        """None when the tourist has never reported a location."""

    @abstractmethod
    async def latest_locations(self) -> Dict[str, LocationSample]:
        """Snapshot of every tourist's last-known location."""

    @abstractmethod
    async def record_location(
        self,
        tourist_id: str,
        coordinates: Coordinate,
        *,
        timestamp: Optional[datetime] = None,
        accuracy_m: Optional[float] = None,
    ) -> LocationSample:
        ...


class InMemoryLocationStore(LocationStore):
    """Keeps only the newest sample per tourist; older reports are ignored."""

    def __init__(self) -> None:
        self._latest: Dict[str, LocationSample] = {}

    async def get_latest_location(self, tourist_id: str) -> Optional[LocationSample]:
        return self._latest.get(tourist_id)

    async def latest_locations(self) -> Dict[str, LocationSample]:
        return dict(self._latest)

    async def record_location(
        self,
        tourist_id: str,
        coordinates: Coordinate,
        *,
        timestamp: Optional[datetime] = None,
        accuracy_m: Optional[float] = None,
    ) -> LocationSample:
        sample = LocationSample(
            tourist_id=tourist_id,
            coordinates=coordinates,
            timestamp=timestamp or _now(),
            accuracy_m=accuracy_m,
        )
        current = self._latest.get(tourist_id)
        if current is None or sample.timestamp >= current.timestamp:
            self._latest[tourist_id] = sample
        else:
            logger.debug("Ignoring out-of-order location for %s", tourist_id)
        return sample

    def clear(self) -> None:
        self._latest.clear()
