"""
proximity.py — Nearby-recipient resolution.

Thin adapter: last-known locations come from the LocationStore, distance
is haversine in meters (inclusive boundary), and matching ids are turned
into Recipients through the RecipientResolver. Tourists that never
reported a location are excluded, never treated as distance 0.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from backend.app.core.errors import CollaboratorUnavailableError, SafetyPlatformError, ValidationError
from backend.app.notifications.models import Recipient
from backend.app.notifications.recipients import RecipientResolver
from backend.app.spatial.geo import Coordinate, filter_within_radius
from backend.app.tracking.location_store import LocationStore

logger = logging.getLogger(__name__)


class ProximityIndex:

    def __init__(self, location_store: LocationStore, resolver: RecipientResolver) -> None:
        self._locations = location_store
        self._resolver = resolver

    async def find_near(
        self,
        coordinates: Coordinate,
        radius_m: float,
        *,
        exclude: Iterable[str] = (),
    ) -> List[Recipient]:
        """
        Recipients whose last-known location is within ``radius_m``.

        Parameters
        ----------
        coordinates : Coordinate
            Centre of the search.
        radius_m : float
            Radius in meters, inclusive. Negative raises ValidationError.
        exclude : iterable of str
            Ids to leave out (typically the reporting tourist).

        Returns
        -------
        list of Recipient
            Nearest first.
        """
        if radius_m < 0:
            raise ValidationError(f"Radius must be non-negative, got {radius_m}", field="radius")

        try:
            latest = await self._locations.latest_locations()
        except SafetyPlatformError:
            raise
        except Exception as exc:
            raise CollaboratorUnavailableError("location", str(exc)) from exc

        skip = set(exclude)
        candidates = [
            (tourist_id, sample.coordinates)
            for tourist_id, sample in latest.items()
            if tourist_id not in skip
        ]
        matched = filter_within_radius(coordinates, candidates, radius_m)
        logger.debug(
            "Proximity: %d/%d tourists within %.0f m", len(matched), len(candidates), radius_m,
        )
        return await self._resolver.resolve_many(tid for tid, _ in matched)
