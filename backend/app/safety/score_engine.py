"""
score_engine.py — Explainable location safety score (0–100).

═══════════════════════════════════════════════════════════════════════════
SCORING MODEL
═══════════════════════════════════════════════════════════════════════════

    score = 70                                        (base)

    Area Safety Classification   (only if zones contain the point)
        avg  = mean(zone scores)   very_safe 90 · safe 75 · moderate 50
                                   unsafe 25 · dangerous 10
        score = (score + avg) / 2
        impact = avg − 70

    Time of Day                  (always recorded, local hour)
        06:00–18:59   +10
        19:00–22:59    −5
        otherwise     −15

    Recent Activity / Location Staleness   (only with a location sample)
        age < 10 min   +5
        age > 60 min  −10
        otherwise      no factor

    score = clamp(score, 0, 100)

Worked example: dangerous zone at 02:00, sample 90 minutes old
    (70 + 10) / 2 − 15 − 10 = 15  →  "< 30" recommendations

═══════════════════════════════════════════════════════════════════════════
DEGRADATION
═══════════════════════════════════════════════════════════════════════════

Missing inputs are omitted from ``factors``, never scored as zero. A
failing geofence or location collaborator is listed in
``degraded_signals`` and the score is computed from what remains. The
score is recomputed on every call; nothing is cached.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from backend.app.core.errors import CollaboratorUnavailableError, SafetyPlatformError, ValidationError
from backend.app.geofence.lookup import GeofenceLookup, GeofenceZone
from backend.app.notifications.models import Severity
from backend.app.spatial.geo import Coordinate
from backend.app.tracking.location_store import LocationSample, LocationStore

logger = logging.getLogger(__name__)

BASE_SCORE = 70.0

RECENT_ACTIVITY_MINUTES = 10
STALE_LOCATION_MINUTES = 60
RECENT_ACTIVITY_BONUS = 5
STALENESS_PENALTY = -10

FACTOR_AREA = "Area Safety Classification"
FACTOR_TIME = "Time of Day"
FACTOR_RECENT = "Recent Activity"
FACTOR_STALE = "Location Staleness"

# Evaluated highest threshold first; first match wins
_RECOMMENDATIONS = (
    (30, [
        "Consider moving to a safer area immediately",
        "Contact local authorities if you feel unsafe",
        "Share your location with emergency contacts",
    ]),
    (50, [
        "Stay alert and aware of your surroundings",
        "Avoid isolated areas",
        "Keep emergency numbers readily accessible",
    ]),
    (70, [
        "Continue to monitor your surroundings",
        "Travel with others when possible",
    ]),
)
_SAFE_RECOMMENDATIONS = [
    "You are in a relatively safe area",
    "Continue following standard safety practices",
]


# ═══════════════════════════════════════════════════════════════════════════
# Result types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScoreFactor:
    name: str
    impact: float
    details: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "impact": self.impact, "details": self.details}


@dataclass(frozen=True)
class SafetyScoreResult:
    score: float
    coordinates: Coordinate
    factors: List[ScoreFactor] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    zones: List[GeofenceZone] = field(default_factory=list)
    degraded_signals: List[str] = field(default_factory=list)
    base_score: float = BASE_SCORE
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def risk_level(self) -> str:
        return risk_level(self.score)

    def factor(self, name: str) -> Optional[ScoreFactor]:
        return next((f for f in self.factors if f.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.score,
            "base_score": self.base_score,
            "risk_level": self.risk_level,
            "location": {
                "coordinates": self.coordinates.to_dict(),
                "geofences": [
                    {"name": z.name, "type": z.type, "safety_level": z.safety_level.value}
                    for z in self.zones
                ],
            },
            "factors": [f.to_dict() for f in self.factors],
            "recommendations": list(self.recommendations),
            "degraded_signals": list(self.degraded_signals),
            "calculated_at": self.computed_at.isoformat(),
        }


def risk_level(score: float) -> str:
    """critical < 30 ≤ high < 50 ≤ medium < 70 ≤ low"""
    if score < 30:
        return "critical"
    if score < 50:
        return "high"
    if score < 70:
        return "medium"
    return "low"


def severity_for_score(score: Optional[float], default: Severity = Severity.HIGH) -> Severity:
    """Alert severity from a score; ``default`` when no score is available."""
    if score is None:
        return default
    return Severity(risk_level(score))


def time_of_day_impact(hour: int) -> int:
    if 6 <= hour <= 18:
        return 10
    if 19 <= hour <= 22:
        return -5
    return -15


def recommendations_for(score: float) -> List[str]:
    for threshold, recs in _RECOMMENDATIONS:
        if score < threshold:
            return list(recs)
    return list(_SAFE_RECOMMENDATIONS)


def clamp(score: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, score))


# ═══════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════

class SafetyScoreEngine:
    """
    Computes a SafetyScoreResult from geofences, local time and recency.

    Parameters
    ----------
    geofences : GeofenceLookup
        Zone containment collaborator.
    locations : LocationStore
        Last-known locations (used by ``compute_enhanced_safety_score``).
    tz_name : str
        IANA zone for the hour-of-day factor.
    collaborator_timeout : float
        Seconds before a lookup counts as unavailable.
    clock : callable, optional
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        geofences: GeofenceLookup,
        locations: LocationStore,
        *,
        tz_name: str = "UTC",
        collaborator_timeout: float = 3.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._geofences = geofences
        self._locations = locations
        self._tz = ZoneInfo(tz_name)
        self._timeout = collaborator_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _lookup_zones(self, coordinates: Coordinate) -> List[GeofenceZone]:
        try:
            return await asyncio.wait_for(
                self._geofences.find_containing_geofences(coordinates.longitude, coordinates.latitude),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise CollaboratorUnavailableError("geofence", "lookup timed out") from exc
        except SafetyPlatformError:
            raise
        except Exception as exc:
            raise CollaboratorUnavailableError("geofence", str(exc)) from exc

    async def compute(
        self,
        coordinates: Coordinate,
        recent_sample: Optional[LocationSample] = None,
        *,
        degraded: Optional[List[str]] = None,
    ) -> SafetyScoreResult:
        now = self._clock()
        degraded = list(degraded or [])
        factors: List[ScoreFactor] = []
        score = BASE_SCORE

        # ── Area classification ──
        zones: List[GeofenceZone] = []
        try:
            zones = await self._lookup_zones(coordinates)
        except CollaboratorUnavailableError as exc:
            logger.warning("Safety score degraded: %s", exc.message)
            degraded.append("geofence")

        if zones:
            avg = sum(z.safety_level.score for z in zones) / len(zones)
            score = (score + avg) / 2
            factors.append(ScoreFactor(
                name=FACTOR_AREA,
                impact=avg - BASE_SCORE,
                details=", ".join(f"{z.name}: {z.safety_level.value}" for z in zones),
            ))

        # ── Time of day ──
        hour = now.astimezone(self._tz).hour
        time_impact = time_of_day_impact(hour)
        score += time_impact
        factors.append(ScoreFactor(name=FACTOR_TIME, impact=time_impact, details=f"Current hour: {hour}:00"))

        # ── Recency ──
        if recent_sample is not None:
            minutes = recent_sample.age_minutes(now)
            if minutes < RECENT_ACTIVITY_MINUTES:
                score += RECENT_ACTIVITY_BONUS
                factors.append(ScoreFactor(
                    name=FACTOR_RECENT, impact=RECENT_ACTIVITY_BONUS,
                    details="Active location tracking detected",
                ))
            elif minutes > STALE_LOCATION_MINUTES:
                score += STALENESS_PENALTY
                factors.append(ScoreFactor(
                    name=FACTOR_STALE, impact=STALENESS_PENALTY,
                    details=f"Last update: {round(minutes)} minutes ago",
                ))

        score = clamp(score)
        return SafetyScoreResult(
            score=score,
            coordinates=coordinates,
            factors=factors,
            recommendations=recommendations_for(score),
            zones=zones,
            degraded_signals=degraded,
            computed_at=now,
        )

    async def compute_enhanced_safety_score(
        self,
        tourist_id: str,
        coordinates: Optional[Coordinate] = None,
    ) -> SafetyScoreResult:
        """
        Score for a tourist, using their latest location as recency sample.

        The stored location doubles as the coordinates when none are given;
        with neither available a ValidationError is raised.
        """
        degraded: List[str] = []
        sample: Optional[LocationSample] = None
        try:
            sample = await asyncio.wait_for(
                self._locations.get_latest_location(tourist_id), timeout=self._timeout,
            )
        except (asyncio.TimeoutError, CollaboratorUnavailableError) as exc:
            logger.warning("Location lookup for %s unavailable: %s", tourist_id, exc)
            degraded.append("location")
        except SafetyPlatformError:
            raise
        except Exception as exc:
            logger.warning("Location lookup for %s failed: %s", tourist_id, exc)
            degraded.append("location")

        if coordinates is None:
            if sample is None:
                raise ValidationError(
                    "No location data available. Provide coordinates or enable location sharing.",
                    field="coordinates",
                )
            coordinates = sample.coordinates

        return await self.compute(coordinates, sample, degraded=degraded)
