"""
FastAPI routes: safety score, locations and the in-process geofence store.

Endpoints:
    POST /api/v1/safety/score              — enhanced safety score for a tourist
    POST /api/v1/safety/location           — record a location sample
    POST /api/v1/safety/geofences          — register a circular zone
    GET  /api/v1/safety/geofences/at       — zones containing a point
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.app.dependencies import Platform, get_platform
from backend.app.geofence.lookup import GeofenceZone, SafetyLevel
from backend.app.spatial.geo import Coordinate

router = APIRouter(prefix="/api/v1/safety", tags=["safety"])


class SafetyScoreRequest(BaseModel):
    """Coordinates are optional; the tourist's last-known location is used otherwise."""
    tourist_id: str = Field(..., min_length=1, examples=["tourist-1"])
    latitude: Optional[float] = Field(None, ge=-90, le=90, examples=[28.6139])
    longitude: Optional[float] = Field(None, ge=-180, le=180, examples=[77.2090])


class LocationRequest(BaseModel):
    tourist_id: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_m: Optional[float] = Field(None, ge=0)


class GeofenceRequest(BaseModel):
    geofence_id: str = Field(..., min_length=1, examples=["old-town"])
    name: str = Field(..., min_length=1, examples=["Old Town Market"])
    safety_level: SafetyLevel = Field(..., examples=["moderate"])
    type: str = Field("area", examples=["market"])
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_m: float = Field(..., gt=0, examples=[500])


@router.post("/score", summary="Compute the enhanced safety score")
async def safety_score(request: SafetyScoreRequest, platform: Platform = Depends(get_platform)):
    coordinates = None
    if request.latitude is not None and request.longitude is not None:
        coordinates = Coordinate(latitude=request.latitude, longitude=request.longitude)
    result = await platform.notifications.compute_enhanced_safety_score(request.tourist_id, coordinates)
    return {"success": True, "safety_score": result.to_dict()}


@router.post("/location", summary="Record a tourist location")
async def record_location(request: LocationRequest, platform: Platform = Depends(get_platform)):
    sample = await platform.locations.record_location(
        request.tourist_id,
        Coordinate(latitude=request.latitude, longitude=request.longitude),
        accuracy_m=request.accuracy_m,
    )
    return {"success": True, "location": sample.to_dict()}


@router.post("/geofences", status_code=201, summary="Register a circular geofence")
async def register_geofence(request: GeofenceRequest, platform: Platform = Depends(get_platform)):
    zone = GeofenceZone(
        geofence_id=request.geofence_id,
        name=request.name,
        safety_level=request.safety_level,
        type=request.type,
        center=Coordinate(latitude=request.latitude, longitude=request.longitude),
        radius_m=request.radius_m,
    )
    platform.geofences.add(zone)
    return {"success": True, "geofence": zone.to_dict()}


@router.get("/geofences/at", summary="Geofences containing a point")
async def geofences_at(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    platform: Platform = Depends(get_platform),
):
    zones = await platform.geofences.find_containing_geofences(longitude, latitude)
    return {"success": True, "count": len(zones), "geofences": [z.to_dict() for z in zones]}
