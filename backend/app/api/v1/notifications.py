"""
FastAPI routes: multi-channel notifications.

Endpoints:
    POST /api/v1/notifications/send              — typed notification to user ids
    POST /api/v1/notifications/emergency-alert   — re-alert tourists near an emergency
    POST /api/v1/notifications/geofence-alert    — geofence entry/exit push
    POST /api/v1/notifications/register-token    — register an Expo push token
    POST /api/v1/notifications/deactivate-token  — stop push for a user
    PUT  /api/v1/notifications/preferences/{id}  — per-type opt-in/opt-out
    GET  /api/v1/notifications/history/{id}      — filtered history + statistics
    POST /api/v1/notifications/test-channels     — channel self-test
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.app.dependencies import Platform, get_platform
from backend.app.notifications.history import HistoryFilter
from backend.app.notifications.models import ALL_CHANNELS, NotificationType, Severity
from backend.app.spatial.geo import Coordinate

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])

_DEFAULT_CHANNELS = [c.value for c in ALL_CHANNELS]


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class CoordinatesInput(BaseModel):
    latitude: float = Field(..., ge=-90, le=90, examples=[28.6139])
    longitude: float = Field(..., ge=-180, le=180, examples=[77.2090])

    def to_coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class SendNotificationRequest(BaseModel):
    """A typed notification for one or more users."""
    type: NotificationType = Field(..., examples=["safetyUpdate"])
    recipients: List[str] = Field(..., min_length=1, examples=[["tourist-1"]])
    title: str = Field(..., min_length=1, examples=["Safety update"])
    body: str = Field(..., min_length=1, examples=["Roads near the fort are closed tonight."])
    severity: Severity = Field(Severity.MEDIUM)
    data: Dict[str, Any] = Field(default_factory=dict)
    channels: List[str] = Field(default_factory=lambda: list(_DEFAULT_CHANNELS))
    sender_id: Optional[str] = None


class EmergencyAlertRequest(BaseModel):
    emergency_id: str = Field(..., examples=["SOS-1A2B3C4D5E"])
    location: Optional[CoordinatesInput] = None
    message: Optional[str] = None
    radius_m: Optional[float] = Field(None, ge=0, examples=[5000])
    sender_id: Optional[str] = None


class GeofenceAlertRequest(BaseModel):
    user_id: str = Field(..., examples=["tourist-1"])
    geofence_id: str = Field(..., examples=["old-town"])
    event_type: str = Field(..., examples=["entry"], description="entry / exit")
    safety_level: Optional[str] = Field(None, examples=["dangerous"])
    coordinates: Optional[CoordinatesInput] = None


class RegisterTokenRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    push_token: str = Field(..., examples=["ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]"])
    platform: str = Field("unknown", examples=["ios"])
    preferences: Optional[Dict[str, bool]] = None


class DeactivateTokenRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class PreferencesRequest(BaseModel):
    preferences: Dict[str, Any] = Field(..., examples=[{"weatherAlert": False}])


class ChannelTestRequest(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    channels: List[str] = Field(default_factory=lambda: list(_DEFAULT_CHANNELS))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/send", summary="Send a notification to users")
async def send_notification(request: SendNotificationRequest, platform: Platform = Depends(get_platform)):
    summary = await platform.notifications.send_notification(
        request.type,
        request.recipients,
        title=request.title,
        body=request.body,
        data=request.data,
        severity=request.severity,
        channels=request.channels,
        sender_id=request.sender_id,
    )
    return {"success": summary.success, "summary": summary.to_dict()}


@router.post("/emergency-alert", summary="Alert tourists near an open emergency")
async def send_emergency_alert(request: EmergencyAlertRequest, platform: Platform = Depends(get_platform)):
    summary = await platform.notifications.send_emergency_alert(
        request.emergency_id,
        request.location.to_coordinate() if request.location else None,
        request.message,
        radius_m=request.radius_m,
        sender_id=request.sender_id,
    )
    return {"success": summary.success, "summary": summary.to_dict()}


@router.post("/geofence-alert", summary="Send a geofence entry/exit alert")
async def send_geofence_alert(request: GeofenceAlertRequest, platform: Platform = Depends(get_platform)):
    summary = await platform.notifications.send_geofence_alert(
        request.user_id,
        request.geofence_id,
        request.event_type,
        safety_level=request.safety_level,
        coordinates=request.coordinates.to_coordinate() if request.coordinates else None,
    )
    return {"success": summary.success, "summary": summary.to_dict()}


@router.post("/register-token", summary="Register an Expo push token")
async def register_token(request: RegisterTokenRequest, platform: Platform = Depends(get_platform)):
    registration = platform.notifications.register_token(
        request.user_id,
        request.push_token,
        platform=request.platform,
        preferences=request.preferences,
    )
    return {"success": True, "registration": registration.to_dict()}


@router.post("/deactivate-token", summary="Deactivate a user's push token")
async def deactivate_token(request: DeactivateTokenRequest, platform: Platform = Depends(get_platform)):
    registration = platform.notifications.deactivate_token(request.user_id)
    return {"success": True, "registration": registration.to_dict()}


@router.put("/preferences/{user_id}", summary="Update notification preferences")
async def update_preferences(
    user_id: str,
    request: PreferencesRequest,
    platform: Platform = Depends(get_platform),
):
    preferences = platform.notifications.update_preferences(user_id, request.preferences)
    return {"success": True, "user_id": user_id, "preferences": preferences}


@router.get("/history/{user_id}", summary="Notification history with statistics")
async def get_history(
    user_id: str,
    type: Optional[NotificationType] = Query(None),
    channel: Optional[str] = Query(None),
    days: int = Query(30, ge=0, le=365),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    platform: Platform = Depends(get_platform),
):
    filters = HistoryFilter(type=type, channel=channel, days=days, limit=limit, offset=offset)
    page = await platform.notifications.get_history(user_id, filters)
    return {"success": True, **page.to_dict()}


@router.post("/test-channels", summary="Send a test notification on each channel")
async def test_channels(request: ChannelTestRequest, platform: Platform = Depends(get_platform)):
    summary = await platform.notifications.test_channels(
        user_id=request.user_id,
        email=request.email,
        phone_number=request.phone_number,
        channels=request.channels,
    )
    return {"success": summary.success, "summary": summary.to_dict()}
