"""
FastAPI routes: emergency lifecycle.

Endpoints:
    POST /api/v1/emergency/sos                — report an SOS (fan-out to nearby,
                                                dashboard and emergency contacts)
    GET  /api/v1/emergency/active             — unresolved emergencies
    GET  /api/v1/emergency/{id}               — one emergency with its timeline
    POST /api/v1/emergency/{id}/respond       — responder acknowledges
    POST /api/v1/emergency/{id}/resolve       — close the emergency
    POST /api/v1/emergency/{id}/notes         — append a timeline note
    POST /api/v1/emergency/{id}/alert         — re-alert nearby tourists
    GET  /api/v1/emergency/tracking/{tourist} — tracking state of a tourist
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.app.core.errors import NotFoundError
from backend.app.dependencies import Platform, get_platform
from backend.app.emergency.models import EmergencyType
from backend.app.notifications.models import Severity
from backend.app.spatial.geo import Coordinate

router = APIRouter(prefix="/api/v1/emergency", tags=["emergency"])


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class SosRequest(BaseModel):
    """SOS report from the mobile client."""
    tourist_id: str = Field(..., min_length=1, examples=["tourist-1"])
    latitude: float = Field(..., ge=-90, le=90, examples=[28.6139])
    longitude: float = Field(..., ge=-180, le=180, examples=[77.2090])
    address: Optional[str] = Field(None, examples=["Chandni Chowk, Delhi"])
    message: str = Field("", examples=["Lost and being followed"])
    type: EmergencyType = Field(EmergencyType.SOS)
    severity: Severity = Field(Severity.CRITICAL)
    emergency_id: Optional[str] = Field(None, description="Client-generated id for idempotent retries")


class ActorRequest(BaseModel):
    actor: str = Field("system", examples=["responder-7"])
    note: str = Field("", examples=["Unit 4 dispatched"])


class NoteRequest(BaseModel):
    actor: str = Field("system")
    note: str = Field(..., min_length=1)


class AlertRequest(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    message: Optional[str] = None
    radius_m: Optional[float] = Field(None, ge=0, examples=[5000])
    sender_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/sos", status_code=201, summary="Report an SOS emergency")
async def report_sos(request: SosRequest, platform: Platform = Depends(get_platform)):
    report = await platform.coordinator.report_sos(
        request.tourist_id,
        Coordinate(latitude=request.latitude, longitude=request.longitude),
        address=request.address,
        message=request.message,
        severity=request.severity,
        type=request.type,
        emergency_id=request.emergency_id,
    )
    return {"success": True, **report.to_dict()}


@router.get("/active", summary="List unresolved emergencies")
async def list_active(platform: Platform = Depends(get_platform)):
    records = await platform.coordinator.list_active()
    return {"success": True, "count": len(records), "emergencies": [r.to_dict() for r in records]}


@router.get("/tracking/{tourist_id}", summary="Tracking state of a tourist")
async def get_tracking(tourist_id: str, platform: Platform = Depends(get_platform)):
    state = await platform.tracking.get(tourist_id)
    if state is None:
        raise NotFoundError("Tracking state", tourist_id=tourist_id)
    return {"success": True, "tracking": state.to_dict()}


@router.get("/{emergency_id}", summary="Get one emergency")
async def get_emergency(emergency_id: str, platform: Platform = Depends(get_platform)):
    record = await platform.coordinator.get(emergency_id)
    return {"success": True, "emergency": record.to_dict()}


@router.post("/{emergency_id}/respond", summary="Mark an emergency as responded")
async def respond(emergency_id: str, request: ActorRequest, platform: Platform = Depends(get_platform)):
    record = await platform.coordinator.respond(emergency_id, request.actor, request.note)
    return {"success": True, "emergency": record.to_dict()}


@router.post("/{emergency_id}/resolve", summary="Resolve an emergency")
async def resolve(emergency_id: str, request: ActorRequest, platform: Platform = Depends(get_platform)):
    record = await platform.coordinator.resolve(emergency_id, request.actor, request.note)
    return {"success": True, "emergency": record.to_dict()}


@router.post("/{emergency_id}/notes", summary="Add a timeline note")
async def add_note(emergency_id: str, request: NoteRequest, platform: Platform = Depends(get_platform)):
    record = await platform.coordinator.add_note(emergency_id, request.actor, request.note)
    return {"success": True, "emergency": record.to_dict()}


@router.post("/{emergency_id}/alert", summary="Re-alert tourists near an emergency")
async def send_alert(emergency_id: str, request: AlertRequest, platform: Platform = Depends(get_platform)):
    center = None
    if request.latitude is not None and request.longitude is not None:
        center = Coordinate(latitude=request.latitude, longitude=request.longitude)
    summary = await platform.coordinator.send_emergency_alert(
        emergency_id, center, request.message, request.radius_m, sender_id=request.sender_id,
    )
    return {"success": summary.success, "summary": summary.to_dict()}
