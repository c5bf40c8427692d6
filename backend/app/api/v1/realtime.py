"""
WebSocket routes: tourist devices and operator dashboards.

Endpoints:
    WS /ws/tourist/{tourist_id}   — mobile client channel
    WS /ws/dashboard              — operator dashboard feed

Tourist messages (JSON, field ``type``):
    ping              → {"type": "pong"}
    location_update   latitude, longitude[, accuracy_m] → stored as last-known
                      location, answered with "location_ack"
    sos               latitude, longitude[, message, address] → full SOS
                      flow, answered with "sos_ack" and the emergency id

Everything the platform pushes arrives as {event, payload, timestamp}.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from backend.app.core.errors import SafetyPlatformError
from backend.app.dependencies import Platform, get_platform
from backend.app.spatial.geo import Coordinate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _coordinate(message: Dict[str, Any]) -> Coordinate:
    return Coordinate(latitude=message.get("latitude"), longitude=message.get("longitude"))


async def _handle_tourist_message(
    platform: Platform, tourist_id: str, message: Dict[str, Any],
) -> Dict[str, Any]:
    kind = message.get("type")
    if kind == "ping":
        return {"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}

    if kind == "location_update":
        sample = await platform.locations.record_location(
            tourist_id, _coordinate(message), accuracy_m=message.get("accuracy_m"),
        )
        return {"type": "location_ack", "location": sample.to_dict()}

    if kind == "sos":
        report = await platform.coordinator.report_sos(
            tourist_id,
            _coordinate(message),
            address=message.get("address"),
            message=message.get("message", ""),
        )
        return {
            "type": "sos_ack",
            "emergency_id": report.record.id,
            "degraded": report.degraded,
        }

    return {"type": "error", "message": f"Unknown message type '{kind}'"}


@router.websocket("/ws/tourist/{tourist_id}")
async def tourist_socket(websocket: WebSocket, tourist_id: str, platform: Platform = Depends(get_platform)):
    manager = platform.connections
    await manager.connect_tourist(tourist_id, websocket)
    try:
        await websocket.send_json({"type": "connected", "tourist_id": tourist_id})
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue
            try:
                reply = await _handle_tourist_message(platform, tourist_id, message)
            except SafetyPlatformError as exc:
                reply = {"type": "error", "code": exc.error_code, "message": exc.message}
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("Tourist %s disconnected", tourist_id)
    finally:
        manager.disconnect(websocket, tourist_id)


@router.websocket("/ws/dashboard")
async def dashboard_socket(websocket: WebSocket, platform: Platform = Depends(get_platform)):
    manager = platform.connections
    await manager.connect_dashboard(websocket)
    try:
        active = await platform.coordinator.list_active()
        await websocket.send_json({
            "type": "connected",
            "active_emergencies": [r.to_dict() for r in active],
        })
        while True:
            # Dashboards only listen; inbound text keeps the socket alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Dashboard disconnected")
    finally:
        manager.disconnect(websocket)
