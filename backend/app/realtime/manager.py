"""
manager.py — WebSocket connection registry.

Connections are grouped by role:

    tourist    keyed by tourist id (several devices per tourist allowed)
    dashboard  one shared pool for operators

Nearby broadcasts resolve tourist positions through the LocationStore, so
a tourist counts as "nearby" only while connected and with a last-known
location inside the radius.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, DefaultDict, Dict, Iterable, List, Set

from fastapi import WebSocket

from backend.app.realtime.broadcaster import Broadcaster
from backend.app.spatial.geo import Coordinate, filter_within_radius
from backend.app.tracking.location_store import LocationStore

logger = logging.getLogger(__name__)


def _envelope(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "event": event,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class ConnectionManager(Broadcaster):
    """Manage active websocket connections and fan events out to them."""

    def __init__(self, location_store: LocationStore) -> None:
        self._locations = location_store
        self._tourists: DefaultDict[str, Set[WebSocket]] = defaultdict(set)
        self._dashboards: Set[WebSocket] = set()

    async def connect_tourist(self, tourist_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._tourists[tourist_id].add(websocket)
        logger.info("Tourist %s connected (%d sockets)", tourist_id, len(self._tourists[tourist_id]))

    async def connect_dashboard(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._dashboards.add(websocket)
        logger.info("Dashboard connected (%d total)", len(self._dashboards))

    def disconnect(self, websocket: WebSocket, tourist_id: str = "") -> None:
        self._dashboards.discard(websocket)
        if tourist_id:
            sockets = self._tourists.get(tourist_id)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                self._tourists.pop(tourist_id, None)

    @property
    def connected_tourists(self) -> List[str]:
        return list(self._tourists.keys())

    @property
    def dashboard_count(self) -> int:
        return len(self._dashboards)

    async def _send(self, sockets: Iterable[WebSocket], message: Dict[str, Any], tourist_id: str = "") -> int:
        reached = 0
        for socket in list(sockets):
            try:
                await socket.send_json(message)
                reached += 1
            except Exception as exc:
                logger.warning("Dropping dead websocket (%s): %s", tourist_id or "dashboard", exc)
                self.disconnect(socket, tourist_id)
        return reached

    # ── Broadcaster ──

    async def broadcast_to_dashboard(self, event: str, payload: Dict[str, Any]) -> int:
        return await self._send(self._dashboards, _envelope(event, payload))

    async def broadcast_to_nearby(
        self,
        coordinates: Coordinate,
        radius_m: float,
        event: str,
        payload: Dict[str, Any],
        *,
        exclude: Iterable[str] = (),
    ) -> int:
        skip = set(exclude)
        latest = await self._locations.latest_locations()
        candidates = [
            (tid, latest[tid].coordinates)
            for tid in self._tourists
            if tid not in skip and tid in latest
        ]
        message = _envelope(event, payload)
        reached = 0
        for tourist_id, _distance in filter_within_radius(coordinates, candidates, radius_m):
            reached += await self._send(self._tourists.get(tourist_id, set()), message, tourist_id)
        return reached

    async def emit_to(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        sockets = self._tourists.get(connection_id)
        if not sockets:
            return False
        return await self._send(sockets, _envelope(event, payload), connection_id) > 0
