"""
broadcaster.py — Realtime event interface used by the emergency path.

Events emitted by the platform:

    emergency_alert        dashboard   full emergency record on SOS
    nearby_emergency       nearby      location + message for tourists in radius
    emergency_update       dashboard   status change / note on an emergency
    emergency_status       tourist     status message to the reporting tourist
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable

from backend.app.spatial.geo import Coordinate


class Broadcaster(ABC):

    @abstractmethod
    async def broadcast_to_dashboard(self, event: str, payload: Dict[str, Any]) -> int:
        """Send to every dashboard connection; returns connections reached."""

    @abstractmethod
    async def broadcast_to_nearby(
        self,
        coordinates: Coordinate,
        radius_m: float,
        event: str,
        payload: Dict[str, Any],
        *,
        exclude: Iterable[str] = (),
    ) -> int:
        """Send to connected tourists within ``radius_m``; returns connections reached."""

    @abstractmethod
    async def emit_to(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """Send to one tourist's connections; False when not connected."""

