"""
models.py — Emergency and tracking-state data structures.

═══════════════════════════════════════════════════════════════════════════
EMERGENCY STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    (none) ──report_sos──▶ ACTIVE ──respond──▶ RESPONDED
                             │                    │
                             └──────resolve───────┴──▶ RESOLVED (terminal)

    • ACTIVE is entered exactly once per emergency id
    • No transition leaves RESOLVED; notes, status changes and alerts on a
      resolved emergency raise StateTransitionError
    • The timeline is append-only
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from backend.app.notifications.models import Severity
from backend.app.spatial.geo import Coordinate


class EmergencyStatus(str, Enum):
    ACTIVE    = "active"
    RESPONDED = "responded"
    RESOLVED  = "resolved"


class EmergencyType(str, Enum):
    SOS     = "sos"
    MEDICAL = "medical"
    POLICE  = "police"
    FIRE    = "fire"
    GENERAL = "general"


class TimelineAction(str, Enum):
    CREATED           = "created"
    NOTIFICATION_SENT = "notification_sent"
    RESPONDED         = "responded"
    NOTE              = "note"
    ALERT_SENT        = "alert_sent"
    RESOLVED          = "resolved"


# Allowed transitions: current status → statuses reachable from it
TRANSITIONS: Dict[EmergencyStatus, tuple] = {
    EmergencyStatus.ACTIVE: (EmergencyStatus.RESPONDED, EmergencyStatus.RESOLVED),
    EmergencyStatus.RESPONDED: (EmergencyStatus.RESOLVED,),
    EmergencyStatus.RESOLVED: (),
}


def _generate_id() -> str:
    return f"SOS-{uuid.uuid4().hex[:10].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _parse_ts(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    ts = raw if isinstance(raw, datetime) else datetime.fromisoformat(raw)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TimelineEntry:
    action: TimelineAction
    actor: str
    note: str = ""
    at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action.value, "note": self.note, "actor": self.actor, "at": self.at.isoformat()}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "TimelineEntry":
        return cls(
            action=TimelineAction(raw["action"]),
            actor=raw["actor"],
            note=raw.get("note", ""),
            at=_parse_ts(raw["at"]),
        )


@dataclass
class EmergencyRecord:
    """
    One reported emergency, owned by the EmergencyCoordinator.

    Attributes
    ----------
    id : str
        Emergency id (``SOS-XXXXXXXXXX`` unless supplied by the caller).
    tourist_id : str
        Reporting tourist.
    coordinates, address
        Where the emergency was reported.
    timeline : list of TimelineEntry
        Append-only audit log.
    """
    tourist_id: str
    coordinates: Coordinate
    type: EmergencyType = EmergencyType.SOS
    severity: Severity = Severity.CRITICAL
    status: EmergencyStatus = EmergencyStatus.ACTIVE
    address: Optional[str] = None
    message: str = ""
    timeline: List[TimelineEntry] = field(default_factory=list)
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    resolved_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.status is EmergencyStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tourist_id": self.tourist_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "location": {"coordinates": self.coordinates.to_dict(), "address": self.address},
            "message": self.message,
            "timeline": [t.to_dict() for t in self.timeline],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "resolved_at": _iso(self.resolved_at),
        }


@dataclass(frozen=True)
class TrackingAlert:
    type: str
    message: str
    severity: str
    at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message, "severity": self.severity, "at": self.at.isoformat()}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "TrackingAlert":
        return cls(type=raw["type"], message=raw["message"], severity=raw["severity"], at=_parse_ts(raw["at"]))


@dataclass
class TrackingState:
    """Per-tourist tracking status, flipped to "emergency" by an SOS."""
    tourist_id: str
    status: str = "active"  # active | emergency
    current_location: Optional[Coordinate] = None
    has_active_emergency: bool = False
    last_emergency_id: Optional[str] = None
    emergency_level: Optional[str] = None
    alerts: List[TrackingAlert] = field(default_factory=list)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tourist_id": self.tourist_id,
            "status": self.status,
            "current_location": self.current_location.to_dict() if self.current_location else None,
            "emergency_info": {
                "has_active_emergency": self.has_active_emergency,
                "last_emergency_id": self.last_emergency_id,
                "emergency_level": self.emergency_level,
            },
            "alerts": [a.to_dict() for a in self.alerts],
            "updated_at": self.updated_at.isoformat(),
        }
