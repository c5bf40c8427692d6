"""
models.py — Shared data structures for notification fan-out.

Defines:
    • NotificationType — closed set of notification kinds
    • Severity         — ordinal urgency level
    • Channel          — delivery channel enum
    • Notification     — one logical, immutable message
    • Recipient        — a target user with contact info + preferences
    • DispatchResult   — outcome of one attempt on one channel
    • RecipientOutcome — all attempts for one recipient, OR-reduced
    • DispatchSummary  — final counts for a whole fan-out
    • HistoryEntry     — what the history store keeps per recipient

═══════════════════════════════════════════════════════════════════════════
DELIVERY POLICY
═══════════════════════════════════════════════════════════════════════════

    Condition                          Effect
    ─────────────────────────────────  ─────────────────────────────────────
    preferences[type] is False         recipient filtered (not failed)
    emergency type + critical          preference filter bypassed
    critical severity                  push: sound="default", priority=high
    emergency type or critical         SMS body prefixed "EMERGENCY: "
    no token / email / phone matching  recipient failed, reason "no channel"

A recipient is successful iff at least one attempted channel succeeded.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from backend.app.core.errors import ValidationError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class NotificationType(str, Enum):
    """Closed set of notification kinds (wire values match the mobile client)."""
    EMERGENCY     = "emergency"
    CHECK_IN      = "checkIn"
    WEATHER_ALERT = "weatherAlert"
    SAFETY_UPDATE = "safetyUpdate"
    GEOFENCE      = "geofence"
    SYSTEM        = "system"


class Severity(str, Enum):
    """Ordinal urgency level."""
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class Channel(str, Enum):
    """Available delivery channels."""
    PUSH  = "push"
    EMAIL = "email"
    SMS   = "sms"


ALL_CHANNELS = (Channel.PUSH, Channel.EMAIL, Channel.SMS)

NO_CHANNEL = "no channel"


def parse_enum(enum_cls, value: Any, field_name: str):
    """Coerce a raw value into ``enum_cls`` or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}'. Allowed: {allowed}",
            field=field_name,
        ) from None


def parse_channels(values: Iterable[Any]) -> List[Channel]:
    """Deduplicate requested channels, keeping request order."""
    channels: List[Channel] = []
    for raw in values:
        channel = parse_enum(Channel, raw, "channels")
        if channel not in channels:
            channels.append(channel)
    return channels


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"NTF-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(raw)


@dataclass(frozen=True)
class Notification:
    """
    One logical message, fanned out unchanged to every recipient.

    ``data`` is copied into a read-only mapping on construction so that no
    channel can mutate it mid-dispatch.
    """
    type: NotificationType
    title: str
    body: str
    severity: Severity = Severity.MEDIUM
    data: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    notification_id: str = field(default_factory=_generate_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", parse_enum(NotificationType, self.type, "type"))
        object.__setattr__(self, "severity", parse_enum(Severity, self.severity, "severity"))
        object.__setattr__(self, "data", MappingProxyType(dict(self.data or {})))

    @property
    def is_life_safety(self) -> bool:
        """Emergency at critical severity: delivered regardless of preferences."""
        return self.type is NotificationType.EMERGENCY and self.severity is Severity.CRITICAL

    @property
    def is_emergency(self) -> bool:
        return self.type is NotificationType.EMERGENCY or self.severity is Severity.CRITICAL

    def validate(self) -> None:
        if not self.title or not self.title.strip():
            raise ValidationError("Notification title is required", field="title")
        if not self.body or not self.body.strip():
            raise ValidationError("Notification body is required", field="body")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "body": self.body,
            "data": dict(self.data),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Notification":
        return cls(
            type=raw["type"],
            title=raw["title"],
            body=raw["body"],
            severity=raw.get("severity", Severity.MEDIUM.value),
            data=raw.get("data") or {},
            created_at=_parse_ts(raw["created_at"]),
            notification_id=raw["notification_id"],
        )


@dataclass
class Recipient:
    """
    A target user for delivery.

    Attributes
    ----------
    id : str
        User / tourist id; also the history key.
    name : str | None
        Display name used in the email greeting ("Tourist" when absent).
    email, phone_number, push_token : str | None
        Contact points; each enables one channel.
    preferences : dict
        notification-type value → bool. Missing means opted in.
    """
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    push_token: Optional[str] = None
    preferences: Dict[str, bool] = field(default_factory=dict)

    def allows(self, notification_type: NotificationType) -> bool:
        return self.preferences.get(notification_type.value) is not False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone_number": self.phone_number,
            "has_push_token": self.push_token is not None,
            "preferences": dict(self.preferences),
        }


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one channel attempt for one recipient."""
    channel: Channel
    success: bool
    recipient_id: str = ""
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def delivered(cls, channel: Channel, recipient_id: str, message_id: Optional[str]) -> "DispatchResult":
        return cls(channel=channel, success=True, recipient_id=recipient_id,
                   provider_message_id=message_id)

    @classmethod
    def failed(cls, channel: Channel, recipient_id: str, error: str) -> "DispatchResult":
        return cls(channel=channel, success=False, recipient_id=recipient_id, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "success": self.success,
            "recipient_id": self.recipient_id,
            "provider_message_id": self.provider_message_id,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DispatchResult":
        return cls(
            channel=Channel(raw["channel"]),
            success=bool(raw["success"]),
            recipient_id=raw.get("recipient_id", ""),
            provider_message_id=raw.get("provider_message_id"),
            error=raw.get("error"),
            timestamp=_parse_ts(raw["timestamp"]),
        )


@dataclass
class RecipientOutcome:
    """All channel attempts for one recipient in one dispatch."""
    recipient_id: str
    results: List[DispatchResult] = field(default_factory=list)
    filtered: bool = False
    reason: Optional[str] = None

    @property
    def successful(self) -> bool:
        """OR-reduction over channel attempts."""
        return any(r.success for r in self.results)

    @property
    def status(self) -> str:
        if self.filtered:
            return "filtered"
        return "delivered" if self.successful else "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "status": self.status,
            "reason": self.reason,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class ChannelCounts:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"attempted": self.attempted, "succeeded": self.succeeded, "failed": self.failed}


@dataclass
class DispatchSummary:
    """Final counts for one fan-out. Never raised for partial failure."""
    notification: Notification
    total_users: int = 0
    successful: int = 0
    failed: int = 0
    filtered: int = 0
    per_channel_counts: Dict[Channel, ChannelCounts] = field(default_factory=dict)
    outcomes: List[RecipientOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_id": self.notification.notification_id,
            "type": self.notification.type.value,
            "severity": self.notification.severity.value,
            "success": self.success,
            "total_users": self.total_users,
            "successful": self.successful,
            "failed": self.failed,
            "filtered": self.filtered,
            "per_channel_counts": {
                c.value: counts.to_dict() for c, counts in self.per_channel_counts.items()
            },
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass(frozen=True)
class HistoryEntry:
    """One notification as seen by one recipient, with its channel results."""
    notification: Notification
    results: List[DispatchResult]
    sender_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    @property
    def successful(self) -> bool:
        return any(r.success for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification": self.notification.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "sender_id": self.sender_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "HistoryEntry":
        return cls(
            notification=Notification.from_dict(raw["notification"]),
            results=[DispatchResult.from_dict(r) for r in raw.get("results", [])],
            sender_id=raw.get("sender_id"),
            timestamp=_parse_ts(raw["timestamp"]),
        )
