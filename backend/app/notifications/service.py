"""
service.py — Public notification operations.

The REST layer talks to this facade only. It turns API-level requests
(user ids, geofence events, channel self-tests) into Notifications and
hands them to the dispatcher; emergency re-alerts go through the
EmergencyCoordinator so the emergency timeline stays authoritative.

    send_notification              arbitrary typed notification to user ids
    send_emergency_alert           nearby re-alert for an open emergency
    send_geofence_alert            entry/exit push for one tourist
    get_history                    filtered, paginated history + statistics
    update_preferences             per-type opt-in/opt-out
    register_token / deactivate    push-token registry
    compute_enhanced_safety_score  safety score for a tourist
    test_channels                  system notification to verify providers
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from backend.app.core.errors import ValidationError
from backend.app.emergency.coordinator import EmergencyCoordinator
from backend.app.geofence.lookup import GeofenceLookup, SafetyLevel
from backend.app.notifications.dispatcher import NotificationDispatcher
from backend.app.notifications.history import HistoryFilter, HistoryPage, NotificationHistoryStore
from backend.app.notifications.models import (
    ALL_CHANNELS,
    Channel,
    DispatchSummary,
    Notification,
    NotificationType,
    Recipient,
    Severity,
    parse_enum,
)
from backend.app.notifications.recipients import RecipientResolver, UserProfile
from backend.app.notifications.registry import PushRegistration, PushTokenRegistry
from backend.app.safety.score_engine import SafetyScoreEngine, SafetyScoreResult
from backend.app.spatial.geo import Coordinate

logger = logging.getLogger(__name__)

GEOFENCE_ACTION_URL = "/location/geofences"
TEST_TITLE = "🧪 Travo Multi-Channel Test"
TEST_BODY = "This is a test notification to verify all communication channels are working properly."

# Zone classification (or legacy danger/warning labels) → alert severity
_GEOFENCE_SEVERITY: Dict[str, Severity] = {
    SafetyLevel.DANGEROUS.value: Severity.HIGH,
    SafetyLevel.UNSAFE.value: Severity.HIGH,
    "danger": Severity.HIGH,
    SafetyLevel.MODERATE.value: Severity.MEDIUM,
    "warning": Severity.MEDIUM,
}

_ENTRY_EVENTS = {"entry", "enter"}
_EXIT_EVENTS = {"exit"}


def geofence_severity(safety_level: Optional[str]) -> Severity:
    return _GEOFENCE_SEVERITY.get((safety_level or "").lower(), Severity.LOW)


class NotificationService:

    def __init__(
        self,
        *,
        dispatcher: NotificationDispatcher,
        history: NotificationHistoryStore,
        registry: PushTokenRegistry,
        resolver: RecipientResolver,
        geofences: GeofenceLookup,
        coordinator: EmergencyCoordinator,
        safety: SafetyScoreEngine,
    ) -> None:
        self._dispatcher = dispatcher
        self._history = history
        self._registry = registry
        self._resolver = resolver
        self._geofences = geofences
        self._coordinator = coordinator
        self._safety = safety

    # ── Sending ──

    async def send_notification(
        self,
        type: NotificationType,
        recipient_ids: Iterable[str],
        *,
        title: str,
        body: str,
        data: Optional[Mapping[str, Any]] = None,
        severity: Severity = Severity.MEDIUM,
        channels: Iterable[Any] = ALL_CHANNELS,
        sender_id: Optional[str] = None,
        override_preferences: bool = False,
    ) -> DispatchSummary:
        ids = [r for r in recipient_ids if r]
        if not ids:
            raise ValidationError("At least one recipient is required", field="recipients")

        notification = Notification(
            type=parse_enum(NotificationType, type, "type"),
            severity=parse_enum(Severity, severity, "severity"),
            title=title,
            body=body,
            data=dict(data or {}),
        )
        notification.validate()
        recipients = await self._resolver.resolve_many(ids)
        return await self._dispatcher.dispatch(
            notification, recipients, list(channels),
            sender_id=sender_id, override_preferences=override_preferences,
        )

    async def send_emergency_alert(
        self,
        emergency_id: str,
        location: Optional[Coordinate] = None,
        message: Optional[str] = None,
        *,
        radius_m: Optional[float] = None,
        sender_id: Optional[str] = None,
    ) -> DispatchSummary:
        return await self._coordinator.send_emergency_alert(
            emergency_id, location, message, radius_m, sender_id=sender_id,
        )

    async def send_geofence_alert(
        self,
        user_id: str,
        geofence_id: str,
        event_type: str,
        *,
        safety_level: Optional[str] = None,
        coordinates: Optional[Coordinate] = None,
    ) -> DispatchSummary:
        """
        Push an entry/exit alert for one geofence.

        ``safety_level`` overrides the zone's own classification when given.
        Geofence alerts respect the tourist's preferences.
        """
        event = (event_type or "").lower()
        if event in _ENTRY_EVENTS:
            verb_title, verb_body = "Entered", "entered"
        elif event in _EXIT_EVENTS:
            verb_title, verb_body = "Exited", "left"
        else:
            raise ValidationError(
                f"Invalid event_type '{event_type}'. Allowed: entry, exit", field="event_type",
            )

        zone = await self._geofences.get(geofence_id)
        level = safety_level or zone.safety_level.value
        data: Dict[str, Any] = {
            "geofence_id": zone.geofence_id,
            "event_type": "entry" if event in _ENTRY_EVENTS else "exit",
            "safety_level": level,
            "action_url": GEOFENCE_ACTION_URL,
        }
        if coordinates is not None:
            data["coordinates"] = coordinates.to_dict()

        notification = Notification(
            type=NotificationType.GEOFENCE,
            severity=geofence_severity(level),
            title=f"📍 {verb_title} {zone.name}",
            body=f"You have {verb_body} a {level} safety zone: {zone.name}",
            data=data,
        )
        recipient = await self._resolver.resolve(user_id)
        logger.info("Geofence %s alert for %s at %s", data["event_type"], user_id, zone.name)
        return await self._dispatcher.dispatch(notification, [recipient], [Channel.PUSH])

    async def test_channels(
        self,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        channels: Iterable[Any] = ALL_CHANNELS,
    ) -> DispatchSummary:
        """Send a system test notification to an email, phone or registered user."""
        if not (email or phone_number or user_id):
            raise ValidationError("Email, phone number or user id is required for testing")

        if user_id:
            recipient = await self._resolver.resolve(user_id)
            recipient.email = email or recipient.email
            recipient.phone_number = phone_number or recipient.phone_number
            recipient.name = recipient.name or "Test User"
        else:
            recipient = Recipient(
                id=f"channel-test-{uuid.uuid4().hex[:8]}",
                name="Test User",
                email=email,
                phone_number=phone_number,
            )

        notification = Notification(
            type=NotificationType.SYSTEM,
            severity=Severity.LOW,
            title=TEST_TITLE,
            body=TEST_BODY,
            data={
                "test_id": f"test_{uuid.uuid4().hex[:12]}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        return await self._dispatcher.dispatch(
            notification, [recipient], list(channels), override_preferences=True,
        )

    # ── History & preferences ──

    async def get_history(self, user_id: str, filters: Optional[HistoryFilter] = None) -> HistoryPage:
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        return await self._history.query(user_id, filters)

    def update_preferences(self, user_id: str, preferences: Mapping[str, Any]) -> Dict[str, bool]:
        return self._registry.update_preferences(user_id, preferences)

    def register_token(
        self,
        user_id: str,
        token: str,
        *,
        platform: str = "unknown",
        preferences: Optional[Mapping[str, Any]] = None,
    ) -> PushRegistration:
        return self._registry.register_token(user_id, token, platform=platform, preferences=preferences)

    def deactivate_token(self, user_id: str) -> PushRegistration:
        return self._registry.deactivate(user_id)

    # ── Safety ──

    async def compute_enhanced_safety_score(
        self,
        tourist_id: str,
        coordinates: Optional[Coordinate] = None,
    ) -> SafetyScoreResult:
        if not tourist_id:
            raise ValidationError("tourist_id is required", field="tourist_id")
        return await self._safety.compute_enhanced_safety_score(tourist_id, coordinates)

    async def profile(self, user_id: str) -> UserProfile:
        return await self._resolver.profile(user_id)
