"""
coordinator.py — Emergency lifecycle and SOS fan-out.

═══════════════════════════════════════════════════════════════════════════
SOS FLOW (report_sos)
═══════════════════════════════════════════════════════════════════════════

    1. Persist EmergencyRecord (status ACTIVE, timeline "created")
       └─ duplicate id → StateTransitionError, nothing else happens
    2. Tracking state → status "emergency", emergency flag, location,
       critical alert; last-known location updated
    3. Safety score at the emergency location (risk context)
    4. Concurrently:
         a. nearby tourists within EMERGENCY_NEARBY_RADIUS_M
              realtime "nearby_emergency" + push "Emergency reported nearby"
              (severity from the risk level)
         b. dashboard realtime "emergency_alert" with the full record
         c. the tourist's emergency contacts: critical emergency over
              push + email + SMS, preferences ignored
    5. Timeline "notification_sent", record saved

Steps 2–5 never abort the SOS: each failure is logged and its step name
added to ``EmergencyReport.degraded``. Only step 1 can fail the call.

═══════════════════════════════════════════════════════════════════════════
LATER OPERATIONS
═══════════════════════════════════════════════════════════════════════════

    respond               ACTIVE → RESPONDED, tourist told responders are coming
    resolve               ACTIVE/RESPONDED → RESOLVED, tracking flag cleared,
                          resolution notice sent to the tourist
    add_note              timeline entry on an unresolved emergency
    send_emergency_alert  re-alert nearby tourists for an unresolved emergency

Each emergency id has its own lock, so concurrent transitions on one
emergency are serialised while different emergencies proceed in parallel.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backend.app.core.errors import (
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from backend.app.core.locks import KeyedLock
from backend.app.emergency.models import (
    TRANSITIONS,
    EmergencyRecord,
    EmergencyStatus,
    EmergencyType,
    TimelineAction,
    TimelineEntry,
    TrackingAlert,
    TrackingState,
)
from backend.app.emergency.repository import EmergencyRepository, TrackingRepository
from backend.app.notifications.dispatcher import NotificationDispatcher
from backend.app.notifications.models import (
    ALL_CHANNELS,
    Channel,
    DispatchSummary,
    Notification,
    NotificationType,
    Severity,
    parse_enum,
)
from backend.app.notifications.proximity import ProximityIndex
from backend.app.notifications.recipients import RecipientResolver
from backend.app.realtime.broadcaster import Broadcaster
from backend.app.safety.score_engine import SafetyScoreEngine, SafetyScoreResult, severity_for_score
from backend.app.spatial.geo import Coordinate
from backend.app.tracking.location_store import LocationStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

NEARBY_TITLE = "Emergency reported nearby"
NEARBY_BODY = "Emergency reported in your area. Stay alert and follow safety guidelines."
ALERT_TITLE = "EMERGENCY ALERT NEARBY"
ALERT_BODY = (
    "An emergency has been reported in your area. "
    "Please stay alert and follow safety guidelines."
)
RESPONDED_MESSAGE = "Emergency responders are on their way"
RESOLVED_MESSAGE = "Emergency situation has been resolved"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EmergencyReport:
    """What report_sos hands back: the record plus how the fan-out went."""
    record: EmergencyRecord
    safety: Optional[SafetyScoreResult] = None
    nearby: Optional[DispatchSummary] = None
    contacts: Optional[DispatchSummary] = None
    nearby_connections: int = 0
    dashboard_connections: int = 0
    degraded: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emergency": self.record.to_dict(),
            "safety": self.safety.to_dict() if self.safety else None,
            "nearby": self.nearby.to_dict() if self.nearby else None,
            "contacts": self.contacts.to_dict() if self.contacts else None,
            "realtime": {
                "nearby_connections": self.nearby_connections,
                "dashboard_connections": self.dashboard_connections,
            },
            "degraded": list(self.degraded),
        }


class EmergencyCoordinator:
    """
    Owns EmergencyRecords and drives every side effect of an emergency.

    Collaborators are injected; the realtime layer is a Broadcaster so
    tests can pass a recording double.
    """

    def __init__(
        self,
        *,
        emergencies: EmergencyRepository,
        tracking: TrackingRepository,
        locations: LocationStore,
        dispatcher: NotificationDispatcher,
        proximity: ProximityIndex,
        safety: SafetyScoreEngine,
        broadcaster: Broadcaster,
        resolver: RecipientResolver,
        nearby_radius_m: float = 2000.0,
        alert_radius_m: float = 5000.0,
    ) -> None:
        self._emergencies = emergencies
        self._tracking = tracking
        self._locations = locations
        self._dispatcher = dispatcher
        self._proximity = proximity
        self._safety = safety
        self._broadcaster = broadcaster
        self._resolver = resolver
        self._nearby_radius = nearby_radius_m
        self._alert_radius = alert_radius_m
        self._locks = KeyedLock()

    # ═══════════════════════════════════════════════════════════════════
    # SOS
    # ═══════════════════════════════════════════════════════════════════

    async def report_sos(
        self,
        tourist_id: str,
        coordinates: Coordinate,
        *,
        address: Optional[str] = None,
        message: str = "",
        severity: Severity = Severity.CRITICAL,
        type: EmergencyType = EmergencyType.SOS,
        emergency_id: Optional[str] = None,
    ) -> EmergencyReport:
        if not tourist_id:
            raise ValidationError("tourist_id is required", field="tourist_id")
        severity = parse_enum(Severity, severity, "severity")
        type = parse_enum(EmergencyType, type, "type")

        record = EmergencyRecord(
            tourist_id=tourist_id,
            coordinates=coordinates,
            type=type,
            severity=severity,
            address=address,
            message=message or "",
            timeline=[TimelineEntry(
                action=TimelineAction.CREATED, actor=SYSTEM_ACTOR,
                note=f"{type.value} emergency reported",
            )],
        )
        if emergency_id:
            record.id = emergency_id

        async with self._locks.hold(record.id):
            await self._emergencies.create(record)
            logger.warning(
                "SOS %s from %s at (%.5f, %.5f)",
                record.id, tourist_id, coordinates.latitude, coordinates.longitude,
                extra={"emergency_id": record.id, "tourist_id": tourist_id},
            )
            report = EmergencyReport(record=record)

            await self._flag_tracking(record, report)
            report.safety = await self._risk_context(record, report)

            nearby, dashboard, contacts = await asyncio.gather(
                self._notify_nearby(record, report.safety, report),
                self._notify_dashboard(record, report.safety, report),
                self._notify_contacts(record, report),
            )
            report.nearby, report.nearby_connections = nearby
            report.dashboard_connections = dashboard
            report.contacts = contacts

            record.timeline.append(TimelineEntry(
                action=TimelineAction.NOTIFICATION_SENT,
                actor=SYSTEM_ACTOR,
                note=(
                    f"nearby notified: {report.nearby.successful if report.nearby else 0}, "
                    f"contacts notified: {report.contacts.successful if report.contacts else 0}"
                ),
            ))
            record.updated_at = _now()
            try:
                await self._emergencies.save(record)
            except Exception:
                logger.exception("Saving timeline for %s failed", record.id)
                report.degraded.append("timeline")

        if report.degraded:
            logger.warning("SOS %s completed degraded: %s", record.id, ", ".join(report.degraded))
        return report

    async def _flag_tracking(self, record: EmergencyRecord, report: EmergencyReport) -> None:
        try:
            state = await self._tracking.get(record.tourist_id) or TrackingState(tourist_id=record.tourist_id)
            state.status = "emergency"
            state.current_location = record.coordinates
            state.has_active_emergency = True
            state.last_emergency_id = record.id
            state.emergency_level = record.severity.value
            state.alerts.append(TrackingAlert(
                type="emergency",
                message=f"SOS Alert: {record.message or record.type.value}",
                severity=Severity.CRITICAL.value,
            ))
            state.updated_at = _now()
            await self._tracking.save(state)
        except Exception:
            logger.exception("Tracking update for %s failed", record.tourist_id)
            report.degraded.append("tracking")

        try:
            await self._locations.record_location(record.tourist_id, record.coordinates)
        except Exception:
            logger.exception("Location update for %s failed", record.tourist_id)
            report.degraded.append("location")

    async def _risk_context(self, record: EmergencyRecord, report: EmergencyReport) -> Optional[SafetyScoreResult]:
        try:
            result = await self._safety.compute(record.coordinates)
        except Exception:
            logger.exception("Risk context for %s unavailable", record.id)
            report.degraded.append("safety_score")
            return None
        report.degraded.extend(result.degraded_signals)
        return result

    async def _notify_nearby(
        self,
        record: EmergencyRecord,
        safety: Optional[SafetyScoreResult],
        report: EmergencyReport,
    ):
        payload = {
            "emergency_id": record.id,
            "type": record.type.value,
            "location": record.coordinates.to_dict(),
            "message": NEARBY_BODY,
            "radius_m": self._nearby_radius,
        }
        reached = 0
        try:
            reached = await self._broadcaster.broadcast_to_nearby(
                record.coordinates, self._nearby_radius, "nearby_emergency", payload,
                exclude=[record.tourist_id],
            )
        except Exception:
            logger.exception("Nearby realtime broadcast for %s failed", record.id)
            report.degraded.append("realtime_nearby")

        summary = None
        try:
            recipients = await self._proximity.find_near(
                record.coordinates, self._nearby_radius, exclude=[record.tourist_id],
            )
            notification = Notification(
                type=NotificationType.EMERGENCY,
                severity=severity_for_score(safety.score if safety else None),
                title=NEARBY_TITLE,
                body=NEARBY_BODY,
                data={
                    "emergency_id": record.id,
                    "latitude": record.coordinates.latitude,
                    "longitude": record.coordinates.longitude,
                    "action_url": f"/emergency/{record.id}",
                },
            )
            summary = await self._dispatcher.dispatch(
                notification, recipients, [Channel.PUSH], sender_id=record.tourist_id,
            )
        except Exception:
            logger.exception("Nearby push for %s failed", record.id)
            report.degraded.append("proximity")
        return summary, reached

    async def _notify_dashboard(
        self,
        record: EmergencyRecord,
        safety: Optional[SafetyScoreResult],
        report: EmergencyReport,
    ) -> int:
        payload = record.to_dict()
        payload["safety"] = safety.to_dict() if safety else None
        try:
            return await self._broadcaster.broadcast_to_dashboard("emergency_alert", payload)
        except Exception:
            logger.exception("Dashboard broadcast for %s failed", record.id)
            report.degraded.append("realtime_dashboard")
            return 0

    async def _notify_contacts(self, record: EmergencyRecord, report: EmergencyReport) -> Optional[DispatchSummary]:
        try:
            contacts = await self._resolver.emergency_contacts(record.tourist_id)
            profile_name = (await self._resolver.resolve(record.tourist_id)).name or "A Travo user"
            location = record.address or (
                f"{record.coordinates.latitude:.5f}, {record.coordinates.longitude:.5f}"
            )
            notification = Notification(
                type=NotificationType.EMERGENCY,
                severity=Severity.CRITICAL,
                title=f"EMERGENCY: {profile_name}",
                body=(
                    f"EMERGENCY ALERT: Your contact {profile_name} has requested emergency "
                    f"assistance. Location: {location}. Please contact local authorities "
                    f"or check on their safety immediately."
                ),
                data={
                    "emergency_id": record.id,
                    "tourist": profile_name,
                    "location": location,
                    "message": record.message,
                },
            )
            return await self._dispatcher.dispatch(
                notification, contacts, ALL_CHANNELS,
                sender_id=record.tourist_id, override_preferences=True,
            )
        except Exception:
            logger.exception("Emergency contact notification for %s failed", record.id)
            report.degraded.append("contacts")
            return None

    # ═══════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════

    async def get(self, emergency_id: str) -> EmergencyRecord:
        record = await self._emergencies.get(emergency_id)
        if record is None:
            raise NotFoundError("Emergency", emergency_id=emergency_id)
        return record

    async def list_active(self) -> List[EmergencyRecord]:
        return await self._emergencies.list_active()

    def _ensure_transition(self, record: EmergencyRecord, target: EmergencyStatus, action: str) -> None:
        if target not in TRANSITIONS[record.status]:
            raise StateTransitionError(record.id, record.status.value, action)

    def _ensure_open(self, record: EmergencyRecord, action: str) -> None:
        if record.is_resolved:
            raise StateTransitionError(record.id, record.status.value, action)

    async def respond(self, emergency_id: str, responder_id: str, note: str = "") -> EmergencyRecord:
        async with self._locks.hold(emergency_id):
            record = await self.get(emergency_id)
            self._ensure_transition(record, EmergencyStatus.RESPONDED, "respond")
            record.status = EmergencyStatus.RESPONDED
            record.updated_at = _now()
            record.timeline.append(TimelineEntry(
                action=TimelineAction.RESPONDED, actor=responder_id or SYSTEM_ACTOR,
                note=note or RESPONDED_MESSAGE,
            ))
            await self._emergencies.save(record)

        logger.info("Emergency %s responded by %s", emergency_id, responder_id,
                    extra={"emergency_id": emergency_id})
        await self._publish_status(record, RESPONDED_MESSAGE)
        return record

    async def resolve(self, emergency_id: str, actor: str, note: str = "") -> EmergencyRecord:
        async with self._locks.hold(emergency_id):
            record = await self.get(emergency_id)
            self._ensure_transition(record, EmergencyStatus.RESOLVED, "resolve")
            record.status = EmergencyStatus.RESOLVED
            record.resolved_at = record.updated_at = _now()
            record.timeline.append(TimelineEntry(
                action=TimelineAction.RESOLVED, actor=actor or SYSTEM_ACTOR,
                note=note or RESOLVED_MESSAGE,
            ))
            await self._emergencies.save(record)

        logger.info("Emergency %s resolved by %s", emergency_id, actor,
                    extra={"emergency_id": emergency_id})
        await self._clear_tracking(record)
        await self._publish_status(record, RESOLVED_MESSAGE)
        await self._send_resolution_notice(record)
        return record

    async def add_note(self, emergency_id: str, actor: str, note: str) -> EmergencyRecord:
        if not note or not note.strip():
            raise ValidationError("note is required", field="note")
        async with self._locks.hold(emergency_id):
            record = await self.get(emergency_id)
            self._ensure_open(record, "add_note")
            record.timeline.append(TimelineEntry(action=TimelineAction.NOTE, actor=actor or SYSTEM_ACTOR, note=note))
            record.updated_at = _now()
            await self._emergencies.save(record)

        await self._publish_dashboard(record)
        return record

    async def send_emergency_alert(
        self,
        emergency_id: str,
        coordinates: Optional[Coordinate] = None,
        message: Optional[str] = None,
        radius_m: Optional[float] = None,
        *,
        sender_id: Optional[str] = None,
    ) -> DispatchSummary:
        """
        Re-alert tourists near an unresolved emergency (push only, critical).

        Raises StateTransitionError once the emergency is resolved and
        CollaboratorUnavailableError when nearby tourists cannot be resolved.
        """
        radius = self._alert_radius if radius_m is None else radius_m
        if radius < 0:
            raise ValidationError(f"Radius must be non-negative, got {radius}", field="radius")

        async with self._locks.hold(emergency_id):
            record = await self.get(emergency_id)
            self._ensure_open(record, "send_emergency_alert")
            center = coordinates or record.coordinates

            recipients = await self._proximity.find_near(center, radius, exclude=[record.tourist_id])
            notification = Notification(
                type=NotificationType.EMERGENCY,
                severity=Severity.CRITICAL,
                title=ALERT_TITLE,
                body=message or ALERT_BODY,
                data={
                    "emergency_id": record.id,
                    "latitude": center.latitude,
                    "longitude": center.longitude,
                    "action_url": f"/emergency/{record.id}",
                },
            )
            summary = await self._dispatcher.dispatch(
                notification, recipients, [Channel.PUSH], sender_id=sender_id,
            )
            record.timeline.append(TimelineEntry(
                action=TimelineAction.ALERT_SENT,
                actor=sender_id or SYSTEM_ACTOR,
                note=f"{summary.successful}/{summary.total_users} nearby users notified within {radius:.0f} m",
            ))
            record.updated_at = _now()
            await self._emergencies.save(record)

        try:
            await self._broadcaster.broadcast_to_nearby(
                center, radius, "nearby_emergency",
                {"emergency_id": record.id, "location": center.to_dict(), "message": notification.body},
                exclude=[record.tourist_id],
            )
        except Exception:
            logger.exception("Nearby realtime broadcast for %s failed", record.id)
        return summary

    # ── Side effects after a transition (never fail the transition) ──

    async def _clear_tracking(self, record: EmergencyRecord) -> None:
        try:
            state = await self._tracking.get(record.tourist_id)
            if state is None or state.last_emergency_id != record.id:
                return
            state.status = "active"
            state.has_active_emergency = False
            state.updated_at = _now()
            await self._tracking.save(state)
        except Exception:
            logger.exception("Clearing tracking flag for %s failed", record.tourist_id)

    async def _publish_dashboard(self, record: EmergencyRecord) -> None:
        try:
            await self._broadcaster.broadcast_to_dashboard("emergency_update", record.to_dict())
        except Exception:
            logger.exception("Dashboard update for %s failed", record.id)

    async def _publish_status(self, record: EmergencyRecord, message: str) -> None:
        await self._publish_dashboard(record)
        try:
            await self._broadcaster.emit_to(record.tourist_id, "emergency_status", {
                "emergency_id": record.id,
                "status": record.status.value,
                "message": message,
            })
        except Exception:
            logger.exception("Status update to %s failed", record.tourist_id)

    async def _send_resolution_notice(self, record: EmergencyRecord) -> None:
        try:
            recipient = await self._resolver.resolve(record.tourist_id)
            notification = Notification(
                type=NotificationType.CHECK_IN,
                severity=Severity.LOW,
                title="Emergency resolved",
                body=f"{RESOLVED_MESSAGE}. Stay safe and check in if you need further help.",
                data={"emergency_id": record.id, "status": record.status.value},
            )
            await self._dispatcher.dispatch(
                notification, [recipient], ALL_CHANNELS, sender_id=SYSTEM_ACTOR,
            )
        except Exception:
            logger.exception("Resolution notice for %s not sent", record.id)
