"""
dependencies.py — Composition root.

Builds every service once from ``Settings`` and wires the collaborators
together. Routes receive the result through the ``get_platform``
dependency; tests swap it with ``app.dependency_overrides``.

Backend selection:
    PUSH_PROVIDER     simulation | expo
    EMAIL_PROVIDER    simulation | smtp
    SMS_PROVIDER      simulation | twilio
    HISTORY_BACKEND   memory | redis
    EMERGENCY_STORE   memory | sql
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.database import build_engine, build_session_factory, init_db
from backend.app.emergency.coordinator import EmergencyCoordinator
from backend.app.emergency.repository import (
    EmergencyRepository,
    InMemoryEmergencyRepository,
    InMemoryTrackingRepository,
    TrackingRepository,
)
from backend.app.emergency.sql_repository import SqlEmergencyRepository, SqlTrackingRepository
from backend.app.geofence.lookup import InMemoryGeofenceLookup
from backend.app.notifications.channels.mail import (
    EmailTransport,
    SimulatedEmailTransport,
    SmtpEmailTransport,
)
from backend.app.notifications.channels.push import ExpoPushClient, PushProvider, SimulatedPushProvider
from backend.app.notifications.channels.sms import SimulatedSmsProvider, SmsProvider, TwilioSmsProvider
from backend.app.notifications.dispatcher import NotificationDispatcher
from backend.app.notifications.history import (
    HistoryRepository,
    InMemoryHistoryRepository,
    NotificationHistoryStore,
    RedisHistoryRepository,
)
from backend.app.notifications.proximity import ProximityIndex
from backend.app.notifications.recipients import InMemoryUserDirectory, RecipientResolver
from backend.app.notifications.registry import PushTokenRegistry
from backend.app.notifications.service import NotificationService
from backend.app.realtime.manager import ConnectionManager
from backend.app.safety.score_engine import SafetyScoreEngine
from backend.app.tracking.location_store import InMemoryLocationStore

logger = logging.getLogger(__name__)


@dataclass
class Platform:
    settings: Settings
    registry: PushTokenRegistry
    directory: InMemoryUserDirectory
    locations: InMemoryLocationStore
    geofences: InMemoryGeofenceLookup
    history: NotificationHistoryStore
    dispatcher: NotificationDispatcher
    connections: ConnectionManager
    safety: SafetyScoreEngine
    proximity: ProximityIndex
    emergencies: EmergencyRepository
    tracking: TrackingRepository
    coordinator: EmergencyCoordinator
    notifications: NotificationService
    engine: Optional[object] = None

    async def startup(self) -> None:
        if self.engine is not None:
            await init_db(self.engine)
        logger.info(
            "Platform ready: push=%s email=%s sms=%s history=%s emergencies=%s",
            self.settings.PUSH_PROVIDER, self.settings.EMAIL_PROVIDER,
            self.settings.SMS_PROVIDER, self.settings.HISTORY_BACKEND,
            self.settings.EMERGENCY_STORE,
        )

    async def aclose(self) -> None:
        await self.dispatcher.close()
        repo = self.history.repository
        if isinstance(repo, RedisHistoryRepository):
            await repo.close()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("Platform shut down")


# ═══════════════════════════════════════════════════════════════════════════
# Provider selection
# ═══════════════════════════════════════════════════════════════════════════

def _build_push(cfg: Settings) -> PushProvider:
    if cfg.PUSH_PROVIDER == "expo":
        return ExpoPushClient(
            cfg.EXPO_PUSH_URL,
            access_token=cfg.EXPO_ACCESS_TOKEN,
            timeout_seconds=cfg.CHANNEL_TIMEOUT_SECONDS,
        )
    return SimulatedPushProvider()


def _build_email(cfg: Settings) -> EmailTransport:
    if cfg.EMAIL_PROVIDER == "smtp":
        return SmtpEmailTransport(
            cfg.SMTP_HOST,
            cfg.SMTP_PORT,
            username=cfg.SMTP_USER,
            password=cfg.SMTP_PASSWORD,
            start_tls=cfg.SMTP_START_TLS,
            from_address=cfg.EMAIL_FROM,
            from_name=cfg.EMAIL_FROM_NAME,
            timeout_seconds=cfg.CHANNEL_TIMEOUT_SECONDS,
        )
    return SimulatedEmailTransport()


def _build_sms(cfg: Settings) -> SmsProvider:
    if cfg.SMS_PROVIDER == "twilio":
        if not (cfg.TWILIO_ACCOUNT_SID and cfg.TWILIO_AUTH_TOKEN):
            logger.warning("SMS_PROVIDER=twilio without credentials — falling back to simulation")
            return SimulatedSmsProvider()
        return TwilioSmsProvider(
            cfg.TWILIO_API_URL,
            cfg.TWILIO_ACCOUNT_SID,
            cfg.TWILIO_AUTH_TOKEN,
            timeout_seconds=cfg.CHANNEL_TIMEOUT_SECONDS,
        )
    return SimulatedSmsProvider()


def _build_history_repository(cfg: Settings) -> HistoryRepository:
    if cfg.HISTORY_BACKEND == "redis":
        client = aioredis.from_url(cfg.REDIS_URL, encoding="utf-8", decode_responses=True)
        logger.info("History backend: redis (%s)", cfg.REDIS_URL.split("@")[-1])
        return RedisHistoryRepository(client, key_prefix=cfg.HISTORY_KEY_PREFIX)
    return InMemoryHistoryRepository()


# ═══════════════════════════════════════════════════════════════════════════
# Assembly
# ═══════════════════════════════════════════════════════════════════════════

def build_platform(cfg: Optional[Settings] = None) -> Platform:
    cfg = cfg or default_settings

    registry = PushTokenRegistry()
    directory = InMemoryUserDirectory()
    locations = InMemoryLocationStore()
    geofences = InMemoryGeofenceLookup()
    resolver = RecipientResolver(directory, registry)

    history = NotificationHistoryStore(
        _build_history_repository(cfg), max_entries=cfg.HISTORY_MAX_ENTRIES,
    )
    dispatcher = NotificationDispatcher(
        push=_build_push(cfg),
        email=_build_email(cfg),
        sms=_build_sms(cfg),
        history=history,
        sms_from=cfg.TWILIO_PHONE_NUMBER,
        push_chunk_size=cfg.PUSH_CHUNK_SIZE,
        channel_concurrency=cfg.CHANNEL_CONCURRENCY,
        channel_timeout=cfg.CHANNEL_TIMEOUT_SECONDS,
    )

    engine = None
    if cfg.EMERGENCY_STORE == "sql":
        engine = build_engine(cfg.DATABASE_URL, echo=cfg.DATABASE_ECHO)
        sessions = build_session_factory(engine)
        emergencies: EmergencyRepository = SqlEmergencyRepository(sessions)
        tracking: TrackingRepository = SqlTrackingRepository(sessions)
    else:
        emergencies = InMemoryEmergencyRepository()
        tracking = InMemoryTrackingRepository()

    connections = ConnectionManager(locations)
    safety = SafetyScoreEngine(
        geofences, locations,
        tz_name=cfg.SAFETY_TIMEZONE,
        collaborator_timeout=cfg.COLLABORATOR_TIMEOUT_SECONDS,
    )
    proximity = ProximityIndex(locations, resolver)
    coordinator = EmergencyCoordinator(
        emergencies=emergencies,
        tracking=tracking,
        locations=locations,
        dispatcher=dispatcher,
        proximity=proximity,
        safety=safety,
        broadcaster=connections,
        resolver=resolver,
        nearby_radius_m=cfg.EMERGENCY_NEARBY_RADIUS_M,
        alert_radius_m=cfg.EMERGENCY_ALERT_RADIUS_M,
    )
    notifications = NotificationService(
        dispatcher=dispatcher,
        history=history,
        registry=registry,
        resolver=resolver,
        geofences=geofences,
        coordinator=coordinator,
        safety=safety,
    )

    return Platform(
        settings=cfg,
        registry=registry,
        directory=directory,
        locations=locations,
        geofences=geofences,
        history=history,
        dispatcher=dispatcher,
        connections=connections,
        safety=safety,
        proximity=proximity,
        emergencies=emergencies,
        tracking=tracking,
        coordinator=coordinator,
        notifications=notifications,
        engine=engine,
    )


_platform: Optional[Platform] = None


def get_platform() -> Platform:
    """FastAPI dependency returning the process-wide Platform."""
    global _platform
    if _platform is None:
        _platform = build_platform()
    return _platform


async def shutdown_platform() -> None:
    global _platform
    if _platform is not None:
        await _platform.aclose()
    _platform = None
