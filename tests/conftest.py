"""
Shared fixtures: in-process collaborators, simulated providers and
recording doubles for the realtime layer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Tuple

import pytest

from backend.app.core.errors import ChannelDeliveryError
from backend.app.emergency.coordinator import EmergencyCoordinator
from backend.app.emergency.repository import InMemoryEmergencyRepository, InMemoryTrackingRepository
from backend.app.geofence.lookup import InMemoryGeofenceLookup
from backend.app.notifications.channels.mail import EmailMessage, EmailTransport, SimulatedEmailTransport
from backend.app.notifications.channels.push import PushProvider, PushTicket, SimulatedPushProvider
from backend.app.notifications.channels.sms import SimulatedSmsProvider, SmsMessage, SmsProvider
from backend.app.notifications.dispatcher import NotificationDispatcher
from backend.app.notifications.history import InMemoryHistoryRepository, NotificationHistoryStore
from backend.app.notifications.proximity import ProximityIndex
from backend.app.notifications.recipients import InMemoryUserDirectory, RecipientResolver
from backend.app.notifications.registry import PushTokenRegistry
from backend.app.realtime.broadcaster import Broadcaster
from backend.app.safety.score_engine import SafetyScoreEngine
from backend.app.spatial.geo import Coordinate
from backend.app.tracking.location_store import InMemoryLocationStore

# Connaught Place, New Delhi
DELHI = Coordinate(latitude=28.6315, longitude=77.2167)
SMS_FROM = "+15550100000"


def push_token(n: int) -> str:
    return f"ExponentPushToken[test-token-{n:04d}]"


def fixed_clock(hour: int, minute: int = 0) -> Callable[[], datetime]:
    moment = datetime(2026, 3, 14, hour, minute, tzinfo=timezone.utc)
    return lambda: moment


# ═══════════════════════════════════════════════════════════════════════════
# Doubles
# ═══════════════════════════════════════════════════════════════════════════

class RecordingBroadcaster(Broadcaster):
    """Records every realtime event; ``fail`` makes every call raise."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.dashboard: List[Tuple[str, Dict[str, Any]]] = []
        self.nearby: List[Tuple[str, Dict[str, Any], float, Tuple[str, ...]]] = []
        self.direct: List[Tuple[str, str, Dict[str, Any]]] = []

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("realtime hub down")

    async def broadcast_to_dashboard(self, event: str, payload: Dict[str, Any]) -> int:
        self._check()
        self.dashboard.append((event, payload))
        return 1

    async def broadcast_to_nearby(
        self,
        coordinates: Coordinate,
        radius_m: float,
        event: str,
        payload: Dict[str, Any],
        *,
        exclude: Iterable[str] = (),
    ) -> int:
        self._check()
        self.nearby.append((event, payload, radius_m, tuple(exclude)))
        return 0

    async def emit_to(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        self._check()
        self.direct.append((connection_id, event, payload))
        return True


class FailingPushProvider(PushProvider):
    name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    async def send_chunk(self, messages: List[Dict[str, Any]]) -> List[PushTicket]:
        self.calls += 1
        raise ChannelDeliveryError("push", "Expo returned HTTP 503")


class FailingEmailTransport(EmailTransport):
    name = "failing"

    async def send(self, message: EmailMessage) -> str:
        raise ChannelDeliveryError("email", "SMTP connection refused")


class FailingSmsProvider(SmsProvider):
    name = "failing"

    async def send(self, message: SmsMessage) -> str:
        raise ChannelDeliveryError("sms", "Twilio HTTP 401: Authenticate")


class FailingHistoryRepository(InMemoryHistoryRepository):

    async def append(self, recipient_id, entry) -> int:
        raise ConnectionError("redis unavailable")


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def history() -> NotificationHistoryStore:
    return NotificationHistoryStore(InMemoryHistoryRepository())


@pytest.fixture
def push() -> SimulatedPushProvider:
    return SimulatedPushProvider()


@pytest.fixture
def email() -> SimulatedEmailTransport:
    return SimulatedEmailTransport()


@pytest.fixture
def sms() -> SimulatedSmsProvider:
    return SimulatedSmsProvider()


@pytest.fixture
def dispatcher(push, email, sms, history) -> NotificationDispatcher:
    return NotificationDispatcher(
        push=push, email=email, sms=sms, history=history, sms_from=SMS_FROM,
    )


@pytest.fixture
def registry() -> PushTokenRegistry:
    return PushTokenRegistry()


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory()


@pytest.fixture
def resolver(directory, registry) -> RecipientResolver:
    return RecipientResolver(directory, registry)


@pytest.fixture
def locations() -> InMemoryLocationStore:
    return InMemoryLocationStore()


@pytest.fixture
def geofences() -> InMemoryGeofenceLookup:
    return InMemoryGeofenceLookup()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def emergencies() -> InMemoryEmergencyRepository:
    return InMemoryEmergencyRepository()


@pytest.fixture
def tracking() -> InMemoryTrackingRepository:
    return InMemoryTrackingRepository()


@pytest.fixture
def safety_engine(geofences, locations) -> SafetyScoreEngine:
    # 14:00 UTC is neutral for the time-of-day factor
    return SafetyScoreEngine(geofences, locations, clock=fixed_clock(14))


@pytest.fixture
def proximity(locations, resolver) -> ProximityIndex:
    return ProximityIndex(locations, resolver)


@pytest.fixture
def coordinator(
    emergencies, tracking, locations, dispatcher, proximity,
    safety_engine, broadcaster, resolver,
) -> EmergencyCoordinator:
    return EmergencyCoordinator(
        emergencies=emergencies,
        tracking=tracking,
        locations=locations,
        dispatcher=dispatcher,
        proximity=proximity,
        safety=safety_engine,
        broadcaster=broadcaster,
        resolver=resolver,
    )

