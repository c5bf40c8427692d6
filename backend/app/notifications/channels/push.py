"""
push.py — Expo push notification channel.

Delivery mechanism:
    • Expo push service HTTP API (POST JSON array of messages)
    • One ticket per message, returned in request order
    • Bulk sends are chunked to the provider's per-request maximum (100)

═══════════════════════════════════════════════════════════════════════════
MESSAGE FORMAT
═══════════════════════════════════════════════════════════════════════════

    {
      "to":        "ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]",
      "title":     notification.title,
      "body":      notification.body,
      "data":      notification.data,
      "priority":  "high" if critical else "default",
      "sound":     "default"            (critical only; omitted otherwise)
      "channelId": android channel for the notification type
    }

A chunk that fails at the transport level (HTTP error, timeout) fails
only the recipients inside that chunk. A ticket with status "error"
fails only its own recipient.
"""

from __future__ import annotations

import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from backend.app.core.errors import ChannelDeliveryError
from backend.app.notifications.models import Notification, NotificationType, Severity

logger = logging.getLogger(__name__)

EXPO_MAX_CHUNK_SIZE = 100

_EXPO_TOKEN_RE = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")
_UUID_TOKEN_RE = re.compile(
    r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE,
)

# Android notification channel per type
_ANDROID_CHANNELS: Dict[NotificationType, str] = {
    NotificationType.EMERGENCY: "emergency",
    NotificationType.SAFETY_UPDATE: "safety",
    NotificationType.GEOFENCE: "geofence",
}


def is_valid_push_token(token: Optional[str]) -> bool:
    """Syntactic check matching the Expo SDK's token format."""
    if not token:
        return False
    return bool(_EXPO_TOKEN_RE.match(token) or _UUID_TOKEN_RE.match(token))


def build_message(notification: Notification, token: str) -> Dict[str, Any]:
    """Render one Expo push message for ``token``."""
    critical = notification.severity is Severity.CRITICAL
    message: Dict[str, Any] = {
        "to": token,
        "title": notification.title,
        "body": notification.body,
        "data": dict(notification.data),
        "priority": "high" if critical else "default",
        "channelId": _ANDROID_CHANNELS.get(notification.type, "system"),
    }
    if critical:
        message["sound"] = "default"
    return message


def chunk_messages(messages: Sequence[Any], size: int = EXPO_MAX_CHUNK_SIZE) -> List[List[Any]]:
    """
    Split messages into consecutive chunks of at most ``size``.

    >>> [len(c) for c in chunk_messages(list(range(250)))]
    [100, 100, 50]
    """
    size = max(1, min(size, EXPO_MAX_CHUNK_SIZE))
    return [list(messages[i:i + size]) for i in range(0, len(messages), size)]


@dataclass(frozen=True)
class PushTicket:
    """Provider receipt for one message in a chunk."""
    ok: bool
    id: Optional[str] = None
    error: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════
# Providers
# ═══════════════════════════════════════════════════════════════════════════

class PushProvider(ABC):
    """Sends one chunk of push messages and returns tickets in request order."""

    name = "push"

    @abstractmethod
    async def send_chunk(self, messages: List[Dict[str, Any]]) -> List[PushTicket]:
        """Raise ChannelDeliveryError if the whole chunk could not be sent."""

    async def close(self) -> None:
        return None


class SimulatedPushProvider(PushProvider):
    """Logs messages and issues synthetic tickets (development mode)."""

    name = "simulation"

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def send_chunk(self, messages: List[Dict[str, Any]]) -> List[PushTicket]:
        tickets = []
        for message in messages:
            logger.info(
                "[PUSH] simulated → %s: %s", message["to"][:24], message["title"],
            )
            self.sent.append(message)
            tickets.append(PushTicket(ok=True, id=f"push-sim-{uuid.uuid4().hex[:12]}"))
        return tickets


class ExpoPushClient(PushProvider):
    """
    Expo push service over httpx.

    The underlying ``httpx.AsyncClient`` is created lazily and reused
    across chunks; call ``close()`` on shutdown.
    """

    name = "expo"

    def __init__(
        self,
        url: str,
        *,
        access_token: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._url = url
        self._access_token = access_token
        self._timeout = timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/json",
                "Accept-Encoding": "gzip, deflate",
                "Content-Type": "application/json",
            }
            if self._access_token:
                headers["Authorization"] = f"Bearer {self._access_token}"
            self._client = httpx.AsyncClient(timeout=self._timeout, headers=headers)
        return self._client

    async def send_chunk(self, messages: List[Dict[str, Any]]) -> List[PushTicket]:
        client = self._get_client()
        try:
            resp = await client.post(self._url, json=messages)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ChannelDeliveryError(
                "push", f"Expo returned HTTP {exc.response.status_code}",
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ChannelDeliveryError("push", f"Expo request failed: {exc}") from exc

        raw_tickets = body.get("data")
        if not isinstance(raw_tickets, list) or len(raw_tickets) != len(messages):
            errors = body.get("errors") or "malformed ticket list"
            raise ChannelDeliveryError("push", f"Expo rejected chunk: {errors}")

        tickets = []
        for raw in raw_tickets:
            if raw.get("status") == "ok":
                tickets.append(PushTicket(ok=True, id=raw.get("id")))
            else:
                detail = (raw.get("details") or {}).get("error")
                reason = raw.get("message") or "push ticket error"
                tickets.append(PushTicket(ok=False, error=f"{reason} ({detail})" if detail else reason))
        return tickets

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
