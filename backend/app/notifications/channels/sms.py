"""
sms.py — SMS notification channel (Twilio REST API).

Delivery mechanism:
    • POST {api_url}/{account_sid}/Messages.json, HTTP basic auth
    • Form fields From / To / Body, response carries the message ``sid``

Body rules:
    1. Phone number normalised to digits only before submission
    2. Emergency notifications are prefixed with "EMERGENCY: "
    3. A final body longer than 160 chars is cut to 157 + "..." (exactly 160);
       anything up to 160 chars is sent untouched
"""

from __future__ import annotations

import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import httpx

from backend.app.core.errors import ChannelDeliveryError
from backend.app.notifications.models import Notification

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 160
EMERGENCY_PREFIX = "EMERGENCY: "
_ELLIPSIS = "..."
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """
    >>> normalize_phone("+1 (555) 010-9999")
    '15550109999'
    """
    return _NON_DIGITS.sub("", phone or "")


def format_sms_body(notification: Notification) -> str:
    body = notification.body
    if notification.is_emergency:
        body = f"{EMERGENCY_PREFIX}{body}"
    if len(body) > SMS_MAX_LENGTH:
        body = body[:SMS_MAX_LENGTH - len(_ELLIPSIS)] + _ELLIPSIS
    return body


@dataclass(frozen=True)
class SmsMessage:
    from_number: str
    to: str
    body: str


# ═══════════════════════════════════════════════════════════════════════════
# Providers
# ═══════════════════════════════════════════════════════════════════════════

class SmsProvider(ABC):
    """Accepts one SMS and returns the provider message id."""

    name = "sms"

    @abstractmethod
    async def send(self, message: SmsMessage) -> str:
        """Raise ChannelDeliveryError on failure."""

    async def close(self) -> None:
        return None


class SimulatedSmsProvider(SmsProvider):
    name = "simulation"

    def __init__(self) -> None:
        self.outbox: List[SmsMessage] = []

    async def send(self, message: SmsMessage) -> str:
        logger.info("[SMS] simulated → %s (%d chars)", message.to, len(message.body))
        self.outbox.append(message)
        return f"sms-sim-{uuid.uuid4().hex[:12]}"


class TwilioSmsProvider(SmsProvider):
    """Twilio Messages API over a lazily created httpx client."""

    name = "twilio"

    def __init__(
        self,
        api_url: str,
        account_sid: str,
        auth_token: str,
        *,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._url = f"{api_url.rstrip('/')}/{account_sid}/Messages.json"
        self._auth = (account_sid, auth_token)
        self._timeout = timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(self, message: SmsMessage) -> str:
        client = self._get_client()
        try:
            resp = await client.post(
                self._url,
                auth=self._auth,
                data={"From": message.from_number, "To": message.to, "Body": message.body},
            )
        except httpx.HTTPError as exc:
            raise ChannelDeliveryError("sms", f"Twilio request failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                detail = resp.text
            raise ChannelDeliveryError("sms", f"Twilio HTTP {resp.status_code}: {detail}")

        sid = resp.json().get("sid")
        if not sid:
            raise ChannelDeliveryError("sms", "Twilio response missing message sid")
        return sid

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
