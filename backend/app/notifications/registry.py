"""
registry.py — Push-token registry keyed by user id.

Holds one active Expo token per user plus that user's notification
preferences. Preferences are stored independently of the token so a user
without a device can still opt out of a notification type.

Reads and point writes touch a single dict key; no awaits happen while a
write is in progress, so no lock is needed on the event loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.notifications.channels.push import is_valid_push_token
from backend.app.notifications.models import NotificationType

logger = logging.getLogger(__name__)

_KNOWN_TYPES = {t.value for t in NotificationType}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PushRegistration:
    user_id: str
    token: str
    platform: str = "unknown"
    active: bool = True
    registered_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "token": self.token,
            "platform": self.platform,
            "active": self.active,
            "registered_at": self.registered_at.isoformat(),
        }


def validate_preferences(preferences: Mapping[str, Any]) -> Dict[str, bool]:
    """Only known notification types with boolean values are accepted."""
    cleaned: Dict[str, bool] = {}
    for key, value in preferences.items():
        if key not in _KNOWN_TYPES:
            raise ValidationError(
                f"Unknown notification type '{key}' in preferences",
                field="preferences",
                allowed=sorted(_KNOWN_TYPES),
            )
        if not isinstance(value, bool):
            raise ValidationError(f"Preference '{key}' must be a boolean", field="preferences")
        cleaned[key] = value
    return cleaned


class PushTokenRegistry:

    def __init__(self) -> None:
        self._tokens: Dict[str, PushRegistration] = {}
        self._preferences: Dict[str, Dict[str, bool]] = {}

    def register_token(
        self,
        user_id: str,
        token: str,
        *,
        platform: str = "unknown",
        preferences: Optional[Mapping[str, Any]] = None,
    ) -> PushRegistration:
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        if not is_valid_push_token(token):
            raise ValidationError("Invalid Expo push token format", field="push_token")

        registration = PushRegistration(user_id=user_id, token=token, platform=platform)
        self._tokens[user_id] = registration
        if preferences is not None:
            self._preferences[user_id] = {
                **self._preferences.get(user_id, {}),
                **validate_preferences(preferences),
            }
        logger.info("Push token registered for %s (%s)", user_id, platform)
        return registration

    def get(self, user_id: str) -> Optional[PushRegistration]:
        return self._tokens.get(user_id)

    def active_token(self, user_id: str) -> Optional[str]:
        registration = self._tokens.get(user_id)
        if registration is None or not registration.active:
            return None
        return registration.token

    def deactivate(self, user_id: str) -> PushRegistration:
        registration = self._tokens.get(user_id)
        if registration is None:
            raise NotFoundError("Push registration", user_id=user_id)
        registration.active = False
        logger.info("Push token deactivated for %s", user_id)
        return registration

    def preferences(self, user_id: str) -> Dict[str, bool]:
        return dict(self._preferences.get(user_id, {}))

    def update_preferences(self, user_id: str, preferences: Mapping[str, Any]) -> Dict[str, bool]:
        """Merge ``preferences`` into the stored map and return the result."""
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        merged = {**self._preferences.get(user_id, {}), **validate_preferences(preferences)}
        self._preferences[user_id] = merged
        logger.info("Notification preferences updated for %s", user_id)
        return dict(merged)

