"""
recipients.py — User directory and Recipient assembly.

A Recipient is built from two sources:

    UserDirectory      name, email, phone, emergency contacts
    PushTokenRegistry  active push token, notification preferences

Unknown user ids still produce a bare Recipient (id only) so the
dispatcher reports them as failed with reason "no channel" instead of
dropping them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from backend.app.core.errors import NotFoundError
from backend.app.notifications.models import Recipient
from backend.app.notifications.registry import PushTokenRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmergencyContact:
    name: str
    relationship: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "relationship": self.relationship,
            "phone": self.phone,
            "email": self.email,
        }


@dataclass
class UserProfile:
    user_id: str
    name: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    emergency_contacts: List[EmergencyContact] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone_number": self.phone_number,
            "emergency_contacts": [c.to_dict() for c in self.emergency_contacts],
        }


class UserDirectory(ABC):

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...


class InMemoryUserDirectory(UserDirectory):

    def __init__(self, profiles: Optional[Iterable[UserProfile]] = None) -> None:
        self._profiles: Dict[str, UserProfile] = {p.user_id: p for p in profiles or []}

    def upsert(self, profile: UserProfile) -> UserProfile:
        self._profiles[profile.user_id] = profile
        return profile

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(user_id)

    def clear(self) -> None:
        self._profiles.clear()


class RecipientResolver:
    """Maps user ids (and their emergency contacts) to Recipient records."""

    def __init__(self, directory: UserDirectory, registry: PushTokenRegistry) -> None:
        self._directory = directory
        self._registry = registry

    async def resolve(self, user_id: str) -> Recipient:
        profile = await self._directory.get_profile(user_id)
        return Recipient(
            id=user_id,
            name=profile.name if profile and profile.name else None,
            email=profile.email if profile else None,
            phone_number=profile.phone_number if profile else None,
            push_token=self._registry.active_token(user_id),
            preferences=self._registry.preferences(user_id),
        )

    async def resolve_many(self, user_ids: Iterable[str]) -> List[Recipient]:
        seen = set()
        recipients = []
        for user_id in user_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            recipients.append(await self.resolve(user_id))
        return recipients

    async def profile(self, user_id: str) -> UserProfile:
        profile = await self._directory.get_profile(user_id)
        if profile is None:
            raise NotFoundError("User", user_id=user_id)
        return profile

    async def emergency_contacts(self, user_id: str) -> List[Recipient]:
        """
        Recipients for a tourist's emergency contacts.

        Contacts have no account, hence no push token and no preferences.
        Their history key is ``{user_id}:contact:{n}``.
        """
        profile = await self._directory.get_profile(user_id)
        if profile is None:
            return []
        return [
            Recipient(
                id=f"{user_id}:contact:{n}",
                name=contact.name,
                email=contact.email,
                phone_number=contact.phone,
            )
            for n, contact in enumerate(profile.emergency_contacts)
        ]
