"""
repository.py — Storage interfaces for emergencies and tracking state.

In-memory implementations hand out deep copies so callers can never
mutate stored state without an explicit ``save``.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from backend.app.core.errors import StateTransitionError
from backend.app.emergency.models import EmergencyRecord, EmergencyStatus, TrackingState


class EmergencyRepository(ABC):

    @abstractmethod
    async def create(self, record: EmergencyRecord) -> None:
        """Insert a new record; an existing id raises StateTransitionError."""

    @abstractmethod
    async def get(self, emergency_id: str) -> Optional[EmergencyRecord]:
        ...

    @abstractmethod
    async def save(self, record: EmergencyRecord) -> None:
        ...

    @abstractmethod
    async def list_active(self) -> List[EmergencyRecord]:
        """Emergencies not yet resolved, oldest first."""

    async def ping(self) -> bool:
        return True


class TrackingRepository(ABC):

    @abstractmethod
    async def get(self, tourist_id: str) -> Optional[TrackingState]:
        ...

    @abstractmethod
    async def save(self, state: TrackingState) -> None:
        ...


class InMemoryEmergencyRepository(EmergencyRepository):

    def __init__(self) -> None:
        self._records: Dict[str, EmergencyRecord] = {}

    async def create(self, record: EmergencyRecord) -> None:
        if record.id in self._records:
            raise StateTransitionError(record.id, self._records[record.id].status.value, "create")
        self._records[record.id] = copy.deepcopy(record)

    async def get(self, emergency_id: str) -> Optional[EmergencyRecord]:
        record = self._records.get(emergency_id)
        return copy.deepcopy(record) if record else None

    async def save(self, record: EmergencyRecord) -> None:
        self._records[record.id] = copy.deepcopy(record)

    async def list_active(self) -> List[EmergencyRecord]:
        active = [r for r in self._records.values() if r.status is not EmergencyStatus.RESOLVED]
        active.sort(key=lambda r: r.created_at)
        return [copy.deepcopy(r) for r in active]

    def clear(self) -> None:
        self._records.clear()


class InMemoryTrackingRepository(TrackingRepository):

    def __init__(self) -> None:
        self._states: Dict[str, TrackingState] = {}

    async def get(self, tourist_id: str) -> Optional[TrackingState]:
        state = self._states.get(tourist_id)
        return copy.deepcopy(state) if state else None

    async def save(self, state: TrackingState) -> None:
        self._states[state.tourist_id] = copy.deepcopy(state)

    def clear(self) -> None:
        self._states.clear()
