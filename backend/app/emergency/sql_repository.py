"""
sql_repository.py — SQLAlchemy async storage for emergencies and tracking.

Tables:
    emergencies      one row per emergency; timeline kept as JSON
    tracking_states  one row per tourist; alerts kept as JSON
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, String, Text, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base
from backend.app.core.errors import StateTransitionError
from backend.app.emergency.models import (
    EmergencyRecord,
    EmergencyStatus,
    EmergencyType,
    TimelineEntry,
    TrackingAlert,
    TrackingState,
)
from backend.app.emergency.repository import EmergencyRepository, TrackingRepository
from backend.app.notifications.models import Severity
from backend.app.spatial.geo import Coordinate

logger = logging.getLogger(__name__)


def _aware(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if ts is None or ts.tzinfo is not None:
        return ts
    return ts.replace(tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# ORM rows
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyRow(Base):
    __tablename__ = "emergencies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tourist_id: Mapped[str] = mapped_column(String(128), index=True)
    type: Mapped[str] = mapped_column(String(16))
    severity: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16), index=True)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message: Mapped[str] = mapped_column(Text, default="")
    timeline: Mapped[List[Any]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def apply(self, record: EmergencyRecord) -> None:
        self.tourist_id = record.tourist_id
        self.type = record.type.value
        self.severity = record.severity.value
        self.status = record.status.value
        self.latitude = record.coordinates.latitude
        self.longitude = record.coordinates.longitude
        self.address = record.address
        self.message = record.message
        self.timeline = [t.to_dict() for t in record.timeline]
        self.created_at = record.created_at
        self.updated_at = record.updated_at
        self.resolved_at = record.resolved_at

    def to_record(self) -> EmergencyRecord:
        return EmergencyRecord(
            id=self.id,
            tourist_id=self.tourist_id,
            type=EmergencyType(self.type),
            severity=Severity(self.severity),
            status=EmergencyStatus(self.status),
            coordinates=Coordinate(latitude=self.latitude, longitude=self.longitude),
            address=self.address,
            message=self.message or "",
            timeline=[TimelineEntry.from_dict(t) for t in self.timeline or []],
            created_at=_aware(self.created_at),
            updated_at=_aware(self.updated_at),
            resolved_at=_aware(self.resolved_at),
        )


class TrackingRow(Base):
    __tablename__ = "tracking_states"

    tourist_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), default="active")
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    has_active_emergency: Mapped[bool] = mapped_column(Boolean, default=False)
    last_emergency_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    emergency_level: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    alerts: Mapped[List[Any]] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def apply(self, state: TrackingState) -> None:
        self.status = state.status
        self.latitude = state.current_location.latitude if state.current_location else None
        self.longitude = state.current_location.longitude if state.current_location else None
        self.has_active_emergency = state.has_active_emergency
        self.last_emergency_id = state.last_emergency_id
        self.emergency_level = state.emergency_level
        self.alerts = [a.to_dict() for a in state.alerts]
        self.updated_at = state.updated_at

    def to_state(self) -> TrackingState:
        location = None
        if self.latitude is not None and self.longitude is not None:
            location = Coordinate(latitude=self.latitude, longitude=self.longitude)
        return TrackingState(
            tourist_id=self.tourist_id,
            status=self.status,
            current_location=location,
            has_active_emergency=bool(self.has_active_emergency),
            last_emergency_id=self.last_emergency_id,
            emergency_level=self.emergency_level,
            alerts=[TrackingAlert.from_dict(a) for a in self.alerts or []],
            updated_at=_aware(self.updated_at),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Repositories
# ═══════════════════════════════════════════════════════════════════════════

class SqlEmergencyRepository(EmergencyRepository):

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._sessions = session_factory

    async def create(self, record: EmergencyRecord) -> None:
        row = EmergencyRow(id=record.id)
        row.apply(record)
        async with self._sessions() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise StateTransitionError(record.id, "existing", "create") from exc

    async def get(self, emergency_id: str) -> Optional[EmergencyRecord]:
        async with self._sessions() as session:
            row = await session.get(EmergencyRow, emergency_id)
            return row.to_record() if row else None

    async def save(self, record: EmergencyRecord) -> None:
        async with self._sessions() as session:
            row = await session.get(EmergencyRow, record.id)
            if row is None:
                row = EmergencyRow(id=record.id)
                session.add(row)
            row.apply(record)
            await session.commit()

    async def list_active(self) -> List[EmergencyRecord]:
        stmt = (
            select(EmergencyRow)
            .where(EmergencyRow.status != EmergencyStatus.RESOLVED.value)
            .order_by(EmergencyRow.created_at)
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_record() for row in rows]

    async def ping(self) -> bool:
        async with self._sessions() as session:
            await session.execute(text("SELECT 1"))
        return True


class SqlTrackingRepository(TrackingRepository):

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._sessions = session_factory

    async def get(self, tourist_id: str) -> Optional[TrackingState]:
        async with self._sessions() as session:
            row = await session.get(TrackingRow, tourist_id)
            return row.to_state() if row else None

    async def save(self, state: TrackingState) -> None:
        async with self._sessions() as session:
            row = await session.get(TrackingRow, state.tourist_id)
            if row is None:
                row = TrackingRow(tourist_id=state.tourist_id)
                session.add(row)
            row.apply(state)
            await session.commit()
