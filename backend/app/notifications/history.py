"""
history.py — Bounded per-recipient notification history.

Every dispatch appends one HistoryEntry per recipient: the notification,
all channel results for that recipient, the sender and a timestamp.

═══════════════════════════════════════════════════════════════════════════
RETENTION
═══════════════════════════════════════════════════════════════════════════

    • At most ``max_entries`` (default 1,000) per recipient
    • Oldest evicted first (FIFO) as part of the append
    • Appends for one recipient are serialised by a per-recipient lock;
      different recipients never contend

Storage is behind ``HistoryRepository`` (get / append / evict_oldest):

    InMemoryHistoryRepository — dict of lists, used in development + tests
    RedisHistoryRepository    — one Redis list per recipient (RPUSH / LTRIM)

═══════════════════════════════════════════════════════════════════════════
DETAILED QUERY
═══════════════════════════════════════════════════════════════════════════

    filters:    type, channel, days (default 30)
    paging:     limit (default 50), offset
    ordering:   newest first
    statistics: total, by_type, by_channel,
                success_rate.overall and success_rate.by_channel[c].rate
                (percent, 2 decimals; computed over the filtered set)
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from backend.app.core.errors import ValidationError
from backend.app.core.locks import KeyedLock
from backend.app.notifications.models import (
    Channel,
    HistoryEntry,
    NotificationType,
    parse_enum,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000


# ═══════════════════════════════════════════════════════════════════════════
# Repositories
# ═══════════════════════════════════════════════════════════════════════════

class HistoryRepository(ABC):
    """Storage for per-recipient history lists, oldest entry first."""

    @abstractmethod
    async def get(self, recipient_id: str) -> List[HistoryEntry]:
        """All entries for the recipient, oldest first."""

    @abstractmethod
    async def append(self, recipient_id: str, entry: HistoryEntry) -> int:
        """Append and return the new list length."""

    @abstractmethod
    async def evict_oldest(self, recipient_id: str, count: int) -> None:
        """Drop the ``count`` oldest entries."""

    async def ping(self) -> bool:
        return True


class InMemoryHistoryRepository(HistoryRepository):

    def __init__(self) -> None:
        self._entries: Dict[str, List[HistoryEntry]] = defaultdict(list)

    async def get(self, recipient_id: str) -> List[HistoryEntry]:
        return list(self._entries.get(recipient_id, []))

    async def append(self, recipient_id: str, entry: HistoryEntry) -> int:
        entries = self._entries[recipient_id]
        entries.append(entry)
        return len(entries)

    async def evict_oldest(self, recipient_id: str, count: int) -> None:
        if count > 0 and recipient_id in self._entries:
            del self._entries[recipient_id][:count]

    def clear(self) -> None:
        self._entries.clear()


class RedisHistoryRepository(HistoryRepository):
    """
    One Redis list per recipient, entries JSON-encoded.

    ``client`` is a ``redis.asyncio.Redis`` created with
    ``decode_responses=True``.
    """

    def __init__(self, client: Any, *, key_prefix: str = "travo:history") -> None:
        self._client = client
        self._prefix = key_prefix

    def _key(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}"

    async def get(self, recipient_id: str) -> List[HistoryEntry]:
        raw = await self._client.lrange(self._key(recipient_id), 0, -1)
        return [HistoryEntry.from_dict(json.loads(item)) for item in raw]

    async def append(self, recipient_id: str, entry: HistoryEntry) -> int:
        return await self._client.rpush(
            self._key(recipient_id), json.dumps(entry.to_dict(), default=str),
        )

    async def evict_oldest(self, recipient_id: str, count: int) -> None:
        if count > 0:
            await self._client.ltrim(self._key(recipient_id), count, -1)

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


# ═══════════════════════════════════════════════════════════════════════════
# Query types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class HistoryFilter:
    type: Optional[NotificationType] = None
    channel: Optional[Channel] = None
    days: int = 30
    limit: int = 50
    offset: int = 0

    def __post_init__(self) -> None:
        if self.type is not None:
            self.type = parse_enum(NotificationType, self.type, "type")
        if self.channel is not None:
            self.channel = parse_enum(Channel, self.channel, "channel")
        if self.days < 0:
            raise ValidationError("days must be >= 0", field="days")
        if self.limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")
        if self.offset < 0:
            raise ValidationError("offset must be >= 0", field="offset")


@dataclass
class ChannelRate:
    sent: int = 0
    successful: int = 0

    @property
    def rate(self) -> float:
        return _percent(self.successful, self.sent)

    def to_dict(self) -> Dict[str, Any]:
        return {"sent": self.sent, "successful": self.successful, "rate": self.rate}


@dataclass
class HistoryStatistics:
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_channel: Dict[str, int] = field(default_factory=dict)
    by_channel_rate: Dict[str, ChannelRate] = field(default_factory=dict)

    @property
    def overall_success_rate(self) -> float:
        sent = sum(r.sent for r in self.by_channel_rate.values())
        ok = sum(r.successful for r in self.by_channel_rate.values())
        return _percent(ok, sent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_type": dict(self.by_type),
            "by_channel": dict(self.by_channel),
            "success_rate": {
                "overall": self.overall_success_rate,
                "by_channel": {c: r.to_dict() for c, r in self.by_channel_rate.items()},
            },
        }


@dataclass
class HistoryPage:
    entries: List[HistoryEntry]
    total: int
    limit: int
    offset: int
    statistics: HistoryStatistics

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notifications": [e.to_dict() for e in self.entries],
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "has_more": self.has_more,
            },
            "statistics": self.statistics.to_dict(),
        }


def _percent(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round(part / whole * 100, 2)


def compute_statistics(entries: List[HistoryEntry]) -> HistoryStatistics:
    stats = HistoryStatistics(total=len(entries))
    for entry in entries:
        type_key = entry.notification.type.value
        stats.by_type[type_key] = stats.by_type.get(type_key, 0) + 1
        for result in entry.results:
            key = result.channel.value
            stats.by_channel[key] = stats.by_channel.get(key, 0) + 1
            rate = stats.by_channel_rate.setdefault(key, ChannelRate())
            rate.sent += 1
            if result.success:
                rate.successful += 1
    return stats


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class NotificationHistoryStore:
    """
    Append-only, bounded per-recipient log over a HistoryRepository.

    Parameters
    ----------
    repository : HistoryRepository
        Backing storage.
    max_entries : int
        Per-recipient cap; the oldest entries beyond it are evicted on append.
    """

    def __init__(self, repository: HistoryRepository, *, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._repo = repository
        self._max_entries = max_entries
        self._locks = KeyedLock()

    @property
    def repository(self) -> HistoryRepository:
        return self._repo

    @property
    def max_entries(self) -> int:
        return self._max_entries

    async def record(self, recipient_id: str, entry: HistoryEntry) -> None:
        """Append ``entry`` and evict anything beyond the cap."""
        async with self._locks.hold(recipient_id):
            length = await self._repo.append(recipient_id, entry)
            overflow = length - self._max_entries
            if overflow > 0:
                await self._repo.evict_oldest(recipient_id, overflow)

    async def entries(self, recipient_id: str) -> List[HistoryEntry]:
        """All retained entries, newest first."""
        entries = await self._repo.get(recipient_id)
        entries.reverse()
        return entries

    async def query(
        self,
        recipient_id: str,
        filters: Optional[HistoryFilter] = None,
        *,
        now: Optional[datetime] = None,
    ) -> HistoryPage:
        filters = filters or HistoryFilter()
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=filters.days)

        matched = [
            entry for entry in await self.entries(recipient_id)
            if entry.timestamp >= since
            and (filters.type is None or entry.notification.type is filters.type)
            and (filters.channel is None or any(r.channel is filters.channel for r in entry.results))
        ]

        page = matched[filters.offset:filters.offset + filters.limit]
        return HistoryPage(
            entries=page,
            total=len(matched),
            limit=filters.limit,
            offset=filters.offset,
            statistics=compute_statistics(matched),
        )
