"""
test_history.py — Tests for the per-recipient notification history.

Covers:
    • Bounded append with oldest-first eviction
    • Newest-first reads, filters and pagination
    • Delivery statistics
    • Redis-backed repository (JSON round trip through a fake client)

Run with:
    pytest tests/test_history.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from backend.app.core.errors import ValidationError
from backend.app.notifications.history import (
    DEFAULT_MAX_ENTRIES,
    HistoryFilter,
    InMemoryHistoryRepository,
    NotificationHistoryStore,
    RedisHistoryRepository,
    compute_statistics,
)
from backend.app.notifications.models import (
    Channel,
    DispatchResult,
    HistoryEntry,
    Notification,
    NotificationType,
    Severity,
)

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def _entry(
    title: str = "Update",
    *,
    type: NotificationType = NotificationType.SAFETY_UPDATE,
    results=None,
    age_days: float = 0,
) -> HistoryEntry:
    notification = Notification(type=type, title=title, body="body", severity=Severity.LOW)
    if results is None:
        results = [DispatchResult.delivered(Channel.PUSH, "u1", "t-1")]
    return HistoryEntry(
        notification=notification,
        results=results,
        timestamp=NOW - timedelta(days=age_days),
    )


class FakeRedis:
    """The handful of list commands RedisHistoryRepository uses."""

    def __init__(self) -> None:
        self.lists: Dict[str, List[str]] = {}
        self.closed = False

    async def rpush(self, key, value):
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def lrange(self, key, start, stop):
        items = self.lists.get(key, [])
        return list(items[start:] if stop == -1 else items[start:stop + 1])

    async def ltrim(self, key, start, stop):
        items = self.lists.get(key, [])
        self.lists[key] = items[start:] if stop == -1 else items[start:stop + 1]

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class TestRecord:

    @pytest.mark.asyncio
    async def test_newest_first(self, history):
        for i in range(3):
            await history.record("u1", _entry(f"n{i}"))
        titles = [e.notification.title for e in await history.entries("u1")]
        assert titles == ["n2", "n1", "n0"]

    @pytest.mark.asyncio
    async def test_cap_evicts_oldest(self):
        store = NotificationHistoryStore(InMemoryHistoryRepository(), max_entries=3)
        for i in range(5):
            await store.record("u1", _entry(f"n{i}"))
        titles = [e.notification.title for e in await store.entries("u1")]
        assert titles == ["n4", "n3", "n2"]

    @pytest.mark.asyncio
    async def test_default_cap_keeps_last_thousand(self):
        store = NotificationHistoryStore(InMemoryHistoryRepository())
        for i in range(DEFAULT_MAX_ENTRIES + 1):
            await store.record("u1", _entry(f"n{i}"))
        titles = [e.notification.title for e in await store.entries("u1")]
        assert DEFAULT_MAX_ENTRIES == 1000
        assert len(titles) == 1000
        assert titles[0] == "n1000"
        assert titles[-1] == "n1"
        assert "n0" not in titles

    @pytest.mark.asyncio
    async def test_recipients_are_independent(self, history):
        await history.record("u1", _entry("a"))
        await history.record("u2", _entry("b"))
        assert len(await history.entries("u1")) == 1
        assert await history.entries("ghost") == []

    def test_cap_must_be_positive(self):
        with pytest.raises(ValueError):
            NotificationHistoryStore(InMemoryHistoryRepository(), max_entries=0)


class TestQuery:

    @pytest.mark.asyncio
    async def test_defaults_window_thirty_days(self, history):
        await history.record("u1", _entry("old", age_days=45))
        await history.record("u1", _entry("recent", age_days=2))
        page = await history.query("u1", now=NOW)
        assert [e.notification.title for e in page.entries] == ["recent"]
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_type_and_channel_filters(self, history):
        await history.record("u1", _entry("geo", type=NotificationType.GEOFENCE))
        await history.record("u1", _entry("sms", results=[DispatchResult.delivered(Channel.SMS, "u1", "SM1")]))
        await history.record("u1", _entry("push"))

        by_type = await history.query("u1", HistoryFilter(type="geofence"), now=NOW)
        assert [e.notification.title for e in by_type.entries] == ["geo"]

        by_channel = await history.query("u1", HistoryFilter(channel=Channel.SMS), now=NOW)
        assert [e.notification.title for e in by_channel.entries] == ["sms"]

    @pytest.mark.asyncio
    async def test_pagination(self, history):
        for i in range(7):
            await history.record("u1", _entry(f"n{i}"))

        first = await history.query("u1", HistoryFilter(limit=3), now=NOW)
        assert [e.notification.title for e in first.entries] == ["n6", "n5", "n4"]
        assert first.has_more is True

        last = await history.query("u1", HistoryFilter(limit=3, offset=6), now=NOW)
        assert [e.notification.title for e in last.entries] == ["n0"]
        assert last.has_more is False
        assert last.total == 7

    @pytest.mark.asyncio
    async def test_page_shape(self, history):
        await history.record("u1", _entry())
        payload = (await history.query("u1", now=NOW)).to_dict()
        assert set(payload) == {"notifications", "pagination", "statistics"}
        assert payload["pagination"] == {"total": 1, "limit": 50, "offset": 0, "has_more": False}

    @pytest.mark.parametrize("kwargs", [
        {"days": -1}, {"limit": 0}, {"offset": -5}, {"type": "postcard"}, {"channel": "fax"},
    ])
    def test_invalid_filters(self, kwargs):
        with pytest.raises(ValidationError):
            HistoryFilter(**kwargs)


class TestStatistics:

    def test_rates_per_channel(self):
        entries = [
            _entry(results=[
                DispatchResult.delivered(Channel.PUSH, "u1", "t1"),
                DispatchResult.failed(Channel.EMAIL, "u1", "bounced"),
            ]),
            _entry(type=NotificationType.EMERGENCY, results=[
                DispatchResult.delivered(Channel.PUSH, "u1", "t2"),
                DispatchResult.delivered(Channel.EMAIL, "u1", "m2"),
            ]),
            _entry(results=[DispatchResult.failed(Channel.PUSH, "u1", "DeviceNotRegistered")]),
        ]
        stats = compute_statistics(entries)

        assert stats.total == 3
        assert stats.by_type == {"safetyUpdate": 2, "emergency": 1}
        assert stats.by_channel == {"push": 3, "email": 2}
        assert stats.by_channel_rate["push"].rate == 66.67
        assert stats.by_channel_rate["email"].rate == 50.0
        assert stats.overall_success_rate == 60.0

    def test_empty(self):
        stats = compute_statistics([])
        assert stats.overall_success_rate == 0.0
        assert stats.to_dict()["success_rate"]["by_channel"] == {}


# ═══════════════════════════════════════════════════════════════════════════
# Redis repository
# ═══════════════════════════════════════════════════════════════════════════

class TestRedisRepository:

    @pytest.mark.asyncio
    async def test_round_trip_and_cap(self):
        client = FakeRedis()
        store = NotificationHistoryStore(RedisHistoryRepository(client, key_prefix="test:h"), max_entries=2)

        for i in range(3):
            await store.record("u1", _entry(f"n{i}"))

        assert len(client.lists["test:h:u1"]) == 2
        entries = await store.entries("u1")
        assert [e.notification.title for e in entries] == ["n2", "n1"]
        assert entries[0].results[0].channel is Channel.PUSH
        assert entries[0].timestamp == NOW

    @pytest.mark.asyncio
    async def test_ping_and_close(self):
        client = FakeRedis()
        repo = RedisHistoryRepository(client)
        assert await repo.ping() is True
        await repo.close()
        assert client.closed
