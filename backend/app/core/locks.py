"""
Per-key asyncio locks.

A lock exists only while some coroutine holds or waits for it, so maps
keyed by emergency id or recipient id stay bounded by in-flight work.

Usage:
    locks = KeyedLock()

    async with locks.hold("SOS-1A2B3C4D"):
        ...
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple


class KeyedLock:

    def __init__(self) -> None:
        # key → (lock, holders + waiters)
        self._entries: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock, users = self._entries.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._entries[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._entries[key]
            if users <= 1:
                del self._entries[key]
            else:
                self._entries[key] = (lock, users - 1)
