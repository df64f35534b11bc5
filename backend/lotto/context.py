from __future__ import annotations
import asyncio
import random
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from lotto.clock import utcnow, as_utc
from lotto.config import Settings, settings as default_settings
from lotto.services.balance import BalanceCache
from lotto.services.transfers import TransferSink


class KeyedLocks:
    """
    One asyncio.Lock per key ("round:<id>", "entry:<id>", "link:<identity>").
    Serialises same-key operations inside this process; the store's conditional
    updates cover other processes.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                # last holder/waiter gone, drop the lock so the map stays bounded
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class LottoContext:
    """Everything a core operation needs, built once at startup and passed in."""
    sessions: async_sessionmaker[AsyncSession]
    balances: BalanceCache
    transfers: TransferSink
    settings: Settings = field(default_factory=lambda: default_settings)
    clock: Callable[[], datetime] = utcnow
    locks: KeyedLocks = field(default_factory=KeyedLocks)
    rng: random.Random = field(default_factory=secrets.SystemRandom)

    def now(self) -> datetime:
        return as_utc(self.clock())
