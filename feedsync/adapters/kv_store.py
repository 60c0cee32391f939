# feedsync/adapters/kv_store.py
from __future__ import annotations

import json
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import KeyValueEntry, utcnow_naive


class KeyValueStore(Protocol):
    """Tiny TTL store for run locks, sync history and the last run report."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any, ttl_s: float | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store. `clock` returns epoch seconds so tests can move time."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._data: dict[str, tuple[Any, float | None]] = {}

    async def get(self, key: str, default: Any = None) -> Any:
        hit = self._data.get(key)
        if hit is None:
            return default
        value, expires_at = hit
        if expires_at is not None and self.clock() >= expires_at:
            del self._data[key]
            return default
        return value

    async def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        expires_at = self.clock() + ttl_s if ttl_s else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqlAlchemyKeyValueStore:
    """
    `kv_store` table backed store. Each call runs in its own short session so lock
    changes are visible to other processes immediately.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow_naive,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def get(self, key: str, default: Any = None) -> Any:
        async with self.session_factory() as session:
            row = (await session.execute(select(KeyValueEntry).where(KeyValueEntry.key == key))).scalars().first()
            if row is None:
                return default
            if row.expires_at is not None and self.clock() >= row.expires_at:
                await session.delete(row)
                await session.commit()
                return default
            return json.loads(row.value_json)

    async def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        expires_at = self.clock() + timedelta(seconds=ttl_s) if ttl_s else None
        async with self.session_factory() as session:
            row = await session.get(KeyValueEntry, key)
            if row is None:
                row = KeyValueEntry(key=key)
                session.add(row)
            row.value_json = json.dumps(value, default=str)
            row.expires_at = expires_at
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            await session.commit()
