"""
Fixed-window request buckets on top of ``limits``.

Quotas are configured with the usual rate strings:

  • public        – PUBLIC_RATE_LIMIT        per client IP, per route class
  • authenticated – AUTHENTICATED_RATE_LIMIT per subject,   per route class
  • issuance      – OTP_ISSUE_LIMIT          per identity and per requesting IP

Both bucket stores drive ``limits.aio.strategies.FixedWindowRateLimiter``.
A window opens on the first hit for a key and closes ``window_seconds``
later; the counter then starts again from zero. The in-memory store uses
the library's own ``MemoryStorage``; the SQLite store is a ``limits``
storage backed by the shared aiosqlite connection so quotas survive a
restart.
"""

from __future__ import annotations

import math
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import aiosqlite
from limits import RateLimitItem, RateLimitItemPerSecond, parse
from limits.aio.storage import MemoryStorage, Storage
from limits.aio.strategies import FixedWindowRateLimiter

from otpgate.config import AUTHENTICATED_RATE_LIMIT, OTP_ISSUE_LIMIT, PUBLIC_RATE_LIMIT
from otpgate.db import from_ts, to_ts
from otpgate.models import BucketHit
from otpgate.services.clock import Clock

NAMESPACE = "otpgate"


@dataclass(frozen=True)
class Quota:
    limit: int
    window_seconds: int

    @classmethod
    def parse(cls, rate: str) -> Quota:
        """``"60/hour"`` → Quota(limit=60, window_seconds=3600)."""
        item = parse(rate)
        return cls(limit=item.amount, window_seconds=item.get_expiry())

    @property
    def item(self) -> RateLimitItem:
        return RateLimitItemPerSecond(self.limit, self.window_seconds, namespace=NAMESPACE)

    def __str__(self) -> str:
        return f"{self.limit}/{self.window_seconds}s"


class RateLimitBucket(Protocol):
    async def hit(self, key: str, quota: Quota) -> BucketHit: ...

    async def purge_expired(self) -> int: ...

    async def check(self) -> bool: ...


class _LimiterBucketStore:
    """Adapts a ``limits`` storage to the ``RateLimitBucket`` protocol."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._limiter = FixedWindowRateLimiter(storage)

    async def hit(self, key: str, quota: Quota) -> BucketHit:
        item = quota.item
        allowed = await self._limiter.hit(item, key)
        stats = await self._limiter.get_window_stats(item, key)
        return BucketHit(
            allowed=allowed,
            limit=quota.limit,
            remaining=stats.remaining,
            reset_at=from_ts(stats.reset_time),
        )

    async def check(self) -> bool:
        return await self._storage.check()


class MemoryBucketStore(_LimiterBucketStore):
    """Process-local buckets. Time comes from ``time.time()``, as in ``limits``."""

    def __init__(self) -> None:
        super().__init__(MemoryStorage())

    async def purge_expired(self) -> int:
        # MemoryStorage also drops expired keys lazily; this reclaims the rest.
        now = time.time()
        stale = [key for key, expiry in list(self._storage.expirations.items()) if expiry <= now]
        for key in stale:
            await self._storage.clear(key)
        return len(stale)


class SqliteStorage(Storage):
    """
    ``limits`` storage over the ``rate_limit_windows`` table.

    ``incr`` is a single upsert, so concurrent hits on one key never lose an
    increment. A row whose ``expires_at`` has passed counts as absent.
    """

    STORAGE_SCHEME = None

    def __init__(self, conn: aiosqlite.Connection, clock: Clock) -> None:
        super().__init__(wrap_exceptions=False)
        self._db = conn
        self._clock = clock

    def _now(self) -> float:
        return to_ts(self._clock.now())

    @property
    def base_exceptions(self) -> type[Exception]:
        return sqlite3.Error

    async def incr(self, key: str, expiry: int, amount: int = 1) -> int:
        now = self._now()
        async with self._db.execute(
            """
            INSERT INTO rate_limit_windows (bucket_key, count, expires_at)
            VALUES (?, ?, ?)
            ON CONFLICT(bucket_key) DO UPDATE SET
                count = CASE WHEN rate_limit_windows.expires_at <= ?
                             THEN excluded.count
                             ELSE rate_limit_windows.count + excluded.count END,
                expires_at = CASE WHEN rate_limit_windows.expires_at <= ?
                                  THEN excluded.expires_at
                                  ELSE rate_limit_windows.expires_at END
            RETURNING count
            """,
            (key, amount, now + expiry, now, now),
        ) as cur:
            row = await cur.fetchone()
        await self._db.commit()
        return row["count"]

    async def get(self, key: str) -> int:
        async with self._db.execute(
            "SELECT count FROM rate_limit_windows WHERE bucket_key = ? AND expires_at > ?",
            (key, self._now()),
        ) as cur:
            row = await cur.fetchone()
        return row["count"] if row else 0

    async def get_expiry(self, key: str) -> float:
        now = self._now()
        async with self._db.execute(
            "SELECT expires_at FROM rate_limit_windows WHERE bucket_key = ? AND expires_at > ?",
            (key, now),
        ) as cur:
            row = await cur.fetchone()
        return row["expires_at"] if row else now

    async def check(self) -> bool:
        async with self._db.execute("SELECT 1") as cur:
            return await cur.fetchone() is not None

    async def reset(self) -> int | None:
        cur = await self._db.execute("DELETE FROM rate_limit_windows")
        await self._db.commit()
        return cur.rowcount

    async def clear(self, key: str) -> None:
        await self._db.execute("DELETE FROM rate_limit_windows WHERE bucket_key = ?", (key,))
        await self._db.commit()

    async def purge_expired(self) -> int:
        cur = await self._db.execute(
            "DELETE FROM rate_limit_windows WHERE expires_at <= ?", (self._now(),)
        )
        await self._db.commit()
        return cur.rowcount


class SqliteBucketStore(_LimiterBucketStore):
    def __init__(self, conn: aiosqlite.Connection, clock: Clock) -> None:
        super().__init__(SqliteStorage(conn, clock))

    async def purge_expired(self) -> int:
        return await self._storage.purge_expired()


# Named quotas, parsed once at import
PUBLIC = Quota.parse(PUBLIC_RATE_LIMIT)
AUTHENTICATED = Quota.parse(AUTHENTICATED_RATE_LIMIT)
ISSUE = Quota.parse(OTP_ISSUE_LIMIT)


def seconds_until(now: datetime, moment: datetime) -> int:
    return max(1, math.ceil((moment - now) / timedelta(seconds=1)))
