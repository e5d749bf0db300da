"""
Resend cooldown per (identity, purpose).

``check_and_arm`` decides and arms in one step: a caller that is let through
has already started the next window, so a second request in the same
instant is refused.
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta
from typing import Protocol

import aiosqlite

from otpgate.db import from_ts, to_ts
from otpgate.models import CooldownDecision, CooldownEntry, Purpose
from otpgate.services.clock import Clock


class CooldownTracker(Protocol):
    async def check_and_arm(self, identity: str, purpose: Purpose) -> CooldownDecision: ...

    async def remaining(self, identity: str, purpose: Purpose) -> int: ...

    async def purge_expired(self) -> int: ...


def _seconds_left(now: datetime, until: datetime) -> int:
    """Whole seconds until ``until``, rounded up. 0 once the window has passed."""
    delta = (until - now).total_seconds()
    return max(0, math.ceil(delta))


class MemoryCooldownTracker:
    def __init__(self, clock: Clock, interval_seconds: int) -> None:
        self._clock = clock
        self._interval = timedelta(seconds=interval_seconds)
        self._entries: dict[tuple[str, str], CooldownEntry] = {}
        self._lock = asyncio.Lock()

    async def check_and_arm(self, identity: str, purpose: Purpose) -> CooldownDecision:
        async with self._lock:
            now = self._clock.now()
            entry = self._entries.get((identity, purpose.value))
            if entry is not None and now < entry.cooldown_until:
                return CooldownDecision(
                    allowed=False,
                    cooldown_remaining_seconds=_seconds_left(now, entry.cooldown_until),
                )
            self._entries[(identity, purpose.value)] = CooldownEntry(
                identity=identity,
                purpose=purpose,
                last_issued_at=now,
                cooldown_until=now + self._interval,
            )
            return CooldownDecision(allowed=True)

    async def remaining(self, identity: str, purpose: Purpose) -> int:
        async with self._lock:
            entry = self._entries.get((identity, purpose.value))
            if entry is None:
                return 0
            return _seconds_left(self._clock.now(), entry.cooldown_until)

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock.now()
            stale = [k for k, e in self._entries.items() if e.cooldown_until <= now]
            for key in stale:
                del self._entries[key]
            return len(stale)


class SqliteCooldownTracker:
    def __init__(self, conn: aiosqlite.Connection, clock: Clock, interval_seconds: int) -> None:
        self._db = conn
        self._clock = clock
        self._interval = interval_seconds

    async def check_and_arm(self, identity: str, purpose: Purpose) -> CooldownDecision:
        now = self._clock.now()
        now_ts = to_ts(now)
        # Insert, or overwrite only an entry whose window has already closed.
        # rowcount tells us which branch won.
        cur = await self._db.execute(
            """
            INSERT INTO otp_cooldowns (identity, purpose, last_issued_at, cooldown_until)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(identity, purpose) DO UPDATE SET
                last_issued_at = excluded.last_issued_at,
                cooldown_until = excluded.cooldown_until
            WHERE otp_cooldowns.cooldown_until <= excluded.last_issued_at
            """,
            (identity, purpose.value, now_ts, now_ts + self._interval),
        )
        await self._db.commit()
        if cur.rowcount == 1:
            return CooldownDecision(allowed=True)

        remaining = await self.remaining(identity, purpose)
        return CooldownDecision(allowed=False, cooldown_remaining_seconds=max(1, remaining))

    async def remaining(self, identity: str, purpose: Purpose) -> int:
        async with self._db.execute(
            "SELECT cooldown_until FROM otp_cooldowns WHERE identity = ? AND purpose = ?",
            (identity, purpose.value),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return 0
        return _seconds_left(self._clock.now(), from_ts(row["cooldown_until"]))

    async def purge_expired(self) -> int:
        cur = await self._db.execute(
            "DELETE FROM otp_cooldowns WHERE cooldown_until <= ?",
            (to_ts(self._clock.now()),),
        )
        await self._db.commit()
        return cur.rowcount
