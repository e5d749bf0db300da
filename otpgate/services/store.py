"""
OTP record store.

One row per (identity, purpose). Writing a new record replaces the previous
one in a single step, so two active codes for the same pair can never be
visible at once. Expired rows are hidden from every read even before the
sweeper gets to them.

Two backends share the contract:

* ``MemoryOtpStore``  – dict behind an ``asyncio.Lock`` (tests, single process)
* ``SqliteOtpStore``  – aiosqlite, every mutation a single conditional statement
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Protocol

import aiosqlite

from otpgate.db import from_ts, to_ts
from otpgate.models import OtpRecord, Purpose
from otpgate.services.clock import Clock


class OtpRecordStore(Protocol):
    async def put(self, record: OtpRecord) -> None: ...

    async def get(self, identity: str, purpose: Purpose) -> OtpRecord | None: ...

    async def increment_attempt(
        self, identity: str, purpose: Purpose, otp_id: str | None = None
    ) -> int | None: ...

    async def mark_consumed(
        self, identity: str, purpose: Purpose, otp_id: str | None = None
    ) -> bool: ...

    async def discard(self, identity: str, purpose: Purpose, otp_id: str) -> bool: ...

    async def purge_expired(self) -> int: ...


# ══════════════════════════════════════════════════════════════════════════
#                           IN-MEMORY BACKEND
# ══════════════════════════════════════════════════════════════════════════


class MemoryOtpStore:
    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._records: dict[tuple[str, str], OtpRecord] = {}
        self._lock = asyncio.Lock()

    def _live(self, identity: str, purpose: Purpose, otp_id: str | None) -> OtpRecord | None:
        """Caller must hold the lock."""
        record = self._records.get((identity, purpose.value))
        if record is None or record.is_expired(self._clock.now()):
            return None
        if otp_id is not None and record.otp_id != otp_id:
            return None
        return record

    async def put(self, record: OtpRecord) -> None:
        async with self._lock:
            self._records[record.key] = replace(record)

    async def get(self, identity: str, purpose: Purpose) -> OtpRecord | None:
        async with self._lock:
            record = self._live(identity, purpose, None)
            return replace(record) if record else None

    async def increment_attempt(
        self, identity: str, purpose: Purpose, otp_id: str | None = None
    ) -> int | None:
        async with self._lock:
            record = self._live(identity, purpose, otp_id)
            if record is None or record.consumed or record.is_locked():
                return None
            record.attempts_used += 1
            return record.attempts_used

    async def mark_consumed(
        self, identity: str, purpose: Purpose, otp_id: str | None = None
    ) -> bool:
        async with self._lock:
            record = self._live(identity, purpose, otp_id)
            if record is None or record.consumed:
                return False
            record.consumed = True
            return True

    async def discard(self, identity: str, purpose: Purpose, otp_id: str) -> bool:
        async with self._lock:
            record = self._records.get((identity, purpose.value))
            if record is None or record.otp_id != otp_id:
                return False
            del self._records[(identity, purpose.value)]
            return True

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock.now()
            stale = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in stale:
                del self._records[key]
            return len(stale)


# ══════════════════════════════════════════════════════════════════════════
#                             SQLITE BACKEND
# ══════════════════════════════════════════════════════════════════════════


def _row_to_record(row: aiosqlite.Row) -> OtpRecord:
    """Convert a database row to an OtpRecord."""
    return OtpRecord(
        identity=row["identity"],
        purpose=Purpose(row["purpose"]),
        code_hash=row["code_hash"],
        issued_at=from_ts(row["issued_at"]),
        expires_at=from_ts(row["expires_at"]),
        otp_id=row["otp_id"],
        requesting_ip=row["requesting_ip"],
        attempts_used=row["attempts_used"],
        max_attempts=row["max_attempts"],
        consumed=bool(row["consumed"]),
    )


class SqliteOtpStore:
    def __init__(self, conn: aiosqlite.Connection, clock: Clock) -> None:
        self._db = conn
        self._clock = clock

    def _now(self) -> float:
        return to_ts(self._clock.now())

    async def put(self, record: OtpRecord) -> None:
        await self._db.execute(
            """
            INSERT OR REPLACE INTO otp_records (
                identity, purpose, otp_id, code_hash,
                issued_at, expires_at,
                attempts_used, max_attempts, consumed, consumed_at,
                requesting_ip
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
            """,
            (
                record.identity, record.purpose.value, record.otp_id, record.code_hash,
                to_ts(record.issued_at), to_ts(record.expires_at),
                record.attempts_used, record.max_attempts, int(record.consumed),
                record.requesting_ip,
            ),
        )
        await self._db.commit()

    async def get(self, identity: str, purpose: Purpose) -> OtpRecord | None:
        async with self._db.execute(
            """
            SELECT * FROM otp_records
            WHERE identity = ? AND purpose = ? AND expires_at >= ?
            """,
            (identity, purpose.value, self._now()),
        ) as cur:
            row = await cur.fetchone()
        return _row_to_record(row) if row else None

    async def increment_attempt(
        self, identity: str, purpose: Purpose, otp_id: str | None = None
    ) -> int | None:
        # The ceiling lives in the WHERE clause: once attempts_used reaches
        # max_attempts no caller can move it further.
        async with self._db.execute(
            """
            UPDATE otp_records
            SET attempts_used = attempts_used + 1
            WHERE identity = ? AND purpose = ?
              AND consumed = 0
              AND expires_at >= ?
              AND attempts_used < max_attempts
              AND (? IS NULL OR otp_id = ?)
            RETURNING attempts_used
            """,
            (identity, purpose.value, self._now(), otp_id, otp_id),
        ) as cur:
            row = await cur.fetchone()
        await self._db.commit()
        return row["attempts_used"] if row else None

    async def mark_consumed(
        self, identity: str, purpose: Purpose, otp_id: str | None = None
    ) -> bool:
        now = self._now()
        cur = await self._db.execute(
            """
            UPDATE otp_records
            SET consumed = 1, consumed_at = ?
            WHERE identity = ? AND purpose = ?
              AND consumed = 0
              AND expires_at >= ?
              AND (? IS NULL OR otp_id = ?)
            """,
            (now, identity, purpose.value, now, otp_id, otp_id),
        )
        await self._db.commit()
        return cur.rowcount == 1

    async def discard(self, identity: str, purpose: Purpose, otp_id: str) -> bool:
        cur = await self._db.execute(
            "DELETE FROM otp_records WHERE identity = ? AND purpose = ? AND otp_id = ?",
            (identity, purpose.value, otp_id),
        )
        await self._db.commit()
        return cur.rowcount > 0

    async def purge_expired(self) -> int:
        cur = await self._db.execute(
            "DELETE FROM otp_records WHERE expires_at < ?", (self._now(),)
        )
        await self._db.commit()
        return cur.rowcount
