"""
SQLite database layer using aiosqlite.

Stores outstanding codes, resend cooldowns and gateway rate-limit buckets.
Tables are created automatically on first connect. Every mutation the
engine relies on is a single SQL statement, so the one shared connection
never needs an application-level lock to stay consistent.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from otpgate.config import DB_PATH

logger = logging.getLogger(__name__)

# ── Module-level connection ───────────────────────────────────────────────

_db: aiosqlite.Connection | None = None


async def init_db() -> None:
    """Open the database and create tables if they don't exist."""
    global _db
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _db = await connect(str(db_path))
    logger.info("Database initialized at %s", db_path)


async def connect(path: str) -> aiosqlite.Connection:
    """Open a connection with the schema applied. ``":memory:"`` works too."""
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row  # dict-like rows
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.executescript(_SCHEMA)
    await conn.commit()
    return conn


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database connection closed")


def get_db() -> aiosqlite.Connection:
    """Return the active database connection (must call init_db first)."""
    assert _db is not None, "Database not initialized, call init_db() first"
    return _db


# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS otp_records (
    identity        TEXT NOT NULL,
    purpose         TEXT NOT NULL,
    otp_id          TEXT NOT NULL,
    code_hash       TEXT NOT NULL,
    issued_at       REAL NOT NULL,  -- unix seconds
    expires_at      REAL NOT NULL,
    attempts_used   INTEGER NOT NULL DEFAULT 0,
    max_attempts    INTEGER NOT NULL,
    consumed        INTEGER NOT NULL DEFAULT 0,
    consumed_at     REAL,
    requesting_ip   TEXT,
    PRIMARY KEY (identity, purpose)
);

CREATE INDEX IF NOT EXISTS idx_otp_expires ON otp_records(expires_at);

CREATE TABLE IF NOT EXISTS otp_cooldowns (
    identity        TEXT NOT NULL,
    purpose         TEXT NOT NULL,
    last_issued_at  REAL NOT NULL,
    cooldown_until  REAL NOT NULL,
    PRIMARY KEY (identity, purpose)
);

CREATE TABLE IF NOT EXISTS rate_limit_windows (
    bucket_key      TEXT PRIMARY KEY,  -- RateLimitItem.key_for(scope)
    count           INTEGER NOT NULL,
    expires_at      REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_windows_expires ON rate_limit_windows(expires_at);
"""


# ── Helpers ───────────────────────────────────────────────────────────────


def to_ts(dt: datetime) -> float:
    return dt.timestamp()


def from_ts(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)
