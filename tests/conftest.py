"""
Shared test fixtures.

Provides:
  • a FakeClock that only moves when told to, with freezegun holding
    wall-clock time in step
  • state backends, parametrized over the in-memory and SQLite variants
  • an OtpService factory wired to those backends and a recording sender
  • a FastAPI TestClient running the full lifespan against a temp database

The `client` fixture injects the fake clock, sender and code generator into
the service registry before the lifespan builds everything.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient
from freezegun import freeze_time

from otpgate import db
from otpgate.main import app
from otpgate.rate_limit import MemoryBucketStore, Quota, SqliteBucketStore
from otpgate.services.cooldown import MemoryCooldownTracker, SqliteCooldownTracker
from otpgate.services.dispatcher import DeliveryDispatcher
from otpgate.services.otp_service import OtpPolicy, OtpService
from otpgate.services.registry import registry
from otpgate.services.store import MemoryOtpStore, SqliteOtpStore
from tests.mocks.models import T0, TEST_HASHER
from tests.mocks.services import FakeClock, FixedCodeGenerator, RecordingSender


# ── Helpers ────────────────────────────────────────────────────────────────


@dataclass
class Backends:
    store: object
    cooldowns: object
    buckets: object


# ── Engine fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def clock():
    """Engine clock at T0 with wall-clock time frozen to match."""
    with freeze_time(T0, real_asyncio=True) as frozen:
        yield FakeClock(T0, frozen)


@pytest.fixture(params=["memory", "sqlite"])
async def backends(request, clock):
    """The same engine state on each backend; tests run once per backend."""
    if request.param == "memory":
        yield Backends(
            store=MemoryOtpStore(clock),
            cooldowns=MemoryCooldownTracker(clock, interval_seconds=60),
            buckets=MemoryBucketStore(),
        )
        return

    conn = await db.connect(":memory:")
    yield Backends(
        store=SqliteOtpStore(conn, clock),
        cooldowns=SqliteCooldownTracker(conn, clock, interval_seconds=60),
        buckets=SqliteBucketStore(conn, clock),
    )
    await conn.close()


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture()
def make_service(backends, clock, sender):
    """Build an OtpService over the current backends; override any collaborator."""

    def _make(**overrides) -> OtpService:
        delivery = overrides.pop("sender", sender)
        kwargs = dict(
            store=backends.store,
            cooldowns=backends.cooldowns,
            buckets=backends.buckets,
            generator=FixedCodeGenerator(),
            hasher=TEST_HASHER,
            dispatcher=DeliveryDispatcher(delivery, timeout=0.5, ttl_seconds=600),
            clock=clock,
            policy=OtpPolicy(
                ttl_seconds=600,
                max_attempts=5,
                issue_quota=Quota(limit=10, window_seconds=3600),
                backend_timeout=0.5,
            ),
        )
        kwargs.update(overrides)
        return OtpService(**kwargs)

    return _make


# ── API fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def generator() -> FixedCodeGenerator:
    return FixedCodeGenerator()


@pytest.fixture()
def _test_env(monkeypatch, tmp_path, clock, sender, generator):
    """
    Internal fixture that points the DB at a temp file and injects test
    doubles into the registry so the app lifespan runs deterministically.
    """
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "test.db"))

    monkeypatch.setattr(registry, "backend", "sqlite")
    monkeypatch.setattr(registry, "clock", clock)
    monkeypatch.setattr(registry, "sender", sender)
    monkeypatch.setattr(registry, "generator", generator)
    monkeypatch.setattr(registry, "directory", None)
    monkeypatch.setattr(registry, "verifier", None)

    return registry


@pytest.fixture()
def client(_test_env) -> TestClient:
    """
    FastAPI TestClient against a temp database.

    Uses a context manager so the lifespan runs (DB init/shutdown).
    """
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
