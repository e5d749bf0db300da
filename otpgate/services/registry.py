"""
Service registry – builds and holds the engine's collaborators.

Initialized once at application startup from configuration. Tests may set
``clock``, ``sender``, ``generator``, ``directory`` or ``verifier`` before
the lifespan runs; anything left as None gets the production default.
"""

from __future__ import annotations

import logging

import aiosqlite

from otpgate.config import (
    BACKEND_TIMEOUT_SECONDS,
    DELIVERY_TIMEOUT_SECONDS,
    OTP_CODE_LENGTH,
    OTP_COOLDOWN_SECONDS,
    OTP_HASH_SECRET,
    OTP_TTL_SECONDS,
    STORE_BACKEND,
    SWEEP_INTERVAL,
)
from otpgate.exceptions import bounded
from otpgate.rate_limit import MemoryBucketStore, RateLimitBucket, SqliteBucketStore
from otpgate.services.background import ExpirySweeper
from otpgate.services.clock import Clock, SystemClock
from otpgate.services.codes import CodeGenerator, CodeHasher
from otpgate.services.cooldown import CooldownTracker, MemoryCooldownTracker, SqliteCooldownTracker
from otpgate.services.dispatcher import DeliveryDispatcher
from otpgate.services.email import NotificationSender, build_sender
from otpgate.services.gateway import IdentityVerifier, JwtIdentityVerifier, SecureGateway
from otpgate.services.otp_service import IdentityDirectory, OtpPolicy, OtpService
from otpgate.services.store import MemoryOtpStore, OtpRecordStore, SqliteOtpStore

logger = logging.getLogger(__name__)


class ServiceRegistry:
    def __init__(self, backend: str = STORE_BACKEND) -> None:
        self.backend = backend

        # Overrides
        self.clock: Clock | None = None
        self.sender: NotificationSender | None = None
        self.generator: CodeGenerator | None = None
        self.directory: IdentityDirectory | None = None
        self.verifier: IdentityVerifier | None = None

        # Built by setup()
        self.store: OtpRecordStore | None = None
        self.cooldowns: CooldownTracker | None = None
        self.buckets: RateLimitBucket | None = None
        self.otp_service: OtpService | None = None
        self.gateway: SecureGateway | None = None
        self.sweeper: ExpirySweeper | None = None

    def setup(self, conn: aiosqlite.Connection | None = None) -> None:
        """Wire every component. ``conn`` is required for the sqlite backend."""
        clock = self.clock or SystemClock()

        if self.backend == "sqlite":
            if conn is None:
                raise ValueError("The sqlite backend needs an open database connection")
            self.store = SqliteOtpStore(conn, clock)
            self.cooldowns = SqliteCooldownTracker(conn, clock, OTP_COOLDOWN_SECONDS)
            self.buckets = SqliteBucketStore(conn, clock)
        elif self.backend == "memory":
            self.store = MemoryOtpStore(clock)
            self.cooldowns = MemoryCooldownTracker(clock, OTP_COOLDOWN_SECONDS)
            self.buckets = MemoryBucketStore()
        else:
            raise ValueError(f"Unknown STORE_BACKEND {self.backend!r}")

        dispatcher = DeliveryDispatcher(
            self.sender or build_sender(),
            timeout=DELIVERY_TIMEOUT_SECONDS,
            ttl_seconds=OTP_TTL_SECONDS,
        )
        self.otp_service = OtpService(
            store=self.store,
            cooldowns=self.cooldowns,
            buckets=self.buckets,
            generator=self.generator or CodeGenerator(OTP_CODE_LENGTH),
            hasher=CodeHasher(OTP_HASH_SECRET),
            dispatcher=dispatcher,
            clock=clock,
            policy=OtpPolicy(),
            directory=self.directory,
        )
        self.gateway = SecureGateway(
            self.buckets,
            self.verifier or JwtIdentityVerifier(),
            clock=clock,
            timeout=BACKEND_TIMEOUT_SECONDS,
        )
        self.sweeper = ExpirySweeper(
            self.store, self.cooldowns, self.buckets, interval=SWEEP_INTERVAL
        )
        logger.info("Services ready (backend=%s)", self.backend)

    async def start(self) -> None:
        """Start the expiry sweeper."""
        if self.sweeper is not None:
            await self.sweeper.start()

    async def stop(self) -> None:
        """Stop background tasks and drop the built components."""
        if self.sweeper is not None:
            await self.sweeper.stop()
        self.store = self.cooldowns = self.buckets = None
        self.otp_service = None
        self.gateway = None
        self.sweeper = None

    async def check_storage(self) -> bool:
        """True when the backing storage answers; False before setup."""
        if self.buckets is None:
            return False
        return await bounded(
            self.buckets.check(), timeout=BACKEND_TIMEOUT_SECONDS, operation="storage.check"
        )

    def get_otp_service(self) -> OtpService:
        assert self.otp_service is not None, "Registry not set up, call setup() first"
        return self.otp_service

    def get_gateway(self) -> SecureGateway:
        assert self.gateway is not None, "Registry not set up, call setup() first"
        return self.gateway


# ── Singleton instance ────────────────────────────────────────────────────
registry = ServiceRegistry()
