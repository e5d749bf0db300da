"""
Periodic reclamation of expired state.

Nothing relies on the sweeper for correctness: reads already hide expired
records, closed cooldowns and stale windows. It only keeps tables small.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from otpgate.config import BACKEND_TIMEOUT_SECONDS, SWEEP_INTERVAL
from otpgate.exceptions import bounded
from otpgate.rate_limit import RateLimitBucket
from otpgate.services.cooldown import CooldownTracker
from otpgate.services.store import OtpRecordStore

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """Base class for services that run a periodic background loop."""

    def __init__(self, *, interval: float, name: str) -> None:
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info("%s started (every %ds)", self._name, self._interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("%s stopped", self._name)

    async def _tick(self) -> None:
        raise NotImplementedError

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._tick()
            except Exception:
                logger.exception("%s tick failed, will retry", self._name)


class ExpirySweeper(BackgroundWorker):
    def __init__(
        self,
        store: OtpRecordStore,
        cooldowns: CooldownTracker,
        buckets: RateLimitBucket,
        *,
        interval: float = SWEEP_INTERVAL,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(interval=interval, name="expiry-sweeper")
        self._store = store
        self._cooldowns = cooldowns
        self._buckets = buckets
        self._timeout = timeout

    async def sweep(self) -> dict[str, int]:
        """Run one pass and return how many rows each table gave up."""
        removed = {
            "records": await bounded(
                self._store.purge_expired(), timeout=self._timeout, operation="store.purge_expired"
            ),
            "cooldowns": await bounded(
                self._cooldowns.purge_expired(), timeout=self._timeout, operation="cooldown.purge_expired"
            ),
            "buckets": await bounded(
                self._buckets.purge_expired(), timeout=self._timeout, operation="buckets.purge_expired"
            ),
        }
        if any(removed.values()):
            logger.info(
                "Swept %d records, %d cooldowns, %d buckets",
                removed["records"], removed["cooldowns"], removed["buckets"],
            )
        return removed

    async def _tick(self) -> None:
        await self.sweep()
