"""
OTP service – issuance and verification on top of the state backends.

``request_otp`` walks: validate → cooldown → issue cap (per identity and
per requesting IP) → identity directory → generate / store / deliver.
``verify_otp`` is the verification state machine. Both return outcome
objects; only backend outages and entropy failure escape as exceptions.

Every store / tracker / bucket call is wrapped in ``bounded()`` so a slow
or broken backend is reported as BackendUnavailable rather than hanging.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from email_validator import EmailNotValidError, validate_email

from otpgate.config import BACKEND_TIMEOUT_SECONDS, OTP_MAX_ATTEMPTS, OTP_TTL_SECONDS
from otpgate.exceptions import BackendUnavailable, bounded
from otpgate.models import BucketHit, ErrorKind, IssueOutcome, OtpRecord, OtpState, Purpose, VerifyOutcome
from otpgate.rate_limit import ISSUE, Quota, RateLimitBucket, seconds_until
from otpgate.services.audit import AuditLog
from otpgate.services.clock import Clock
from otpgate.services.codes import CodeGenerator, CodeHasher
from otpgate.services.cooldown import CooldownTracker
from otpgate.services.dispatcher import DeliveryDispatcher
from otpgate.services.store import OtpRecordStore

logger = logging.getLogger(__name__)

ISSUED_MESSAGE = "If an account exists for this address, a verification code has been sent."

# A verify that keeps losing the increment to re-issues gives up after this many reads.
_MAX_RACE_RETRIES = 3


class IdentityDirectory(Protocol):
    """Answers whether an identity may receive codes for a purpose."""

    async def exists(self, identity: str, purpose: Purpose) -> bool: ...


@dataclass(frozen=True)
class OtpPolicy:
    ttl_seconds: int = OTP_TTL_SECONDS
    max_attempts: int = OTP_MAX_ATTEMPTS
    issue_quota: Quota = ISSUE
    backend_timeout: float = BACKEND_TIMEOUT_SECONDS


def normalize_identity(email: object) -> str | None:
    """Stripped, lower-cased address, or None when it is not a valid email."""
    if not isinstance(email, str):
        return None
    try:
        result = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return None
    return result.normalized.lower()


def coerce_purpose(purpose: object) -> Purpose | None:
    if isinstance(purpose, Purpose):
        return purpose
    try:
        return Purpose(purpose)
    except ValueError:
        return None


class OtpService:
    def __init__(
        self,
        *,
        store: OtpRecordStore,
        cooldowns: CooldownTracker,
        buckets: RateLimitBucket,
        generator: CodeGenerator,
        hasher: CodeHasher,
        dispatcher: DeliveryDispatcher,
        clock: Clock,
        policy: OtpPolicy | None = None,
        directory: IdentityDirectory | None = None,
    ) -> None:
        self._store = store
        self._cooldowns = cooldowns
        self._buckets = buckets
        self._generator = generator
        self._hasher = hasher
        self._dispatcher = dispatcher
        self._clock = clock
        self._policy = policy or OtpPolicy()
        self._directory = directory

    async def _call(self, awaitable, operation: str):
        return await bounded(awaitable, timeout=self._policy.backend_timeout, operation=operation)

    # ── Issuance ───────────────────────────────────────────────────────

    async def request_otp(self, email: str, purpose: Purpose | str, ip: str | None = None) -> IssueOutcome:
        identity = normalize_identity(email)
        purpose_ = coerce_purpose(purpose)
        if identity is None or purpose_ is None:
            return IssueOutcome(
                success=False,
                message="A valid email address and purpose are required.",
                error=ErrorKind.INVALID_INPUT,
            )

        decision = await self._call(
            self._cooldowns.check_and_arm(identity, purpose_), "cooldown.check_and_arm"
        )
        if not decision.allowed:
            AuditLog.otp_issue_denied(identity, purpose_.value, ip, "cooldown_active")
            wait = decision.cooldown_remaining_seconds
            return IssueOutcome(
                success=False,
                message=f"Please wait {wait} seconds before requesting a new code.",
                error=ErrorKind.COOLDOWN_ACTIVE,
                cooldown_remaining_seconds=wait,
            )

        refused = await self._issue_cap(identity, ip)
        if refused is not None:
            AuditLog.otp_issue_denied(identity, purpose_.value, ip, "rate_limited")
            return IssueOutcome(
                success=False,
                message="Too many codes requested. Please try again later.",
                error=ErrorKind.RATE_LIMITED,
                cooldown_remaining_seconds=seconds_until(self._clock.now(), refused.reset_at),
            )

        if self._directory is not None:
            known = await self._call(
                self._directory.exists(identity, purpose_), "directory.exists"
            )
            if not known:
                # Same answer as a real issuance; the id points at nothing.
                _, decoy_id = self._generator.generate()
                AuditLog.otp_issue_suppressed(identity, purpose_.value, ip)
                return IssueOutcome(success=True, message=ISSUED_MESSAGE, otp_id=decoy_id)

        code, otp_id = self._generator.generate()
        now = self._clock.now()
        record = OtpRecord(
            identity=identity,
            purpose=purpose_,
            code_hash=self._hasher.hash(code, identity, purpose_.value),
            issued_at=now,
            expires_at=now + timedelta(seconds=self._policy.ttl_seconds),
            otp_id=otp_id,
            requesting_ip=ip,
            max_attempts=self._policy.max_attempts,
        )
        await self._call(self._store.put(record), "store.put")

        result = await self._dispatcher.dispatch(identity, purpose_, code)
        if not result.success:
            AuditLog.otp_delivery_failed(identity, purpose_.value, otp_id, result.error)
            await self._roll_back(record)
            return IssueOutcome(
                success=False,
                message="The verification code could not be delivered. Please try again later.",
                error=ErrorKind.DELIVERY_FAILED,
            )

        AuditLog.otp_issued(identity, purpose_.value, ip, otp_id)
        return IssueOutcome(success=True, message=ISSUED_MESSAGE, otp_id=otp_id)

    async def _issue_cap(self, identity: str, ip: str | None) -> BucketHit | None:
        """Charge the identity's and the requesting IP's issue buckets; the refusing hit, if any."""
        keys = [f"issue:{identity}"]
        if ip:
            keys.append(f"issue:ip:{ip}")
        for key in keys:
            hit = await self._call(self._buckets.hit(key, self._policy.issue_quota), "buckets.hit")
            if not hit.allowed:
                return hit
        return None

    async def _roll_back(self, record: OtpRecord) -> None:
        try:
            await self._call(
                self._store.discard(record.identity, record.purpose, record.otp_id), "store.discard"
            )
        except BackendUnavailable:
            AuditLog.otp_rollback_failed(record.identity, record.purpose.value, record.otp_id)
            raise

    async def cooldown_remaining(self, email: str, purpose: Purpose | str) -> int | None:
        """Seconds until a new code may be requested; None for invalid input."""
        identity = normalize_identity(email)
        purpose_ = coerce_purpose(purpose)
        if identity is None or purpose_ is None:
            return None
        return await self._call(self._cooldowns.remaining(identity, purpose_), "cooldown.remaining")

    # ── Verification ───────────────────────────────────────────────────

    def _classify(self, record: OtpRecord | None, code: str) -> VerifyOutcome | None:
        """Terminal outcome for a record that can not take an attempt, else None."""
        if record is None:
            return VerifyOutcome(success=False, error=ErrorKind.NOT_FOUND)
        state = record.state(self._clock.now())
        if state is OtpState.CONSUMED:
            if self._hasher.matches(code, record.identity, record.purpose.value, record.code_hash):
                return VerifyOutcome(success=False, error=ErrorKind.ALREADY_USED)
            return VerifyOutcome(success=False, error=ErrorKind.NOT_FOUND)
        if state is OtpState.EXPIRED:
            return VerifyOutcome(success=False, error=ErrorKind.NOT_FOUND)
        if state is OtpState.LOCKED:
            return VerifyOutcome(
                success=False, error=ErrorKind.LOCKED, attempts_remaining=record.attempts_remaining
            )
        return None

    async def verify_otp(
        self,
        email: str,
        purpose: Purpose | str,
        code: str,
        ip: str | None = None,
    ) -> VerifyOutcome:
        identity = normalize_identity(email)
        purpose_ = coerce_purpose(purpose)
        if identity is None or purpose_ is None or not isinstance(code, str) \
                or not self._generator.is_well_formed(code):
            return VerifyOutcome(success=False, error=ErrorKind.INVALID_INPUT)

        outcome = await self._verify(identity, purpose_, code)
        if outcome.success:
            AuditLog.otp_verified(identity, purpose_.value, ip)
        else:
            AuditLog.otp_verify_failed(
                identity, purpose_.value, ip, outcome.error.value, outcome.attempts_remaining
            )
        return outcome

    async def _verify(self, identity: str, purpose: Purpose, code: str) -> VerifyOutcome:
        for _ in range(_MAX_RACE_RETRIES):
            record = await self._call(self._store.get(identity, purpose), "store.get")
            terminal = self._classify(record, code)
            if terminal is not None:
                return terminal

            # Charge the attempt against the exact issuance we just read.
            used = await self._call(
                self._store.increment_attempt(identity, purpose, record.otp_id),
                "store.increment_attempt",
            )
            if used is not None:
                break
        else:
            logger.warning("Verification for %s kept racing re-issues, giving up", purpose.value)
            return VerifyOutcome(success=False, error=ErrorKind.NOT_FOUND)

        if not self._hasher.matches(code, identity, purpose.value, record.code_hash):
            return VerifyOutcome(
                success=False,
                error=ErrorKind.INVALID_CODE,
                attempts_remaining=max(0, record.max_attempts - used),
            )

        consumed = await self._call(
            self._store.mark_consumed(identity, purpose, record.otp_id), "store.mark_consumed"
        )
        if not consumed:
            return VerifyOutcome(success=False, error=ErrorKind.ALREADY_USED)
        return VerifyOutcome(success=True)
