"""Domain records and API models for the OTP engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class Purpose(str, Enum):
    """Declared reason for a code. Cooldown and attempt state are scoped per purpose."""

    LOGIN = "login"
    PASSWORD_RESET = "password_reset"
    ACCOUNT_VERIFICATION = "account_verification"
    TRIAL_ACCESS = "trial_access"


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    LOCKED = "Locked"
    INVALID_CODE = "InvalidCode"
    ALREADY_USED = "AlreadyUsed"
    COOLDOWN_ACTIVE = "CooldownActive"
    RATE_LIMITED = "RateLimited"
    DELIVERY_FAILED = "DeliveryFailed"
    BACKEND_UNAVAILABLE = "BackendUnavailable"


class OtpState(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    LOCKED = "locked"


# ── Stored state ───────────────────────────────────────────────────────────


@dataclass
class OtpRecord:
    """One issuance for an (identity, purpose) pair."""

    identity: str
    purpose: Purpose
    code_hash: str
    issued_at: datetime
    expires_at: datetime
    otp_id: str
    requesting_ip: str | None = None
    attempts_used: int = 0
    max_attempts: int = 5
    consumed: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.identity, self.purpose.value)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_locked(self) -> bool:
        return self.attempts_used >= self.max_attempts

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts_used)

    def state(self, now: datetime) -> OtpState:
        # Consumption wins over lockout: the final allowed attempt may succeed.
        if self.consumed:
            return OtpState.CONSUMED
        if self.is_expired(now):
            return OtpState.EXPIRED
        if self.is_locked():
            return OtpState.LOCKED
        return OtpState.ACTIVE


@dataclass
class CooldownEntry:
    identity: str
    purpose: Purpose
    last_issued_at: datetime
    cooldown_until: datetime


@dataclass(frozen=True)
class CooldownDecision:
    allowed: bool
    cooldown_remaining_seconds: int = 0


@dataclass(frozen=True)
class BucketHit:
    """Result of one fixed-window check-and-increment."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime


# ── Engine outcomes ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IssueOutcome:
    success: bool
    message: str
    otp_id: str | None = None
    error: ErrorKind | None = None
    cooldown_remaining_seconds: int | None = None


@dataclass(frozen=True)
class VerifyOutcome:
    success: bool
    error: ErrorKind | None = None
    attempts_remaining: int | None = None


# ── API models ─────────────────────────────────────────────────────────────


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OtpRequest(ApiModel):
    email: EmailStr = Field(..., description="Address the code is sent to")
    purpose: Purpose = Field(..., description="Why the code is being requested")


class OtpVerifyRequest(ApiModel):
    email: EmailStr = Field(..., description="Address the code was sent to")
    purpose: Purpose = Field(..., description="Purpose the code was issued for")
    code: str = Field(..., pattern=r"^\d+$", max_length=12, description="Numeric code from the email")


class OtpRequestResponse(ApiModel):
    success: bool
    message: str
    otp_id: str | None = None
    error: ErrorKind | None = None
    cooldown_remaining_seconds: int | None = None


class OtpVerifyResponse(ApiModel):
    success: bool
    error: ErrorKind | None = None
    attempts_remaining: int | None = None


class CooldownStatusResponse(ApiModel):
    purpose: Purpose
    cooldown_remaining_seconds: int
    can_request_otp: bool = Field(..., alias="canRequestOTP")


class SubjectResponse(ApiModel):
    subject: str


class HealthResponse(ApiModel):
    status: str
    version: str
    backend: str
    timestamp: datetime


class ErrorResponse(ApiModel):
    success: bool = False
    error: ErrorKind
    message: str
