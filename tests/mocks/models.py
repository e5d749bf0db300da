"""
Pre-built values and record factories for use in tests.

    from tests.mocks.models import MOCK_EMAIL, T0, make_record
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from otpgate.models import OtpRecord, Purpose
from otpgate.services.codes import CodeHasher

# ── Identities ─────────────────────────────────────────────────────────────

MOCK_EMAIL = "player@example.com"
MOCK_EMAIL_2 = "coach@example.com"

# ── Time ───────────────────────────────────────────────────────────────────

# Every test clock starts here
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

# ── Hashing ────────────────────────────────────────────────────────────────

TEST_HASH_SECRET = "test-hash-secret"
TEST_HASHER = CodeHasher(TEST_HASH_SECRET)


def make_record(**overrides) -> OtpRecord:
    """Factory for stored records; ``code`` is hashed for you."""
    code = overrides.pop("code", "123456")
    defaults = dict(
        identity=MOCK_EMAIL,
        purpose=Purpose.LOGIN,
        issued_at=T0,
        expires_at=T0 + timedelta(minutes=10),
        otp_id="otp-1",
        max_attempts=5,
    )
    defaults.update(overrides)
    defaults["code_hash"] = TEST_HASHER.hash(code, defaults["identity"], defaults["purpose"].value)
    return OtpRecord(**defaults)
