"""Tests for record state and the camelCase wire models."""

from datetime import timedelta

from otpgate.models import CooldownStatusResponse, ErrorKind, OtpState, OtpVerifyResponse, Purpose
from tests.mocks.models import T0, make_record


class TestOtpRecordState:
    def test_fresh_record_is_active(self):
        record = make_record()
        assert record.state(T0) == OtpState.ACTIVE
        assert record.attempts_remaining == 5

    def test_expired_after_ttl(self):
        record = make_record()
        assert record.state(T0 + timedelta(minutes=10)) == OtpState.ACTIVE
        assert record.state(T0 + timedelta(minutes=10, seconds=1)) == OtpState.EXPIRED

    def test_locked_at_max_attempts(self):
        record = make_record(attempts_used=5)
        assert record.state(T0) == OtpState.LOCKED
        assert record.attempts_remaining == 0

    def test_consumed_wins_over_locked(self):
        record = make_record(attempts_used=5, consumed=True)
        assert record.state(T0) == OtpState.CONSUMED


class TestWireModels:
    def test_camel_case_and_none_omitted(self):
        resp = OtpVerifyResponse(success=False, error=ErrorKind.INVALID_CODE, attempts_remaining=4)
        assert resp.model_dump(by_alias=True, exclude_none=True, mode="json") == {
            "success": False,
            "error": "InvalidCode",
            "attemptsRemaining": 4,
        }

    def test_cooldown_status_alias(self):
        resp = CooldownStatusResponse(purpose=Purpose.LOGIN, cooldown_remaining_seconds=0, can_request_otp=True)
        assert resp.model_dump(by_alias=True, mode="json")["canRequestOTP"] is True
