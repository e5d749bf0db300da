"""Tests for the delivery dispatcher and code email rendering."""

import pytest

from otpgate.models import Purpose
from otpgate.services.dispatcher import DeliveryDispatcher, render_code_email
from tests.mocks.models import MOCK_EMAIL
from tests.mocks.services import ExplodingSender, HangingSender, RecordingSender, RejectingSender


class TestRenderCodeEmail:
    @pytest.mark.parametrize(
        "purpose, phrase",
        [
            (Purpose.LOGIN, "sign in to your account"),
            (Purpose.TRIAL_ACCESS, "access your trial"),
            (Purpose.PASSWORD_RESET, "reset your password"),
            (Purpose.ACCOUNT_VERIFICATION, "verify your account"),
        ],
    )
    def test_purpose_specific_text(self, purpose, phrase):
        message = render_code_email("482913", purpose, 10)
        assert phrase in message.text
        assert phrase in message.html

    def test_contains_code_and_expiry(self):
        message = render_code_email("482913", Purpose.LOGIN, 10)
        assert "482913" in message.subject
        assert "482913" in message.text
        assert "expires in 10 minutes" in message.text
        assert "didn't request this code" in message.text


class TestDispatch:
    async def test_success(self):
        sender = RecordingSender()
        dispatcher = DeliveryDispatcher(sender, timeout=1, ttl_seconds=600)
        result = await dispatcher.dispatch(MOCK_EMAIL, Purpose.LOGIN, "482913")

        assert result.success
        assert sender.last.destination == MOCK_EMAIL
        assert "expires in 10 minutes" in sender.last.body
        assert sender.last.html is not None

    async def test_rejection_is_failure(self):
        result = await DeliveryDispatcher(RejectingSender(), timeout=1, ttl_seconds=600).dispatch(
            MOCK_EMAIL, Purpose.LOGIN, "482913"
        )
        assert not result.success
        assert result.error == "rejected"

    async def test_exception_is_failure(self):
        result = await DeliveryDispatcher(ExplodingSender(), timeout=1, ttl_seconds=600).dispatch(
            MOCK_EMAIL, Purpose.LOGIN, "482913"
        )
        assert not result.success
        assert result.error == "ConnectionError"

    async def test_timeout_is_failure(self):
        result = await DeliveryDispatcher(HangingSender(), timeout=0.05, ttl_seconds=600).dispatch(
            MOCK_EMAIL, Purpose.LOGIN, "482913"
        )
        assert not result.success
        assert result.error == "timeout"
