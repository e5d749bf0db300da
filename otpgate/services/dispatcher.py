"""
Delivery dispatcher – renders the code email and hands it to the sender.

The outcome is always definite: a sender that times out, raises or reports
failure all come back as ``DispatchResult(success=False)``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from otpgate.models import Purpose
from otpgate.services.audit import mask_email
from otpgate.services.email import NotificationSender

logger = logging.getLogger(__name__)

_PURPOSE_TEXT = {
    Purpose.LOGIN: "sign in to your account",
    Purpose.TRIAL_ACCESS: "access your trial",
    Purpose.PASSWORD_RESET: "reset your password",
    Purpose.ACCOUNT_VERIFICATION: "verify your account",
}


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    text: str
    html: str


def render_code_email(code: str, purpose: Purpose, expiry_minutes: int) -> RenderedMessage:
    """Build the subject, plain-text and HTML bodies for a verification code."""
    purpose_text = _PURPOSE_TEXT[purpose]
    subject = f"Your security code: {code}"

    text = (
        f"Your verification code to {purpose_text} is: {code}\n"
        f"\n"
        f"This code expires in {expiry_minutes} minutes.\n"
        f"\n"
        f"If you didn't request this code, please ignore this email."
    )

    html = f"""
    <html>
    <body style="font-family:sans-serif;color:#333;max-width:600px">
      <h2>Security code</h2>
      <p>Your verification code to {purpose_text} is:</p>
      <div style="background:#f3f4f6;padding:20px;text-align:center">
        <span style="font-size:32px;font-weight:bold;letter-spacing:4px">{code}</span>
      </div>
      <p><strong>This code expires in {expiry_minutes} minutes.</strong></p>
      <p style="font-size:0.9em;color:#888">
        If you didn't request this code, please ignore this email.
      </p>
    </body>
    </html>
    """
    return RenderedMessage(subject=subject, text=text, html=html)


class DeliveryDispatcher:
    def __init__(self, sender: NotificationSender, *, timeout: float, ttl_seconds: int) -> None:
        self._sender = sender
        self._timeout = timeout
        self._expiry_minutes = max(1, ttl_seconds // 60)

    async def dispatch(self, identity: str, purpose: Purpose, code: str) -> DispatchResult:
        message = render_code_email(code, purpose, self._expiry_minutes)
        try:
            delivered = await asyncio.wait_for(
                self._sender.send(identity, message.subject, message.text, message.html),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.error(
                "Delivery to %s timed out after %.1fs", mask_email(identity), self._timeout
            )
            return DispatchResult(success=False, error="timeout")
        except Exception as exc:
            logger.exception("Delivery to %s raised", mask_email(identity))
            return DispatchResult(success=False, error=type(exc).__name__)

        if not delivered:
            return DispatchResult(success=False, error="rejected")
        return DispatchResult(success=True)
