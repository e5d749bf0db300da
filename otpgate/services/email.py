"""
Email service – hands verification codes to the mail server via SMTP.

In development (no SMTP configured), emails are logged to the console
so you can see what *would* be sent without configuring a mail server.
"""

from __future__ import annotations

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

import aiosmtplib

from otpgate.config import (
    SMTP_FROM_EMAIL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
    smtp_enabled,
)
from otpgate.services.audit import mask_email

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(
        self,
        destination: str,
        subject: str,
        body: str,
        html: str | None = None,
    ) -> bool: ...


class ConsoleSender:
    """Dev-mode sender: logs the message instead of sending it."""

    async def send(
        self,
        destination: str,
        subject: str,
        body: str,
        html: str | None = None,
    ) -> bool:
        logger.info(
            "📧 [DEV] Would send email to %s:\n  Subject: %s\n%s",
            destination,
            subject,
            body,
        )
        return True


class SmtpSender:
    def __init__(
        self,
        *,
        hostname: str = SMTP_HOST,
        port: int = SMTP_PORT,
        username: str = SMTP_USERNAME,
        password: str = SMTP_PASSWORD,
        from_email: str = SMTP_FROM_EMAIL,
        start_tls: bool = SMTP_USE_TLS,
    ) -> None:
        self._hostname = hostname
        self._port = port
        self._username = username
        self._password = password
        self._from_email = from_email
        self._start_tls = start_tls

    async def send(
        self,
        destination: str,
        subject: str,
        body: str,
        html: str | None = None,
    ) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._from_email
        msg["To"] = destination

        # Plain text first, HTML preferred by clients that render it
        msg.attach(MIMEText(body, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self._hostname,
                port=self._port,
                username=self._username,
                password=self._password,
                start_tls=self._start_tls,
            )
        except aiosmtplib.SMTPException:
            logger.exception("Failed to send email to %s", mask_email(destination))
            return False
        logger.info("Email sent to %s", mask_email(destination))
        return True


def build_sender() -> NotificationSender:
    if smtp_enabled():
        logger.info("SMTP delivery enabled via %s:%d", SMTP_HOST, SMTP_PORT)
        return SmtpSender()
    logger.info("SMTP not configured, codes will be logged to the console")
    return ConsoleSender()
