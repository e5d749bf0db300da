"""
Structured audit logging for OTP and gateway events.

Never logs codes or full email addresses.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from otpgate.config import ENVIRONMENT

logger = logging.getLogger(__name__)


def mask_email(email: str | None) -> str | None:
    """``jane.doe@example.com`` → ``j***@example.com``."""
    if not email:
        return email
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


class AuditLog:
    @staticmethod
    def _emit(
        event_type: str,
        *,
        outcome: str,
        identity: str | None = None,
        purpose: str | None = None,
        ip: str | None = None,
        level: int | None = None,
        **fields: Any,
    ) -> None:
        audit_data: dict[str, Any] = {
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "outcome": outcome,
            "env": ENVIRONMENT,
        }
        if identity:
            audit_data["identity"] = mask_email(identity)
        if purpose:
            audit_data["purpose"] = purpose
        if ip:
            audit_data["ip"] = ip
        audit_data.update({k: v for k, v in fields.items() if v is not None})

        if level is None:
            level = logging.INFO if outcome == "success" else logging.WARNING
        logger.log(level, "[OTP][Audit] %s", json.dumps(audit_data, default=str))

    # ── Issuance ───────────────────────────────────────────────────────

    @staticmethod
    def otp_issued(identity: str, purpose: str, ip: str | None, otp_id: str) -> None:
        AuditLog._emit("otp_issued", outcome="success", identity=identity, purpose=purpose, ip=ip, otp_id=otp_id)

    @staticmethod
    def otp_issue_suppressed(identity: str, purpose: str, ip: str | None) -> None:
        """Unknown identity: answered like a real issuance, nothing sent."""
        AuditLog._emit("otp_issue_suppressed", outcome="unknown_identity", identity=identity, purpose=purpose, ip=ip)

    @staticmethod
    def otp_issue_denied(identity: str, purpose: str, ip: str | None, reason: str) -> None:
        AuditLog._emit("otp_issue_denied", outcome=reason, identity=identity, purpose=purpose, ip=ip)

    @staticmethod
    def otp_delivery_failed(identity: str, purpose: str, otp_id: str, error: str | None) -> None:
        AuditLog._emit(
            "otp_delivery_failed", outcome="delivery_failed",
            identity=identity, purpose=purpose, otp_id=otp_id, error=error,
        )

    @staticmethod
    def otp_rollback_failed(identity: str, purpose: str, otp_id: str) -> None:
        """An undelivered code could not be discarded and stays live until it expires."""
        AuditLog._emit(
            "otp_rollback_failed", outcome="code_left_live", level=logging.ERROR,
            identity=identity, purpose=purpose, otp_id=otp_id,
        )

    # ── Verification ───────────────────────────────────────────────────

    @staticmethod
    def otp_verified(identity: str, purpose: str, ip: str | None) -> None:
        AuditLog._emit("otp_verify", outcome="success", identity=identity, purpose=purpose, ip=ip)

    @staticmethod
    def otp_verify_failed(
        identity: str,
        purpose: str,
        ip: str | None,
        error: str,
        attempts_remaining: int | None = None,
    ) -> None:
        AuditLog._emit(
            "otp_verify", outcome=error,
            identity=identity, purpose=purpose, ip=ip,
            attempts_remaining=attempts_remaining,
        )

    # ── Gateway ────────────────────────────────────────────────────────

    @staticmethod
    def gateway_rejected(route_class: str, ip: str, reason: str, subject: str | None = None) -> None:
        AuditLog._emit(
            "gateway_rejected", outcome=reason,
            identity=subject, ip=ip, route_class=route_class,
        )
