"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")

# ── Paths / storage ───────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "otpgate.db"))

# "sqlite" (durable, default) or "memory" (single process only)
STORE_BACKEND: str = os.getenv("STORE_BACKEND", "sqlite").lower()

# Upper bound for any single store / tracker / bucket operation (seconds).
BACKEND_TIMEOUT_SECONDS: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "3"))

# ── One-time passcodes ────────────────────────────────────────────────────

OTP_CODE_LENGTH: int = int(os.getenv("OTP_CODE_LENGTH", "6"))
OTP_TTL_SECONDS: int = int(os.getenv("OTP_TTL_SECONDS", "600"))
OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
OTP_COOLDOWN_SECONDS: int = int(os.getenv("OTP_COOLDOWN_SECONDS", "60"))

# Codes issued per identity, across purposes, independent of the cooldown.
OTP_ISSUE_LIMIT: str = os.getenv("OTP_ISSUE_LIMIT", "10/hour")

# Key for the HMAC that replaces plaintext codes in storage.
OTP_HASH_SECRET: str = os.getenv("OTP_HASH_SECRET", "dev-otp-secret-change-me-in-production")

# ── Gateway quotas ────────────────────────────────────────────────────────

# Per client IP, per route class
PUBLIC_RATE_LIMIT: str = os.getenv("PUBLIC_RATE_LIMIT", "60/hour")
# Per authenticated subject, per route class
AUTHENTICATED_RATE_LIMIT: str = os.getenv("AUTHENTICATED_RATE_LIMIT", "300/hour")

# Only honour X-Forwarded-For & co. when running behind a trusted proxy.
TRUST_PROXY_HEADERS: bool = os.getenv("TRUST_PROXY_HEADERS", "false").lower() == "true"

# ── JWT ───────────────────────────────────────────────────────────────────

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me-in-production")
JWT_ALGORITHM: str = "HS256"

# ── SMTP ──────────────────────────────────────────────────────────────────

SMTP_HOST: str = os.getenv("SMTP_HOST", "")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL: str = os.getenv("SMTP_FROM_EMAIL", "security@otpgate.local")
SMTP_USE_TLS: bool = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

# Hard cap on a single hand-off to the mail server (seconds).
DELIVERY_TIMEOUT_SECONDS: float = float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "5"))

# Set to "false" to force console-only mode even when SMTP credentials are present.
_SMTP_ENABLED_OVERRIDE: str = os.getenv("SMTP_ENABLED", "auto")


def smtp_enabled() -> bool:
    """True when SMTP should actually send emails.

    Controlled by SMTP_ENABLED env var:
      • "auto" (default): send if credentials are configured
      • "true":  always send (will fail if credentials are missing)
      • "false": never send, log to console instead
    """
    if _SMTP_ENABLED_OVERRIDE.lower() == "false":
        return False
    if _SMTP_ENABLED_OVERRIDE.lower() == "true":
        return True
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)


# ── Sweeper ───────────────────────────────────────────────────────────────

# How often expired records, cooldowns and buckets are reclaimed (seconds).
SWEEP_INTERVAL: float = float(os.getenv("SWEEP_INTERVAL", "300"))
