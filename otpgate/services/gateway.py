"""
Secure API gateway – admission control in front of the OTP routes.

Two tiers:

  • public        – keyed on client IP, one bucket per route class
  • authenticated – Bearer JWT resolved to a subject first, then one bucket
                    per (subject, route class)

A request is charged exactly once, before its handler runs. Refusals are
raised as ``HTTPException`` so the handler is never reached.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import jwt
from fastapi import HTTPException, Request, Response, status
from slowapi.util import get_remote_address

from otpgate.config import BACKEND_TIMEOUT_SECONDS, JWT_ALGORITHM, JWT_SECRET, TRUST_PROXY_HEADERS
from otpgate.exceptions import bounded
from otpgate.models import BucketHit, ErrorKind
from otpgate.rate_limit import AUTHENTICATED, PUBLIC, Quota, RateLimitBucket, seconds_until
from otpgate.services.audit import AuditLog
from otpgate.services.clock import Clock


# ── Identity ───────────────────────────────────────────────────────────────


class IdentityVerifier(Protocol):
    async def resolve(self, token: str) -> str | None: ...


class JwtIdentityVerifier:
    """Resolves a signed JWT to its ``sub`` claim."""

    def __init__(self, secret: str = JWT_SECRET, algorithm: str = JWT_ALGORITHM) -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def resolve(self, token: str) -> str | None:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError:
            return None
        subject = payload.get("sub")
        return subject if isinstance(subject, str) and subject else None


def bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# ── Client IP ──────────────────────────────────────────────────────────────


def client_ip(request: Request, *, trust_proxy: bool = TRUST_PROXY_HEADERS) -> str:
    """
    Best-effort client address.

    Proxy headers are only read with ``trust_proxy`` set; otherwise the
    socket peer is used.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
        for header in ("x-real-ip", "cf-connecting-ip"):
            value = request.headers.get(header, "").strip()
            if value:
                return value
    return get_remote_address(request)


# ── Gateway ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GatewayContext:
    """What the gateway learned about an admitted request."""

    ip: str
    route_class: str
    subject: str | None = None


def _limit_headers(hit: BucketHit) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(hit.limit),
        "X-RateLimit-Remaining": str(hit.remaining),
        "X-RateLimit-Reset": str(int(hit.reset_at.timestamp())),
    }


class SecureGateway:
    def __init__(
        self,
        buckets: RateLimitBucket,
        verifier: IdentityVerifier,
        *,
        clock: Clock,
        public_quota: Quota = PUBLIC,
        authenticated_quota: Quota = AUTHENTICATED,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        trust_proxy: bool = TRUST_PROXY_HEADERS,
    ) -> None:
        self._buckets = buckets
        self._verifier = verifier
        self._clock = clock
        self._public_quota = public_quota
        self._authenticated_quota = authenticated_quota
        self._timeout = timeout
        self._trust_proxy = trust_proxy

    async def admit_public(self, request: Request, response: Response, route_class: str) -> GatewayContext:
        ip = client_ip(request, trust_proxy=self._trust_proxy)
        await self._charge(f"public:{route_class}:{ip}", self._public_quota, response, route_class, ip)
        return GatewayContext(ip=ip, route_class=route_class)

    async def admit_authenticated(
        self, request: Request, response: Response, route_class: str
    ) -> GatewayContext:
        ip = client_ip(request, trust_proxy=self._trust_proxy)
        token = bearer_token(request)
        subject = None
        if token is not None:
            subject = await bounded(
                self._verifier.resolve(token), timeout=self._timeout, operation="verifier.resolve"
            )
        if subject is None:
            AuditLog.gateway_rejected(route_class, ip, "unauthenticated")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={
                    "success": False,
                    "error": "Unauthorized",
                    "message": "Authentication required.",
                },
                headers={"WWW-Authenticate": "Bearer"},
            )

        await self._charge(
            f"auth:{route_class}:{subject}", self._authenticated_quota, response, route_class, ip, subject
        )
        return GatewayContext(ip=ip, route_class=route_class, subject=subject)

    async def _charge(
        self,
        key: str,
        quota: Quota,
        response: Response,
        route_class: str,
        ip: str,
        subject: str | None = None,
    ) -> None:
        hit = await bounded(self._buckets.hit(key, quota), timeout=self._timeout, operation="gateway.hit")
        headers = _limit_headers(hit)
        if not hit.allowed:
            AuditLog.gateway_rejected(route_class, ip, "rate_limited", subject)
            headers["Retry-After"] = str(seconds_until(self._clock.now(), hit.reset_at))
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "success": False,
                    "error": ErrorKind.RATE_LIMITED.value,
                    "message": "Too many requests. Please try again later.",
                },
                headers=headers,
            )
        response.headers.update(headers)
