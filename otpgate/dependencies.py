from typing import Annotated

from fastapi import Depends, Request, Response

from otpgate.services.gateway import GatewayContext
from otpgate.services.otp_service import OtpService
from otpgate.services.registry import registry


# ── Gateway ────────────────────────────────────────────────────────────────


def public_gateway(route_class: str):
    """Dependency that admits a request through the IP-keyed tier."""

    async def _admit(request: Request, response: Response) -> GatewayContext:
        return await registry.get_gateway().admit_public(request, response, route_class)

    return _admit


def authenticated_gateway(route_class: str):
    """Dependency that requires a Bearer token, then charges the subject's bucket."""

    async def _admit(request: Request, response: Response) -> GatewayContext:
        return await registry.get_gateway().admit_authenticated(request, response, route_class)

    return _admit


OtpRequestGate = Annotated[GatewayContext, Depends(public_gateway("otp_request"))]
OtpVerifyGate = Annotated[GatewayContext, Depends(public_gateway("otp_verify"))]
OtpStatusGate = Annotated[GatewayContext, Depends(public_gateway("otp_status"))]
AccountGate = Annotated[GatewayContext, Depends(authenticated_gateway("account"))]


# ── Services ───────────────────────────────────────────────────────────────


def get_otp_service() -> OtpService:
    return registry.get_otp_service()


OtpServiceDep = Annotated[OtpService, Depends(get_otp_service)]
