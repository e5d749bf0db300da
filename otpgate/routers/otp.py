"""
OTP endpoints – request a code, verify it, and peek at the resend cooldown.

Outcomes travel as ``success`` / ``error``; the status code is chosen from
the error kind, never from whether the address is known.
"""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Response, status

from otpgate.dependencies import OtpRequestGate, OtpServiceDep, OtpStatusGate, OtpVerifyGate
from otpgate.models import (
    CooldownStatusResponse,
    ErrorKind,
    ErrorResponse,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    Purpose,
)

router = APIRouter(prefix="/api/otp", tags=["otp"])

STATUS_FOR_ERROR: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.COOLDOWN_ACTIVE: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_CODE: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.ALREADY_USED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.LOCKED: status.HTTP_423_LOCKED,
    ErrorKind.DELIVERY_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.BACKEND_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.post(
    "/request",
    response_model=OtpRequestResponse,
    response_model_exclude_none=True,
    operation_id="requestOtp",
    summary="Send a one-time code to the given email",
    responses={429: {"model": OtpRequestResponse}, 502: {"model": OtpRequestResponse}},
)
async def request_otp(
    body: OtpRequest,
    response: Response,
    gate: OtpRequestGate,
    service: OtpServiceDep,
) -> OtpRequestResponse:
    outcome = await service.request_otp(body.email, body.purpose, ip=gate.ip)
    if outcome.error is not None:
        response.status_code = STATUS_FOR_ERROR[outcome.error]
        if outcome.cooldown_remaining_seconds:
            response.headers["Retry-After"] = str(outcome.cooldown_remaining_seconds)

    return OtpRequestResponse(
        success=outcome.success,
        message=outcome.message,
        otp_id=outcome.otp_id,
        error=outcome.error,
        cooldown_remaining_seconds=outcome.cooldown_remaining_seconds,
    )


@router.post(
    "/verify",
    response_model=OtpVerifyResponse,
    response_model_exclude_none=True,
    operation_id="verifyOtp",
    summary="Check a one-time code",
    responses={401: {"model": OtpVerifyResponse}, 423: {"model": OtpVerifyResponse}},
)
async def verify_otp(
    body: OtpVerifyRequest,
    response: Response,
    gate: OtpVerifyGate,
    service: OtpServiceDep,
) -> OtpVerifyResponse:
    outcome = await service.verify_otp(body.email, body.purpose, body.code, ip=gate.ip)
    if outcome.error is not None:
        response.status_code = STATUS_FOR_ERROR[outcome.error]

    return OtpVerifyResponse(
        success=outcome.success,
        error=outcome.error,
        attempts_remaining=outcome.attempts_remaining,
    )


@router.get(
    "/cooldown",
    response_model=CooldownStatusResponse,
    operation_id="getCooldown",
    summary="Seconds until another code may be requested",
    responses={422: {"model": ErrorResponse}},
)
async def get_cooldown(
    email: Annotated[str, Query(description="Address to check")],
    purpose: Annotated[Purpose, Query(description="Purpose to check")],
    gate: OtpStatusGate,
    service: OtpServiceDep,
) -> CooldownStatusResponse:
    remaining = await service.cooldown_remaining(email, purpose)
    if remaining is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=ErrorResponse(
                error=ErrorKind.INVALID_INPUT, message="A valid email address is required."
            ).model_dump(mode="json"),
        )

    return CooldownStatusResponse(
        purpose=purpose,
        cooldown_remaining_seconds=remaining,
        can_request_otp=remaining == 0,
    )
