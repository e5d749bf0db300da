"""
Authenticated endpoints – reachable only with a valid Bearer token.
"""

from fastapi import APIRouter

from otpgate.dependencies import AccountGate
from otpgate.models import SubjectResponse

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get(
    "/me",
    response_model=SubjectResponse,
    operation_id="getMe",
    summary="Subject of the presented access token",
)
async def get_me(gate: AccountGate) -> SubjectResponse:
    return SubjectResponse(subject=gate.subject)
