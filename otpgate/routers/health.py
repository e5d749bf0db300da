"""
Liveness and storage health.

Not behind the gateway: load balancer and orchestrator health checks poll it far
more often than the public per-IP quota allows, and it reveals nothing
about identities or codes.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Response, status

from otpgate.exceptions import BackendUnavailable
from otpgate.models import HealthResponse
from otpgate.services.registry import registry

router = APIRouter(prefix="/api", tags=["health"])

VERSION = "0.1.0"


@router.get(
    "/health",
    response_model=HealthResponse,
    operation_id="getHealth",
    summary="Service and storage health",
    responses={503: {"model": HealthResponse, "description": "Storage unreachable"}},
)
async def get_health(response: Response) -> HealthResponse:
    try:
        storage_ok = await registry.check_storage()
    except BackendUnavailable:
        storage_ok = False

    if not storage_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="ok" if storage_ok else "degraded",
        version=VERSION,
        backend=registry.backend,
        timestamp=datetime.now(timezone.utc),
    )
