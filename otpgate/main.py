"""Main FastAPI application for the OTP security engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from otpgate import db
from otpgate.exceptions import OtpEngineError
from otpgate.middleware import SecurityHeadersMiddleware
from otpgate.models import ErrorKind
from otpgate.routers import auth, health, otp
from otpgate.services.registry import registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    conn = None
    if registry.backend == "sqlite":
        await db.init_db()
        conn = db.get_db()
    registry.setup(conn)
    await registry.start()
    logger.info("OTP engine started")

    yield

    # Shutdown
    await registry.stop()
    await db.close_db()
    logger.info("OTP engine stopped")


app = FastAPI(
    title="otpgate",
    description="One-time passcode issuance and verification behind a rate-limited gateway",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(SecurityHeadersMiddleware)

app.include_router(health.router)
app.include_router(otp.router)
app.include_router(auth.router)


# ── Error handlers ─────────────────────────────────────────────────────────


@app.exception_handler(OtpEngineError)
async def engine_error_handler(request: Request, exc: OtpEngineError) -> JSONResponse:
    logger.error("%s on %s %s: %s", exc.error_type, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.error_type,
            "message": "The service is temporarily unavailable. Please try again.",
        },
    )


@app.exception_handler(HTTPException)
async def structured_http_exception_handler(request: Request, exc: HTTPException):
    """Pass structured ``detail`` dicts through as the body itself."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return await http_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": ErrorKind.INVALID_INPUT.value,
            "message": f"Invalid or missing fields: {', '.join(fields)}",
        },
    )
