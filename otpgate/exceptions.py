"""
Fatal errors for a single request.

Everything else the engine can run into (wrong code, cooldown, lockout, ...)
is an ordinary outcome and travels as an ErrorKind on the result object.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OtpEngineError(Exception):
    """Base class for errors that abort the current request."""

    status_code = 500
    error_type = "InternalServerError"

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation


class BackendUnavailable(OtpEngineError):
    """The store, tracker, bucket table or identity verifier could not be reached in time."""

    status_code = 503
    error_type = "BackendUnavailable"


class EntropyUnavailable(OtpEngineError):
    """The operating system refused to hand out random bytes."""

    status_code = 500
    error_type = "EntropyUnavailable"


async def bounded(awaitable: Awaitable[T], *, timeout: float, operation: str) -> T:
    """
    Await a backend call with a hard deadline.

    A timeout or driver error becomes BackendUnavailable, so callers always
    see a definite failure instead of a call that "might have" landed.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as exc:
        logger.error("Backend operation %r timed out after %.1fs", operation, timeout)
        raise BackendUnavailable(
            f"Backend operation timed out: {operation}", operation=operation
        ) from exc
    except sqlite3.Error as exc:
        logger.exception("Backend operation %r failed", operation)
        raise BackendUnavailable(
            f"Backend operation failed: {operation}", operation=operation
        ) from exc
