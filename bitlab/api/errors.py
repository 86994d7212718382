"""FastAPI error handler registration for the bitlab exception hierarchy."""
from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import (
    BatchNotFoundError,
    InvalidTransitionError,
    JobNotFoundError,
    RuntimeUnavailable,
    ValidationError,
)
from .schemas.envelope import ApiResponse

logger = logging.getLogger(__name__)


class ResultNotFoundError(Exception):
    """Requested execution result is not in the history."""


class DataFileNotFoundError(Exception):
    """Requested data file is not registered."""


# ── Error → HTTP mapping ────────────────────────────────────────────

_EXCEPTION_STATUS = {
    JobNotFoundError: 404,
    BatchNotFoundError: 404,
    ResultNotFoundError: 404,
    DataFileNotFoundError: 404,
    InvalidTransitionError: 409,
    ValidationError: 422,
    RuntimeUnavailable: 503,
}


def _make_handler(status_code: int):
    """Create a handler that wraps an exception in ApiResponse."""

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        warnings = exc.errors if isinstance(exc, ValidationError) else None
        resp = ApiResponse.fail(str(exc), warnings=warnings)
        return JSONResponse(status_code=status_code, content=resp.model_dump())

    return _handler


def register_error_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on the FastAPI app."""
    for exc_cls, status in _EXCEPTION_STATUS.items():
        app.add_exception_handler(exc_cls, _make_handler(status))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
        resp = ApiResponse.fail("Internal server error")
        return JSONResponse(status_code=500, content=resp.model_dump())
