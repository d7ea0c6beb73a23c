"""Custom exceptions and centralized FastAPI error handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DashboardError(Exception):
    """Base exception with HTTP status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class ProducerFailed(DashboardError):
    """An upstream fetch could not produce a fresh value.

    Always recovered inside the cache by serving fallback data.
    """

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class StoreUnavailable(DashboardError):
    """The backing cache store could not be read or written."""

    def __init__(self, message: str):
        super().__init__(message, status_code=503)


class FallbackFailed(DashboardError):
    """Both the producer and the fallback failed for a key; no usable data exists."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"No data available for {key}: {reason}", status_code=503)
        self.key = key


ProductionAndFallbackFailed = FallbackFailed


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(DashboardError)
    async def handle_dashboard_error(_request: Request, exc: DashboardError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(ValueError)
    async def handle_value_error(_request: Request, exc: ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=500,
        )
