"""
Gateway exceptions.

Metric errors are raised by the registry for programming mistakes
(bad label sets, negative counter increments). Gateway errors map to HTTP
responses through the handlers registered in ``register_exception_handlers``.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

logger = structlog.get_logger(__name__)


# ============================================================================
# METRIC ERRORS
# ============================================================================


class MetricError(Exception):
    """Base class for registry errors."""


class DuplicateMetricError(MetricError):
    pass


class LabelMismatchError(MetricError):
    pass


class InvalidValueError(MetricError, ValueError):
    pass


# ============================================================================
# GATEWAY ERRORS
# ============================================================================


class GatewayError(Exception):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error_code, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(GatewayError):
    """Client sent an incomplete or malformed request."""

    status_code = 400
    error_code = "validation_error"


class RateLimitError(GatewayError):
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, {"retryAfter": retry_after})
        self.retry_after = retry_after


class SimulatedUpstreamError(GatewayError):
    """Chaos-injected failure of the (pretend) delivery platform."""

    error_code = "upstream_error"


class NetworkError(GatewayError):
    """Forwarding the message to a downstream platform failed."""

    error_code = "network_error"


# ============================================================================
# HANDLERS
# ============================================================================


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        method=request.method,
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.error_code,
        message=exc.message,
    )
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies are reported the same way as missing fields.
    return await gateway_error_handler(request, ValidationError("invalid request body"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
