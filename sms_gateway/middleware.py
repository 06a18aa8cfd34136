"""
Request instrumentation middleware.

Times every request and folds the result into the latency histogram, the
traffic counter and (for 4xx/5xx) the error counter, then writes one
structured log line. The scrape route is skipped so Prometheus polling
does not show up as traffic.

Plain ASGI rather than ``BaseHTTPMiddleware``: the wrapped ``receive`` must
reach the endpoint unchanged so an ``http.disconnect`` seen there is
recorded in ``scope["state"]`` and the request is left out of the metrics.
"""

import asyncio
import time
from typing import Iterable

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send
import structlog

from sms_gateway.metrics import GatewayMetrics

logger = structlog.get_logger(__name__)

UNMATCHED_ROUTE = "unmatched"
DISCONNECTED_KEY = "client_disconnected"


def route_template(scope: Scope) -> str:
    """Matched route path (``/sms/send``), never the raw URL."""
    route = scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED_ROUTE


def error_type(status_code: int) -> str:
    return "server_error" if status_code >= 500 else "client_error"


def client_disconnected(scope: Scope) -> bool:
    return bool(scope.get("state", {}).get(DISCONNECTED_KEY, False))


class MetricsMiddleware:
    def __init__(self, app: ASGIApp, metrics: GatewayMetrics, excluded_paths: Iterable[str] = ("/metrics",)):
        self.app = app
        self.metrics = metrics
        self.excluded_paths = frozenset(excluded_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self.excluded_paths:
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        status_code = 500
        start = time.perf_counter()

        async def receive_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.disconnect":
                state[DISCONNECTED_KEY] = True
            return message

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        except asyncio.CancelledError:
            logger.info("request_cancelled", method=scope["method"], path=scope["path"])
            raise
        except Exception:
            self.record(scope, 500, start)
            raise

        if client_disconnected(scope):
            logger.info("client_disconnected", method=scope["method"], path=scope["path"])
            return
        self.record(scope, status_code, start)

    def record(self, scope: Scope, status_code: int, start: float) -> None:
        duration_ms = (time.perf_counter() - start) * 1000.0
        request = Request(scope)
        labels = {"method": request.method, "route": route_template(scope), "status_code": str(status_code)}

        self.metrics.latency.observe(labels, duration_ms)
        self.metrics.requests.inc(labels)
        if status_code >= 400:
            self.metrics.errors.inc({**labels, "error_type": error_type(status_code)})

        logger.info(
            "api_request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            user_agent=request.headers.get("user-agent"),
            client_ip=request.client.host if request.client else None,
        )
