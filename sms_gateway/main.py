import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import numpy as np
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import Response
from pydantic import BaseModel
import structlog

from sms_gateway.chaos import ChaosController
from sms_gateway.config import Settings, get_settings
from sms_gateway.exceptions import SimulatedUpstreamError, register_exception_handlers
from sms_gateway.exporter import MetricsExporter
from sms_gateway.logging_config import configure_logging
from sms_gateway.metrics import GatewayMetrics
from sms_gateway.middleware import DISCONNECTED_KEY, MetricsMiddleware, client_disconnected
from sms_gateway.registry import MetricRegistry
from sms_gateway.simulator import FAILED, DeliverySimulator, SendRequest, build_policy, make_rng
from sms_gateway.upstream import UpstreamClient

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

router = APIRouter()


class LoadToggle(BaseModel):
    enabled: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _field(payload: dict, *names: str) -> Optional[str]:
    for name in names:
        value = payload.get(name)
        if value is not None:
            return str(value)
    return None


def platform_hint(request: Request) -> str:
    return (request.headers.get("x-platform") or "unknown").strip().lower()


@router.get("/health")
def health(request: Request):
    chaos: ChaosController = request.app.state.chaos
    return {
        "status": "healthy",
        "timestamp": _now().isoformat(),
        "queueDepth": chaos.current_state().queue_depth,
    }


@router.post("/sms/send")
async def send_sms(request: Request, payload: dict):
    return await _send(request, payload, api="sms.send")


@router.post("/whatsapp/send-template")
async def send_whatsapp_template(request: Request, payload: dict):
    return await _send(request, payload, api="whatsapp.send_template")


async def _send(request: Request, payload: dict, api: str):
    state = request.app.state
    metrics: GatewayMetrics = state.metrics
    chaos: ChaosController = state.chaos
    simulator: DeliverySimulator = state.simulator

    message = SendRequest(
        to=_field(payload, "to"),
        text=_field(payload, "text", "body"),
        sender=_field(payload, "from"),
        platform=platform_hint(request),
    )
    metrics.send_calls.inc({"platform": message.platform})

    # client errors go back before any simulated delay
    simulator.precheck(message)

    chaos_state = chaos.current_state()
    latency_ms = simulator.simulate_latency(chaos_state)
    outcome = simulator.simulate_delivery_outcome(message, chaos_state, latency_ms)

    await state.sleep(latency_ms / 1000.0)

    # is_disconnected() polls receive, which lets the middleware flag the scope
    if await request.is_disconnected() or client_disconnected(request.scope):
        request.scope.setdefault("state", {})[DISCONNECTED_KEY] = True
        logger.info("send_abandoned", api=api, platform=message.platform)
        return Response(status_code=499)

    delivery_labels = {"destination_country": outcome.country, "platform": outcome.platform}

    if outcome.status == FAILED:
        metrics.platform_errors.inc({"platform": outcome.platform, "api": api, "error_type": "upstream_error"})
        metrics.delivered.inc({**delivery_labels, "status": FAILED})
        raise SimulatedUpstreamError(
            "simulated upstream failure",
            {"platform": outcome.platform, "underLoad": chaos_state.under_load},
        )

    if state.upstream is not None and outcome.delivered:
        await state.upstream.forward({"to": message.to, "text": message.text, "from": message.sender})

    if outcome.silent_failure:
        queue_depth = chaos.adjust_queue_depth(1)
        metrics.platform_errors.inc({"platform": outcome.platform, "api": api, "error_type": "silent_failure"})
        logger.warning("silent_delivery_failure", to=message.to, platform=outcome.platform, queue_depth=queue_depth)
    else:
        queue_depth = chaos.current_state().queue_depth
    metrics.queue_depth.set(None, queue_depth)
    metrics.delivered.inc({**delivery_labels, "status": outcome.status})

    logger.info(
        "send_api_response",
        api=api,
        to=message.to,
        sender=message.sender,
        platform=outcome.platform,
        accepted=True,
        delivered=outcome.delivered,
        queue_depth=queue_depth,
        processing_time_ms=round(latency_ms, 2),
    )

    # Accepted either way; delivery failures are only visible in metrics and logs.
    return {
        "messageId": f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
        "status": "accepted",
        "to": message.to,
        "estimatedDelivery": (_now() + timedelta(seconds=state.settings.estimated_delivery_seconds)).isoformat(),
    }


@router.post("/admin/simulate-load")
def simulate_load(request: Request, toggle: LoadToggle):
    chaos: ChaosController = request.app.state.chaos
    new_state = chaos.set_under_load(toggle.enabled)
    logger.info("load_simulation_changed", enabled=new_state.under_load)
    return {"loadSimulation": new_state.under_load}


@router.get("/metrics")
def metrics_endpoint(request: Request):
    body, content_type = request.app.state.exporter.scrape()
    return Response(body, media_type=content_type)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info("gateway_starting", port=settings.port, simulation_policy=settings.simulation_policy)
    yield
    # uvicorn has already waited for open connections by the time this runs
    logger.info("gateway_shutting_down")


def create_app(
    settings: Optional[Settings] = None,
    *,
    rng: Optional[np.random.Generator] = None,
    sleep: Optional[Sleep] = None,
    upstream: Optional[UpstreamClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    registry = MetricRegistry()
    metrics = GatewayMetrics(registry)
    policy = build_policy(
        settings.simulation_policy,
        disfavored_platform=settings.disfavored_platform,
        rate_limit_sender=settings.rate_limit_sender,
        retry_after=settings.rate_limit_retry_after,
    )
    simulator = DeliverySimulator(policy, rng if rng is not None else make_rng(settings.random_seed))
    if upstream is None and settings.upstream_url:
        upstream = UpstreamClient(settings.upstream_url, settings.upstream_timeout)

    app = FastAPI(title="SMS Gateway Simulator", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.metrics = metrics
    app.state.chaos = ChaosController()
    app.state.simulator = simulator
    app.state.exporter = MetricsExporter(metrics, simulator)
    app.state.sleep = sleep or asyncio.sleep
    app.state.upstream = upstream

    register_exception_handlers(app)
    app.add_middleware(MetricsMiddleware, metrics=metrics, excluded_paths=("/metrics",))
    app.include_router(router)
    return app


app = create_app()
