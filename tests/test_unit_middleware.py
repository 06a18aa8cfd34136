import asyncio

import pytest

from sms_gateway.metrics import GatewayMetrics
from sms_gateway.middleware import MetricsMiddleware, error_type
from sms_gateway.registry import MetricRegistry


def _scope(path="/sms/send", method="POST"):
    return {"type": "http", "method": method, "path": path, "headers": [], "query_string": b""}


def _run(app, scope=None, messages=({"type": "http.request", "body": b"", "more_body": False},), metrics=None):
    metrics = metrics or GatewayMetrics(MetricRegistry())
    mw = MetricsMiddleware(app, metrics=metrics)
    inbox = list(messages)
    sent = []

    async def receive():
        return inbox.pop(0) if inbox else {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    asyncio.run(mw(scope or _scope(), receive, send))
    return metrics, sent


def _responder(status):
    async def app(scope, receive, send):
        await send({"type": "http.response.start", "status": status, "headers": []})
        await send({"type": "http.response.body", "body": b""})
    return app


def test_error_type():
    assert error_type(404) == "client_error"
    assert error_type(429) == "client_error"
    assert error_type(503) == "server_error"


def test_records_completed_request():
    metrics, sent = _run(_responder(500))
    labels = {"method": "POST", "route": "unmatched", "status_code": "500"}
    assert sent[0]["status"] == 500
    assert metrics.requests.get(labels) == 1
    assert metrics.latency.count(labels) == 1
    assert metrics.errors.get({**labels, "error_type": "server_error"}) == 1


def test_cancelled_request_records_nothing():
    async def app(scope, receive, send):
        raise asyncio.CancelledError()

    metrics = GatewayMetrics(MetricRegistry())
    with pytest.raises(asyncio.CancelledError):
        _run(app, metrics=metrics)
    assert metrics.registry.snapshot().series_labels("http_requests_total") == []


def test_disconnect_seen_by_app_records_nothing():
    async def app(scope, receive, send):
        await receive()
        message = await receive()
        assert message["type"] == "http.disconnect"
        await send({"type": "http.response.start", "status": 499, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    metrics, _ = _run(app)
    assert metrics.registry.snapshot().series_labels("http_requests_total") == []


def test_unhandled_exception_counted_as_server_error():
    async def app(scope, receive, send):
        raise RuntimeError("boom")

    metrics = GatewayMetrics(MetricRegistry())
    with pytest.raises(RuntimeError):
        _run(app, metrics=metrics)
    assert metrics.requests.get({"method": "POST", "route": "unmatched", "status_code": "500"}) == 1


def test_scrape_path_skipped():
    metrics, sent = _run(_responder(200), _scope("/metrics", "GET"))
    assert sent[0]["status"] == 200
    assert metrics.registry.snapshot().series_labels("http_requests_total") == []
