from sms_gateway.registry import MetricRegistry

HTTP_LABELS = ["method", "route", "status_code"]
LATENCY_BUCKETS_MS = (50, 100, 200, 500, 1000, 2000, 5000)


class GatewayMetrics:
    """Golden signals plus the delivery-specific series."""

    def __init__(self, registry: MetricRegistry):
        self.registry = registry
        # latency / traffic / errors
        self.latency = registry.histogram(
            "http_request_duration_ms", "Duration of HTTP requests in ms", HTTP_LABELS,
            buckets=LATENCY_BUCKETS_MS,
        )
        self.requests = registry.counter("http_requests_total", "Total number of HTTP requests", HTTP_LABELS)
        self.errors = registry.counter(
            "http_errors_total", "Total number of HTTP errors",
            ["method", "route", "error_type", "status_code"],
        )
        # saturation
        self.system_load = registry.gauge("system_load_avg", "System load average")
        self.memory = registry.gauge("process_memory_usage_bytes", "Process memory usage in bytes", ["type"])
        self.queue_depth = registry.gauge("sms_queue_depth", "Number of SMS messages waiting in queue")
        # delivery
        self.delivered = registry.counter(
            "sms_delivered_total", "Total SMS messages by delivery outcome",
            ["destination_country", "status", "platform"],
        )
        self.platform_errors = registry.counter(
            "platform_error_total", "Total number of platform-specific API errors",
            ["platform", "api", "error_type"],
        )
        self.send_calls = registry.counter("send_message_calls_total", "Total sendMessage API calls", ["platform"])
