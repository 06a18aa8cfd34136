from typing import Tuple

import psutil
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from sms_gateway.metrics import GatewayMetrics
from sms_gateway.simulator import DeliverySimulator


class MetricsExporter:
    """Renders the registry in the Prometheus text format, sampling saturation gauges first."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, metrics: GatewayMetrics, simulator: DeliverySimulator):
        self.metrics = metrics
        self.simulator = simulator
        self._process = psutil.Process()

    def sample_saturation(self) -> None:
        mem = self._process.memory_info()
        self.metrics.memory.set({"type": "rss"}, mem.rss)
        self.metrics.memory.set({"type": "vms"}, mem.vms)
        # synthetic, not os.getloadavg()
        self.metrics.system_load.set(None, self.simulator.synthetic_load_average())

    def scrape(self) -> Tuple[bytes, str]:
        self.sample_saturation()
        return generate_latest(self.metrics.registry.collector_registry), self.content_type
