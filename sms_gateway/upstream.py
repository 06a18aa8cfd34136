from typing import Any, Dict, Optional

import httpx
import structlog

from sms_gateway.exceptions import NetworkError

logger = structlog.get_logger(__name__)


class UpstreamClient:
    """Forwards accepted messages to a real downstream platform, when one is configured."""

    def __init__(self, url: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def forward(self, message: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=message)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("upstream_forward_failed", url=self.url, error=str(exc))
            raise NetworkError(f"downstream platform call failed: {exc}") from exc
