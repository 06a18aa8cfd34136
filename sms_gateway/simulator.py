# Synthetic latency and delivery outcomes for the fake gateway
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np

from sms_gateway.chaos import ChaosState
from sms_gateway.exceptions import RateLimitError, ValidationError

NORMAL_LATENCY_MS = (50.0, 250.0)
LOADED_LATENCY_MS = (500.0, 2500.0)

NORMAL_ERROR_RATE = 0.001
LOADED_ERROR_RATE = 0.5

COUNTRY_PREFIXES = (("+1", "US"), ("+44", "UK"), ("+49", "DE"))

DELIVERED = "delivered"
UNDELIVERED = "undelivered"  # accepted, silently dropped
FAILED = "failed"            # surfaced to the caller as a 5xx


@dataclass(frozen=True)
class SendRequest:
    to: Optional[str]
    text: Optional[str]
    sender: Optional[str]
    platform: str = "unknown"


@dataclass(frozen=True)
class DeliveryOutcome:
    delivered: bool
    latency_ms: float
    country: str
    platform: str
    status: str
    status_code: int = 200

    @property
    def silent_failure(self) -> bool:
        return self.status == UNDELIVERED


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    return np.random.default_rng(seed)


def simulate_latency(state: ChaosState, rng: np.random.Generator) -> float:
    low, high = LOADED_LATENCY_MS if state.under_load else NORMAL_LATENCY_MS
    return float(rng.uniform(low, high))


def classify_destination(to: Optional[str]) -> str:
    to = (to or "").strip()
    for prefix, country in COUNTRY_PREFIXES:
        if to.startswith(prefix):
            return country
    return "OTHER"


class SimulationPolicy(ABC):
    """Decides how a send request fares, given the current chaos state."""

    name = "base"

    def precheck(self, request: SendRequest) -> None:
        """Raise a client-facing error before any delay is simulated."""

    @abstractmethod
    def outcome(
        self, request: SendRequest, state: ChaosState, latency_ms: float, rng: np.random.Generator
    ) -> DeliveryOutcome:
        ...


class PlatformPolicy(SimulationPolicy):
    """Messages to one platform are accepted but never delivered."""

    name = "platform"

    def __init__(self, disfavored_platform: str = "ios"):
        self.disfavored_platform = disfavored_platform.strip().lower()

    def outcome(self, request, state, latency_ms, rng):
        delivered = request.platform != self.disfavored_platform
        return DeliveryOutcome(
            delivered=delivered,
            latency_ms=latency_ms,
            country=classify_destination(request.to),
            platform=request.platform,
            status=DELIVERED if delivered else UNDELIVERED,
        )


class DestinationPolicy(SimulationPolicy):
    """Validates input, enforces the rate-limit sentinel and injects random upstream errors."""

    name = "destination"

    def __init__(self, rate_limit_sender: str = "RATE_LIMITED", retry_after: int = 30):
        self.rate_limit_sender = rate_limit_sender
        self.retry_after = retry_after

    def precheck(self, request):
        # the sentinel wins over a malformed message
        if request.sender == self.rate_limit_sender:
            raise RateLimitError("rate limit exceeded", retry_after=self.retry_after)
        if not request.to or not request.text:
            raise ValidationError("missing required field: 'to' and 'text' are required")

    def outcome(self, request, state, latency_ms, rng):
        error_rate = LOADED_ERROR_RATE if state.under_load else NORMAL_ERROR_RATE
        failed = bool(rng.random() < error_rate)
        return DeliveryOutcome(
            delivered=not failed,
            latency_ms=latency_ms,
            country=classify_destination(request.to),
            platform=request.platform,
            status=FAILED if failed else DELIVERED,
            status_code=500 if failed else 200,
        )


def build_policy(name: str, disfavored_platform: str = "ios",
                 rate_limit_sender: str = "RATE_LIMITED", retry_after: int = 30) -> SimulationPolicy:
    if name == PlatformPolicy.name:
        return PlatformPolicy(disfavored_platform)
    if name == DestinationPolicy.name:
        return DestinationPolicy(rate_limit_sender, retry_after)
    raise ValueError(f"Unsupported simulation policy: {name}")


class DeliverySimulator:
    """Binds a policy to a random source."""

    def __init__(self, policy: SimulationPolicy, rng: Optional[np.random.Generator] = None):
        self.policy = policy
        self.rng = rng if rng is not None else make_rng()

    def precheck(self, request: SendRequest) -> None:
        self.policy.precheck(request)

    def simulate_latency(self, state: ChaosState) -> float:
        return simulate_latency(state, self.rng)

    def simulate_delivery_outcome(self, request: SendRequest, state: ChaosState,
                                  latency_ms: Optional[float] = None) -> DeliveryOutcome:
        if latency_ms is None:
            latency_ms = self.simulate_latency(state)
        return self.policy.outcome(request, state, latency_ms, self.rng)

    def synthetic_load_average(self) -> float:
        return float(self.rng.uniform(0.0, 3.0))
