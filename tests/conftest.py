import numpy as np
import pytest
from fastapi.testclient import TestClient

from sms_gateway.config import Settings
from sms_gateway.main import create_app


class SleepRecorder:
    """Stands in for asyncio.sleep; remembers the requested delays instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def make_client(sleeps):
    def _make(seed=7, upstream=None, **overrides):
        overrides.setdefault("log_format", "console")
        app = create_app(Settings(**overrides), rng=np.random.default_rng(seed), sleep=sleeps, upstream=upstream)
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def destination_client(make_client):
    return make_client(simulation_policy="destination")
