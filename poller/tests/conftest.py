import pytest

from poller.client import AccountSnapshot, UptimeRobotError
from poller.metrics import MetricsRegistry
from poller.tests.fakes import FakeClient, FakeRegistry


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def account():
    return AccountSnapshot(
        email="ops@example.com",
        user_id=42,
        firstname="Ops",
        payment_period=1,
        monitor_limit=50,
        monitor_interval=5,
        up_monitors=3,
        down_monitors=1,
        paused_monitors=2,
    )


@pytest.fixture
def fetch_error():
    return UptimeRobotError("getMonitors", "request failed: connection refused")
