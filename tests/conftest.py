"""Pytest fixtures for the proxier test suite"""
import logging

import pytest

from proxier.channel import CancellationToken, HandoffChannel
from proxier.log import SafeUnicodeFilter
from tests.helpers.k8s import FakeCoreV1, FakeWatchFactory
from tests.helpers.transport import RecordingTransport

logger = logging.getLogger(__name__)


@pytest.fixture(scope="session", autouse=True)
def configure_safe_logging():
    """Install the surrogate-sanitizing filter on the root logger for the session."""
    safe_filter = SafeUnicodeFilter()
    logging.root.addFilter(safe_filter)
    yield
    logging.root.removeFilter(safe_filter)


@pytest.fixture
def core_v1():
    """Fake CoreV1Api with no services or endpoints"""
    return FakeCoreV1()


@pytest.fixture
def cancel():
    """
    Cancellation token shared by channels and loops in a test.

    Cancelled on teardown so no background thread outlives its test.
    """
    token = CancellationToken()
    yield token
    token.cancel()


@pytest.fixture
def requests_channel(cancel):
    return HandoffChannel(cancel, poll_interval=0.01, name="requests")


@pytest.fixture
def notifications_channel(cancel):
    return HandoffChannel(cancel, poll_interval=0.01, name="notifications")


@pytest.fixture
def transport():
    """Transport double that records open/close calls"""
    return RecordingTransport()


@pytest.fixture
def watch_factory():
    """Scripted watch; push() batches of events to replay"""
    return FakeWatchFactory()


def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "quick: Pure tests with no background threads")
    config.addinivalue_line("markers", "concurrency: Tests that run background threads")
    config.addinivalue_line("markers", "scenario: End-to-end worked examples")
