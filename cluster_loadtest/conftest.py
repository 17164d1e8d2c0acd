"""
Pytest configuration and fixtures for the cluster load-test pipeline.

This module provides shared fixtures and configuration for all tests.
"""

from unittest.mock import MagicMock

import pytest
from hypothesis import settings, Verbosity

from cluster_loadtest.framework.kubectl import KubectlClient
from cluster_loadtest.framework.models import ClusterHandle

# Configure Hypothesis profiles
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Load the default hypothesis profile
    settings.load_profile("default")


class FakeClock:
    """Monotonic clock whose sleep advances time instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    """A FakeClock; pass clock as the clock and clock.sleep as the sleep."""
    return FakeClock()


@pytest.fixture
def handle():
    """Handle for a cluster named test-cluster."""
    return ClusterHandle(name="test-cluster")


@pytest.fixture
def kubectl():
    """A KubectlClient mock with harmless defaults."""
    client = MagicMock(spec=KubectlClient)
    client.cluster_info.return_value = True
    client.get_pods_table.return_value = "NAME READY STATUS"
    client.describe.return_value = "describe output"
    client.logs_by_selector.return_value = "pod logs"
    client.delete.return_value = True
    return client
