"""Pytest configuration and fixtures for integration tests."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from dotenv import load_dotenv

from pysleepme import SleepmeClient, SleepmeConfig


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


# Load .env file from project root
env_path = Path(__file__).parents[2] / ".env"
load_dotenv(env_path)


@pytest.fixture(scope="session")
def integration_config() -> SleepmeConfig:
    """Load integration test configuration from environment.

    Skips the test when no API key is configured.
    """
    api_key = os.getenv("SLEEPME_API_KEY")
    if not api_key:
        pytest.skip("Missing SLEEPME_API_KEY. Create a .env file to run integration tests.")

    return SleepmeConfig.from_dict(
        {
            "api_keys": api_key.split(","),
            "base_url": os.getenv("SLEEPME_API_BASE_URL") or None,
            "min_request_interval": os.getenv("SLEEPME_MIN_REQUEST_INTERVAL", "2"),
        }
    )


@pytest.fixture(scope="session")
def test_device_id() -> str | None:
    """Get test device ID from environment if available.

    Returns:
        Device ID for testing, or None to use first discovered device.
    """
    return os.getenv("SLEEPME_TEST_DEVICE_ID")


@pytest.fixture
async def client(integration_config: SleepmeConfig) -> AsyncGenerator[SleepmeClient]:
    """Create a client that owns its session."""
    async with SleepmeClient(config=integration_config) as client:
        yield client


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line("markers", "integration: Integration tests requiring real API access")
    config.addinivalue_line("markers", "slow: Slow tests that may take several seconds")


@pytest.fixture(autouse=True)
async def rate_limit_delay(request: pytest.FixtureRequest) -> AsyncGenerator[None]:
    """Add delay between integration tests to prevent API rate limiting."""
    yield
    if "integration" in request.keywords:
        await asyncio.sleep(2.0)
