"""Tests for adaptive polling."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from pysleepme.exceptions import SleepmeConnectionError
from pysleepme.models import DeviceStatus
from pysleepme.polling import AdaptivePoller
from pysleepme.resilience import ExponentialBackoff, RetryCoordinator


DEVICE_ID = "dev-1"


@pytest.fixture
def retry() -> RetryCoordinator:
    """Coordinator that does not retry failed polls."""
    return RetryCoordinator("Test Dock", backoff=ExponentialBackoff(base_delay=0.01, max_retries=0))


def _fast_poller(retry: RetryCoordinator, active: float = 0.02, standby: float = 0.05) -> AdaptivePoller:
    poller = AdaptivePoller("Test Dock", retry)
    # Below the public floors to keep tests quick
    poller._active_interval = active
    poller._standby_interval = standby
    return poller


class TestPollerConfiguration:
    """Tests for interval defaults and clamping."""

    def test_defaults(self, retry: RetryCoordinator) -> None:
        """Test default intervals (30 seconds active, 15 minutes standby)."""
        poller = AdaptivePoller("Test Dock", retry)

        assert poller.active_interval == 30.0
        assert poller.standby_interval == 900.0
        assert poller.is_polling is False
        assert poller.current_status is None

    def test_custom_intervals(self, retry: RetryCoordinator) -> None:
        """Test that the standby interval is configured in minutes."""
        poller = AdaptivePoller("Test Dock", retry, active_interval=10, standby_interval_minutes=2)

        assert poller.active_interval == 10.0
        assert poller.standby_interval == 120.0
        assert poller.interval_for(True) == 10.0
        assert poller.interval_for(False) == 120.0

    def test_intervals_clamped_to_floor(self, retry: RetryCoordinator, caplog: pytest.LogCaptureFixture) -> None:
        """Test that too-small intervals are raised to their floors with a warning."""
        poller = AdaptivePoller("Test Dock", retry, active_interval=1, standby_interval_minutes=0.5)

        assert poller.active_interval == 5.0
        assert poller.standby_interval == 60.0
        assert "Active polling interval must be at least 5 seconds" in caplog.text
        assert "Standby polling interval must be at least 1 minute" in caplog.text


class TestPollingLoop:
    """Tests for the polling cycle."""

    async def test_poll_delivers_update_and_switches_to_active(
        self,
        retry: RetryCoordinator,
        make_status: Callable[..., DeviceStatus],
    ) -> None:
        """Test that an active status switches the poller to the active cadence."""
        api = AsyncMock()
        api.get_device_status.return_value = make_status(thermal_control_status="active")
        on_update = MagicMock()
        poller = _fast_poller(retry)

        poller.start_polling(api, DEVICE_ID, False, on_update)
        assert poller.is_polling is True
        await asyncio.sleep(0.15)

        assert poller.is_active is True
        assert on_update.call_count >= 2
        assert poller.current_status is not None
        assert poller.current_status.is_active is True
        api.get_device_status.assert_awaited_with(DEVICE_ID)
        await poller.shutdown()

    async def test_active_to_standby_transition(
        self,
        retry: RetryCoordinator,
        make_status: Callable[..., DeviceStatus],
    ) -> None:
        """Test that a standby status switches the poller to the slow cadence."""
        api = AsyncMock()
        api.get_device_status.return_value = make_status(thermal_control_status="standby")
        poller = _fast_poller(retry, active=0.01, standby=10.0)

        poller.start_polling(api, DEVICE_ID, True, MagicMock())
        await asyncio.sleep(0.1)

        assert poller.is_active is False
        # Next poll is ten seconds out
        api.get_device_status.assert_awaited_once()
        await poller.shutdown()

    async def test_errors_do_not_stop_polling(self, retry: RetryCoordinator) -> None:
        """Test that failed polls are logged and the cycle continues."""
        api = AsyncMock()
        api.get_device_status.side_effect = SleepmeConnectionError("down")
        on_update = MagicMock()
        poller = _fast_poller(retry, standby=0.02)

        poller.start_polling(api, DEVICE_ID, False, on_update)
        await asyncio.sleep(0.2)

        assert api.get_device_status.await_count >= 2
        on_update.assert_not_called()
        assert poller.is_polling is True
        await poller.shutdown()

    async def test_callback_errors_do_not_stop_polling(
        self,
        retry: RetryCoordinator,
        make_status: Callable[..., DeviceStatus],
    ) -> None:
        """Test that a failing update callback does not break the cycle."""
        api = AsyncMock()
        api.get_device_status.return_value = make_status()
        on_update = MagicMock(side_effect=RuntimeError("listener failure"))
        poller = _fast_poller(retry, standby=0.02)

        poller.start_polling(api, DEVICE_ID, False, on_update)
        await asyncio.sleep(0.2)

        assert on_update.call_count >= 2
        await poller.shutdown()


class TestPollingLifecycle:
    """Tests for stopping and restarting."""

    async def test_stop_polling_cancels_timer(self, retry: RetryCoordinator) -> None:
        """Test that stop_polling prevents further polls."""
        api = AsyncMock()
        poller = _fast_poller(retry)

        poller.start_polling(api, DEVICE_ID, False, MagicMock())
        poller.stop_polling()
        await asyncio.sleep(0.1)

        assert poller.is_polling is False
        api.get_device_status.assert_not_awaited()

    async def test_in_flight_poll_delivers_after_stop(
        self,
        retry: RetryCoordinator,
        make_status: Callable[..., DeviceStatus],
    ) -> None:
        """Test that a fetch in flight when polling stops still delivers, without rescheduling."""
        status = make_status()

        async def slow_status(device_id: str) -> DeviceStatus:
            await asyncio.sleep(0.05)
            return status

        api = AsyncMock()
        api.get_device_status.side_effect = slow_status
        on_update = MagicMock()
        poller = _fast_poller(retry, standby=0.01)

        poller.start_polling(api, DEVICE_ID, False, on_update)
        await asyncio.sleep(0.03)
        poller.stop_polling()
        await asyncio.sleep(0.1)

        on_update.assert_called_once_with(status)
        api.get_device_status.assert_awaited_once()
        assert poller.is_polling is False

    async def test_shutdown_cancels_in_flight_poll(self, retry: RetryCoordinator) -> None:
        """Test that shutdown cancels a fetch in flight."""

        async def hanging_status(device_id: str) -> DeviceStatus:
            await asyncio.sleep(10)
            raise AssertionError

        api = AsyncMock()
        api.get_device_status.side_effect = hanging_status
        on_update = MagicMock()
        poller = _fast_poller(retry, standby=0.01)

        poller.start_polling(api, DEVICE_ID, False, on_update)
        await asyncio.sleep(0.03)
        await poller.shutdown()

        on_update.assert_not_called()
        assert poller.is_polling is False

    async def test_update_polling_interval_then_restart(
        self,
        retry: RetryCoordinator,
        make_status: Callable[..., DeviceStatus],
    ) -> None:
        """Test that a restart uses the cadence of the new activity flag."""
        api = AsyncMock()
        api.get_device_status.return_value = make_status(thermal_control_status="active")
        poller = _fast_poller(retry, active=0.01, standby=10.0)

        poller.start_polling(api, DEVICE_ID, False, MagicMock())
        poller.update_polling_interval(True)
        assert poller.is_polling is False

        poller.start_polling(api, DEVICE_ID, True, MagicMock())
        await asyncio.sleep(0.1)

        assert api.get_device_status.await_count >= 2
        await poller.shutdown()
