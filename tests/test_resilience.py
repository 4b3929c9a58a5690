"""Tests for resilience patterns (exponential backoff, rate limiting, retry coordination)."""

from __future__ import annotations

from http import HTTPStatus
from unittest.mock import AsyncMock

import pytest

from pysleepme.exceptions import SleepmeApiError, SleepmeConnectionError
from pysleepme.models import Control
from pysleepme.resilience import (
    ExponentialBackoff,
    MismatchState,
    RateLimiter,
    RetryCoordinator,
)


DEVICE_ID = "dev-1"


def _fast_coordinator(max_retries: int = 3) -> RetryCoordinator:
    return RetryCoordinator(
        "Test Dock",
        backoff=ExponentialBackoff(base_delay=0.01, max_retries=max_retries),
        mismatch_retry_delay=0.01,
    )


class TestExponentialBackoff:
    """Test ExponentialBackoff pattern."""

    def test_default_schedule(self) -> None:
        """Test that defaults wait 15s, 30s and 60s."""
        backoff = ExponentialBackoff()

        assert backoff.max_retries == 3
        assert [backoff.calculate_delay(retry) for retry in range(3)] == [15.0, 30.0, 60.0]

    def test_exponential_growth(self) -> None:
        """Test that delays grow exponentially."""
        backoff = ExponentialBackoff(base_delay=1.0, exponential_base=2.0)

        assert backoff.calculate_delay(0) == 1.0  # 1 * 2^0
        assert backoff.calculate_delay(1) == 2.0  # 1 * 2^1
        assert backoff.calculate_delay(3) == 8.0  # 1 * 2^3

    def test_respects_max_delay(self) -> None:
        """Test that delay is capped at max_delay."""
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0)

        assert backoff.calculate_delay(5) == 5.0

    def test_jitter_stays_within_bounds(self) -> None:
        """Test that jittered delays never exceed the computed delay."""
        backoff = ExponentialBackoff(base_delay=10.0, jitter=True)

        delays = [backoff.calculate_delay(0) for _ in range(10)]

        assert all(0 <= d <= 10.0 for d in delays)


class TestRateLimiter:
    """Test RateLimiter pattern."""

    def test_get_retry_delay_returns_zero_for_non_429(self) -> None:
        """Test that non-429 status returns zero delay."""
        assert RateLimiter().get_retry_delay(HTTPStatus.OK, None) == 0.0

    def test_get_retry_delay_uses_default_without_header(self) -> None:
        """Test that default delay is used when no Retry-After header."""
        limiter = RateLimiter(default_retry_delay=45.0)
        assert limiter.get_retry_delay(HTTPStatus.TOO_MANY_REQUESTS, None) == 45.0

    def test_get_retry_delay_parses_header(self) -> None:
        """Test that Retry-After header is parsed."""
        assert RateLimiter().get_retry_delay(HTTPStatus.TOO_MANY_REQUESTS, "30") == 30.0

    def test_get_retry_delay_respects_max_delay(self) -> None:
        """Test that delay is capped at max_retry_delay."""
        limiter = RateLimiter(max_retry_delay=60.0)
        assert limiter.get_retry_delay(HTTPStatus.TOO_MANY_REQUESTS, "300") == 60.0

    def test_get_retry_delay_ignores_header_when_disabled(self) -> None:
        """Test that Retry-After header is ignored when disabled."""
        limiter = RateLimiter(respect_retry_after=False, default_retry_delay=10.0)
        assert limiter.get_retry_delay(HTTPStatus.TOO_MANY_REQUESTS, "30") == 10.0

    def test_get_retry_delay_handles_invalid_header(self) -> None:
        """Test that invalid Retry-After header falls back to default."""
        limiter = RateLimiter(default_retry_delay=20.0)
        assert limiter.get_retry_delay(HTTPStatus.TOO_MANY_REQUESTS, "invalid") == 20.0


class TestRetryWithBackoff:
    """Test RetryCoordinator.retry_with_backoff."""

    async def test_succeeds_on_first_attempt(self) -> None:
        """Test that a successful operation runs once."""
        operation = AsyncMock(return_value="status")

        result = await _fast_coordinator().retry_with_backoff(operation, "poll device status")

        assert result == "status"
        operation.assert_awaited_once()

    async def test_three_failures_then_success(self) -> None:
        """Test that the fourth call may still succeed with three retries."""
        operation = AsyncMock(
            side_effect=[
                SleepmeConnectionError("down"),
                SleepmeConnectionError("down"),
                SleepmeApiError("Server error", status_code=500),
                "status",
            ]
        )

        result = await _fast_coordinator(max_retries=3).retry_with_backoff(operation, "poll device status")

        assert result == "status"
        assert operation.await_count == 4

    async def test_four_failures_raise_last_error(self) -> None:
        """Test that the last failure surfaces once retries are exhausted."""
        operation = AsyncMock(
            side_effect=[
                SleepmeConnectionError("down"),
                SleepmeConnectionError("down"),
                SleepmeConnectionError("down"),
                SleepmeApiError("final", status_code=502),
            ]
        )

        with pytest.raises(SleepmeApiError, match="final"):
            await _fast_coordinator(max_retries=3).retry_with_backoff(operation, "poll device status")

        assert operation.await_count == 4

    async def test_max_attempts_overrides_backoff(self) -> None:
        """Test that an explicit max_attempts replaces the backoff's retry count."""
        operation = AsyncMock(side_effect=SleepmeConnectionError("down"))

        with pytest.raises(SleepmeConnectionError):
            await _fast_coordinator(max_retries=5).retry_with_backoff(operation, "poll", max_attempts=1)

        assert operation.await_count == 2

    async def test_any_exception_retried_by_default(self) -> None:
        """Test that failures outside the library's hierarchy are retried too."""
        operation = AsyncMock(side_effect=[OSError("reset"), OSError("reset"), "ok"])

        result = await _fast_coordinator().retry_with_backoff(operation, "read sensor")

        assert result == "ok"
        assert operation.await_count == 3

    async def test_non_retryable_error_raises_immediately(self) -> None:
        """Test that errors outside a narrowed retryable set are not retried."""
        coordinator = RetryCoordinator(
            "Test Dock",
            backoff=ExponentialBackoff(base_delay=0.01),
            retryable_exceptions=(SleepmeApiError,),
        )
        operation = AsyncMock(side_effect=ValueError("bug"))

        with pytest.raises(ValueError, match="bug"):
            await coordinator.retry_with_backoff(operation, "poll")

        operation.assert_awaited_once()


class TestResolveStateMismatch:
    """Test RetryCoordinator.resolve_state_mismatch."""

    async def test_resolved_on_retry(self) -> None:
        """Test that a matching confirmation resolves the mismatch."""
        api = AsyncMock()
        api.set_thermal_control_status.return_value = Control(thermal_control_status="active", set_temperature_f=70)
        coordinator = _fast_coordinator()

        control = await coordinator.resolve_state_mismatch(
            api, DEVICE_ID, "active", "standby", Control(thermal_control_status="standby")
        )

        assert control.thermal_control_status == "active"
        assert control.set_temperature_f == 70
        assert coordinator.last_mismatch_state is MismatchState.RESOLVED
        api.set_thermal_control_status.assert_awaited_once_with(DEVICE_ID, "active")

    async def test_accepts_device_state_after_exhaustion(self) -> None:
        """Test that a persistent mismatch ends with the device-reported state."""
        api = AsyncMock()
        api.set_thermal_control_status.return_value = Control(thermal_control_status="standby")
        coordinator = _fast_coordinator()
        current = Control(thermal_control_status="active", set_temperature_f=70)

        control = await coordinator.resolve_state_mismatch(api, DEVICE_ID, "active", "standby", current)

        assert control.thermal_control_status == "standby"
        assert control.set_temperature_f == 70
        assert control is not current
        assert current.thermal_control_status == "active"
        assert coordinator.last_mismatch_state is MismatchState.ACCEPTED
        assert api.set_thermal_control_status.await_count == 3

    async def test_state_is_retrying_while_command_is_reissued(self) -> None:
        """Test that the live state moves through RETRYING before it settles."""
        coordinator = _fast_coordinator()
        seen: list[MismatchState | None] = []

        async def reissue(device_id: str, thermal_status: str) -> Control:
            seen.append(coordinator.last_mismatch_state)
            return Control(thermal_control_status=thermal_status)

        api = AsyncMock()
        api.set_thermal_control_status.side_effect = reissue

        await coordinator.resolve_state_mismatch(api, DEVICE_ID, "active", "standby", None)

        assert seen == [MismatchState.RETRYING]
        assert coordinator.last_mismatch_state is MismatchState.RESOLVED

    async def test_errors_consume_rounds(self) -> None:
        """Test that transport errors count as failed rounds."""
        api = AsyncMock()
        api.set_thermal_control_status.side_effect = [
            SleepmeConnectionError("down"),
            Control(thermal_control_status="active"),
        ]
        coordinator = _fast_coordinator()

        control = await coordinator.resolve_state_mismatch(api, DEVICE_ID, "active", "standby", None)

        assert control.thermal_control_status == "active"
        assert api.set_thermal_control_status.await_count == 2

    async def test_all_errors_accept_initial_state(self) -> None:
        """Test that failing every round accepts the first observed state."""
        api = AsyncMock()
        api.set_thermal_control_status.side_effect = SleepmeConnectionError("down")
        coordinator = _fast_coordinator()

        control = await coordinator.resolve_state_mismatch(api, DEVICE_ID, "active", "standby", None)

        assert control == Control(thermal_control_status="standby")
        assert coordinator.last_mismatch_state is MismatchState.ACCEPTED

    async def test_retry_count_already_spent(self) -> None:
        """Test that no command is sent when the rounds are already used up."""
        api = AsyncMock()
        coordinator = _fast_coordinator()

        control = await coordinator.resolve_state_mismatch(
            api, DEVICE_ID, "active", "standby", None, retry_count=3
        )

        assert control.thermal_control_status == "standby"
        api.set_thermal_control_status.assert_not_awaited()
