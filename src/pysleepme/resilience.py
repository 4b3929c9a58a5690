"""Resilience patterns for the Sleepme API (exponential backoff, rate limiting, state reconciliation)."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import TYPE_CHECKING, TypeVar

from pysleepme.const import (
    DEFAULT_MAX_RETRIES,
    INITIAL_RETRY_DELAY,
    MAX_STATE_MISMATCH_RETRIES,
    STATE_MISMATCH_RETRY_DELAY,
)
from pysleepme.exceptions import SleepmeError
from pysleepme.models import Control


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pysleepme.api import SleepmeAPI

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class MismatchState(Enum):
    """States of the state-mismatch reconciliation protocol."""

    COMPARING = "comparing"  # Checking a confirmed response against the target
    RETRYING = "retrying"  # Re-issuing the command after a mismatch
    RESOLVED = "resolved"  # Device confirmed the target state
    ACCEPTED = "accepted"  # Gave up, the device-reported state wins


@dataclass
class ExponentialBackoffConfig:
    """Configuration for exponential backoff pattern.

    Attributes:
        base_delay: Initial delay in seconds (default 15.0).
        max_delay: Maximum delay in seconds (default 300.0).
        max_retries: Maximum number of retries after the first attempt (default 3).
        exponential_base: Multiplier for exponential growth (default 2.0).
        jitter: Add randomness to prevent thundering herd (default False).
    """

    base_delay: float = INITIAL_RETRY_DELAY
    max_delay: float = 300.0
    max_retries: int = DEFAULT_MAX_RETRIES
    exponential_base: float = 2.0
    jitter: bool = False


@dataclass
class RateLimitConfig:
    """Configuration for rate limit handling.

    Attributes:
        respect_retry_after: Parse and respect Retry-After header (default True).
        default_retry_delay: Default delay when no Retry-After header (default 60.0).
        max_retry_delay: Maximum time to wait for rate limit (default 300.0 = 5 minutes).
    """

    respect_retry_after: bool = True
    default_retry_delay: float = 60.0
    max_retry_delay: float = 300.0


class ExponentialBackoff:
    """Exponential backoff calculator for retry delays.

    With the defaults, retries wait 15s, 30s and 60s.

    Example:
        backoff = ExponentialBackoff(base_delay=1.0, max_retries=3)
        backoff.calculate_delay(0)  # 1.0
        backoff.calculate_delay(2)  # 4.0
    """

    def __init__(
        self,
        base_delay: float = INITIAL_RETRY_DELAY,
        max_delay: float = 300.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        exponential_base: float = 2.0,
        *,
        jitter: bool = False,
    ) -> None:
        """Initialize exponential backoff calculator.

        Args:
            base_delay: Initial delay in seconds.
            max_delay: Maximum delay in seconds.
            max_retries: Maximum number of retries after the first attempt.
            exponential_base: Multiplier for exponential growth.
            jitter: Add randomness to delays.
        """
        self.config = ExponentialBackoffConfig(
            base_delay=base_delay,
            max_delay=max_delay,
            max_retries=max_retries,
            exponential_base=exponential_base,
            jitter=jitter,
        )

    @property
    def max_retries(self) -> int:
        """Get maximum number of retries."""
        return self.config.max_retries

    def calculate_delay(self, retry: int) -> float:
        """Calculate delay before a given retry.

        Args:
            retry: Retry number (0-indexed, 0 is the first retry).

        Returns:
            Delay in seconds.
        """
        delay = self.config.base_delay * (self.config.exponential_base**retry)
        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            delay = random.uniform(0, delay)  # noqa: S311

        return delay


class RateLimiter:
    """Rate limit handler with Retry-After header support.

    Example:
        limiter = RateLimiter()
        delay = limiter.get_retry_delay(429, response.headers.get("Retry-After"))
    """

    def __init__(
        self,
        respect_retry_after: bool = True,
        default_retry_delay: float = 60.0,
        max_retry_delay: float = 300.0,
    ) -> None:
        """Initialize rate limiter.

        Args:
            respect_retry_after: Parse and respect Retry-After header.
            default_retry_delay: Default delay when no Retry-After header.
            max_retry_delay: Maximum time to wait (safety limit).
        """
        self.config = RateLimitConfig(
            respect_retry_after=respect_retry_after,
            default_retry_delay=default_retry_delay,
            max_retry_delay=max_retry_delay,
        )

    def get_retry_delay(self, response_status: int, retry_after_header: str | None = None) -> float:
        """Calculate retry delay from response.

        Args:
            response_status: HTTP status code.
            retry_after_header: Value of Retry-After header (if present).

        Returns:
            Delay in seconds before retrying.
        """
        if response_status != HTTPStatus.TOO_MANY_REQUESTS:
            return 0.0

        if not self.config.respect_retry_after or not retry_after_header:
            return self.config.default_retry_delay

        try:
            delay = float(retry_after_header)
        except ValueError:
            _LOGGER.debug("Could not parse Retry-After header %r, using default delay", retry_after_header)
            delay = self.config.default_retry_delay

        return min(delay, self.config.max_retry_delay)


class RetryCoordinator:
    """Retry and reconciliation helpers for one device.

    Provides two protocols:

    1. ``retry_with_backoff``: generic exponential-backoff retry for any
       fallible coroutine (used for status polling).
    2. ``resolve_state_mismatch``: re-issues a thermal control command when the
       API confirms a different state than requested, and eventually accepts the
       device-reported state.

    Example:
        ```python
        retry = RetryCoordinator("Bedroom Dock")
        status = await retry.retry_with_backoff(
            lambda: api.get_device_status(device_id), "poll device status"
        )
        ```
    """

    def __init__(
        self,
        device_name: str = "",
        *,
        backoff: ExponentialBackoff | None = None,
        mismatch_retry_delay: float = STATE_MISMATCH_RETRY_DELAY,
        max_mismatch_retries: int = MAX_STATE_MISMATCH_RETRIES,
        retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        """Initialize the coordinator.

        Args:
            device_name: Name used as log prefix.
            backoff: Backoff schedule; defaults to 15s/30s/60s with 3 retries.
            mismatch_retry_delay: Seconds to wait before each mismatch re-issue.
            max_mismatch_retries: Re-issues allowed before accepting the device state.
            retryable_exceptions: Exception types that trigger a retry.
        """
        self._device_name = device_name
        self._backoff = backoff or ExponentialBackoff()
        self._mismatch_retry_delay = mismatch_retry_delay
        self._max_mismatch_retries = max_mismatch_retries
        self._retryable_exceptions = retryable_exceptions
        self._mismatch_state: MismatchState | None = None

    @property
    def backoff(self) -> ExponentialBackoff:
        """Get the backoff schedule."""
        return self._backoff

    @property
    def last_mismatch_state(self) -> MismatchState | None:
        """Get the state of the running or most recent mismatch resolution."""
        return self._mismatch_state

    async def retry_with_backoff(
        self,
        operation: Callable[[], Awaitable[_T]],
        label: str,
        max_attempts: int | None = None,
    ) -> _T:
        """Run ``operation``, retrying failures with exponential backoff.

        The first call is not a retry: with ``max_attempts=3`` the operation runs
        at most four times.

        Args:
            operation: Zero-argument coroutine factory.
            label: Human-readable operation name for logs.
            max_attempts: Retries allowed; defaults to the backoff's max_retries.

        Returns:
            Result of the first successful call.

        Raises:
            Exception: The last failure once retries are exhausted, or any
                non-retryable exception immediately.
        """
        retries = self._backoff.max_retries if max_attempts is None else max_attempts
        attempt = 1

        while True:
            try:
                return await operation()
            except self._retryable_exceptions as exc:
                if attempt > retries:
                    _LOGGER.error(
                        "%s: Failed to %s after %d retries: %s",
                        self._device_name,
                        label,
                        retries,
                        exc,
                    )
                    raise

                delay = self._backoff.calculate_delay(attempt - 1)
                details = str(exc)
                status_code = getattr(exc, "status_code", None)
                if status_code:
                    details = f"HTTP {status_code}: {details}"
                _LOGGER.warning(
                    "%s: Failed to %s (%s). Retrying in %.1fs (attempt %d/%d)",
                    self._device_name,
                    label,
                    details,
                    delay,
                    attempt,
                    retries,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def resolve_state_mismatch(
        self,
        api: SleepmeAPI,
        device_id: str,
        expected_state: str,
        actual_state: str,
        current_control: Control | None,
        retry_count: int = 0,
    ) -> Control:
        """Drive the device towards ``expected_state`` after a mismatched confirmation.

        Each round waits ``mismatch_retry_delay``, re-issues the thermal control
        command and compares the confirmed state. A transport error consumes a
        round just like a mismatch. When rounds run out the device wins: the
        returned control carries the last observed state.

        Args:
            api: Device API used to re-issue the command.
            device_id: Target device.
            expected_state: State the caller asked for.
            actual_state: State the API confirmed instead.
            current_control: Local control snapshot to base the accepted result on.
            retry_count: Rounds already spent.

        Returns:
            The confirmed control on success, otherwise a copy of
            ``current_control`` with ``thermal_control_status`` set to the last
            observed state.
        """
        self._mismatch_state = MismatchState.COMPARING
        observed = actual_state

        while retry_count < self._max_mismatch_retries:
            self._mismatch_state = MismatchState.RETRYING
            _LOGGER.warning(
                "%s: State mismatch detected! API returned %s, expected %s. Retrying (%d/%d)",
                self._device_name,
                observed,
                expected_state,
                retry_count + 1,
                self._max_mismatch_retries,
            )
            await asyncio.sleep(self._mismatch_retry_delay)

            try:
                control = await api.set_thermal_control_status(device_id, expected_state)
            except SleepmeError as exc:
                _LOGGER.error("%s: Error during state mismatch handling: %s", self._device_name, exc)
                retry_count += 1
                continue

            self._mismatch_state = MismatchState.COMPARING
            if control.thermal_control_status == expected_state:
                self._mismatch_state = MismatchState.RESOLVED
                _LOGGER.info("%s: Successfully set state to %s after retry", self._device_name, expected_state)
                return control.copy()

            if control.thermal_control_status is not None:
                observed = control.thermal_control_status
            retry_count += 1

        self._mismatch_state = MismatchState.ACCEPTED
        _LOGGER.warning(
            "%s: State mismatch persisted after %d retries. API returned %s, expected %s. Accepting API state.",
            self._device_name,
            self._max_mismatch_retries,
            observed,
            expected_state,
        )
        accepted = current_control.copy() if current_control is not None else Control()
        accepted.thermal_control_status = observed
        return accepted
