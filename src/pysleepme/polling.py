"""Adaptive background polling for Sleepme devices.

Polls quickly while a device is actively heating or cooling and slowly while
it is in standby, switching cadence when a poll observes a transition.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from pysleepme.const import (
    DEFAULT_ACTIVE_POLLING_INTERVAL_SECONDS,
    DEFAULT_STANDBY_POLLING_INTERVAL_MINUTES,
    MIN_ACTIVE_POLLING_INTERVAL_SECONDS,
    MIN_STANDBY_POLLING_INTERVAL_MINUTES,
)
from pysleepme.exceptions import SleepmeError


if TYPE_CHECKING:
    from collections.abc import Callable

    from pysleepme.api import SleepmeAPI
    from pysleepme.models import DeviceStatus
    from pysleepme.resilience import RetryCoordinator

_LOGGER = logging.getLogger(__name__)


def _state_name(is_active: bool) -> str:
    return "ACTIVE" if is_active else "STANDBY"


class AdaptivePoller:
    """Continuous status polling for one device.

    Each cycle waits the active or standby interval, fetches status through the
    RetryCoordinator, hands it to ``on_update`` and adopts the fetched activity
    flag for the next cycle. Failed polls are logged and the loop carries on.

    Example:
        ```python
        poller = AdaptivePoller("Bedroom Dock", RetryCoordinator("Bedroom Dock"))
        poller.start_polling(api, device_id, initial_is_active=False, on_update=print)
        ...
        poller.stop_polling()
        ```
    """

    def __init__(
        self,
        device_name: str,
        retry: RetryCoordinator,
        *,
        active_interval: float | None = None,
        standby_interval_minutes: float | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            device_name: Name used as log prefix.
            retry: Coordinator used to retry failed status fetches.
            active_interval: Seconds between polls while active (floor 5).
            standby_interval_minutes: Minutes between polls while in standby (floor 1).
        """
        self._device_name = device_name
        self._retry = retry

        if active_interval is None:
            active_interval = DEFAULT_ACTIVE_POLLING_INTERVAL_SECONDS
            _LOGGER.debug("Using default active polling interval of %s seconds", active_interval)
        elif active_interval < MIN_ACTIVE_POLLING_INTERVAL_SECONDS:
            _LOGGER.warning(
                "Active polling interval must be at least %d seconds. Using %d seconds.",
                MIN_ACTIVE_POLLING_INTERVAL_SECONDS,
                MIN_ACTIVE_POLLING_INTERVAL_SECONDS,
            )
            active_interval = MIN_ACTIVE_POLLING_INTERVAL_SECONDS

        if standby_interval_minutes is None:
            standby_interval_minutes = DEFAULT_STANDBY_POLLING_INTERVAL_MINUTES
            _LOGGER.debug("Using default standby polling interval of %s minutes", standby_interval_minutes)
        elif standby_interval_minutes < MIN_STANDBY_POLLING_INTERVAL_MINUTES:
            _LOGGER.warning(
                "Standby polling interval must be at least %d minute. Using %d minute.",
                MIN_STANDBY_POLLING_INTERVAL_MINUTES,
                MIN_STANDBY_POLLING_INTERVAL_MINUTES,
            )
            standby_interval_minutes = MIN_STANDBY_POLLING_INTERVAL_MINUTES

        self._active_interval = float(active_interval)
        self._standby_interval = float(standby_interval_minutes) * 60

        self._api: SleepmeAPI | None = None
        self._device_id: str | None = None
        self._on_update: Callable[[DeviceStatus], None] | None = None
        self._is_active = False
        self._timer: asyncio.TimerHandle | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._generation = 0
        self._current_status: DeviceStatus | None = None

    @property
    def active_interval(self) -> float:
        """Get seconds between polls while active."""
        return self._active_interval

    @property
    def standby_interval(self) -> float:
        """Get seconds between polls while in standby."""
        return self._standby_interval

    @property
    def is_active(self) -> bool:
        """Get the activity flag the next cycle will use."""
        return self._is_active

    @property
    def is_polling(self) -> bool:
        """Check if a poll is scheduled or in flight."""
        return self._timer is not None or (self._poll_task is not None and not self._poll_task.done())

    @property
    def current_status(self) -> DeviceStatus | None:
        """Get the last successfully polled status."""
        return self._current_status

    def interval_for(self, is_active: bool) -> float:
        """Get the poll interval in seconds for an activity flag."""
        return self._active_interval if is_active else self._standby_interval

    def start_polling(
        self,
        api: SleepmeAPI,
        device_id: str,
        initial_is_active: bool,
        on_update: Callable[[DeviceStatus], None],
    ) -> None:
        """Start (or restart) the polling loop.

        Must be called with a running event loop. A fetch still in flight from a
        previous loop delivers its update but does not schedule further polls.
        """
        _LOGGER.debug(
            "%s: Starting polling with initial state: %s",
            self._device_name,
            _state_name(initial_is_active),
        )
        self._api = api
        self._device_id = device_id
        self._on_update = on_update
        self._is_active = initial_is_active
        self._generation += 1
        self._schedule_next_poll()

    def update_polling_interval(self, is_active: bool) -> None:
        """Cancel the pending poll ahead of a restart with a new activity flag.

        The caller must call ``start_polling`` again to resume.
        """
        _LOGGER.debug("%s: Updating polling interval for state: %s", self._device_name, _state_name(is_active))
        self._cancel_timer()
        self._generation += 1

    def stop_polling(self) -> None:
        """Stop scheduling polls. A fetch already in flight still completes."""
        self._generation += 1
        if self._cancel_timer():
            _LOGGER.debug("%s: Polling stopped", self._device_name)

    async def shutdown(self) -> None:
        """Stop polling and cancel any fetch in flight."""
        self.stop_polling()
        task = self._poll_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._poll_task = None

    def _cancel_timer(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    def _schedule_next_poll(self) -> None:
        self._cancel_timer()
        interval = self.interval_for(self._is_active)
        _LOGGER.debug(
            "%s: Device is %s, scheduling next poll in %.0fs",
            self._device_name,
            _state_name(self._is_active),
            interval,
        )
        self._timer = asyncio.get_running_loop().call_later(interval, self._start_poll, self._generation)

    def _start_poll(self, generation: int) -> None:
        self._timer = None
        self._poll_task = asyncio.get_running_loop().create_task(self._poll(generation))

    async def _poll(self, generation: int) -> None:
        api = self._api
        device_id = self._device_id
        on_update = self._on_update
        if api is None or device_id is None or on_update is None:
            return

        _LOGGER.debug("%s: Polling device %s", self._device_name, device_id)
        try:
            status = await self._retry.retry_with_backoff(
                lambda: api.get_device_status(device_id),
                "poll device status",
            )
        except SleepmeError as exc:
            _LOGGER.error("%s: Error polling device: %s", self._device_name, exc)
        except Exception:
            _LOGGER.exception("%s: Unexpected error polling device", self._device_name)
        else:
            self._current_status = status
            try:
                on_update(status)
            except Exception:
                _LOGGER.exception("%s: Error in status update callback", self._device_name)

            current_active = status.is_active
            if generation == self._generation and current_active != self._is_active:
                _LOGGER.info(
                    "%s: Device state changed from %s to %s",
                    self._device_name,
                    _state_name(self._is_active),
                    _state_name(current_active),
                )
                self._is_active = current_active

        if generation == self._generation:
            self._schedule_next_poll()
