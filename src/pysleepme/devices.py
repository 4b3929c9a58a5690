"""Stateful device objects for Sleepme Dock Pro thermostats.

This module provides rich device objects that maintain local state, support
optimistic updates for responsive control, and provide change notifications.
All API traffic goes through the device's RequestScheduler; background status
polling is handled by its AdaptivePoller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable  # noqa: TC003 - Used at runtime for type hints
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pysleepme.const import (
    HIGH_TEMP_DISPLAY_C,
    HIGH_TEMP_TARGET_F,
    HIGH_TEMP_THRESHOLD_F,
    LOW_TEMP_DISPLAY_C,
    LOW_TEMP_TARGET_F,
    LOW_TEMP_THRESHOLD_F,
    MAX_TARGET_TEMPERATURE_C,
    MIN_TARGET_TEMPERATURE_C,
    THERMAL_STATUS_ACTIVE,
    THERMAL_STATUS_STANDBY,
    THERMAL_STATUSES,
)
from pysleepme.exceptions import InvalidParameterError
from pysleepme.models import Control, DeviceStatus, HeatingCoolingState, Operation
from pysleepme.polling import AdaptivePoller
from pysleepme.resilience import RetryCoordinator
from pysleepme.scheduler import RequestScheduler


if TYPE_CHECKING:
    from pysleepme.api import SleepmeAPI
    from pysleepme.models import Device, DeviceState

_LOGGER = logging.getLogger(__name__)


class SleepmeDevice:
    """Stateful representation of a Sleepme Dock Pro with optimistic updates.

    **Key Features:**
    - **State Caching**: Properties return cached values for instant access
    - **Optimistic Updates**: Control methods update local state immediately,
      then go through the request scheduler
    - **Reconciliation**: Mismatched confirmations are retried, failures revert
      to the state the API reports
    - **Adaptive Polling**: Fast polls while active, slow polls in standby
    - **Change Listeners**: Callbacks for reactive UI updates

    Example:
        ```python
        async with SleepmeClient(api_key="token") as client:
            devices = await client.get_devices()
            device = devices[0]

            device.add_listener(lambda d: print(d.thermal_control_status))
            await device.start()

            await device.set_target_temperature(21.5)
            await device.set_thermal_control_status("active")
        ```

    Attributes:
        device_id: Unique device identifier.
        name: Human-readable device name.
        is_active: Whether thermal control is active.
        target_temperature_c: Target temperature as shown to a thermostat UI.
        current_temperature_c: Measured water temperature.
    """

    def __init__(
        self,
        api: SleepmeAPI,
        device: Device,
        status: DeviceStatus | None = None,
        *,
        scheduler: RequestScheduler | None = None,
        retry: RetryCoordinator | None = None,
        poller: AdaptivePoller | None = None,
    ) -> None:
        """Initialize the device.

        Args:
            api: SleepmeAPI instance for HTTP communication.
            device: Listing entry (ID and name).
            status: Optional initial status.
            scheduler: Request scheduler; a default one is created if omitted.
            retry: Retry coordinator; a default one is created if omitted.
            poller: Status poller; a default one is created if omitted.
        """
        self._api = api
        self._device = device
        self._status = status
        self._last_refresh: datetime | None = datetime.now(UTC) if status is not None else None

        self._scheduler = scheduler or RequestScheduler(api)
        self._retry = retry or RetryCoordinator(device.name)
        self._poller = poller or AdaptivePoller(device.name, self._retry)
        self._polling_enabled = False

        # Thermal state the user asked for and the API has not confirmed yet
        self._expected_thermal_state: str | None = None

        self._listeners: list[Callable[[SleepmeDevice], None]] = []

    # -------------------------------------------------------------------------
    # Device Info Properties
    # -------------------------------------------------------------------------

    @property
    def device_id(self) -> str:
        """Get device ID."""
        return self._device.device_id

    @property
    def name(self) -> str:
        """Get device name."""
        return self._device.name

    @property
    def model(self) -> str | None:
        """Get device model."""
        return self._status.about.model if self._status else None

    @property
    def firmware_version(self) -> str | None:
        """Get firmware version."""
        return self._status.about.firmware_version if self._status else None

    @property
    def serial_number(self) -> str | None:
        """Get serial number."""
        return self._status.about.serial_number if self._status else None

    @property
    def is_connected(self) -> bool:
        """Check if the device is online."""
        return bool(self._status and self._status.status.is_connected)

    @property
    def status(self) -> DeviceStatus | None:
        """Get the cached status, including optimistic changes."""
        return self._status

    @property
    def device_state(self) -> DeviceState:
        """Get a snapshot of the scheduler's reconciliation record for this device."""
        return self._scheduler.get_device_state(self.device_id)

    @property
    def scheduler(self) -> RequestScheduler:
        """Get the request scheduler."""
        return self._scheduler

    @property
    def poller(self) -> AdaptivePoller:
        """Get the status poller."""
        return self._poller

    @property
    def last_refresh(self) -> datetime | None:
        """Get timestamp of last state refresh."""
        return self._last_refresh

    @property
    def expected_thermal_state(self) -> str | None:
        """Get the requested thermal state still awaiting confirmation."""
        return self._expected_thermal_state

    # -------------------------------------------------------------------------
    # Thermostat Properties
    # -------------------------------------------------------------------------

    @property
    def thermal_control_status(self) -> str | None:
        """Get thermal control status ("standby" or "active")."""
        return self._status.control.thermal_control_status if self._status else None

    @property
    def is_active(self) -> bool:
        """Check if thermal control is active."""
        return self._status is not None and self._status.is_active

    @property
    def current_temperature_c(self) -> float | None:
        """Get water temperature in Celsius."""
        return self._status.status.water_temperature_c if self._status else None

    @property
    def target_temperature_c(self) -> float | None:
        """Get target temperature in Celsius.

        The max heat / max cool targets (999F / -1F) are reported as the UI
        range limits.
        """
        if self._status is None:
            return None
        control = self._status.control
        if control.set_temperature_f is not None:
            if control.set_temperature_f >= HIGH_TEMP_TARGET_F:
                return HIGH_TEMP_DISPLAY_C
            if control.set_temperature_f <= LOW_TEMP_TARGET_F:
                return LOW_TEMP_DISPLAY_C
        return control.set_temperature_c

    @property
    def display_temperature_unit(self) -> str | None:
        """Get display unit ("c" or "f")."""
        return self._status.control.display_temperature_unit if self._status else None

    @property
    def water_level(self) -> int | None:
        """Get reservoir level percentage."""
        return self._status.status.water_level if self._status else None

    @property
    def is_water_low(self) -> bool | None:
        """Check if the reservoir needs refilling."""
        return self._status.status.is_water_low if self._status else None

    @property
    def heating_cooling_state(self) -> HeatingCoolingState:
        """Get current heating/cooling state.

        OFF in standby, HEAT when the target is above the water temperature,
        COOL otherwise.
        """
        if not self.is_active:
            return HeatingCoolingState.OFF

        current = self.current_temperature_c
        target = self.target_temperature_c
        if current is not None and target is not None and target > current:
            return HeatingCoolingState.HEAT
        return HeatingCoolingState.COOL

    # -------------------------------------------------------------------------
    # Control Methods (with Optimistic Updates)
    # -------------------------------------------------------------------------

    async def turn_on(self) -> bool:
        """Activate thermal control."""
        return await self.set_thermal_control_status(THERMAL_STATUS_ACTIVE)

    async def turn_off(self) -> bool:
        """Put the device in standby."""
        return await self.set_thermal_control_status(THERMAL_STATUS_STANDBY)

    async def set_thermal_control_status(self, target: str) -> bool:
        """Set thermal control status with optimistic update.

        A confirmation that disagrees with the target runs the mismatch
        protocol; a failure after the scheduler's retries abandons the target
        and reverts to the state the API reports.

        Args:
            target: "standby" or "active".

        Returns:
            True if the device confirmed the target state, False otherwise.

        Raises:
            InvalidParameterError: If target is not a known status.
        """
        if target not in THERMAL_STATUSES:
            msg = f"Thermal control status must be one of {THERMAL_STATUSES}, got {target!r}"
            raise InvalidParameterError(msg, parameter_name="target", value=target)

        _LOGGER.info("%s: Thermal control state changed to %s", self.name, target)
        self._expected_thermal_state = target

        if self._status is not None:
            self._status.control.thermal_control_status = target
            self._notify_listeners()
            self._sync_polling()

        result = await self._scheduler.enqueue_and_wait(self.device_id, Operation.SET_CONTROL_STATUS, [target])

        if not result.success or not isinstance(result.data, Control):
            _LOGGER.error("%s: Failed to set thermal control state after retries: %s", self.name, result.error)
            self._expected_thermal_state = None
            self._scheduler.discard_pending(self.device_id, Operation.SET_CONTROL_STATUS)
            await self._revert()
            return False

        control = result.data
        if control.thermal_control_status != target and self._expected_thermal_state == target:
            control = await self._retry.resolve_state_mismatch(
                self._api,
                self.device_id,
                target,
                control.thermal_control_status or "",
                self._status.control if self._status else None,
            )
            self._scheduler.record_confirmed_state(self.device_id, control)

        self._expected_thermal_state = None
        self._apply_control(control)
        return control.thermal_control_status == target

    async def set_target_temperature(self, temperature_c: float) -> bool:
        """Set target temperature with optimistic update.

        The API takes whole Fahrenheit degrees. Targets above 115F are sent as
        999F (max heat) and targets below 55F as -1F (max cool).

        Args:
            temperature_c: Target temperature in Celsius.

        Returns:
            True if successful, False otherwise.

        Raises:
            InvalidParameterError: If the temperature is outside the supported range.
        """
        if not MIN_TARGET_TEMPERATURE_C <= temperature_c <= MAX_TARGET_TEMPERATURE_C:
            msg = (
                f"Target temperature must be {MIN_TARGET_TEMPERATURE_C}-{MAX_TARGET_TEMPERATURE_C}C, "
                f"got {temperature_c}"
            )
            raise InvalidParameterError(msg, parameter_name="temperature_c", value=temperature_c)

        temperature_f = round(temperature_c * 9 / 5 + 32)
        api_temperature = temperature_f
        if temperature_f > HIGH_TEMP_THRESHOLD_F:
            _LOGGER.info("%s: Temperature over %dF, mapping to %dF", self.name, HIGH_TEMP_THRESHOLD_F, HIGH_TEMP_TARGET_F)
            api_temperature = HIGH_TEMP_TARGET_F
        elif temperature_f < LOW_TEMP_THRESHOLD_F:
            _LOGGER.info("%s: Temperature under %dF, mapping to %dF", self.name, LOW_TEMP_THRESHOLD_F, LOW_TEMP_TARGET_F)
            api_temperature = LOW_TEMP_TARGET_F
        else:
            _LOGGER.info("%s: Setting temperature to %.1fC (%dF)", self.name, temperature_c, temperature_f)

        if self._status is not None:
            self._status.control.set_temperature_c = temperature_c
            self._status.control.set_temperature_f = temperature_f
            self._notify_listeners()

        result = await self._scheduler.enqueue_and_wait(self.device_id, Operation.SET_TEMPERATURE, [api_temperature])

        if not result.success or not isinstance(result.data, Control):
            _LOGGER.error("%s: Failed to set temperature after retries: %s", self.name, result.error)
            self._scheduler.discard_pending(self.device_id, Operation.SET_TEMPERATURE)
            await self._revert()
            return False

        self._apply_control(result.data)
        return True

    # -------------------------------------------------------------------------
    # State Management
    # -------------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Fetch status through the scheduler and update the cache.

        Returns:
            True if successful, False otherwise.
        """
        result = await self._scheduler.enqueue_and_wait(self.device_id, Operation.GET_STATUS)
        if not result.success or not isinstance(result.data, DeviceStatus):
            _LOGGER.warning("Failed to refresh device %s: %s", self.device_id, result.error)
            return False

        self._update_status(result.data)
        self._sync_polling()
        return True

    async def start(self) -> None:
        """Fetch the initial status and start adaptive polling."""
        if not await self.refresh():
            _LOGGER.error("Failed to get initial device status for %s, assuming standby", self.name)

        self._polling_enabled = True
        self._poller.start_polling(self._api, self.device_id, self.is_active, self._handle_poll_update)
        _LOGGER.info("Started polling for device %s", self.name)

    def stop(self) -> None:
        """Stop adaptive polling."""
        if self._polling_enabled:
            self._polling_enabled = False
            self._poller.stop_polling()
            _LOGGER.info("Stopped polling for device %s", self.name)

    async def shutdown(self) -> None:
        """Stop polling and the request scheduler."""
        self._polling_enabled = False
        await self._poller.shutdown()
        await self._scheduler.shutdown()

    async def _revert(self) -> None:
        """Replace optimistic state with whatever the API reports."""
        if not await self.refresh():
            _LOGGER.error("%s: Failed to refresh status after error", self.name)

    def _apply_control(self, control: Control) -> None:
        if self._status is None:
            return
        self._status.control = self._status.control.merged(control)
        self._notify_listeners()
        self._sync_polling()

    def _handle_poll_update(self, status: DeviceStatus) -> None:
        self._update_status(status)

    def _update_status(self, status: DeviceStatus) -> None:
        """Adopt a fetched status, keeping an unconfirmed thermal state in place."""
        status = status.copy()
        expected = self._expected_thermal_state
        actual = status.control.thermal_control_status

        if expected is not None and actual != expected:
            _LOGGER.warning(
                "%s: Device state (%s) does not match expected state (%s) during polling",
                self.name,
                actual,
                expected,
            )
            status.control.thermal_control_status = expected
        elif expected is not None:
            _LOGGER.info("%s: Device state now matches expected state (%s)", self.name, expected)
            self._expected_thermal_state = None

        self._status = status
        self._last_refresh = datetime.now(UTC)
        self._log_status()
        self._notify_listeners()

    def _sync_polling(self) -> None:
        """Restart polling when a local change flipped the activity state."""
        if not self._polling_enabled or self._poller.is_active == self.is_active:
            return
        _LOGGER.debug("%s: Device state changed to %s", self.name, "ACTIVE" if self.is_active else "STANDBY")
        self._poller.update_polling_interval(self.is_active)
        self._poller.start_polling(self._api, self.device_id, self.is_active, self._handle_poll_update)

    def _log_status(self) -> None:
        if self._status is None or self.current_temperature_c is None:
            return
        current_c = self.current_temperature_c
        current_f = current_c * 9 / 5 + 32
        if not self.is_active:
            _LOGGER.debug("%s: [STANDBY] %.1fC (%.1fF)", self.name, current_c, current_f)
        else:
            _LOGGER.debug(
                "%s: [ON] Current: %.1fC (%.1fF) -> Target: %sC (%sF)",
                self.name,
                current_c,
                current_f,
                self._status.control.set_temperature_c,
                self._status.control.set_temperature_f,
            )

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def _notify_listeners(self) -> None:
        """Notify all registered listeners of state change.

        If a listener raises an exception, it is logged but doesn't affect
        other listeners.
        """
        for listener in self._listeners:
            try:
                listener(self)
            except Exception:
                _LOGGER.exception("Error in state change listener for device %s", self.device_id)

    def add_listener(self, callback: Callable[[SleepmeDevice], None]) -> None:
        """Register a callback to be called when device state changes.

        The callback will be called after optimistic updates, confirmed
        responses, refreshes and polls.
        """
        if callback not in self._listeners:
            self._listeners.append(callback)
            _LOGGER.debug("Added state change listener for device %s", self.device_id)

    def remove_listener(self, callback: Callable[[SleepmeDevice], None]) -> None:
        """Unregister a state change callback."""
        if callback in self._listeners:
            self._listeners.remove(callback)
            _LOGGER.debug("Removed state change listener for device %s", self.device_id)

    # -------------------------------------------------------------------------
    # String Representation
    # -------------------------------------------------------------------------

    def __str__(self) -> str:
        """Return string representation of device."""
        return f"{self.name} ({self.device_id})"

    def __repr__(self) -> str:
        """Return detailed string representation of device."""
        return f"SleepmeDevice(device_id='{self.device_id}', name='{self.name}')"
