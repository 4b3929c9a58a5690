"""Data models for Sleepme API responses and request scheduling."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any

from pysleepme.const import THERMAL_STATUS_ACTIVE


__all__ = [
    "Control",
    "Device",
    "DeviceAbout",
    "DeviceState",
    "DeviceStatus",
    "HeatingCoolingState",
    "LastError",
    "Operation",
    "QueuedRequest",
    "RequestResult",
    "WaterStatus",
]


class Operation(str, Enum):
    """Remote operations the request scheduler can dispatch."""

    GET_STATUS = "get-status"
    SET_TEMPERATURE = "set-temperature"
    SET_CONTROL_STATUS = "set-control-status"

    @property
    def is_control(self) -> bool:
        """Check if the operation changes device state."""
        return self is not Operation.GET_STATUS


class HeatingCoolingState(IntEnum):
    """Current heating/cooling state as shown to a thermostat UI."""

    OFF = 0
    HEAT = 1
    COOL = 2


@dataclass
class Control:
    """Controllable device properties.

    Every field is optional: a ``None`` field is "not set", which lets the same
    type carry both a confirmed control state and a partial pending patch.

    Attributes:
        set_temperature_f: Target temperature in Fahrenheit (999/-1 are max heat/cool).
        set_temperature_c: Target temperature in Celsius.
        thermal_control_status: "standby" or "active".
        display_temperature_unit: "c" or "f".
        brightness_level: Display brightness (0-100).
        time_zone: Device time zone name.
    """

    set_temperature_f: float | None = None
    set_temperature_c: float | None = None
    thermal_control_status: str | None = None
    display_temperature_unit: str | None = None
    brightness_level: int | None = None
    time_zone: str | None = None

    @property
    def is_active(self) -> bool:
        """Check if thermal control is active."""
        return self.thermal_control_status == THERMAL_STATUS_ACTIVE

    def copy(self) -> Control:
        """Return an independent copy."""
        return replace(self)

    def set_fields(self) -> dict[str, Any]:
        """Return only the fields that were explicitly set."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def merged(self, patch: Control) -> Control:
        """Return a copy with every set field of ``patch`` applied on top."""
        return replace(self, **patch.set_fields())


@dataclass
class WaterStatus:
    """Measured device status.

    Attributes:
        water_temperature_c: Water temperature in Celsius.
        water_temperature_f: Water temperature in Fahrenheit.
        water_level: Reservoir level percentage (0-100).
        is_water_low: Whether the reservoir needs refilling.
        is_connected: Whether the device is online.
    """

    water_temperature_c: float | None = None
    water_temperature_f: float | None = None
    water_level: int | None = None
    is_water_low: bool | None = None
    is_connected: bool | None = None


@dataclass
class DeviceAbout:
    """Static device information."""

    firmware_version: str = "unknown"
    model: str = "unknown"
    serial_number: str = "unknown"
    mac_address: str | None = None
    ip_address: str | None = None


@dataclass
class DeviceStatus:
    """Full status response for a single device.

    Attributes:
        about: Static device information.
        control: Confirmed control state.
        status: Measured status (water temperature, level, connectivity).
        raw_data: Original API response data for debugging.
    """

    about: DeviceAbout
    control: Control
    status: WaterStatus
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        """Check if the device is actively heating or cooling."""
        return self.control.is_active

    def copy(self) -> DeviceStatus:
        """Return a copy whose control and status can be mutated independently."""
        return DeviceStatus(
            about=replace(self.about),
            control=self.control.copy(),
            status=replace(self.status),
            raw_data=dict(self.raw_data),
        )


@dataclass
class Device:
    """Device listing entry.

    Attributes:
        device_id: Unique device identifier.
        name: Human-readable device name.
    """

    device_id: str
    name: str


@dataclass
class QueuedRequest:
    """One pending outbound operation.

    Attributes:
        device_id: Target device.
        operation: Operation to dispatch.
        params: Positional operation parameters.
        timestamp: Enqueue time; for retries, the earliest time it may dispatch.
        retry_count: Number of queue-level retries already spent.
    """

    device_id: str
    operation: Operation
    params: tuple[Any, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    retry_count: int = 0

    @property
    def key(self) -> tuple[str, Operation]:
        """Coalescing key."""
        return (self.device_id, self.operation)


@dataclass
class LastError:
    """Most recent transport failure for a device."""

    message: str
    code: int
    timestamp: datetime


@dataclass
class DeviceState:
    """Per-device reconciliation record.

    Attributes:
        last_successful_state: Last control state confirmed by the API.
        pending_state: Speculative patch not yet confirmed.
        last_error: Most recent transport failure.
    """

    last_successful_state: Control | None = None
    pending_state: Control | None = None
    last_error: LastError | None = None

    def copy(self) -> DeviceState:
        """Return a snapshot that does not alias this record."""
        return DeviceState(
            last_successful_state=self.last_successful_state.copy() if self.last_successful_state else None,
            pending_state=self.pending_state.copy() if self.pending_state else None,
            last_error=replace(self.last_error) if self.last_error else None,
        )


@dataclass
class RequestResult:
    """Outcome of a settled request, delivered to every registered callback.

    Attributes:
        success: Whether the request succeeded.
        data: Control (for control operations) or DeviceStatus (for status fetches).
        error: Exception of the final failed attempt.
        status_code: HTTP status code when known.
    """

    success: bool
    data: Control | DeviceStatus | None = None
    error: BaseException | None = None
    status_code: int | None = None
