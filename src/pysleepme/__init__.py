"""Python client library for Sleepme Dock Pro thermostats.

This package provides an async client for the Sleepme developer API with a
coalescing request scheduler, state reconciliation and adaptive polling.

The library is organized into layers:
1. **API Layer** (pysleepme.api): Low-level HTTP communication with the Sleepme API
2. **Scheduling Layer** (pysleepme.scheduler, pysleepme.resilience, pysleepme.polling):
   Request coalescing, retries, mismatch resolution and background polling
3. **Client Layer** (pysleepme.client): Device discovery and lifecycle
4. **Device Layer** (pysleepme.devices): Stateful device objects with optimistic updates

Example:
    Basic usage:

    ```python
    from pysleepme import SleepmeClient

    async with SleepmeClient(api_key="token") as client:
        devices = await client.get_devices()

        for device in devices:
            await device.start()
            await device.set_thermal_control_status("active")

        print(f"Water temperature: {devices[0].current_temperature_c}C")
    ```

    Scheduler-level access:

    ```python
    from pysleepme import Operation, RequestScheduler, SleepmeAPI

    async with SleepmeAPI(api_key="token") as api:
        scheduler = RequestScheduler(api)
        result = await scheduler.enqueue_and_wait(device_id, Operation.SET_TEMPERATURE, [68])
    ```
"""

from __future__ import annotations

from pysleepme.api import SleepmeAPI
from pysleepme.client import SleepmeClient
from pysleepme.config import SleepmeConfig
from pysleepme.devices import SleepmeDevice
from pysleepme.exceptions import (
    AuthenticationError,
    DeviceError,
    InvalidParameterError,
    RateLimitError,
    SleepmeApiError,
    SleepmeConnectionError,
    SleepmeError,
    SleepmeTimeoutError,
)
from pysleepme.models import (
    Control,
    Device,
    DeviceAbout,
    DeviceState,
    DeviceStatus,
    HeatingCoolingState,
    LastError,
    Operation,
    QueuedRequest,
    RequestResult,
    WaterStatus,
)
from pysleepme.parsers import parse_control, parse_device_status, parse_devices
from pysleepme.polling import AdaptivePoller
from pysleepme.resilience import ExponentialBackoff, MismatchState, RateLimiter, RetryCoordinator
from pysleepme.scheduler import RequestScheduler, RequestStore


__version__ = "0.1.0"

__all__ = [
    "AdaptivePoller",
    "AuthenticationError",
    "Control",
    "Device",
    "DeviceAbout",
    "DeviceError",
    "DeviceState",
    "DeviceStatus",
    "ExponentialBackoff",
    "HeatingCoolingState",
    "InvalidParameterError",
    "LastError",
    "MismatchState",
    "Operation",
    "QueuedRequest",
    "RateLimitError",
    "RateLimiter",
    "RequestResult",
    "RequestScheduler",
    "RequestStore",
    "RetryCoordinator",
    "SleepmeAPI",
    "SleepmeApiError",
    "SleepmeClient",
    "SleepmeConfig",
    "SleepmeConnectionError",
    "SleepmeDevice",
    "SleepmeError",
    "SleepmeTimeoutError",
    "WaterStatus",
    "__version__",
    "parse_control",
    "parse_device_status",
    "parse_devices",
]
