"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from pysleepme.api import SleepmeAPI
from pysleepme.models import Control, DeviceStatus
from pysleepme.parsers import parse_device_status


DEVICE_ID = "dev-1"


def make_status_payload(
    thermal_control_status: str = "standby",
    set_temperature_f: float = 68,
    water_temperature_c: float = 22.5,
) -> dict[str, Any]:
    """Build a raw status response in the shape returned by GET /devices/{id}."""
    return {
        "about": {
            "firmware_version": "5.39.2134",
            "ip_address": "192.168.1.20",
            "mac_address": "aa:bb:cc:dd:ee:ff",
            "model": "DP999NA",
            "serial_number": "23401234",
        },
        "control": {
            "brightness_level": 100,
            "display_temperature_unit": "c",
            "set_temperature_c": round((set_temperature_f - 32) * 5 / 9, 1),
            "set_temperature_f": set_temperature_f,
            "thermal_control_status": thermal_control_status,
            "time_zone": "America/New_York",
        },
        "status": {
            "is_connected": True,
            "is_water_low": False,
            "water_level": 100,
            "water_temperature_c": water_temperature_c,
            "water_temperature_f": round(water_temperature_c * 9 / 5 + 32, 1),
        },
    }


@pytest.fixture
def status_payload() -> dict[str, Any]:
    """Raw standby status response."""
    return make_status_payload()


@pytest.fixture
def make_status() -> Callable[..., DeviceStatus]:
    """Factory for parsed DeviceStatus objects."""

    def factory(**kwargs: Any) -> DeviceStatus:
        return parse_device_status(DEVICE_ID, make_status_payload(**kwargs))

    return factory


@pytest.fixture
def mock_api() -> AsyncMock:
    """Create a mock SleepmeAPI that echoes control changes back.

    ``set_thermal_control_status`` and ``set_temperature_fahrenheit`` confirm the
    requested value; ``get_device_status`` reports the last confirmed values.
    Individual tests override ``side_effect`` to inject failures or drift.
    """
    api = AsyncMock(spec=SleepmeAPI)
    confirmed = {"thermal_control_status": "standby", "set_temperature_f": 68}

    async def set_thermal_control_status(device_id: str, thermal_status: str) -> Control:
        confirmed["thermal_control_status"] = thermal_status
        return Control(thermal_control_status=thermal_status, set_temperature_f=confirmed["set_temperature_f"])

    async def set_temperature_fahrenheit(device_id: str, temperature: float) -> Control:
        confirmed["set_temperature_f"] = temperature
        return Control(thermal_control_status=confirmed["thermal_control_status"], set_temperature_f=temperature)

    async def get_device_status(device_id: str) -> DeviceStatus:
        return parse_device_status(device_id, make_status_payload(**confirmed))

    api.set_thermal_control_status.side_effect = set_thermal_control_status
    api.set_temperature_fahrenheit.side_effect = set_temperature_fahrenheit
    api.get_device_status.side_effect = get_device_status
    return api
