"""Parsing utilities for Sleepme API responses.

This module provides shared parsing functions used by both SleepmeAPI
and SleepmeClient to convert raw API responses into data models.
"""

from __future__ import annotations

from typing import Any

from pysleepme.exceptions import DeviceError
from pysleepme.models import Control, Device, DeviceAbout, DeviceStatus, WaterStatus


__all__ = [
    "parse_control",
    "parse_device_about",
    "parse_device_status",
    "parse_devices",
    "parse_water_status",
]


def parse_control(data: dict[str, Any]) -> Control:
    """Parse a control object.

    The PATCH endpoint returns this object directly, while the status endpoint
    nests it under ``"control"``.

    Args:
        data: Raw control data from API in format:
              {"set_temperature_f": 75, "thermal_control_status": "active", ...}

    Returns:
        Control instance; missing fields stay None.
    """
    return Control(
        set_temperature_f=data.get("set_temperature_f"),
        set_temperature_c=data.get("set_temperature_c"),
        thermal_control_status=data.get("thermal_control_status"),
        display_temperature_unit=data.get("display_temperature_unit"),
        brightness_level=data.get("brightness_level"),
        time_zone=data.get("time_zone"),
    )


def parse_water_status(data: dict[str, Any]) -> WaterStatus:
    """Parse the measured ``status`` block of a device status response."""
    return WaterStatus(
        water_temperature_c=data.get("water_temperature_c"),
        water_temperature_f=data.get("water_temperature_f"),
        water_level=data.get("water_level"),
        is_water_low=data.get("is_water_low"),
        is_connected=data.get("is_connected"),
    )


def parse_device_about(data: dict[str, Any]) -> DeviceAbout:
    """Parse the ``about`` block of a device status response."""
    return DeviceAbout(
        firmware_version=data.get("firmware_version") or "unknown",
        model=data.get("model") or "unknown",
        serial_number=data.get("serial_number") or "unknown",
        mac_address=data.get("mac_address"),
        ip_address=data.get("ip_address"),
    )


def parse_device_status(device_id: str, data: dict[str, Any]) -> DeviceStatus:
    """Parse a full device status response.

    Args:
        device_id: Device the response belongs to (for error reporting).
        data: Raw response in format {"about": {...}, "control": {...}, "status": {...}}.

    Returns:
        DeviceStatus instance.

    Raises:
        DeviceError: If the response has no control block.
    """
    control = data.get("control")
    if not isinstance(control, dict):
        msg = f"Status response for device {device_id} has no control block"
        raise DeviceError(msg, device_id=device_id)

    return DeviceStatus(
        about=parse_device_about(data.get("about") or {}),
        control=parse_control(control),
        status=parse_water_status(data.get("status") or {}),
        raw_data=data,
    )


def parse_devices(data: list[dict[str, Any]]) -> list[Device]:
    """Parse the device listing.

    Entries without an ``id`` are skipped; a missing name falls back to the ID.

    Args:
        data: Raw listing in format [{"id": str, "name": str, ...}, ...].

    Returns:
        List of Device instances.
    """
    return [
        Device(device_id=entry["id"], name=entry.get("name") or entry["id"])
        for entry in data
        if isinstance(entry, dict) and entry.get("id")
    ]
