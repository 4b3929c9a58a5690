"""Tests for the parsers module."""

from typing import Any

import pytest

from pysleepme.exceptions import DeviceError
from pysleepme.models import Control, DeviceStatus
from pysleepme.parsers import (
    parse_control,
    parse_device_about,
    parse_device_status,
    parse_devices,
    parse_water_status,
)


class TestParseControl:
    """Tests for parse_control function."""

    def test_parse_complete_control(self) -> None:
        """Test parsing a full control object."""
        control = parse_control(
            {
                "brightness_level": 80,
                "display_temperature_unit": "f",
                "set_temperature_c": 21.5,
                "set_temperature_f": 71,
                "thermal_control_status": "active",
                "time_zone": "America/Chicago",
            }
        )

        assert control == Control(
            set_temperature_f=71,
            set_temperature_c=21.5,
            thermal_control_status="active",
            display_temperature_unit="f",
            brightness_level=80,
            time_zone="America/Chicago",
        )
        assert control.is_active is True

    def test_parse_partial_control(self) -> None:
        """Test that missing fields stay unset."""
        control = parse_control({"thermal_control_status": "standby"})

        assert control.set_fields() == {"thermal_control_status": "standby"}
        assert control.is_active is False


class TestParseDeviceStatus:
    """Tests for parse_device_status function."""

    def test_parse_complete_status(self, status_payload: dict[str, Any]) -> None:
        """Test parsing a full status response."""
        status = parse_device_status("dev-1", status_payload)

        assert isinstance(status, DeviceStatus)
        assert status.about.firmware_version == "5.39.2134"
        assert status.about.mac_address == "aa:bb:cc:dd:ee:ff"
        assert status.control.set_temperature_f == 68
        assert status.status.water_level == 100
        assert status.status.is_connected is True
        assert status.raw_data is status_payload
        assert status.is_active is False

    def test_missing_control_raises(self) -> None:
        """Test that a response without control block raises DeviceError."""
        with pytest.raises(DeviceError) as exc_info:
            parse_device_status("dev-1", {"about": {}, "status": {}})

        assert exc_info.value.device_id == "dev-1"

    def test_missing_about_and_status_use_defaults(self) -> None:
        """Test that absent blocks fall back to defaults."""
        status = parse_device_status("dev-1", {"control": {"thermal_control_status": "active"}})

        assert status.about.model == "unknown"
        assert status.about.serial_number == "unknown"
        assert status.status.water_temperature_c is None
        assert status.is_active is True

    def test_copy_is_independent(self, status_payload: dict[str, Any]) -> None:
        """Test that DeviceStatus.copy does not share mutable parts."""
        status = parse_device_status("dev-1", status_payload)
        copied = status.copy()

        copied.control.thermal_control_status = "active"
        copied.status.water_level = 10

        assert status.control.thermal_control_status == "standby"
        assert status.status.water_level == 100


class TestParseBlocks:
    """Tests for the about/status block parsers."""

    def test_parse_about_empty_values(self) -> None:
        """Test that empty strings fall back to unknown."""
        about = parse_device_about({"firmware_version": "", "model": None})

        assert about.firmware_version == "unknown"
        assert about.model == "unknown"
        assert about.ip_address is None

    def test_parse_water_status(self) -> None:
        """Test parsing measured status."""
        water = parse_water_status({"water_temperature_c": 18.5, "is_water_low": True})

        assert water.water_temperature_c == 18.5
        assert water.is_water_low is True
        assert water.water_level is None


class TestParseDevices:
    """Tests for parse_devices function."""

    def test_parse_listing(self) -> None:
        """Test parsing the device listing."""
        devices = parse_devices([{"id": "dev-1", "name": "Bedroom"}, {"id": "dev-2", "name": "Guest"}])

        assert [(d.device_id, d.name) for d in devices] == [("dev-1", "Bedroom"), ("dev-2", "Guest")]

    def test_skips_entries_without_id(self) -> None:
        """Test that malformed entries are skipped."""
        devices = parse_devices([{"name": "No ID"}, "garbage", {"id": "dev-1"}])  # type: ignore[list-item]

        assert len(devices) == 1
        assert devices[0].name == "dev-1"
