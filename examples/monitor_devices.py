"""Monitor Sleepme devices with adaptive polling.

This example demonstrates:
- Configuring poll intervals through SleepmeConfig
- Fast polling while active, slow polling in standby
- Reacting to state changes with listeners
- Alert on low water
"""

import asyncio
import os
from datetime import datetime

from pysleepme import SleepmeClient, SleepmeConfig, SleepmeDevice


def on_change(device: SleepmeDevice) -> None:
    """Print a status line whenever a device changes."""
    alerts = []
    if device.is_water_low:
        alerts.append("LOW WATER")
    if not device.is_connected:
        alerts.append("OFFLINE")

    line = (
        f"{datetime.now():%H:%M:%S} {device.name}: {device.thermal_control_status} "
        f"{device.heating_cooling_state.name} water={device.current_temperature_c}C "
        f"target={device.target_temperature_c}C"
    )
    if alerts:
        line += f"  ⚠️  {', '.join(alerts)}"
    print(line)


async def main() -> None:
    """Main monitoring function."""
    config = SleepmeConfig.from_dict(
        {
            "api_key": os.environ["SLEEPME_API_KEY"],
            "active_polling_interval_seconds": 30,
            "standby_polling_interval_minutes": 5,
        }
    )

    async with SleepmeClient(config=config) as client:
        devices = await client.get_devices()

        if not devices:
            print("No devices found.")
            return

        for device in devices:
            device.add_listener(on_change)
        await client.start_all()

        print(f"Monitoring {len(devices)} device(s)... Press Ctrl+C to stop\n")
        await asyncio.Event().wait()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting...")
