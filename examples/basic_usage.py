"""Basic usage example for pysleepme library."""

import asyncio
import logging
import os

from pysleepme import SleepmeClient


async def main() -> None:
    """Demonstrate basic usage of pysleepme."""
    logging.basicConfig(level=logging.INFO)

    async with SleepmeClient(api_key=os.environ["SLEEPME_API_KEY"]) as client:
        print("Connected to Sleepme API")

        devices = await client.get_devices()
        print(f"Found {len(devices)} device(s)")

        for device in devices:
            print(f"\nDevice: {device.name}")
            print(f"  ID: {device.device_id}")
            print(f"  Model: {device.model}")
            print(f"  Firmware: {device.firmware_version}")
            print(f"  Connected: {device.is_connected}")
            print(f"  Thermal control: {device.thermal_control_status}")
            print(f"  Water: {device.current_temperature_c}C, target {device.target_temperature_c}C")

            if device.is_connected:
                print("\nSetting target to 20C...")
                await device.set_target_temperature(20.0)

                print("Activating thermal control...")
                if not await device.turn_on():
                    print("Device reported a different state, keeping it")

                # Reconciliation record kept by the request scheduler
                state = device.device_state
                print(f"Confirmed: {state.last_successful_state}")
                print(f"Pending: {state.pending_state}")


if __name__ == "__main__":
    asyncio.run(main())
