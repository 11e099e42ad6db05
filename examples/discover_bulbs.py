#!/usr/bin/env python3
"""
Example: Discover WiZ lights on the local network.

Broadcasts a registration, waits for devices to answer and prints what
each of them reports about itself.
"""

import asyncio
import logging
import sys

from libwiz import NetworkConfig, PlatformConfig, WizLight, WizPlatform


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)

# Per-device loggers are chatty at DEBUG
logging.getLogger("wiz.device").setLevel(logging.INFO)


def on_device_added(light: WizLight) -> None:
    print(f"Found {light.mac_address} at {light.ip_address}")


async def main(address: str) -> None:
    """Main entry point."""
    print("=" * 60)
    print("WiZ Light Discovery")
    print("=" * 60)

    network = NetworkConfig(address=address)
    config = PlatformConfig(discovery_interval=0)

    async with WizPlatform(network, config) as platform:
        platform.registry.on_device_added(on_device_added)

        print(f"\nListening on port {platform.communication.port}")
        print("Waiting 5 seconds for device responses...\n")
        await asyncio.sleep(5.0)

        if not platform.devices:
            print("No devices found.")
            return

        print(f"\nFound {len(platform.devices)} device(s):\n")

        for light in platform.devices:
            state = light.state
            info = light.info
            print(f"Device: {light.mac_address}")
            print(f"  IP Address: {light.ip_address}")
            if info:
                print(f"  Module: {info.module_name}")
                print(f"  Firmware: {info.fw_version}")
            print(f"  Power: {'ON' if state.powered_on else 'OFF'}")
            print(f"  Brightness: {state.brightness:.0f}%")
            if state.temperature:
                print(f"  Temperature: {state.temperature} mireds")
            elif state.hue is not None:
                print(f"  Color: hue {state.hue:.0f}, saturation {state.saturation:.0f}%")
            print(f"  RSSI: {light.rssi} dBm")
            print()

    print("Done.")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "0.0.0.0"))
