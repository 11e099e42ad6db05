#!/usr/bin/env python3
"""
Example: Control a single WiZ light.

Usage:
    control_bulb.py <light-ip> on|off
    control_bulb.py <light-ip> brightness <0-100>
    control_bulb.py <light-ip> color <hue> <saturation>
    control_bulb.py <light-ip> temperature <kelvin>

The light is contacted directly, so this also works on networks that
filter broadcasts.
"""

import argparse
import asyncio
import logging

from libwiz import (
    CycleOutcome,
    NetworkConfig,
    PlatformConfig,
    RetryPolicy,
    WizLight,
    WizPlatform,
    kelvin_to_mireds,
)

# Configure logging (quiet by default, set to DEBUG for troubleshooting)
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("control_bulb")


async def wait_for_light(platform: WizPlatform, timeout: float) -> WizLight:
    """Wait until the configured light has registered."""
    found: "asyncio.Future[WizLight]" = asyncio.get_running_loop().create_future()

    def on_added(light: WizLight) -> None:
        if not found.done():
            found.set_result(light)

    platform.registry.on_device_added(on_added)
    return await asyncio.wait_for(found, timeout)


async def run(args: argparse.Namespace) -> CycleOutcome:
    config = PlatformConfig(discovery_interval=0, devices=[args.ip])
    # Give up after five tries instead of retrying forever
    retry = RetryPolicy(interval=1.0, max_attempts=5)

    async with WizPlatform(NetworkConfig(), config, retry=retry) as platform:
        light = await wait_for_light(platform, timeout=5.0)
        print(f"Connected to {light}")

        if args.command == "on":
            return await light.turn_on()
        if args.command == "off":
            return await light.turn_off()
        if args.command == "brightness":
            return await light.set_brightness(args.values[0])
        if args.command == "color":
            hue, saturation = args.values
            return await light.set_color(hue=hue, saturation=saturation)
        return await light.set_temperature(kelvin_to_mireds(int(args.values[0])))


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Control a WiZ light")
    parser.add_argument("ip", help="IP address of the light")
    parser.add_argument("command", choices=["on", "off", "brightness", "color", "temperature"])
    parser.add_argument("values", nargs="*", type=float)
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    expected = {"on": 0, "off": 0, "brightness": 1, "color": 2, "temperature": 1}[args.command]
    if len(args.values) != expected:
        parser.error(f"{args.command} takes {expected} value(s)")

    if args.verbose:
        logging.getLogger("wiz").setLevel(logging.DEBUG)

    try:
        outcome = asyncio.run(run(args))
    except asyncio.TimeoutError:
        logger.error("Light at %s did not answer", args.ip)
        raise SystemExit(1)

    if outcome.success:
        print("Done.")
    elif not outcome.acknowledged:
        print("The light never acknowledged the command.")
    else:
        print(f"The light rejected the command: {outcome.error}")


if __name__ == "__main__":
    main()
