"""
libwiz - Python library for controlling WiZ smart lights over the LAN.

WiZ devices speak JSON over UDP with no delivery guarantees. This library
shares one socket between all devices, routes responses to the right
device by MAC or IP, and retries commands until each device acknowledges
them.

Example:
    ```python
    import asyncio
    from libwiz import NetworkConfig, WizPlatform

    async def main():
        network = NetworkConfig(address="192.168.1.10", mac="aa:bb:cc:dd:ee:ff")
        async with WizPlatform(network) as platform:
            await asyncio.sleep(5)
            for light in platform.devices:
                await light.set_brightness(50)

    asyncio.run(main())
    ```
"""

from . import messages
from .color import hsv_to_rgb, rgb_to_hsv
from .communication import (
    EVENTS,
    AckEvent,
    BulbStatusEvent,
    ErrorEvent,
    ReadyEvent,
    RegistrationEvent,
    SystemConfigEvent,
    TransportState,
    WizCommunication,
)
from .config import PlatformConfig
from .device import DeviceInfo, WizLight
from .engine import ConvergenceEngine, CycleOutcome, EngineState, Patch, RetryPolicy
from .exceptions import ProtocolError, TransportNotReadyError, WizError
from .network import NetworkConfig, normalize_mac
from .pilot import (
    DesiredProperties,
    ObservedState,
    PilotBuilder,
    PilotState,
    decode_brightness,
    decode_status,
    encode_brightness,
    encode_command,
    kelvin_to_mireds,
    mireds_to_kelvin,
    parse_pilot,
)
from .platform import WizPlatform
from .registry import DeviceRegistry, device_id

__version__ = "0.1.0"

__all__ = [
    "messages",
    "hsv_to_rgb",
    "rgb_to_hsv",
    "EVENTS",
    "AckEvent",
    "BulbStatusEvent",
    "ErrorEvent",
    "ReadyEvent",
    "RegistrationEvent",
    "SystemConfigEvent",
    "TransportState",
    "WizCommunication",
    "PlatformConfig",
    "DeviceInfo",
    "WizLight",
    "ConvergenceEngine",
    "CycleOutcome",
    "EngineState",
    "Patch",
    "RetryPolicy",
    "ProtocolError",
    "TransportNotReadyError",
    "WizError",
    "NetworkConfig",
    "normalize_mac",
    "DesiredProperties",
    "ObservedState",
    "PilotBuilder",
    "PilotState",
    "decode_brightness",
    "decode_status",
    "encode_brightness",
    "encode_command",
    "kelvin_to_mireds",
    "mireds_to_kelvin",
    "parse_pilot",
    "WizPlatform",
    "DeviceRegistry",
    "device_id",
]
