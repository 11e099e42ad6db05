"""
WiZ light representation.

This module provides the WizLight class that represents a single WiZ
device. It handles:

- Device identity (stable MAC, changing IP, last known IP)
- Requesting property changes through the device's ConvergenceEngine
- Tracking the state, signal strength and system config the device reports
- The config + poll handshake sent when a device (re)joins

Light state changes are never applied locally first: a change is only
reflected in ``state`` once the device reports it back, apart from the
engine's own bookkeeping of what it last commanded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from . import messages
from .communication import AckEvent, BulbStatusEvent, WizCommunication
from .engine import CycleOutcome, ConvergenceEngine, DEFAULT_DEBOUNCE, RetryPolicy
from .network import normalize_mac
from .pilot import ObservedState, PilotState


@dataclass
class DeviceInfo:
    """
    Information from a getSystemConfig response.

    Attributes:
        mac: MAC address reported by the device.
        module_name: Hardware module name (e.g. "ESP01_SHRGB1C_31").
        fw_version: Firmware version.
        raw: The full response.
    """
    mac: Optional[str] = None
    module_name: Optional[str] = None
    fw_version: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DeviceInfo":
        return cls(
            mac=config.get("mac"),
            module_name=config.get("moduleName"),
            fw_version=config.get("fwVersion"),
            raw=dict(config),
        )


# Type alias for state change callbacks
StateChangeCallback = Union[
    Callable[["WizLight", ObservedState], None],
    Callable[["WizLight", ObservedState], Awaitable[None]]
]


class WizLight:
    """
    Represents a WiZ light on the network.

    Devices are identified by MAC address. The IP address is only used
    for sending and is updated whenever the device registers from a new
    address.

    Create devices through DeviceRegistry, which keeps the routing
    indices consistent with each device's IP.

    Example:
        ```python
        light = registry.get_by_mac("a8bb50e1d2c3")
        outcome = await light.set_color(hue=120, saturation=100)
        if not outcome.success:
            print("Device rejected the command:", outcome.error)
        ```
    """

    def __init__(
        self,
        mac_address: str,
        communication: WizCommunication,
        ip_address: Optional[str] = None,
        debounce: float = DEFAULT_DEBOUNCE,
        retry: Optional[RetryPolicy] = None
    ):
        """
        Initialize a WiZ light.

        Args:
            mac_address: The device's MAC address.
            communication: The shared transport.
            ip_address: Last known IP address, if any.
            debounce: Quiet period before sending a change.
            retry: Retransmission schedule for changes.

        Raises:
            ValueError: If the MAC address is invalid.
        """
        self._mac_address = normalize_mac(mac_address)
        self._communication = communication
        self._ip_address = ip_address
        self._last_known_ip = ip_address

        self._logger = logging.getLogger(f"wiz.device.{self._mac_address}")

        self._engine = ConvergenceEngine(
            self._send,
            debounce=debounce,
            retry=retry,
            logger=self._logger,
        )

        self._info: Optional[DeviceInfo] = None
        self._pilot: Optional[PilotState] = None
        self._rssi: Optional[int] = None

        self._state_callbacks: List[StateChangeCallback] = []
        self._pending_callbacks: set = set()

    @property
    def mac_address(self) -> str:
        """The device's MAC address (lowercase, no separators)."""
        return self._mac_address

    @property
    def ip_address(self) -> Optional[str]:
        return self._ip_address

    @property
    def last_known_ip(self) -> Optional[str]:
        """
        The IP address to persist across restarts.

        Returns:
            The most recent IP the device registered from, or None.
        """
        return self._last_known_ip

    @property
    def state(self) -> ObservedState:
        """The most recently observed state."""
        return self._engine.observed

    @property
    def pilot(self) -> Optional[PilotState]:
        """The last pilot reported by the device, in device units."""
        return self._pilot

    @property
    def rssi(self) -> Optional[int]:
        return self._rssi

    @property
    def info(self) -> Optional[DeviceInfo]:
        return self._info

    @property
    def engine(self) -> ConvergenceEngine:
        return self._engine

    def init(self) -> None:
        """
        Send the config + poll handshake.

        The responses arrive as system_config and bulb_status events and
        are routed back to this device by MAC.
        """
        self.get_system_config()
        self.poll()

    def get_system_config(self) -> None:
        self._send(messages.GET_SYSTEM_CONFIG)

    def poll(self) -> None:
        """Ask the device for its current pilot."""
        self._send(messages.GET_PILOT)

    def update_network_info(self, ip_address: str) -> bool:
        """
        Record the address the device registered from.

        Args:
            ip_address: The device's current IP address.

        Returns:
            True if the IP changed.
        """
        if ip_address == self._ip_address:
            return False

        self._logger.info(
            "Updated IP address: %s -> %s",
            self._ip_address,
            ip_address
        )
        self._ip_address = ip_address
        self._last_known_ip = ip_address
        return True

    def request_change(self, **properties: Any) -> "asyncio.Future[CycleOutcome]":
        """
        Request a property change.

        Args:
            **properties: Any of powered_on, brightness, hue, saturation,
                temperature.

        Returns:
            Future resolved with the outcome once the device acknowledges.
        """
        return self._engine.request_change(properties)

    async def turn_on(self) -> CycleOutcome:
        return await self.request_change(powered_on=True)

    async def turn_off(self) -> CycleOutcome:
        return await self.request_change(powered_on=False)

    async def set_brightness(self, brightness: float) -> CycleOutcome:
        """
        Set brightness.

        Args:
            brightness: Brightness in percent (0-100).

        Raises:
            ValueError: If brightness is out of range.
        """
        if not 0 <= brightness <= 100:
            raise ValueError(f"Brightness must be between 0 and 100, got {brightness}")
        return await self.request_change(brightness=brightness)

    async def set_color(
        self,
        hue: Optional[float] = None,
        saturation: Optional[float] = None
    ) -> CycleOutcome:
        """
        Set hue and/or saturation, switching to color mode.

        Args:
            hue: Hue in degrees (0-360).
            saturation: Saturation in percent (0-100).
        """
        properties: Dict[str, Any] = {"temperature": None}
        if hue is not None:
            properties["hue"] = hue
        if saturation is not None:
            properties["saturation"] = saturation
        return await self.request_change(**properties)

    async def set_temperature(self, mireds: int) -> CycleOutcome:
        """
        Set white color temperature, switching to white mode.

        Args:
            mireds: Color temperature in mireds.

        Raises:
            ValueError: If mireds is not positive.
        """
        if mireds <= 0:
            raise ValueError(f"Color temperature must be positive, got {mireds}")
        return await self.request_change(temperature=mireds, hue=None, saturation=None)

    def handle_ack(self, ack: AckEvent) -> None:
        self._logger.debug("Received ack: %s", ack)
        self._engine.handle_ack(ack.success, ack.error)

    def handle_config(self, config: Dict[str, Any]) -> None:
        """Store the device's system configuration."""
        self._logger.debug("Got configuration: %s", config)
        self._info = DeviceInfo.from_config(config)

    def update_status(self, status: BulbStatusEvent) -> None:
        """
        Apply a status report from the device.

        Args:
            status: A getPilot response or syncPilot push.
        """
        self._pilot = status.pilot
        self._rssi = status.rssi
        self._engine.update_observed(status.state)

        self._logger.debug("Next state: %s", status.state)

        self._invoke_state_callbacks(status.state)

    def add_state_callback(self, callback: StateChangeCallback) -> None:
        """
        Register a callback for state changes.

        The callback is invoked with (light, new_state) whenever the device
        reports its state.

        Args:
            callback: Function or coroutine function to call.
        """
        if callback not in self._state_callbacks:
            self._state_callbacks.append(callback)

    def remove_state_callback(self, callback: StateChangeCallback) -> bool:
        """
        Remove a state change callback.

        Returns:
            True if the callback was removed, False if not found.
        """
        if callback in self._state_callbacks:
            self._state_callbacks.remove(callback)
            return True
        return False

    def close(self) -> None:
        """Stop sending changes to this device."""
        self._engine.close()

    def _send(self, message: str) -> None:
        if not self._ip_address:
            self._logger.warning("Cannot send, IP address unknown")
            return
        self._communication.send_to(self._ip_address, message)

    def _invoke_state_callbacks(self, state: ObservedState) -> None:
        for callback in list(self._state_callbacks):
            try:
                result = callback(self, state)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending_callbacks.add(task)
                    task.add_done_callback(self._pending_callbacks.discard)
            except Exception as e:
                self._logger.exception(
                    "State callback raised exception: %s",
                    e
                )

    def __str__(self) -> str:
        name = (self._info and self._info.module_name) or "WizLight"
        return f"{name}({self._mac_address} @ {self._ip_address})"

    def __repr__(self) -> str:
        return (
            f"WizLight("
            f"mac={self._mac_address}, "
            f"ip={self._ip_address}, "
            f"state={self._engine.state.value})"
        )
