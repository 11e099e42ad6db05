"""
Routing of transport events to WiZ lights.

The registry owns the MAC and IP indices. Events that may arrive long
after an IP change (status pushes, system config) are routed by MAC;
acknowledgements, which arrive right after a send, are routed by IP.
Events for devices that have not registered yet are dropped.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Union

from .communication import (
    EVENT_ACK,
    EVENT_BULB_STATUS,
    EVENT_REGISTRATION,
    EVENT_SYSTEM_CONFIG,
    AckEvent,
    BulbStatusEvent,
    RegistrationEvent,
    SystemConfigEvent,
    WizCommunication,
)
from .device import WizLight
from .engine import DEFAULT_DEBOUNCE, RetryPolicy
from .network import normalize_mac


# Namespace for stable device ids derived from MAC addresses
DEVICE_ID_NAMESPACE = uuid.UUID("6f1c3a7e-2b1d-4c55-9a8e-5d0c2f6b7e41")

DeviceCallback = Union[
    Callable[[WizLight], None],
    Callable[[WizLight], Awaitable[None]]
]


def device_id(mac_address: str) -> str:
    """
    Generate the stable id for a device.

    Args:
        mac_address: The device's MAC address in any common format.

    Returns:
        A UUID string that never changes for a given MAC.
    """
    return str(uuid.uuid5(DEVICE_ID_NAMESPACE, normalize_mac(mac_address)))


class DeviceRegistry:
    """
    Keeps track of known lights and routes events to them.

    All index mutation goes through _set_ip(), so a device is always
    reachable under exactly one IP.
    """

    def __init__(
        self,
        communication: WizCommunication,
        debounce: float = DEFAULT_DEBOUNCE,
        retry: Optional[RetryPolicy] = None
    ):
        """
        Initialize the registry.

        Args:
            communication: The shared transport.
            debounce: Debounce period for new devices' engines.
            retry: Retry policy for new devices' engines.
        """
        self._communication = communication
        self._debounce = debounce
        self._retry = retry
        self._logger = logging.getLogger("wiz.registry")

        self._by_id: Dict[str, WizLight] = {}
        self._by_mac: Dict[str, WizLight] = {}
        self._by_ip: Dict[str, WizLight] = {}

        self._added_callbacks: List[DeviceCallback] = []
        self._updated_callbacks: List[DeviceCallback] = []
        self._handshaken: set = set()
        self._pending_callbacks: set = set()
        self._attached = False

    @property
    def devices(self) -> List[WizLight]:
        return list(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, mac_address: str) -> bool:
        return self.get_by_mac(mac_address) is not None

    def attach(self) -> None:
        """Subscribe to the transport's events."""
        if self._attached:
            return
        self._communication.on(EVENT_REGISTRATION, self.handle_registration)
        self._communication.on(EVENT_ACK, self.handle_ack)
        self._communication.on(EVENT_BULB_STATUS, self.handle_bulb_status)
        self._communication.on(EVENT_SYSTEM_CONFIG, self.handle_system_config)
        self._attached = True

    def detach(self) -> None:
        """Unsubscribe from the transport's events."""
        if not self._attached:
            return
        self._communication.off(EVENT_REGISTRATION, self.handle_registration)
        self._communication.off(EVENT_ACK, self.handle_ack)
        self._communication.off(EVENT_BULB_STATUS, self.handle_bulb_status)
        self._communication.off(EVENT_SYSTEM_CONFIG, self.handle_system_config)
        self._attached = False

    def on_device_added(self, callback: DeviceCallback) -> None:
        """Register a callback invoked when a new device is created."""
        if callback not in self._added_callbacks:
            self._added_callbacks.append(callback)

    def on_device_updated(self, callback: DeviceCallback) -> None:
        """
        Register a callback invoked when a known device's IP changes.

        This is the place to persist ``light.last_known_ip``.
        """
        if callback not in self._updated_callbacks:
            self._updated_callbacks.append(callback)

    def get(self, id_: str) -> Optional[WizLight]:
        return self._by_id.get(id_)

    def get_by_mac(self, mac_address: str) -> Optional[WizLight]:
        try:
            return self._by_mac.get(normalize_mac(mac_address))
        except ValueError:
            return None

    def get_by_ip(self, ip_address: str) -> Optional[WizLight]:
        return self._by_ip.get(ip_address)

    def restore(self, mac_address: str, last_known_ip: Optional[str] = None) -> WizLight:
        """
        Recreate a device from persisted identity.

        No handshake is sent; the device is picked up again when it
        registers.

        Args:
            mac_address: The device's MAC address.
            last_known_ip: The IP persisted from a previous run.

        Returns:
            The restored (or already known) light.
        """
        existing = self.get_by_mac(mac_address)
        if existing is not None:
            return existing

        light = self._create(mac_address, last_known_ip)
        self._logger.debug(
            "Restored device %s (last known IP %s)",
            light.mac_address,
            last_known_ip
        )
        return light

    def remove(self, mac_address: str) -> Optional[WizLight]:
        """
        Forget a device and stop its engine.

        Returns:
            The removed light, or None if unknown.
        """
        light = self.get_by_mac(mac_address)
        if light is None:
            return None

        del self._by_id[device_id(light.mac_address)]
        del self._by_mac[light.mac_address]
        self._handshaken.discard(device_id(light.mac_address))
        if light.ip_address and self._by_ip.get(light.ip_address) is light:
            del self._by_ip[light.ip_address]

        light.close()
        self._logger.info("Removed device %s", light.mac_address)
        return light

    def close(self) -> None:
        """Detach from the transport and stop every device's engine."""
        self.detach()
        for light in self._by_id.values():
            light.close()

    def handle_registration(self, event: RegistrationEvent) -> None:
        """
        Create or update a device from a registration.

        A new MAC creates a light and runs its handshake. A known MAC
        registering from a different IP moves the IP index entry and runs
        the handshake again.
        """
        try:
            id_ = device_id(event.mac)
        except ValueError:
            self._logger.warning("Ignoring registration with invalid MAC %r", event.mac)
            return

        light = self._by_id.get(id_)

        if light is None:
            self._logger.info("Got new device [%s]: ip=%s mac=%s", id_, event.ip, event.mac)
            light = self._create(event.mac, event.ip)
            light.init()
            self._handshaken.add(id_)
            self._invoke(self._added_callbacks, light)
            return

        moved = not (self._by_ip.get(event.ip) is light and light.ip_address == event.ip)
        if not moved and id_ in self._handshaken:
            self._logger.debug(
                "Got registration for already-known device [%s]: ip=%s",
                id_,
                event.ip
            )
            return

        if moved:
            self._set_ip(light, event.ip)
        light.init()
        self._handshaken.add(id_)
        if moved:
            self._invoke(self._updated_callbacks, light)

    def handle_ack(self, event: AckEvent) -> None:
        light = self._by_ip.get(event.ip)
        if light is not None:
            light.handle_ack(event)

    def handle_bulb_status(self, event: BulbStatusEvent) -> None:
        light = self.get_by_mac(event.mac)
        if light is not None:
            light.update_status(event)

    def handle_system_config(self, event: SystemConfigEvent) -> None:
        light = self.get_by_mac(event.mac)
        if light is not None:
            light.handle_config(event.config)

    def _create(self, mac_address: str, ip_address: Optional[str]) -> WizLight:
        light = WizLight(
            mac_address,
            self._communication,
            debounce=self._debounce,
            retry=self._retry,
        )
        self._by_id[device_id(light.mac_address)] = light
        self._by_mac[light.mac_address] = light
        if ip_address:
            self._set_ip(light, ip_address)
        return light

    def _set_ip(self, light: WizLight, ip_address: str) -> None:
        old_ip = light.ip_address
        if old_ip and self._by_ip.get(old_ip) is light:
            del self._by_ip[old_ip]

        previous = self._by_ip.get(ip_address)
        if previous is not None and previous is not light:
            # Address was reassigned by DHCP; the old holder has moved on
            self._logger.debug(
                "IP %s moved from %s to %s",
                ip_address,
                previous.mac_address,
                light.mac_address
            )

        self._by_ip[ip_address] = light
        light.update_network_info(ip_address)

    def _invoke(self, callbacks: List[DeviceCallback], light: WizLight) -> None:
        for callback in list(callbacks):
            try:
                result = callback(light)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending_callbacks.add(task)
                    task.add_done_callback(self._pending_callbacks.discard)
            except Exception as e:
                self._logger.exception(
                    "Device callback raised exception: %s",
                    e
                )
