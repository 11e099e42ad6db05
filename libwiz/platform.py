"""
Top-level entry point tying the transport and the registry together.

WizPlatform starts the shared socket, announces itself to every device
it can reach, and keeps discovery and (optionally) polling running on a
schedule until it is closed.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from . import messages
from .communication import EVENT_ERROR, EVENT_READY, ErrorEvent, ReadyEvent, WizCommunication
from .config import PlatformConfig
from .device import WizLight
from .engine import DEFAULT_DEBOUNCE, RetryPolicy
from .exceptions import WizError
from .network import NetworkConfig
from .registry import DeviceRegistry


class WizPlatform:
    """
    Manages all WiZ lights reachable from one local address.

    Example:
        ```python
        network = NetworkConfig(address="192.168.1.10", mac="aa:bb:cc:dd:ee:ff")

        async with WizPlatform(network) as platform:
            platform.registry.on_device_added(lambda light: print("Found", light))
            await asyncio.sleep(5)
            for light in platform.devices:
                await light.turn_on()
        ```
    """

    def __init__(
        self,
        network: Optional[NetworkConfig] = None,
        config: Optional[PlatformConfig] = None,
        debounce: float = DEFAULT_DEBOUNCE,
        retry: Optional[RetryPolicy] = None
    ):
        """
        Initialize the platform.

        Args:
            network: Local network identity.
            config: Ports, schedules and pre-configured devices.
            debounce: Debounce period for device engines.
            retry: Retry policy for device engines.
        """
        self._network = network or NetworkConfig()
        self._config = config or PlatformConfig()
        self._logger = logging.getLogger("wiz.platform")

        self._communication = WizCommunication(
            self._network,
            server_port=self._config.server_port,
            client_port=self._config.client_port,
        )
        self._registry = DeviceRegistry(self._communication, debounce=debounce, retry=retry)

        self._communication.on(EVENT_READY, self._on_ready)
        self._communication.on(EVENT_ERROR, self._on_error)

        self._tasks: List[asyncio.Task] = []
        self._closed = False

    @property
    def communication(self) -> WizCommunication:
        return self._communication

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def config(self) -> PlatformConfig:
        return self._config

    @property
    def devices(self) -> List[WizLight]:
        return self._registry.devices

    def restore(self, mac_address: str, last_known_ip: Optional[str] = None) -> WizLight:
        """
        Re-add a device persisted by the host before starting.

        Its last known IP is sent a registration once the socket is up.
        """
        return self._registry.restore(mac_address, last_known_ip)

    async def start(self) -> None:
        """
        Start listening and run the initial discovery.

        Raises:
            RuntimeError: If the platform was closed.
            OSError: If the socket cannot be bound.
        """
        if self._closed:
            raise RuntimeError("Platform has been closed")

        self._logger.info(
            "Starting WiZ platform with %d pre-configured device(s)",
            len(self._config.devices)
        )
        self._registry.attach()
        await self._communication.start()

    def discover(self) -> None:
        """Broadcast a registration to find devices."""
        self._communication.broadcast(self._registration())

    def poll(self) -> None:
        """Ask every known device for its current state."""
        if self._config.broadcast_poll:
            self._communication.broadcast(messages.GET_PILOT)
            return
        for light in self._registry.devices:
            light.poll()

    async def close(self) -> None:
        """
        Stop all schedules, engines and the socket.

        Changes still waiting for an acknowledgement are abandoned and
        their futures never resolve.
        """
        if self._closed:
            return
        self._closed = True

        self._logger.info("Shutting down WiZ platform")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        self._registry.close()
        self._communication.close()

    def _registration(self) -> str:
        return messages.registration(self._network, self._config.push_updates)

    def _on_ready(self, event: ReadyEvent) -> None:
        self._logger.debug("Communication layer ready, running initial discovery")

        registration = self._registration()
        self._communication.broadcast(registration)

        for ip in self._config.devices:
            self._communication.send_to(ip, registration)

        for light in self._registry.devices:
            if light.ip_address:
                self._communication.send_to(light.ip_address, registration)

        if self._config.discovery_interval > 0:
            self._logger.info(
                "Running discovery every %.0f seconds",
                self._config.discovery_interval
            )
            self._schedule(self._config.discovery_interval, self.discover, "discovery")

        if self._config.poll_interval > 0:
            self._logger.info(
                "Polling devices every %.0f seconds",
                self._config.poll_interval
            )
            self._schedule(self._config.poll_interval, self.poll, "poll")

    def _on_error(self, event: ErrorEvent) -> None:
        self._logger.debug("Transport error from %s: %s", event.ip, event.error)

    def _schedule(self, interval: float, action: Callable[[], None], name: str) -> None:
        task = asyncio.get_running_loop().create_task(self._periodic(interval, action, name))
        self._tasks.append(task)

    async def _periodic(self, interval: float, action: Callable[[], None], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                action()
            except WizError as e:
                self._logger.error("Periodic %s failed: %s", name, e)

    async def __aenter__(self) -> "WizPlatform":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
