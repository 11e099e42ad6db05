"""
Platform configuration.

PlatformConfig can be built directly or from a plain mapping such as a
host application's JSON config. Mappings may use the snake_case field
names (intervals in seconds) or the camelCase keys used by existing WiZ
configurations (``discoveryFreq`` / ``pollFreq`` in milliseconds).
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Any, List, Mapping

from .communication import DEFAULT_CLIENT_PORT, DEFAULT_SERVER_PORT


# Re-run discovery every 5 minutes
DEFAULT_DISCOVERY_INTERVAL = 300.0

# Rely on push updates by default
DEFAULT_POLL_INTERVAL = 0.0

_MILLISECOND_KEYS = {
    "discoveryFreq": "discovery_interval",
    "pollFreq": "poll_interval",
}

_CAMEL_KEYS = {
    "serverPort": "server_port",
    "clientPort": "client_port",
    "broadcastPoll": "broadcast_poll",
}


@dataclass
class PlatformConfig:
    """
    Settings for WizPlatform.

    Attributes:
        server_port: Local port to receive on.
        client_port: Device port to send to.
        discovery_interval: Seconds between registration broadcasts
            (<= 0 disables periodic discovery).
        poll_interval: Seconds between polls (<= 0 relies on pushes).
        broadcast_poll: Poll with one broadcast instead of per device.
        devices: IP addresses to send registrations to directly.
    """
    server_port: int = DEFAULT_SERVER_PORT
    client_port: int = DEFAULT_CLIENT_PORT
    discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    broadcast_poll: bool = False
    devices: List[str] = field(default_factory=list)

    def __post_init__(self):
        """Validate ports and device addresses."""
        for name in ("server_port", "client_port"):
            port = getattr(self, name)
            if not isinstance(port, int) or not 0 <= port <= 65535:
                raise ValueError(f"{name} must be a port number, got {port!r}")

        for ip in self.devices:
            try:
                ipaddress.IPv4Address(ip)
            except ValueError as e:
                raise ValueError(f"Invalid device address: {ip!r}") from e

    @property
    def push_updates(self) -> bool:
        """Whether devices should be asked to push state changes."""
        return self.poll_interval <= 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlatformConfig":
        """
        Build a config from a mapping.

        Args:
            data: Config values. Unknown keys are ignored.

        Returns:
            The parsed config.

        Raises:
            ValueError: If a value is invalid.
        """
        kwargs = {}
        for key, value in data.items():
            if key in _MILLISECOND_KEYS:
                kwargs[_MILLISECOND_KEYS[key]] = float(value) / 1000.0
            elif key in _CAMEL_KEYS:
                kwargs[_CAMEL_KEYS[key]] = value
            elif key in cls.__dataclass_fields__:
                kwargs[key] = value

        if "devices" in kwargs:
            kwargs["devices"] = list(kwargs["devices"] or [])
        for key in ("discovery_interval", "poll_interval"):
            if key in kwargs:
                kwargs[key] = float(kwargs[key])
        if "broadcast_poll" in kwargs:
            kwargs["broadcast_poll"] = bool(kwargs["broadcast_poll"])

        return cls(**kwargs)
