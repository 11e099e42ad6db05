"""
Local network identity used when talking to WiZ devices.

The registration message tells a device where to push its updates, so the
library needs to know the local IPv4 address and MAC address it should
announce, as well as the broadcast address to use for discovery. Picking
these from the host's interfaces is left to the caller.
"""

import ipaddress
import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_BROADCAST_ADDRESS = "255.255.255.255"

_MAC_HEX = re.compile(r"^[0-9a-f]{12}$")


def normalize_mac(mac: str) -> str:
    """
    Normalize a MAC address to lowercase hex without separators.

    This is the form WiZ devices use in their own messages
    (e.g. "a8bb50e1d2c3").

    Args:
        mac: MAC address with colons, hyphens, or no separators.

    Returns:
        The normalized MAC address.

    Raises:
        ValueError: If the MAC address is not valid.
    """
    cleaned = mac.replace(":", "").replace("-", "").lower()
    if not _MAC_HEX.match(cleaned):
        raise ValueError(f"Invalid MAC address: {mac!r}")
    return cleaned


@dataclass(frozen=True)
class NetworkConfig:
    """
    Addresses used by the transport.

    Attributes:
        address: Local IPv4 address to bind to and announce as phoneIp.
        broadcast_address: Destination for discovery broadcasts.
        mac: Local MAC address announced as phoneMac, if known.
    """
    address: str = DEFAULT_ADDRESS
    broadcast_address: str = DEFAULT_BROADCAST_ADDRESS
    mac: Optional[str] = None

    def __post_init__(self):
        """Validate addresses."""
        for value in (self.address, self.broadcast_address):
            try:
                ipaddress.IPv4Address(value)
            except ValueError as e:
                raise ValueError(f"Invalid IPv4 address: {value!r}") from e
        if self.mac is not None:
            normalize_mac(self.mac)

    @property
    def phone_mac(self) -> Optional[str]:
        """The local MAC in the uppercase, separator-free form devices expect."""
        if self.mac is None:
            return None
        return normalize_mac(self.mac).upper()
