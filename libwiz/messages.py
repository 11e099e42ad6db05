"""
Outbound WiZ JSON messages.

Every message is a single UTF-8 JSON object sent in one datagram:
``{"method": ..., "params": {...}}``.
"""

import json
from typing import Any, Dict, Mapping

from .network import NetworkConfig


def _encode(method: str, params: Mapping[str, Any]) -> str:
    return json.dumps({"method": method, "params": dict(params)}, separators=(",", ":"))


def registration(network: NetworkConfig, register: bool) -> str:
    """
    Build a registration message.

    Devices answer with their MAC address. With ``register`` set they also
    start pushing syncPilot updates to ``phoneIp``.

    Args:
        network: Local network identity to announce.
        register: Whether to subscribe to push updates.

    Returns:
        The encoded message.
    """
    return _encode("registration", {
        "register": bool(register),
        "phoneMac": network.phone_mac,
        "phoneIp": network.address,
    })


def set_pilot(params: Dict[str, Any]) -> str:
    """Build a setPilot message from encoded pilot parameters."""
    return _encode("setPilot", params)


GET_PILOT = _encode("getPilot", {})

GET_SYSTEM_CONFIG = _encode("getSystemConfig", {})
