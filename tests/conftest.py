"""Shared fixtures for libwiz tests."""

import asyncio
import json
from typing import Any, Dict, List, Tuple
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from libwiz import WizCommunication

DEVICE_MAC = "a8bb50e1d2c3"
OTHER_MAC = "a8bb50aabbcc"


class FakeDevice(asyncio.DatagramProtocol):
    """A UDP endpoint standing in for a WiZ device on loopback."""

    def __init__(self):
        self.transport = None
        self.received: "asyncio.Queue[Tuple[Dict[str, Any], Tuple[str, int]]]" = asyncio.Queue()

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.received.put_nowait((json.loads(data.decode("utf-8")), addr))

    @property
    def port(self) -> int:
        return self.transport.get_extra_info("sockname")[1]

    def reply(self, message: Dict[str, Any], port: int) -> None:
        self.transport.sendto(json.dumps(message).encode("utf-8"), ("127.0.0.1", port))

    async def next_message(self, timeout: float = 2.0) -> Dict[str, Any]:
        message, _addr = await asyncio.wait_for(self.received.get(), timeout)
        return message

    async def next_method(self, method: str, timeout: float = 2.0) -> Dict[str, Any]:
        """Skip messages until one with the given method arrives."""
        while True:
            message = await self.next_message(timeout)
            if message.get("method") == method:
                return message


@pytest_asyncio.fixture
async def fake_device():
    """A loopback UDP endpoint acting as a device."""
    loop = asyncio.get_running_loop()
    _transport, protocol = await loop.create_datagram_endpoint(
        FakeDevice, local_addr=("127.0.0.1", 0)
    )
    yield protocol
    protocol.transport.close()


@pytest.fixture
def communication() -> MagicMock:
    """A transport double that records sends."""
    return MagicMock(spec=WizCommunication)


def sent_methods(communication: MagicMock) -> List[Tuple[str, str]]:
    """Get (ip, method) for every send_to call on a transport double."""
    return [
        (call.args[0], json.loads(call.args[1])["method"])
        for call in communication.send_to.call_args_list
    ]


def datagram(message: Dict[str, Any]) -> bytes:
    return json.dumps(message).encode("utf-8")
