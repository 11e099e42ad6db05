"""
UDP transport and message router for WiZ devices.

This module owns the single UDP socket shared by every device. It:

- Binds to the configured local address and server port with broadcast
  enabled
- Decodes each inbound datagram as UTF-8 JSON and classifies it by its
  ``method`` (or by the presence of an ``error`` member)
- Emits typed events (ready, registration, bulb_status, ack,
  system_config, error) to registered callbacks
- Sends messages to a single device or to the broadcast address

Nothing that arrives on the socket can stop the receive loop: malformed
datagrams and send failures are surfaced as ``error`` events.
"""

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from .exceptions import ProtocolError, TransportNotReadyError
from .network import NetworkConfig
from .pilot import ObservedState, PilotState, decode_status, parse_pilot


# Port we listen on for device responses and pushes
DEFAULT_SERVER_PORT = 38900

# Port devices listen on for commands
DEFAULT_CLIENT_PORT = 38899

EVENT_READY = "ready"
EVENT_REGISTRATION = "registration"
EVENT_BULB_STATUS = "bulb_status"
EVENT_ACK = "ack"
EVENT_SYSTEM_CONFIG = "system_config"
EVENT_ERROR = "error"

EVENTS = (
    EVENT_READY,
    EVENT_REGISTRATION,
    EVENT_BULB_STATUS,
    EVENT_ACK,
    EVENT_SYSTEM_CONFIG,
    EVENT_ERROR,
)


class TransportState(Enum):
    """Lifecycle of the transport socket."""
    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReadyEvent:
    """The socket is bound and sends are now allowed."""
    address: str
    port: int


@dataclass(frozen=True)
class RegistrationEvent:
    """A device announced itself."""
    ip: str
    mac: str


@dataclass(frozen=True)
class BulbStatusEvent:
    """
    A device reported its pilot, either as a getPilot response or a
    syncPilot push.

    Attributes:
        ip: Source address of the datagram.
        mac: Device MAC address as reported.
        rssi: WiFi signal strength, if reported.
        state: The pilot converted to model units.
        pilot: The pilot as received, in device units.
    """
    ip: str
    mac: str
    rssi: Optional[int]
    state: ObservedState
    pilot: PilotState


@dataclass(frozen=True)
class AckEvent:
    """
    Response to a setPilot command.

    Attributes:
        ip: Source address of the datagram.
        success: False when the device answered with an error object.
        error: The device's ``{"code", "message"}`` error, if any.
    """
    ip: str
    success: bool
    error: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class SystemConfigEvent:
    """A getSystemConfig response."""
    ip: str
    mac: str
    config: Dict[str, Any]


@dataclass(frozen=True)
class ErrorEvent:
    """
    A non-fatal transport error.

    Attributes:
        error: The underlying exception.
        ip: Address involved, if known.
        raw: Raw datagram text for parse failures.
    """
    error: Exception
    ip: Optional[str] = None
    raw: Optional[str] = None


Event = Union[ReadyEvent, RegistrationEvent, BulbStatusEvent, AckEvent, SystemConfigEvent, ErrorEvent]

EventCallback = Union[
    Callable[[Any], None],
    Callable[[Any], Awaitable[None]]
]


class _WizDatagramProtocol(asyncio.DatagramProtocol):
    """asyncio protocol forwarding socket activity to WizCommunication."""

    def __init__(self, communication: "WizCommunication"):
        self._communication = communication

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self._communication._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._communication._handle_send_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._communication._handle_connection_lost(exc)


class WizCommunication:
    """
    Shared UDP socket and message router.

    Example:
        ```python
        async with WizCommunication(NetworkConfig(address="192.168.1.10")) as comm:
            comm.on("registration", lambda event: print(event.mac, event.ip))
            comm.broadcast(messages.registration(comm.network, True))
            await asyncio.sleep(5)
        ```
    """

    def __init__(
        self,
        network: Optional[NetworkConfig] = None,
        server_port: int = DEFAULT_SERVER_PORT,
        client_port: int = DEFAULT_CLIENT_PORT
    ):
        """
        Initialize the transport. The socket is not bound until start().

        Args:
            network: Local addresses to bind to and broadcast on.
            server_port: Local port to receive on (0 picks a free port).
            client_port: Device port that messages are sent to.
        """
        self._network = network or NetworkConfig()
        self._server_port = server_port
        self._client_port = client_port
        self._logger = logging.getLogger("wiz.communication")

        self._state = TransportState.UNBOUND
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._callbacks: Dict[str, List[EventCallback]] = defaultdict(list)
        self._pending_callbacks: Set[asyncio.Task] = set()

    @property
    def network(self) -> NetworkConfig:
        return self._network

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_bound(self) -> bool:
        return self._state is TransportState.BOUND

    @property
    def client_port(self) -> int:
        return self._client_port

    @property
    def port(self) -> Optional[int]:
        """
        The local port actually bound.

        Returns:
            The port number, or None while not bound.
        """
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[1]

    def on(self, event: str, callback: EventCallback) -> None:
        """
        Register a callback for an event.

        Callbacks receive the event dataclass and may be coroutines.

        Args:
            event: One of the names in EVENTS.
            callback: Function to call with the event.

        Raises:
            ValueError: If the event name is unknown.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        if callback not in self._callbacks[event]:
            self._callbacks[event].append(callback)

    def off(self, event: str, callback: EventCallback) -> bool:
        """
        Remove a callback.

        Returns:
            True if the callback was removed, False if not found.
        """
        callbacks = self._callbacks.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    async def start(self) -> None:
        """
        Bind the socket and emit ``ready``.

        Raises:
            RuntimeError: If already bound.
            TransportNotReadyError: If the transport was closed.
            OSError: If the socket cannot be bound.
        """
        if self._state is TransportState.BOUND:
            raise RuntimeError("Transport is already bound")
        if self._state is TransportState.CLOSED:
            raise TransportNotReadyError("Transport has been closed")

        loop = asyncio.get_running_loop()
        transport, _protocol = await loop.create_datagram_endpoint(
            lambda: _WizDatagramProtocol(self),
            local_addr=(self._network.address, self._server_port),
            allow_broadcast=True,
        )
        self._transport = transport
        self._state = TransportState.BOUND

        self._logger.info(
            "Listening on %s:%d",
            self._network.address,
            self.port
        )
        self._emit(EVENT_READY, ReadyEvent(address=self._network.address, port=self.port))

    def close(self) -> None:
        """
        Release the socket. Calling close() more than once is a no-op.
        """
        if self._state is TransportState.CLOSED:
            return

        transport = self._transport
        self._transport = None
        self._state = TransportState.CLOSED

        if transport is not None:
            transport.close()
            self._logger.info("Transport closed")

    def broadcast(self, message: str) -> None:
        """
        Send a message to every device on the broadcast address.

        Raises:
            TransportNotReadyError: If the socket is not bound.
        """
        self._send(message, self._network.broadcast_address)

    def send_to(self, ip: str, message: str) -> None:
        """
        Send a message to a single device.

        Sending is fire-and-forget; failures are reported through the
        ``error`` event.

        Args:
            ip: Device IP address.
            message: Encoded JSON message.

        Raises:
            TransportNotReadyError: If the socket is not bound.
        """
        self._send(message, ip)

    def _send(self, message: str, ip: str) -> None:
        if self._state is not TransportState.BOUND or self._transport is None:
            raise TransportNotReadyError(
                f"Cannot send to {ip}: transport is {self._state.value}"
            )

        self._logger.debug("Sending to %s:%d: %s", ip, self._client_port, message)

        try:
            self._transport.sendto(message.encode("utf-8"), (ip, self._client_port))
        except OSError as e:
            self._logger.error("Error sending to %s: %s", ip, e)
            self._emit(EVENT_ERROR, ErrorEvent(error=e, ip=ip))

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        """
        Decode, classify and dispatch one inbound datagram.

        Args:
            data: Raw datagram payload.
            addr: Tuple of (ip_address, port) of the sender.
        """
        ip = addr[0]
        text = data.decode("utf-8", errors="replace")
        self._logger.debug("Received from %s: %s", ip, text)

        try:
            event_name, event = self._classify(ip, text)
        except ProtocolError as e:
            self._logger.error("Error processing message from %s: %s", ip, text)
            self._emit(EVENT_ERROR, ErrorEvent(error=e, ip=ip, raw=text))
            return

        if event_name is not None:
            self._emit(event_name, event)

    def _classify(self, ip: str, text: str) -> Tuple[Optional[str], Optional[Event]]:
        try:
            msg = json.loads(text)
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON: {e}", raw=text) from e

        if not isinstance(msg, dict):
            raise ProtocolError("Message is not a JSON object", raw=text)

        if "error" in msg:
            error = msg["error"] if isinstance(msg["error"], dict) else {"message": msg["error"]}
            self._logger.debug(
                "Received error response from %s: %s",
                ip,
                error.get("message")
            )
            return EVENT_ACK, AckEvent(ip=ip, success=False, error=error)

        method = msg.get("method")

        if method == "registration":
            result = _body(msg, "result", text)
            self._logger.debug("Received registration from %s [%s]", ip, result.get("mac"))
            return EVENT_REGISTRATION, RegistrationEvent(ip=ip, mac=_mac(result, text))

        if method in ("syncPilot", "getPilot"):
            body = _body(msg, "params" if method == "syncPilot" else "result", text)
            try:
                state = decode_status(body)
            except (TypeError, ValueError) as e:
                raise ProtocolError(f"Invalid pilot in {method}: {e}", raw=text) from e
            event = BulbStatusEvent(
                ip=ip,
                mac=_mac(body, text),
                rssi=body.get("rssi"),
                state=state,
                pilot=parse_pilot(body),
            )
            self._logger.debug(
                "Received %s from %s [%s]: RSSI=%s, state=%s",
                method,
                ip,
                event.mac,
                event.rssi,
                event.state
            )
            return EVENT_BULB_STATUS, event

        if method == "setPilot":
            self._logger.debug("Received setPilot success response from %s", ip)
            return EVENT_ACK, AckEvent(ip=ip, success=True)

        if method == "getSystemConfig":
            result = _body(msg, "result", text)
            self._logger.debug("Received getSystemConfig response from %s: %s", ip, result)
            return EVENT_SYSTEM_CONFIG, SystemConfigEvent(ip=ip, mac=_mac(result, text), config=result)

        self._logger.warning("Received unknown '%s' message from %s", method, ip)
        return None, None

    def _handle_send_error(self, exc: Exception) -> None:
        self._logger.error("UDP socket error: %s", exc)
        self._emit(EVENT_ERROR, ErrorEvent(error=exc))

    def _handle_connection_lost(self, exc: Optional[Exception]) -> None:
        if self._state is TransportState.BOUND:
            # The socket went away without close() being called
            self._state = TransportState.CLOSED
            self._transport = None
            self._logger.error("UDP socket lost: %s", exc)
            if exc is not None:
                self._emit(EVENT_ERROR, ErrorEvent(error=exc))

    def _emit(self, event: str, payload: Event) -> None:
        """
        Invoke every callback registered for an event.

        Coroutine callbacks are scheduled on the running loop.
        """
        for callback in list(self._callbacks.get(event, [])):
            try:
                result = callback(payload)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending_callbacks.add(task)
                    task.add_done_callback(self._on_callback_done)
            except Exception as e:
                self._logger.exception(
                    "%s callback raised exception: %s",
                    event,
                    e
                )

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._pending_callbacks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._logger.error(
                "Event callback raised exception",
                exc_info=task.exception()
            )

    async def __aenter__(self) -> "WizCommunication":
        """
        Async context manager entry.

        Returns:
            The transport after binding.
        """
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"WizCommunication("
            f"address={self._network.address}, "
            f"port={self.port}, "
            f"state={self._state.value})"
        )


def _body(msg: Mapping[str, Any], key: str, raw: str) -> Dict[str, Any]:
    body = msg.get(key)
    if not isinstance(body, dict):
        raise ProtocolError(f"'{msg.get('method')}' message has no '{key}' object", raw=raw)
    return body


def _mac(body: Mapping[str, Any], raw: str) -> str:
    mac = body.get("mac")
    if not isinstance(mac, str) or not mac:
        raise ProtocolError("Message does not carry a MAC address", raw=raw)
    return mac
