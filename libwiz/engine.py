"""
Desired-state convergence for a single device.

Requests to change a light's properties arrive in bursts (hue and
saturation are typically written within milliseconds of each other) and
the network drops packets. The ConvergenceEngine turns that stream into a
reliable sequence of setPilot commands:

1. Incoming requests are merged field by field into one Patch, and each
   request's completion future is queued on it.
2. Once no request has arrived for the debounce period, the merged
   command is sent.
3. The same command is resent on the retry schedule until the device
   acknowledges it.
4. The acknowledgement resolves every queued future with the outcome and
   the engine returns to idle, ready for the next cycle.

Each engine is a small actor: one asyncio task consumes a queue of change
requests and acknowledgements, and its timers are deadlines on that
queue. At most one cycle per device is ever in flight.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import messages
from .exceptions import WizError
from .pilot import DesiredProperties, ObservedState, encode_command, validate_properties


# Quiet period after the last request before transmitting (seconds)
DEFAULT_DEBOUNCE = 0.02

# Delay between retransmissions (seconds)
DEFAULT_RETRY_INTERVAL = 1.0


class EngineState(Enum):
    """Where the engine is in its convergence cycle."""
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    TRANSMITTING = "transmitting"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retransmission schedule.

    The default resends every second forever.

    Attributes:
        interval: Delay after the first transmission, in seconds.
        backoff: Multiplier applied to the delay after each retransmission.
        max_interval: Upper bound on the delay, if any.
        max_attempts: Give up after this many transmissions, if set.
    """
    interval: float = DEFAULT_RETRY_INTERVAL
    backoff: float = 1.0
    max_interval: Optional[float] = None
    max_attempts: Optional[int] = None

    def __post_init__(self):
        """Validate the policy."""
        if self.interval <= 0:
            raise ValueError(f"Retry interval must be positive, got {self.interval}")
        if self.backoff < 1.0:
            raise ValueError(f"Retry backoff must be at least 1.0, got {self.backoff}")
        if self.max_interval is not None and self.max_interval < self.interval:
            raise ValueError("max_interval must not be smaller than interval")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delay(self, attempt: int) -> float:
        """
        Get the delay to wait after a transmission.

        Args:
            attempt: Number of transmissions made so far (1-based).

        Returns:
            Seconds until the next retransmission.
        """
        delay = self.interval * self.backoff ** (attempt - 1)
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay

    def exhausted(self, attempt: int) -> bool:
        """Whether no further transmission is allowed after ``attempt``."""
        return self.max_attempts is not None and attempt >= self.max_attempts


@dataclass(frozen=True)
class CycleOutcome:
    """
    Result delivered to every request of a finished cycle.

    Attributes:
        success: True when the device acknowledged without error.
        acknowledged: False when the retry policy gave up without an ack.
        error: The device's error object, if it reported one.
    """
    success: bool
    acknowledged: bool = True
    error: Optional[Dict[str, Any]] = None


@dataclass
class Patch:
    """
    Merged, not yet acknowledged changes and the futures waiting on them.
    """
    properties: DesiredProperties = field(default_factory=dict)
    completions: List[asyncio.Future] = field(default_factory=list)

    def merge(self, properties: Mapping[str, Any], completion: asyncio.Future) -> None:
        """Overwrite fields with ``properties`` and queue ``completion``."""
        self.properties.update(properties)
        self.completions.append(completion)


@dataclass(frozen=True)
class _ChangeRequest:
    properties: DesiredProperties
    completion: asyncio.Future


@dataclass(frozen=True)
class _Ack:
    success: bool
    error: Optional[Dict[str, Any]] = None


class _Cancel:
    pass


class ConvergenceEngine:
    """
    Drives one device toward its requested state.

    The engine never reports failure by raising: a request's future
    resolves with a CycleOutcome when the cycle ends. With the default
    RetryPolicy a device that never acknowledges is retried forever and
    the futures stay pending.

    Example:
        ```python
        engine = ConvergenceEngine(lambda msg: comm.send_to(ip, msg))
        outcome = await engine.request_change(powered_on=True, brightness=40)
        ```
    """

    def __init__(
        self,
        transmit: Callable[[str], None],
        debounce: float = DEFAULT_DEBOUNCE,
        retry: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the engine.

        Args:
            transmit: Sends an encoded setPilot message to the device.
            debounce: Quiet period in seconds before transmitting.
            retry: Retransmission schedule.
            logger: Logger to use (defaults to "wiz.engine").
        """
        if debounce < 0:
            raise ValueError(f"Debounce must not be negative, got {debounce}")

        self._transmit = transmit
        self._debounce = debounce
        self._retry = retry or RetryPolicy()
        self._logger = logger or logging.getLogger("wiz.engine")

        self._observed = ObservedState()

        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

        self._state = EngineState.IDLE
        self._patch: Optional[Patch] = None
        self._command: Optional[str] = None
        self._attempts = 0
        self._deadline: Optional[float] = None

    @property
    def state(self) -> EngineState:
        """The current step of the convergence cycle."""
        return self._state

    @property
    def observed(self) -> ObservedState:
        """The latest observed state of the device."""
        return self._observed

    @property
    def pending_properties(self) -> DesiredProperties:
        """
        Get the properties of the in-flight cycle.

        Returns:
            A copy of the merged patch, empty when idle.
        """
        if self._patch is None:
            return {}
        return DesiredProperties(**self._patch.properties)

    @property
    def attempts(self) -> int:
        """Transmissions made for the current command."""
        return self._attempts

    @property
    def is_closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def update_observed(self, state: ObservedState) -> None:
        """
        Replace the observed state used to fill in partial patches.

        Args:
            state: State most recently reported by the device.
        """
        self._observed = state

    def request_change(
        self,
        properties: Optional[Mapping[str, Any]] = None,
        **kwargs: Any
    ) -> "asyncio.Future[CycleOutcome]":
        """
        Request a change of one or more light properties.

        Must be called from within the running event loop.

        Args:
            properties: Partial properties (powered_on, brightness, hue,
                saturation, temperature).
            **kwargs: Same, as keyword arguments.

        Returns:
            A future resolved with the CycleOutcome of the cycle that
            carries this change.

        Raises:
            ValueError: If a property is unknown or has an invalid value.
            RuntimeError: If the engine has been closed.
        """
        if self._closed:
            raise RuntimeError("Engine is closed")

        merged = dict(properties or {})
        merged.update(kwargs)
        changes = validate_properties(merged)

        completion = asyncio.get_running_loop().create_future()
        self._ensure_running()
        self._queue.put_nowait(_ChangeRequest(changes, completion))
        return completion

    def handle_ack(self, success: bool, error: Optional[Dict[str, Any]] = None) -> None:
        """
        Deliver an acknowledgement from the device.

        Args:
            success: False if the device answered with an error.
            error: The device's error object, if any.
        """
        if self._closed or self._queue is None:
            return
        self._queue.put_nowait(_Ack(success, error))

    def cancel(self) -> None:
        """
        Abandon the current cycle.

        Retransmission stops and the futures of the cycle are cancelled.
        """
        if self._closed or self._queue is None:
            return
        self._queue.put_nowait(_Cancel())

    def close(self) -> None:
        """
        Stop the engine.

        Futures of an unfinished cycle are left unresolved.
        """
        if self._closed:
            return
        self._closed = True

        if self._task is not None:
            self._task.cancel()
            self._task = None

        if self._patch is not None:
            self._logger.debug(
                "Engine closed with %d pending request(s)",
                len(self._patch.completions)
            )

    def _ensure_running(self) -> None:
        if self._task is not None and self._task.done():
            self._recover(self._task)
        if self._task is None or self._task.done():
            if self._queue is None:
                self._queue = asyncio.Queue()
            self._task = asyncio.get_running_loop().create_task(self._run())

    def _recover(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return

        error = task.exception()
        self._logger.error("Engine task failed, restarting", exc_info=error)
        if self._patch is not None:
            self._finish(CycleOutcome(
                success=False,
                acknowledged=False,
                error={"message": str(error)},
            ))
        else:
            self._reset()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()

        while True:
            if self._deadline is None:
                message = await self._queue.get()
            else:
                timeout = max(0.0, self._deadline - loop.time())
                try:
                    message = await asyncio.wait_for(self._queue.get(), timeout)
                except asyncio.TimeoutError:
                    self._on_deadline(loop.time())
                    continue

            if isinstance(message, _ChangeRequest):
                self._on_change(message, loop.time())
            elif isinstance(message, _Ack):
                self._on_ack(message)
            elif isinstance(message, _Cancel):
                self._on_cancel()

    def _on_change(self, request: _ChangeRequest, now: float) -> None:
        if self._state is EngineState.IDLE:
            self._patch = Patch()
        elif self._state is EngineState.TRANSMITTING:
            self._logger.debug(
                "Merging %s into in-flight command",
                request.properties
            )

        self._patch.merge(request.properties, request.completion)
        self._state = EngineState.ACCUMULATING
        self._command = None
        self._attempts = 0
        self._deadline = now + self._debounce

    def _on_deadline(self, now: float) -> None:
        if self._state is EngineState.ACCUMULATING:
            try:
                params = encode_command(self._patch.properties, self._observed)
            except (TypeError, ValueError) as e:
                self._logger.error("Cannot encode %s: %s", self._patch.properties, e)
                self._finish(CycleOutcome(
                    success=False,
                    acknowledged=False,
                    error={"message": str(e)},
                ))
                return
            self._command = messages.set_pilot(params)
            # Later partial patches default to what was last commanded
            self._observed = self._observed.merged(self._patch.properties)
            self._state = EngineState.TRANSMITTING
            self._send(now)
        elif self._state is EngineState.TRANSMITTING:
            if self._retry.exhausted(self._attempts):
                self._logger.warning(
                    "No acknowledgement after %d attempt(s), giving up",
                    self._attempts
                )
                self._finish(CycleOutcome(success=False, acknowledged=False))
                return
            self._send(now)

    def _send(self, now: float) -> None:
        self._attempts += 1
        self._deadline = now + self._retry.delay(self._attempts)

        self._logger.debug("Sending (attempt %d): %s", self._attempts, self._command)

        try:
            self._transmit(self._command)
        except WizError as e:
            self._logger.error("Failed to send command: %s", e)

    def _on_ack(self, ack: _Ack) -> None:
        if self._state is not EngineState.TRANSMITTING:
            self._logger.debug("Ignoring acknowledgement while %s", self._state.value)
            return

        if not ack.success:
            self._logger.warning("Device rejected command: %s", ack.error)

        self._finish(CycleOutcome(success=ack.success, error=ack.error))

    def _on_cancel(self) -> None:
        if self._patch is not None:
            for completion in self._patch.completions:
                completion.cancel()
            self._logger.debug("Cycle cancelled")
        self._reset()

    def _finish(self, outcome: CycleOutcome) -> None:
        patch = self._patch
        self._reset()

        self._logger.debug("Send operation complete: %s", patch.properties)

        for completion in patch.completions:
            if not completion.done():
                completion.set_result(outcome)

    def _reset(self) -> None:
        self._state = EngineState.IDLE
        self._patch = None
        self._command = None
        self._attempts = 0
        self._deadline = None
