"""Tests for the desired-state convergence engine."""

import asyncio
import json
import logging
from typing import List

import pytest
from libwiz import (
    ConvergenceEngine,
    CycleOutcome,
    EngineState,
    ObservedState,
    RetryPolicy,
    TransportNotReadyError,
    encode_command,
)

DEBOUNCE = 0.02
RETRY = 0.1


def make_engine(sent: List[str], **kwargs) -> ConvergenceEngine:
    kwargs.setdefault("debounce", DEBOUNCE)
    kwargs.setdefault("retry", RetryPolicy(interval=RETRY))
    return ConvergenceEngine(sent.append, **kwargs)


def params(message: str) -> dict:
    decoded = json.loads(message)
    assert decoded["method"] == "setPilot"
    return decoded["params"]


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_default_is_fixed_interval(self) -> None:
        """Test the default resends every second forever."""
        policy = RetryPolicy()
        assert policy.delay(1) == 1.0
        assert policy.delay(50) == 1.0
        assert not policy.exhausted(10_000)

    def test_backoff_capped(self) -> None:
        """Test backoff grows the delay up to max_interval."""
        policy = RetryPolicy(interval=1.0, backoff=2.0, max_interval=5.0)
        assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_max_attempts(self) -> None:
        """Test exhaustion after max_attempts transmissions."""
        policy = RetryPolicy(max_attempts=3)
        assert not policy.exhausted(2)
        assert policy.exhausted(3)

    def test_invalid_values(self) -> None:
        """Test that invalid policies are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(interval=0)
        with pytest.raises(ValueError):
            RetryPolicy(backoff=0.5)
        with pytest.raises(ValueError):
            RetryPolicy(interval=2.0, max_interval=1.0)
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestAccumulate:
    """Tests for merging and debouncing requests."""

    @pytest.mark.asyncio
    async def test_burst_collapses_to_one_command(self) -> None:
        """Test three quick requests produce one merged command."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))

        engine.request_change(hue=10)
        engine.request_change(saturation=50)
        engine.request_change(brightness=80)
        await asyncio.sleep(0.1)

        assert len(sent) == 1
        assert params(sent[0]) == encode_command(
            {"hue": 10, "saturation": 50, "brightness": 80},
            ObservedState(),
        )
        assert params(sent[0])["dimming"] == 82
        engine.close()

    @pytest.mark.asyncio
    async def test_first_send_waits_for_debounce(self) -> None:
        """Test nothing is sent before the debounce period ends."""
        sent: List[str] = []
        engine = make_engine(sent, debounce=0.1)

        engine.request_change(powered_on=True)
        await asyncio.sleep(0.03)
        assert sent == []
        assert engine.state is EngineState.ACCUMULATING

        await asyncio.sleep(0.12)
        assert len(sent) == 1
        assert engine.state is EngineState.TRANSMITTING
        engine.close()

    @pytest.mark.asyncio
    async def test_last_writer_wins(self) -> None:
        """Test conflicting requests collapse to the latest value."""
        sent: List[str] = []
        engine = make_engine(sent)

        first = engine.request_change(powered_on=True)
        second = engine.request_change(powered_on=False)
        await asyncio.sleep(0.05)

        assert len(sent) == 1
        assert params(sent[0])["state"] is False
        assert engine.pending_properties == {"powered_on": False}

        engine.handle_ack(True)
        results = await asyncio.wait_for(asyncio.gather(first, second), 1.0)
        assert results == [CycleOutcome(success=True), CycleOutcome(success=True)]
        engine.close()

    def test_unknown_property_rejected(self) -> None:
        """Test unknown properties raise before anything is queued."""
        engine = make_engine([])
        with pytest.raises(ValueError):
            engine.request_change(colour="red")


class TestTransmit:
    """Tests for retransmission."""

    @pytest.mark.asyncio
    async def test_resends_until_ack(self) -> None:
        """Test the identical command is resent on the retry interval."""
        sent: List[str] = []
        engine = make_engine(sent)

        completion = engine.request_change(powered_on=True, brightness=50)
        await asyncio.sleep(DEBOUNCE + 3.5 * RETRY)

        assert 3 <= len(sent) <= 5
        assert len(set(sent)) == 1
        assert not completion.done()
        assert engine.attempts == len(sent)
        engine.close()

    @pytest.mark.asyncio
    async def test_ack_stops_retransmission(self) -> None:
        """Test no further sends after the ack."""
        sent: List[str] = []
        engine = make_engine(sent)

        completion = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        engine.handle_ack(True)
        await asyncio.wait_for(completion, 1.0)

        count = len(sent)
        await asyncio.sleep(2 * RETRY)
        assert len(sent) == count
        assert engine.state is EngineState.IDLE
        engine.close()

    @pytest.mark.asyncio
    async def test_transport_errors_do_not_stop_retries(self) -> None:
        """Test a failing transmit is retried on schedule."""
        calls: List[str] = []

        def transmit(message: str) -> None:
            calls.append(message)
            raise TransportNotReadyError("not bound")

        engine = ConvergenceEngine(transmit, debounce=DEBOUNCE, retry=RetryPolicy(interval=0.05))
        engine.request_change(powered_on=True)
        await asyncio.sleep(0.2)

        assert len(calls) >= 2
        engine.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        """Test a capped policy resolves handles as unacknowledged."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=0.05, max_attempts=2))

        completion = engine.request_change(powered_on=True)
        outcome = await asyncio.wait_for(completion, 1.0)

        assert outcome == CycleOutcome(success=False, acknowledged=False)
        assert len(sent) == 2
        assert engine.state is EngineState.IDLE
        engine.close()

    @pytest.mark.asyncio
    async def test_change_during_transmission_is_merged(self) -> None:
        """Test a request arriving mid-transmission updates the command."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))

        first = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        second = engine.request_change(brightness=20)
        await asyncio.sleep(0.05)

        assert len(sent) == 2
        assert params(sent[1]) == {"state": True, "dimming": 28}

        engine.handle_ack(True)
        await asyncio.wait_for(asyncio.gather(first, second), 1.0)
        engine.close()


class TestCompletion:
    """Tests for resolving completion handles."""

    @pytest.mark.asyncio
    async def test_failure_outcome_preserved(self) -> None:
        """Test a device error still ends the cycle, with its details."""
        sent: List[str] = []
        engine = make_engine(sent)
        error = {"code": -32602, "message": "Invalid params"}

        completion = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        engine.handle_ack(False, error)

        outcome = await asyncio.wait_for(completion, 1.0)
        assert outcome.success is False
        assert outcome.acknowledged is True
        assert outcome.error == error
        engine.close()

    @pytest.mark.asyncio
    async def test_ack_while_accumulating_is_ignored(self) -> None:
        """Test an ack before anything was sent does not end the cycle."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))

        completion = engine.request_change(powered_on=True)
        engine.handle_ack(True)
        await asyncio.sleep(0.05)

        assert len(sent) == 1
        assert not completion.done()
        engine.close()

    @pytest.mark.asyncio
    async def test_next_request_starts_new_cycle(self) -> None:
        """Test the engine accepts requests again after an ack."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))

        first = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        engine.handle_ack(True)
        await asyncio.wait_for(first, 1.0)

        second = engine.request_change(powered_on=False)
        await asyncio.sleep(0.05)

        assert len(sent) == 2
        assert params(sent[1])["state"] is False
        assert not second.done()
        assert engine.state is EngineState.TRANSMITTING
        engine.close()

    @pytest.mark.asyncio
    async def test_cancel_abandons_cycle(self) -> None:
        """Test cancel stops sending and cancels the handles."""
        sent: List[str] = []
        engine = make_engine(sent)

        completion = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        engine.cancel()
        await asyncio.sleep(0.01)

        assert completion.cancelled()
        count = len(sent)
        await asyncio.sleep(2 * RETRY)
        assert len(sent) == count
        engine.close()

    @pytest.mark.asyncio
    async def test_close_leaves_handles_pending(self) -> None:
        """Test close stops sending without resolving handles."""
        sent: List[str] = []
        engine = make_engine(sent)

        completion = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        engine.close()

        count = len(sent)
        await asyncio.sleep(2 * RETRY)
        assert len(sent) == count
        assert not completion.done()
        assert engine.is_closed

        with pytest.raises(RuntimeError):
            engine.request_change(powered_on=False)


class TestObservedDefaults:
    """Tests for filling partial patches from observed state."""

    @pytest.mark.asyncio
    async def test_observed_state_fills_patch(self) -> None:
        """Test unset fields come from the last observed state."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))
        engine.update_observed(ObservedState(powered_on=True, brightness=100, temperature=250))

        engine.request_change(brightness=0)
        await asyncio.sleep(0.05)

        assert params(sent[0]) == {"state": True, "dimming": 10, "temp": 4000}
        engine.close()

    @pytest.mark.asyncio
    async def test_commanded_values_become_defaults(self) -> None:
        """Test a later patch keeps the color commanded earlier."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))

        first = engine.request_change(hue=0, saturation=100, temperature=None)
        await asyncio.sleep(0.05)
        engine.handle_ack(True)
        await asyncio.wait_for(first, 1.0)

        assert engine.observed.hue == 0
        engine.request_change(brightness=100)
        await asyncio.sleep(0.05)

        assert params(sent[1]) == {"state": False, "dimming": 100, "r": 255, "g": 0, "b": 0}
        engine.close()

    @pytest.mark.asyncio
    async def test_temperature_request_on_color_light(self) -> None:
        """Test a temperature request sends white and clears the observed color."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))
        engine.update_observed(ObservedState(powered_on=True, hue=120.0, saturation=50.0))

        engine.request_change(temperature=250)
        await asyncio.sleep(0.05)

        assert params(sent[0]) == {"state": True, "dimming": 100, "temp": 4000}
        assert engine.observed.hue is None
        assert engine.observed.saturation is None
        assert engine.observed.temperature == 250
        engine.close()

    @pytest.mark.asyncio
    async def test_color_request_on_white_light(self) -> None:
        """Test a color request sends RGB and clears the observed temperature."""
        sent: List[str] = []
        engine = make_engine(sent, retry=RetryPolicy(interval=5.0))
        engine.update_observed(ObservedState(powered_on=True, temperature=250))

        engine.request_change(hue=240, saturation=100)
        await asyncio.sleep(0.05)

        assert params(sent[0]) == {"state": True, "dimming": 100, "r": 0, "g": 0, "b": 255}
        assert engine.observed.temperature is None
        engine.close()


class TestInvalidInput:
    """Tests for requests and state that cannot be encoded."""

    @pytest.mark.asyncio
    async def test_bad_values_rejected_engine_keeps_working(self) -> None:
        """Test rejected values leave the engine able to send the next request."""
        sent: List[str] = []
        engine = make_engine(sent)

        with pytest.raises(ValueError):
            engine.request_change(brightness=None)
        with pytest.raises(ValueError):
            engine.request_change(temperature=-5)

        completion = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)

        assert len(sent) == 1
        assert params(sent[0])["state"] is True

        engine.handle_ack(True)
        assert await asyncio.wait_for(completion, 1.0) == CycleOutcome(success=True)
        engine.close()

    @pytest.mark.asyncio
    async def test_unencodable_defaults_end_cycle(self) -> None:
        """Test an encoding failure resolves the cycle as failed."""
        sent: List[str] = []
        engine = make_engine(sent)
        engine.update_observed(ObservedState(brightness=None))

        outcome = await asyncio.wait_for(engine.request_change(powered_on=True), 1.0)

        assert outcome.success is False
        assert outcome.acknowledged is False
        assert sent == []
        assert engine.state is EngineState.IDLE

        engine.update_observed(ObservedState())
        engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        assert len(sent) == 1
        engine.close()

    @pytest.mark.asyncio
    async def test_failed_task_is_logged_and_replaced(self, caplog) -> None:
        """Test a crashed actor is reported and its cycle resolved on the next request."""
        calls: List[str] = []

        def transmit(message: str) -> None:
            calls.append(message)
            if len(calls) == 1:
                raise RuntimeError("socket gone")

        engine = ConvergenceEngine(transmit, debounce=DEBOUNCE, retry=RetryPolicy(interval=5.0))
        first = engine.request_change(powered_on=True)
        await asyncio.sleep(0.05)
        assert not first.done()

        with caplog.at_level(logging.ERROR, logger="wiz.engine"):
            engine.request_change(powered_on=False)

        assert "Engine task failed" in caplog.text
        assert first.result() == CycleOutcome(
            success=False,
            acknowledged=False,
            error={"message": "socket gone"},
        )

        await asyncio.sleep(0.05)
        assert len(calls) == 2
        assert params(calls[1])["state"] is False
        engine.close()
