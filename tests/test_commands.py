from __future__ import annotations

import threading
import time

import pytest

from labtelemetry.device.commands import (
    CommandCoordinator,
    CommandStatus,
    ParameterSet,
    characteristic_parameters,
    render_parameters,
    require_zero_angle,
)
from labtelemetry.device.config import DEFAULT_PARAMETER_COMMAND, DeviceConfig
from labtelemetry.device.telemetry import TelemetryParser
from labtelemetry.errors import ArmNotZeroed, CommandCancelled, CommandTimeout, WriteFailed


class RecordingChannel:
    def __init__(self, parser: TelemetryParser | None = None, echo: bool = False) -> None:
        self.writes: list[str] = []
        self.parser = parser
        self.echo = echo

    def write(self, text: str) -> None:
        self.writes.append(text)
        if self.echo and self.parser is not None:
            # device answers shortly after receiving the command
            reply = text.replace("SET ", "").lower()
            threading.Timer(0.02, self.parser.feed, args=(reply,)).start()


def make_coordinator(settle_sec: float = 0.05, echo: bool = False):
    parser = TelemetryParser()
    channel = RecordingChannel(parser, echo=echo)
    config = DeviceConfig(settle_sec=settle_sec, command_timeout_sec=1.0)
    return CommandCoordinator(channel.write, parser, config), parser, channel


def test_send_resolves_when_correlation_holds() -> None:
    coordinator, _parser, channel = make_coordinator(echo=True)
    result = coordinator.send_parameters(1000, 500, 500, timeout=2.0)
    assert channel.writes == ["SET AMP=1000 FREQ=500 OFFSET=500"]
    assert result.status is CommandStatus.RESOLVED
    assert result.ok
    assert result.snapshot.frequency == 500.0
    assert coordinator.pending is None


def test_send_times_out_without_acknowledgement() -> None:
    coordinator, _parser, _channel = make_coordinator()
    started = time.monotonic()
    result = coordinator.send("SET AMP=1 FREQ=2 OFFSET=3", lambda snap: snap.frequency == 2.0, timeout=0.1)
    assert result.status is CommandStatus.TIMED_OUT
    assert time.monotonic() - started >= 0.1
    with pytest.raises(CommandTimeout):
        result.raise_for_status()


def test_uncorrelated_command_resolves_after_settling_delay() -> None:
    coordinator, _parser, channel = make_coordinator(settle_sec=0.05)
    result = coordinator.trigger_action("zero_angle")
    assert channel.writes == ["ZERO"]
    assert result.status is CommandStatus.RESOLVED
    assert result.elapsed >= 0.04


def test_new_command_supersedes_pending_one() -> None:
    coordinator, _parser, channel = make_coordinator(settle_sec=0.05)
    results = {}

    def first() -> None:
        results["a"] = coordinator.send("CMD A", lambda _snap: False, timeout=5.0)

    worker = threading.Thread(target=first)
    worker.start()
    deadline = time.monotonic() + 2.0
    while not channel.writes and time.monotonic() < deadline:
        time.sleep(0.005)

    started = time.monotonic()
    results["b"] = coordinator.send("CMD B", None, timeout=1.0)
    worker.join(timeout=2.0)

    assert results["a"].status is CommandStatus.SUPERSEDED
    assert results["b"].status is CommandStatus.RESOLVED
    assert time.monotonic() - started < 2.0
    assert channel.writes == ["CMD A", "CMD B"]
    assert coordinator.stats()["superseded"] == 1


def test_cancel_all_fails_pending_command() -> None:
    coordinator, _parser, channel = make_coordinator()
    results = {}
    worker = threading.Thread(
        target=lambda: results.setdefault("r", coordinator.send("CMD", lambda _snap: False, timeout=5.0))
    )
    worker.start()
    deadline = time.monotonic() + 2.0
    while not channel.writes and time.monotonic() < deadline:
        time.sleep(0.005)
    coordinator.cancel_all()
    worker.join(timeout=2.0)
    assert results["r"].status is CommandStatus.CANCELLED
    with pytest.raises(CommandCancelled):
        results["r"].raise_for_status()


def test_write_failure_propagates_and_clears_pending() -> None:
    parser = TelemetryParser()

    def closed_channel(_text: str) -> None:
        raise WriteFailed("Channel is not open (state=closed)")

    coordinator = CommandCoordinator(closed_channel, parser, DeviceConfig())
    with pytest.raises(WriteFailed):
        coordinator.send("ZERO")
    assert coordinator.pending is None


def test_characteristic_parameters_per_mode() -> None:
    freq = characteristic_parameters("frequency", 2000, frequency=1500)
    assert (freq.amplitude, freq.frequency, freq.offset) == (2000, 1500, 1000)
    angle = characteristic_parameters("angle", 3000)
    assert (angle.amplitude, angle.frequency, angle.offset) == (3000, 500, 1500)
    lux = characteristic_parameters("LUX", 100)
    assert lux.frequency == 500
    va = characteristic_parameters("va", 250)
    assert (va.amplitude, va.frequency, va.offset) == (0, 1000, 250)


@pytest.mark.parametrize(
    "mode,value,frequency",
    [
        ("frequency", 40000, 100),
        ("frequency", 100, 0.5),
        ("frequency", 100, None),
        ("va", 0, None),
        ("angle", -1, None),
        ("unknown", 1, None),
    ],
)
def test_characteristic_parameters_rejects_invalid(mode, value, frequency) -> None:
    with pytest.raises(ValueError):
        characteristic_parameters(mode, value, frequency)


def test_require_zero_angle() -> None:
    parser = TelemetryParser()
    with pytest.raises(ArmNotZeroed):
        require_zero_angle(parser.snapshot())
    parser.feed("angle=4.9")
    require_zero_angle(parser.snapshot())
    parser.feed("angle=-5.5")
    with pytest.raises(ArmNotZeroed) as excinfo:
        require_zero_angle(parser.snapshot())
    assert excinfo.value.angle == -5.5


def test_correlation_uses_values_as_written() -> None:
    coordinator, _parser, channel = make_coordinator(echo=True)
    result = coordinator.send_parameters(1234.567, 500, 617.2835, timeout=2.0)
    assert channel.writes[0].startswith("SET AMP=1234.57 FREQ=500 OFFSET=617.28")
    assert result.status is CommandStatus.RESOLVED
    assert result.snapshot.amplitude == pytest.approx(1234.57)


def test_render_parameters_reports_rounded_values() -> None:
    command, sent = render_parameters(DEFAULT_PARAMETER_COMMAND, ParameterSet(1234.567, 12345.678, 0.5))
    assert command == "SET AMP=1234.57 FREQ=12345.7 OFFSET=0.5"
    assert sent == ParameterSet(1234.57, 12345.7, 0.5)

    command, sent = render_parameters("A{amplitude:.1f} F{frequency!r}", ParameterSet(1.26, 2.5, 3.0))
    assert command == "A1.3 F2.5"
    assert sent == ParameterSet(1.3, 2.5, 3.0)
