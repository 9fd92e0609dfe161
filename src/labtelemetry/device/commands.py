from __future__ import annotations

import enum
import logging
import math
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from ..errors import ArmNotZeroed, CommandCancelled, CommandTimeout
from .config import DeviceConfig
from .telemetry import TelemetryParser, TelemetrySnapshot

logger = logging.getLogger(__name__)

Correlation = Callable[[TelemetrySnapshot], bool]

AMPLITUDE_RANGE_UA = (0.0, 30000.0)
FREQUENCY_RANGE_HZ = (1.0, 100000.0)
CURRENT_RANGE_UA = (1.0, 30000.0)
ZERO_ANGLE_TOLERANCE_DEG = 5.0


class CommandStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    SUPERSEDED = "superseded"
    CANCELLED = "cancelled"


@dataclass
class PendingCommand:
    command: str
    correlation: Optional[Correlation]
    timeout: float
    issued_at: float = field(default_factory=time.monotonic)
    status: CommandStatus = CommandStatus.PENDING


@dataclass(frozen=True)
class CommandResult:
    command: str
    status: CommandStatus
    snapshot: TelemetrySnapshot
    elapsed: float

    @property
    def ok(self) -> bool:
        return self.status is CommandStatus.RESOLVED

    def raise_for_status(self) -> "CommandResult":
        if self.status is CommandStatus.TIMED_OUT:
            raise CommandTimeout(f"Device did not acknowledge '{self.command}' within the timeout")
        if self.status is CommandStatus.CANCELLED:
            raise CommandCancelled(f"Channel closed while '{self.command}' was pending")
        return self


@dataclass(frozen=True)
class ParameterSet:
    amplitude: float
    frequency: float
    offset: float


CHARACTERISTICS = ("frequency", "angle", "lux", "va")


def _check_range(name: str, value: float, bounds: tuple[float, float], unit: str) -> None:
    low, high = bounds
    if math.isnan(value) or not low <= value <= high:
        raise ValueError(f"{name} must be within {low:g}-{high:g} {unit}, got {value:g}")


def characteristic_parameters(mode: str, value: float, frequency: Optional[float] = None) -> ParameterSet:
    """
    Generator settings for one point of a characteristic measurement.

    `value` is the amplitude in µA for the frequency, angle and lux modes and
    the DC current in µA for the VA mode. Only the frequency mode takes an
    explicit `frequency`.
    """
    key = mode.lower()
    if key == "frequency":
        _check_range("Amplitude", value, AMPLITUDE_RANGE_UA, "uA")
        if frequency is None:
            raise ValueError("Frequency characteristic requires a frequency")
        _check_range("Frequency", frequency, FREQUENCY_RANGE_HZ, "Hz")
        return ParameterSet(amplitude=value, frequency=frequency, offset=value / 2)
    if key in ("angle", "lux"):
        _check_range("Amplitude", value, AMPLITUDE_RANGE_UA, "uA")
        return ParameterSet(amplitude=value, frequency=500.0, offset=value / 2)
    if key == "va":
        _check_range("Current", value, CURRENT_RANGE_UA, "uA")
        return ParameterSet(amplitude=0.0, frequency=1000.0, offset=value)
    raise ValueError(f"Unknown characteristic '{mode}'. Expected one of {list(CHARACTERISTICS)}")


def require_zero_angle(snapshot: TelemetrySnapshot, tolerance: float = ZERO_ANGLE_TOLERANCE_DEG) -> None:
    angle = snapshot.angle
    if angle is None or abs(angle) > tolerance:
        raise ArmNotZeroed(angle, tolerance)


_FORMATTER = string.Formatter()


def render_parameters(template: str, params: ParameterSet) -> tuple[str, ParameterSet]:
    """Format *template* and return the parameters as the device will read them back."""
    values = {"amplitude": params.amplitude, "frequency": params.frequency, "offset": params.offset}
    sent = dict(values)
    for _literal, name, spec, conversion in _FORMATTER.parse(template):
        if name not in values:
            continue
        text = format(_FORMATTER.convert_field(values[name], conversion), spec or "")
        try:
            sent[name] = float(text)
        except ValueError:
            logger.debug("Field %s renders as non-numeric %r; correlating on the raw value", name, text)
    return template.format(**values), ParameterSet(**sent)


def echoes_parameters(params: ParameterSet, tolerance: float) -> Correlation:
    """Correlation satisfied once telemetry echoes every requested parameter."""

    def _settled(snapshot: TelemetrySnapshot) -> bool:
        for name in ("amplitude", "frequency", "offset"):
            observed = snapshot.readings.get(name)
            if observed is None or abs(observed - getattr(params, name)) > tolerance:
                return False
        return True

    return _settled


class CommandCoordinator:
    """
    Issues commands and waits for the device to settle.

    Only one command is logically in flight: a new `send` supersedes the
    pending one, which returns immediately with SUPERSEDED. Commands without
    a correlation predicate resolve after the fixed settling delay.
    """

    def __init__(
        self,
        write: Callable[[str], None],
        parser: TelemetryParser,
        config: Optional[DeviceConfig] = None,
    ) -> None:
        self._write = write
        self._parser = parser
        self.config = config or DeviceConfig()
        self._lock = threading.Lock()
        self._pending: Optional[PendingCommand] = None
        self._stats: Dict[str, int] = {status.value: 0 for status in CommandStatus if status is not CommandStatus.PENDING}

    @property
    def pending(self) -> Optional[PendingCommand]:
        return self._pending

    def send(
        self,
        command_line: str,
        correlation: Optional[Correlation] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        timeout = self.config.command_timeout_sec if timeout is None else timeout
        request = PendingCommand(command=command_line.strip(), correlation=correlation, timeout=timeout)
        with self._lock:
            previous, self._pending = self._pending, request
            if previous is not None and previous.status is CommandStatus.PENDING:
                previous.status = CommandStatus.SUPERSEDED
                logger.debug("'%s' superseded by '%s'", previous.command, request.command)
        if previous is not None:
            self._parser.wake()
        try:
            self._write(request.command)
        except Exception:
            self._clear(request)
            raise
        request.issued_at = time.monotonic()
        if correlation is None:
            wait_for: Correlation = lambda _snapshot: False
            wait_timeout = min(self.config.settle_sec, timeout)
        else:
            wait_for = correlation
            wait_timeout = timeout
        snapshot = self._parser.wait_for(
            wait_for,
            wait_timeout,
            interrupted=lambda: request.status is not CommandStatus.PENDING,
        )
        with self._lock:
            if request.status is CommandStatus.PENDING:
                if snapshot is not None:
                    request.status = CommandStatus.RESOLVED
                elif correlation is None and self.config.settle_sec <= timeout:
                    request.status = CommandStatus.RESOLVED
                else:
                    request.status = CommandStatus.TIMED_OUT
            if self._pending is request:
                self._pending = None
            status = request.status
            self._stats[status.value] += 1
        elapsed = time.monotonic() - request.issued_at
        if status is CommandStatus.TIMED_OUT:
            logger.warning("No acknowledgement for '%s' after %.2fs; device state unknown", request.command, elapsed)
        else:
            logger.debug("'%s' -> %s after %.3fs", request.command, status.value, elapsed)
        return CommandResult(
            command=request.command,
            status=status,
            snapshot=snapshot if snapshot is not None else self._parser.snapshot(),
            elapsed=elapsed,
        )

    def send_parameters(
        self,
        amplitude: float,
        frequency: float,
        offset: float,
        timeout: Optional[float] = None,
        correlate: bool = True,
    ) -> CommandResult:
        params = ParameterSet(amplitude=float(amplitude), frequency=float(frequency), offset=float(offset))
        command, sent = render_parameters(self.config.parameter_command, params)
        correlation = echoes_parameters(sent, self.config.parameter_tolerance) if correlate else None
        return self.send(command, correlation, timeout)

    def trigger_action(self, name: str, timeout: Optional[float] = None) -> CommandResult:
        return self.send(self.config.action_command(name), None, timeout)

    def cancel_all(self) -> None:
        with self._lock:
            request = self._pending
            if request is not None and request.status is CommandStatus.PENDING:
                request.status = CommandStatus.CANCELLED
                logger.info("Cancelled pending command '%s'", request.command)
        self._parser.wake()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def _clear(self, request: PendingCommand) -> None:
        with self._lock:
            if self._pending is request:
                self._pending = None
