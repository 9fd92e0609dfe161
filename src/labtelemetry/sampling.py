"""Sampling window state machine fed from the live line stream."""
from __future__ import annotations

import enum
import logging
import re
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .errors import InsufficientSamples, MustRestart

if TYPE_CHECKING:
    from .device.telemetry import TelemetryParser, TelemetrySnapshot

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"[+-]?\d+(?:\.\d+)?")


def extract_first_number(line: str) -> Optional[float]:
    """Return the first signed integer or decimal token in *line*, if any."""
    match = _NUMBER.search(line)
    if match is None:
        return None
    return float(match.group(0))


@dataclass(frozen=True)
class WindowSpec:
    capacity: int
    minimum: int

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity must be positive")
        if not 0 <= self.minimum <= self.capacity:
            raise ValueError("minimum must lie between 0 and capacity")


PERIOD_20 = WindowSpec(capacity=20, minimum=5)
PERIOD_100 = WindowSpec(capacity=100, minimum=90)

WINDOW_PRESETS: Dict[str, WindowSpec] = {
    "period20": PERIOD_20,
    "period100": PERIOD_100,
}


class SessionState(str, enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    FULL = "full"
    STOPPED = "stopped"


class FinalizeReason(str, enum.Enum):
    OK = "ok"
    INSUFFICIENT_SAMPLES = "insufficient_samples"
    MUST_RESTART = "must_restart"


@dataclass(frozen=True)
class FinalizeResult:
    ok: bool
    reason: FinalizeReason
    samples: Tuple[float, ...]

    def raise_for_status(self) -> "FinalizeResult":
        if self.reason is FinalizeReason.MUST_RESTART:
            raise MustRestart("Sample window fell below its minimum; restart the session")
        if self.reason is FinalizeReason.INSUFFICIENT_SAMPLES:
            raise InsufficientSamples(f"Only {len(self.samples)} samples collected")
        return self


class SamplingSession:
    """
    One measurement session over a bounded sample window.

    Idle -> Armed on `start()`; Armed -> Full when `capacity` samples are held,
    or Armed -> Stopped on `stop()`; any state -> Idle on `reset()`. The first
    value seen after `start()` is dropped as a settling artefact. Removing
    samples below `minimum` latches `must_restart` until the next `start()`.
    """

    def __init__(self, spec: WindowSpec) -> None:
        self.spec = spec
        self._lock = threading.Lock()
        self._samples: List[float] = []
        self._state = SessionState.IDLE
        self._settling_skipped = False
        self._must_restart = False
        self._parser: Optional["TelemetryParser"] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def samples(self) -> Tuple[float, ...]:
        with self._lock:
            return tuple(self._samples)

    @property
    def must_restart(self) -> bool:
        return self._must_restart

    @property
    def settling_skipped(self) -> bool:
        return self._settling_skipped

    def __len__(self) -> int:
        return len(self._samples)

    def start(self) -> None:
        with self._lock:
            self._samples.clear()
            self._settling_skipped = False
            self._must_restart = False
            self._state = SessionState.ARMED
        logger.debug("Sampling armed (capacity=%d, minimum=%d)", self.spec.capacity, self.spec.minimum)

    def stop(self) -> None:
        with self._lock:
            if self._state is SessionState.ARMED:
                self._state = SessionState.STOPPED
                logger.debug("Sampling stopped with %d samples", len(self._samples))

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._settling_skipped = False
            self._must_restart = False
            self._state = SessionState.IDLE

    def on_line(self, line: str, _snapshot: Optional["TelemetrySnapshot"] = None) -> bool:
        """Telemetry subscriber entry point; lines without a number are ignored."""
        value = extract_first_number(line)
        if value is None:
            return False
        return self.add_value(value)

    def add_value(self, value: float) -> bool:
        """Offer one raw value; returns True when it was appended to the window."""
        with self._lock:
            if self._state is not SessionState.ARMED:
                return False
            if not self._settling_skipped:
                self._settling_skipped = True
                return False
            self._samples.append(float(value))
            if len(self._samples) >= self.spec.capacity:
                del self._samples[: len(self._samples) - self.spec.capacity]
                self._state = SessionState.FULL
                logger.debug("Sampling window full (%d samples)", self.spec.capacity)
            return True

    def remove_sample(self, index: int) -> float:
        with self._lock:
            if not 0 <= index < len(self._samples):
                raise IndexError(f"Sample index {index} out of range (0..{len(self._samples) - 1})")
            removed = self._samples.pop(index)
            if len(self._samples) < self.spec.minimum and not self._must_restart:
                self._must_restart = True
                logger.info(
                    "Window dropped below %d samples; session must be restarted", self.spec.minimum
                )
            return removed

    def finalize(self) -> FinalizeResult:
        with self._lock:
            samples = tuple(self._samples)
            if self._must_restart:
                return FinalizeResult(False, FinalizeReason.MUST_RESTART, samples)
            if len(samples) < self.spec.minimum or not samples:
                return FinalizeResult(False, FinalizeReason.INSUFFICIENT_SAMPLES, samples)
            return FinalizeResult(True, FinalizeReason.OK, samples)

    def attach(self, parser: "TelemetryParser") -> None:
        self.detach()
        parser.subscribe(self.on_line)
        self._parser = parser

    def detach(self) -> None:
        if self._parser is not None:
            self._parser.unsubscribe(self.on_line)
            self._parser = None
