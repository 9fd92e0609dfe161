from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional

_FIELD = re.compile(
    r"(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*[:=]\s*(?P<value>[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)"
)

FIELD_ALIASES: Dict[str, str] = {
    "u": "voltage",
    "v": "voltage",
    "volt": "voltage",
    "voltage": "voltage",
    "a": "angle",
    "ang": "angle",
    "angle": "angle",
    "amp": "amplitude",
    "ampl": "amplitude",
    "amplitude": "amplitude",
    "f": "frequency",
    "freq": "frequency",
    "frequency": "frequency",
    "off": "offset",
    "ofs": "offset",
    "offset": "offset",
}


def canonical_field(name: str) -> str:
    lowered = name.lower()
    return FIELD_ALIASES.get(lowered, lowered)


def parse_fields(line: str) -> Dict[str, float]:
    """Return every `name=value` / `name: value` pair found in *line*."""
    fields: Dict[str, float] = {}
    for match in _FIELD.finditer(line):
        fields[canonical_field(match.group("name"))] = float(match.group("value"))
    return fields


@dataclass(frozen=True)
class TelemetrySnapshot(Mapping[str, float]):
    """Immutable view of the last known value of every observed field."""

    readings: Mapping[str, float] = field(default_factory=dict)
    version: int = 0
    updated_at: float = 0.0

    def __getitem__(self, key: str) -> float:
        return self.readings[canonical_field(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self.readings)

    def __len__(self) -> int:
        return len(self.readings)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and canonical_field(key) in self.readings

    @property
    def voltage(self) -> Optional[float]:
        return self.readings.get("voltage")

    @property
    def angle(self) -> Optional[float]:
        return self.readings.get("angle")

    @property
    def amplitude(self) -> Optional[float]:
        return self.readings.get("amplitude")

    @property
    def frequency(self) -> Optional[float]:
        return self.readings.get("frequency")

    @property
    def offset(self) -> Optional[float]:
        return self.readings.get("offset")


TelemetryCallback = Callable[[str, TelemetrySnapshot], None]


class TelemetryParser:
    """
    Keeps the live telemetry snapshot and broadcasts every framed line.

    `feed` is called only from the connection reader thread; any thread may
    read `snapshot()` or wait for a change with `wait_for`.
    """

    def __init__(self) -> None:
        self._values: Dict[str, float] = {}
        self._snapshot = TelemetrySnapshot()
        self._changed = threading.Condition()
        self._subscribers: List[TelemetryCallback] = []
        self._log = logging.getLogger(__name__)

    def feed(self, line: str) -> Dict[str, float]:
        updates = parse_fields(line)
        with self._changed:
            if updates:
                self._values.update(updates)
                self._snapshot = TelemetrySnapshot(
                    readings=MappingProxyType(dict(self._values)),
                    version=self._snapshot.version + 1,
                    updated_at=time.monotonic(),
                )
            snapshot = self._snapshot
            self._changed.notify_all()
        for callback in list(self._subscribers):
            try:
                callback(line, snapshot)
            except Exception:
                self._log.exception("Telemetry subscriber %r failed", callback)
        return updates

    def snapshot(self) -> TelemetrySnapshot:
        with self._changed:
            return self._snapshot

    def wait_for(
        self,
        predicate: Callable[[TelemetrySnapshot], bool],
        timeout: float,
        interrupted: Callable[[], bool] = lambda: False,
    ) -> Optional[TelemetrySnapshot]:
        """
        Block until *predicate* holds on the live snapshot.

        Returns the satisfying snapshot, or None once *timeout* elapses or
        *interrupted* reports true. Waiters are woken on every fed line and
        on `wake()`.
        """
        deadline = time.monotonic() + timeout
        with self._changed:
            while True:
                if interrupted():
                    return None
                if predicate(self._snapshot):
                    return self._snapshot
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._changed.wait(remaining)

    def wake(self) -> None:
        with self._changed:
            self._changed.notify_all()

    def subscribe(self, callback: TelemetryCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: TelemetryCallback) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass
