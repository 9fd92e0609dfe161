from __future__ import annotations

import codecs
import enum
import errno
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import serial
from serial.tools import list_ports

from ..errors import DeviceError, DeviceUnavailable, PermissionDenied, WriteFailed
from .config import DeviceConfig
from .framing import LineFramer

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSED_WITH_ERROR = "closed_with_error"


@dataclass
class SerialSettings:
    port: Optional[str] = None
    baudrate: int = 115200
    timeout: float = 0.2


LineListener = Callable[[str], None]
StateListener = Callable[[ConnectionState, Optional[str]], None]


def select_port(requested: Optional[str]) -> str:
    """Resolve the device to open; without an explicit port exactly one must be present."""
    if requested:
        return requested
    ports = [info.device for info in list_ports.comports()]
    if not ports:
        raise DeviceUnavailable("No serial device found")
    if len(ports) > 1:
        raise DeviceUnavailable(f"Several serial devices found, choose one with --port: {', '.join(ports)}")
    return ports[0]


def _is_permission_error(exc: BaseException) -> bool:
    if isinstance(exc, PermissionError):
        return True
    if getattr(exc, "errno", None) in {errno.EACCES, errno.EPERM}:
        return True
    return "permission denied" in str(exc).lower() or "access is denied" in str(exc).lower()


class ConnectionManager:
    """
    Owns the serial channel: open/close lifecycle, the single reader thread
    and writes.

    Every framed line updates `last_line` and is handed to the line listeners
    in arrival order, on the reader thread.
    """

    def __init__(self, settings: SerialSettings, config: Optional[DeviceConfig] = None) -> None:
        self.settings = settings
        self.config = config or DeviceConfig()
        self.framer = LineFramer()
        self._state = ConnectionState.CLOSED
        self._state_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._handle: Any = None
        self._reader: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._line_listeners: List[LineListener] = []
        self._state_listeners: List[StateListener] = []
        self._last_line: Optional[str] = None
        self._closed_event = threading.Event()
        self._closed_event.set()
        self._read_errors = 0
        self._bytes_read = 0
        self.last_error: Optional[str] = None
        self.port: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def last_line(self) -> Optional[str]:
        return self._last_line

    def add_line_listener(self, listener: LineListener) -> None:
        self._line_listeners.append(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def connect(self) -> None:
        with self._state_lock:
            if self._state in (ConnectionState.OPEN, ConnectionState.OPENING):
                return
            self._set_state(ConnectionState.OPENING, None)
            previous = self._reader
        if previous is not None and previous.is_alive() and previous is not threading.current_thread():
            # a loop stopped by a failed write may still sit in a blocking read
            previous.join(timeout=max(self.settings.timeout * 5, 1.0))
        try:
            port = select_port(self.settings.port)
            handle = serial.Serial(
                port=port,
                baudrate=self.settings.baudrate,
                timeout=self.settings.timeout,
            )
        except DeviceError as exc:
            self._fail(str(exc))
            raise
        except (serial.SerialException, OSError) as exc:  # type: ignore[attr-defined]
            message = f"Cannot open {self.settings.port or 'serial device'}: {exc}"
            self._fail(message)
            if _is_permission_error(exc):
                raise PermissionDenied(message) from exc
            raise DeviceUnavailable(message) from exc
        framer = LineFramer()
        stop_event = threading.Event()
        with self._state_lock:
            self.port = port
            self._handle = handle
            self.framer = framer
            self._last_line = None
            self._stop_event = stop_event
            self._closed_event.clear()
            self._set_state(ConnectionState.OPEN, None)
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(handle, framer, stop_event),
                name=f"serial-reader-{port}",
                daemon=True,
            )
            self._reader.start()
        logger.info("Connected to %s at %d baud", port, self.settings.baudrate)

    def write(self, text: str) -> None:
        if not self.is_open or self._handle is None:
            raise WriteFailed(f"Channel is not open (state={self._state.value})")
        payload = text
        if not payload.endswith(("\n", "\r")):
            payload += self.config.line_ending
        data = payload.encode(self.config.encoding, errors="replace")
        try:
            with self._write_lock:
                self._handle.write(data)
                self._handle.flush()
        except (serial.SerialException, OSError) as exc:  # type: ignore[attr-defined]
            message = f"Write to {self.port} failed: {exc}"
            self._terminate(message)
            raise WriteFailed(message) from exc
        logger.debug("-> %s", payload.rstrip("\r\n"))

    def disconnect(self) -> None:
        with self._state_lock:
            if self._state is ConnectionState.CLOSED:
                return
            self._stop_event.set()
            reader = self._reader
        self._close_handle()
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=max(self.settings.timeout * 5, 1.0))
        with self._state_lock:
            self._reader = None
            if self._state is not ConnectionState.CLOSED:
                self._set_state(ConnectionState.CLOSED, None)
        self._closed_event.set()
        logger.info("Disconnected from %s", self.port or "serial device")

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        return self._closed_event.wait(timeout)

    def stats(self) -> Dict[str, int]:
        stats = self.framer.stats()
        stats["bytes"] = self._bytes_read
        stats["read_errors"] = self._read_errors
        return stats

    def _read_loop(self, handle: Any, framer: LineFramer, stop_event: threading.Event) -> None:
        """Read one session's handle until its own stop event is set."""
        decoder = codecs.getincrementaldecoder(self.config.encoding)(errors="replace")
        error: Optional[str] = None
        try:
            while not stop_event.is_set():
                waiting = getattr(handle, "in_waiting", 0) or 0
                size = min(max(waiting, 1), self.config.chunk_size)
                data = handle.read(size)
                if not data:
                    continue
                self._bytes_read += len(data)
                for line in framer.feed(decoder.decode(data)):
                    self._deliver(line)
        except Exception as exc:
            if not stop_event.is_set():
                self._read_errors += 1
                error = f"Read from {self.port} failed: {exc}"
                logger.warning("%s", error)
        finally:
            tail = decoder.decode(b"", final=True)
            lines = framer.feed(tail) if tail else []
            remainder = framer.flush()
            if remainder is not None:
                lines.append(remainder)
            for line in lines:
                self._deliver(line)
        if error is not None:
            self._terminate(error)

    def _deliver(self, line: str) -> None:
        self._last_line = line
        logger.debug("<- %s", line)
        for listener in list(self._line_listeners):
            try:
                listener(line)
            except Exception:
                logger.exception("Line listener %r failed", listener)

    def _terminate(self, message: str) -> None:
        """Close the channel after an I/O failure, surfacing the error once."""
        with self._state_lock:
            if self._state is not ConnectionState.OPEN:
                return
            self._stop_event.set()
            self._set_state(ConnectionState.CLOSED_WITH_ERROR, message)
        self._close_handle()
        self._closed_event.set()

    def _fail(self, message: str) -> None:
        with self._state_lock:
            self._set_state(ConnectionState.CLOSED_WITH_ERROR, message)
        self._closed_event.set()

    def _close_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except Exception:
            logger.debug("Error while closing %s", self.port, exc_info=True)

    def _set_state(self, state: ConnectionState, error: Optional[str]) -> None:
        self._state = state
        if state is ConnectionState.CLOSED_WITH_ERROR:
            self.last_error = error
        elif state is ConnectionState.OPEN:
            self.last_error = None
        for listener in list(self._state_listeners):
            try:
                listener(state, error)
            except Exception:
                logger.exception("State listener %r failed", listener)
