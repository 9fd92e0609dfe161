from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

import typer

from ..errors import DeviceError, LabTelemetryError
from ..metrics import summarize_window
from ..sampling import WINDOW_PRESETS, SamplingSession, SessionState, WindowSpec
from .commands import CommandCoordinator, CommandResult, characteristic_parameters, require_zero_angle
from .config import DeviceConfig, load_config
from .connection import ConnectionManager, ConnectionState, SerialSettings
from .telemetry import TelemetryParser, TelemetrySnapshot

logger = logging.getLogger(__name__)

ECHO_FIELDS = ("amplitude", "frequency", "offset")


class InstrumentHost:
    """
    Wires the acquisition core together for one channel: connection ->
    telemetry parser -> subscribers, with commands flowing back through the
    coordinator.
    """

    def __init__(self, settings: SerialSettings, config: Optional[DeviceConfig] = None) -> None:
        self.config = config or DeviceConfig()
        self.connection = ConnectionManager(settings, self.config)
        self.telemetry = TelemetryParser()
        self.commands = CommandCoordinator(self.connection.write, self.telemetry, self.config)
        self.connection.add_line_listener(self.telemetry.feed)
        self.connection.add_state_listener(self._on_state)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def last_error(self) -> Optional[str]:
        return self.connection.last_error

    def snapshot(self) -> TelemetrySnapshot:
        return self.telemetry.snapshot()

    def connect(self) -> None:
        self.connection.connect()

    def disconnect(self) -> None:
        self.connection.disconnect()

    def send_parameters(
        self,
        amplitude: float,
        frequency: float,
        offset: float,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        # Correlate on echoed parameters only once the device has shown it echoes them.
        current = self.telemetry.snapshot()
        correlate = all(name in current for name in ECHO_FIELDS)
        if not correlate:
            logger.debug("Device does not echo parameters; using %.3fs settling delay", self.config.settle_sec)
        return self.commands.send_parameters(amplitude, frequency, offset, timeout=timeout, correlate=correlate)

    def trigger_action(self, name: str, timeout: Optional[float] = None) -> CommandResult:
        return self.commands.trigger_action(name, timeout=timeout)

    def new_session(self, spec: WindowSpec) -> SamplingSession:
        session = SamplingSession(spec)
        session.attach(self.telemetry)
        return session

    def _on_state(self, state: ConnectionState, error: Optional[str]) -> None:
        if state in (ConnectionState.CLOSED, ConnectionState.CLOSED_WITH_ERROR):
            self.commands.cancel_all()
        if error:
            logger.error("Connection error: %s", error)


def _open_host(port: Optional[str], baudrate: Optional[int], timeout: Optional[float],
               config_path: Optional[Path], override: Optional[List[str]]) -> InstrumentHost:
    try:
        cfg = load_config(config_path, override or None)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Invalid configuration: {exc}") from exc
    settings = SerialSettings(
        port=port,
        baudrate=baudrate if baudrate is not None else cfg.baudrate,
        timeout=timeout if timeout is not None else cfg.read_timeout,
    )
    host = InstrumentHost(settings, cfg)
    try:
        host.connect()
    except DeviceError as exc:
        typer.echo(f"Connection failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    return host


def _format_snapshot(snapshot: TelemetrySnapshot) -> str:
    if not snapshot:
        return "(no telemetry yet)"
    return " ".join(f"{name}={value:g}" for name, value in sorted(snapshot.readings.items()))


device_app = typer.Typer(help="Live instrument acquisition.")

PortOption = typer.Option(None, "--port", "-p", help="Serial device (default: the only one present).")
BaudOption = typer.Option(None, "--baud", help="Serial baudrate.")
TimeoutOption = typer.Option(None, "--timeout", help="Serial read timeout (seconds).")
ConfigOption = typer.Option(None, "--config", "-c", help="Device configuration JSON.")
OverrideOption = typer.Option(None, "--set", help="Override config keys, e.g. --set settle_sec=0.2")


@device_app.command()
def monitor(
    port: Optional[str] = PortOption,
    baudrate: Optional[int] = BaudOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
    duration: float = typer.Option(0.0, "--duration", help="Stop after N seconds (0 = until Ctrl+C)."),
    interval: float = typer.Option(1.0, "--interval", help="Snapshot print interval (seconds)."),
) -> None:
    """Print the live telemetry snapshot."""

    host = _open_host(port, baudrate, timeout, config_path, override)
    deadline = time.monotonic() + duration if duration > 0 else None
    try:
        while host.state is ConnectionState.OPEN:
            typer.echo(_format_snapshot(host.snapshot()))
            if deadline is not None and time.monotonic() >= deadline:
                break
            host.connection.wait_closed(max(interval, 0.05))
    except KeyboardInterrupt:
        logger.info("Stopping monitor (Ctrl+C)")
    finally:
        host.disconnect()
    if host.last_error:
        typer.echo(f"Connection lost: {host.last_error}", err=True)
        raise typer.Exit(code=1)


@device_app.command()
def collect(
    port: Optional[str] = PortOption,
    baudrate: Optional[int] = BaudOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
    window: str = typer.Option("period100", "--window", "-w", help="Window preset: period20|period100."),
    max_wait: float = typer.Option(120.0, "--max-wait", help="Give up collecting after N seconds."),
) -> None:
    """Collect one sampling window and print its reductions."""

    spec = WINDOW_PRESETS.get(window.lower())
    if spec is None:
        raise typer.BadParameter(f"Unknown window '{window}'. Expected one of {list(WINDOW_PRESETS)}")
    host = _open_host(port, baudrate, timeout, config_path, override)
    session = host.new_session(spec)
    try:
        session.start()
        deadline = time.monotonic() + max_wait
        while session.state is SessionState.ARMED and host.state is ConnectionState.OPEN:
            if time.monotonic() >= deadline:
                session.stop()
                break
            time.sleep(0.05)
    except KeyboardInterrupt:
        session.stop()
    finally:
        session.detach()
        host.disconnect()
    result = session.finalize()
    typer.echo(f"Collected {len(result.samples)} samples ({session.state.value})")
    try:
        result.raise_for_status()
    except LabTelemetryError as exc:
        typer.echo(f"Cannot finalize: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    sampling = host.config.sampling
    summary = summarize_window(
        result.samples,
        spec,
        block_count=sampling.block_count,
        block_size=sampling.block_size,
        outlier_window=sampling.outlier_window,
        outlier_threshold=sampling.outlier_threshold,
    )
    typer.echo(f"Average: {summary.average:.3f}" if summary.average is not None else "Average: -")
    if summary.block_sums is not None:
        typer.echo("Block sums: " + ", ".join(f"{value:.3f}" for value in summary.block_sums))
    if summary.outliers.has_outliers:
        typer.echo(f"Outliers (>{sampling.outlier_threshold:.0%} from mean) at: {list(summary.outliers.indices)}")


@device_app.command("set")
def set_parameters(
    port: Optional[str] = PortOption,
    baudrate: Optional[int] = BaudOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
    mode: Optional[str] = typer.Option(None, "--mode", help="Characteristic: frequency|angle|lux|va."),
    value: Optional[float] = typer.Option(None, "--value", help="Amplitude (or current for va) in uA."),
    amplitude: Optional[float] = typer.Option(None, "--amplitude", help="Raw amplitude in uA."),
    frequency: Optional[float] = typer.Option(None, "--frequency", help="Frequency in Hz."),
    offset: Optional[float] = typer.Option(None, "--offset", help="Raw offset in uA."),
    check_zero: bool = typer.Option(False, "--check-zero", help="Require the arm at 0° (±5°) first."),
) -> None:
    """Send generator parameters and wait for the device to settle."""

    if mode is not None:
        if value is None:
            raise typer.BadParameter("--value is required with --mode")
        try:
            params = characteristic_parameters(mode, value, frequency)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        amplitude, frequency, offset = params.amplitude, params.frequency, params.offset
    elif amplitude is None or frequency is None or offset is None:
        raise typer.BadParameter("Provide --mode/--value or all of --amplitude, --frequency, --offset")
    host = _open_host(port, baudrate, timeout, config_path, override)
    try:
        if check_zero:
            host.telemetry.wait_for(lambda snap: snap.angle is not None, host.config.command_timeout_sec)
            require_zero_angle(host.snapshot())
        result = host.send_parameters(amplitude, frequency, offset)
        result.raise_for_status()
    except LabTelemetryError as exc:
        typer.echo(f"[warning] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        host.disconnect()
    typer.echo(f"{result.command}: {result.status.value} ({_format_snapshot(result.snapshot)})")


@device_app.command()
def zero(
    port: Optional[str] = PortOption,
    baudrate: Optional[int] = BaudOption,
    timeout: Optional[float] = TimeoutOption,
    config_path: Optional[Path] = ConfigOption,
    override: Optional[List[str]] = OverrideOption,
) -> None:
    """Calibrate the zero angle."""

    host = _open_host(port, baudrate, timeout, config_path, override)
    try:
        result = host.trigger_action("zero_angle").raise_for_status()
    except LabTelemetryError as exc:
        typer.echo(f"[warning] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        host.disconnect()
    typer.echo(f"{result.command}: {result.status.value}")
