"""
Acquisition side of the toolkit: serial channel, line framing, telemetry
snapshot and command correlation.

`InstrumentHost` wires these together for a single channel; the pieces stay
importable on their own so tests can drive them with fake transports.
"""

from .commands import (
    CommandCoordinator,
    CommandResult,
    CommandStatus,
    ParameterSet,
    PendingCommand,
    characteristic_parameters,
    render_parameters,
    require_zero_angle,
)
from .config import DeviceConfig, SamplingConfig, load_config
from .connection import ConnectionManager, ConnectionState, SerialSettings
from .framing import LineFramer
from .runner import InstrumentHost
from .telemetry import TelemetryParser, TelemetrySnapshot, parse_fields

__all__ = [
    "CommandCoordinator",
    "CommandResult",
    "CommandStatus",
    "ParameterSet",
    "PendingCommand",
    "characteristic_parameters",
    "render_parameters",
    "require_zero_angle",
    "DeviceConfig",
    "SamplingConfig",
    "load_config",
    "ConnectionManager",
    "ConnectionState",
    "SerialSettings",
    "LineFramer",
    "InstrumentHost",
    "TelemetryParser",
    "TelemetrySnapshot",
    "parse_fields",
]
