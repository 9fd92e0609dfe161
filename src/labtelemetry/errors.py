"""Exception types shared across the acquisition and reduction layers."""
from __future__ import annotations


class LabTelemetryError(Exception):
    """Base class for all package errors."""


class DeviceError(LabTelemetryError):
    """Channel-level failure."""


class DeviceUnavailable(DeviceError):
    """No device was chosen or the device could not be opened."""


class PermissionDenied(DeviceError):
    """The platform refused access to the device."""


class WriteFailed(DeviceError):
    """A command could not be written because the channel is not open."""


class CommandTimeout(LabTelemetryError, TimeoutError):
    """The device did not acknowledge a command in time; its state is unknown."""


class CommandCancelled(LabTelemetryError):
    """The channel was closed while a command was pending."""


class ArmNotZeroed(LabTelemetryError):
    def __init__(self, angle: float | None, tolerance: float) -> None:
        shown = "n/a" if angle is None else f"{angle:.1f}"
        super().__init__(f"Arm must be within ±{tolerance:g}° of zero (current angle: {shown})")
        self.angle = angle
        self.tolerance = tolerance


class InsufficientSamples(LabTelemetryError):
    """Fewer samples than a reduction requires."""


class MustRestart(LabTelemetryError):
    """Sample window dropped below its minimum; the session must be restarted."""


class FitError(LabTelemetryError, ValueError):
    """Base class for fit failures."""


class InsufficientData(FitError):
    """Not enough distinct points for the requested fit."""


class NoIntersection(FitError):
    """Two fitted curves do not cross inside the admissible domain."""
