"""Exceptions raised by measurements and their collaborators."""


class MeasurementError(RuntimeError):
    """Base class for measurement failures."""


class OutputDirectoryError(MeasurementError):
    """The output directory could not be created. Unrecoverable."""


class MeasurementNotRunningError(MeasurementError):
    """stop() was called on a measurement that never started."""


class MeasurementAlreadyStoppedError(MeasurementError):
    """stop() was called on a measurement that is already stopped."""


class StopTimeoutError(MeasurementError):
    """The collection loop did not acknowledge stop in time."""


class EndpointResolutionError(MeasurementError):
    """Listing pods for a target failed."""


class RemoteExecutionError(MeasurementError):
    """A remote command could not be dispatched or exited non-zero."""
