"""Exception types raised by the calibration pipeline."""


class CalibError(Exception):
    """Base class for calibration session errors."""


class ConfigError(CalibError, ValueError):
    """Invalid configuration, detected before a session starts."""


class AcquisitionError(CalibError, RuntimeError):
    """The frame source could not be opened."""


class SizeMismatch(CalibError):
    """Image size changed between accepted frames (camera reconfigured)."""

    def __init__(self, expected, actual):
        super().__init__(f"image size changed mid-session: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class SolverFailure(CalibError):
    """The calibration solver could not produce a result."""


class PersistenceError(CalibError, OSError):
    """The calibration result could not be written."""
