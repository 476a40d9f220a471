"""
Error taxonomy for RoofGrid services.

All errors are local and recoverable: the caller surfaces the message and
returns the session to its previous state.
"""


class RoofGridError(Exception):
    """Base class for recoverable measurement and estimating errors."""
    pass


class ValidationError(RoofGridError, ValueError):
    """Raised when user input cannot produce a valid segment or measurement."""
    pass


class CalibrationRequiredError(RoofGridError):
    """Raised when a planar conversion is requested before a scale is set."""

    def __init__(self, message: str = "Calibration scale must be set before measuring in planar mode"):
        super().__init__(message)


class InvalidReferenceLengthError(RoofGridError, ValueError):
    """Raised when a calibration reference length is not positive."""
    pass
