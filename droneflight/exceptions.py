"""
Exception hierarchy for flight data processing.

Every error raised by the pipeline derives from FlightDataError. Subclasses
also inherit the closest built-in so callers can catch ValueError or
AssertionError without importing this module.
"""


class FlightDataError(Exception):
    """Base exception for all flight data processing errors."""


class MalformedInputError(FlightDataError, ValueError):
    """A raw sample violates ordering or required-field invariants."""


class OutOfOrderError(MalformedInputError):
    """A raw sample arrived with an index or timestamp behind the store."""


class InsufficientDataError(FlightDataError):
    """Yaw, pitch, location or elevation data needed for a step is missing."""


class InvariantViolationError(FlightDataError, AssertionError):
    """A pipeline invariant failed (raised only when strict checks are on)."""


class AdapterError(FlightDataError, ValueError):
    """No flight-log adapter can read the given file."""
