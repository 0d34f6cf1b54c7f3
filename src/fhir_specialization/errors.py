"""
Specialization Errors

Exception types raised by the specialization layer.
"""


class SpecializationError(Exception):
    """Base class for errors that abort a specialization step."""


class AddressFormatError(SpecializationError, ValueError):
    """An address line does not match the expected street grammar."""

    def __init__(self, line: str, message: str | None = None):
        self.line = line
        super().__init__(message or f"Address does not conform to pattern: {line!r}")


class LookupTableError(SpecializationError):
    """A lookup table could not be loaded at startup."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unable to load lookup table {path}: {reason}")


class RecordFormatError(SpecializationError, ValueError):
    """A patient record file is missing required fields."""
