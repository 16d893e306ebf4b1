"""Exception types raised by beacon."""

from typing import Optional


class BeaconError(Exception):
    """Base exception for all beacon errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BeaconError):
    """Raised when a configuration file cannot be read or is invalid."""

    def __init__(self, message: str, config_path: Optional[str] = None):
        details = {}
        if config_path:
            details["config_path"] = config_path
        super().__init__(message, details)


class MalformedRecordError(BeaconError):
    """Raised when a stored address record does not have the expected shape.

    This signals data corruption (or a writer violating the record format)
    and is never converted into a default value.
    """

    def __init__(self, message: str, path: Optional[str] = None, value: Optional[str] = None):
        details = {}
        if path:
            details["path"] = path
        if value is not None:
            details["value"] = value
        super().__init__(message, details)
        self.path = path
        self.value = value


class StoreError(BeaconError):
    """Base class for failures reported by a key-value store."""

    def __init__(self, message: str, path: Optional[str] = None, error_code: Optional[int] = None):
        details = {}
        if path:
            details["path"] = path
        if error_code is not None:
            details["error_code"] = error_code
        super().__init__(message, details)
        self.path = path
        self.error_code = error_code


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached or answers with an error."""


class StoreConflictError(StoreError):
    """Raised when a conditional write or delete loses against a concurrent writer."""
