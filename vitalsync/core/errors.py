"""Exception hierarchy shared by the core and HealthKit layers.

Recoverable errors (storage, auth, network) are logged and surfaced to the
host as status values or outcomes.  ``ConfigurationError`` signals SDK
misuse and is never caught internally.
"""

from __future__ import annotations


class VitalError(Exception):
    """Base class for all vitalsync errors."""


class StorageError(VitalError):
    """A persisted blob could not be decoded.  Treated as a cache miss."""


class AuthError(VitalError):
    """Credential exchange or refresh failed."""


class NetworkError(VitalError):
    """A call to the Vital API failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(VitalError):
    """The SDK was used before being configured, or in the wrong auth mode."""


class InvalidEnvironmentError(VitalError, ValueError):
    """Unknown environment/region combination."""
