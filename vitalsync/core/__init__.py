"""Core SDK: configuration, authentication and the Vital API.

Modules:
    client          — VitalClient context object (configure, sign-in, user identity)
    auth            — API key and User JWT auth strategies, Sign-In Token
    reauth          — Background reauthentication monitor
    api             — httpx client for the Vital API
    environment     — Environment / region → base URL table
    secure_storage  — Durable typed key/value store
    storage         — Connected-source cache
    box             — Awaitable single-slot container
"""

from vitalsync.core.box import ProtectedBox
from vitalsync.core.client import VitalClient
from vitalsync.core.environment import Environment, EnvironmentKind, Region
from vitalsync.core.errors import (
    AuthError,
    ConfigurationError,
    InvalidEnvironmentError,
    NetworkError,
    StorageError,
    VitalError,
)
from vitalsync.core.models import AuthMode, ClientConfiguration, ClientStatus
from vitalsync.core.secure_storage import InMemoryBackend, JSONFileBackend, SecureStorage

__all__ = [
    "AuthError",
    "AuthMode",
    "ClientConfiguration",
    "ClientStatus",
    "ConfigurationError",
    "Environment",
    "EnvironmentKind",
    "InMemoryBackend",
    "InvalidEnvironmentError",
    "JSONFileBackend",
    "NetworkError",
    "ProtectedBox",
    "Region",
    "SecureStorage",
    "StorageError",
    "VitalClient",
    "VitalError",
]
