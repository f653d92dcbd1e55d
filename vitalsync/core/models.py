"""Persisted configuration models for the core client."""

from __future__ import annotations

import enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from vitalsync.core.environment import Environment
from vitalsync.core.errors import StorageError


class VitalBase(BaseModel):
    """Base model with shared config for all vitalsync schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class AuthMode(str, enum.Enum):
    API_KEY = "apiKey"
    USER_JWT = "userJwt"


class ClientStatus(enum.Flag):
    NONE = 0
    CONFIGURED = enum.auto()
    SIGNED_IN = enum.auto()


class ClientConfiguration(VitalBase):
    logs_enabled: bool = False
    # Send every request to a locally running API in the same region
    local_debug: bool = False


# ---------- Configuration strategy (tagged union) ----------


class ApiKeyStrategy(VitalBase):
    kind: Literal["api_key"] = "api_key"
    api_key: str
    environment: Environment


class JWTStrategy(VitalBase):
    kind: Literal["jwt"] = "jwt"
    environment: Environment


ConfigurationStrategy = Annotated[
    Union[ApiKeyStrategy, JWTStrategy], Field(discriminator="kind")
]


class RestorationState(VitalBase):
    """Everything needed to reconfigure the client after a process restart.

    ``api_key`` and ``environment`` are the legacy (pre-strategy) layout and
    are only read, never written.
    """

    configuration: ClientConfiguration
    api_version: str
    api_key: str | None = None
    environment: Environment | None = None
    strategy: ConfigurationStrategy | None = None

    def resolve_strategy(self) -> ApiKeyStrategy | JWTStrategy:
        if self.strategy is not None:
            return self.strategy

        if self.api_key is not None and self.environment is not None:
            return ApiKeyStrategy(api_key=self.api_key, environment=self.environment)

        raise StorageError("persisted SDK configuration seems corrupted")
