"""Vital API environments and their base URLs."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from vitalsync.core.errors import InvalidEnvironmentError


class Region(str, Enum):
    EU = "eu"
    US = "us"


class EnvironmentKind(str, Enum):
    DEV = "dev"
    SANDBOX = "sandbox"
    PRODUCTION = "production"
    LOCAL = "local"


# Accepted spellings → canonical kind
_KIND_ALIASES: dict[str, EnvironmentKind] = {
    "dev": EnvironmentKind.DEV,
    "sandbox": EnvironmentKind.SANDBOX,
    "stg": EnvironmentKind.SANDBOX,
    "production": EnvironmentKind.PRODUCTION,
    "prd": EnvironmentKind.PRODUCTION,
    "local": EnvironmentKind.LOCAL,
}

_HOSTS: dict[tuple[EnvironmentKind, Region], str] = {
    (EnvironmentKind.DEV, Region.EU): "https://api.dev.eu.tryvital.io",
    (EnvironmentKind.DEV, Region.US): "https://api.dev.tryvital.io",
    (EnvironmentKind.SANDBOX, Region.EU): "https://api.sandbox.eu.tryvital.io",
    (EnvironmentKind.SANDBOX, Region.US): "https://api.sandbox.tryvital.io",
    (EnvironmentKind.PRODUCTION, Region.EU): "https://api.eu.tryvital.io",
    (EnvironmentKind.PRODUCTION, Region.US): "https://api.tryvital.io",
    (EnvironmentKind.LOCAL, Region.EU): "http://localhost:8000",
    (EnvironmentKind.LOCAL, Region.US): "http://localhost:8000",
}


class Environment(BaseModel):
    """A deployment stage paired with a data region.

    Usage::

        env = Environment.parse("prd", "eu")
        env.host   # "https://api.eu.tryvital.io"
    """

    model_config = ConfigDict(frozen=True)

    kind: EnvironmentKind
    region: Region

    @classmethod
    def parse(cls, environment: str, region: str) -> Environment:
        """Build an Environment from host-supplied strings.

        Raises:
            InvalidEnvironmentError: If either value is not recognised.
        """
        kind = _KIND_ALIASES.get(environment.strip().lower())
        try:
            parsed_region = Region(region.strip().lower())
        except ValueError:
            parsed_region = None

        if kind is None or parsed_region is None:
            raise InvalidEnvironmentError(
                f"Wrong environment and/or region ({environment!r}, {region!r}). "
                "Acceptable values for environment: dev, sandbox, production. "
                "Region: eu, us"
            )
        return cls(kind=kind, region=parsed_region)

    @property
    def host(self) -> str:
        return _HOSTS[(self.kind, self.region)]

    @property
    def name(self) -> str:
        return self.kind.value

    def as_local(self) -> Environment:
        """Same region, pointed at a locally running API."""
        return Environment(kind=EnvironmentKind.LOCAL, region=self.region)

    def __str__(self) -> str:
        return f"{self.kind.value} - {self.region.value}"
