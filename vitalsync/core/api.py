"""HTTP client for the Vital API.

Endpoints used:
    POST /{v}/summary/{type}/{user_id}          — summary pushes
    POST /{v}/timeseries/{user_id}/{type}       — time-series pushes
    POST /{v}/link/provider/manual/{provider}   — create a connected source
    GET  /{v}/user/providers/{user_id}          — list connected sources

Request timeouts belong to the transport (the injected ``httpx.AsyncClient``
or the one built from settings); nothing here retries.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx

from vitalsync.config import Settings, get_settings
from vitalsync.core.auth import AuthStrategy, authorize_request
from vitalsync.core.environment import Environment
from vitalsync.core.errors import NetworkError
from vitalsync.core.payloads import (
    ProcessedResourceData,
    ProviderSlug,
    Stage,
    tagged_payload,
)

logger = logging.getLogger("vitalsync.core.api")


class VitalAPIClient:
    """Authenticated access to the Vital ingestion API for one environment."""

    def __init__(
        self,
        environment: Environment,
        auth_strategy: AuthStrategy,
        api_version: str = "v2",
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            environment:   Target environment; decides the base URL.
            auth_strategy: Credential source for every request.
            api_version:   Path prefix, e.g. "v2".
            http_client:   Optional pre-configured httpx client (for testing).
            settings:      SDK settings; defaults to ``get_settings()``.
        """
        self.environment = environment
        self.auth_strategy = auth_strategy
        self.api_version = api_version
        self._http_client = http_client
        self._settings = settings or get_settings()

    @asynccontextmanager
    async def _client(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._settings.http_timeout_seconds) as client:
            yield client

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
    ) -> Any:
        """Send one authenticated request and return the decoded JSON body.

        Raises:
            AuthError:    If no credential could be supplied.
            NetworkError: On transport failure or a non-2xx response.
        """
        headers = {"Content-Type": "application/json"}
        await authorize_request(self.auth_strategy, headers)
        url = f"{self.environment.host}{path}"

        try:
            async with self._client() as client:
                response = await client.request(method, url, json=json, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("%s %s → HTTP %d", method, path, status)
            raise NetworkError(f"{method} {path} failed with HTTP {status}", status) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if not response.content:
            return None
        return response.json()

    async def post(
        self,
        user_id: str,
        data: ProcessedResourceData,
        stage: Stage,
        provider: ProviderSlug,
        time_zone: str,
    ) -> None:
        path = data.endpoint(self.api_version, user_id)
        logger.debug("Posting %s [%s] for %s", data.type.value, stage.name, user_id)
        await self._request("POST", path, json=tagged_payload(data, stage, provider, time_zone))

    async def create_connected_source(self, user_id: str, provider: ProviderSlug) -> None:
        await self._request(
            "POST",
            f"/{self.api_version}/link/provider/manual/{provider.value}",
            json={"user_id": user_id},
        )
        logger.info("Created connected source %s for %s", provider.value, user_id)

    async def user_connected_sources(self, user_id: str) -> list[str]:
        """Return the provider slugs linked to ``user_id``."""
        body = await self._request("GET", f"/{self.api_version}/user/providers/{user_id}")
        providers = (body or {}).get("providers", [])
        return [p["slug"] for p in providers if isinstance(p, dict) and "slug" in p]
