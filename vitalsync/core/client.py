"""Core Vital client: configuration, auth mode, user identity, connected sources.

A ``VitalClient`` is an explicitly constructed context object.  The
application entry point builds one (see ``vitalsync.main``) and passes it to
the HealthKit client.  ``VitalClient.shared()`` is a lock-guarded lazy
singleton kept only for hosts that want a process-wide instance.

Two auth modes exist:

    API key   — ``configure(api_key, environment)`` then ``set_user_id(uuid)``
    User JWT  — ``await sign_in(raw_sign_in_token)``; the user ID comes from
                the token and the session persists itself

The configuration is persisted to the secure store so
``automatic_configuration()`` can restore it after a restart.  Every
operation that needs it awaits ``self.configuration.get()`` and therefore
suspends until the host configures the SDK.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import ClassVar, Protocol
from uuid import UUID

import httpx

from vitalsync.config import Settings, get_settings
from vitalsync.core.api import VitalAPIClient
from vitalsync.core.auth import (
    ApiKeyAuthStrategy,
    AuthStrategy,
    JWTAuth,
    JWTAuthStrategy,
    SignInToken,
)
from vitalsync.core.box import ProtectedBox
from vitalsync.core.environment import Environment
from vitalsync.core.errors import ConfigurationError, StorageError
from vitalsync.core.models import (
    ApiKeyStrategy,
    AuthMode,
    ClientConfiguration,
    ClientStatus,
    JWTStrategy,
    RestorationState,
)
from vitalsync.core.payloads import ProcessedResourceData, ProviderSlug, Stage
from vitalsync.core.reauth import ReauthenticationMonitor, SignInTokenFetcher
from vitalsync.core.secure_storage import JSONFileBackend, SecureStorage
from vitalsync.core.storage import VitalCoreStorage

logger = logging.getLogger("vitalsync.core")

CORE_SECURE_STORAGE_KEY = "core_secureStorageKey"
USER_SECURE_STORAGE_KEY = "user_secureStorageKey"


class UserScopedStorage(Protocol):
    def clean(self) -> None: ...


@dataclass(frozen=True)
class CoreConfiguration:
    """Runtime configuration derived from a strategy.  Not persisted."""

    api_version: str
    api_client: VitalAPIClient
    environment: Environment
    storage: VitalCoreStorage
    auth_mode: AuthMode
    jwt_auth: JWTAuth


class VitalClient:
    """Entry point for the core SDK.

    Usage::

        client = VitalClient(secure_storage=SecureStorage(JSONFileBackend(path)))
        client.configure("sk_us_...", Environment.parse("sandbox", "us"))
        client.set_user_id(user_uuid)
    """

    _shared: ClassVar[VitalClient | None] = None
    _shared_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        secure_storage: SecureStorage | None = None,
        storage: VitalCoreStorage | None = None,
        jwt_auth: JWTAuth | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._secure_storage = secure_storage or SecureStorage()
        self._storage = storage or VitalCoreStorage()
        self._http_client = http_client
        self.jwt_auth = jwt_auth or JWTAuth(self._secure_storage, http_client, self._settings)
        self.configuration: ProtectedBox[CoreConfiguration] = ProtectedBox()
        self.api_key_mode_user_id: ProtectedBox[UUID] = ProtectedBox()
        self._reauthentication = ReauthenticationMonitor(self)
        self._user_scoped_storage: list[UserScopedStorage] = []

    # ------------------------------------------------------------------
    # Process-wide instance
    # ------------------------------------------------------------------

    @classmethod
    def shared(cls) -> VitalClient:
        """Return the process-wide client, creating it on first call.

        The lazily created instance persists to ``settings.secure_storage_path``.
        """
        with cls._shared_lock:
            if cls._shared is None:
                settings = get_settings()
                cls._shared = cls(
                    secure_storage=SecureStorage(JSONFileBackend(settings.secure_storage_path)),
                    settings=settings,
                )
            return cls._shared

    @classmethod
    def set_shared(cls, client: VitalClient | None) -> None:
        with cls._shared_lock:
            cls._shared = client

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(
        self,
        api_key: str,
        environment: Environment,
        configuration: ClientConfiguration | None = None,
    ) -> None:
        """Configure the SDK in API key mode."""
        self.set_configuration(
            ApiKeyStrategy(api_key=api_key, environment=environment),
            configuration or ClientConfiguration(),
        )

    def configure_with_names(
        self,
        api_key: str,
        environment: str,
        region: str,
        logs_enabled: bool = False,
    ) -> None:
        """API key mode from plain strings, e.g. ``("sk_...", "sandbox", "eu")``.

        Raises:
            InvalidEnvironmentError: For an unknown environment/region pair.
        """
        self.configure(
            api_key,
            Environment.parse(environment, region),
            ClientConfiguration(logs_enabled=logs_enabled),
        )

    async def sign_in(
        self,
        raw_token: str,
        configuration: ClientConfiguration | None = None,
    ) -> None:
        """Sign in with a Vital Sign-In Token (User JWT mode).

        The environment is read from the token.  The SDK is configured only
        once the token exchange has succeeded.

        Raises:
            AuthError: If the token is malformed or the exchange fails.
        """
        token = SignInToken.decode(raw_token)
        claims = token.unverified_claims()

        await self.jwt_auth.sign_in(token)

        self.set_configuration(
            JWTStrategy(environment=claims.environment),
            configuration or ClientConfiguration(),
        )

    def set_configuration(
        self,
        strategy: ApiKeyStrategy | JWTStrategy,
        configuration: ClientConfiguration,
        api_version: str | None = None,
    ) -> None:
        """Build the runtime configuration from ``strategy`` and persist it."""
        api_version = api_version or self._settings.api_version
        logger.info("VitalClient setup for environment %s", strategy.environment)

        environment = strategy.environment
        if configuration.local_debug:
            environment = environment.as_local()

        auth_strategy: AuthStrategy
        if isinstance(strategy, ApiKeyStrategy):
            auth_strategy = ApiKeyAuthStrategy(strategy.api_key)
            auth_mode = AuthMode.API_KEY
        else:
            auth_strategy = JWTAuthStrategy(self.jwt_auth)
            auth_mode = AuthMode.USER_JWT
            # The JWT session is now the only source of the user ID
            self.api_key_mode_user_id.clean()
            self._secure_storage.clean(USER_SECURE_STORAGE_KEY)

        api_client = VitalAPIClient(
            environment=environment,
            auth_strategy=auth_strategy,
            api_version=api_version,
            http_client=self._http_client,
            settings=self._settings,
        )

        restoration_state = RestorationState(
            configuration=configuration,
            api_version=api_version,
            strategy=strategy,
        )
        try:
            self._secure_storage.set(CORE_SECURE_STORAGE_KEY, restoration_state)
        except OSError as exc:
            logger.error("Could not persist the SDK restoration state: %s", exc)

        self.configuration.set(
            CoreConfiguration(
                api_version=api_version,
                api_client=api_client,
                environment=environment,
                storage=self._storage,
                auth_mode=auth_mode,
                jwt_auth=self.jwt_auth,
            )
        )

    def automatic_configuration(self) -> bool:
        """Restore a previously persisted configuration, if any.

        Skipped when the client is already configured.  A corrupted blob is
        logged and ignored.

        Returns:
            True if a configuration was restored.
        """
        if ClientStatus.CONFIGURED in self.status:
            return False

        try:
            state = self._secure_storage.get(CORE_SECURE_STORAGE_KEY, RestorationState)
            if state is None:
                return False

            strategy = state.resolve_strategy()
            # configure before set_user_id: the latter needs a configuration
            self.set_configuration(strategy, state.configuration, state.api_version)

            if isinstance(strategy, ApiKeyStrategy):
                user_id = self._secure_storage.get(USER_SECURE_STORAGE_KEY, UUID)
                if user_id is not None:
                    self.set_user_id(user_id)
            return True
        except StorageError as exc:
            logger.error("Failed to perform automatic configuration: %s", exc)
            return False

    def register_user_scoped_storage(self, storage: UserScopedStorage) -> None:
        """Have ``storage`` cleaned when the user changes and on clean-up."""
        self._user_scoped_storage.append(storage)

    def _clean_user_scoped_storage(self) -> None:
        for storage in self._user_scoped_storage:
            storage.clean()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def set_user_id(self, new_user_id: UUID) -> None:
        """Set the Vital user in API key mode.

        Switching to a different user clears the connected-source cache.
        Ignored (with an error log) in User JWT mode.

        Raises:
            ConfigurationError: If the SDK has not been configured.
        """
        configuration = self.configuration.value
        if configuration is None:
            raise ConfigurationError(
                "You need to call `VitalClient.configure` before setting the user ID"
            )

        if configuration.auth_mode is not AuthMode.API_KEY:
            logger.error(
                "set_user_id() is ignored when the SDK is configured by a Vital Sign-In Token."
            )
            return

        try:
            existing = self._secure_storage.get(USER_SECURE_STORAGE_KEY, UUID)
            if existing is not None and existing != new_user_id:
                logger.info("User changed, clearing user-scoped state")
                configuration.storage.clean()
                self._clean_user_scoped_storage()
        except StorageError as exc:
            logger.warning("Could not read the stored user ID: %s", exc)

        self.api_key_mode_user_id.set(new_user_id)

        try:
            self._secure_storage.set(USER_SECURE_STORAGE_KEY, new_user_id)
        except OSError as exc:
            logger.error("Could not persist the user ID: %s", exc)

    @property
    def status(self) -> ClientStatus:
        status = ClientStatus.NONE
        configuration = self.configuration.value
        if configuration is None:
            return status

        status |= ClientStatus.CONFIGURED
        if configuration.auth_mode is AuthMode.API_KEY:
            if self.api_key_mode_user_id.value is not None:
                status |= ClientStatus.SIGNED_IN
        elif configuration.jwt_auth.current_user_id is not None:
            status |= ClientStatus.SIGNED_IN
        return status

    @property
    def current_user_id(self) -> str | None:
        configuration = self.configuration.value
        if configuration is None:
            return None
        if configuration.auth_mode is AuthMode.API_KEY:
            user_id = self.api_key_mode_user_id.value
            return str(user_id) if user_id is not None else None
        return configuration.jwt_auth.current_user_id

    async def get_user_id(self) -> str:
        """Resolve the active user ID, waiting for configuration if needed.

        In API key mode this also waits for ``set_user_id``.  In User JWT
        mode the session is loaded from the secure store on first access.
        """
        configuration = await self.configuration.get()
        if configuration.auth_mode is AuthMode.API_KEY:
            return str(await self.api_key_mode_user_id.get())
        context = await configuration.jwt_auth.user_context()
        return context.user_id

    # ------------------------------------------------------------------
    # Reauthentication
    # ------------------------------------------------------------------

    def observe_reauthentication_request(self, fetcher: SignInTokenFetcher | None) -> None:
        """Register or clear the sign-in token fetcher.

        Raises:
            ConfigurationError: If the SDK has not been configured.
        """
        if ClientStatus.CONFIGURED not in self.status:
            raise ConfigurationError(
                "You need to configure the SDK before using observe_reauthentication_request"
            )
        self._reauthentication.observe(fetcher)

    async def force_refresh_token(self) -> None:
        configuration = await self.configuration.get()
        if configuration.auth_mode is not AuthMode.USER_JWT:
            raise ConfigurationError("force_refresh_token() requires User JWT mode")
        await configuration.jwt_auth.refresh_token()

    # ------------------------------------------------------------------
    # Connected sources & data push
    # ------------------------------------------------------------------

    async def is_user_connected(self, provider: ProviderSlug) -> bool:
        user_id = await self.get_user_id()
        configuration = await self.configuration.get()

        if configuration.storage.is_connected_source_stored(user_id, provider.value):
            return True

        sources = await configuration.api_client.user_connected_sources(user_id)
        return provider.value in sources

    async def check_connected_source(self, provider: ProviderSlug) -> None:
        """Make sure ``provider`` is linked to the user, creating the link if absent."""
        user_id = await self.get_user_id()
        configuration = await self.configuration.get()

        if not await self.is_user_connected(provider):
            await configuration.api_client.create_connected_source(user_id, provider)

        configuration.storage.store_connected_source(user_id, provider.value)

    async def post(
        self,
        data: ProcessedResourceData,
        stage: Stage,
        provider: ProviderSlug,
        time_zone: str,
    ) -> None:
        user_id = await self.get_user_id()
        configuration = await self.configuration.get()
        await configuration.api_client.post(user_id, data, stage, provider, time_zone)

    # ------------------------------------------------------------------
    # Tear-down
    # ------------------------------------------------------------------

    async def clean_up(self) -> None:
        """Forget the configuration, the user and all cached state."""
        self._reauthentication.observe(None)

        # Check first: get() would suspend until a configuration is set
        if not self.configuration.is_nil():
            configuration = await self.configuration.get()
            configuration.storage.clean()
        self._clean_user_scoped_storage()

        self._secure_storage.clean(CORE_SECURE_STORAGE_KEY)
        self._secure_storage.clean(USER_SECURE_STORAGE_KEY)
        self.jwt_auth.sign_out()

        self.api_key_mode_user_id.clean()
        self.configuration.clean()
        logger.info("VitalClient cleaned up")
