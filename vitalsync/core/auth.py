"""Auth strategies for outbound Vital API requests.

Two strategies exist, chosen by the configured auth mode:

    ApiKeyAuthStrategy — static team API key, never expires
    JWTAuthStrategy    — rotating access/refresh token pair for one user,
                         obtained by exchanging a Vital Sign-In Token

The User JWT session is persisted in the secure store and lazily loaded on
first access, so ``current_user_id`` is available right after a restart.
When the refresh token is rejected the session is flagged as needing
reauthentication and a request is broadcast to every listener of
``reauthentication_requests()`` (see ``vitalsync.core.reauth``).  Nothing in
here retries on its own.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Union

import httpx
import jwt as pyjwt

from vitalsync.config import Settings, get_settings
from vitalsync.core.environment import Environment
from vitalsync.core.errors import AuthError, InvalidEnvironmentError, StorageError
from vitalsync.core.models import VitalBase
from vitalsync.core.secure_storage import SecureStorage

logger = logging.getLogger("vitalsync.core.auth")

JWT_SESSION_KEY = "jwt_auth_session"
API_KEY_HEADER = "x-vital-api-key"

# Identity provider answers these when the refresh token itself is dead
_REFRESH_REJECTED_STATUS: frozenset[int] = frozenset({400, 401, 403})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_token_response(
    response: httpx.Response,
    access_key: str,
    refresh_key: str,
    expires_key: str,
    default_refresh: str | None = None,
) -> tuple[str, str, timedelta]:
    """Read the token pair and lifetime from an identity provider response.

    Raises:
        AuthError: If the body is not JSON or a token is missing.
    """
    try:
        data = response.json()
        access_token = data[access_key]
        if default_refresh is None:
            refresh_token = data[refresh_key]
        else:
            refresh_token = data.get(refresh_key) or default_refresh
        expires_in = int(data.get(expires_key, 3600))
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise AuthError(f"Malformed identity provider response: {exc!r}") from exc
    return str(access_token), str(refresh_token), timedelta(seconds=expires_in)


# ---------------------------------------------------------------------------
# Sign-in token
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignInTokenClaims:
    """Claims read (without verification) from the sign-in token's user token."""

    user_id: str
    environment: Environment


@dataclass(frozen=True)
class SignInToken:
    """A Vital Sign-In Token issued by the host's backend.

    The raw form is base64-encoded JSON ``{"public_key": ..., "user_token": ...}``
    where ``user_token`` is a custom-token JWT.  Plain JSON is accepted too.
    """

    public_key: str
    user_token: str

    @classmethod
    def decode(cls, raw: str) -> SignInToken:
        """Parse a raw sign-in token.

        Raises:
            AuthError: If the token is not in either accepted form.
        """
        text = raw.strip()
        payload: Any = None
        try:
            padded = text + "=" * (-len(text) % 4)
            payload = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            try:
                payload = json.loads(text)
            except ValueError:
                payload = None

        if not isinstance(payload, dict):
            raise AuthError("Malformed Vital Sign-In Token")

        try:
            return cls(public_key=str(payload["public_key"]), user_token=str(payload["user_token"]))
        except KeyError as exc:
            raise AuthError(f"Vital Sign-In Token is missing {exc.args[0]!r}") from exc

    def unverified_claims(self) -> SignInTokenClaims:
        """Decode the user token's claims without checking its signature.

        The token is verified by the identity provider during the exchange;
        here we only need the user ID and the environment it was minted for.

        Raises:
            AuthError: If the claims are unreadable or incomplete.
        """
        try:
            payload = pyjwt.decode(self.user_token, options={"verify_signature": False})
        except pyjwt.InvalidTokenError as exc:
            raise AuthError(f"Unreadable user token: {exc}") from exc

        user_id = payload.get("uid")
        vital_claims = payload.get("claims") or {}
        environment = vital_claims.get("environment")
        region = vital_claims.get("region")
        if not user_id or not environment or not region:
            raise AuthError("User token lacks uid/environment/region claims")

        try:
            env = Environment.parse(environment, region)
        except InvalidEnvironmentError as exc:
            raise AuthError(str(exc)) from exc

        return SignInTokenClaims(user_id=str(user_id), environment=env)


# ---------------------------------------------------------------------------
# User JWT session
# ---------------------------------------------------------------------------


class JWTSession(VitalBase):
    """Persisted access/refresh token pair for the signed-in user."""

    user_id: str
    environment: Environment
    public_key: str
    access_token: str
    refresh_token: str
    expires_at: datetime

    def expires_within(self, seconds: int) -> bool:
        return (self.expires_at - _utc_now()).total_seconds() < seconds


@dataclass(frozen=True)
class UserContext:
    user_id: str
    environment: Environment


class ReauthenticationRequests:
    """One listener's queue of reauthentication requests.

    Registered on construction: requests sent before the first ``__anext__``
    are buffered, not lost.

    Usage::

        with auth.reauthentication_requests() as requests:
            async for _ in requests:
                ...
    """

    def __init__(self, listeners: set[asyncio.Queue[None]]) -> None:
        self._listeners = listeners
        self._queue: asyncio.Queue[None] = asyncio.Queue()
        listeners.add(self._queue)

    def __aiter__(self) -> ReauthenticationRequests:
        return self

    async def __anext__(self) -> None:
        await self._queue.get()

    def close(self) -> None:
        self._listeners.discard(self._queue)

    def __enter__(self) -> ReauthenticationRequests:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class JWTAuth:
    """Rotating User JWT credentials for a single user.

    Usage::

        auth = JWTAuth(SecureStorage(backend))
        await auth.sign_in(SignInToken.decode(raw_token))
        headers: dict[str, str] = {}
        await auth.authorize(headers)   # refreshes when close to expiry
    """

    def __init__(
        self,
        storage: SecureStorage,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._storage = storage
        self._http_client = http_client
        self._settings = settings or get_settings()
        self._session: JWTSession | None = None
        self._session_loaded = False
        self._refresh_rejected = False
        self._refresh_lock: asyncio.Lock | None = None
        self._listeners: set[asyncio.Queue[None]] = set()

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def _load_session(self) -> JWTSession | None:
        if not self._session_loaded:
            try:
                self._session = self._storage.get(JWT_SESSION_KEY, JWTSession)
            except StorageError as exc:
                logger.error("Discarding unreadable User JWT session: %s", exc)
                self._session = None
            self._session_loaded = True
        return self._session

    def _store_session(self, session: JWTSession) -> None:
        self._session = session
        self._session_loaded = True
        self._refresh_rejected = False
        self._storage.set(JWT_SESSION_KEY, session)

    @property
    def current_user_id(self) -> str | None:
        session = self._load_session()
        return session.user_id if session else None

    @property
    def needs_reauthentication(self) -> bool:
        return self._load_session() is None or self._refresh_rejected

    async def user_context(self) -> UserContext:
        session = self._load_session()
        if session is None:
            raise AuthError("No signed-in user in User JWT mode")
        return UserContext(user_id=session.user_id, environment=session.environment)

    def sign_out(self) -> None:
        self._storage.clean(JWT_SESSION_KEY)
        self._session = None
        self._session_loaded = True
        self._refresh_rejected = False

    # ------------------------------------------------------------------
    # Reauthentication requests
    # ------------------------------------------------------------------

    def request_reauthentication(self) -> None:
        for queue in list(self._listeners):
            queue.put_nowait(None)

    def reauthentication_requests(self) -> ReauthenticationRequests:
        """Subscribe to reauthentication requests until the subscription is closed."""
        return ReauthenticationRequests(self._listeners)

    # ------------------------------------------------------------------
    # Token exchange
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._settings.http_timeout_seconds) as client:
            yield client

    async def sign_in(self, token: SignInToken) -> None:
        """Exchange a sign-in token for an access/refresh pair and persist it.

        Raises:
            AuthError: If the claims are unreadable or the exchange fails.
        """
        claims = token.unverified_claims()
        logger.info("Signing in user %s [%s]", claims.user_id, claims.environment)

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self._settings.identity_toolkit_url}/accounts:signInWithCustomToken",
                    params={"key": token.public_key},
                    json={"token": token.user_token, "returnSecureToken": True},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AuthError(f"Sign-in token exchange failed: {exc}") from exc

        access_token, refresh_token, expires_in = _parse_token_response(
            response, "idToken", "refreshToken", "expiresIn"
        )
        self._store_session(
            JWTSession(
                user_id=claims.user_id,
                environment=claims.environment,
                public_key=token.public_key,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=_utc_now() + expires_in,
            )
        )

    async def refresh_token(self) -> JWTSession:
        """Exchange the refresh token for a new access token.

        Concurrent callers share one exchange.

        Raises:
            AuthError: If there is no session, or the exchange fails.  A
                rejected refresh token also flags the session as needing
                reauthentication.
        """
        session = self._load_session()
        if session is None:
            self.request_reauthentication()
            raise AuthError("No signed-in user in User JWT mode")

        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()

        async with self._refresh_lock:
            current = self._load_session()
            if current is None:
                raise AuthError("Signed out while waiting for token refresh")
            if current is not session:
                return current

            try:
                async with self._client() as client:
                    response = await client.post(
                        f"{self._settings.secure_token_url}/token",
                        params={"key": session.public_key},
                        data={
                            "grant_type": "refresh_token",
                            "refresh_token": session.refresh_token,
                        },
                        headers={"Content-Type": "application/x-www-form-urlencoded"},
                    )
                    response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code in _REFRESH_REJECTED_STATUS:
                    logger.warning(
                        "Refresh token rejected for user %s (HTTP %d)",
                        session.user_id, exc.response.status_code,
                    )
                    self._refresh_rejected = True
                    self.request_reauthentication()
                    raise AuthError("Refresh token was rejected") from exc
                raise AuthError(f"Token refresh failed: {exc}") from exc
            except httpx.HTTPError as exc:
                raise AuthError(f"Token refresh failed: {exc}") from exc

            access_token, refresh_token, expires_in = _parse_token_response(
                response,
                "id_token",
                "refresh_token",
                "expires_in",
                default_refresh=session.refresh_token,
            )
            refreshed = session.model_copy(
                update={
                    "access_token": access_token,
                    "refresh_token": refresh_token,
                    "expires_at": _utc_now() + expires_in,
                }
            )
            self._store_session(refreshed)
            logger.info("Refreshed User JWT for %s", refreshed.user_id)
            return refreshed

    async def authorize(self, headers: dict[str, str]) -> None:
        """Add a valid bearer token to ``headers``.

        Raises:
            AuthError: If there is no usable session.
        """
        session = self._load_session()
        if session is None or self._refresh_rejected:
            self.request_reauthentication()
            raise AuthError("User JWT session needs reauthentication")

        if session.expires_within(self._settings.token_refresh_buffer_seconds):
            session = await self.refresh_token()

        headers["Authorization"] = f"Bearer {session.access_token}"


# ---------------------------------------------------------------------------
# Strategy variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiKeyAuthStrategy:
    api_key: str


@dataclass(frozen=True)
class JWTAuthStrategy:
    jwt_auth: JWTAuth


AuthStrategy = Union[ApiKeyAuthStrategy, JWTAuthStrategy]


async def authorize_request(strategy: AuthStrategy, headers: dict[str, str]) -> None:
    """Attach the credential required by ``strategy`` to outbound ``headers``."""
    if isinstance(strategy, ApiKeyAuthStrategy):
        headers[API_KEY_HEADER] = strategy.api_key
    elif isinstance(strategy, JWTAuthStrategy):
        await strategy.jwt_auth.authorize(headers)
    else:
        raise TypeError(f"Unknown auth strategy: {strategy!r}")
