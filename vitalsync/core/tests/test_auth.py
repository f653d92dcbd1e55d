"""Tests for the sign-in token, the User JWT session and auth strategies."""

from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from vitalsync.config import Settings
from vitalsync.core.auth import (
    API_KEY_HEADER,
    JWT_SESSION_KEY,
    ApiKeyAuthStrategy,
    JWTAuth,
    JWTAuthStrategy,
    JWTSession,
    SignInToken,
    authorize_request,
)
from vitalsync.core.environment import EnvironmentKind, Region
from vitalsync.core.errors import AuthError
from vitalsync.core.secure_storage import SecureStorage
from vitalsync.core.tests.conftest import (
    SANDBOX_US,
    TEST_PUBLIC_KEY,
    TEST_USER_ID,
    identity_handler,
    make_sign_in_token,
)


def _jwt_auth(
    secure_storage: SecureStorage,
    settings: Settings,
    handler=None,
) -> JWTAuth:
    transport = httpx.MockTransport(handler or identity_handler())
    return JWTAuth(secure_storage, httpx.AsyncClient(transport=transport), settings)


def _store_session(secure_storage: SecureStorage, expires_in: timedelta) -> JWTSession:
    session = JWTSession(
        user_id=str(TEST_USER_ID),
        environment=SANDBOX_US,
        public_key=TEST_PUBLIC_KEY,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=datetime.now(timezone.utc) + expires_in,
    )
    secure_storage.set(JWT_SESSION_KEY, session)
    return session


# ---------------------------------------------------------------------------
# Sign-in token
# ---------------------------------------------------------------------------


class TestSignInToken:
    def test_decodes_base64_form(self, sign_in_token: str) -> None:
        token = SignInToken.decode(sign_in_token)
        assert token.public_key == TEST_PUBLIC_KEY

    def test_decodes_plain_json_form(self, sign_in_token: str) -> None:
        raw_json = base64.b64decode(sign_in_token).decode()
        assert SignInToken.decode(raw_json) == SignInToken.decode(sign_in_token)

    def test_unverified_claims(self) -> None:
        claims = SignInToken.decode(make_sign_in_token(environment="production", region="eu")).unverified_claims()
        assert claims.user_id == str(TEST_USER_ID)
        assert claims.environment.kind is EnvironmentKind.PRODUCTION
        assert claims.environment.region is Region.EU

    def test_garbage_is_rejected(self) -> None:
        with pytest.raises(AuthError):
            SignInToken.decode("definitely not a token")

    def test_missing_field_is_rejected(self) -> None:
        raw = base64.b64encode(json.dumps({"public_key": "k"}).encode()).decode()
        with pytest.raises(AuthError, match="user_token"):
            SignInToken.decode(raw)

    def test_unknown_environment_claim_is_rejected(self) -> None:
        token = SignInToken.decode(make_sign_in_token(environment="staging"))
        with pytest.raises(AuthError):
            token.unverified_claims()


# ---------------------------------------------------------------------------
# JWTAuth
# ---------------------------------------------------------------------------


class TestJWTAuthSignIn:
    @pytest.mark.asyncio
    async def test_sign_in_persists_session(
        self, secure_storage: SecureStorage, settings: Settings, sign_in_token: str
    ) -> None:
        auth = _jwt_auth(secure_storage, settings)
        await auth.sign_in(SignInToken.decode(sign_in_token))

        assert auth.current_user_id == str(TEST_USER_ID)
        assert not auth.needs_reauthentication

        stored = secure_storage.get(JWT_SESSION_KEY, JWTSession)
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_session_is_loaded_lazily_after_restart(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(secure_storage, settings)
        assert auth.current_user_id == str(TEST_USER_ID)
        context = await auth.user_context()
        assert context.environment == SANDBOX_US

    @pytest.mark.asyncio
    async def test_failed_exchange_raises_auth_error(
        self, secure_storage: SecureStorage, settings: Settings, sign_in_token: str
    ) -> None:
        auth = _jwt_auth(secure_storage, settings, handler=lambda request: httpx.Response(400))
        with pytest.raises(AuthError):
            await auth.sign_in(SignInToken.decode(sign_in_token))
        assert auth.current_user_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"idToken": "access-1", "expiresIn": "3600"}),
            httpx.Response(200, text="<html>gateway</html>"),
        ],
    )
    async def test_malformed_exchange_response_raises_auth_error(
        self, response: httpx.Response, secure_storage: SecureStorage, settings: Settings, sign_in_token: str
    ) -> None:
        auth = _jwt_auth(secure_storage, settings, handler=lambda request: response)
        with pytest.raises(AuthError, match="Malformed"):
            await auth.sign_in(SignInToken.decode(sign_in_token))
        assert auth.current_user_id is None

    def test_without_session_needs_reauthentication(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        auth = _jwt_auth(secure_storage, settings)
        assert auth.current_user_id is None
        assert auth.needs_reauthentication


class TestJWTAuthRefresh:
    @pytest.mark.asyncio
    async def test_refresh_replaces_access_token(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(secure_storage, settings)

        refreshed = await auth.refresh_token()

        assert refreshed.access_token == "access-2"
        assert secure_storage.get(JWT_SESSION_KEY, JWTSession).refresh_token == "refresh-2"

    @pytest.mark.asyncio
    async def test_rejected_refresh_flags_reauthentication(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(secure_storage, settings, handler=identity_handler(refresh_status=400))

        with auth.reauthentication_requests() as requests:
            pending = asyncio.ensure_future(requests.__anext__())
            await asyncio.sleep(0)

            with pytest.raises(AuthError, match="rejected"):
                await auth.refresh_token()

            assert auth.needs_reauthentication
            await asyncio.wait_for(pending, timeout=1)

    @pytest.mark.asyncio
    async def test_requests_before_first_read_are_buffered(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        auth = _jwt_auth(secure_storage, settings)

        with auth.reauthentication_requests() as requests:
            auth.request_reauthentication()
            await asyncio.wait_for(requests.__anext__(), timeout=1)

    def test_closed_subscription_stops_listening(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        auth = _jwt_auth(secure_storage, settings)
        requests = auth.reauthentication_requests()
        requests.close()
        auth.request_reauthentication()
        assert requests._queue.empty()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"refresh_token": "refresh-2", "expires_in": "3600"},
            ["not", "an", "object"],
        ],
    )
    async def test_malformed_refresh_response_raises_auth_error(
        self, body, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(secure_storage, settings, handler=lambda request: httpx.Response(200, json=body))

        with pytest.raises(AuthError, match="Malformed"):
            await auth.refresh_token()
        assert secure_storage.get(JWT_SESSION_KEY, JWTSession).access_token == "access-1"

    @pytest.mark.asyncio
    async def test_refresh_without_new_refresh_token_keeps_old_one(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(
            secure_storage,
            settings,
            handler=lambda request: httpx.Response(200, json={"id_token": "access-2"}),
        )

        refreshed = await auth.refresh_token()
        assert refreshed.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_server_error_does_not_invalidate_session(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(secure_storage, settings, handler=identity_handler(refresh_status=503))

        with pytest.raises(AuthError):
            await auth.refresh_token()
        assert not auth.needs_reauthentication

    @pytest.mark.asyncio
    async def test_authorize_refreshes_near_expiry(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(seconds=30))
        auth = _jwt_auth(secure_storage, settings)

        headers: dict[str, str] = {}
        await auth.authorize(headers)
        assert headers["Authorization"] == "Bearer access-2"

    @pytest.mark.asyncio
    async def test_authorize_uses_fresh_token_as_is(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(secure_storage, settings, handler=lambda request: httpx.Response(500))

        headers: dict[str, str] = {}
        await auth.authorize(headers)
        assert headers["Authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_authorize_without_session_raises(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        auth = _jwt_auth(secure_storage, settings)
        with pytest.raises(AuthError):
            await auth.authorize({})

    def test_sign_out_clears_persisted_session(
        self, secure_storage: SecureStorage, settings: Settings
    ) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        auth = _jwt_auth(secure_storage, settings)
        auth.sign_out()
        assert auth.current_user_id is None
        assert secure_storage.get(JWT_SESSION_KEY, JWTSession) is None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class TestAuthorizeRequest:
    @pytest.mark.asyncio
    async def test_api_key_header(self) -> None:
        headers: dict[str, str] = {}
        await authorize_request(ApiKeyAuthStrategy("sk_test"), headers)
        assert headers == {API_KEY_HEADER: "sk_test"}

    @pytest.mark.asyncio
    async def test_jwt_bearer(self, secure_storage: SecureStorage, settings: Settings) -> None:
        _store_session(secure_storage, timedelta(hours=1))
        headers: dict[str, str] = {}
        await authorize_request(JWTAuthStrategy(_jwt_auth(secure_storage, settings)), headers)
        assert headers["Authorization"] == "Bearer access-1"
