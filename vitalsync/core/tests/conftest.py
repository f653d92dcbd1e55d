"""Shared fixtures for core client tests."""

from __future__ import annotations

import base64
import json
from typing import Callable
from uuid import UUID

import httpx
import jwt as pyjwt
import pytest

from vitalsync.config import Settings
from vitalsync.core.environment import Environment
from vitalsync.core.secure_storage import InMemoryBackend, SecureStorage

TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_PUBLIC_KEY = "AIzaTestPublicKey"
SANDBOX_US = Environment.parse("sandbox", "us")


def make_sign_in_token(
    user_id: str = str(TEST_USER_ID),
    environment: str = "sandbox",
    region: str = "us",
    public_key: str = TEST_PUBLIC_KEY,
) -> str:
    """Build a base64 Vital Sign-In Token around an HS256 user token."""
    user_token = pyjwt.encode(
        {"uid": user_id, "claims": {"environment": environment, "region": region}},
        "not-the-real-signing-key-used-only-in-tests",
        algorithm="HS256",
    )
    payload = json.dumps({"public_key": public_key, "user_token": user_token})
    return base64.b64encode(payload.encode()).decode()


def identity_handler(
    expires_in: int = 3600,
    refresh_status: int = 200,
) -> Callable[[httpx.Request], httpx.Response]:
    """MockTransport handler for the sign-in and refresh endpoints."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("accounts:signInWithCustomToken"):
            return httpx.Response(
                200,
                json={
                    "idToken": "access-1",
                    "refreshToken": "refresh-1",
                    "expiresIn": str(expires_in),
                },
            )
        if request.url.path.endswith("/token"):
            if refresh_status != 200:
                return httpx.Response(refresh_status, json={"error": {"message": "TOKEN_EXPIRED"}})
            return httpx.Response(
                200,
                json={"id_token": "access-2", "refresh_token": "refresh-2", "expires_in": "3600"},
            )
        return httpx.Response(404)

    return handler


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        secure_storage_path=tmp_path / "secure_storage.json",
        sync_state_path=tmp_path / "sync_state.json",
        time_zone="Europe/London",
    )


@pytest.fixture
def secure_storage() -> SecureStorage:
    return SecureStorage(InMemoryBackend())


@pytest.fixture
def sign_in_token() -> str:
    return make_sign_in_token()
