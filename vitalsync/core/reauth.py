"""Background monitor answering reauthentication requests.

The host registers an async *sign-in token fetcher*: given the current Vital
user ID it asks the host's backend for a fresh Vital Sign-In Token (or
returns None to decline).  While a fetcher is registered, one asyncio task:

1. migrates an API-key session to User JWT once (api-key-migration);
2. reauthenticates immediately if the JWT session is already unusable
   (app-launch);
3. waits for reauthentication requests from ``JWTAuth`` and answers each
   one that is still needed (on-demand).

Every attempt is fail-soft: a declined fetch or a failed sign-in is logged
and the monitor keeps running.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Awaitable, Callable

from vitalsync.core.models import AuthMode

if TYPE_CHECKING:
    from vitalsync.core.client import VitalClient

logger = logging.getLogger("vitalsync.core.reauth")

SignInTokenFetcher = Callable[[str], Awaitable["str | None"]]


class ReauthenticationMonitor:
    """Owns the single reauthentication task of a ``VitalClient``."""

    def __init__(self, client: VitalClient) -> None:
        self._client = client
        self._lock = threading.Lock()
        self._fetcher: SignInTokenFetcher | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def observe(self, fetcher: SignInTokenFetcher | None) -> None:
        """Register (start) or clear (stop) the sign-in token fetcher.

        Registering while already running only swaps the fetcher.  Must be
        called from within a running event loop when starting.
        """
        with self._lock:
            self._fetcher = fetcher

            if fetcher is not None and not self.is_running:
                self._task = asyncio.get_running_loop().create_task(
                    self._run(), name="vitalsync-reauthentication"
                )
            elif fetcher is None and self._task is not None:
                self._task.cancel()
                self._task = None

    async def _run(self) -> None:
        configuration = await self._client.configuration.get()
        jwt_auth = self._client.jwt_auth

        # Subscribed first: requests sent during the start-up attempts are queued
        with jwt_auth.reauthentication_requests() as requests:
            if configuration.auth_mode is AuthMode.API_KEY:
                await self._try_to_reauthenticate("api-key-migration")

            if jwt_auth.needs_reauthentication:
                await self._try_to_reauthenticate("app-launch")

            async for _ in requests:
                # Another attempt may already have fixed the session
                if not jwt_auth.needs_reauthentication:
                    continue
                await self._try_to_reauthenticate("on-demand")

    async def _try_to_reauthenticate(self, context: str) -> None:
        with self._lock:
            fetcher = self._fetcher
        user_id = self._client.current_user_id

        if fetcher is None or user_id is None:
            return

        logger.info("reauth[%s] started", context)
        try:
            token = await fetcher(user_id)
            if token is None:
                logger.info("reauth[%s] skipped by host", context)
                return

            await self._client.sign_in(token)
            logger.info("reauth[%s] completed", context)
        except Exception as exc:
            logger.error("reauth[%s] failed: %s", context, exc)
