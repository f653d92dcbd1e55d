"""Local cache of connected sources already linked for a user."""

from __future__ import annotations

import logging

from vitalsync.core.secure_storage import InMemoryBackend, KeyValueBackend

logger = logging.getLogger("vitalsync.core.storage")

_CONNECTED_SOURCE_PREFIX = "connected_source:"


def connected_source_key(user_id: str, provider: str) -> str:
    return f"{_CONNECTED_SOURCE_PREFIX}{user_id}:{provider}"


class VitalCoreStorage:
    """Remembers which (user, provider) pairs have a connected source.

    Avoids a round-trip to the connected-sources endpoint before every push.
    Cleared whenever the API-key user changes and on SDK clean-up.
    """

    def __init__(self, backend: KeyValueBackend | None = None) -> None:
        self._backend = backend or InMemoryBackend()

    def is_connected_source_stored(self, user_id: str, provider: str) -> bool:
        return self._backend.get(connected_source_key(user_id, provider)) is not None

    def store_connected_source(self, user_id: str, provider: str) -> None:
        self._backend.set(connected_source_key(user_id, provider), "1")

    def connected_sources(self) -> list[str]:
        return [k for k in self._backend.keys() if k.startswith(_CONNECTED_SOURCE_PREFIX)]

    def clean(self) -> None:
        keys = self.connected_sources()
        for key in keys:
            self._backend.remove(key)
        logger.debug("Cleared %d connected source entries", len(keys))
