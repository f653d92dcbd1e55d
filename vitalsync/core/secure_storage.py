"""Durable key/value storage for configuration and credential blobs.

The on-device keychain binding is external to this package; it plugs in as a
``KeyValueBackend``.  Two backends ship here:

    InMemoryBackend  — process-local, used in tests and for debug reads
    JSONFileBackend  — a single JSON document on disk, rewritten atomically

``SecureStorage`` layers typed (pydantic) serialization on top.  A blob that
fails to decode raises ``StorageError``; callers treat that as absence.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from vitalsync.core.errors import StorageError

logger = logging.getLogger("vitalsync.core.storage")

T = TypeVar("T")


class KeyValueBackend(ABC):
    """String-to-string store that survives process restarts."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored string, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``.  Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return every stored key."""


class InMemoryBackend(KeyValueBackend):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class JSONFileBackend(KeyValueBackend):
    """All entries in one JSON object on disk.

    Every write replaces the file via a temp file + ``os.replace`` so a crash
    never leaves a half-written document behind.  An unreadable file is
    logged and treated as empty.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Secure storage file %s is unreadable: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.error("Secure storage file %s has unexpected shape", self._path)
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".vitalsync-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class SecureStorage:
    """Typed access to opaque blobs.

    Usage::

        storage = SecureStorage(InMemoryBackend())
        storage.set("user", uuid4())
        user_id = storage.get("user", UUID)
    """

    def __init__(self, backend: KeyValueBackend | None = None) -> None:
        self._backend = backend or InMemoryBackend()

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def get(self, key: str, model: type[T] | Any) -> T | None:
        """Decode the blob stored under ``key`` as ``model``.

        Raises:
            StorageError: If the blob exists but does not decode.
        """
        raw = self._backend.get(key)
        if raw is None:
            return None
        try:
            return TypeAdapter(model).validate_json(raw)
        except (ValidationError, ValueError) as exc:
            raise StorageError(f"Corrupted blob for key '{key}': {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        self._backend.set(key, TypeAdapter(type(value)).dump_json(value).decode())

    def clean(self, key: str) -> None:
        self._backend.remove(key)
