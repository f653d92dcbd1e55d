"""Per-resource sync progress: anchors and historical-pass flags.

Anchors are kept per underlying data type (a resource such as sleep reads
several), keyed by the data type identifier.  The historical flag is kept per
resource and records that at least one full backfill has been pushed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from vitalsync.core.secure_storage import InMemoryBackend, KeyValueBackend
from vitalsync.healthkit.resources import VitalResource

logger = logging.getLogger("vitalsync.healthkit.storage")

_ANCHOR_PREFIX = "anchor:"
_FLAG_PREFIX = "flag:"


@dataclass(frozen=True)
class StoredAnchor:
    """Resumption point for one data type.

    Attributes:
        key:    Data type identifier the anchor belongs to.
        anchor: Opaque cursor handed back by the platform store.
        date:   When the anchor was last advanced.
    """

    key: str
    anchor: str | None = None
    date: datetime | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "anchor": self.anchor,
                "date": self.date.isoformat() if self.date else None,
            }
        )

    @classmethod
    def from_json(cls, key: str, raw: str) -> StoredAnchor:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("anchor entry is not an object")
        date = payload.get("date")
        return cls(
            key=key,
            anchor=payload.get("anchor"),
            date=datetime.fromisoformat(date) if date else None,
        )


class VitalHealthKitStorage:
    """Sync state over a durable key/value backend.

    No ordering is guaranteed across keys; concurrent writers for the same
    key are last-write-wins.
    """

    def __init__(self, backend: KeyValueBackend | None = None) -> None:
        self._backend = backend or InMemoryBackend()

    @classmethod
    def debug(cls) -> VitalHealthKitStorage:
        """Throwaway in-memory state for reads that must not advance anything."""
        return cls(InMemoryBackend())

    # ---------- Anchors ----------

    def read_anchor(self, key: str) -> StoredAnchor | None:
        raw = self._backend.get(_ANCHOR_PREFIX + key)
        if raw is None:
            return None
        try:
            return StoredAnchor.from_json(key, raw)
        except ValueError as exc:
            logger.warning("Ignoring corrupted anchor for %s: %s", key, exc)
            return None

    def store_anchor(self, entity: StoredAnchor) -> None:
        self._backend.set(_ANCHOR_PREFIX + entity.key, entity.to_json())

    # ---------- Historical flag ----------

    def read_flag(self, resource: VitalResource) -> bool:
        return self._backend.get(_FLAG_PREFIX + resource.value) is not None

    def store_flag(self, resource: VitalResource) -> None:
        self._backend.set(_FLAG_PREFIX + resource.value, "1")

    def clean(self) -> None:
        for key in self._backend.keys():
            if key.startswith((_ANCHOR_PREFIX, _FLAG_PREFIX)):
                self._backend.remove(key)
