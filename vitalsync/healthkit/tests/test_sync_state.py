"""Tests for the per-resource sync state store."""

from __future__ import annotations

from datetime import datetime, timezone

from vitalsync.core.secure_storage import InMemoryBackend, JSONFileBackend
from vitalsync.healthkit.resources import VitalResource
from vitalsync.healthkit.storage import StoredAnchor, VitalHealthKitStorage

SLEEP_TYPE = "HKCategoryTypeIdentifierSleepAnalysis"


class TestAnchors:
    def test_absent_anchor(self, sync_state: VitalHealthKitStorage) -> None:
        assert sync_state.read_anchor(SLEEP_TYPE) is None

    def test_store_and_read(self, sync_state: VitalHealthKitStorage) -> None:
        when = datetime(2026, 2, 23, 7, 0, tzinfo=timezone.utc)
        sync_state.store_anchor(StoredAnchor(key=SLEEP_TYPE, anchor="cursor-1", date=when))

        stored = sync_state.read_anchor(SLEEP_TYPE)
        assert stored == StoredAnchor(key=SLEEP_TYPE, anchor="cursor-1", date=when)

    def test_last_write_wins(self, sync_state: VitalHealthKitStorage) -> None:
        sync_state.store_anchor(StoredAnchor(key=SLEEP_TYPE, anchor="cursor-1"))
        sync_state.store_anchor(StoredAnchor(key=SLEEP_TYPE, anchor="cursor-2"))
        assert sync_state.read_anchor(SLEEP_TYPE).anchor == "cursor-2"

    def test_corrupted_anchor_is_treated_as_absent(self) -> None:
        backend = InMemoryBackend()
        backend.set(f"anchor:{SLEEP_TYPE}", "not json")
        assert VitalHealthKitStorage(backend).read_anchor(SLEEP_TYPE) is None

    def test_survives_restart(self, tmp_path) -> None:
        path = tmp_path / "sync_state.json"
        VitalHealthKitStorage(JSONFileBackend(path)).store_anchor(
            StoredAnchor(key=SLEEP_TYPE, anchor="cursor-1")
        )
        assert VitalHealthKitStorage(JSONFileBackend(path)).read_anchor(SLEEP_TYPE).anchor == "cursor-1"


class TestHistoricalFlag:
    def test_flag_defaults_to_false(self, sync_state: VitalHealthKitStorage) -> None:
        assert sync_state.read_flag(VitalResource.SLEEP) is False

    def test_flag_is_per_resource(self, sync_state: VitalHealthKitStorage) -> None:
        sync_state.store_flag(VitalResource.SLEEP)
        assert sync_state.read_flag(VitalResource.SLEEP) is True
        assert sync_state.read_flag(VitalResource.ACTIVITY) is False


class TestClean:
    def test_clean_erases_anchors_and_flags(self) -> None:
        backend = InMemoryBackend()
        backend.set("core_secureStorageKey", "{}")
        state = VitalHealthKitStorage(backend)
        state.store_anchor(StoredAnchor(key=SLEEP_TYPE, anchor="cursor-1"))
        state.store_flag(VitalResource.SLEEP)

        state.clean()

        assert state.read_anchor(SLEEP_TYPE) is None
        assert state.read_flag(VitalResource.SLEEP) is False
        assert backend.get("core_secureStorageKey") == "{}"

    def test_debug_storage_is_isolated(self, sync_state: VitalHealthKitStorage) -> None:
        sync_state.store_flag(VitalResource.SLEEP)
        assert VitalHealthKitStorage.debug().read_flag(VitalResource.SLEEP) is False
