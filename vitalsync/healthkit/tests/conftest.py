"""Shared fixtures and an in-memory platform store for HealthKit tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Iterable
from unittest.mock import AsyncMock, MagicMock

import pytest

from vitalsync.config import Settings
from vitalsync.core.payloads import (
    ProcessedResourceData,
    QuantitySample,
    TimeSeriesData,
    TimeSeriesType,
)
from vitalsync.core.secure_storage import InMemoryBackend, SecureStorage
from vitalsync.healthkit.client import VitalHealthKitClient
from vitalsync.healthkit.models import DataInput
from vitalsync.healthkit.resources import VitalResource, WritableVitalResource
from vitalsync.healthkit.storage import StoredAnchor, VitalHealthKitStorage
from vitalsync.healthkit.store import HealthKitStore, ObserverQuery, UpdateFrequency

NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)


def heart_rate_data(*values: float) -> TimeSeriesData:
    """Heart-rate samples a minute apart inside the 07:00 UTC hour."""
    return TimeSeriesData(
        type=TimeSeriesType.HEART_RATE,
        samples=[
            QuantitySample(
                value=value,
                start_date=datetime(2026, 2, 23, 7, i, tzinfo=timezone.utc),
                end_date=datetime(2026, 2, 23, 7, i, tzinfo=timezone.utc),
                unit="bpm",
            )
            for i, value in enumerate(values)
        ],
    )


class FakeHealthKitStore(HealthKitStore):
    """Scriptable stand-in for the native binding.

    ``results`` maps a resource to the ``(data, anchors)`` its next reads
    return.  Every read and observer query is recorded.
    """

    def __init__(self, available: bool = True, bundled: bool = False) -> None:
        self.available = available
        self.supports_bundled_queries = bundled
        self.results: dict[VitalResource, tuple[ProcessedResourceData | None, list[StoredAnchor]]] = {}
        self.read_error: Exception | None = None
        self.reads: list[tuple[VitalResource, datetime, datetime]] = []
        self.asked: set[VitalResource] = set()
        self.authorization_error: Exception | None = None
        self.authorization_calls = 0
        self.background_types: list[tuple[str, UpdateFrequency]] = []
        self.background_disabled = False
        self.running: list[ObserverQuery] = []
        self.stopped: list[ObserverQuery] = []
        self.writes: list[tuple[DataInput, datetime, datetime]] = []

    def is_health_data_available(self) -> bool:
        return self.available

    async def request_read_write_authorization(
        self,
        read: Iterable[VitalResource],
        write: Iterable[WritableVitalResource],
    ) -> None:
        self.authorization_calls += 1
        if self.authorization_error is not None:
            raise self.authorization_error
        self.asked.update(read)

    def has_asked_for_permission(self, resource: VitalResource) -> bool:
        return resource in self.asked

    def permitted_resources(self) -> list[VitalResource]:
        return sorted(self.asked, key=lambda r: r.value)

    async def read_resource(self, resource, start, end, storage):
        self.reads.append((resource, start, end))
        if self.read_error is not None:
            raise self.read_error
        return self.results.get(resource, (None, []))

    async def enable_background_delivery(self, sample_type: str, frequency: UpdateFrequency) -> None:
        self.background_types.append((sample_type, frequency))

    async def disable_background_delivery(self) -> None:
        self.background_disabled = True

    def execute(self, query: ObserverQuery) -> None:
        self.running.append(query)

    def stop(self, query: ObserverQuery) -> None:
        self.running.remove(query)
        self.stopped.append(query)

    async def write_input(self, data_input: DataInput, start: datetime, end: datetime) -> None:
        self.writes.append((data_input, start, end))

    # ---------- test helpers ----------

    def notify(self, resource: VitalResource, completion=None, error: BaseException | None = None) -> MagicMock:
        """Fire the first running query of ``resource`` like the OS would."""
        completion = completion or MagicMock()
        query = next(q for q in self.running if q.resource is resource)
        query.handler(completion, error)
        return completion


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
def store() -> FakeHealthKitStore:
    return FakeHealthKitStore()


@pytest.fixture
def sync_state() -> VitalHealthKitStorage:
    return VitalHealthKitStorage(InMemoryBackend())


@pytest.fixture
def secure_storage() -> SecureStorage:
    return SecureStorage(InMemoryBackend())


@pytest.fixture
def vital_client() -> MagicMock:
    """Core client double: pushes and link checks succeed unless told otherwise."""
    client = MagicMock()
    client.check_connected_source = AsyncMock()
    client.post = AsyncMock()
    client.clean_up = AsyncMock()
    client.automatic_configuration = MagicMock(return_value=True)
    return client


@pytest.fixture
def health_client(
    vital_client: MagicMock,
    store: FakeHealthKitStore,
    sync_state: VitalHealthKitStorage,
    secure_storage: SecureStorage,
    settings: Settings,
) -> VitalHealthKitClient:
    return VitalHealthKitClient(
        vital_client,
        store,
        storage=sync_state,
        secure_storage=secure_storage,
        settings=settings,
        clock=lambda: NOW,
    )


async def eventually(predicate: Callable[[], object], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)
