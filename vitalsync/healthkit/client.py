"""HealthKit sync orchestrator.

``VitalHealthKitClient`` ties the platform store, the sync state, and the
core ``VitalClient`` together:

    change notification / sync_data()
        → sync(resource)
            → store.read_resource(...)   (anchors from VitalHealthKitStorage)
            → transform(...)
            → vital_client.post(...)     (automatic mode only)
            → commit flag + anchors
        → status stream

Sync progress only advances after the data has been pushed (or skipped in
manual mode).  A failed sync commits nothing and is retried by the next
trigger from the same anchors.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping

from tzlocal import get_localzone_name

from vitalsync.config import Settings, get_settings
from vitalsync.core.box import ProtectedBox
from vitalsync.core.client import VitalClient
from vitalsync.core.errors import StorageError
from vitalsync.core.payloads import (
    DailyStage,
    HistoricalStage,
    ProcessedResourceData,
    ProviderSlug,
    Stage,
)
from vitalsync.core.secure_storage import SecureStorage
from vitalsync.healthkit.models import (
    DataInput,
    HealthKitConfiguration,
    HealthKitNotAvailable,
    PermissionFailure,
    PermissionOutcome,
    PermissionSuccess,
)
from vitalsync.healthkit.observer import ChangeObserver
from vitalsync.healthkit.resources import (
    VitalResource,
    WritableVitalResource,
    sample_types_to_trigger_sync,
    to_health_kit_types,
)
from vitalsync.healthkit.status import (
    FailedSyncing,
    NothingToSync,
    StatusStream,
    SuccessSyncing,
    Syncing,
    SyncingCompleted,
)
from vitalsync.healthkit.storage import VitalHealthKitStorage
from vitalsync.healthkit.store import HealthKitStore, UpdateFrequency
from vitalsync.healthkit.transform import transform

logger = logging.getLogger("vitalsync.healthkit")

HEALTH_SECURE_STORAGE_KEY = "health_secureStorageKey"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_time_zone(settings: Settings) -> str:
    """IANA time zone sent with each push: the configured one, else the device's.

    Falls back to "UTC" when the device zone cannot be named.
    """
    if settings.time_zone:
        return settings.time_zone
    try:
        name = get_localzone_name()
    except (KeyError, ValueError, OSError) as exc:
        logger.warning("Could not resolve the device time zone, using UTC: %s", exc)
        return "UTC"
    return name or "UTC"


def _apply_logs_enabled(enabled: bool) -> None:
    # Child loggers inherit the effective level of "vitalsync.healthkit"
    logger.setLevel(logging.NOTSET if enabled else logging.CRITICAL + 1)


class VitalHealthKitClient:
    """Syncs HealthKit resources to Vital.

    Usage::

        health = VitalHealthKitClient(vital_client, store)
        await health.configure(HealthKitConfiguration(background_delivery_enabled=True))
        outcome = await health.ask([VitalResource.SLEEP], [])
        await health.sync_data([VitalResource.SLEEP])

    Args:
        vital_client:   Configured core client used for auth and pushes.
        store:          Platform health-store binding.
        storage:        Sync state (anchors + historical flags).
        secure_storage: Where the configuration is persisted.
        observer:       Change observer; defaults to one over ``store``.
        settings:       Process settings.
        clock:          Returns "now" as an aware datetime.
    """

    def __init__(
        self,
        vital_client: VitalClient,
        store: HealthKitStore,
        storage: VitalHealthKitStorage | None = None,
        secure_storage: SecureStorage | None = None,
        observer: ChangeObserver | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._vital_client = vital_client
        self._store = store
        self._storage = storage or VitalHealthKitStorage()
        self._secure_storage = secure_storage or SecureStorage()
        self._observer = observer or ChangeObserver(store)
        self._settings = settings or get_settings()
        self._clock = clock
        vital_client.register_user_scoped_storage(self._storage)

        self.configuration: ProtectedBox[HealthKitConfiguration] = ProtectedBox()
        self.status = StatusStream()

        self._background_delivery_enabled = False
        self._background_task: asyncio.Task[None] | None = None

    @property
    def background_task(self) -> asyncio.Task[None] | None:
        return self._background_task

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def configure(self, configuration: HealthKitConfiguration | None = None) -> None:
        """Set the configuration and start background delivery on first call."""
        configuration = configuration or HealthKitConfiguration()
        _apply_logs_enabled(configuration.logs_enabled)

        try:
            self._secure_storage.set(HEALTH_SECURE_STORAGE_KEY, configuration)
        except OSError as exc:
            logger.info("We weren't able to securely store Configuration: %s", exc)

        self.configuration.set(configuration)

        if not self._background_delivery_enabled:
            self._background_delivery_enabled = True
            self._check_background_updates(
                configuration.background_delivery_enabled,
                self._store.permitted_resources(),
            )

    async def automatic_configuration(self) -> bool:
        """Restore the persisted HealthKit and core configuration.

        Returns:
            True if a HealthKit configuration was found and applied.
        """
        try:
            configuration = self._secure_storage.get(
                HEALTH_SECURE_STORAGE_KEY, HealthKitConfiguration
            )
        except StorageError as exc:
            logger.error("Failed to perform automatic configuration: %s", exc)
            return False

        if configuration is None:
            return False

        await self.configure(configuration)
        self._vital_client.automatic_configuration()
        return True

    # ------------------------------------------------------------------
    # Background delivery
    # ------------------------------------------------------------------

    def _cancel_background_task(self) -> None:
        if self._background_task is not None:
            self._background_task.cancel()
            self._background_task = None

    def _check_background_updates(
        self, is_background_enabled: bool, resources: Iterable[VitalResource]
    ) -> None:
        """(Re)start the single background delivery task for ``resources``."""
        resources = sorted(set(resources), key=lambda r: r.value)
        if not is_background_enabled or not resources:
            return

        self._cancel_background_task()

        types_by_resource = {
            resource: types
            for resource in resources
            if (types := sample_types_to_trigger_sync(resource))
        }
        if not types_by_resource:
            logger.info("Not observing any type")
            return

        self._background_task = asyncio.get_running_loop().create_task(
            self._consume_background_deliveries(types_by_resource),
            name="vitalsync-background-delivery",
        )

    async def _enable_background_delivery(self, sample_types: Iterable[str]) -> None:
        for sample_type in sorted(sample_types):
            try:
                await self._store.enable_background_delivery(sample_type, UpdateFrequency.HOURLY)
            except Exception as exc:
                logger.error(
                    'Failed to enable background delivery for type: %s. Did you enable "Background Delivery" in Capabilities? (%s)',
                    sample_type,
                    exc,
                )
                continue
            logger.info("Successfully enabled background delivery for type: %s", sample_type)

    async def _consume_background_deliveries(
        self, types_by_resource: Mapping[VitalResource, frozenset[str]]
    ) -> None:
        await self._enable_background_delivery(set().union(*types_by_resource.values()))

        async with aclosing(self._observer.observe(types_by_resource)) as payloads:
            async for payload in payloads:
                # Payloads left in the queue on cancellation are never acknowledged;
                # the platform redelivers them.
                cancelled = False
                try:
                    logger.info(
                        "[BackgroundDelivery] Dequeued payload for %s",
                        payload.resource.log_description,
                    )
                    await self.sync(payload.resource)
                except asyncio.CancelledError:
                    cancelled = True
                    raise
                finally:
                    # Missed acknowledgements make the platform back off and
                    # eventually stop delivering.
                    if not cancelled:
                        payload.completion()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _calculate_stage(self, resource: VitalResource, start: datetime, end: datetime) -> Stage:
        # No historical record is kept for resources without a time dimension
        if not resource.is_historical:
            return DailyStage()
        if self._storage.read_flag(resource):
            return DailyStage()
        return HistoricalStage(start=start, end=end)

    async def sync(self, resource: VitalResource) -> None:
        """Read, push and commit one resource.  Never raises on sync failure.

        Emits ``Syncing`` then exactly one of ``NothingToSync``,
        ``SuccessSyncing`` or ``FailedSyncing``.
        """
        configuration = await self.configuration.get()
        description = resource.log_description

        end = self._clock()
        start = end - timedelta(days=configuration.number_of_days_to_back_fill)

        logger.info("Syncing HealthKit: %s", description)
        self.status.send(Syncing(resource))

        try:
            stage = self._calculate_stage(resource, start, end)

            data, anchors = await self._store.read_resource(resource, start, end, self._storage)

            if data is None or data.should_skip_post:
                # The API rejects empty payloads.  A historical window still
                # records its anchors so the backfill does not start over.
                if not stage.is_daily:
                    for anchor in anchors:
                        self._storage.store_anchor(anchor)
                logger.info("Skipping. No new data available: %s", description)
                self.status.send(NothingToSync(resource))
                return

            transformed = transform(data)

            if configuration.mode.is_automatic:
                logger.info("Automatic Mode. Posting data for stage %s: %s", stage, description)
                await self._vital_client.check_connected_source(ProviderSlug.APPLE_HEALTH_KIT)
                await self._vital_client.post(
                    transformed,
                    stage,
                    ProviderSlug.APPLE_HEALTH_KIT,
                    local_time_zone(self._settings),
                )
            else:
                logger.info("Manual Mode. Skipping posting data for stage %s: %s", stage, description)

            self._storage.store_flag(resource)
            for anchor in anchors:
                self._storage.store_anchor(anchor)

            logger.info("Completed syncing: %s", description)
            self.status.send(SuccessSyncing(resource, transformed))

        except Exception as exc:
            logger.error("Failed syncing data: %s. Error: %s", description, exc)
            self.status.send(FailedSyncing(resource, str(exc)))

    async def _sync_sequentially(self, resources: list[VitalResource]) -> None:
        for resource in resources:
            await self.sync(resource)
        self.status.send(SyncingCompleted())

    def sync_data(self, resources: Iterable[VitalResource] | None = None) -> asyncio.Task[None]:
        """Sync ``resources`` one after another, then emit ``SyncingCompleted``.

        Defaults to every permitted resource.  Returns the task running the
        syncs; awaiting it is optional.
        """
        ordered = list(resources) if resources is not None else list(self._store.permitted_resources())
        return asyncio.get_running_loop().create_task(
            self._sync_sequentially(ordered), name="vitalsync-sync-data"
        )

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def ask(
        self,
        read_permissions: Iterable[VitalResource],
        write_permissions: Iterable[WritableVitalResource],
    ) -> PermissionOutcome:
        """Request read/write access and start observing the granted resources."""
        if not self._store.is_health_data_available():
            return HealthKitNotAvailable()

        read_resources = list(read_permissions)
        try:
            await self._store.request_read_write_authorization(read_resources, list(write_permissions))
        except Exception as exc:
            logger.error("Permission request failed: %s", exc)
            return PermissionFailure(reason=str(exc))

        configuration = self.configuration.value
        if configuration is not None:
            self._check_background_updates(
                configuration.background_delivery_enabled, read_resources
            )

        return PermissionSuccess()

    def has_asked_for_permission(self, resource: VitalResource) -> bool:
        return self._store.has_asked_for_permission(resource)

    def date_of_last_sync(self, resource: VitalResource) -> datetime | None:
        """Most recent anchor date across every data type of ``resource``.

        A resource made of several types reports its freshest type, which can
        hide a type that stopped syncing.
        """
        if not self.has_asked_for_permission(resource):
            return None

        dates = [
            stored.date
            for key in to_health_kit_types(resource)
            if (stored := self._storage.read_anchor(key)) is not None and stored.date is not None
        ]
        return max(dates, default=None)

    # ------------------------------------------------------------------
    # Debug reads & writes
    # ------------------------------------------------------------------

    async def read(
        self, resource: VitalResource, start: datetime, end: datetime
    ) -> ProcessedResourceData | None:
        """Read and transform ``resource`` without touching the sync state."""
        data, _ = await self._store.read_resource(resource, start, end, VitalHealthKitStorage.debug())
        return transform(data) if data is not None else None

    async def write(self, data_input: DataInput, start: datetime, end: datetime) -> None:
        await self._store.write_input(data_input, start, end)

    # ------------------------------------------------------------------
    # Tear-down
    # ------------------------------------------------------------------

    async def clean_up(self) -> None:
        """Stop background delivery and forget all configuration."""
        await self._store.disable_background_delivery()
        self._cancel_background_task()
        self._background_delivery_enabled = False

        # Also cleans the sync state, registered as user-scoped storage
        await self._vital_client.clean_up()
        self._secure_storage.clean(HEALTH_SECURE_STORAGE_KEY)
        self.configuration.clean()
        logger.info("VitalHealthKitClient cleaned up")
