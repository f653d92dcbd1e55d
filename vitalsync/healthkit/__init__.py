"""HealthKit sync.

Modules:
    client        — VitalHealthKitClient sync orchestrator
    store         — HealthKitStore ABC implemented by the platform binding
    observer      — Merges change notifications into one async stream
    storage       — Anchors and historical flags per resource
    transform     — Hourly averaging of high-frequency samples
    status        — SyncStatus events and stream
    resources     — VitalResource and its HealthKit data types
    config_loader — Load/validate resource_map.yaml
"""

from vitalsync.healthkit.client import VitalHealthKitClient
from vitalsync.healthkit.models import (
    DataInput,
    DataPushMode,
    HealthKitConfiguration,
    HealthKitNotAvailable,
    PermissionFailure,
    PermissionOutcome,
    PermissionSuccess,
)
from vitalsync.healthkit.resources import VitalResource, WritableVitalResource
from vitalsync.healthkit.status import (
    FailedSyncing,
    NothingToSync,
    SuccessSyncing,
    Syncing,
    SyncingCompleted,
    SyncStatus,
)
from vitalsync.healthkit.store import HealthKitStore

__all__ = [
    "DataInput",
    "DataPushMode",
    "FailedSyncing",
    "HealthKitConfiguration",
    "HealthKitNotAvailable",
    "HealthKitStore",
    "NothingToSync",
    "PermissionFailure",
    "PermissionOutcome",
    "PermissionSuccess",
    "SuccessSyncing",
    "SyncStatus",
    "Syncing",
    "SyncingCompleted",
    "VitalHealthKitClient",
    "VitalResource",
    "WritableVitalResource",
]
