"""HealthKit client configuration and small value types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from pydantic import ConfigDict, field_validator

from vitalsync.core.models import VitalBase
from vitalsync.healthkit.resources import VitalResource, WritableVitalResource

MAX_BACKFILL_DAYS = 90


class DataPushMode(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"

    @property
    def is_automatic(self) -> bool:
        return self is DataPushMode.AUTOMATIC


class HealthKitConfiguration(VitalBase):
    """Immutable HealthKit sync configuration.

    Attributes:
        background_delivery_enabled: Observe data changes and sync in the background.
        number_of_days_to_back_fill: Historical window for the first sync of
                                     each resource.  Capped at 90.
        logs_enabled:                Emit ``vitalsync.healthkit`` log records.
        mode:                        ``automatic`` pushes to the API; ``manual``
                                     only advances local bookkeeping.
    """

    model_config = ConfigDict(frozen=True)

    background_delivery_enabled: bool = False
    number_of_days_to_back_fill: int = MAX_BACKFILL_DAYS
    logs_enabled: bool = True
    mode: DataPushMode = DataPushMode.AUTOMATIC

    @field_validator("number_of_days_to_back_fill")
    @classmethod
    def _cap_backfill(cls, value: int) -> int:
        return max(0, min(value, MAX_BACKFILL_DAYS))


# ---------- Permission outcome ----------


@dataclass(frozen=True)
class PermissionSuccess:
    pass


@dataclass(frozen=True)
class PermissionFailure:
    reason: str


@dataclass(frozen=True)
class HealthKitNotAvailable:
    pass


PermissionOutcome = Union[PermissionSuccess, PermissionFailure, HealthKitNotAvailable]


# ---------- Background delivery ----------


@dataclass(frozen=True)
class BackgroundDeliveryPayload:
    """A change notification for one resource.

    ``completion`` must be called once the change has been handled, or the
    platform backs off and eventually stops delivering notifications.
    """

    resource: VitalResource
    completion: Callable[[], None]


# ---------- Writes ----------


@dataclass(frozen=True)
class DataInput:
    """A value written back to the platform store."""

    resource: WritableVitalResource
    value: float
    unit: str

    @classmethod
    def water(cls, milliliters: float) -> DataInput:
        return cls(WritableVitalResource.WATER, milliliters, "mL")

    @classmethod
    def caffeine(cls, grams: float) -> DataInput:
        return cls(WritableVitalResource.CAFFEINE, grams, "g")

    @classmethod
    def mindful_session(cls) -> DataInput:
        return cls(WritableVitalResource.MINDFUL_SESSION, 0.0, "")
