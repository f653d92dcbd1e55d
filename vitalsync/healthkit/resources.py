"""Vital resources: the logical health-data categories synced as a unit."""

from __future__ import annotations

from enum import Enum


class VitalResource(str, Enum):
    PROFILE = "profile"
    BODY = "body"
    SLEEP = "sleep"
    ACTIVITY = "activity"
    WORKOUT = "workout"
    GLUCOSE = "vitals.glucose"
    BLOOD_PRESSURE = "vitals.blood_pressure"
    HEART_RATE = "vitals.heart_rate"
    HEART_RATE_VARIABILITY = "vitals.hrv"
    MINDFUL_SESSION = "vitals.mindful_session"
    WATER = "nutrition.water"
    CAFFEINE = "nutrition.caffeine"

    @property
    def log_description(self) -> str:
        return self.value

    @property
    def is_historical(self) -> bool:
        """False for resources without a time dimension (e.g. profile)."""
        from vitalsync.healthkit.config_loader import get_resource_map

        return get_resource_map().resource(self).historical


class WritableVitalResource(str, Enum):
    WATER = "water"
    CAFFEINE = "caffeine"
    MINDFUL_SESSION = "mindful_session"

    @property
    def health_kit_type(self) -> str:
        from vitalsync.healthkit.config_loader import get_resource_map

        return get_resource_map().writable[self]


def to_health_kit_types(resource: VitalResource) -> frozenset[str]:
    """Every data type read when syncing ``resource``."""
    from vitalsync.healthkit.config_loader import get_resource_map

    return get_resource_map().resource(resource).types


def sample_types_to_trigger_sync(resource: VitalResource) -> frozenset[str]:
    """Data types whose changes should trigger a background sync of ``resource``."""
    from vitalsync.healthkit.config_loader import get_resource_map

    return get_resource_map().resource(resource).triggers
