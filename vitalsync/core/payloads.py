"""Canonical payloads pushed to the Vital API.

Every resource read from the platform store is shaped into one of two
families before upload:

    SummaryData     — profile, body, activity, sleep, workout patches
    TimeSeriesData  — raw samples (heart rate, glucose, blood pressure, ...)

Each push is tagged with a sync stage so the backend can tell a bulk
historical backfill apart from an incremental daily update.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Union

from pydantic import Field

from vitalsync.core.models import VitalBase


class ProviderSlug(str, Enum):
    APPLE_HEALTH_KIT = "apple_health_kit"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------


class QuantitySample(VitalBase):
    """One instantaneous or interval reading from the platform store."""

    id: str | None = None
    value: float
    start_date: datetime
    end_date: datetime
    source_bundle: str | None = None
    product_type: str | None = None
    type: str | None = None
    unit: str
    metadata: dict[str, str] = Field(default_factory=dict)


class BloodPressureSample(VitalBase):
    systolic: QuantitySample
    diastolic: QuantitySample
    pulse: QuantitySample | None = None


# ---------------------------------------------------------------------------
# Summary patches
# ---------------------------------------------------------------------------


class ProfilePatch(VitalBase):
    biological_sex: str | None = None
    date_of_birth: date | None = None
    height_cm: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.biological_sex is None and self.date_of_birth is None and self.height_cm is None


class BodyPatch(VitalBase):
    body_mass: list[QuantitySample] = Field(default_factory=list)
    body_fat_percentage: list[QuantitySample] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.body_mass and not self.body_fat_percentage


class Activity(VitalBase):
    active_energy_burned: list[QuantitySample] = Field(default_factory=list)
    basal_energy_burned: list[QuantitySample] = Field(default_factory=list)
    steps: list[QuantitySample] = Field(default_factory=list)
    floors_climbed: list[QuantitySample] = Field(default_factory=list)
    distance_walking_running: list[QuantitySample] = Field(default_factory=list)
    vo2_max: list[QuantitySample] = Field(default_factory=list)
    exercise_time: list[QuantitySample] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.active_energy_burned,
                self.basal_energy_burned,
                self.steps,
                self.floors_climbed,
                self.distance_walking_running,
                self.vo2_max,
                self.exercise_time,
            )
        )


class ActivityPatch(VitalBase):
    activities: list[Activity] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return all(activity.is_empty for activity in self.activities)


class Workout(VitalBase):
    id: str
    start_date: datetime
    end_date: datetime
    source_bundle: str | None = None
    product_type: str | None = None
    sport: str
    calories: float
    distance: float
    heart_rate: list[QuantitySample] = Field(default_factory=list)
    respiratory_rate: list[QuantitySample] = Field(default_factory=list)


class WorkoutPatch(VitalBase):
    workouts: list[Workout] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.workouts


class SleepStages(VitalBase):
    awake: list[QuantitySample] = Field(default_factory=list)
    asleep: list[QuantitySample] = Field(default_factory=list)
    core: list[QuantitySample] = Field(default_factory=list)
    deep: list[QuantitySample] = Field(default_factory=list)
    rem: list[QuantitySample] = Field(default_factory=list)
    in_bed: list[QuantitySample] = Field(default_factory=list)


class Sleep(VitalBase):
    id: str
    start_date: datetime
    end_date: datetime
    source_bundle: str | None = None
    product_type: str | None = None
    heart_rate: list[QuantitySample] = Field(default_factory=list)
    resting_heart_rate: list[QuantitySample] = Field(default_factory=list)
    heart_rate_variability: list[QuantitySample] = Field(default_factory=list)
    oxygen_saturation: list[QuantitySample] = Field(default_factory=list)
    respiratory_rate: list[QuantitySample] = Field(default_factory=list)
    sleep_stages: SleepStages = Field(default_factory=SleepStages)


class SleepPatch(VitalBase):
    sleep: list[Sleep] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.sleep


SummaryPatch = Union[ProfilePatch, BodyPatch, ActivityPatch, WorkoutPatch, SleepPatch]


# ---------------------------------------------------------------------------
# Processed resource data
# ---------------------------------------------------------------------------


class SummaryType(str, Enum):
    PROFILE = "profile"
    BODY = "body"
    ACTIVITY = "activity"
    SLEEP = "sleep"
    WORKOUT = "workouts"


class TimeSeriesType(str, Enum):
    HEART_RATE = "heartrate"
    HEART_RATE_VARIABILITY = "hrv"
    GLUCOSE = "glucose"
    BLOOD_PRESSURE = "blood_pressure"
    WATER = "water"
    CAFFEINE = "caffeine"
    MINDFUL_SESSION = "mindfulness_minutes"


class SummaryData(VitalBase):
    type: SummaryType
    patch: SummaryPatch

    @property
    def should_skip_post(self) -> bool:
        return self.patch.is_empty

    def endpoint(self, api_version: str, user_id: str) -> str:
        return f"/{api_version}/summary/{self.type.value}/{user_id}"

    def body(self) -> Any:
        return self.patch.model_dump(mode="json")


class TimeSeriesData(VitalBase):
    type: TimeSeriesType
    samples: list[QuantitySample] | list[BloodPressureSample] = Field(default_factory=list)

    @property
    def should_skip_post(self) -> bool:
        return not self.samples

    def endpoint(self, api_version: str, user_id: str) -> str:
        return f"/{api_version}/timeseries/{user_id}/{self.type.value}"

    def body(self) -> Any:
        return [sample.model_dump(mode="json") for sample in self.samples]


ProcessedResourceData = Union[SummaryData, TimeSeriesData]


# ---------------------------------------------------------------------------
# Sync stage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DailyStage:
    name = "daily"

    @property
    def is_daily(self) -> bool:
        return True

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class HistoricalStage:
    start: datetime
    end: datetime
    name = "historical"

    @property
    def is_daily(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"historical({self.start.isoformat()} → {self.end.isoformat()})"


Stage = Union[DailyStage, HistoricalStage]


def tagged_payload(
    data: ProcessedResourceData,
    stage: Stage,
    provider: ProviderSlug,
    time_zone: str,
) -> dict[str, Any]:
    """Build the JSON body for one push."""
    start = stage.start.isoformat() if isinstance(stage, HistoricalStage) else None
    end = stage.end.isoformat() if isinstance(stage, HistoricalStage) else None
    return {
        "stage": stage.name,
        "start_date": start,
        "end_date": end,
        "time_zone": time_zone,
        "provider": provider.value,
        "data": data.body(),
    }
