"""Shape processed data before upload.

High-frequency samples that only matter as a trend (heart rate during a
workout or a night of sleep, HRV, SpO2, respiratory rate) are averaged into
one sample per calendar hour.  Buckets follow the UTC calendar so the same
readings always land in the same bucket regardless of the device time zone.
Everything else passes through untouched.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from itertools import groupby
from statistics import fmean

from vitalsync.core.payloads import (
    ProcessedResourceData,
    QuantitySample,
    SleepPatch,
    SummaryData,
    TimeSeriesData,
    TimeSeriesType,
    WorkoutPatch,
)

logger = logging.getLogger("vitalsync.healthkit.transform")


def _hour_bucket(sample: QuantitySample) -> datetime:
    start = sample.start_date
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return start.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def average(samples: list[QuantitySample]) -> list[QuantitySample]:
    """Collapse ``samples`` into one averaged sample per UTC calendar hour.

    Each averaged sample spans from the earliest start to the latest end of
    the samples in its hour and keeps the unit, type and source of the first
    one.  Output is ordered by hour.
    """
    if not samples:
        return []

    ordered = sorted(samples, key=_hour_bucket)
    averaged: list[QuantitySample] = []
    for _, group in groupby(ordered, key=_hour_bucket):
        bucket = list(group)
        first = bucket[0]
        averaged.append(
            QuantitySample(
                value=fmean(s.value for s in bucket),
                start_date=min(s.start_date for s in bucket),
                end_date=max(s.end_date for s in bucket),
                source_bundle=first.source_bundle,
                product_type=first.product_type,
                type=first.type,
                unit=first.unit,
            )
        )
    return averaged


def transform(data: ProcessedResourceData) -> ProcessedResourceData:
    """Return the upload form of ``data``.  The input is not modified."""
    if isinstance(data, SummaryData):
        patch = data.patch
        if isinstance(patch, WorkoutPatch):
            workouts = [
                workout.model_copy(
                    update={
                        "heart_rate": average(workout.heart_rate),
                        "respiratory_rate": average(workout.respiratory_rate),
                    }
                )
                for workout in patch.workouts
            ]
            return data.model_copy(update={"patch": WorkoutPatch(workouts=workouts)})

        if isinstance(patch, SleepPatch):
            sleep = [
                entry.model_copy(
                    update={
                        "heart_rate": average(entry.heart_rate),
                        "resting_heart_rate": average(entry.resting_heart_rate),
                        "heart_rate_variability": average(entry.heart_rate_variability),
                        "oxygen_saturation": average(entry.oxygen_saturation),
                        "respiratory_rate": average(entry.respiratory_rate),
                    }
                )
                for entry in patch.sleep
            ]
            return data.model_copy(update={"patch": SleepPatch(sleep=sleep)})

        return data

    if isinstance(data, TimeSeriesData) and data.type is TimeSeriesType.HEART_RATE:
        samples = average(data.samples)  # type: ignore[arg-type]
        logger.debug("Averaged %d heart rate samples into %d", len(data.samples), len(samples))
        return data.model_copy(update={"samples": samples})

    return data
