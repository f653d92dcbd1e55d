"""Contract for the platform health-store binding.

The native HealthKit bridge lives outside this package.  It implements
``HealthKitStore`` and hands an instance to ``VitalHealthKitClient``.  Tests
use an in-memory fake of the same interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable

from vitalsync.core.payloads import ProcessedResourceData
from vitalsync.healthkit.models import DataInput
from vitalsync.healthkit.resources import VitalResource, WritableVitalResource
from vitalsync.healthkit.storage import StoredAnchor, VitalHealthKitStorage


class UpdateFrequency(str, Enum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class AuthorizationError(Exception):
    """The platform refused to show or record the permission request."""


#: Called by the binding when watched data changes.  ``completion`` must be
#: invoked once the change is handled; ``error`` is set when the watch failed.
ObserverHandler = Callable[[Callable[[], None], "BaseException | None"], None]


@dataclass(eq=False)
class ObserverQuery:
    """One OS-level watch over ``sample_types``.

    A bundled query watches every type of a resource at once; otherwise each
    data type gets its own query.  The binding may call ``handler`` from any
    thread.
    """

    resource: VitalResource
    sample_types: frozenset[str]
    handler: ObserverHandler
    bundled: bool = False
    # Binding-specific handle (e.g. the native query object)
    native: object | None = field(default=None, repr=False)


class HealthKitStore(ABC):
    """Read, write and observe access to the platform health database."""

    #: True when the platform accepts one query over several data types.
    supports_bundled_queries: bool = False

    @abstractmethod
    def is_health_data_available(self) -> bool:
        """False on devices without a health store."""

    @abstractmethod
    async def request_read_write_authorization(
        self,
        read: Iterable[VitalResource],
        write: Iterable[WritableVitalResource],
    ) -> None:
        """Show the permission prompt.

        Raises:
            AuthorizationError: If the platform rejects the request.
        """

    @abstractmethod
    def has_asked_for_permission(self, resource: VitalResource) -> bool:
        """True once the user has been prompted for ``resource``."""

    @abstractmethod
    def permitted_resources(self) -> list[VitalResource]:
        """Resources the user has been asked about, in a stable order."""

    @abstractmethod
    async def read_resource(
        self,
        resource: VitalResource,
        start: datetime,
        end: datetime,
        storage: VitalHealthKitStorage,
    ) -> tuple[ProcessedResourceData | None, list[StoredAnchor]]:
        """Read ``resource`` between ``start`` and ``end``.

        Existing anchors in ``storage`` are used to skip records already seen.
        The binding never writes to ``storage``; it returns the anchors to
        commit once the data has been handled.

        Returns:
            The processed payload (None when nothing was found) and the
            anchors to persist.
        """

    @abstractmethod
    async def enable_background_delivery(
        self, sample_type: str, frequency: UpdateFrequency
    ) -> None:
        """Ask the OS to wake the app when ``sample_type`` changes."""

    @abstractmethod
    async def disable_background_delivery(self) -> None:
        """Stop every background delivery registration."""

    @abstractmethod
    def execute(self, query: ObserverQuery) -> None:
        """Start an observer query."""

    @abstractmethod
    def stop(self, query: ObserverQuery) -> None:
        """Stop an observer query.  After return ``handler`` is not called again."""

    @abstractmethod
    async def write_input(self, data_input: DataInput, start: datetime, end: datetime) -> None:
        """Save ``data_input`` covering ``[start, end]``."""
