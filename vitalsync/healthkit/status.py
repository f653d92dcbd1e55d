"""Sync status events and the stream hosts observe them on."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Union

from vitalsync.core.payloads import ProcessedResourceData
from vitalsync.healthkit.resources import VitalResource


@dataclass(frozen=True)
class Syncing:
    resource: VitalResource


@dataclass(frozen=True)
class NothingToSync:
    resource: VitalResource


@dataclass(frozen=True)
class SuccessSyncing:
    resource: VitalResource
    data: ProcessedResourceData


@dataclass(frozen=True)
class FailedSyncing:
    resource: VitalResource
    # Human-readable description only; the exception object stays internal
    error: str


@dataclass(frozen=True)
class SyncingCompleted:
    pass


SyncStatus = Union[Syncing, NothingToSync, SuccessSyncing, FailedSyncing, SyncingCompleted]


class StatusSubscription:
    """One observer's view of the status stream.

    Events sent after ``subscribe()`` returned are buffered until read.

    Usage::

        with client.status.subscribe() as statuses:
            async for status in statuses:
                ...
    """

    def __init__(self, stream: StatusStream) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[SyncStatus] = asyncio.Queue()

    def _push(self, status: SyncStatus) -> None:
        self._queue.put_nowait(status)

    def __aiter__(self) -> StatusSubscription:
        return self

    async def __anext__(self) -> SyncStatus:
        return await self._queue.get()

    def drain(self) -> list[SyncStatus]:
        """Return every buffered event without waiting."""
        events: list[SyncStatus] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        self._stream._unsubscribe(self)

    def __enter__(self) -> StatusSubscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class StatusStream:
    """Fan-out of SyncStatus events to every current subscriber.

    Sending never blocks; events are not replayed to late subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: set[StatusSubscription] = set()

    def subscribe(self) -> StatusSubscription:
        subscription = StatusSubscription(self)
        self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: StatusSubscription) -> None:
        self._subscribers.discard(subscription)

    def send(self, status: SyncStatus) -> None:
        for subscription in list(self._subscribers):
            subscription._push(status)
