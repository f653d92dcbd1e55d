"""Merge OS change notifications into one async stream.

Usage::

    observer = ChangeObserver(store)
    async with aclosing(observer.observe(types_by_resource)) as payloads:
        async for payload in payloads:
            ...
            payload.completion()

Closing the iterator, or cancelling the task iterating it, stops every
underlying observer query before the iterator finishes.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import AsyncIterator, Callable, Mapping

from vitalsync.healthkit.models import BackgroundDeliveryPayload
from vitalsync.healthkit.resources import VitalResource
from vitalsync.healthkit.store import HealthKitStore, ObserverHandler, ObserverQuery

logger = logging.getLogger("vitalsync.healthkit.observer")


class ChangeObserver:
    def __init__(self, store: HealthKitStore) -> None:
        self._store = store

    def _queries(
        self,
        types_by_resource: Mapping[VitalResource, frozenset[str]],
        make_handler: Callable[[VitalResource, frozenset[str]], ObserverHandler],
    ) -> list[ObserverQuery]:
        bundled = self._store.supports_bundled_queries
        queries: list[ObserverQuery] = []
        for resource, sample_types in types_by_resource.items():
            if not sample_types:
                continue
            groups = [frozenset(sample_types)] if bundled else [frozenset({t}) for t in sorted(sample_types)]
            for group in groups:
                queries.append(
                    ObserverQuery(
                        resource=resource,
                        sample_types=group,
                        handler=make_handler(resource, group),
                        bundled=bundled,
                    )
                )
        return queries

    async def observe(
        self, types_by_resource: Mapping[VitalResource, frozenset[str]]
    ) -> AsyncIterator[BackgroundDeliveryPayload]:
        """Yield a payload every time a watched data type changes.

        Args:
            types_by_resource: Data types to watch, grouped by the resource a
                               change should sync.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[BackgroundDeliveryPayload] = asyncio.Queue()

        def make_handler(resource: VitalResource, sample_types: frozenset[str]) -> ObserverHandler:
            failed = False
            # Bindings may call the handler from several threads at once
            lock = threading.Lock()

            def handler(completion: Callable[[], None], error: BaseException | None) -> None:
                nonlocal failed
                with lock:
                    if failed:
                        return
                    if error is not None:
                        # This watch is dead from now on; the others keep going
                        failed = True
                if error is not None:
                    logger.error(
                        "Observer for %s (%s) failed: %s",
                        resource.log_description,
                        ", ".join(sorted(sample_types)),
                        error,
                    )
                    return
                payload = BackgroundDeliveryPayload(resource=resource, completion=completion)
                loop.call_soon_threadsafe(queue.put_nowait, payload)

            return handler

        queries = self._queries(types_by_resource, make_handler)
        started: list[ObserverQuery] = []

        try:
            for query in queries:
                try:
                    self._store.execute(query)
                except Exception as exc:
                    logger.error(
                        "Could not start observer for %s: %s", query.resource.log_description, exc
                    )
                    continue
                started.append(query)

            logger.info(
                "Observing %d resource(s) with %d quer%s",
                len(types_by_resource),
                len(started),
                "y" if len(started) == 1 else "ies",
            )

            while True:
                yield await queue.get()
        finally:
            for query in started:
                self._store.stop(query)
            logger.info("Stopped %d observer quer%s", len(started), "y" if len(started) == 1 else "ies")
