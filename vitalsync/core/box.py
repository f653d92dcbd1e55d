"""Single-slot container that callers can await until a value is set."""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

T = TypeVar("T")


class ProtectedBox(Generic[T]):
    """Holds at most one value; ``get()`` suspends until one is present.

    There is no timeout: awaiting an empty box that is never filled suspends
    forever.  ``clean()`` empties the box again (used on reconfiguration and
    tear-down), after which new ``get()`` calls suspend until the next
    ``set()``.

    Usage::

        box: ProtectedBox[Configuration] = ProtectedBox()
        ...
        configuration = await box.get()
    """

    def __init__(self, value: T | None = None) -> None:
        self._value: T | None = value
        self._ready = asyncio.Event()
        if value is not None:
            self._ready.set()

    async def get(self) -> T:
        while self._value is None:
            await self._ready.wait()
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._ready.set()

    def clean(self) -> None:
        self._value = None
        self._ready.clear()

    def is_nil(self) -> bool:
        return self._value is None

    @property
    def value(self) -> T | None:
        """Current value without waiting."""
        return self._value
