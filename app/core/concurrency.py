"""Bounded concurrency and timeout helpers for long-running cluster work."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import TypeVar

from app.core.errors import ClusterTimeout, ProvisioningBusy

T = TypeVar("T")


class ProvisionSlots:
    """Counting semaphore that rejects instead of queueing.

    Claims never wait: if the ceiling is reached, ``claim()`` raises
    ``ProvisioningBusy`` straight away.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._active = 0

    @property
    def in_use(self) -> int:
        return self._active

    @asynccontextmanager
    async def claim(self) -> AsyncIterator[None]:
        # No await between the check and the acquire, so the pair is atomic
        # with respect to other coroutines.
        if self._semaphore.locked():
            raise ProvisioningBusy(self.limit)
        await self._semaphore.acquire()
        self._active += 1
        try:
            yield
        finally:
            self._active -= 1
            self._semaphore.release()


async def run_with_timeout(aw: Awaitable[T], seconds: float, message: str) -> T:
    """Race ``aw`` against a deadline.

    On expiry the result is discarded and ``ClusterTimeout(message)`` is
    raised. Work already handed to a thread or subprocess keeps running.
    """
    try:
        return await asyncio.wait_for(aw, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise ClusterTimeout(message) from exc
