# extengine/core/mutex.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

__all__ = ["KeyedMutex", "ScopedLocks"]

logger = logging.getLogger(__name__)

T = TypeVar("T")



class KeyedMutex:
    """
    Per-key FIFO serialization for coroutines.

    Each key holds the tail of a chain of futures. `run(key, fn)` waits for the
    current tail, then runs `fn()`. When the last holder finishes and nobody
    queued behind it, the key is dropped. Failures in `fn` reach its own caller
    only; later waiters still run.
    """
    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future[None]] = {}

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        previous = self._tails.get(key)
        done: asyncio.Future[None] = loop.create_future()
        self._tails[key] = done

        try:
            if previous is not None:
                # shield so a cancelled waiter does not cancel the holder's future
                await asyncio.shield(previous)
            return await fn()
        finally:
            if previous is not None and not previous.done():
                # Cancelled while queued: hand the slot back to the holder ahead
                previous.add_done_callback(lambda _f: done.done() or done.set_result(None))
                if self._tails.get(key) is done:
                    self._tails[key] = previous
            else:
                if not done.done():
                    done.set_result(None)
                if self._tails.get(key) is done:
                    del self._tails[key]

    def activeCount(self) -> int:
        return len(self._tails)

    def isLocked(self, key: str) -> bool:
        return key in self._tails



class ScopedLocks:
    """Named lock scopes used by the lifecycle coordinator."""
    GLOBAL_INSTALL = "global:install"
    GLOBAL_UPDATE = "global:update"

    def __init__(self, mutex: KeyedMutex) -> None:
        self.mutex = mutex

    @staticmethod
    def extensionKey(extId: str) -> str:
        return f"extension:{extId}"

    @staticmethod
    def sourceKey(source: Any) -> str:
        return f"install:{source}"

    async def extension(self, extId: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.mutex.run(self.extensionKey(extId), fn)

    async def install(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.mutex.run(self.GLOBAL_INSTALL, fn)

    async def update(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.mutex.run(self.GLOBAL_UPDATE, fn)

    async def source(self, source: Any, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.mutex.run(self.sourceKey(source), fn)
