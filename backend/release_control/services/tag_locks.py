from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class TagLockRegistry:
    """One ``asyncio.Lock`` per release tag.

    Mutations for a single tag run one at a time; different tags never wait
    on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, tag: str) -> asyncio.Lock:
        lock = self._locks.get(tag)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tag] = lock
        return lock

    @asynccontextmanager
    async def hold(self, tag: str) -> AsyncIterator[None]:
        async with self.lock_for(tag):
            yield
