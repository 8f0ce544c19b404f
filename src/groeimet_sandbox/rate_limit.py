# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from loguru import logger


@dataclass
class RateLimitRecord:
    window_start: float
    count: int


class RateLimitStore(Protocol):
    """Storage backend for per-identity rate limit windows.

    The default store lives in process memory. A shared store (e.g. Redis) can
    be injected so that several service instances enforce a common quota.
    """

    async def get(self, identity: str) -> RateLimitRecord | None: ...

    async def increment(self, identity: str) -> RateLimitRecord: ...

    async def reset(self, identity: str, window_start: float) -> RateLimitRecord: ...


class InMemoryRateLimitStore:
    """Volatile store; records are lost when the process restarts."""

    def __init__(self) -> None:
        self._records: dict[str, RateLimitRecord] = {}

    async def get(self, identity: str) -> RateLimitRecord | None:
        return self._records.get(identity)

    async def increment(self, identity: str) -> RateLimitRecord:
        record = self._records[identity]
        record.count += 1
        return record

    async def reset(self, identity: str, window_start: float) -> RateLimitRecord:
        record = RateLimitRecord(window_start=window_start, count=1)
        self._records[identity] = record
        return record


class RateLimiter:
    """Fixed-quota admission control per identity.

    A window opens on an identity's first request and lasts `window_seconds`.
    Within it at most `max_requests` calls are admitted; the first call after it
    expires opens a new window.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store: RateLimitStore = store or InMemoryRateLimitStore()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def check(self, identity: str) -> bool:
        """Admit or reject one request from `identity`.

        The check and the increment happen under one lock so that concurrent
        requests from the same identity cannot both take the last slot.
        """
        async with self._lock:
            now = self._clock()
            record = await self.store.get(identity)

            if record is None or now > record.window_start + self.window_seconds:
                await self.store.reset(identity, now)
                return True

            if record.count >= self.max_requests:
                logger.info(f"Rate limit reached for {identity} ({record.count}/{self.max_requests})")
                return False

            await self.store.increment(identity)
            return True
