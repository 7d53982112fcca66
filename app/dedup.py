"""Message id dedup caches for at-least-once webhook delivery."""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable


class DedupCache:
    """In-process message id cache with a rolling expiry window.

    Expired entries are swept on every lookup; there is no background timer.
    Entries are kept in insertion order, which with a fixed TTL is also expiry
    order, so the sweep stops at the first live entry.

    ``is_duplicate`` is a coroutine like the Redis variant, but its body
    never awaits, so it runs without interleaving from other webhook tasks.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._expires: OrderedDict[str, float] = OrderedDict()

    async def is_duplicate(self, message_id: str | None) -> bool:
        """Return True if the id was seen inside the window, else record it."""
        if not message_id:
            return False

        now = self._clock()
        self._sweep(now)

        if message_id in self._expires:
            return True

        if self.max_entries is not None:
            while len(self._expires) >= self.max_entries:
                self._expires.popitem(last=False)
        self._expires[message_id] = now + self.ttl_seconds
        return False

    def _sweep(self, now: float) -> None:
        while self._expires:
            message_id, expires_at = next(iter(self._expires.items()))
            if expires_at > now:
                break
            del self._expires[message_id]

    def __len__(self) -> int:
        return len(self._expires)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._expires

    def clear(self) -> None:
        self._expires.clear()


class RedisDedupCache:
    """Message id cache shared across processes, on a ``redis.asyncio`` client.

    ``SET NX`` is atomic on the server, so concurrent deliveries of one id
    in different replicas see exactly one first sighting.
    """

    def __init__(self, redis_client: Any, ttl_seconds: int = 300, prefix: str = "dedup") -> None:
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    async def is_duplicate(self, message_id: str | None) -> bool:
        """Atomically record the id; True when it was already present."""
        if not message_id:
            return False
        created = await self.redis.set(f"{self.prefix}:{message_id}", "1", nx=True, ex=self.ttl_seconds)
        return not created

    async def close(self) -> None:
        await self.redis.aclose()
