from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    fetched_at: float


class ResourceCache:
    """TTL memoization of bridge GET responses, keyed by request path.

    Without ``single_flight`` two concurrent misses on the same key both call
    their fetcher; the later result wins. Reads are idempotent so this only
    costs an extra request against the bridge.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        single_flight: bool = False,
    ) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._single_flight = single_flight
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def peek(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return (self._clock() - entry.fetched_at) < self._ttl

    async def get(self, key: str, fetcher: Fetcher) -> Any:
        entry = self.peek(key)
        if entry is not None:
            logger.debug("[Cache] Hit for %s", key)
            return entry.value

        if not self._single_flight:
            logger.debug("[Cache] Miss for %s", key)
            return await self._fetch_and_store(key, fetcher)

        pending = self._inflight.get(key)
        if pending is not None:
            logger.debug("[Cache] Joining in-flight fetch for %s", key)
            return await asyncio.shield(pending)

        logger.debug("[Cache] Miss for %s", key)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await self._fetch_and_store(key, fetcher)
        except BaseException as exc:
            if isinstance(exc, Exception):
                future.set_exception(exc)
                # Waiters re-raise it; mark retrieved so an unjoined fetch stays quiet.
                future.exception()
            else:
                future.cancel()
            raise
        else:
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

    async def _fetch_and_store(self, key: str, fetcher: Fetcher) -> Any:
        value = await fetcher()
        self._entries[key] = CacheEntry(key=key, value=value, fetched_at=self._clock())
        return value

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
            return
        self._entries.pop(key, None)
