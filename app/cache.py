"""
In-memory caches for upstream metadata and prepared PCM audio.
Metadata expires by TTL and by LRU pressure; prepared audio is LRU only.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

from cachetools import LRUCache, TTLCache

from app.config import (
    AUDIO_CACHE_SIZE,
    COALESCE_UPSTREAM_REQUESTS,
    METADATA_CACHE_SIZE,
    METADATA_CACHE_TTL,
)

logger = logging.getLogger(__name__)

_MISSING = object()


class MetadataCache:
    """Read-through cache of upstream JSON keyed by request path.

    On a miss the injected ``fetch`` coroutine is called with the key and the
    result is stored with a fresh TTL. Failed fetches store nothing.

    With ``coalesce`` enabled, concurrent misses on the same key share one
    in-flight upstream call instead of each issuing their own.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[Any]],
        maxsize: int = METADATA_CACHE_SIZE,
        ttl: float = METADATA_CACHE_TTL,
        timer: Callable[[], float] = time.monotonic,
        coalesce: bool = COALESCE_UPSTREAM_REQUESTS,
    ):
        self._fetch = fetch
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._inflight: Dict[str, asyncio.Future] = {}
        self.coalesce = coalesce

    @property
    def maxsize(self) -> int:
        return self._entries.maxsize

    def get(self, key: str) -> Optional[Any]:
        """Return the live cached value for ``key`` or None."""
        value = self._entries.get(key, _MISSING)
        return None if value is _MISSING else value

    def __contains__(self, key: str) -> bool:
        return self._entries.get(key, _MISSING) is not _MISSING

    async def get_or_fetch(self, key: str) -> Any:
        value = self._entries.get(key, _MISSING)
        if value is not _MISSING:
            return value

        if not self.coalesce:
            return await self._fetch_and_store(key)

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(key))
            self._inflight[key] = pending
            pending.add_done_callback(lambda t: self._fetch_done(key, t))
        else:
            logger.debug(f"Joining in-flight fetch for {key}")
        # shield: one cancelled caller must not cancel the shared fetch
        return await asyncio.shield(pending)

    def _fetch_done(self, key: str, task: asyncio.Future):
        self._inflight.pop(key, None)
        # mark the error retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _fetch_and_store(self, key: str) -> Any:
        logger.info(f"Metadata cache miss: {key}")
        value = await self._fetch(key)
        self._entries[key] = value
        return value

    def size(self) -> int:
        """Number of unexpired entries."""
        self._entries.expire()
        return len(self._entries)

    def clear(self):
        self._entries.clear()


class WorkingAudioCache:
    """Prepared PCM buffers keyed by media id, least-recently-used eviction."""

    def __init__(self, maxsize: int = AUDIO_CACHE_SIZE):
        self._entries: LRUCache = LRUCache(maxsize=maxsize)

    @property
    def maxsize(self) -> int:
        return self._entries.maxsize

    def __contains__(self, media_id: str) -> bool:
        return media_id in self._entries

    def get(self, media_id: str) -> Optional[bytes]:
        return self._entries.get(media_id)

    def put(self, media_id: str, pcm: bytes):
        self._entries[media_id] = pcm
        logger.info(f"Cached PCM for {media_id} ({len(pcm) / 1024 / 1024:.2f} MB)")

    def size(self) -> int:
        return len(self._entries)

    def clear(self):
        self._entries.clear()
