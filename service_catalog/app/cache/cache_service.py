"""
Best-effort cache with a Redis primary tier and an in-process fallback tier.
"""

import asyncio
import json
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from shared.errors import CacheTransportError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL_SECONDS = 60

# Sweep expired memory entries once the map grows past this many keys
MEMORY_SWEEP_THRESHOLD = 10000

# Errors that mean the remote tier itself is gone, not just one command failing
CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)

_GLOB_SPECIAL = "\\*?[]"


@dataclass
class CacheEntry:
    """Memory-tier entry. ``value`` holds the JSON-encoded payload."""

    key: str
    value: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def escape_glob(text: str) -> str:
    """Escape Redis glob metacharacters so ``text`` matches literally."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in text)


class CacheService:
    """Key/value cache that degrades to process memory when Redis is unavailable.

    Callers only see ``get``/``set``/``invalidate``/``clear``; none of them
    raise. Remote failures are logged and absorbed:

    - a failed remote read returns ``None`` and never consults the memory tier;
    - a failed remote write is repeated against the memory tier;
    - a connection-level failure switches the service to the memory tier for
      the rest of the process lifetime (there is no reconnection).
    """

    def __init__(
        self,
        redis_url: Optional[str],
        default_ttl: int = DEFAULT_TTL_SECONDS,
        *,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
        connect_timeout: float = 2.0,
        client: Optional[redis.Redis] = None,
        memory_sweep_threshold: int = MEMORY_SWEEP_THRESHOLD,
    ):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.connect_timeout = connect_timeout
        self.memory_sweep_threshold = memory_sweep_threshold
        self.logger = get_logger("catalog.cache")

        self.primary_available = False
        self._client: Optional[redis.Redis] = client
        self._connect_task: Optional[asyncio.Task] = None
        self._memory: Dict[str, CacheEntry] = {}
        self._clock = clock

        self._hits = 0
        self._misses = 0

    # Lifecycle

    def start(self) -> None:
        """Fire the remote connection attempt without waiting for it."""
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self.connect())

    async def connect(self) -> bool:
        """Try to reach Redis once; returns whether the primary tier is usable."""
        if self._client is None and not self.redis_url:
            self.logger.info("Redis not configured, using memory cache")
            return False

        try:
            if self._client is None:
                self._client = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self.connect_timeout,
                    socket_timeout=self.connect_timeout,
                )
            await self._client.ping()
        except (RedisError, OSError, ValueError) as e:
            self.primary_available = False
            self.logger.warning("Redis not available, using memory cache", error=str(e))
            return False

        self.primary_available = True
        self.logger.info("Redis connected", redis_url=self.redis_url)
        return True

    async def stop(self) -> None:
        """Cancel a pending connection attempt and close the client."""
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        self._connect_task = None

        if self._client is not None:
            try:
                await self._client.aclose()
            except (RedisError, OSError) as e:
                self.logger.warning("Error closing Redis client", error=str(e))
            self._client = None
        self.primary_available = False

    @property
    def tier(self) -> str:
        return "redis" if self._primary_ready() else "memory"

    # Public operations

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value for ``key`` or ``None``."""
        if not self._primary_ready():
            return self._memory_get(key)

        try:
            payload = await self._remote("get", lambda: self._client.get(key))
        except CacheTransportError as e:
            self._log_transport_error(e, cache_key=key)
            self._record_miss("redis")
            return None

        if payload is None:
            self._record_miss("redis")
            return None

        try:
            value = json.loads(payload)
        except (TypeError, ValueError) as e:
            self.logger.warning("Cache payload could not be decoded", cache_key=key, error=str(e))
            self._record_miss("redis")
            return None

        self._record_hit("redis")
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds`` (default TTL when omitted)."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            self.logger.warning("Ignoring cache write with non-positive TTL", cache_key=key, ttl=ttl)
            return

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            self.logger.warning("Cache value could not be encoded", cache_key=key, error=str(e))
            return

        if self._primary_ready():
            try:
                await self._remote("set", lambda: self._client.setex(key, math.ceil(ttl), payload))
                return
            except CacheTransportError as e:
                self._log_transport_error(e, cache_key=key)
                self._count("cache_fallbacks_total", operation="set")

        self._memory_set(key, payload, ttl)

    async def invalidate(self, key: str) -> None:
        """Delete ``key``; a trailing ``*`` deletes every key with that prefix."""
        if key.endswith("*"):
            prefix = key[:-1]
            if self._primary_ready():
                try:
                    keys = await self._remote(
                        "invalidate", lambda: self._client.keys(escape_glob(prefix) + "*")
                    )
                    if keys:
                        await self._remote("invalidate", lambda: self._client.delete(*keys))
                    self.logger.debug("Invalidated remote keys", prefix=prefix, count=len(keys or []))
                except CacheTransportError as e:
                    self._log_transport_error(e, cache_key=key)

            # Writes may have landed in memory during a remote hiccup
            removed = self._memory_purge_prefix(prefix)
            if removed:
                self.logger.debug("Invalidated memory keys", prefix=prefix, count=removed)
            return

        if self._primary_ready():
            try:
                await self._remote("invalidate", lambda: self._client.delete(key))
            except CacheTransportError as e:
                self._log_transport_error(e, cache_key=key)
        self._memory.pop(key, None)

    async def clear(self) -> None:
        """Remove every entry. Flushes the whole Redis database in use."""
        if self._primary_ready():
            try:
                await self._remote("clear", lambda: self._client.flushdb())
            except CacheTransportError as e:
                self._log_transport_error(e)
        self._memory.clear()

    # Maintenance

    def purge_expired(self) -> int:
        """Drop expired memory entries; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._memory.items() if entry.is_expired(now)]
        for key in expired:
            del self._memory[key]
        return len(expired)

    async def health_check(self) -> bool:
        """Check Redis health."""
        if not self._primary_ready():
            return False
        try:
            await self._remote("ping", lambda: self._client.ping())
            return True
        except CacheTransportError as e:
            self._log_transport_error(e)
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._hits + self._misses
        return {
            "tier": self.tier,
            "primary_available": self.primary_available,
            "memory_entries": len(self._memory),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
        }

    # Internals

    def _primary_ready(self) -> bool:
        return self.primary_available and self._client is not None

    async def _remote(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await call()
        except CONNECTION_ERRORS as e:
            self.primary_available = False
            raise CacheTransportError(operation, e, connection_lost=True) from e
        except RedisError as e:
            raise CacheTransportError(operation, e) from e

    def _log_transport_error(self, error: CacheTransportError, **context) -> None:
        if error.connection_lost:
            self.logger.warning(
                "Redis connection lost, using memory cache",
                operation=error.operation,
                error=str(error.cause),
                **context
            )
        else:
            self.logger.warning(
                "Cache operation failed",
                operation=error.operation,
                error=str(error.cause),
                **context
            )

    def _memory_get(self, key: str) -> Optional[Any]:
        entry = self._memory.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            self._record_hit("memory")
            return json.loads(entry.value)

        self._memory.pop(key, None)
        self._record_miss("memory")
        return None

    def _memory_set(self, key: str, payload: str, ttl: float) -> None:
        self._memory[key] = CacheEntry(key=key, value=payload, expires_at=self._clock() + ttl)
        if len(self._memory) > self.memory_sweep_threshold:
            self.purge_expired()

    def _memory_purge_prefix(self, prefix: str) -> int:
        matching = [key for key in self._memory if key.startswith(prefix)]
        for key in matching:
            del self._memory[key]
        return len(matching)

    def _record_hit(self, tier: str) -> None:
        self._hits += 1
        self._count("cache_hits_total", tier=tier)

    def _record_miss(self, tier: str) -> None:
        self._misses += 1
        self._count("cache_misses_total", tier=tier)

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, **labels)
