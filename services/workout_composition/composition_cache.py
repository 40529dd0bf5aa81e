"""
Composition Cache

Content-addressed plan cache: cache key (hash of the request inputs) ->
serialized CacheEntry, with TTL eviction.

Stores:
- RedisCacheStore: production. SETEX writes are atomic per key, Redis
  evicts on TTL, and Redis failures degrade to a miss.
- InMemoryCacheStore: tests, local development, Redis unavailable.

Fallback-provenance plans are written with their own (short) TTL so a
transient generation outage does not pin an inferior plan for a full day.

Usage:
    cache = CompositionCache(RedisCacheStore(get_redis_client()))
    entry = await cache.get(key)
    if entry is None:
        entry = await cache.put(key, plan, blueprint=blueprint)
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from services.workout_composition.constants import PlanProvenance
from services.workout_composition.models import Blueprint, CacheEntry, WorkoutPlan

logger = logging.getLogger(__name__)

CACHE_TTL_S = 86400           # 24 hours
FALLBACK_CACHE_TTL_S = 1800   # 30 minutes
KEY_PREFIX = "workout_composition:plan:"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class InMemoryCacheStore:
    """Dict-backed store with expiry checked on read."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._data: Dict[str, Tuple[bytes, datetime]] = {}

    async def get(self, key: str) -> Optional[bytes]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() > expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._data[key] = (value, self._clock() + timedelta(seconds=ttl_seconds))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class RedisCacheStore:
    """redis.asyncio-backed store. Errors are logged and treated as a miss / skipped write."""

    def __init__(self, redis_client, prefix: str = KEY_PREFIX):
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[bytes]:
        if self.redis is None:
            return None
        try:
            return await self.redis.get(self._key(key))
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning(f"Redis unavailable reading {key}: {e}")
        except RedisError as e:
            logger.warning(f"Redis error reading {key}: {e}")
        return None

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.setex(self._key(key), ttl_seconds, value)
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning(f"Redis unavailable writing {key}: {e}")
        except RedisError as e:
            logger.warning(f"Redis error writing {key}: {e}")

    async def delete(self, key: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis error deleting {key}: {e}")


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    evictions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "evictions": self.evictions,
        }


class CompositionCache:

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = CACHE_TTL_S,
        fallback_ttl_seconds: int = FALLBACK_CACHE_TTL_S,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.fallback_ttl_seconds = fallback_ttl_seconds
        self._clock = clock
        self._stats = CacheStats()

    def is_expired(self, entry: CacheEntry, now: Optional[datetime] = None) -> bool:
        return entry.is_expired(now or self._clock())

    def ttl_for(self, provenance: PlanProvenance) -> int:
        if provenance == PlanProvenance.GENERATED:
            return self.ttl_seconds
        return self.fallback_ttl_seconds

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Live entry for the key. Expired or undecodable entries are deleted and reported as a miss."""
        raw = await self.store.get(key)
        if raw is None:
            self._stats.misses += 1
            return None

        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            entry = CacheEntry.from_dict(json.loads(raw))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            await self.store.delete(key)
            self._stats.evictions += 1
            self._stats.misses += 1
            return None

        if self.is_expired(entry):
            await self.store.delete(key)
            self._stats.evictions += 1
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        return entry

    async def put(
        self,
        key: str,
        plan: WorkoutPlan,
        blueprint: Optional[Blueprint] = None,
        ttl_seconds: Optional[int] = None,
    ) -> CacheEntry:
        """Write (or replace) the entry for key. TTL defaults by the plan's provenance."""
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_for(plan.provenance)
        created_at = self._clock()
        entry = CacheEntry(
            key=key,
            plan=plan,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl),
            goal=getattr(blueprint.goal, "value", blueprint.goal) if blueprint else None,
            structure=getattr(blueprint.structure, "value", blueprint.structure) if blueprint else None,
            focus=blueprint.focus.value if blueprint else None,
            seed=blueprint.seed if blueprint else None,
            version=blueprint.version if blueprint else None,
        )
        payload = json.dumps(entry.to_dict(), sort_keys=True).encode("utf-8")
        await self.store.put(key, payload, ttl)
        self._stats.writes += 1
        logger.info(f"Cached plan {key[:12]} provenance={plan.provenance.value} ttl={ttl}s")
        return entry

    async def invalidate(self, key: str) -> None:
        await self.store.delete(key)

    def stats(self) -> Dict[str, int]:
        return self._stats.to_dict()
