"""
Daily Generation Limiter

Caps remote generations per user per calendar day. Counters live in Redis
(INCR + EXPIRE) when a client is given, otherwise in process memory, where
counters for days before the one being recorded are pruned on each write.
"""

import logging
from datetime import date
from typing import Dict, Optional, Tuple

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

COUNTER_TTL_S = 86400 * 2
KEY_PREFIX = "workout_composition:usage:"


class UsageLimiter:

    def __init__(self, daily_limit: int, redis=None):
        self.daily_limit = daily_limit
        self.redis = redis
        self._local_counts: Dict[Tuple[str, date], int] = {}

    @staticmethod
    def _key(user_id: str, day: date) -> str:
        return f"{KEY_PREFIX}{user_id}:{day.isoformat()}"

    async def used(self, user_id: str, day: date) -> int:
        if self.redis is not None:
            key = self._key(user_id, day)
            try:
                value = await self.redis.get(key)
                return int(value) if value is not None else 0
            except (RedisError, ValueError) as e:
                logger.warning(f"Usage counter read failed for {user_id}: {e}")
                return 0
        return self._local_counts.get((user_id, day), 0)

    async def can_generate(self, user_id: str, day: date) -> bool:
        return await self.used(user_id, day) < self.daily_limit

    async def record_generation(self, user_id: str, day: date) -> Optional[int]:
        if self.redis is not None:
            key = self._key(user_id, day)
            try:
                count = await self.redis.incr(key)
                if count == 1:
                    await self.redis.expire(key, COUNTER_TTL_S)
                return count
            except RedisError as e:
                logger.warning(f"Usage counter write failed for {user_id}: {e}")
                return None

        self._prune_before(day)
        local_key = (user_id, day)
        self._local_counts[local_key] = self._local_counts.get(local_key, 0) + 1
        return self._local_counts[local_key]

    def _prune_before(self, day: date) -> None:
        stale = [k for k in self._local_counts if k[1] < day]
        for k in stale:
            del self._local_counts[k]
        if stale:
            logger.debug(f"Pruned {len(stale)} usage counters older than {day.isoformat()}")

    def tracked_counters(self) -> int:
        """Number of in-memory counters currently held."""
        return len(self._local_counts)
