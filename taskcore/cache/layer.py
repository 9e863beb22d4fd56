import asyncio
import itertools
import json
import logging
from typing import Awaitable, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from taskcore.core.config import Settings
from taskcore.core.locks import KeyedLocks
from taskcore.mapping import record_from_dict, record_to_dict
from taskcore.models import TaskRecord

logger = logging.getLogger(__name__)

# Stored in Redis for ids the store reported absent
ABSENT_MARKER = "__absent__"

Loader = Callable[[], Awaitable[Optional[TaskRecord]]]


class RedisMemoryGuard:
    """
    Monitors Redis memory usage and provides backpressure signals.

    Pressure levels:
    - 0-4: Normal operation
    - 5-6: Moderate pressure (reduce TTL by 20%)
    - 7-8: High pressure (cap TTL at 60s)
    - 9: Critical (skip Redis writes, L1 only)
    - 10: Emergency (skip all caching, direct store reads)
    """

    def __init__(self, redis: Redis, refresh_interval: float = 5):
        self.redis = redis
        self.refresh_interval = refresh_interval
        self._last_check = 0.0
        self._cached: dict | None = None

    @property
    def last_reading(self) -> dict | None:
        return self._cached

    async def check(self) -> dict:
        """Check memory pressure, reusing the last reading within refresh_interval."""
        now = asyncio.get_running_loop().time()

        if self._cached and (now - self._last_check) < self.refresh_interval:
            return self._cached

        try:
            info = await self.redis.info("memory")
        except RedisError as e:
            logger.error(f"Memory check failed: {e}")
            return {"level": 0, "ratio": None, "policy": "unknown", "error": str(e)}

        used = info["used_memory"]
        maxm = info.get("maxmemory", 0)
        policy = info.get("maxmemory_policy", "noeviction")

        if maxm == 0:
            # No memory limit configured
            result = {"level": 0, "ratio": None, "policy": policy}
        else:
            ratio = used / maxm
            result = {"level": int(min(ratio * 10, 10)), "ratio": ratio, "policy": policy}
            if result["level"] >= 9:
                logger.warning(
                    "Redis memory critical: level=%s ratio=%.1f%% policy=%s",
                    result["level"],
                    ratio * 100,
                    policy,
                )
            elif result["level"] >= 7:
                logger.info(
                    "Redis memory high: level=%s ratio=%.1f%%", result["level"], ratio * 100
                )

        result["used_mb"] = used / (1024 * 1024)
        self._cached = result
        self._last_check = now
        return result


class CacheLayer:
    """
    Two-tier read-through cache of task records keyed by id.

    L1: process-local TTLCache (bounded LRU, TTL from settings)
    L2: Redis (optional, shared between workers)

    Absent ids are remembered too, in their own shorter-lived TTLCache,
    so repeated lookups of a missing id do not hit the store.

    Writes never update entries in place: callers invalidate, and the next
    get reloads from the store. Each invalidation bumps a per-key
    generation; a load that raced with an invalidation is returned to its
    caller but not cached. Generations only need to outlive an in-flight
    load, so they sit in a bounded TTLCache like the per-key locks, and each
    one is a fresh token from a process-wide counter so an expired entry
    can never come back with the value a load captured.
    """

    def __init__(self, settings: Settings, redis: Redis | None = None):
        self._settings = settings
        self._redis = redis
        self._memory_guard: RedisMemoryGuard | None = None
        self.l1: TTLCache = TTLCache(
            maxsize=settings.cache_maxsize, ttl=settings.cache_ttl_seconds
        )
        self.l1_absent: TTLCache = TTLCache(
            maxsize=settings.cache_maxsize, ttl=settings.cache_absent_ttl_seconds
        )
        self._generations: TTLCache = TTLCache(maxsize=10_000, ttl=300)
        self._generation_tokens = itertools.count(1)
        self._locks = KeyedLocks()
        self._initialized = False

        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
            "pressure_skips": 0,
            "invalidations": 0,
        }

    async def init_cache(self):
        """Connect to Redis when configured. Idempotent; Redis failures leave L1 only."""
        if self._initialized:
            return
        self._initialized = True

        if self._redis is None and self._settings.redis_dsn:
            self._redis = Redis.from_url(
                self._settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=self._settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )

        if self._redis is None:
            logger.info("Cache layer initialized (L1 only)")
            return

        try:
            await self._redis.ping()
        except RedisError as e:
            logger.error(f"Redis initialization failed, running L1 only: {e}")
            self._redis = None
            return

        self._memory_guard = RedisMemoryGuard(self._redis)
        logger.info("Cache layer initialized (L1 + Redis)")

    def _l2_key(self, task_id: int) -> str:
        return f"{self._settings.cache_namespace}task:{task_id}"

    def _remember(self, task_id: int, record: TaskRecord | None):
        if record is None:
            self.l1.pop(task_id, None)
            self.l1_absent[task_id] = True
        else:
            self.l1_absent.pop(task_id, None)
            self.l1[task_id] = record.model_copy()

    def _recall(self, task_id: int) -> tuple[bool, TaskRecord | None]:
        if task_id in self.l1:
            return True, self.l1[task_id].model_copy()
        if task_id in self.l1_absent:
            return True, None
        return False, None

    async def _l2_get(self, task_id: int) -> tuple[bool, TaskRecord | None]:
        if not self._redis:
            return False, None
        try:
            raw = await self._redis.get(self._l2_key(task_id))
        except RedisError as e:
            logger.error(f"Redis GET error for task {task_id}: {e}")
            self.stats["errors"] += 1
            return False, None
        if raw is None:
            return False, None
        if raw == ABSENT_MARKER:
            return True, None
        try:
            return True, record_from_dict(json.loads(raw))
        except ValueError as e:
            # undecodable entry: treat as a miss, the reload overwrites it
            logger.warning(f"Discarding bad L2 entry for task {task_id}: {e}")
            return False, None

    async def _adjust_ttl_for_pressure(self, base_ttl: int) -> int:
        """Adjust TTL based on current memory pressure; 0 means skip the write."""
        if not self._memory_guard:
            return base_ttl

        level = (await self._memory_guard.check())["level"]
        if level >= 9:
            return 0
        if level >= 7:
            return min(base_ttl, 60)
        if level >= 5:
            return max(int(base_ttl * 0.8), 1)
        return base_ttl

    async def _l2_set(self, task_id: int, record: TaskRecord | None):
        if not self._redis:
            return
        if record is None:
            base_ttl = self._settings.cache_absent_ttl_seconds
            data = ABSENT_MARKER
        else:
            base_ttl = self._settings.cache_ttl_seconds
            data = json.dumps(record_to_dict(record))
        try:
            ttl = await self._adjust_ttl_for_pressure(base_ttl)
            if ttl == 0:
                logger.debug("Skipping Redis write for task %s due to pressure", task_id)
                self.stats["pressure_skips"] += 1
                return
            await self._redis.set(self._l2_key(task_id), data, ex=ttl)
        except RedisError as e:
            logger.error(f"Redis SET error for task {task_id}: {e}")
            self.stats["errors"] += 1

    async def get(self, task_id: int, loader: Loader) -> TaskRecord | None:
        """
        Retrieve a record: L1 -> L2 -> loader.

        Args:
            task_id: Record id
            loader: Async callable reading the store; None means absent

        Returns:
            The record, or None when the store reports it absent
        """
        await self.init_cache()

        hit, record = self._recall(task_id)
        if hit:
            self.stats["l1_hits"] += 1
            logger.debug("L1 hit for task %s", task_id)
            return record

        hit, record = await self._l2_get(task_id)
        if hit:
            self.stats["l2_hits"] += 1
            logger.debug("L2 hit for task %s", task_id)
            self._remember(task_id, record)
            return record

        if self._memory_guard:
            pressure = await self._memory_guard.check()
            if pressure["level"] >= 10:
                logger.warning("Emergency mode: direct store read for task %s", task_id)
                self.stats["pressure_skips"] += 1
                return await loader()

        async with self._locks.for_key(task_id):
            # another caller may have loaded while we waited
            hit, record = self._recall(task_id)
            if hit:
                return record

            generation = self._generations.get(task_id, 0)
            self.stats["misses"] += 1
            logger.debug("Loading task %s from store", task_id)
            record = await loader()

            if self._generations.get(task_id, 0) != generation:
                logger.debug("Task %s invalidated during load, not caching", task_id)
                return record

            self._remember(task_id, record)
            await self._l2_set(task_id, record)
            if self._generations.get(task_id, 0) != generation:
                # invalidated while the L2 write was in flight
                await self._l2_delete(task_id)
            return None if record is None else record.model_copy()

    async def set(self, record: TaskRecord):
        """Cache a freshly stored record (replaces any absent marker)."""
        await self.init_cache()
        self._remember(record.id, record)
        await self._l2_set(record.id, record)

    async def invalidate(self, task_id: int):
        """
        Drop the entry for task_id from both tiers.

        Always deletes from Redis, even under pressure: a stale L2 entry
        would be served to every worker.
        """
        await self.init_cache()

        self._generations[task_id] = next(self._generation_tokens)
        self.l1.pop(task_id, None)
        self.l1_absent.pop(task_id, None)
        self.stats["invalidations"] += 1

        await self._l2_delete(task_id)
        logger.debug("Invalidated task %s", task_id)

    async def _l2_delete(self, task_id: int):
        if not self._redis:
            return
        try:
            await self._redis.delete(self._l2_key(task_id))
        except RedisError as e:
            logger.error(f"Redis DELETE error for task {task_id}: {e}")
            self.stats["errors"] += 1

    async def close(self):
        """Graceful shutdown of the Redis connection."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")

    def get_stats(self) -> dict:
        """Cache statistics including the last memory pressure reading."""
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]

        stats = {
            **self.stats,
            "l1_size": len(self.l1),
            "l1_maxsize": self.l1.maxsize,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total > 0 else 0
            ),
            "redis": self._redis is not None,
        }

        if self._memory_guard and self._memory_guard.last_reading:
            stats["redis_pressure"] = self._memory_guard.last_reading

        return stats
