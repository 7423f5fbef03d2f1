"""
Concurrency limit for report analysis. At most `analysis_max_concurrent` analyses run at once;
callers that find no free slot get an overload response instead of queueing.
- Redis configured: one INCR/DECR counter shared by all workers, with a TTL so a crashed
  worker cannot hold slots forever.
- Otherwise: in-process counter.
Redis errors are logged and fall back to the in-process counter; they never reach the caller.
"""
import asyncio
import logging
from typing import Any

from vetchat.config import get_settings

logger = logging.getLogger(__name__)

ACTIVE_KEY = "report-analysis:active"


class AnalysisGate:
    def __init__(self, redis_client: Any = None, limit: int | None = None, ttl_seconds: int | None = None):
        settings = get_settings()
        self._redis = redis_client
        self._limit = max(1, limit or settings.analysis_max_concurrent)
        self._ttl = ttl_seconds or settings.analysis_slot_ttl_seconds
        self._local_active = 0
        self._pending: set[asyncio.Task] = set()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def local_active(self) -> int:
        return self._local_active

    async def try_acquire(self) -> bool:
        """Take one slot. Returns False when all slots are busy."""
        if self._redis is not None:
            try:
                active = await self._redis.incr(ACTIVE_KEY)
                await self._redis.expire(ACTIVE_KEY, self._ttl)
                if active > self._limit:
                    await self._redis.decr(ACTIVE_KEY)
                    return False
                return True
            except Exception as e:
                logger.warning("Redis analysis slot acquire failed, using local slots: %s", e)
                self._redis = None
        if self._local_active >= self._limit:
            return False
        self._local_active += 1
        return True

    async def release(self) -> None:
        if self._redis is not None:
            try:
                active = await self._redis.decr(ACTIVE_KEY)
                if active < 0:
                    await self._redis.set(ACTIVE_KEY, 0)
                return
            except Exception as e:
                logger.warning("Redis analysis slot release failed: %s", e)
                return
        self._local_active = max(0, self._local_active - 1)

    def release_soon(self) -> None:
        """Release from sync/cancelled contexts (stream close callbacks)."""
        if self._redis is None:
            self._local_active = max(0, self._local_active - 1)
            return
        task = asyncio.get_event_loop().create_task(self.release())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


_gate: AnalysisGate | None = None


async def get_analysis_gate() -> AnalysisGate:
    """Process-wide gate, bound to Redis when it is reachable at first use."""
    global _gate
    if _gate is None:
        from vetchat.core.redis import get_redis_client
        _gate = AnalysisGate(await get_redis_client())
    return _gate
