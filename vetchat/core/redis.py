"""
Optional async Redis connection for state shared across workers (analysis slots).
Disabled when redis_url is empty. An unreachable server is retried at most every
RETRY_AFTER_SECONDS; until then callers get None and use in-process state.
"""
import asyncio
import logging
import time
from typing import Any

from vetchat.config import get_settings

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 30.0
CONNECT_TIMEOUT_SECONDS = 2.0

_client: Any = None
_last_failure: float | None = None
_lock = asyncio.Lock()


def _redacted(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


async def get_redis_client() -> Any:
    """Shared redis.asyncio client, or None when disabled or currently unreachable."""
    global _client, _last_failure
    if _client is not None:
        return _client
    url = (get_settings().redis_url or "").strip()
    if not url:
        return None
    if _last_failure is not None and time.monotonic() - _last_failure < RETRY_AFTER_SECONDS:
        return None

    async with _lock:
        if _client is not None:
            return _client
        from redis.asyncio import Redis

        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
        )
        try:
            await client.ping()
        except Exception as e:
            _last_failure = time.monotonic()
            logger.warning("Redis unavailable at %s, using in-process state: %s", _redacted(url), e)
            await client.aclose()
            return None
        _client = client
        _last_failure = None
        logger.info("Redis connected: %s", _redacted(url))
        return _client


async def close_redis() -> None:
    global _client
    client, _client = _client, None
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as e:
        logger.warning("Redis close error: %s", e)
