"""Shared Redis client.

The settlement engine only needs Redis for the hot-wallet signing lock, so a
single process-wide client is opened by the API lifespan or the worker loop.
"""

import logging

import redis.asyncio as redis

from ton_lottery.core.config import get_settings

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


async def init_redis() -> None:
    global _client
    if _client is not None:
        return
    _client = redis.from_url(get_settings().redis_url, encoding="utf-8", decode_responses=True)
    logger.info("Redis client opened")


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    logger.info("Redis client closed")


def get_redis() -> redis.Redis:
    """Return the shared client.

    Raises:
        RuntimeError: init_redis() has not run in this process
    """
    if _client is None:
        raise RuntimeError("Redis is not initialized; the signing lock needs init_redis() first")
    return _client


def is_redis_initialized() -> bool:
    return _client is not None
