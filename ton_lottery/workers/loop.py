"""Run settlement coroutines from synchronous Celery tasks."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ton_lottery.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(factory: Callable[[], Awaitable[T]]) -> T:
    """Run ``factory()`` on a fresh event loop.

    Redis (for the shared signing lock) is opened and the database pool is
    disposed inside the loop, since both bind their connections to it.
    """

    async def _run() -> T:
        from ton_lottery.core.redis import close_redis, init_redis, is_redis_initialized
        from ton_lottery.db import close_db

        opened_redis = False
        if get_settings().signing_lock_backend == "redis" and not is_redis_initialized():
            await init_redis()
            opened_redis = True
        try:
            return await factory()
        finally:
            if opened_redis:
                await close_redis()
            await close_db()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()
