"""Signing wallet serialization.

Every transfer signed by the platform wallet (withdrawals and payouts alike)
must run inside ``SigningWalletLock.hold()``: wallet seqnos are strictly
sequential, so two concurrent sends would race for the same seqno.
"""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from decimal import Decimal
from functools import lru_cache

from redis.exceptions import LockError

from ton_lottery.blockchain.base import BlockchainService, PreparedTransfer, TransactionResult, TransactionStatus
from ton_lottery.core.config import get_settings
from ton_lottery.core.exceptions import LotteryError, SigningLockError
from ton_lottery.core.redis import get_redis

logger = logging.getLogger(__name__)


class SigningWalletLock:
    """Mutual exclusion around the signing wallet.

    Backends:
        local: one asyncio lock per event loop, enough for a single process
        redis: a Redis lock shared by the API process and the Celery workers
    """

    LOCK_NAME = "ton_lottery:signing_wallet"

    def __init__(
        self,
        backend: str | None = None,
        timeout: int | None = None,
        wait: int | None = None,
    ):
        settings = get_settings()
        self.backend = backend or settings.signing_lock_backend
        self.timeout = timeout or settings.signing_lock_timeout_seconds
        self.wait = wait if wait is not None else settings.signing_lock_wait_seconds
        self._local_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = (
            weakref.WeakKeyDictionary()
        )

    def _local_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        lock = self._local_locks.get(loop)
        if lock is None:
            lock = self._local_locks[loop] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Hold the signing wallet for one send.

        Raises:
            SigningLockError: The wallet stayed busy longer than the wait limit
        """
        if self.backend == "redis":
            lock = get_redis().lock(self.LOCK_NAME, timeout=self.timeout, blocking_timeout=self.wait)
            if not await lock.acquire():
                raise SigningLockError("Signing wallet busy", {"wait_seconds": self.wait})
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError:
                    logger.warning("Signing lock expired before release")
            return

        lock = self._local_lock()
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.wait)
        except TimeoutError:
            raise SigningLockError("Signing wallet busy", {"wait_seconds": self.wait}) from None
        try:
            yield
        finally:
            lock.release()


@lru_cache
def get_signing_lock() -> SigningWalletLock:
    """Process-wide signing lock."""
    return SigningWalletLock()


async def locked_send(
    chain: BlockchainService,
    lock: SigningWalletLock,
    currency: str,
    to_address: str,
    amount: Decimal,
    comment: str | None,
    timeout: float,
    on_prepared: Callable[[str], Awaitable[None]] | None = None,
) -> TransactionResult:
    """Send one transfer while holding the signing wallet.

    The message is signed first and its hash handed to ``on_prepared``
    before anything is submitted, so the caller can persist it. Lock
    contention and refused transfers come back as FAILED results. When the
    hard timeout fires after submission the result is PENDING and carries the
    message hash: the transfer may still land.
    """
    prepared: PreparedTransfer | None = None
    submitted = False

    async def dispatch() -> TransactionResult:
        nonlocal prepared, submitted
        prepared = await chain.prepare_transfer(currency, to_address, amount, comment)
        if on_prepared is not None:
            await on_prepared(prepared.message_hash)
        submitted = True
        return await chain.submit_transfer(prepared)

    try:
        async with lock.hold():
            return await asyncio.wait_for(dispatch(), timeout=timeout)
    except SigningLockError as e:
        return TransactionResult(success=False, error=e.message, status=TransactionStatus.FAILED)
    except TimeoutError:
        message_hash = prepared.message_hash if prepared else None
        logger.error(
            f"Send of {amount} {currency} to {to_address} timed out after {timeout}s (message {message_hash})"
        )
        return TransactionResult(
            success=False,
            error="Send timed out",
            status=TransactionStatus.PENDING if submitted else TransactionStatus.FAILED,
            message_hash=message_hash,
        )
    except LotteryError as e:
        logger.warning(f"Transfer of {amount} {currency} to {to_address} refused: {e.message}")
        return TransactionResult(
            success=False,
            error=e.message,
            status=TransactionStatus.FAILED,
            message_hash=prepared.message_hash if prepared else None,
        )
