"""Payout Processor - drains the payout queue through the signing wallet.

One pass at a time per process: a pass that finds another one running
returns immediately. Inside a pass payouts are handled strictly one after
another, and every send goes through the shared signing wallet lock so
withdrawals and payouts never race for the wallet seqno.

Per payout:

1. unsupported currency       -> failed (terminal)
2. earlier message landed     -> completed without resending
3. daily cap reached          -> deferred to the next day, no attempt used
4. gas drawn from the reserve -> once per payout; ``soft`` policy flags a
                                 shortfall and proceeds, ``strict`` defers
5. processing + send          -> message hash stored before submission;
                                 completed, or back to pending after the
                                 retry delay, or failed once attempts run out
"""

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ton_lottery.blockchain.base import BlockchainService, TransactionResult
from ton_lottery.blockchain.factory import get_blockchain_service
from ton_lottery.core.config import Settings, get_settings
from ton_lottery.core.constants import SUPPORTED_CURRENCIES, Currency
from ton_lottery.core.exceptions import ChainError
from ton_lottery.models.payout import Payout, PayoutStatus
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.schemas.payout import ProcessingStats
from ton_lottery.services.fund_service import FundService
from ton_lottery.services.notification_service import (
    Notifier,
    format_operator_payout_failed,
    format_payout_completed,
    format_payout_failed,
    get_notifier,
)
from ton_lottery.services.payout_service import PayoutService
from ton_lottery.services.signing_lock import SigningWalletLock, get_signing_lock, locked_send
from ton_lottery.utils.helpers import utc_now

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted during dispatch; verify the wallet before resetting"

# process_payout outcomes
COMPLETED = "completed"
RETRIED = "retried"
FAILED = "failed"
DEFERRED = "deferred"
SKIPPED = "skipped"


@dataclass
class PayoutSnapshot:
    """Plain copy of the payout fields a pass works with.

    ORM instances expire on rollback; the snapshot stays readable.
    """

    id: int
    user_id: int
    lottery_id: int | None
    draw_id: int | None
    amount: Decimal
    currency: str
    recipient_address: str
    status: PayoutStatus
    attempts: int
    max_attempts: int
    split_index: int
    split_total: int
    message_hash: str | None
    gas_reserved: bool

    @classmethod
    def from_payout(cls, payout: Payout) -> "PayoutSnapshot":
        return cls(
            id=payout.id,
            user_id=payout.user_id,
            lottery_id=payout.lottery_id,
            draw_id=payout.draw_id,
            amount=Decimal(str(payout.amount)),
            currency=payout.currency,
            recipient_address=payout.recipient_address,
            status=payout.status,
            attempts=payout.attempts,
            max_attempts=payout.max_attempts,
            split_index=payout.split_index,
            split_total=payout.split_total,
            message_hash=payout.message_hash,
            gas_reserved=payout.gas_reserved,
        )

    @property
    def comment(self) -> str:
        return f"Lottery prize payout ({self.split_index}/{self.split_total})"


class PayoutProcessor:
    """Single-flight payout queue processor."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        chain: BlockchainService | None = None,
        notifier: Notifier | None = None,
        signing_lock: SigningWalletLock | None = None,
        settings: Settings | None = None,
    ):
        if session_factory is None:
            from ton_lottery.db import async_session_factory

            session_factory = async_session_factory
        self.session_factory = session_factory
        self.chain = chain or get_blockchain_service()
        self.notifier = notifier or get_notifier()
        self.signing_lock = signing_lock or get_signing_lock()
        self.settings = settings or get_settings()
        self._running = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    # =========================================================================
    # Queue pass
    # =========================================================================

    async def process_pending_payouts(self) -> ProcessingStats:
        """Run one pass over the eligible pending payouts.

        Returns:
            Pass statistics; ``skipped`` when another pass was running
        """
        if not self._running.acquire(blocking=False):
            logger.info("Payout processing already running, skipping this tick")
            return ProcessingStats(skipped=True)

        try:
            stats = ProcessingStats()
            async with self.session_factory() as db:
                pending = await PayoutService(db, self.settings).get_pending_payouts(
                    self.settings.payout_batch_size
                )
                payout_ids = [payout.id for payout in pending]

            for payout_id in payout_ids:
                outcome = await self.process_payout(payout_id)
                stats.processed += 1
                if outcome == COMPLETED:
                    stats.completed += 1
                elif outcome == RETRIED:
                    stats.retried += 1
                elif outcome == FAILED:
                    stats.failed += 1
                elif outcome == DEFERRED:
                    stats.deferred += 1

            if payout_ids:
                logger.info(f"Payout pass: {stats.model_dump()}")
            return stats
        finally:
            self._running.release()

    async def process_payout(self, payout_id: int) -> str:
        """Take one pending payout through a dispatch attempt.

        Returns:
            One of completed, retried, failed, deferred, skipped
        """
        async with self.session_factory() as db:
            service = PayoutService(db, self.settings)
            snap = PayoutSnapshot.from_payout(await service.get_payout(payout_id))
            if snap.status != PayoutStatus.PENDING:
                return SKIPPED

            if snap.currency not in SUPPORTED_CURRENCIES:
                error = f"Unsupported currency: {snap.currency}"
                await service.mark_failed(payout_id, error, final=True, expected=PayoutStatus.PENDING)
                logger.error(f"Payout #{payout_id}: {error}")
                await self.notifier.notify_operator(
                    format_operator_payout_failed(payout_id, snap.amount, snap.currency, error)
                )
                return FAILED

            # A message from an earlier attempt may have landed after its timeout
            if snap.message_hash:
                try:
                    landed = await self.chain.find_transaction_by_message_hash(snap.message_hash)
                except ChainError as e:
                    logger.warning(f"Payout #{payout_id}: cannot check earlier message, not resending: {e.message}")
                    return SKIPPED
                if landed:
                    logger.warning(f"Payout #{payout_id}: earlier attempt landed as {landed}")
                    result = TransactionResult(success=True, tx_hash=landed, message_hash=snap.message_hash)
                    if await self._complete(db, snap, result, expected=PayoutStatus.PENDING):
                        return COMPLETED
                    return SKIPPED

            if await service.would_exceed_daily_limit(snap.currency, snap.amount):
                await service.defer(payout_id, "Daily payout limit reached")
                logger.info(f"Payout #{payout_id} deferred: daily {snap.currency} payout limit reached")
                return DEFERRED

            if not snap.gas_reserved and snap.lottery_id is not None:
                if not await self._reserve_gas(db, snap):
                    return DEFERRED

            if not await service.mark_processing(payout_id):
                logger.info(f"Payout #{payout_id} was claimed elsewhere")
                return SKIPPED

            result = await locked_send(
                self.chain,
                self.signing_lock,
                snap.currency,
                snap.recipient_address,
                snap.amount,
                snap.comment,
                timeout=self.settings.send_timeout_seconds,
                on_prepared=lambda message_hash: service.record_message_hash(payout_id, message_hash),
            )
            if result.success:
                await self._complete(db, snap, result, expected=PayoutStatus.PROCESSING)
                return COMPLETED

            return await self._fail_attempt(db, snap, result)

    async def _reserve_gas(self, db: AsyncSession, snap: PayoutSnapshot) -> bool:
        """Draw the transfer gas from the lottery's TON reserve.

        Returns:
            False when the payout was deferred by the strict policy
        """
        gas = self.settings.payout_gas(snap.currency)
        reserved = await FundService(db, self.settings).reserve_gas(
            snap.lottery_id,
            Currency.TON,
            gas,
            reference=f"payout:{snap.id}",
            draw_id=snap.draw_id,
        )
        if not reserved and self.settings.gas_reserve_policy == "strict":
            await db.rollback()
            await PayoutService(db, self.settings).defer(
                snap.id,
                "Reserve pool cannot cover gas",
                until=utc_now() + timedelta(seconds=self.settings.payout_retry_delay_seconds),
            )
            logger.warning(f"Payout #{snap.id} deferred: reserve pool short of {gas} TON gas")
            return False

        await PayoutService(db, self.settings).flag_gas(snap.id, reserved)
        await db.commit()
        if not reserved:
            logger.warning(f"Payout #{snap.id} proceeds without reserved gas")
        return True

    async def _complete(
        self,
        db: AsyncSession,
        snap: PayoutSnapshot,
        result: TransactionResult,
        expected: PayoutStatus,
    ) -> bool:
        """Record a landed payout: hash, PAYOUT transaction and prize pool line."""
        tx_hash = result.tx_hash or result.message_hash
        moved = await PayoutService(db, self.settings).mark_completed(
            snap.id,
            tx_hash,
            provisional=result.provisional,
            message_hash=result.message_hash,
            expected=expected,
        )
        if not moved:
            await db.rollback()
            logger.warning(f"Payout #{snap.id} left {expected.value} before completion; tx {tx_hash}")
            return False

        db.add(
            Transaction(
                user_id=snap.user_id,
                type=TransactionType.PAYOUT,
                status=TransactionStatus.COMPLETED,
                amount=snap.amount,
                currency=snap.currency,
                tx_hash=tx_hash,
                hash_provisional=result.provisional,
                message_hash=result.message_hash,
                from_address=self.chain.deposit_address,
                to_address=snap.recipient_address,
                payout_id=snap.id,
                completed_at=utc_now(),
            )
        )
        if snap.lottery_id is not None:
            await FundService(db, self.settings).record_payout(
                snap.lottery_id,
                snap.currency,
                snap.amount,
                reference=tx_hash,
                draw_id=snap.draw_id,
            )
        await db.commit()
        logger.info(
            f"Payout #{snap.id} completed: {snap.amount} {snap.currency} -> {snap.recipient_address} ({tx_hash})"
        )

        await self.notifier.notify_user(snap.user_id, format_payout_completed(snap.amount, snap.currency, tx_hash))
        return True

    async def _fail_attempt(self, db: AsyncSession, snap: PayoutSnapshot, result: TransactionResult) -> str:
        error = result.error or "Send failed"
        final = snap.attempts + 1 >= snap.max_attempts
        await PayoutService(db, self.settings).mark_failed(
            snap.id, error, final=final, message_hash=result.message_hash
        )
        if not final:
            logger.warning(f"Payout #{snap.id} attempt {snap.attempts + 1}/{snap.max_attempts} failed: {error}")
            return RETRIED

        logger.error(f"Payout #{snap.id} failed after {snap.max_attempts} attempts: {error}")
        await self.notifier.notify_user(snap.user_id, format_payout_failed(snap.amount, snap.currency))
        await self.notifier.notify_operator(
            format_operator_payout_failed(snap.id, snap.amount, snap.currency, error)
        )
        return FAILED

    # =========================================================================
    # Recovery
    # =========================================================================

    async def recover_stale_payouts(self) -> dict[str, int] | None:
        """Settle payouts a crash left in ``processing``.

        A payout with a submitted message is completed if the message landed,
        otherwise returned to the queue (or failed when out of attempts). One
        without a message hash may or may not have been sent, so it is failed
        for an operator to verify instead of being resent.

        Returns:
            Recovery statistics, or None when a pass was running
        """
        if not self._running.acquire(blocking=False):
            logger.info("Payout processing running, stale recovery skipped")
            return None

        stats = {"completed": 0, "requeued": 0, "failed": 0, "unchecked": 0}
        try:
            async with self.session_factory() as db:
                service = PayoutService(db, self.settings)
                stale = [
                    PayoutSnapshot.from_payout(payout)
                    for payout in await service.list_stale_processing(self.settings.payout_stale_after_minutes)
                ]
                for snap in stale:
                    if not snap.message_hash:
                        await service.mark_failed(snap.id, INTERRUPTED_MESSAGE, final=True)
                        await self.notifier.notify_operator(
                            format_operator_payout_failed(snap.id, snap.amount, snap.currency, INTERRUPTED_MESSAGE)
                        )
                        stats["failed"] += 1
                        continue

                    try:
                        landed = await self.chain.find_transaction_by_message_hash(snap.message_hash)
                    except ChainError as e:
                        logger.warning(f"Stale payout #{snap.id}: {e.message}")
                        stats["unchecked"] += 1
                        continue

                    if landed:
                        result = TransactionResult(success=True, tx_hash=landed, message_hash=snap.message_hash)
                        if await self._complete(db, snap, result, expected=PayoutStatus.PROCESSING):
                            stats["completed"] += 1
                        continue

                    # attempts already counts the interrupted dispatch
                    final = snap.attempts >= snap.max_attempts
                    await service.mark_failed(snap.id, "Not confirmed after interruption", final=final)
                    if final:
                        await self.notifier.notify_operator(
                            format_operator_payout_failed(
                                snap.id, snap.amount, snap.currency, "Not confirmed after interruption"
                            )
                        )
                        stats["failed"] += 1
                    else:
                        stats["requeued"] += 1
        finally:
            self._running.release()

        if any(stats.values()):
            logger.info(f"Stale payout recovery: {stats}")
        return stats

    async def resolve_provisional_hashes(self, limit: int = 50) -> dict[str, int]:
        """Swap provisional hashes for real transaction hashes once visible."""
        stats = {"payouts": 0, "withdrawals": 0}
        async with self.session_factory() as db:
            provisional = [
                (payout.id, payout.message_hash or payout.tx_hash)
                for payout in await PayoutService(db, self.settings).list_provisional(limit)
            ]
            for payout_id, message_hash in provisional:
                real = await self._lookup(message_hash)
                if not real:
                    continue
                await db.execute(
                    update(Payout)
                    .where(Payout.id == payout_id, Payout.tx_hash_provisional == True)  # noqa: E712
                    .values(tx_hash=real, tx_hash_provisional=False, updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                await db.execute(
                    update(Transaction)
                    .where(Transaction.payout_id == payout_id, Transaction.hash_provisional == True)  # noqa: E712
                    .values(tx_hash=real, hash_provisional=False, updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                stats["payouts"] += 1

            result = await db.execute(
                select(Transaction.id, Transaction.message_hash, Transaction.tx_hash)
                .where(
                    Transaction.type == TransactionType.WITHDRAWAL,
                    Transaction.status == TransactionStatus.COMPLETED,
                    Transaction.hash_provisional == True,  # noqa: E712
                )
                .order_by(Transaction.id)
                .limit(limit)
            )
            for tx_id, message_hash, tx_hash in result.all():
                real = await self._lookup(message_hash or tx_hash)
                if not real:
                    continue
                await db.execute(
                    update(Transaction)
                    .where(Transaction.id == tx_id, Transaction.hash_provisional == True)  # noqa: E712
                    .values(tx_hash=real, hash_provisional=False, updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                stats["withdrawals"] += 1

        if any(stats.values()):
            logger.info(f"Resolved provisional hashes: {stats}")
        return stats

    async def _lookup(self, message_hash: str | None) -> str | None:
        if not message_hash:
            return None
        try:
            return await self.chain.find_transaction_by_message_hash(message_hash)
        except ChainError as e:
            logger.warning(f"Hash lookup for {message_hash} failed: {e.message}")
            return None


@lru_cache
def get_payout_processor() -> PayoutProcessor:
    """Process-wide processor, so the single-flight flag is shared."""
    return PayoutProcessor()
