"""Tests for the payout queue processor."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from tests.conftest import USER_ADDRESS
from ton_lottery.models.fund import FundPool
from ton_lottery.models.payout import Payout, PayoutStatus
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.services.fund_service import FundService
from ton_lottery.services.payout_processor import INTERRUPTED_MESSAGE, PayoutProcessor
from ton_lottery.services.payout_service import PayoutService
from ton_lottery.utils.helpers import utc_now


@pytest.fixture
def processor(session_factory, chain, notifier, signing_lock, settings):
    return PayoutProcessor(
        session_factory=session_factory,
        chain=chain,
        notifier=notifier,
        signing_lock=signing_lock,
        settings=settings,
    )


async def fund_lottery(db, lottery, settings, sales: str = "100") -> None:
    await FundService(db, settings).credit_ticket_sale(lottery.id, "TON", Decimal(sales))
    await db.commit()


async def queue(db, settings, user, amount: str, currency: str = "TON", lottery=None) -> list[Payout]:
    return await PayoutService(db, settings).queue_payout(
        user.id,
        Decimal(amount),
        currency,
        USER_ADDRESS,
        lottery_id=lottery.id if lottery else None,
    )


async def reload(db, payout_id: int) -> Payout:
    return await db.get(Payout, payout_id, populate_existing=True)


@pytest.mark.asyncio
class TestProcessing:
    async def test_successful_payout(self, db, processor, chain, notifier, settings, user, lottery):
        await fund_lottery(db, lottery, settings)
        [payout] = await queue(db, settings, user, "40", lottery=lottery)

        stats = await processor.process_pending_payouts()

        assert stats.processed == 1
        assert stats.completed == 1
        assert chain.sent == [("TON", USER_ADDRESS, Decimal("40"), "Lottery prize payout (1/1)")]

        done = await reload(db, payout.id)
        assert done.status == PayoutStatus.COMPLETED
        assert done.tx_hash == "tx-1"
        assert done.message_hash == "msg-1"
        assert done.attempts == 1
        assert done.gas_reserved is True

        tx = (await db.execute(select(Transaction).where(Transaction.payout_id == payout.id))).scalar_one()
        assert tx.type == TransactionType.PAYOUT
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.tx_hash == "tx-1"

        fund = await FundService(db, settings).get_fund(lottery.id, "TON")
        assert fund.prize_pool == Decimal("40")
        assert fund.total_paid_out == Decimal("40")
        assert fund.reserve_pool == Decimal("4.99")
        assert notifier.user_messages[0][0] == user.id

    async def test_split_prize_is_paid_in_parts(self, db, processor, chain, settings, user):
        await queue(db, settings, user, "90")

        stats = await processor.process_pending_payouts()

        assert stats.completed == 2
        assert [sent[2] for sent in chain.sent] == [Decimal("45"), Decimal("45")]
        assert [sent[3] for sent in chain.sent] == ["Lottery prize payout (1/2)", "Lottery prize payout (2/2)"]

    async def test_failure_is_retried_then_final(self, db, processor, chain, notifier, settings, user):
        [payout] = await queue(db, settings, user, "10")
        for _ in range(3):
            chain.queue_result(success=False, error="Network error")

        first = await processor.process_pending_payouts()
        assert first.retried == 1
        assert (await reload(db, payout.id)).status == PayoutStatus.PENDING
        assert notifier.user_messages == []

        await processor.process_pending_payouts()
        last = await processor.process_pending_payouts()

        assert last.failed == 1
        failed = await reload(db, payout.id)
        assert failed.status == PayoutStatus.FAILED
        assert failed.attempts == 3
        assert failed.last_error == "Network error"
        assert len(chain.sent) == 3
        assert len(notifier.user_messages) == 1
        assert len(notifier.operator_messages) == 1

        # A failed payout is never picked up again
        assert (await processor.process_pending_payouts()).processed == 0

    async def test_daily_cap_defers(self, db, processor, chain, settings, user):
        [first] = await queue(db, settings, user, "50")
        [second] = await queue(db, settings, user, "50")
        [third] = await queue(db, settings, user, "10")

        stats = await processor.process_pending_payouts()

        assert stats.completed == 2
        assert stats.deferred == 1
        assert len(chain.sent) == 2
        deferred = await reload(db, third.id)
        assert deferred.status == PayoutStatus.PENDING
        assert deferred.deferred is True
        assert deferred.attempts == 0
        assert deferred.next_attempt_at > utc_now()

    async def test_unsupported_currency_fails(self, db, processor, chain, notifier, settings, user):
        [payout] = await queue(db, settings, user, "10", currency="BTC")

        stats = await processor.process_pending_payouts()

        assert stats.failed == 1
        assert chain.sent == []
        failed = await reload(db, payout.id)
        assert failed.status == PayoutStatus.FAILED
        assert failed.last_error == "Unsupported currency: BTC"
        assert len(notifier.operator_messages) == 1

    async def test_earlier_message_landed(self, db, processor, chain, settings, user):
        [payout] = await queue(db, settings, user, "10")
        chain.queue_result(success=False, error="Send timed out", message_hash="msg-timeout")
        await processor.process_pending_payouts()
        chain.landed["msg-timeout"] = "tx-late"

        stats = await processor.process_pending_payouts()

        assert stats.completed == 1
        assert len(chain.sent) == 1
        done = await reload(db, payout.id)
        assert done.status == PayoutStatus.COMPLETED
        assert done.tx_hash == "tx-late"

    async def test_unreachable_ledger_never_resends(self, db, processor, chain, settings, user):
        [payout] = await queue(db, settings, user, "10")
        chain.queue_result(success=False, error="Send timed out", message_hash="msg-timeout")
        await processor.process_pending_payouts()
        chain.lookup_error = True

        await processor.process_pending_payouts()

        assert len(chain.sent) == 1
        assert (await reload(db, payout.id)).status == PayoutStatus.PENDING

    async def test_timed_out_send_is_not_resent(self, db, processor, chain, settings, user):
        processor.settings = settings.model_copy(update={"send_timeout_seconds": 1})
        chain.submit_delay = 2
        [payout] = await queue(db, settings, user, "10")

        first = await processor.process_pending_payouts()

        assert first.retried == 1
        waiting = await reload(db, payout.id)
        assert waiting.status == PayoutStatus.PENDING
        assert waiting.message_hash == "msg-1"
        assert waiting.last_error == "Send timed out"

        chain.landed["msg-1"] = "tx-slow"
        chain.submit_delay = 0
        second = await processor.process_pending_payouts()

        assert second.completed == 1
        assert len(chain.sent) == 1
        done = await reload(db, payout.id)
        assert done.status == PayoutStatus.COMPLETED
        assert done.tx_hash == "tx-slow"

    async def test_message_hash_is_stored_before_submission(self, db, processor, chain, settings, user):
        [payout] = await queue(db, settings, user, "10")
        stored = []
        submit = chain.submit_transfer

        async def recording_submit(prepared):
            stored.append((await reload(db, payout.id)).message_hash)
            return await submit(prepared)

        chain.submit_transfer = recording_submit
        await processor.process_pending_payouts()

        assert stored == ["msg-1"]

    async def test_landed_message_settles_despite_daily_cap(self, db, processor, chain, settings, user):
        await queue(db, settings, user, "50")
        await queue(db, settings, user, "50")
        assert (await processor.process_pending_payouts()).completed == 2

        [payout] = await queue(db, settings, user, "10")
        await db.execute(update(Payout).where(Payout.id == payout.id).values(message_hash="msg-old"))
        await db.commit()
        chain.landed["msg-old"] = "tx-old"

        stats = await processor.process_pending_payouts()

        assert stats.completed == 1
        assert stats.deferred == 0
        assert len(chain.sent) == 2
        done = await reload(db, payout.id)
        assert done.status == PayoutStatus.COMPLETED
        assert done.tx_hash == "tx-old"

    async def test_soft_gas_policy_flags_shortfall(self, db, processor, chain, settings, user, lottery):
        [payout] = await queue(db, settings, user, "10", lottery=lottery)

        stats = await processor.process_pending_payouts()

        assert stats.completed == 1
        done = await reload(db, payout.id)
        assert done.gas_shortfall is True
        assert done.gas_reserved is False

    async def test_strict_gas_policy_defers(self, db, processor, chain, settings, user, lottery):
        processor.settings = settings.model_copy(update={"gas_reserve_policy": "strict"})
        [payout] = await queue(db, settings, user, "10", lottery=lottery)

        stats = await processor.process_pending_payouts()

        assert stats.deferred == 1
        assert chain.sent == []
        deferred = await reload(db, payout.id)
        assert deferred.deferred is True
        assert deferred.attempts == 0

    async def test_gas_is_reserved_once(self, db, processor, chain, settings, user, lottery):
        await fund_lottery(db, lottery, settings)
        [payout] = await queue(db, settings, user, "10", lottery=lottery)
        chain.queue_result(success=False)

        await processor.process_pending_payouts()
        await processor.process_pending_payouts()

        assert (await reload(db, payout.id)).status == PayoutStatus.COMPLETED
        report = await FundService(db, settings).reconcile_pool(lottery.id, "TON", FundPool.RESERVE)
        assert report["stored"] == Decimal("4.99")

    async def test_pass_is_single_flight(self, db, processor, chain, settings, user):
        await queue(db, settings, user, "10")
        processor._running.acquire()
        try:
            stats = await processor.process_pending_payouts()
        finally:
            processor._running.release()

        assert stats.skipped is True
        assert chain.sent == []
        assert processor.is_running is False


@pytest.mark.asyncio
class TestRecovery:
    async def _stale(self, db, settings, user, message_hash=None, attempts=1) -> int:
        [payout] = await queue(db, settings, user, "10")
        payout = await reload(db, payout.id)
        payout.status = PayoutStatus.PROCESSING
        payout.attempts = attempts
        payout.message_hash = message_hash
        payout.processed_at = utc_now() - timedelta(hours=1)
        await db.commit()
        return payout.id

    async def test_unsubmitted_payout_fails_for_operator(self, db, processor, chain, notifier, settings, user):
        payout_id = await self._stale(db, settings, user)

        stats = await processor.recover_stale_payouts()

        assert stats["failed"] == 1
        failed = await reload(db, payout_id)
        assert failed.status == PayoutStatus.FAILED
        assert failed.last_error == INTERRUPTED_MESSAGE
        assert chain.sent == []
        assert len(notifier.operator_messages) == 1

    async def test_landed_payout_completes(self, db, processor, chain, settings, user):
        payout_id = await self._stale(db, settings, user, message_hash="msg-x")
        chain.landed["msg-x"] = "tx-x"

        stats = await processor.recover_stale_payouts()

        assert stats["completed"] == 1
        assert (await reload(db, payout_id)).tx_hash == "tx-x"
        tx = (await db.execute(select(Transaction).where(Transaction.payout_id == payout_id))).scalar_one()
        assert tx.tx_hash == "tx-x"

    async def test_unconfirmed_payout_is_requeued(self, db, processor, settings, user):
        payout_id = await self._stale(db, settings, user, message_hash="msg-y")

        stats = await processor.recover_stale_payouts()

        assert stats["requeued"] == 1
        requeued = await reload(db, payout_id)
        assert requeued.status == PayoutStatus.PENDING
        assert requeued.message_hash == "msg-y"

    async def test_unconfirmed_payout_out_of_attempts_fails(self, db, processor, settings, user):
        payout_id = await self._stale(db, settings, user, message_hash="msg-z", attempts=3)

        stats = await processor.recover_stale_payouts()

        assert stats["failed"] == 1
        assert (await reload(db, payout_id)).status == PayoutStatus.FAILED

    async def test_recent_processing_is_left_alone(self, db, processor, settings, user):
        [payout] = await queue(db, settings, user, "10")
        await PayoutService(db, settings).mark_processing(payout.id)

        stats = await processor.recover_stale_payouts()

        assert stats == {"completed": 0, "requeued": 0, "failed": 0, "unchecked": 0}

    async def test_recovery_waits_for_running_pass(self, processor):
        processor._running.acquire()
        try:
            assert await processor.recover_stale_payouts() is None
        finally:
            processor._running.release()


@pytest.mark.asyncio
class TestProvisionalHashes:
    async def test_payout_hash_is_resolved(self, db, processor, chain, settings, user):
        [payout] = await queue(db, settings, user, "10")
        chain.queue_result(success=True, tx_hash="msg-p", message_hash="msg-p", provisional=True)
        await processor.process_pending_payouts()
        assert (await reload(db, payout.id)).tx_hash_provisional is True

        chain.landed["msg-p"] = "tx-real"
        stats = await processor.resolve_provisional_hashes()

        assert stats["payouts"] == 1
        resolved = await reload(db, payout.id)
        assert resolved.tx_hash == "tx-real"
        assert resolved.tx_hash_provisional is False
        tx = (
            await db.execute(
                select(Transaction).where(Transaction.payout_id == payout.id).execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert tx.tx_hash == "tx-real"
        assert tx.hash_provisional is False

    async def test_withdrawal_hash_is_resolved(self, db, processor, chain, user):
        tx = Transaction(
            user_id=user.id,
            type=TransactionType.WITHDRAWAL,
            status=TransactionStatus.COMPLETED,
            amount=Decimal("5"),
            currency="TON",
            tx_hash="msg-w",
            hash_provisional=True,
            message_hash="msg-w",
        )
        db.add(tx)
        await db.commit()
        chain.landed["msg-w"] = "tx-w"

        stats = await processor.resolve_provisional_hashes()

        assert stats["withdrawals"] == 1
        resolved = await db.get(Transaction, tx.id, populate_existing=True)
        assert resolved.tx_hash == "tx-w"

    async def test_unlanded_hash_stays_provisional(self, db, processor, chain, settings, user):
        [payout] = await queue(db, settings, user, "10")
        chain.queue_result(success=True, tx_hash="msg-q", message_hash="msg-q", provisional=True)
        await processor.process_pending_payouts()

        stats = await processor.resolve_provisional_hashes()

        assert stats == {"payouts": 0, "withdrawals": 0}
        assert (await reload(db, payout.id)).tx_hash == "msg-q"
