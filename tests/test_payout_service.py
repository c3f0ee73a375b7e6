"""Tests for payout queue storage operations."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from tests.conftest import USER_ADDRESS
from ton_lottery.core.exceptions import NotFoundError, ValidationError
from ton_lottery.models.payout import Payout, PayoutStatus
from ton_lottery.models.user import User
from ton_lottery.services.payout_service import PayoutService
from ton_lottery.utils.helpers import utc_now
from ton_lottery.utils.pagination import PaginationParams


@pytest.fixture
def service(db, settings):
    return PayoutService(db, settings)


@pytest.mark.asyncio
class TestQueue:
    async def test_small_prize_is_one_payout(self, service, user, lottery):
        payouts = await service.queue_payout(user.id, Decimal("30"), "TON", USER_ADDRESS, lottery_id=lottery.id)

        assert len(payouts) == 1
        assert payouts[0].amount == Decimal("30")
        assert payouts[0].split_total == 1
        assert payouts[0].status == PayoutStatus.PENDING
        assert payouts[0].max_attempts == 3

    async def test_large_prize_is_split(self, service, user):
        payouts = await service.queue_payout(user.id, Decimal("120"), "TON", USER_ADDRESS)

        assert [p.amount for p in payouts] == [Decimal("40")] * 3
        assert [(p.split_index, p.split_total) for p in payouts] == [(1, 3), (2, 3), (3, 3)]
        assert all(p.total_amount == Decimal("120") for p in payouts)

    async def test_unknown_currency_is_queued_whole(self, service, user):
        payouts = await service.queue_payout(user.id, Decimal("120"), "BTC", USER_ADDRESS)

        assert len(payouts) == 1

    async def test_amount_must_be_positive(self, service, user):
        with pytest.raises(ValidationError):
            await service.create_payout(user.id, Decimal("0"), "TON", USER_ADDRESS)

    async def test_unknown_payout(self, service):
        with pytest.raises(NotFoundError):
            await service.get_payout(404)


@pytest.mark.asyncio
class TestPendingSelection:
    async def test_oldest_first_and_limited(self, service, user):
        await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await service.queue_payout(user.id, Decimal("20"), "TON", USER_ADDRESS)

        pending = await service.get_pending_payouts(limit=1)

        assert [p.amount for p in pending] == [Decimal("10")]

    async def test_future_attempts_are_not_eligible(self, db, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await db.execute(
            update(Payout).where(Payout.id == payout.id).values(next_attempt_at=utc_now() + timedelta(hours=1))
        )
        await db.commit()

        assert await service.get_pending_payouts(limit=10) == []

    async def test_exhausted_attempts_are_not_eligible(self, db, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await db.execute(update(Payout).where(Payout.id == payout.id).values(attempts=3))
        await db.commit()

        assert await service.get_pending_payouts(limit=10) == []


@pytest.mark.asyncio
class TestTransitions:
    async def test_claim_once(self, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)

        assert await service.mark_processing(payout.id) is True
        assert await service.mark_processing(payout.id) is False

        claimed = await service.get_payout(payout.id)
        assert claimed.status == PayoutStatus.PROCESSING
        assert claimed.attempts == 1
        assert claimed.processed_at is not None

    async def test_retry_then_fail(self, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)

        await service.mark_processing(payout.id)
        await service.mark_failed(payout.id, "Network error", final=False, message_hash="msg-1")
        retried = await service.get_payout(payout.id)
        assert retried.status == PayoutStatus.PENDING
        assert retried.last_error == "Network error"
        assert retried.message_hash == "msg-1"
        assert retried.next_attempt_at is not None

        await service.mark_processing(payout.id)
        await service.mark_failed(payout.id, "Network error", final=True)
        failed = await service.get_payout(payout.id)
        assert failed.status == PayoutStatus.FAILED
        assert failed.attempts == 2
        # An attempt without a new message keeps the earlier hash
        assert failed.message_hash == "msg-1"

    async def test_message_hash_needs_a_claimed_payout(self, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)

        assert await service.record_message_hash(payout.id, "msg-1") is False
        await service.mark_processing(payout.id)
        assert await service.record_message_hash(payout.id, "msg-1") is True

        claimed = await service.get_payout(payout.id)
        assert claimed.status == PayoutStatus.PROCESSING
        assert claimed.message_hash == "msg-1"

    async def test_hash_is_written_once(self, db, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await service.mark_processing(payout.id)

        assert await service.mark_completed(payout.id, "tx-1") is True
        assert await service.mark_completed(payout.id, "tx-2") is False
        await db.commit()

        completed = await service.get_payout(payout.id)
        assert completed.tx_hash == "tx-1"
        assert completed.completed_at is not None

    async def test_defer_keeps_attempts(self, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)

        assert await service.defer(payout.id, "Daily payout limit reached") is True

        deferred = await service.get_payout(payout.id)
        assert deferred.status == PayoutStatus.PENDING
        assert deferred.deferred is True
        assert deferred.attempts == 0
        assert deferred.next_attempt_at > utc_now()
        assert await service.get_pending_payouts(limit=10) == []

    async def test_requeue_deferred(self, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await service.defer(payout.id, "Daily payout limit reached")

        assert await service.requeue_deferred_payouts() == 1
        assert [p.id for p in await service.get_pending_payouts(limit=10)] == [payout.id]

    async def test_reset_failed(self, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await service.mark_processing(payout.id)
        await service.mark_failed(payout.id, "boom", final=True)

        assert await service.reset_failed_payout(payout.id) is True
        reset = await service.get_payout(payout.id)
        assert reset.status == PayoutStatus.PENDING
        assert reset.attempts == 0

    async def test_only_failed_payouts_reset(self, service, user):
        [payout] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)

        assert await service.reset_failed_payout(payout.id) is False

    async def test_daily_total_counts_completed_only(self, db, service, user):
        [first] = await service.queue_payout(user.id, Decimal("30"), "TON", USER_ADDRESS)
        await service.queue_payout(user.id, Decimal("20"), "TON", USER_ADDRESS)
        await service.mark_processing(first.id)
        await service.mark_completed(first.id, "tx-1")
        await db.commit()

        assert await service.get_today_payout_total("TON") == Decimal("30")
        assert await service.would_exceed_daily_limit("TON", Decimal("70")) is False
        assert await service.would_exceed_daily_limit("TON", Decimal("70.5")) is True

    async def test_count_by_status(self, service, user):
        [first] = await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await service.mark_processing(first.id)

        assert await service.count_by_status() == {"pending": 1, "processing": 1}


@pytest.mark.asyncio
class TestHistory:
    async def test_user_payouts_newest_first(self, db, service, user):
        other = User(telegram_id=444555666, username="other")
        db.add(other)
        await db.commit()
        await service.queue_payout(user.id, Decimal("10"), "TON", USER_ADDRESS)
        await service.queue_payout(user.id, Decimal("120"), "TON", USER_ADDRESS)
        await service.queue_payout(other.id, Decimal("5"), "TON", USER_ADDRESS)

        first = await service.list_user_payouts(user.id, PaginationParams(page=1, page_size=3))

        assert first.total == 4
        assert first.total_pages == 2
        assert [p.split_index for p in first.items] == [3, 2, 1]
        assert all(p.amount == Decimal("40") for p in first.items)

        second = await service.list_user_payouts(user.id, PaginationParams(page=2, page_size=3))
        assert [p.amount for p in second.items] == [Decimal("10")]

    async def test_user_without_payouts(self, service, user):
        page = await service.list_user_payouts(user.id)

        assert page.items == []
        assert page.total == 0
