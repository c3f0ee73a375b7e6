"""Tests for the withdrawal saga, limits and reconciliation."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from tests.conftest import USER_ADDRESS
from ton_lottery.models.ledger import BalanceChangeType, BalanceLedger
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.models.user import User
from ton_lottery.services.withdrawal_service import (
    AWAITING_CONFIRMATION_MESSAGE,
    REFUNDED_MESSAGE,
    WithdrawalService,
)
from ton_lottery.utils.helpers import utc_now


@pytest.fixture
def service(db, chain, notifier, signing_lock, settings):
    return WithdrawalService(db, chain=chain, notifier=notifier, signing_lock=signing_lock, settings=settings)


async def set_balance(db, user_id: int, amount: str) -> None:
    await db.execute(update(User).where(User.id == user_id).values(balance_ton=Decimal(amount)))
    await db.commit()


async def balance_of(db, user_id: int) -> Decimal:
    return (await db.get(User, user_id, populate_existing=True)).balance_ton


@pytest.mark.asyncio
class TestRequestWithdrawal:
    async def test_successful_withdrawal(self, db, service, chain, notifier, user):
        result = await service.request_withdrawal(user.id, "5", USER_ADDRESS)

        assert result.success is True
        assert result.status == TransactionStatus.COMPLETED
        assert result.tx_hash == "tx-1"
        assert result.fee == Decimal("0.05")
        assert await balance_of(db, user.id) == Decimal("4.95")
        assert chain.sent == [("TON", USER_ADDRESS, Decimal("5"), f"Withdrawal #{result.transaction_id}")]

        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.tx_hash == "tx-1"
        assert tx.message_hash == "msg-1"
        assert tx.completed_at is not None

        ledger = (await db.execute(select(BalanceLedger))).scalar_one()
        assert ledger.change_type == BalanceChangeType.WITHDRAW_DEBIT
        assert ledger.amount == Decimal("-5.05")
        assert len(notifier.user_messages) == 1

    async def test_failed_send_is_refunded(self, db, service, chain, notifier, user):
        chain.queue_result(success=False, error="Network error", message_hash="msg-lost")

        result = await service.request_withdrawal(user.id, "5", USER_ADDRESS)

        assert result.success is False
        assert result.error == REFUNDED_MESSAGE
        assert result.details == {"reason": "Network error"}
        assert await balance_of(db, user.id) == Decimal("10")

        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.status == TransactionStatus.FAILED
        assert tx.message_hash == "msg-lost"

        lines = (await db.execute(select(BalanceLedger).order_by(BalanceLedger.id))).scalars().all()
        assert [line.change_type for line in lines] == [
            BalanceChangeType.WITHDRAW_DEBIT,
            BalanceChangeType.WITHDRAW_REFUND,
        ]
        assert notifier.user_messages == []

    async def test_provisional_hash_is_reported(self, db, service, chain, user):
        chain.queue_result(success=True, tx_hash="msg-7", message_hash="msg-7", provisional=True)

        result = await service.request_withdrawal(user.id, "5", USER_ADDRESS)

        assert result.success is True
        assert result.tx_hash_provisional is True
        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.hash_provisional is True

    async def test_invalid_address(self, db, service, chain, user):
        result = await service.request_withdrawal(user.id, "5", "not-an-address")

        assert result.success is False
        assert result.error == "Invalid TON address"
        assert chain.sent == []
        assert (await db.execute(select(Transaction))).scalars().all() == []

    async def test_below_minimum(self, service, user):
        result = await service.request_withdrawal(user.id, "0.5", USER_ADDRESS)

        assert result.success is False
        assert result.error.startswith("Minimum withdrawal")

    async def test_fee_must_be_covered(self, db, service, chain, user):
        result = await service.request_withdrawal(user.id, "10", USER_ADDRESS)

        assert result.success is False
        assert result.error == "Insufficient balance"
        assert result.details["required"] == "10.05"
        assert chain.sent == []
        assert await balance_of(db, user.id) == Decimal("10")

    async def test_unsupported_currency(self, service, user):
        result = await service.request_withdrawal(user.id, "5", USER_ADDRESS, currency="BTC")

        assert result.success is False
        assert result.error.startswith("Unsupported currency")

    async def test_unknown_user(self, service):
        result = await service.request_withdrawal(999, "5", USER_ADDRESS)

        assert result.success is False
        assert result.error == "User not found"

    async def test_daily_limit(self, db, service, user):
        await set_balance(db, user.id, "500")

        assert (await service.request_withdrawal(user.id, "60", USER_ADDRESS)).success is True
        result = await service.request_withdrawal(user.id, "50", USER_ADDRESS)

        assert result.success is False
        assert result.error == "Daily withdrawal limit exceeded"
        assert Decimal(result.details["remaining"]) == Decimal("40")

    async def test_failed_withdrawals_do_not_use_the_limit(self, db, service, chain, user):
        await set_balance(db, user.id, "500")
        chain.queue_result(success=False)
        await service.request_withdrawal(user.id, "60", USER_ADDRESS)

        assert (await service.request_withdrawal(user.id, "60", USER_ADDRESS)).success is True

    async def test_winnings_raise_the_limit(self, db, service, user):
        await set_balance(db, user.id, "500")
        db.add(
            Transaction(
                user_id=user.id,
                type=TransactionType.PRIZE,
                status=TransactionStatus.COMPLETED,
                amount=Decimal("150"),
                currency="TON",
            )
        )
        await db.commit()

        assert (await service.request_withdrawal(user.id, "120", USER_ADDRESS)).success is True


@pytest.mark.asyncio
class TestUnconfirmedSend:
    @pytest.fixture
    def slow_service(self, db, chain, notifier, signing_lock, settings):
        chain.submit_delay = 2
        return WithdrawalService(
            db,
            chain=chain,
            notifier=notifier,
            signing_lock=signing_lock,
            settings=settings.model_copy(update={"send_timeout_seconds": 1}),
        )

    async def _backdate(self, db, tx_id: int) -> None:
        await db.execute(
            update(Transaction)
            .where(Transaction.id == tx_id)
            .values(created_at=utc_now() - timedelta(hours=1))
        )
        await db.commit()

    async def test_timed_out_send_stays_debited(self, db, slow_service, chain, user):
        result = await slow_service.request_withdrawal(user.id, "5", USER_ADDRESS)

        assert result.success is False
        assert result.status == TransactionStatus.DEBITED
        assert result.error == AWAITING_CONFIRMATION_MESSAGE
        assert result.details["message_hash"] == "msg-1"
        assert chain.lookups == ["msg-1"]
        assert await balance_of(db, user.id) == Decimal("4.95")

        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.status == TransactionStatus.DEBITED
        assert tx.message_hash == "msg-1"

    async def test_timed_out_send_that_landed_completes(self, db, slow_service, chain, user):
        chain.landed["msg-1"] = "tx-quick"

        result = await slow_service.request_withdrawal(user.id, "5", USER_ADDRESS)

        assert result.success is True
        assert result.tx_hash == "tx-quick"
        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.message_hash == "msg-1"

    async def test_reconcile_completes_late_landing(self, db, slow_service, chain, user):
        result = await slow_service.request_withdrawal(user.id, "5", USER_ADDRESS)
        await self._backdate(db, result.transaction_id)
        chain.landed["msg-1"] = "tx-late"

        stats = await slow_service.reconcile_withdrawals()

        assert stats["completed"] == 1
        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.tx_hash == "tx-late"
        assert await balance_of(db, user.id) == Decimal("4.95")
        assert len(chain.sent) == 1

    async def test_refund_keeps_hash_so_landing_is_flagged(self, db, slow_service, chain, notifier, user):
        result = await slow_service.request_withdrawal(user.id, "5", USER_ADDRESS)
        await self._backdate(db, result.transaction_id)

        stats = await slow_service.reconcile_withdrawals()

        assert stats["refunded"] == 1
        assert await balance_of(db, user.id) == Decimal("10")
        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.status == TransactionStatus.FAILED
        assert tx.message_hash == "msg-1"

        chain.landed["msg-1"] = "tx-after-refund"
        stats = await slow_service.reconcile_withdrawals()

        assert stats["late_landings"] == 1
        tx = await db.get(Transaction, result.transaction_id, populate_existing=True)
        assert tx.needs_review is True
        assert "tx-after-refund" in notifier.operator_messages[0]


@pytest.mark.asyncio
class TestSigningLock:
    async def test_withdrawal_waits_for_the_signing_wallet(self, db, service, chain, signing_lock, user):
        async with signing_lock.hold():
            task = asyncio.create_task(service.request_withdrawal(user.id, "5", USER_ADDRESS))
            await asyncio.sleep(0.3)
            assert not task.done()
            assert chain.sent == []

        result = await task

        assert result.success is True
        assert len(chain.sent) == 1


@pytest.mark.asyncio
class TestWithdrawalInfo:
    async def test_info(self, service, user):
        info = await service.get_withdrawal_info(user.id, "TON")

        assert info.balance == Decimal("10")
        assert info.fee == Decimal("0.05")
        assert info.daily_limit == Decimal("100")
        assert info.used_today == Decimal("0")
        assert info.max_withdrawable == Decimal("9.95")

    async def test_info_after_withdrawal(self, service, user):
        await service.request_withdrawal(user.id, "5", USER_ADDRESS)

        info = await service.get_withdrawal_info(user.id, "TON")

        assert info.used_today == Decimal("5")
        assert info.remaining_today == Decimal("95")
        assert info.max_withdrawable == Decimal("4.9")


@pytest.mark.asyncio
class TestReconcile:
    async def _stuck(self, db, user, status, message_hash=None) -> int:
        tx = Transaction(
            user_id=user.id,
            type=TransactionType.WITHDRAWAL,
            status=status,
            amount=Decimal("5"),
            fee=Decimal("0.05"),
            currency="TON",
            to_address=USER_ADDRESS,
            message_hash=message_hash,
            created_at=utc_now() - timedelta(hours=1),
        )
        db.add(tx)
        await db.commit()
        return tx.id

    async def test_pending_is_abandoned(self, db, service, user):
        tx_id = await self._stuck(db, user, TransactionStatus.PENDING)

        stats = await service.reconcile_withdrawals()

        assert stats["abandoned"] == 1
        tx = await db.get(Transaction, tx_id, populate_existing=True)
        assert tx.status == TransactionStatus.FAILED
        assert await balance_of(db, user.id) == Decimal("10")

    async def test_landed_message_completes(self, db, service, chain, user):
        tx_id = await self._stuck(db, user, TransactionStatus.DEBITED, message_hash="msg-a")
        chain.landed["msg-a"] = "tx-landed"

        stats = await service.reconcile_withdrawals()

        assert stats["completed"] == 1
        tx = await db.get(Transaction, tx_id, populate_existing=True)
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.tx_hash == "tx-landed"
        assert await balance_of(db, user.id) == Decimal("10")

    async def test_missing_message_is_refunded(self, db, service, user):
        tx_id = await self._stuck(db, user, TransactionStatus.DEBITED, message_hash="msg-b")

        stats = await service.reconcile_withdrawals()

        assert stats["refunded"] == 1
        tx = await db.get(Transaction, tx_id, populate_existing=True)
        assert tx.status == TransactionStatus.FAILED
        assert await balance_of(db, user.id) == Decimal("15.05")

    async def test_unsubmitted_debit_needs_review(self, db, service, notifier, user):
        tx_id = await self._stuck(db, user, TransactionStatus.DEBITED)

        stats = await service.reconcile_withdrawals()

        assert stats["needs_review"] == 1
        tx = await db.get(Transaction, tx_id, populate_existing=True)
        assert tx.status == TransactionStatus.DEBITED
        assert tx.needs_review is True
        assert len(notifier.operator_messages) == 1

    async def test_lookup_failure_leaves_row(self, db, service, chain, user):
        tx_id = await self._stuck(db, user, TransactionStatus.DEBITED, message_hash="msg-c")
        chain.lookup_error = True

        await service.reconcile_withdrawals()

        tx = await db.get(Transaction, tx_id, populate_existing=True)
        assert tx.status == TransactionStatus.DEBITED

    async def test_recent_rows_are_left_alone(self, db, service, user):
        tx = Transaction(
            user_id=user.id,
            type=TransactionType.WITHDRAWAL,
            status=TransactionStatus.PENDING,
            amount=Decimal("5"),
            currency="TON",
        )
        db.add(tx)
        await db.commit()

        stats = await service.reconcile_withdrawals()

        assert stats["abandoned"] == 0

    async def test_late_landing_is_flagged(self, db, service, chain, notifier, user):
        tx_id = await self._stuck(db, user, TransactionStatus.FAILED, message_hash="msg-d")
        chain.landed["msg-d"] = "tx-late"

        stats = await service.reconcile_withdrawals()

        assert stats["late_landings"] == 1
        tx = await db.get(Transaction, tx_id, populate_existing=True)
        assert tx.needs_review is True
        assert tx.status == TransactionStatus.FAILED
        assert "tx-late" in notifier.operator_messages[0]
