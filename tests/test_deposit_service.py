"""Tests for deposit memos and the inbound transfer monitor."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from tests.conftest import DEPOSIT_ADDRESS, make_transfer
from ton_lottery.blockchain.base import IncomingTransfers
from ton_lottery.core.exceptions import NotFoundError, ValidationError
from ton_lottery.models.deposit import DepositMemo, ScanCursor, UnmatchedDeposit, UnmatchedDepositStatus
from ton_lottery.models.ledger import BalanceChangeType, BalanceLedger
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.models.user import User
from ton_lottery.services.deposit_service import MEMO_PREFIX, DepositService


@pytest.fixture
def service(db, chain, notifier, settings):
    return DepositService(db, chain=chain, notifier=notifier, settings=settings)


async def cursor_of(db) -> ScanCursor:
    result = await db.execute(
        select(ScanCursor).where(ScanCursor.account == DEPOSIT_ADDRESS).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
class TestDepositInfo:
    async def test_memo_is_stable_until_used(self, service, user):
        first = await service.get_deposit_info(user.id)
        second = await service.get_deposit_info(user.id)

        assert first.address == DEPOSIT_ADDRESS
        assert first.memo.startswith(MEMO_PREFIX)
        assert first.memo == second.memo
        assert first.min_deposit["TON"] == Decimal("1")

    async def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            await service.get_deposit_info(999)


@pytest.mark.asyncio
class TestCheckDeposits:
    async def _memo(self, service, user) -> str:
        return (await service.get_deposit_info(user.id)).memo

    async def test_matched_deposit_is_credited(self, db, service, chain, notifier, user):
        memo = await self._memo(service, user)
        chain.incoming = IncomingTransfers(
            transfers=[make_transfer("hash-1", 100, "5", memo)], latest_lt=100, latest_hash="hash-1"
        )

        stats = await service.check_deposits()

        assert stats["credited"] == 1
        refreshed = await db.get(User, user.id, populate_existing=True)
        assert refreshed.balance_ton == Decimal("15")

        tx = (await db.execute(select(Transaction).where(Transaction.tx_hash == "hash-1"))).scalar_one()
        assert tx.type == TransactionType.DEPOSIT
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.amount == Decimal("5")
        assert tx.memo == memo

        ledger = (await db.execute(select(BalanceLedger))).scalar_one()
        assert ledger.change_type == BalanceChangeType.DEPOSIT_CREDIT
        assert ledger.pre_balance == Decimal("10")
        assert ledger.post_balance == Decimal("15")
        assert ledger.transaction_id == tx.id

        used = (await db.execute(select(DepositMemo).where(DepositMemo.memo == memo))).scalar_one()
        assert used.used is True
        assert notifier.user_messages and notifier.user_messages[0][0] == user.id

    async def test_used_memo_is_replaced(self, service, chain, user):
        memo = await self._memo(service, user)
        chain.incoming = IncomingTransfers(transfers=[make_transfer("hash-1", 100, "5", memo)], latest_lt=100)
        await service.check_deposits()

        assert await self._memo(service, user) != memo

    async def test_same_transfer_is_credited_once(self, db, service, chain, user):
        memo = await self._memo(service, user)
        transfer = make_transfer("hash-1", 100, "5", memo)
        chain.incoming = IncomingTransfers(transfers=[transfer], latest_lt=100)
        await service.check_deposits()

        # The same page comes back, e.g. after a restart before the cursor moved
        assert await service.process_transfer(transfer) == "known"
        refreshed = await db.get(User, user.id, populate_existing=True)
        assert refreshed.balance_ton == Decimal("15")

    async def test_below_minimum_is_skipped(self, db, service, chain, user):
        memo = await self._memo(service, user)
        chain.incoming = IncomingTransfers(transfers=[make_transfer("hash-1", 100, "0.5", memo)], latest_lt=100)

        stats = await service.check_deposits()

        assert stats["below_minimum"] == 1
        refreshed = await db.get(User, user.id, populate_existing=True)
        assert refreshed.balance_ton == Decimal("10")

    async def test_unknown_memo_goes_to_review(self, db, service, chain, notifier, user):
        chain.incoming = IncomingTransfers(
            transfers=[make_transfer("hash-1", 100, "5", "dep_nobody"), make_transfer("hash-2", 101, "5", None)],
            latest_lt=101,
        )

        stats = await service.check_deposits()

        assert stats["unmatched"] == 2
        held = (await db.execute(select(UnmatchedDeposit).order_by(UnmatchedDeposit.id))).scalars().all()
        assert [d.reason for d in held] == ["unknown_memo", "no_memo"]
        assert len(notifier.operator_messages) == 2
        refreshed = await db.get(User, user.id, populate_existing=True)
        assert refreshed.balance_ton == Decimal("10")

    async def test_reused_memo_is_held(self, service, chain, user):
        memo = await self._memo(service, user)
        chain.incoming = IncomingTransfers(
            transfers=[make_transfer("hash-1", 100, "5", memo), make_transfer("hash-2", 101, "5", memo)],
            latest_lt=101,
        )

        stats = await service.check_deposits()

        assert stats["credited"] == 1
        assert stats["unmatched"] == 1
        page = await service.list_unmatched_deposits()
        assert page.items[0].tx_hash == "hash-2"
        assert page.items[0].reason == "memo_used"

    async def test_unsupported_currency_is_held(self, service, chain, user):
        memo = await self._memo(service, user)
        chain.incoming = IncomingTransfers(
            transfers=[make_transfer("hash-1", 100, "5", memo, currency="NOT")], latest_lt=100
        )

        stats = await service.check_deposits()

        assert stats["unmatched"] == 1
        page = await service.list_unmatched_deposits()
        assert page.items[0].reason == "unsupported_currency"

    async def test_cursor_advances_to_latest(self, db, service, chain, user):
        memo = await self._memo(service, user)
        chain.incoming = IncomingTransfers(
            transfers=[make_transfer("hash-1", 100, "5", memo)], latest_lt=150, latest_hash="other"
        )
        await service.check_deposits()
        await service.check_deposits()

        assert chain.since_lts == [0, 150]
        cursor = (
            await db.execute(
                select(ScanCursor).where(ScanCursor.account == DEPOSIT_ADDRESS).execution_options(
                    populate_existing=True
                )
            )
        ).scalar_one()
        assert cursor.last_lt == 150
        assert cursor.last_hash == "other"

    async def test_backlog_is_walked_across_polls(self, db, service, chain, user):
        memo = await self._memo(service, user)
        chain.batches = [
            IncomingTransfers(
                transfers=[make_transfer("hash-3", 300, "5", memo)],
                latest_lt=300,
                latest_hash="top",
                complete=False,
                resume_lt=200,
                resume_hash="h200",
            ),
            IncomingTransfers(latest_lt=200, latest_hash="h200", complete=False, resume_lt=100, resume_hash="h100"),
            IncomingTransfers(latest_lt=100, latest_hash="h100"),
        ]

        await service.check_deposits()
        walking = await cursor_of(db)
        assert (walking.last_lt, walking.walk_lt, walking.walk_top_lt) == (0, 200, 300)

        for _ in range(3):
            await service.check_deposits()

        assert chain.befores == [None, 200, 100, None]
        assert chain.since_lts == [0, 0, 0, 300]
        cursor = await cursor_of(db)
        assert cursor.last_lt == 300
        assert cursor.last_hash == "top"
        assert cursor.walk_lt is None
        assert cursor.walk_top_lt is None
        refreshed = await db.get(User, user.id, populate_existing=True)
        assert refreshed.balance_ton == Decimal("15")

    async def test_blocked_walk_keeps_resume_point(self, db, service, chain, user, monkeypatch):
        chain.batches = [
            IncomingTransfers(latest_lt=300, latest_hash="top", complete=False, resume_lt=200, resume_hash="h200"),
            IncomingTransfers(
                transfers=[make_transfer("hash-2", 200, "5", None)],
                latest_lt=200,
                latest_hash="h200",
                complete=False,
                resume_lt=100,
                resume_hash="h100",
            ),
        ]
        await service.check_deposits()

        async def broken(transfer):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(service, "process_transfer", broken)
        stats = await service.check_deposits()
        monkeypatch.undo()

        assert stats["errors"] == 1
        cursor = await cursor_of(db)
        assert (cursor.last_lt, cursor.walk_lt, cursor.walk_top_lt) == (0, 200, 300)

        await service.check_deposits()

        assert chain.befores == [None, 200, 200]
        assert (await cursor_of(db)).last_lt == 300


@pytest.mark.asyncio
class TestManualReview:
    async def _hold(self, service, chain) -> UnmatchedDeposit:
        chain.incoming = IncomingTransfers(transfers=[make_transfer("hash-9", 100, "2.5", None)], latest_lt=100)
        await service.check_deposits()
        return (await service.list_unmatched_deposits()).items[0]

    async def test_resolve_credits_user(self, db, service, chain, user):
        held = await self._hold(service, chain)

        tx = await service.resolve_unmatched_deposit(held.id, user.id)

        assert tx.tx_hash == "hash-9"
        assert tx.amount == Decimal("2.5")
        refreshed = await db.get(User, user.id, populate_existing=True)
        assert refreshed.balance_ton == Decimal("12.5")
        resolved = await db.get(UnmatchedDeposit, held.id, populate_existing=True)
        assert resolved.status == UnmatchedDepositStatus.CREDITED
        assert resolved.resolved_user_id == user.id

    async def test_resolve_twice_is_rejected(self, service, chain, user):
        held = await self._hold(service, chain)
        await service.resolve_unmatched_deposit(held.id, user.id)

        with pytest.raises(ValidationError):
            await service.resolve_unmatched_deposit(held.id, user.id)

    async def test_resolved_hash_is_known(self, service, chain, user):
        held = await self._hold(service, chain)
        await service.resolve_unmatched_deposit(held.id, user.id)

        assert await service.process_transfer(make_transfer("hash-9", 100, "2.5", None)) == "known"

    async def test_dismiss(self, db, service, chain, user):
        held = await self._hold(service, chain)

        assert await service.dismiss_unmatched_deposit(held.id) is True
        assert await service.dismiss_unmatched_deposit(held.id) is False
        assert (await service.list_unmatched_deposits()).total == 0
