"""Deposit Service - deposit memos and the inbound transfer monitor.

Users deposit to one shared account and attribute their transfer with a
single-use memo in the transfer comment. The monitor polls the account
history from a persisted cursor and credits each matched transfer exactly
once: the memo consumption, the balance credit, the ledger line and the
DEPOSIT transaction record commit together or not at all.
"""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.blockchain.base import BlockchainService, IncomingTransfer
from ton_lottery.blockchain.factory import get_blockchain_service
from ton_lottery.core.config import Settings, get_settings
from ton_lottery.core.constants import SUPPORTED_CURRENCIES, Currency
from ton_lottery.core.exceptions import NotFoundError, ValidationError
from ton_lottery.models.deposit import (
    DepositMemo,
    ScanCursor,
    UnmatchedDeposit,
    UnmatchedDepositStatus,
)
from ton_lottery.models.ledger import BalanceChangeType
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.models.user import User
from ton_lottery.schemas.wallet import DepositInfo
from ton_lottery.services.ledger_service import LedgerService
from ton_lottery.services.notification_service import Notifier, format_deposit_credited, get_notifier
from ton_lottery.utils.amount import quantize_money
from ton_lottery.utils.helpers import utc_now
from ton_lottery.utils.pagination import PaginatedResult, PaginationParams, paginate_query

logger = logging.getLogger(__name__)

MEMO_PREFIX = "dep_"


@dataclass
class CursorSnapshot:
    """Plain copy of a scan cursor row."""

    last_lt: int = 0
    walk_lt: int | None = None
    walk_hash: str | None = None
    walk_top_lt: int | None = None
    walk_top_hash: str | None = None

    @property
    def walking(self) -> bool:
        return self.walk_lt is not None


def generate_deposit_memo(user_id: int) -> str:
    """Unpredictable memo, e.g. ``dep_3f9a1c0b7e2d``."""
    seed = f"{user_id}:{time.time_ns()}:{secrets.token_hex(8)}"
    return MEMO_PREFIX + hashlib.sha256(seed.encode()).hexdigest()[:12]


class DepositService:
    """Service for deposit attribution and crediting."""

    def __init__(
        self,
        db: AsyncSession,
        chain: BlockchainService | None = None,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.chain = chain or get_blockchain_service()
        self.notifier = notifier or get_notifier()
        self.settings = settings or get_settings()

    # =========================================================================
    # Deposit info
    # =========================================================================

    async def get_deposit_info(self, user_id: int) -> DepositInfo:
        """Deposit address, the user's current memo and minimums.

        Repeated calls return the same memo until a deposit consumes it.

        Raises:
            NotFoundError: User does not exist
        """
        if await self.db.get(User, user_id) is None:
            raise NotFoundError("User not found", {"user_id": user_id})

        memo = await self.get_or_create_memo(user_id)
        min_deposit = {c: self.settings.min_deposit(c) for c in Currency}
        return DepositInfo(
            address=self.chain.deposit_address,
            memo=memo.memo,
            currencies=list(Currency),
            min_deposit=min_deposit,
            instructions=[
                f"Send TON or USDT to {self.chain.deposit_address}",
                f"Put {memo.memo} in the transfer comment, otherwise the deposit cannot be credited",
                f"Minimum deposit: {min_deposit[Currency.TON]} TON / {min_deposit[Currency.USDT]} USDT",
            ],
        )

    async def get_or_create_memo(self, user_id: int) -> DepositMemo:
        """The user's oldest unused memo, minting one if none exists."""
        result = await self.db.execute(
            select(DepositMemo)
            .where(DepositMemo.user_id == user_id, DepositMemo.used == False)  # noqa: E712
            .order_by(DepositMemo.id)
            .limit(1)
        )
        memo = result.scalar_one_or_none()
        if memo is not None:
            return memo

        memo = DepositMemo(user_id=user_id, memo=generate_deposit_memo(user_id))
        self.db.add(memo)
        await self.db.commit()
        logger.info(f"Issued deposit memo {memo.memo} to user {user_id}")
        return memo

    # =========================================================================
    # Monitor
    # =========================================================================

    async def _get_cursor(self, account: str) -> CursorSnapshot:
        result = await self.db.execute(
            select(
                ScanCursor.last_lt,
                ScanCursor.walk_lt,
                ScanCursor.walk_hash,
                ScanCursor.walk_top_lt,
                ScanCursor.walk_top_hash,
            ).where(ScanCursor.account == account)
        )
        row = result.one_or_none()
        if row is None:
            self.db.add(ScanCursor(account=account, last_lt=0))
            await self.db.commit()
            return CursorSnapshot()
        return CursorSnapshot(*row)

    async def _advance_cursor(self, account: str, lt: int, tx_hash: str | None) -> None:
        await self.db.execute(
            update(ScanCursor)
            .where(ScanCursor.account == account, ScanCursor.last_lt < lt)
            .values(
                last_lt=lt,
                last_hash=tx_hash,
                walk_lt=None,
                walk_hash=None,
                walk_top_lt=None,
                walk_top_hash=None,
                updated_at=utc_now(),
            )
        )
        await self.db.commit()

    async def _save_walk(
        self, account: str, resume_lt: int, resume_hash: str | None, top_lt: int | None, top_hash: str | None
    ) -> None:
        """Remember where an incomplete history walk stopped."""
        await self.db.execute(
            update(ScanCursor)
            .where(ScanCursor.account == account)
            .values(
                walk_lt=resume_lt,
                walk_hash=resume_hash,
                walk_top_lt=top_lt,
                walk_top_hash=top_hash,
                updated_at=utc_now(),
            )
        )
        await self.db.commit()

    async def check_deposits(self) -> dict[str, int]:
        """Process inbound transfers since the persisted cursor.

        The cursor only moves across a contiguous run of transfers handled
        without error; a failing transfer is retried on the next poll.

        A backlog larger than one poll's page budget is walked backwards over
        several polls: each poll resumes below the oldest transaction the
        previous one read, and the cursor jumps to the newest transaction of
        the walk once it reaches the old cursor.

        Returns:
            Counters per outcome
        """
        stats = {"seen": 0, "credited": 0, "known": 0, "below_minimum": 0, "unmatched": 0, "errors": 0}
        account = self.chain.deposit_address
        cursor = await self._get_cursor(account)
        batch = await self.chain.get_incoming_transfers(
            cursor.last_lt, before_lt=cursor.walk_lt, before_hash=cursor.walk_hash
        )

        advance_to: tuple[int, str | None] | None = None
        blocked = False
        for transfer in batch.transfers:
            stats["seen"] += 1
            try:
                outcome = await self.process_transfer(transfer)
            except Exception:
                await self.db.rollback()
                logger.exception(f"Failed to process inbound transfer {transfer.tx_hash}")
                stats["errors"] += 1
                blocked = True
                continue
            stats[outcome] = stats.get(outcome, 0) + 1
            if not blocked:
                advance_to = (transfer.lt, transfer.tx_hash)

        if blocked and (cursor.walking or not batch.complete):
            logger.warning("Deposit scan blocked, the same history slice is read again on the next poll")
        elif not batch.complete:
            if batch.resume_lt is not None:
                if cursor.walking:
                    top = (cursor.walk_top_lt, cursor.walk_top_hash)
                else:
                    top = (batch.latest_lt, batch.latest_hash)
                await self._save_walk(account, batch.resume_lt, batch.resume_hash, *top)
                logger.info(f"Deposit history walk continues below lt {batch.resume_lt}")
        elif cursor.walking:
            if cursor.walk_top_lt is not None:
                await self._advance_cursor(account, cursor.walk_top_lt, cursor.walk_top_hash)
        else:
            if not blocked and batch.latest_lt is not None:
                advance_to = (batch.latest_lt, batch.latest_hash)
            if advance_to is not None and advance_to[0] > cursor.last_lt:
                await self._advance_cursor(account, *advance_to)

        if stats["seen"]:
            logger.info(f"Deposit scan: {stats}")
        return stats

    async def _is_known(self, tx_hash: str) -> bool:
        credited = await self.db.execute(
            select(
                exists().where(
                    Transaction.tx_hash == tx_hash,
                    Transaction.hash_provisional == False,  # noqa: E712
                )
            )
        )
        if credited.scalar():
            return True
        held = await self.db.execute(select(exists().where(UnmatchedDeposit.tx_hash == tx_hash)))
        return bool(held.scalar())

    async def process_transfer(self, transfer: IncomingTransfer) -> str:
        """Handle one inbound transfer.

        Returns:
            Outcome: known, below_minimum, unmatched or credited
        """
        if await self._is_known(transfer.tx_hash):
            return "known"

        if transfer.currency not in SUPPORTED_CURRENCIES:
            await self._hold_unmatched(transfer, "unsupported_currency")
            return "unmatched"

        minimum = self.settings.min_deposit(transfer.currency)
        if transfer.amount < minimum:
            logger.info(
                f"Deposit {transfer.tx_hash} of {transfer.amount} {transfer.currency} "
                f"below minimum {minimum}, skipped"
            )
            return "below_minimum"

        if not transfer.comment:
            await self._hold_unmatched(transfer, "no_memo")
            return "unmatched"

        result = await self.db.execute(select(DepositMemo).where(DepositMemo.memo == transfer.comment))
        memo = result.scalar_one_or_none()
        if memo is None:
            await self._hold_unmatched(transfer, "unknown_memo")
            return "unmatched"
        if memo.used:
            await self._hold_unmatched(transfer, "memo_used")
            return "unmatched"

        outcome = await self._credit(memo.user_id, transfer, memo_id=memo.id)
        if outcome == "memo_used":
            await self._hold_unmatched(transfer, "memo_used")
            return "unmatched"
        return outcome

    async def _credit(
        self,
        user_id: int,
        transfer: IncomingTransfer,
        memo_id: int | None = None,
        unmatched_id: int | None = None,
    ) -> str:
        """Credit a transfer in one storage transaction.

        Returns:
            credited, known (hash already recorded) or memo_used (memo consumed
            concurrently)
        """
        now = utc_now()
        amount = quantize_money(transfer.amount)
        if memo_id is not None:
            consumed = await self.db.execute(
                update(DepositMemo)
                .where(DepositMemo.id == memo_id, DepositMemo.used == False)  # noqa: E712
                .values(used=True, used_at=now)
            )
            if consumed.rowcount != 1:
                await self.db.rollback()
                return "memo_used"

        if unmatched_id is not None:
            claimed = await self.db.execute(
                update(UnmatchedDeposit)
                .where(
                    UnmatchedDeposit.id == unmatched_id,
                    UnmatchedDeposit.status == UnmatchedDepositStatus.PENDING_REVIEW,
                )
                .values(status=UnmatchedDepositStatus.CREDITED, resolved_user_id=user_id, resolved_at=now)
            )
            if claimed.rowcount != 1:
                await self.db.rollback()
                raise ValidationError("Deposit is no longer pending review", {"id": unmatched_id})

        tx = Transaction(
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            status=TransactionStatus.COMPLETED,
            amount=amount,
            currency=transfer.currency,
            tx_hash=transfer.tx_hash,
            from_address=transfer.from_address,
            to_address=self.chain.deposit_address,
            memo=transfer.comment,
            completed_at=now,
        )
        self.db.add(tx)
        try:
            await self.db.flush()
            await LedgerService(self.db).credit(
                user_id,
                transfer.currency,
                amount,
                BalanceChangeType.DEPOSIT_CREDIT,
                transaction_id=tx.id,
                remark=f"Deposit {transfer.tx_hash}",
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Deposit {transfer.tx_hash} already credited")
            return "known"

        logger.info(f"Credited {amount} {transfer.currency} to user {user_id} ({transfer.tx_hash})")
        await self.notifier.notify_user(
            user_id, format_deposit_credited(amount, transfer.currency, transfer.tx_hash)
        )
        return "credited"

    async def _hold_unmatched(self, transfer: IncomingTransfer, reason: str) -> None:
        self.db.add(
            UnmatchedDeposit(
                tx_hash=transfer.tx_hash,
                lt=transfer.lt,
                amount=transfer.amount,
                currency=transfer.currency,
                comment=transfer.comment,
                from_address=transfer.from_address,
                reason=reason,
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return

        logger.warning(
            f"Unmatched deposit {transfer.tx_hash}: {transfer.amount} {transfer.currency} "
            f"comment={transfer.comment!r} ({reason})"
        )
        await self.notifier.notify_operator(
            f"Unmatched deposit {transfer.amount} {transfer.currency} ({reason}), tx {transfer.tx_hash}"
        )

    # =========================================================================
    # Manual review
    # =========================================================================

    async def list_unmatched_deposits(
        self,
        status: UnmatchedDepositStatus | None = UnmatchedDepositStatus.PENDING_REVIEW,
        params: PaginationParams | None = None,
    ) -> PaginatedResult[UnmatchedDeposit]:
        """Review queue, oldest first."""
        query = select(UnmatchedDeposit)
        if status is not None:
            query = query.where(UnmatchedDeposit.status == status)
        query = query.order_by(UnmatchedDeposit.id)
        return await paginate_query(self.db, query, params or PaginationParams())

    async def resolve_unmatched_deposit(self, deposit_id: int, user_id: int) -> Transaction:
        """Credit a held deposit to ``user_id``.

        Raises:
            NotFoundError: Unknown deposit or user
            ValidationError: Deposit already resolved
        """
        deposit = await self.db.get(UnmatchedDeposit, deposit_id)
        if deposit is None:
            raise NotFoundError("Unmatched deposit not found", {"id": deposit_id})
        if deposit.status != UnmatchedDepositStatus.PENDING_REVIEW:
            raise ValidationError("Deposit is no longer pending review", {"id": deposit_id})
        if await self.db.get(User, user_id) is None:
            raise NotFoundError("User not found", {"user_id": user_id})

        transfer = IncomingTransfer(
            tx_hash=deposit.tx_hash,
            lt=deposit.lt,
            amount=deposit.amount,
            currency=deposit.currency,
            comment=deposit.comment,
            from_address=deposit.from_address,
        )
        outcome = await self._credit(user_id, transfer, unmatched_id=deposit_id)
        if outcome != "credited":
            raise ValidationError("Deposit was already credited", {"tx_hash": transfer.tx_hash})

        result = await self.db.execute(select(Transaction).where(Transaction.tx_hash == transfer.tx_hash))
        return result.scalar_one()

    async def dismiss_unmatched_deposit(self, deposit_id: int) -> bool:
        """Close a held deposit without crediting anyone (e.g. refunded off-platform)."""
        result = await self.db.execute(
            update(UnmatchedDeposit)
            .where(
                UnmatchedDeposit.id == deposit_id,
                UnmatchedDeposit.status == UnmatchedDepositStatus.PENDING_REVIEW,
            )
            .values(status=UnmatchedDepositStatus.DISMISSED, resolved_at=utc_now())
        )
        await self.db.commit()
        return result.rowcount == 1
