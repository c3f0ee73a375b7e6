"""Withdrawal Service - user withdrawals as a compensating saga.

Steps, each committed before the next starts:

1. PENDING   - transaction row recorded
2. DEBITED   - amount + fee taken from the balance (conditional update) and
               a ledger line written
3. send      - transfer signed inside the signing wallet lock, its message
               hash stored before submission
4. COMPLETED - on success, tx hash stored
   FAILED    - on failure, debit reversed by a refund ledger line
   DEBITED   - left as is when the message was submitted but not confirmed

Rows left in PENDING or DEBITED by a crash are settled by
``reconcile_withdrawals``.
"""

import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.blockchain.base import BlockchainService, TransactionResult
from ton_lottery.blockchain.factory import get_blockchain_service
from ton_lottery.core.config import Settings, get_settings
from ton_lottery.core.constants import Currency
from ton_lottery.core.exceptions import (
    ChainError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from ton_lottery.models.ledger import BalanceChangeType
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.models.user import User
from ton_lottery.schemas.wallet import WithdrawalInfo, WithdrawalResult
from ton_lottery.services.ledger_service import LedgerService
from ton_lottery.services.notification_service import (
    Notifier,
    format_withdrawal_completed,
    get_notifier,
)
from ton_lottery.services.signing_lock import SigningWalletLock, get_signing_lock, locked_send
from ton_lottery.utils.helpers import start_of_day, utc_now

logger = logging.getLogger(__name__)

REFUNDED_MESSAGE = "Transaction failed. Balance refunded."
AWAITING_CONFIRMATION_MESSAGE = "Transfer submitted but not confirmed yet. It will be settled automatically."

# Withdrawals counted against today's allowance
IN_FLIGHT_OR_DONE = (TransactionStatus.PENDING, TransactionStatus.DEBITED, TransactionStatus.COMPLETED)

# Credits that raise a user's daily withdrawal limit
WINNING_TYPES = (TransactionType.PRIZE, TransactionType.PAYOUT)


class WithdrawalService:
    """Service for user withdrawals."""

    def __init__(
        self,
        db: AsyncSession,
        chain: BlockchainService | None = None,
        notifier: Notifier | None = None,
        signing_lock: SigningWalletLock | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.chain = chain or get_blockchain_service()
        self.notifier = notifier or get_notifier()
        self.signing_lock = signing_lock or get_signing_lock()
        self.settings = settings or get_settings()

    # =========================================================================
    # Limits
    # =========================================================================

    async def get_today_winnings(self, user_id: int, currency: Currency | str) -> Decimal:
        """Prizes credited to the user since local midnight."""
        return await self._sum_today(user_id, currency, WINNING_TYPES, (TransactionStatus.COMPLETED,))

    async def get_today_withdrawals(self, user_id: int, currency: Currency | str) -> Decimal:
        """Withdrawals since local midnight, including ones still in flight."""
        return await self._sum_today(user_id, currency, (TransactionType.WITHDRAWAL,), IN_FLIGHT_OR_DONE)

    async def _sum_today(
        self,
        user_id: int,
        currency: Currency | str,
        types: tuple[TransactionType, ...],
        statuses: tuple[TransactionStatus, ...],
    ) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.user_id == user_id,
                Transaction.currency == Currency(currency).value,
                Transaction.type.in_(types),
                Transaction.status.in_(statuses),
                Transaction.created_at >= start_of_day(self.settings.timezone),
            )
        )
        return Decimal(str(result.scalar_one()))

    async def get_withdrawal_limit(self, user_id: int, currency: Currency | str) -> Decimal:
        """Daily limit: the larger of the base limit and today's winnings."""
        winnings = await self.get_today_winnings(user_id, currency)
        return max(self.settings.base_withdrawal_limit(currency), winnings)

    async def get_withdrawal_info(self, user_id: int, currency: Currency | str = Currency.TON) -> WithdrawalInfo:
        """Balance, fee, limits and the largest amount withdrawable right now.

        Raises:
            NotFoundError: User does not exist
            ValidationError: Unsupported currency
        """
        currency = self._parse_currency(currency)
        balance = await LedgerService(self.db).get_balance(user_id, currency)
        fee = self.settings.withdrawal_fee(currency)
        daily_limit = await self.get_withdrawal_limit(user_id, currency)
        used_today = await self.get_today_withdrawals(user_id, currency)
        remaining = max(Decimal("0"), daily_limit - used_today)
        return WithdrawalInfo(
            balance=balance,
            currency=currency,
            min_withdrawal=self.settings.min_withdrawal(currency),
            fee=fee,
            daily_limit=daily_limit,
            used_today=used_today,
            remaining_today=remaining,
            max_withdrawable=max(Decimal("0"), min(balance - fee, remaining)),
        )

    # =========================================================================
    # Request
    # =========================================================================

    @staticmethod
    def _parse_currency(currency: Currency | str) -> Currency:
        try:
            return Currency(currency)
        except ValueError:
            raise ValidationError(f"Unsupported currency: {currency}", {"currency": str(currency)}) from None

    @staticmethod
    def _parse_amount(amount: Any) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError("Invalid amount", {"amount": str(amount)}) from None
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be positive", {"amount": str(amount)})
        return value

    async def _validate(self, user_id: int, amount: Any, to_address: str, currency: Any) -> tuple[Decimal, Currency]:
        """Validation in order: address, minimum, balance, daily allowance."""
        currency = self._parse_currency(currency)
        if not self.chain.validate_address(to_address):
            raise ValidationError("Invalid TON address", {"address": to_address})

        amount = self._parse_amount(amount)
        minimum = self.settings.min_withdrawal(currency)
        if amount < minimum:
            raise ValidationError(
                f"Minimum withdrawal is {minimum} {currency.value}",
                {"minimum": str(minimum)},
            )

        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", {"user_id": user_id})

        balance = await LedgerService(self.db).get_balance(user_id, currency)
        required = amount + self.settings.withdrawal_fee(currency)
        if balance < required:
            raise InsufficientBalanceError(required=required, available=balance)

        limit = await self.get_withdrawal_limit(user_id, currency)
        remaining = limit - await self.get_today_withdrawals(user_id, currency)
        if amount > remaining:
            raise ValidationError(
                "Daily withdrawal limit exceeded",
                {"daily_limit": str(limit), "remaining": str(max(Decimal("0"), remaining))},
            )
        return amount, currency

    async def request_withdrawal(
        self,
        user_id: int,
        amount: Decimal | str,
        to_address: str,
        currency: Currency | str = Currency.TON,
    ) -> WithdrawalResult:
        """Withdraw ``amount`` to ``to_address``; the fee is charged on top.

        Expected failures come back as ``success=False`` results. On a send
        failure the debit is reversed before returning.
        """
        try:
            amount, currency = await self._validate(user_id, amount, to_address, currency)
        except (ValidationError, InsufficientBalanceError, NotFoundError) as e:
            logger.info(f"Withdrawal rejected for user {user_id}: {e.message}")
            return WithdrawalResult(success=False, error=e.message, details=e.details)

        fee = self.settings.withdrawal_fee(currency)
        total = amount + fee

        # Step 1: record
        tx = Transaction(
            user_id=user_id,
            type=TransactionType.WITHDRAWAL,
            status=TransactionStatus.PENDING,
            amount=amount,
            fee=fee,
            currency=currency.value,
            from_address=self.chain.deposit_address,
            to_address=to_address,
        )
        self.db.add(tx)
        await self.db.commit()
        tx_id = tx.id

        # Step 2: debit
        ledger = await LedgerService(self.db).debit(
            user_id,
            currency,
            total,
            BalanceChangeType.WITHDRAW_DEBIT,
            transaction_id=tx_id,
            remark=f"Withdrawal #{tx_id}",
        )
        if ledger is None:
            await self.db.rollback()
            await self._set_status(
                tx_id, TransactionStatus.PENDING, TransactionStatus.FAILED, error="Insufficient balance"
            )
            await self.db.commit()
            return WithdrawalResult(
                success=False,
                transaction_id=tx_id,
                status=TransactionStatus.FAILED,
                error="Insufficient balance",
            )
        await self._set_status(tx_id, TransactionStatus.PENDING, TransactionStatus.DEBITED)
        await self.db.commit()
        logger.info(f"Withdrawal #{tx_id}: debited {total} {currency.value} from user {user_id}")

        # Step 3: send
        result = await self._send(tx_id, currency, to_address, amount, f"Withdrawal #{tx_id}")

        if result.unconfirmed:
            result = await self._confirm_late(tx_id, result)

        # Step 4: settle
        if result.success:
            await self._complete(tx_id, result)
            await self.notifier.notify_user(
                user_id, format_withdrawal_completed(amount, currency.value, to_address, result.tx_hash)
            )
            return WithdrawalResult(
                success=True,
                transaction_id=tx_id,
                tx_hash=result.tx_hash,
                tx_hash_provisional=result.provisional,
                amount=amount,
                fee=fee,
                currency=currency,
                status=TransactionStatus.COMPLETED,
            )

        if result.unconfirmed:
            # The message may still land; reconciliation settles it
            logger.warning(f"Withdrawal #{tx_id} left debited awaiting message {result.message_hash}")
            return WithdrawalResult(
                success=False,
                transaction_id=tx_id,
                amount=amount,
                fee=fee,
                currency=currency,
                status=TransactionStatus.DEBITED,
                error=AWAITING_CONFIRMATION_MESSAGE,
                details={"reason": result.error, "message_hash": result.message_hash},
            )

        logger.error(f"Withdrawal #{tx_id} send failed: {result.error}")
        await self._compensate(tx_id, user_id, currency, total, result.error, result.message_hash)
        return WithdrawalResult(
            success=False,
            transaction_id=tx_id,
            amount=amount,
            fee=fee,
            currency=currency,
            status=TransactionStatus.FAILED,
            error=REFUNDED_MESSAGE,
            details={"reason": result.error},
        )

    async def _send(
        self, tx_id: int, currency: Currency, to_address: str, amount: Decimal, comment: str
    ) -> TransactionResult:
        async def record_message_hash(message_hash: str) -> None:
            await self.db.execute(
                update(Transaction)
                .where(Transaction.id == tx_id, Transaction.status == TransactionStatus.DEBITED)
                .values(message_hash=message_hash, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

        return await locked_send(
            self.chain,
            self.signing_lock,
            currency.value,
            to_address,
            amount,
            comment,
            timeout=self.settings.send_timeout_seconds,
            on_prepared=record_message_hash,
        )

    async def _confirm_late(self, tx_id: int, result: TransactionResult) -> TransactionResult:
        """One history lookup for a submitted message whose confirmation timed out."""
        try:
            landed = await self.chain.find_transaction_by_message_hash(result.message_hash)
        except ChainError as e:
            logger.warning(f"Withdrawal #{tx_id}: cannot check message {result.message_hash}: {e.message}")
            return result
        if landed:
            return TransactionResult(success=True, tx_hash=landed, message_hash=result.message_hash)
        return result

    async def _set_status(
        self,
        tx_id: int,
        expected: TransactionStatus,
        new: TransactionStatus,
        **values: Any,
    ) -> bool:
        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.id == tx_id, Transaction.status == expected)
            .values(status=new, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _complete(self, tx_id: int, result: TransactionResult) -> None:
        await self._set_status(
            tx_id,
            TransactionStatus.DEBITED,
            TransactionStatus.COMPLETED,
            tx_hash=result.tx_hash,
            hash_provisional=result.provisional,
            message_hash=result.message_hash,
            completed_at=utc_now(),
        )
        await self.db.commit()
        logger.info(f"Withdrawal #{tx_id} completed: {result.tx_hash}")

    async def _compensate(
        self,
        tx_id: int,
        user_id: int,
        currency: Currency | str,
        total: Decimal,
        error: str | None,
        message_hash: str | None,
    ) -> bool:
        """Reverse a debited withdrawal. Runs at most once per transaction."""
        values: dict[str, Any] = {"error": (error or "Send failed")[:1000]}
        if message_hash:
            values["message_hash"] = message_hash
        moved = await self._set_status(tx_id, TransactionStatus.DEBITED, TransactionStatus.FAILED, **values)
        if not moved:
            await self.db.rollback()
            return False
        await LedgerService(self.db).credit(
            user_id,
            currency,
            total,
            BalanceChangeType.WITHDRAW_REFUND,
            transaction_id=tx_id,
            remark=f"Refund of withdrawal #{tx_id}",
        )
        await self.db.commit()
        logger.info(f"Withdrawal #{tx_id}: refunded {total} {Currency(currency).value} to user {user_id}")
        return True

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile_withdrawals(self, late_landing_hours: int = 24) -> dict[str, int]:
        """Settle withdrawals a crash left unfinished.

        - PENDING rows were never debited and are failed.
        - DEBITED rows with a landed message are completed, otherwise refunded.
          Rows without a message hash cannot be checked and go to an operator.
        - FAILED rows whose message landed after the refund are flagged for an
          operator; they are never debited again automatically.
        """
        stats = {"abandoned": 0, "completed": 0, "refunded": 0, "needs_review": 0, "late_landings": 0}
        cutoff = utc_now() - timedelta(minutes=self.settings.withdrawal_reconcile_after_minutes)

        result = await self.db.execute(
            select(
                Transaction.id,
                Transaction.user_id,
                Transaction.status,
                Transaction.amount,
                Transaction.fee,
                Transaction.currency,
                Transaction.message_hash,
            ).where(
                Transaction.type == TransactionType.WITHDRAWAL,
                Transaction.status.in_((TransactionStatus.PENDING, TransactionStatus.DEBITED)),
                Transaction.needs_review == False,  # noqa: E712
                Transaction.created_at < cutoff,
            )
        )
        for tx_id, user_id, status, amount, fee, currency, message_hash in result.all():
            if status == TransactionStatus.PENDING:
                await self._set_status(
                    tx_id, TransactionStatus.PENDING, TransactionStatus.FAILED, error="Abandoned before debit"
                )
                await self.db.commit()
                stats["abandoned"] += 1
                continue

            if not message_hash:
                await self._flag(tx_id)
                await self.notifier.notify_operator(
                    f"Withdrawal #{tx_id} is debited without a submitted message; check the wallet manually"
                )
                stats["needs_review"] += 1
                continue

            try:
                landed = await self.chain.find_transaction_by_message_hash(message_hash)
            except ChainError as e:
                logger.warning(f"Reconcile withdrawal #{tx_id}: {e.message}")
                continue
            if landed:
                await self._complete(
                    tx_id, TransactionResult(success=True, tx_hash=landed, message_hash=message_hash)
                )
                stats["completed"] += 1
            elif await self._compensate(tx_id, user_id, currency, amount + fee, "Not confirmed", message_hash):
                stats["refunded"] += 1

        stats["late_landings"] = await self._check_late_landings(late_landing_hours)
        logger.info(f"Withdrawal reconciliation: {stats}")
        return stats

    async def _check_late_landings(self, hours: int) -> int:
        result = await self.db.execute(
            select(Transaction.id, Transaction.amount, Transaction.currency, Transaction.message_hash).where(
                Transaction.type == TransactionType.WITHDRAWAL,
                Transaction.status == TransactionStatus.FAILED,
                Transaction.message_hash.is_not(None),
                Transaction.needs_review == False,  # noqa: E712
                Transaction.updated_at >= utc_now() - timedelta(hours=hours),
            )
        )
        found = 0
        for tx_id, amount, currency, message_hash in result.all():
            try:
                landed = await self.chain.find_transaction_by_message_hash(message_hash)
            except ChainError as e:
                logger.warning(f"Late landing check for #{tx_id}: {e.message}")
                continue
            if not landed:
                continue
            await self._flag(tx_id)
            logger.error(f"Refunded withdrawal #{tx_id} landed on chain as {landed}")
            await self.notifier.notify_operator(
                f"🚨 Withdrawal #{tx_id} ({amount} {currency}) was refunded but landed on chain: {landed}"
            )
            found += 1
        return found

    async def _flag(self, tx_id: int) -> None:
        await self.db.execute(
            update(Transaction)
            .where(Transaction.id == tx_id)
            .values(needs_review=True, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
