"""Ledger Service - user balance changes with audit lines."""

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.core.constants import Currency
from ton_lottery.core.exceptions import NotFoundError
from ton_lottery.models.ledger import BalanceChangeType, BalanceLedger
from ton_lottery.models.user import User, balance_column
from ton_lottery.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for balance changes.

    Changes are conditional UPDATE statements; nothing here commits, so a
    balance change and the records that justify it land in the caller's
    transaction together.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_balance(self, user_id: int, currency: Currency | str) -> Decimal:
        """Current balance read straight from storage."""
        result = await self.db.execute(select(balance_column(currency)).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError("User not found", {"user_id": user_id})
        return balance

    async def debit(
        self,
        user_id: int,
        currency: Currency | str,
        amount: Decimal,
        change_type: BalanceChangeType,
        transaction_id: int | None = None,
        remark: str | None = None,
    ) -> BalanceLedger | None:
        """Take ``amount`` from the balance if it is covered.

        Returns:
            The ledger line, or None when the balance is short (nothing changed)
        """
        column = balance_column(currency)
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id, column >= amount)
            .values({column: column - amount, User.updated_at: utc_now()})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(f"Debit of {amount} {Currency(currency).value} refused for user {user_id}")
            return None
        return await self._record(user_id, currency, -amount, change_type, transaction_id, remark)

    async def credit(
        self,
        user_id: int,
        currency: Currency | str,
        amount: Decimal,
        change_type: BalanceChangeType,
        transaction_id: int | None = None,
        remark: str | None = None,
    ) -> BalanceLedger:
        """Add ``amount`` to the balance.

        Raises:
            NotFoundError: User does not exist
        """
        column = balance_column(currency)
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values({column: column + amount, User.updated_at: utc_now()})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("User not found", {"user_id": user_id})
        return await self._record(user_id, currency, amount, change_type, transaction_id, remark)

    async def _record(
        self,
        user_id: int,
        currency: Currency | str,
        signed_amount: Decimal,
        change_type: BalanceChangeType,
        transaction_id: int | None,
        remark: str | None,
    ) -> BalanceLedger:
        post_balance = await self.get_balance(user_id, currency)
        ledger = BalanceLedger(
            user_id=user_id,
            currency=Currency(currency).value,
            change_type=change_type,
            amount=signed_amount,
            pre_balance=post_balance - signed_amount,
            post_balance=post_balance,
            transaction_id=transaction_id,
            remark=remark,
        )
        self.db.add(ledger)
        return ledger
