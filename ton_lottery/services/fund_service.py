"""Fund Service - lottery pool accounting.

Each lottery keeps one fund per currency, divided into prize, reserve and
platform pools. Every mutation is a conditional UPDATE followed by a
FundTransaction audit line carrying the pool balance right after the change,
both inside the caller's storage transaction. A decrement that the pool
cannot cover changes nothing.
"""

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.core.config import Settings, get_settings
from ton_lottery.core.constants import Currency
from ton_lottery.core.exceptions import ValidationError
from ton_lottery.models.fund import FundPool, FundTransaction, FundTransactionType, LotteryFund
from ton_lottery.utils.amount import MONEY_QUANT, quantize_money
from ton_lottery.utils.helpers import utc_now
from ton_lottery.utils.pagination import PaginatedResult, PaginationParams, paginate_query

logger = logging.getLogger(__name__)


class FundService:
    """Service for lottery fund pools. Never commits; callers own the transaction."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_fund(self, lottery_id: int, currency: Currency | str) -> LotteryFund | None:
        """Fund of a lottery in ``currency``, freshly loaded."""
        result = await self.db.execute(
            select(LotteryFund)
            .where(LotteryFund.lottery_id == lottery_id, LotteryFund.currency == Currency(currency).value)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_fund(self, lottery_id: int, currency: Currency | str) -> LotteryFund:
        """Fund of a lottery in ``currency``, created empty when missing."""
        fund = await self.get_fund(lottery_id, currency)
        if fund is None:
            fund = LotteryFund(lottery_id=lottery_id, currency=Currency(currency).value)
            self.db.add(fund)
            await self.db.flush()
            logger.info(f"Created {Currency(currency).value} fund for lottery {lottery_id}")
        return fund

    async def get_fund_balances(self, lottery_id: int) -> list[LotteryFund]:
        """All funds of a lottery."""
        result = await self.db.execute(
            select(LotteryFund)
            .where(LotteryFund.lottery_id == lottery_id)
            .order_by(LotteryFund.currency)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_fund_transactions(
        self,
        lottery_id: int,
        currency: Currency | str,
        pool: FundPool | None = None,
        params: PaginationParams | None = None,
    ) -> PaginatedResult[FundTransaction]:
        """Audit lines of a fund, newest first."""
        query = select(FundTransaction).where(
            FundTransaction.lottery_id == lottery_id,
            FundTransaction.currency == Currency(currency).value,
        )
        if pool is not None:
            query = query.where(FundTransaction.pool == pool)
        query = query.order_by(FundTransaction.id.desc())
        return await paginate_query(self.db, query, params or PaginationParams())

    # =========================================================================
    # Mutations
    # =========================================================================

    async def _apply(
        self,
        lottery_id: int,
        currency: Currency | str,
        pool: FundPool,
        delta: Decimal,
        tx_type: FundTransactionType,
        draw_id: int | None = None,
        reference: str | None = None,
        note: str | None = None,
        extra_values: dict[Any, Any] | None = None,
    ) -> Decimal | None:
        """Change one pool by ``delta`` and write its audit line.

        Returns:
            Pool balance after the change, or None if a decrement was refused
        """
        currency_code = Currency(currency).value
        column = getattr(LotteryFund, pool.value)
        conditions = [LotteryFund.lottery_id == lottery_id, LotteryFund.currency == currency_code]
        if delta < 0:
            conditions.append(column >= -delta)

        values = {column: column + delta, LotteryFund.updated_at: utc_now()}
        values.update(extra_values or {})
        result = await self.db.execute(
            update(LotteryFund)
            .where(*conditions)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        pool_after = (
            await self.db.execute(
                select(column).where(
                    LotteryFund.lottery_id == lottery_id, LotteryFund.currency == currency_code
                )
            )
        ).scalar_one()
        self.db.add(
            FundTransaction(
                lottery_id=lottery_id,
                currency=currency_code,
                draw_id=draw_id,
                type=tx_type,
                pool=pool,
                amount=delta,
                pool_after=pool_after,
                reference=reference,
                note=note,
            )
        )
        return pool_after

    async def credit_ticket_sale(
        self,
        lottery_id: int,
        currency: Currency | str,
        amount: Decimal,
        reference: str | None = None,
        draw_id: int | None = None,
    ) -> dict[FundPool, Decimal]:
        """Split a ticket sale across the pools by the configured shares.

        Returns:
            Amount credited to each pool
        """
        if amount <= 0:
            raise ValidationError("Ticket sale amount must be positive", {"amount": str(amount)})
        await self.get_or_create_fund(lottery_id, currency)

        prize = quantize_money(amount * self.settings.fund_prize_share)
        reserve = quantize_money(amount * self.settings.fund_reserve_share)
        shares = {
            FundPool.PRIZE: prize,
            FundPool.RESERVE: reserve,
            FundPool.PLATFORM: amount - prize - reserve,
        }

        first = True
        for pool, share in shares.items():
            if share <= 0:
                continue
            extra = {LotteryFund.total_collected: LotteryFund.total_collected + amount} if first else None
            await self._apply(
                lottery_id,
                currency,
                pool,
                share,
                FundTransactionType.TICKET_SALE,
                draw_id=draw_id,
                reference=reference,
                extra_values=extra,
            )
            first = False
        return shares

    async def top_up_reserve(
        self,
        lottery_id: int,
        currency: Currency | str,
        amount: Decimal,
        note: str | None = None,
    ) -> Decimal:
        """Add operator funds to the reserve pool."""
        if amount <= 0:
            raise ValidationError("Top-up amount must be positive", {"amount": str(amount)})
        await self.get_or_create_fund(lottery_id, currency)
        pool_after = await self._apply(
            lottery_id, currency, FundPool.RESERVE, amount, FundTransactionType.RESERVE_TOPUP, note=note
        )
        logger.info(f"Reserve of lottery {lottery_id} ({Currency(currency).value}) topped up to {pool_after}")
        return pool_after

    async def reserve_gas(
        self,
        lottery_id: int,
        currency: Currency | str,
        amount: Decimal,
        reference: str | None = None,
        draw_id: int | None = None,
    ) -> bool:
        """Take ``amount`` from the reserve pool to cover transfer gas.

        Returns:
            True if reserved, False if the reserve pool is short (unchanged)
        """
        await self.get_or_create_fund(lottery_id, currency)
        pool_after = await self._apply(
            lottery_id,
            currency,
            FundPool.RESERVE,
            -amount,
            FundTransactionType.GAS_FEE,
            draw_id=draw_id,
            reference=reference,
            note="Payout gas",
        )
        if pool_after is None:
            logger.warning(
                f"Reserve pool of lottery {lottery_id} cannot cover {amount} "
                f"{Currency(currency).value} gas"
            )
            return False
        return True

    async def record_payout(
        self,
        lottery_id: int,
        currency: Currency | str,
        amount: Decimal,
        reference: str | None = None,
        draw_id: int | None = None,
    ) -> bool:
        """Account a completed prize payout against the prize pool.

        Returns:
            False on a prize pool shortfall; the pool is left unchanged and the
            shortfall is logged for the operator
        """
        await self.get_or_create_fund(lottery_id, currency)
        pool_after = await self._apply(
            lottery_id,
            currency,
            FundPool.PRIZE,
            -amount,
            FundTransactionType.PRIZE_PAYOUT,
            draw_id=draw_id,
            reference=reference,
            extra_values={LotteryFund.total_paid_out: LotteryFund.total_paid_out + amount},
        )
        if pool_after is None:
            logger.warning(
                f"Prize pool shortfall: lottery {lottery_id} paid {amount} "
                f"{Currency(currency).value} ({reference}) beyond its prize pool"
            )
            return False
        return True

    async def transfer_to_reserve(
        self,
        lottery_id: int,
        currency: Currency | str,
        amount: Decimal,
        note: str | None = None,
        draw_id: int | None = None,
    ) -> bool:
        """Move unclaimed prize money from the prize pool to the reserve.

        Returns:
            False when the prize pool cannot cover ``amount`` (unchanged)
        """
        if amount <= 0:
            raise ValidationError("Transfer amount must be positive", {"amount": str(amount)})
        await self.get_or_create_fund(lottery_id, currency)
        taken = await self._apply(
            lottery_id, currency, FundPool.PRIZE, -amount, FundTransactionType.TO_RESERVE, draw_id=draw_id, note=note
        )
        if taken is None:
            logger.warning(
                f"Prize pool of lottery {lottery_id} cannot move {amount} {Currency(currency).value} to the reserve"
            )
            return False
        await self._apply(
            lottery_id, currency, FundPool.RESERVE, amount, FundTransactionType.TO_RESERVE, draw_id=draw_id, note=note
        )
        logger.info(f"Moved {amount} {Currency(currency).value} of lottery {lottery_id} to the reserve")
        return True

    async def can_afford_payout(self, lottery_id: int, currency: Currency | str, amount: Decimal) -> bool:
        """Whether the prize and reserve pools together cover ``amount``.

        The platform pool is never counted.
        """
        fund = await self.get_fund(lottery_id, currency)
        if fund is None:
            return False
        available = (Decimal(str(fund.prize_pool)) + Decimal(str(fund.reserve_pool))).quantize(MONEY_QUANT)
        return available >= amount

    async def adjust_pool(
        self,
        lottery_id: int,
        currency: Currency | str,
        pool: FundPool,
        delta: Decimal,
        note: str,
    ) -> Decimal | None:
        """Operator correction of one pool; refused if it would go negative."""
        await self.get_or_create_fund(lottery_id, currency)
        return await self._apply(lottery_id, currency, pool, delta, FundTransactionType.ADJUSTMENT, note=note)

    async def reconcile_pool(
        self,
        lottery_id: int,
        currency: Currency | str,
        pool: FundPool,
    ) -> dict[str, Any]:
        """Replay the audit lines of one pool and compare with the stored balance."""
        fund = await self.get_fund(lottery_id, currency)
        stored = getattr(fund, pool.value) if fund else Decimal("0")
        result = await self.db.execute(
            select(func.coalesce(func.sum(FundTransaction.amount), 0)).where(
                FundTransaction.lottery_id == lottery_id,
                FundTransaction.currency == Currency(currency).value,
                FundTransaction.pool == pool,
            )
        )
        # SQLite sums floats, so compare at storage precision with rounding
        replayed = Decimal(str(result.scalar_one())).quantize(MONEY_QUANT)
        stored = Decimal(stored).quantize(MONEY_QUANT)
        consistent = stored == replayed
        if not consistent:
            logger.error(
                f"Fund {lottery_id}/{Currency(currency).value} {pool.value} drift: "
                f"stored {stored}, replayed {replayed}"
            )
        return {
            "lottery_id": lottery_id,
            "currency": Currency(currency).value,
            "pool": pool,
            "stored": stored,
            "replayed": replayed,
            "consistent": consistent,
        }
