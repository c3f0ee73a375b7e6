"""TON Lottery Settlement Engine - Lottery fund pools."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from ton_lottery.utils.helpers import utc_now


class FundPool(str, Enum):
    """Pools a lottery fund is divided into."""

    PRIZE = "prize_pool"
    RESERVE = "reserve_pool"
    PLATFORM = "platform_pool"


class FundTransactionType(str, Enum):
    """Reason of a pool mutation."""

    TICKET_SALE = "ticket_sale"
    PRIZE_PAYOUT = "prize_payout"
    GAS_FEE = "gas_fee"
    RESERVE_TOPUP = "reserve_topup"
    TO_RESERVE = "to_reserve"
    ADJUSTMENT = "adjustment"


class LotteryFund(SQLModel, table=True):
    """Money held on behalf of one lottery in one currency.

    Pools are never negative: every decrement is a conditional UPDATE guarded
    by ``pool >= amount``.
    """

    __tablename__ = "lottery_funds"
    __table_args__ = (sa.UniqueConstraint("lottery_id", "currency", name="uq_fund_lottery_currency"),)

    id: int | None = Field(default=None, primary_key=True)
    lottery_id: int = Field(foreign_key="lotteries.id", index=True)
    currency: str = Field(max_length=16)

    total_collected: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)
    prize_pool: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)
    reserve_pool: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)
    platform_pool: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)
    total_paid_out: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class FundTransaction(SQLModel, table=True):
    """Audit line for one pool mutation.

    Replaying ``amount`` of all lines of a pool from zero yields the stored
    pool balance, and ``pool_after`` is the balance right after this line.
    """

    __tablename__ = "fund_transactions"

    id: int | None = Field(default=None, primary_key=True)
    lottery_id: int = Field(foreign_key="lotteries.id", index=True)
    currency: str = Field(max_length=16)
    draw_id: int | None = Field(default=None, foreign_key="draws.id", index=True)
    type: FundTransactionType = Field(index=True)
    pool: FundPool
    amount: Decimal = Field(max_digits=32, decimal_places=8, description="Signed change")
    pool_after: Decimal = Field(max_digits=32, decimal_places=8)
    reference: str | None = Field(default=None, max_length=128, description="tx hash / payout id")
    note: str | None = Field(default=None, max_length=500)

    created_at: datetime = Field(default_factory=utc_now, index=True)
