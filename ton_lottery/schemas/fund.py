"""Fund schemas - pool balances and audit lines."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ton_lottery.models.fund import FundPool, FundTransactionType


class LotteryFundResponse(BaseModel):
    """Pool balances of one lottery fund."""

    model_config = ConfigDict(from_attributes=True)

    lottery_id: int
    currency: str
    total_collected: Decimal
    prize_pool: Decimal
    reserve_pool: Decimal
    platform_pool: Decimal
    total_paid_out: Decimal
    updated_at: datetime


class FundTransactionResponse(BaseModel):
    """One pool mutation."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: FundTransactionType
    pool: FundPool
    amount: Decimal
    pool_after: Decimal
    draw_id: int | None = None
    reference: str | None = None
    note: str | None = None
    created_at: datetime


class PoolReconciliation(BaseModel):
    """Stored pool balance compared with the replay of its audit lines."""

    lottery_id: int
    currency: str
    pool: FundPool
    stored: Decimal
    replayed: Decimal
    consistent: bool


class ReserveTransferRequest(BaseModel):
    """Move unclaimed prize money into the reserve pool."""

    amount: Decimal = Field(..., gt=0)
    note: str | None = Field(default=None, max_length=500)
    draw_id: int | None = None
