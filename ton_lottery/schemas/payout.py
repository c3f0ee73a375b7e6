"""Payout schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from ton_lottery.models.payout import PayoutStatus
from ton_lottery.schemas.wallet import PaginationInfo


class PayoutResponse(BaseModel):
    """Payout queue entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    lottery_id: int | None = None
    draw_id: int | None = None
    amount: Decimal
    currency: str
    recipient_address: str
    status: PayoutStatus
    attempts: int
    max_attempts: int
    split_index: int
    split_total: int
    deferred: bool
    last_error: str | None = None
    tx_hash: str | None = None
    tx_hash_provisional: bool = False
    created_at: datetime
    completed_at: datetime | None = None


class ProcessingStats(BaseModel):
    """Outcome of one payout processing pass."""

    skipped: bool = False
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    deferred: int = 0


class TriggerResponse(BaseModel):
    """Manual payout trigger acknowledgement."""

    queued: bool
    task_id: str | None = None


class PayoutHistory(BaseModel):
    """Paginated payouts of one user."""

    payouts: list[PayoutResponse]
    pagination: PaginationInfo
