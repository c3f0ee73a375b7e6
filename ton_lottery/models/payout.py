"""TON Lottery Settlement Engine - Payout queue model."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel

from ton_lottery.utils.helpers import utc_now


class PayoutStatus(str, Enum):
    """Payout lifecycle.

    pending -> processing -> completed
    pending -> processing -> pending (retry) ... -> failed
    pending -> failed (unsupported currency, terminal)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Payout(SQLModel, table=True):
    """Queued prize transfer from the platform wallet to a winner.

    Attributes:
        amount: Amount of this (possibly split) part
        currency: Currency code; kept as text so unknown codes can be rejected
        recipient_address: Destination wallet
        attempts: Dispatch attempts consumed so far
        max_attempts: Attempts allowed before the payout fails for good
        split_index/split_total/total_amount: Position of this part when a
            large prize was split across several payouts
        deferred: Parked by the daily cap (not a failure, no attempt consumed)
        next_attempt_at: Not eligible for processing before this time
        message_hash: Hash of the last submitted external message, kept to
            detect late landings before any resend
        tx_hash: Ledger transaction hash, set exactly once on completion
        tx_hash_provisional: tx_hash holds the message hash because the
            real transaction hash was not visible yet
        gas_reserved: Gas already drawn from the lottery reserve pool
        gas_shortfall: Reserve pool could not cover the gas estimate
    """

    __tablename__ = "payouts"

    id: int | None = Field(default=None, primary_key=True)
    lottery_id: int | None = Field(default=None, foreign_key="lotteries.id", index=True)
    draw_id: int | None = Field(default=None, foreign_key="draws.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    ticket_id: int | None = Field(default=None, index=True)

    amount: Decimal = Field(max_digits=32, decimal_places=8)
    currency: str = Field(max_length=16, index=True)
    recipient_address: str = Field(max_length=128)

    status: PayoutStatus = Field(default=PayoutStatus.PENDING, index=True)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    last_error: str | None = Field(default=None, max_length=1000)

    split_index: int = Field(default=1)
    split_total: int = Field(default=1)
    total_amount: Decimal | None = Field(default=None, max_digits=32, decimal_places=8)

    deferred: bool = Field(default=False, index=True)
    next_attempt_at: datetime | None = Field(default=None, index=True)

    message_hash: str | None = Field(default=None, max_length=128, index=True)
    tx_hash: str | None = Field(default=None, max_length=128, unique=True)
    tx_hash_provisional: bool = Field(default=False)

    gas_reserved: bool = Field(default=False)
    gas_shortfall: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    processed_at: datetime | None = Field(default=None, description="Last attempt start")
    completed_at: datetime | None = Field(default=None, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
