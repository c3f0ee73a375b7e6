"""TON Lottery Settlement Engine - User-facing transaction records."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel

from ton_lottery.utils.helpers import utc_now


class TransactionType(str, Enum):
    """Transaction kinds shown in a user's history."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    PAYOUT = "PAYOUT"  # Prize sent on chain by the payout queue
    PRIZE = "PRIZE"  # Prize credited to the internal balance
    TICKET_PURCHASE = "TICKET_PURCHASE"


class TransactionStatus(str, Enum):
    """Transaction status.

    Withdrawals walk the whole saga: PENDING (recorded) -> DEBITED (balance
    taken) -> COMPLETED (on chain) or FAILED (balance refunded).
    """

    PENDING = "PENDING"
    DEBITED = "DEBITED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Transaction(SQLModel, table=True):
    """Record of a money movement between a user and the ledger.

    Attributes:
        amount: Amount that moved on chain (withdrawal fee excluded)
        fee: Platform fee charged on top of amount
        tx_hash: Ledger transaction hash, unique when present
        hash_provisional: tx_hash is the submitted message hash, not yet
            replaced by the real transaction hash
        message_hash: Hash of the submitted external message (withdrawals)
        memo: Deposit memo that matched this transfer
        needs_review: Operator must look at it (e.g. a refunded withdrawal
            whose message landed later)
        payout_id: Payout this record belongs to
    """

    __tablename__ = "transactions"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    type: TransactionType = Field(index=True)
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)

    amount: Decimal = Field(max_digits=32, decimal_places=8)
    fee: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)
    currency: str = Field(max_length=16, index=True)

    tx_hash: str | None = Field(default=None, max_length=128, unique=True)
    hash_provisional: bool = Field(default=False)
    message_hash: str | None = Field(default=None, max_length=128, index=True)
    from_address: str | None = Field(default=None, max_length=128)
    to_address: str | None = Field(default=None, max_length=128)
    memo: str | None = Field(default=None, max_length=128)
    error: str | None = Field(default=None, max_length=1000)
    needs_review: bool = Field(default=False, description="Flagged for operator attention")
    payout_id: int | None = Field(default=None, foreign_key="payouts.id", index=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = Field(default=None)
