"""TON Lottery Settlement Engine - Deposit tracking models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from ton_lottery.utils.helpers import utc_now


class DepositMemo(SQLModel, table=True):
    """Single-use comment tag that attributes an inbound transfer to a user.

    A memo is consumed by the first deposit that carries it; the user gets a
    fresh one on the next deposit-info request.
    """

    __tablename__ = "deposit_memos"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    memo: str = Field(max_length=64, unique=True, index=True)
    used: bool = Field(default=False, index=True)
    used_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)


class UnmatchedDepositStatus(str, Enum):
    """Review state of a deposit that matched no memo."""

    PENDING_REVIEW = "pending_review"
    CREDITED = "credited"  # Operator attributed it to a user
    DISMISSED = "dismissed"


class UnmatchedDeposit(SQLModel, table=True):
    """Inbound transfer that could not be attributed to a user."""

    __tablename__ = "unmatched_deposits"

    id: int | None = Field(default=None, primary_key=True)
    tx_hash: str = Field(max_length=128, unique=True, index=True)
    lt: int = Field(
        default=0,
        sa_column=sa.Column(sa.BigInteger, nullable=False, default=0),
        description="Logical time of the ledger transaction",
    )
    amount: Decimal = Field(max_digits=32, decimal_places=8)
    currency: str = Field(max_length=16)
    comment: str | None = Field(default=None, max_length=512)
    from_address: str | None = Field(default=None, max_length=128)
    reason: str = Field(max_length=64, description="no_memo / unknown_memo / memo_used")
    status: UnmatchedDepositStatus = Field(default=UnmatchedDepositStatus.PENDING_REVIEW, index=True)
    resolved_user_id: int | None = Field(default=None, foreign_key="users.id")
    resolved_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class ScanCursor(SQLModel, table=True):
    """Last ledger position processed for a monitored account."""

    __tablename__ = "scan_cursors"

    id: int | None = Field(default=None, primary_key=True)
    account: str = Field(max_length=128, unique=True, index=True)
    last_lt: int = Field(default=0, sa_column=sa.Column(sa.BigInteger, nullable=False, default=0))
    last_hash: str | None = Field(default=None, max_length=128)
    # Resume point and newest transaction of an unfinished backwards walk
    walk_lt: int | None = Field(default=None, sa_column=sa.Column(sa.BigInteger, nullable=True))
    walk_hash: str | None = Field(default=None, max_length=128)
    walk_top_lt: int | None = Field(default=None, sa_column=sa.Column(sa.BigInteger, nullable=True))
    walk_top_hash: str | None = Field(default=None, max_length=128)
    updated_at: datetime = Field(default_factory=utc_now)
