"""TON Lottery Settlement Engine - Balance ledger model.

Every change of a user balance writes one BalanceLedger line with the balance
before and after the change, so any balance can be audited by replaying its
lines.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel

from ton_lottery.utils.helpers import utc_now


class BalanceChangeType(str, Enum):
    """Balance change type."""

    DEPOSIT_CREDIT = "deposit_credit"  # Matched on-chain deposit
    WITHDRAW_DEBIT = "withdraw_debit"  # Amount + fee taken for a withdrawal
    WITHDRAW_REFUND = "withdraw_refund"  # Compensation of a failed withdrawal
    PRIZE_CREDIT = "prize_credit"  # Prize credited to the internal balance
    MANUAL_ADJUST = "manual_adjust"  # Operator correction


class BalanceLedger(SQLModel, table=True):
    """Balance ledger - one line per user balance change.

    Attributes:
        user_id: User whose balance changed
        currency: Balance currency
        change_type: Type of balance change
        amount: Signed change (positive=credit, negative=debit)
        pre_balance: Balance before change
        post_balance: Balance after change
        transaction_id: Related user-facing transaction
        remark: Description/notes
    """

    __tablename__ = "balance_ledgers"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    currency: str = Field(max_length=16)
    change_type: BalanceChangeType = Field(index=True)
    amount: Decimal = Field(max_digits=32, decimal_places=8)
    pre_balance: Decimal = Field(max_digits=32, decimal_places=8)
    post_balance: Decimal = Field(max_digits=32, decimal_places=8)
    transaction_id: int | None = Field(default=None, foreign_key="transactions.id", index=True)
    remark: str | None = Field(default=None, max_length=500)

    created_at: datetime = Field(default_factory=utc_now, index=True)
