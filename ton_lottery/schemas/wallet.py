"""Wallet schemas - deposit, withdrawal and history DTOs."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ton_lottery.core.constants import Currency
from ton_lottery.models.transaction import TransactionStatus, TransactionType

# =============================================================================
# Deposits
# =============================================================================


class DepositInfo(BaseModel):
    """Where and how a user deposits."""

    address: str
    memo: str
    currencies: list[Currency]
    min_deposit: dict[Currency, Decimal]
    instructions: list[str] = []


# =============================================================================
# Withdrawals
# =============================================================================


class WithdrawalRequest(BaseModel):
    """Withdrawal request body."""

    amount: Decimal = Field(..., gt=0, description="Amount to receive on chain")
    to_address: str = Field(..., min_length=1, max_length=128)
    currency: Currency = Currency.TON


class WithdrawalResult(BaseModel):
    """Outcome of a withdrawal request.

    Expected failures (validation, limits, send failure) are reported here
    with ``success=False`` instead of raising.
    """

    success: bool
    transaction_id: int | None = None
    tx_hash: str | None = None
    tx_hash_provisional: bool = False
    amount: Decimal | None = None
    fee: Decimal | None = None
    currency: Currency | None = None
    status: TransactionStatus | None = None
    error: str | None = None
    details: dict = {}


class WithdrawalInfo(BaseModel):
    """Withdrawal limits and balance snapshot for one currency."""

    balance: Decimal
    currency: Currency
    min_withdrawal: Decimal
    fee: Decimal
    daily_limit: Decimal
    used_today: Decimal
    remaining_today: Decimal
    max_withdrawable: Decimal


# =============================================================================
# Transaction history
# =============================================================================


class TransactionResponse(BaseModel):
    """Transaction shown in a user's history."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    status: TransactionStatus
    amount: Decimal
    fee: Decimal
    currency: str
    tx_hash: str | None = None
    hash_provisional: bool = False
    from_address: str | None = None
    to_address: str | None = None
    memo: str | None = None
    error: str | None = None
    explorer_url: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class PaginationInfo(BaseModel):
    """Pagination block of a list response."""

    page: int
    limit: int
    total: int
    total_pages: int


class TransactionHistory(BaseModel):
    """Paginated transaction history."""

    transactions: list[TransactionResponse]
    pagination: PaginationInfo


class TransactionStats(BaseModel):
    """Completed totals per type and currency."""

    user_id: int
    totals: dict[str, dict[str, Decimal]]
    counts: dict[str, int]
