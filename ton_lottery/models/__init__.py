"""Models module - SQLModel database entities."""

from ton_lottery.models.deposit import (
    DepositMemo,
    ScanCursor,
    UnmatchedDeposit,
    UnmatchedDepositStatus,
)
from ton_lottery.models.fund import FundPool, FundTransaction, FundTransactionType, LotteryFund
from ton_lottery.models.ledger import BalanceChangeType, BalanceLedger
from ton_lottery.models.lottery import Draw, DrawStatus, Lottery
from ton_lottery.models.payout import Payout, PayoutStatus
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.models.user import User, balance_column

__all__ = [
    # User
    "User",
    "balance_column",
    # Lottery
    "Lottery",
    "Draw",
    "DrawStatus",
    # Payout
    "Payout",
    "PayoutStatus",
    # Transaction
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    # Ledger
    "BalanceLedger",
    "BalanceChangeType",
    # Fund
    "LotteryFund",
    "FundTransaction",
    "FundTransactionType",
    "FundPool",
    # Deposit
    "DepositMemo",
    "UnmatchedDeposit",
    "UnmatchedDepositStatus",
    "ScanCursor",
]
