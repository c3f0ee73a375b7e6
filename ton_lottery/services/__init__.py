"""Settlement service layer.

Each service wraps an AsyncSession; money-moving services own their commits,
accounting helpers (LedgerService, FundService) leave them to the caller.
"""

from ton_lottery.services.deposit_service import DepositService
from ton_lottery.services.draw_service import DrawService
from ton_lottery.services.fund_service import FundService
from ton_lottery.services.ledger_service import LedgerService
from ton_lottery.services.payout_processor import PayoutProcessor, get_payout_processor
from ton_lottery.services.payout_service import PayoutService
from ton_lottery.services.transaction_service import TransactionService
from ton_lottery.services.withdrawal_service import WithdrawalService

__all__ = [
    "DepositService",
    "DrawService",
    "FundService",
    "LedgerService",
    "PayoutProcessor",
    "PayoutService",
    "TransactionService",
    "WithdrawalService",
    "get_payout_processor",
]
