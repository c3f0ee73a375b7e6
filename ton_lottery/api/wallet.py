"""TON Lottery - Wallet API endpoints (deposits, withdrawals, history)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ton_lottery.api.deps import DbSession, get_deposit_service, get_withdrawal_service
from ton_lottery.core.constants import Currency
from ton_lottery.models.transaction import TransactionType
from ton_lottery.schemas.payout import PayoutHistory, PayoutResponse
from ton_lottery.schemas.wallet import (
    DepositInfo,
    PaginationInfo,
    TransactionHistory,
    TransactionStats,
    WithdrawalInfo,
    WithdrawalRequest,
    WithdrawalResult,
)
from ton_lottery.services.deposit_service import DepositService
from ton_lottery.services.payout_service import PayoutService
from ton_lottery.services.transaction_service import TransactionService
from ton_lottery.services.withdrawal_service import WithdrawalService
from ton_lottery.utils.pagination import PaginationParams

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/{user_id}/deposit", response_model=DepositInfo)
async def get_deposit_info(
    user_id: int,
    service: Annotated[DepositService, Depends(get_deposit_service)],
) -> DepositInfo:
    """Deposit address and the user's current memo."""
    return await service.get_deposit_info(user_id)


@router.post("/{user_id}/withdraw", response_model=WithdrawalResult)
async def request_withdrawal(
    user_id: int,
    data: WithdrawalRequest,
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
) -> WithdrawalResult:
    """Withdraw to an external address.

    Rejections and send failures come back with ``success=false``.
    """
    return await service.request_withdrawal(user_id, data.amount, data.to_address, data.currency)


@router.get("/{user_id}/info", response_model=WithdrawalInfo)
async def get_withdrawal_info(
    user_id: int,
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
    currency: Currency = Currency.TON,
) -> WithdrawalInfo:
    return await service.get_withdrawal_info(user_id, currency)


@router.get("/{user_id}/transactions", response_model=TransactionHistory)
async def get_transaction_history(
    user_id: int,
    db: DbSession,
    type: TransactionType | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> TransactionHistory:
    return await TransactionService(db).get_transaction_history(user_id, type=type, page=page, limit=limit)


@router.get("/{user_id}/payouts", response_model=PayoutHistory)
async def get_payout_history(
    user_id: int,
    db: DbSession,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> PayoutHistory:
    """Prize payouts of a user, newest first."""
    result = await PayoutService(db).list_user_payouts(user_id, PaginationParams(page=page, page_size=limit))
    return PayoutHistory(
        payouts=[PayoutResponse.model_validate(payout) for payout in result.items],
        pagination=PaginationInfo(
            page=result.page, limit=result.page_size, total=result.total, total_pages=result.total_pages
        ),
    )


@router.get("/{user_id}/stats", response_model=TransactionStats)
async def get_transaction_stats(user_id: int, db: DbSession) -> TransactionStats:
    return await TransactionService(db).get_transaction_stats(user_id)
