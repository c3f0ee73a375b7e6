"""TON Lottery - Operator endpoints (payout queue, funds, deposit review)."""

from collections.abc import Callable
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ton_lottery.api.deps import DbSession, get_deposit_service
from ton_lottery.core.constants import Currency
from ton_lottery.models.fund import FundPool
from ton_lottery.schemas.deposit import ResolveUnmatchedRequest, UnmatchedDepositResponse
from ton_lottery.schemas.fund import LotteryFundResponse, PoolReconciliation, ReserveTransferRequest
from ton_lottery.schemas.payout import PayoutResponse, TriggerResponse
from ton_lottery.schemas.wallet import TransactionResponse
from ton_lottery.services.deposit_service import DepositService
from ton_lottery.services.fund_service import FundService
from ton_lottery.services.payout_service import PayoutService
from ton_lottery.utils.pagination import PaginationParams

router = APIRouter(prefix="/admin", tags=["Admin"])


def get_payout_trigger() -> Callable[[], str]:
    from ton_lottery.workers.tasks.payouts import trigger_payout_processing

    return trigger_payout_processing


# ============ Payouts ============


@router.post("/payouts/trigger", response_model=TriggerResponse)
async def trigger_payouts(
    trigger: Annotated[Callable[[], str], Depends(get_payout_trigger)],
) -> TriggerResponse:
    """Queue a payout pass now; skipped by the worker if one is running."""
    return TriggerResponse(queued=True, task_id=trigger())


@router.get("/payouts/stats")
async def payout_stats(db: DbSession) -> dict[str, int]:
    return await PayoutService(db).count_by_status()


@router.post("/payouts/{payout_id}/reset", response_model=PayoutResponse)
async def reset_payout(payout_id: int, db: DbSession) -> PayoutResponse:
    """Put a failed payout back in the queue with fresh attempts."""
    service = PayoutService(db)
    if not await service.reset_failed_payout(payout_id):
        payout = await service.get_payout(payout_id)
        raise HTTPException(status_code=409, detail=f"Payout is {payout.status.value}, not failed")
    return PayoutResponse.model_validate(await service.get_payout(payout_id))


@router.post("/payouts/requeue-deferred")
async def requeue_deferred(db: DbSession) -> dict[str, int]:
    return {"requeued": await PayoutService(db).requeue_deferred_payouts()}


# ============ Funds ============


@router.get("/funds/{lottery_id}/{currency}", response_model=LotteryFundResponse)
async def get_fund(lottery_id: int, currency: Currency, db: DbSession) -> LotteryFundResponse:
    fund = await FundService(db).get_fund(lottery_id, currency)
    if fund is None:
        raise HTTPException(status_code=404, detail="Fund not found")
    return LotteryFundResponse.model_validate(fund)


@router.get("/funds/{lottery_id}/{currency}/reconcile", response_model=list[PoolReconciliation])
async def reconcile_fund(lottery_id: int, currency: Currency, db: DbSession) -> list[PoolReconciliation]:
    """Replay each pool's audit lines against its stored balance."""
    service = FundService(db)
    return [PoolReconciliation(**await service.reconcile_pool(lottery_id, currency, pool)) for pool in FundPool]


@router.post("/funds/{lottery_id}/{currency}/to-reserve", response_model=LotteryFundResponse)
async def transfer_to_reserve(
    lottery_id: int, currency: Currency, data: ReserveTransferRequest, db: DbSession
) -> LotteryFundResponse:
    """Move unclaimed prize money from the prize pool to the reserve."""
    service = FundService(db)
    if not await service.transfer_to_reserve(lottery_id, currency, data.amount, note=data.note, draw_id=data.draw_id):
        await db.rollback()
        raise HTTPException(status_code=409, detail="Prize pool cannot cover the transfer")
    await db.commit()
    return LotteryFundResponse.model_validate(await service.get_fund(lottery_id, currency))


@router.get("/funds/{lottery_id}/{currency}/can-afford")
async def can_afford_payout(
    lottery_id: int, currency: Currency, db: DbSession, amount: Decimal = Query(..., gt=0)
) -> dict[str, bool]:
    return {"affordable": await FundService(db).can_afford_payout(lottery_id, currency, amount)}


# ============ Deposit review ============


@router.get("/deposits/unmatched", response_model=list[UnmatchedDepositResponse])
async def list_unmatched_deposits(
    service: Annotated[DepositService, Depends(get_deposit_service)],
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> list[UnmatchedDepositResponse]:
    result = await service.list_unmatched_deposits(params=PaginationParams(page=page, page_size=page_size))
    return [UnmatchedDepositResponse.model_validate(item) for item in result.items]


@router.post("/deposits/unmatched/{deposit_id}/resolve", response_model=TransactionResponse)
async def resolve_unmatched_deposit(
    deposit_id: int,
    data: ResolveUnmatchedRequest,
    service: Annotated[DepositService, Depends(get_deposit_service)],
) -> TransactionResponse:
    """Credit a held deposit to the given user."""
    tx = await service.resolve_unmatched_deposit(deposit_id, data.user_id)
    return TransactionResponse.model_validate(tx)


@router.post("/deposits/unmatched/{deposit_id}/dismiss")
async def dismiss_unmatched_deposit(
    deposit_id: int,
    service: Annotated[DepositService, Depends(get_deposit_service)],
) -> dict[str, bool]:
    return {"dismissed": await service.dismiss_unmatched_deposit(deposit_id)}
