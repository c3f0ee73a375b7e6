"""TON Lottery Settlement Engine - Withdrawal reconciliation task."""

import logging

from ton_lottery.celery_app import celery_app
from ton_lottery.workers.loop import run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="ton_lottery.workers.tasks.reconciliation.reconcile_withdrawals")
def reconcile_withdrawals():
    """Settle withdrawals left in PENDING or DEBITED."""
    from ton_lottery.db import async_session_factory
    from ton_lottery.services.withdrawal_service import WithdrawalService

    async def _reconcile():
        async with async_session_factory() as db:
            return await WithdrawalService(db).reconcile_withdrawals()

    return run_async(_reconcile)
