"""TON Lottery Settlement Engine - Deposit monitoring task."""

import logging

from ton_lottery.celery_app import celery_app
from ton_lottery.workers.loop import run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="ton_lottery.workers.tasks.deposits.check_deposits")
def check_deposits():
    """Poll the deposit account and credit matched transfers."""
    from ton_lottery.db import async_session_factory
    from ton_lottery.services.deposit_service import DepositService

    async def _check():
        async with async_session_factory() as db:
            return await DepositService(db).check_deposits()

    stats = run_async(_check)
    if stats.get("credited") or stats.get("unmatched"):
        logger.info(f"Deposit check: {stats}")
    return stats
