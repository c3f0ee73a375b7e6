"""TON Lottery Settlement Engine - Payout queue tasks.

Routed to the ``payouts`` queue, served by a single worker process so all
payout sends share one processor and one signing wallet.
"""

import logging

from ton_lottery.celery_app import celery_app
from ton_lottery.workers.loop import run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="ton_lottery.workers.tasks.payouts.process_pending_payouts")
def process_pending_payouts():
    """Run one payout queue pass."""
    from ton_lottery.services.payout_processor import get_payout_processor

    async def _process():
        return await get_payout_processor().process_pending_payouts()

    stats = run_async(_process)
    if stats.processed:
        logger.info(f"Processed payouts: {stats.model_dump()}")
    return stats.model_dump()


@celery_app.task(name="ton_lottery.workers.tasks.payouts.recover_stale_payouts")
def recover_stale_payouts():
    """Settle payouts a crash left in processing."""
    from ton_lottery.services.payout_processor import get_payout_processor

    async def _recover():
        return await get_payout_processor().recover_stale_payouts()

    return run_async(_recover)


@celery_app.task(name="ton_lottery.workers.tasks.payouts.resolve_provisional_hashes")
def resolve_provisional_hashes():
    """Replace provisional hashes with real ledger transaction hashes."""
    from ton_lottery.services.payout_processor import get_payout_processor

    async def _resolve():
        return await get_payout_processor().resolve_provisional_hashes()

    return run_async(_resolve)


def trigger_payout_processing() -> str:
    """Queue a payout pass now, next to the scheduled ticks.

    The processor skips the pass if one is already running, so extra
    triggers are harmless.

    Returns:
        Celery task id
    """
    result = process_pending_payouts.delay()
    logger.info(f"Manual payout processing queued: {result.id}")
    return result.id
