"""TON Lottery Settlement Engine - Celery configuration.

Uses Celery with Redis as message broker for the settlement loops.

Usage:
    # Payout dispatch: exactly one worker process, one task at a time
    celery -A ton_lottery.celery_app worker -Q payouts -l info -c 1

    # Deposits, reconciliation and notifications
    celery -A ton_lottery.celery_app worker -Q common -l info

    # Beat scheduler
    celery -A ton_lottery.celery_app beat -l info
"""

from celery import Celery

from ton_lottery.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "ton_lottery_workers",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "ton_lottery.workers.tasks.payouts",
        "ton_lottery.workers.tasks.deposits",
        "ton_lottery.workers.tasks.reconciliation",
        "ton_lottery.workers.tasks.notifications",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Everything that signs with the payout wallet goes to one queue
    task_routes={
        "ton_lottery.workers.tasks.payouts.*": {"queue": "payouts"},
        "ton_lottery.workers.tasks.*": {"queue": "common"},
    },
    # Task result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time per worker
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,
    # Beat schedule (periodic tasks)
    beat_schedule={
        "process-payouts": {
            "task": "ton_lottery.workers.tasks.payouts.process_pending_payouts",
            "schedule": float(settings.payout_interval_seconds),
        },
        "check-deposits": {
            "task": "ton_lottery.workers.tasks.deposits.check_deposits",
            "schedule": float(settings.deposit_interval_seconds),
        },
        # Crash recovery and provisional hash resolution every 5 minutes
        "recover-stale-payouts": {
            "task": "ton_lottery.workers.tasks.payouts.recover_stale_payouts",
            "schedule": 300.0,
        },
        "resolve-provisional-hashes": {
            "task": "ton_lottery.workers.tasks.payouts.resolve_provisional_hashes",
            "schedule": 300.0,
        },
        "reconcile-withdrawals": {
            "task": "ton_lottery.workers.tasks.reconciliation.reconcile_withdrawals",
            "schedule": 300.0,
        },
    },
)
