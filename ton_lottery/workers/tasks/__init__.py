"""TON Lottery Settlement Engine - Celery tasks module.

Tasks organized by functionality:
- payouts: Payout queue processing, stale recovery, provisional hashes
- deposits: Deposit account polling
- reconciliation: Unfinished withdrawal settlement
- notifications: Telegram deliveries
"""

from ton_lottery.workers.tasks.deposits import check_deposits
from ton_lottery.workers.tasks.notifications import send_operator_alert, send_user_notification
from ton_lottery.workers.tasks.payouts import (
    process_pending_payouts,
    recover_stale_payouts,
    resolve_provisional_hashes,
    trigger_payout_processing,
)
from ton_lottery.workers.tasks.reconciliation import reconcile_withdrawals

__all__ = [
    # Payouts
    "process_pending_payouts",
    "recover_stale_payouts",
    "resolve_provisional_hashes",
    "trigger_payout_processing",
    # Deposits
    "check_deposits",
    # Reconciliation
    "reconcile_withdrawals",
    # Notifications
    "send_user_notification",
    "send_operator_alert",
]
