"""Notification Service - fire-and-forget user and operator messages.

Notifications never take part in money movement: they are sent after the
storage transaction commits and a delivery failure is only logged.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from ton_lottery.utils.helpers import explorer_url

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Destination for user and operator notifications."""

    @abstractmethod
    async def notify_user(self, user_id: int, message: str) -> None:
        """Deliver ``message`` to a user."""
        pass

    @abstractmethod
    async def notify_operator(self, message: str) -> None:
        """Deliver ``message`` to the operator alert channel."""
        pass


class TelegramNotifier(Notifier):
    """Queues Telegram deliveries on the Celery worker."""

    async def notify_user(self, user_id: int, message: str) -> None:
        from ton_lottery.workers.tasks.notifications import send_user_notification

        try:
            send_user_notification.delay(user_id, message)
        except Exception:
            logger.exception(f"Could not queue notification for user {user_id}")

    async def notify_operator(self, message: str) -> None:
        from ton_lottery.workers.tasks.notifications import send_operator_alert

        try:
            send_operator_alert.delay(message)
        except Exception:
            logger.exception("Could not queue operator alert")


class LoggingNotifier(Notifier):
    """Writes notifications to the log; used when no bot is configured."""

    async def notify_user(self, user_id: int, message: str) -> None:
        logger.info(f"[notify user {user_id}] {message}")

    async def notify_operator(self, message: str) -> None:
        logger.warning(f"[operator] {message}")


def get_notifier() -> Notifier:
    """Notifier for the running configuration."""
    from ton_lottery.core.config import get_settings

    if get_settings().telegram_bot_token:
        return TelegramNotifier()
    return LoggingNotifier()


# ============ Message Templates ============


def _tx_link(tx_hash: str | None) -> str:
    url = explorer_url(tx_hash)
    return f'\n<a href="{url}">View transaction</a>' if url else ""


def format_deposit_credited(amount: Decimal, currency: str, tx_hash: str) -> str:
    return f"✅ <b>Deposit received</b>\n{amount} {currency} credited to your balance.{_tx_link(tx_hash)}"


def format_withdrawal_completed(amount: Decimal, currency: str, to_address: str, tx_hash: str | None) -> str:
    return (
        f"💸 <b>Withdrawal sent</b>\n{amount} {currency} to <code>{to_address}</code>."
        f"{_tx_link(tx_hash)}"
    )


def format_payout_completed(amount: Decimal, currency: str, tx_hash: str | None) -> str:
    return f"🎉 <b>Prize paid out</b>\n{amount} {currency} sent to your wallet.{_tx_link(tx_hash)}"


def format_payout_failed(amount: Decimal, currency: str) -> str:
    return (
        f"⚠️ <b>Prize payout delayed</b>\nWe could not send {amount} {currency}. "
        "Support has been notified and will complete it manually."
    )


def format_operator_payout_failed(payout_id: int, amount: Decimal, currency: str, error: str | None) -> str:
    return f"🚨 Payout #{payout_id} ({amount} {currency}) failed permanently: {error}"
