"""Telegram notification tasks."""

import logging

from ton_lottery.celery_app import celery_app
from ton_lottery.workers.loop import run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="ton_lottery.workers.tasks.notifications.send_user_notification")
def send_user_notification(user_id: int, message: str) -> bool:
    """Deliver a message to the user's Telegram chat.

    Args:
        user_id: User ID
        message: HTML formatted message

    Returns:
        True if sent successfully
    """
    from ton_lottery.db import async_session_factory
    from ton_lottery.models.user import User
    from ton_lottery.services.telegram_service import TelegramService

    async def _send():
        async with async_session_factory() as db:
            user = await db.get(User, user_id)
            if user is None or not user.telegram_id:
                logger.warning(f"No Telegram chat for user {user_id}")
                return False
            chat_id = user.telegram_id
        return await TelegramService().send_message(chat_id, message) is not None

    return run_async(_send)


@celery_app.task(name="ton_lottery.workers.tasks.notifications.send_operator_alert")
def send_operator_alert(message: str) -> bool:
    """Deliver a message to the operator alert chat."""
    from ton_lottery.core.config import get_settings
    from ton_lottery.services.telegram_service import TelegramService

    chat_id = get_settings().telegram_operator_chat_id
    if not chat_id:
        logger.warning(f"Operator chat not configured, alert dropped: {message}")
        return False

    async def _send():
        return await TelegramService().send_message(chat_id, message) is not None

    return run_async(_send)
