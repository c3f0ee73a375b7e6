"""Payout Service - payout queue storage operations.

State changes are conditional UPDATEs keyed on the expected status, so a
payout can only be claimed for processing once and its tx hash is written
exactly once.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.core.config import Settings, get_settings
from ton_lottery.core.exceptions import NotFoundError, ValidationError
from ton_lottery.models.payout import Payout, PayoutStatus
from ton_lottery.utils.amount import split_amount
from ton_lottery.utils.helpers import next_day_start, start_of_day, utc_now
from ton_lottery.utils.pagination import PaginatedResult, PaginationParams, paginate_query

logger = logging.getLogger(__name__)


class PayoutService:
    """Service for the payout queue."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    # =========================================================================
    # Enqueue
    # =========================================================================

    async def create_payout(
        self,
        user_id: int,
        amount: Decimal,
        currency: str,
        recipient_address: str,
        lottery_id: int | None = None,
        draw_id: int | None = None,
        ticket_id: int | None = None,
        split_index: int = 1,
        split_total: int = 1,
        total_amount: Decimal | None = None,
    ) -> Payout:
        """Add one payout to the queue (no splitting)."""
        if amount <= 0:
            raise ValidationError("Payout amount must be positive", {"amount": str(amount)})
        payout = Payout(
            user_id=user_id,
            amount=amount,
            currency=currency,
            recipient_address=recipient_address,
            lottery_id=lottery_id,
            draw_id=draw_id,
            ticket_id=ticket_id,
            max_attempts=self.settings.payout_max_attempts,
            split_index=split_index,
            split_total=split_total,
            total_amount=total_amount if total_amount is not None else amount,
        )
        self.db.add(payout)
        await self.db.flush()
        return payout

    async def queue_payout(
        self,
        user_id: int,
        amount: Decimal,
        currency: str,
        recipient_address: str,
        lottery_id: int | None = None,
        draw_id: int | None = None,
        ticket_id: int | None = None,
    ) -> list[Payout]:
        """Queue a prize, split into equal parts above the single-payout cap."""
        try:
            max_single = self.settings.payout_max_single(currency)
        except ValueError:
            # Unknown currency: queued whole, the processor fails it
            max_single = amount

        parts = split_amount(amount, max_single)
        payouts = []
        for index, part in enumerate(parts, start=1):
            payouts.append(
                await self.create_payout(
                    user_id=user_id,
                    amount=part,
                    currency=currency,
                    recipient_address=recipient_address,
                    lottery_id=lottery_id,
                    draw_id=draw_id,
                    ticket_id=ticket_id,
                    split_index=index,
                    split_total=len(parts),
                    total_amount=amount,
                )
            )
        await self.db.commit()
        if len(parts) > 1:
            logger.info(f"Split payout of {amount} {currency} for user {user_id} into {len(parts)} parts")
        return payouts

    # =========================================================================
    # Queue reads
    # =========================================================================

    async def get_pending_payouts(self, limit: int = 1) -> list[Payout]:
        """Oldest eligible pending payouts."""
        now = utc_now()
        result = await self.db.execute(
            select(Payout)
            .where(
                Payout.status == PayoutStatus.PENDING,
                Payout.attempts < Payout.max_attempts,
                (Payout.next_attempt_at.is_(None)) | (Payout.next_attempt_at <= now),
            )
            .order_by(Payout.created_at, Payout.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_payout(self, payout_id: int) -> Payout:
        result = await self.db.execute(
            select(Payout).where(Payout.id == payout_id).execution_options(populate_existing=True)
        )
        payout = result.scalar_one_or_none()
        if payout is None:
            raise NotFoundError("Payout not found", {"payout_id": payout_id})
        return payout

    async def list_user_payouts(
        self, user_id: int, params: PaginationParams | None = None
    ) -> PaginatedResult[Payout]:
        """A user's payouts, newest first."""
        query = select(Payout).where(Payout.user_id == user_id).order_by(Payout.created_at.desc(), Payout.id.desc())
        return await paginate_query(self.db, query, params or PaginationParams())

    async def get_today_payout_total(self, currency: str) -> Decimal:
        """Completed payout volume since local midnight."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payout.amount), 0)).where(
                Payout.currency == currency,
                Payout.status == PayoutStatus.COMPLETED,
                Payout.completed_at >= start_of_day(self.settings.timezone),
            )
        )
        return Decimal(str(result.scalar_one()))

    async def would_exceed_daily_limit(self, currency: str, amount: Decimal) -> bool:
        today = await self.get_today_payout_total(currency)
        return today + amount > self.settings.payout_max_daily_total(currency)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _transition(self, payout_id: int, expected: PayoutStatus, **values: Any) -> bool:
        result = await self.db.execute(
            update(Payout)
            .where(Payout.id == payout_id, Payout.status == expected)
            .values(updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_processing(self, payout_id: int) -> bool:
        """Claim a pending payout and consume one attempt."""
        claimed = await self._transition(
            payout_id,
            PayoutStatus.PENDING,
            status=PayoutStatus.PROCESSING,
            attempts=Payout.attempts + 1,
            processed_at=utc_now(),
            deferred=False,
        )
        await self.db.commit()
        return claimed

    async def record_message_hash(self, payout_id: int, message_hash: str) -> bool:
        """Store the signed message hash of a claimed payout before it is submitted."""
        recorded = await self._transition(payout_id, PayoutStatus.PROCESSING, message_hash=message_hash)
        await self.db.commit()
        return recorded

    async def mark_completed(
        self,
        payout_id: int,
        tx_hash: str,
        provisional: bool = False,
        message_hash: str | None = None,
        expected: PayoutStatus = PayoutStatus.PROCESSING,
    ) -> bool:
        """Record the successful transfer. Does not commit."""
        values: dict[str, Any] = {
            "status": PayoutStatus.COMPLETED,
            "tx_hash": tx_hash,
            "tx_hash_provisional": provisional,
            "completed_at": utc_now(),
            "last_error": None,
        }
        if message_hash:
            values["message_hash"] = message_hash
        return await self._transition(payout_id, expected, **values)

    async def mark_failed(
        self,
        payout_id: int,
        error: str,
        final: bool,
        message_hash: str | None = None,
        expected: PayoutStatus = PayoutStatus.PROCESSING,
    ) -> bool:
        """Record a failed attempt: terminal, or back to pending after the retry delay."""
        values: dict[str, Any] = {"last_error": error[:1000]}
        if message_hash:
            values["message_hash"] = message_hash
        if final:
            values["status"] = PayoutStatus.FAILED
        else:
            values["status"] = PayoutStatus.PENDING
            values["next_attempt_at"] = utc_now() + timedelta(seconds=self.settings.payout_retry_delay_seconds)
        moved = await self._transition(payout_id, expected, **values)
        await self.db.commit()
        return moved

    async def flag_gas(self, payout_id: int, reserved: bool) -> bool:
        """Record the gas reservation outcome on a pending payout. Does not commit."""
        if reserved:
            return await self._transition(payout_id, PayoutStatus.PENDING, gas_reserved=True, gas_shortfall=False)
        return await self._transition(payout_id, PayoutStatus.PENDING, gas_shortfall=True)

    async def defer(self, payout_id: int, reason: str, until: datetime | None = None) -> bool:
        """Park a pending payout without consuming an attempt."""
        moved = await self._transition(
            payout_id,
            PayoutStatus.PENDING,
            deferred=True,
            last_error=reason,
            next_attempt_at=until or next_day_start(self.settings.timezone),
        )
        await self.db.commit()
        return moved

    async def requeue_deferred_payouts(self) -> int:
        """Make every deferred payout eligible again right away."""
        result = await self.db.execute(
            update(Payout)
            .where(Payout.status == PayoutStatus.PENDING, Payout.deferred == True)  # noqa: E712
            .values(deferred=False, next_attempt_at=None, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def reset_failed_payout(self, payout_id: int) -> bool:
        """Operator reset of a failed payout: fresh attempts, back in the queue."""
        moved = await self._transition(
            payout_id,
            PayoutStatus.FAILED,
            status=PayoutStatus.PENDING,
            attempts=0,
            next_attempt_at=None,
            deferred=False,
        )
        await self.db.commit()
        if moved:
            logger.info(f"Payout #{payout_id} reset by operator")
        return moved

    async def list_stale_processing(self, older_than_minutes: int) -> list[Payout]:
        cutoff = utc_now() - timedelta(minutes=older_than_minutes)
        result = await self.db.execute(
            select(Payout)
            .where(Payout.status == PayoutStatus.PROCESSING, Payout.processed_at < cutoff)
            .order_by(Payout.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_provisional(self, limit: int = 50) -> list[Payout]:
        result = await self.db.execute(
            select(Payout)
            .where(Payout.status == PayoutStatus.COMPLETED, Payout.tx_hash_provisional == True)  # noqa: E712
            .order_by(Payout.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        result = await self.db.execute(select(Payout.status, func.count()).group_by(Payout.status))
        return {status.value: count for status, count in result.all()}
