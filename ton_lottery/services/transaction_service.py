"""Transaction Service - user transaction history."""

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.core.exceptions import ValidationError
from ton_lottery.models.transaction import Transaction, TransactionStatus, TransactionType
from ton_lottery.schemas.wallet import (
    PaginationInfo,
    TransactionHistory,
    TransactionResponse,
    TransactionStats,
)
from ton_lottery.utils.helpers import explorer_url
from ton_lottery.utils.pagination import PaginationParams, paginate_query


class TransactionService:
    """Service for reading a user's transactions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_transaction_history(
        self,
        user_id: int,
        type: TransactionType | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> TransactionHistory:
        """Transactions of a user, newest first, optionally of one type."""
        query = select(Transaction).where(Transaction.user_id == user_id)
        if type is not None:
            try:
                query = query.where(Transaction.type == TransactionType(type))
            except ValueError:
                raise ValidationError(f"Unknown transaction type: {type}", {"type": str(type)}) from None
        query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())

        result = await paginate_query(self.db, query, PaginationParams(page=page, page_size=limit))
        transactions = []
        for tx in result.items:
            item = TransactionResponse.model_validate(tx)
            item.explorer_url = None if tx.hash_provisional else explorer_url(tx.tx_hash)
            transactions.append(item)

        return TransactionHistory(
            transactions=transactions,
            pagination=PaginationInfo(
                page=result.page,
                limit=result.page_size,
                total=result.total,
                total_pages=result.total_pages,
            ),
        )

    async def get_transaction_stats(self, user_id: int) -> TransactionStats:
        """Completed amounts per type and currency, plus counts per type."""
        result = await self.db.execute(
            select(Transaction.type, Transaction.currency, func.sum(Transaction.amount), func.count())
            .where(Transaction.user_id == user_id, Transaction.status == TransactionStatus.COMPLETED)
            .group_by(Transaction.type, Transaction.currency)
        )
        totals: dict[str, dict[str, Decimal]] = {}
        counts: dict[str, int] = {}
        for tx_type, currency, amount, count in result.all():
            totals.setdefault(tx_type.value, {})[currency] = Decimal(str(amount or 0))
            counts[tx_type.value] = counts.get(tx_type.value, 0) + count
        return TransactionStats(user_id=user_id, totals=totals, counts=counts)
