"""Pagination utility functions."""

import math
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

MAX_PAGE_SIZE = 100

T = TypeVar("T")


@dataclass
class PaginationParams:
    """Pagination parameters (1-based page, size capped at MAX_PAGE_SIZE)."""

    page: int = 1
    page_size: int = 20

    def __post_init__(self) -> None:
        self.page = max(1, self.page)
        self.page_size = min(max(1, self.page_size), MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        """Calculate offset for SQL query."""
        return (self.page - 1) * self.page_size


@dataclass
class PaginatedResult(Generic[T]):
    """Paginated result container."""

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        """Number of pages; zero when there are no items."""
        return math.ceil(self.total / self.page_size) if self.total > 0 else 0


async def paginate_query(
    db: AsyncSession,
    query: Select,
    params: PaginationParams,
) -> PaginatedResult[T]:
    """Apply pagination to a query.

    Args:
        db: Database session
        query: SQLAlchemy select query (already ordered)
        params: Pagination parameters

    Returns:
        PaginatedResult with the requested page and the total count
    """
    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    result = await db.execute(query.offset(params.offset).limit(params.page_size))
    items = list(result.scalars().all())

    return PaginatedResult(items=items, total=total, page=params.page, page_size=params.page_size)
