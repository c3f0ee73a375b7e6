"""Utility functions used across the settlement engine."""

from ton_lottery.utils.amount import from_smallest_unit, quantize_money, to_smallest_unit
from ton_lottery.utils.helpers import explorer_url, start_of_day, utc_now
from ton_lottery.utils.pagination import PaginatedResult, PaginationParams, paginate_query

__all__ = [
    "PaginatedResult",
    "PaginationParams",
    "explorer_url",
    "from_smallest_unit",
    "paginate_query",
    "quantize_money",
    "start_of_day",
    "to_smallest_unit",
    "utc_now",
]
