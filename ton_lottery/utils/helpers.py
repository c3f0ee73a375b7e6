"""Time and formatting helpers."""

from datetime import UTC, datetime, timedelta
from urllib.parse import quote
from zoneinfo import ZoneInfo

from ton_lottery.core.constants import EXPLORER_TX_URL


def utc_now() -> datetime:
    """Current time as naive UTC, the form every timestamp column stores."""
    return datetime.now(UTC).replace(tzinfo=None)


def start_of_day(tz_name: str = "UTC", now: datetime | None = None) -> datetime:
    """Midnight of the current day in ``tz_name``, as naive UTC.

    Daily limits (withdrawals, payout caps) reset at this instant.

    Args:
        tz_name: IANA timezone name whose midnight counts as the day boundary
        now: Reference time (naive UTC); defaults to the current time
    """
    tz = ZoneInfo(tz_name)
    reference = (now or utc_now()).replace(tzinfo=UTC).astimezone(tz)
    local_midnight = reference.replace(hour=0, minute=0, second=0, microsecond=0)
    return local_midnight.astimezone(UTC).replace(tzinfo=None)


def next_day_start(tz_name: str = "UTC", now: datetime | None = None) -> datetime:
    """Next local midnight in ``tz_name``, as naive UTC."""
    tz = ZoneInfo(tz_name)
    reference = (now or utc_now()).replace(tzinfo=UTC).astimezone(tz)
    tomorrow = (reference + timedelta(days=1)).date()
    local_midnight = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=tz)
    return local_midnight.astimezone(UTC).replace(tzinfo=None)


def explorer_url(tx_hash: str | None) -> str | None:
    """Public explorer link for a transaction hash."""
    if not tx_hash:
        return None
    return EXPLORER_TX_URL.format(tx_hash=quote(tx_hash, safe=""))
