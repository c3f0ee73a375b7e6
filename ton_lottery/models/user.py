"""TON Lottery Settlement Engine - User model."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from ton_lottery.core.constants import Currency
from ton_lottery.utils.helpers import utc_now


class User(SQLModel, table=True):
    """Lottery player.

    Each settlement currency has its own scalar balance column. Balances are
    only ever changed through conditional UPDATE statements so concurrent
    debits cannot drive them negative.

    Attributes:
        id: Auto-increment primary key
        telegram_id: Telegram user id (notifications are delivered there)
        username: Telegram username
        ton_wallet: Wallet the user connected, used as default payout address
        balance_ton: Internal TON balance
        balance_usdt: Internal USDT balance
        is_active: Account status
    """

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    telegram_id: int = Field(sa_column=sa.Column(sa.BigInteger, unique=True, index=True, nullable=False))
    username: str | None = Field(default=None, max_length=255)
    ton_wallet: str | None = Field(default=None, max_length=128)

    balance_ton: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)
    balance_usdt: Decimal = Field(default=Decimal("0"), max_digits=32, decimal_places=8)

    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def balance_of(self, currency: Currency | str) -> Decimal:
        """Balance held in ``currency``."""
        return getattr(self, balance_attr(currency))


def balance_attr(currency: Currency | str) -> str:
    """Name of the balance column for ``currency``."""
    return f"balance_{Currency(currency).value.lower()}"


def balance_column(currency: Currency | str):
    """Mapped balance column for ``currency``, for use in SQL expressions."""
    return getattr(User, balance_attr(currency))
