"""TON Lottery Settlement Engine - Lottery and draw models."""

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from ton_lottery.utils.helpers import utc_now


class Lottery(SQLModel, table=True):
    """Lottery game definition.

    Attributes:
        slug: Unique short name
        numbers_count: How many numbers a draw picks
        numbers_max: Numbers are drawn from 1..numbers_max
    """

    __tablename__ = "lotteries"

    id: int | None = Field(default=None, primary_key=True)
    slug: str = Field(max_length=64, unique=True, index=True)
    name: str = Field(max_length=255)
    numbers_count: int = Field(default=5)
    numbers_max: int = Field(default=36)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)


class DrawStatus(str, Enum):
    """Draw lifecycle."""

    SCHEDULED = "scheduled"  # Server seed hash published, numbers unknown
    DRAWING = "drawing"
    COMPLETED = "completed"  # Seed revealed, numbers fixed
    CANCELLED = "cancelled"


class Draw(SQLModel, table=True):
    """One draw of a lottery with its provably-fair inputs.

    The server seed hash is published before ticket sales close; the seed
    itself is revealed once the draw is executed so anyone can recompute the
    winning numbers from (server_seed, client_seed, nonce).
    """

    __tablename__ = "draws"

    id: int | None = Field(default=None, primary_key=True)
    lottery_id: int = Field(foreign_key="lotteries.id", index=True)
    draw_number: int = Field(index=True)
    status: DrawStatus = Field(default=DrawStatus.SCHEDULED, index=True)

    server_seed_hash: str = Field(max_length=64)
    server_seed: str | None = Field(default=None, max_length=128)
    client_seed: str | None = Field(default=None, max_length=128)
    client_seed_block: int | None = Field(
        default=None,
        sa_column=sa.Column(sa.BigInteger, nullable=True),
        description="Block whose hash was used as client seed",
    )
    nonce: int = Field(default=0)
    winning_numbers: list[int] | None = Field(default=None, sa_column=sa.Column(sa.JSON))

    scheduled_at: datetime | None = Field(default=None)
    executed_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
