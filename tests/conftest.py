"""Shared fixtures: in-memory database, fake ledger client, recording notifier."""

import os

# Settings are read on import of the engine module
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SIGNING_LOCK_BACKEND", "local")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("INTERNAL_API_KEY", "")

import asyncio  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import ton_lottery.models  # noqa: E402, F401
from ton_lottery.blockchain.base import (  # noqa: E402
    BlockchainService,
    IncomingTransfer,
    IncomingTransfers,
    PreparedTransfer,
    TransactionResult,
    TransactionStatus,
)
from ton_lottery.core.config import Settings  # noqa: E402
from ton_lottery.core.exceptions import ChainError, ValidationError  # noqa: E402
from ton_lottery.models.lottery import Lottery  # noqa: E402
from ton_lottery.models.user import User  # noqa: E402
from ton_lottery.services.notification_service import Notifier  # noqa: E402
from ton_lottery.services.signing_lock import SigningWalletLock  # noqa: E402

DEPOSIT_ADDRESS = "EQCxE6mUtQJKFnGfaROTKOt1lZbDiiX1kCixRv7Nw2Id_sDs"
USER_ADDRESS = "UQDzYn0ha3TdHUrLDod66JDVv57b7qtFZBE-vALzsq_tFIRV"


class FakeChain(BlockchainService):
    """Ledger client double.

    Sends succeed with sequential hashes unless results were queued with
    ``queue_result``; ``landed`` maps message hashes to transaction hashes.
    ``submit_delay`` keeps a submission in flight, ``batches`` are served
    before ``incoming``.
    """

    def __init__(self):
        self.sent: list[tuple[str, str, Decimal, str | None]] = []
        self.results: list[TransactionResult] = []
        self.landed: dict[str, str] = {}
        self.lookups: list[str] = []
        self.lookup_error = False
        self.incoming = IncomingTransfers()
        self.since_lts: list[int] = []
        self.befores: list[int | None] = []
        self.batches: list[IncomingTransfers] = []
        self.submit_delay = 0.0
        self._seq = 0

    @property
    def chain_code(self) -> str:
        return "TON"

    @property
    def deposit_address(self) -> str:
        return DEPOSIT_ADDRESS

    def validate_address(self, address: str) -> bool:
        return len(address) == 48 and address[:2] in ("EQ", "UQ", "0Q", "kQ")

    async def get_native_balance(self, address: str) -> Decimal:
        return Decimal("1000")

    async def get_token_balance(self, owner_address: str) -> Decimal:
        return Decimal("1000")

    async def prepare_transfer(self, currency, to_address, amount, comment=None) -> PreparedTransfer:
        if currency not in ("TON", "USDT"):
            raise ValidationError(f"Unsupported currency: {currency}")
        self._seq += 1
        return PreparedTransfer(
            currency=currency,
            to_address=to_address,
            amount=amount,
            message_hash=f"msg-{self._seq}",
            comment=comment,
            seqno=self._seq,
        )

    async def submit_transfer(self, prepared: PreparedTransfer) -> TransactionResult:
        self.sent.append((prepared.currency, prepared.to_address, prepared.amount, prepared.comment))
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.results:
            return self.results.pop(0)
        return TransactionResult(
            success=True,
            tx_hash=f"tx-{prepared.seqno}",
            message_hash=prepared.message_hash,
            status=TransactionStatus.CONFIRMED,
        )

    def queue_result(
        self,
        success=False,
        error="Network error",
        message_hash=None,
        tx_hash=None,
        provisional=False,
        status=None,
    ):
        if status is None:
            status = TransactionStatus.CONFIRMED if success else TransactionStatus.FAILED
        self.results.append(
            TransactionResult(
                success=success,
                tx_hash=tx_hash,
                error=None if success else error,
                message_hash=message_hash,
                provisional=provisional,
                status=status,
            )
        )

    async def get_incoming_transfers(self, since_lt=0, before_lt=None, before_hash=None) -> IncomingTransfers:
        self.since_lts.append(since_lt)
        self.befores.append(before_lt)
        if self.batches:
            return self.batches.pop(0)
        return self.incoming

    async def find_transaction_by_message_hash(self, message_hash: str) -> str | None:
        self.lookups.append(message_hash)
        if self.lookup_error:
            raise ChainError("toncenter unavailable")
        return self.landed.get(message_hash)


class RecordingNotifier(Notifier):
    """Keeps every notification for assertions."""

    def __init__(self):
        self.user_messages: list[tuple[int, str]] = []
        self.operator_messages: list[str] = []

    async def notify_user(self, user_id: int, message: str) -> None:
        self.user_messages.append((user_id, message))

    async def notify_operator(self, message: str) -> None:
        self.operator_messages.append(message)


def make_transfer(
    tx_hash: str,
    lt: int,
    amount: str,
    comment: str | None,
    currency: str = "TON",
) -> IncomingTransfer:
    return IncomingTransfer(
        tx_hash=tx_hash,
        lt=lt,
        amount=Decimal(amount),
        currency=currency,
        comment=comment,
        from_address=USER_ADDRESS,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        min_deposit_ton=Decimal("1"),
        min_deposit_usdt=Decimal("1"),
        min_withdrawal_ton=Decimal("1"),
        min_withdrawal_usdt=Decimal("1"),
        withdrawal_fee_ton=Decimal("0.05"),
        withdrawal_fee_usdt=Decimal("1"),
        base_withdrawal_limit_ton=Decimal("100"),
        base_withdrawal_limit_usdt=Decimal("500"),
        payout_max_attempts=3,
        payout_retry_delay_seconds=0,
        payout_batch_size=10,
        payout_max_single_ton=Decimal("50"),
        payout_max_daily_total_ton=Decimal("100"),
        payout_gas_ton=Decimal("0.01"),
        payout_gas_usdt=Decimal("0.06"),
        gas_reserve_policy="soft",
        fund_prize_share=Decimal("0.80"),
        fund_reserve_share=Decimal("0.05"),
        signing_lock_backend="local",
        send_timeout_seconds=5,
    )


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def signing_lock():
    return SigningWalletLock(backend="local", timeout=30, wait=5)


@pytest_asyncio.fixture
async def user(db):
    user = User(telegram_id=111222333, username="winner", ton_wallet=USER_ADDRESS, balance_ton=Decimal("10"))
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def lottery(db):
    lottery = Lottery(slug="weekly-5-36", name="Weekly 5/36", numbers_count=5, numbers_max=36)
    db.add(lottery)
    await db.commit()
    return lottery
