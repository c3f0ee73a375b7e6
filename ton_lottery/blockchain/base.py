"""Base ledger account client interface.

Defines the abstract interface the settlement services use to talk to the
ledger. The production implementation is TonService; tests plug in fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from ton_lottery.core.exceptions import LotteryError
from ton_lottery.utils.amount import from_smallest_unit, to_smallest_unit


class TransactionStatus(str, Enum):
    """On-chain status of a submitted transfer."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class TransactionResult:
    """Result of a transfer submitted by the signing wallet.

    Attributes:
        success: The transfer was accepted by the ledger (seqno advanced)
        tx_hash: Ledger transaction hash, or the message hash when provisional
        error: Failure description
        status: FAILED when the message certainly did not move funds, PENDING
            when it was submitted but its landing is not confirmed
        message_hash: Hash of the signed external message; present whenever
            the message was built, including timeouts
        provisional: tx_hash is the message hash because the transaction was
            not visible in the account history yet
    """

    success: bool
    tx_hash: str | None = None
    error: str | None = None
    confirmations: int = 0
    status: TransactionStatus = TransactionStatus.PENDING
    message_hash: str | None = None
    provisional: bool = False

    @property
    def unconfirmed(self) -> bool:
        """Submitted but not confirmed: the message may still land."""
        return not self.success and self.status == TransactionStatus.PENDING and bool(self.message_hash)


@dataclass
class PreparedTransfer:
    """A signed transfer that has not been submitted yet.

    The message hash is known before submission so callers can persist it
    first; a late landing is then always detectable.
    """

    currency: str
    to_address: str
    amount: Decimal
    message_hash: str
    comment: str | None = None
    payload: Any = None
    seqno: int | None = None


@dataclass
class IncomingTransfer:
    """Inbound transfer to the monitored account."""

    tx_hash: str
    lt: int
    amount: Decimal
    currency: str
    comment: str | None
    from_address: str | None
    timestamp: int | None = None


@dataclass
class IncomingTransfers:
    """Inbound transfers newer than a cursor, oldest first.

    Attributes:
        transfers: Parsed deposits
        latest_lt/latest_hash: Newest transaction seen (deposit or not)
        complete: Every transaction after the cursor was read; when False the
            page budget ran out and the cursor must not move past the batch
        resume_lt/resume_hash: Oldest transaction read by an incomplete walk;
            the next walk continues below it instead of restarting at the top
    """

    transfers: list[IncomingTransfer] = field(default_factory=list)
    latest_lt: int | None = None
    latest_hash: str | None = None
    complete: bool = True
    resume_lt: int | None = None
    resume_hash: str | None = None


class BlockchainService(ABC):
    """Abstract base class for the ledger account client.

    Send operations never raise for transfer failures; they return a
    TransactionResult with ``success=False``. Read operations raise ChainError
    when the ledger API is unavailable.
    """

    @property
    @abstractmethod
    def chain_code(self) -> str:
        """Return the chain code (e.g., 'TON')."""
        pass

    @property
    @abstractmethod
    def deposit_address(self) -> str:
        """Address users deposit to."""
        pass

    # ============ Address ============

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """Validate if an address is valid for this chain.

        Args:
            address: The address to validate

        Returns:
            True if valid, False otherwise
        """
        pass

    # ============ Balance Operations ============

    @abstractmethod
    async def get_native_balance(self, address: str) -> Decimal:
        """Get native coin balance of ``address``."""
        pass

    @abstractmethod
    async def get_token_balance(self, owner_address: str) -> Decimal:
        """Get USDT balance held by ``owner_address``."""
        pass

    # ============ Transfers ============

    @abstractmethod
    async def prepare_transfer(
        self, currency: str, to_address: str, amount: Decimal, comment: str | None = None
    ) -> PreparedTransfer:
        """Build and sign a transfer from the signing wallet without sending it.

        Must run inside the signing wallet lock, since it reads the seqno.

        Raises:
            ValidationError: Invalid recipient or unsupported currency
            ChainError: Ledger API unavailable
            WalletError: Signing wallet not configured
        """
        pass

    @abstractmethod
    async def submit_transfer(self, prepared: PreparedTransfer) -> TransactionResult:
        """Submit a prepared transfer and wait for confirmation.

        Never raises; every result carries ``prepared.message_hash``.
        """
        pass

    async def send(
        self, currency: str, to_address: str, amount: Decimal, comment: str | None = None
    ) -> TransactionResult:
        """Prepare and submit in one step."""
        try:
            prepared = await self.prepare_transfer(currency, to_address, amount, comment)
        except LotteryError as e:
            return TransactionResult(success=False, error=e.message, status=TransactionStatus.FAILED)
        return await self.submit_transfer(prepared)

    async def send_native(self, to_address: str, amount: Decimal, comment: str | None = None) -> TransactionResult:
        """Send native coin from the signing wallet."""
        return await self.send(self.chain_code, to_address, amount, comment)

    async def send_token(self, to_address: str, amount: Decimal, comment: str | None = None) -> TransactionResult:
        """Send USDT from the signing wallet."""
        return await self.send("USDT", to_address, amount, comment)

    # ============ History ============

    @abstractmethod
    async def get_incoming_transfers(
        self, since_lt: int = 0, before_lt: int | None = None, before_hash: str | None = None
    ) -> IncomingTransfers:
        """Inbound transfers to the deposit account newer than ``since_lt``.

        ``before_lt``/``before_hash`` continue an earlier incomplete walk from
        the oldest transaction it reached.
        """
        pass

    @abstractmethod
    async def find_transaction_by_message_hash(self, message_hash: str) -> str | None:
        """Hash of the signing wallet transaction created by ``message_hash``.

        Returns:
            Transaction hash, or None if the message has not landed
        """
        pass

    # ============ Utility Methods ============

    def to_smallest_unit(self, amount: Decimal, decimals: int) -> int:
        """Convert amount to smallest unit (e.g., nanoton)."""
        return to_smallest_unit(amount, decimals)

    def from_smallest_unit(self, amount: int, decimals: int) -> Decimal:
        """Convert from smallest unit to standard unit."""
        return from_smallest_unit(amount, decimals)
