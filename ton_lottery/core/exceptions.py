"""TON Lottery Settlement Engine - Custom exceptions."""

from decimal import Decimal
from typing import Any


class LotteryError(Exception):
    """Base exception for all settlement engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(LotteryError):
    """Input validation failed."""

    pass


class NotFoundError(LotteryError):
    """Requested entity does not exist."""

    pass


class InsufficientBalanceError(LotteryError):
    """User balance does not cover amount plus fee."""

    def __init__(
        self,
        required: Decimal | None = None,
        available: Decimal | None = None,
        message: str = "Insufficient balance",
    ) -> None:
        details = {}
        if required is not None:
            details["required"] = str(required)
        if available is not None:
            details["available"] = str(available)
        super().__init__(message, details)


class ChainError(LotteryError):
    """Ledger (blockchain) API interaction error."""

    pass


class WalletError(LotteryError):
    """Signing wallet is missing or misconfigured."""

    pass


class SigningLockError(LotteryError):
    """The signing wallet could not be reserved in time."""

    pass
