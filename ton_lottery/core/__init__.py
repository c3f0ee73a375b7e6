"""Core module - configuration, constants and exceptions."""

from ton_lottery.core.config import Settings, get_settings
from ton_lottery.core.constants import SUPPORTED_CURRENCIES, Currency
from ton_lottery.core.exceptions import (
    ChainError,
    InsufficientBalanceError,
    LotteryError,
    NotFoundError,
    SigningLockError,
    ValidationError,
    WalletError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Constants
    "Currency",
    "SUPPORTED_CURRENCIES",
    # Exceptions
    "LotteryError",
    "ValidationError",
    "NotFoundError",
    "InsufficientBalanceError",
    "ChainError",
    "WalletError",
    "SigningLockError",
]
