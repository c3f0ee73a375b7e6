"""Shared enums and constants."""

from enum import Enum


class Currency(str, Enum):
    """Settlement currencies.

    TON is the native coin of the ledger, USDT is a jetton (token) on top of it.
    """

    TON = "TON"
    USDT = "USDT"

    @property
    def is_native(self) -> bool:
        return self is Currency.TON


SUPPORTED_CURRENCIES = tuple(c.value for c in Currency)

# Decimals of the native coin (1 TON = 10**9 nanoton)
TON_DECIMALS = 9

# Prefixes of user-friendly TON addresses (bounceable/non-bounceable, mainnet/testnet)
ADDRESS_PREFIXES = ("EQ", "UQ", "0Q", "kQ")
ADDRESS_LENGTH = 48

EXPLORER_TX_URL = "https://tonscan.org/tx/{tx_hash}"
