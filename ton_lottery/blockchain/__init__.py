"""Ledger (blockchain) access layer."""

from ton_lottery.blockchain.base import (
    BlockchainService,
    IncomingTransfer,
    IncomingTransfers,
    TransactionResult,
    TransactionStatus,
)
from ton_lottery.blockchain.factory import get_blockchain_service

__all__ = [
    "BlockchainService",
    "IncomingTransfer",
    "IncomingTransfers",
    "TransactionResult",
    "TransactionStatus",
    "get_blockchain_service",
]
