"""Ledger client factory.

Provides the cached ledger client for a chain code.
"""

from functools import lru_cache

from ton_lottery.blockchain.base import BlockchainService

# Chain code mapping
CHAIN_CODES = {
    "TON": "ton",
    "ton": "ton",
}


@lru_cache(maxsize=1)
def get_blockchain_service(chain_code: str = "TON") -> BlockchainService:
    """Get the ledger client for the specified chain.

    Uses caching to reuse the client (and its derived signing wallet).

    Args:
        chain_code: Chain code ('TON' or 'ton')

    Returns:
        BlockchainService instance

    Raises:
        ValueError: If chain code is not supported
    """
    normalized_code = CHAIN_CODES.get(chain_code)
    if normalized_code == "ton":
        from ton_lottery.blockchain.ton import TonService

        return TonService()
    raise ValueError(f"Unsupported chain: {chain_code}")
