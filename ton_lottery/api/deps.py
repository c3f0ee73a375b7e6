"""Common FastAPI dependencies for API endpoints."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ton_lottery.blockchain.base import BlockchainService
from ton_lottery.blockchain.factory import get_blockchain_service
from ton_lottery.core.config import get_settings
from ton_lottery.db import get_db
from ton_lottery.services.deposit_service import DepositService
from ton_lottery.services.notification_service import Notifier, get_notifier
from ton_lottery.services.signing_lock import SigningWalletLock, get_signing_lock
from ton_lottery.services.withdrawal_service import WithdrawalService


async def verify_internal_key(
    x_internal_key: Annotated[str | None, Header()] = None,
) -> None:
    """Routes are internal: callers present the shared key in X-Internal-Key."""
    expected = get_settings().internal_api_key
    if not expected:
        return
    if not x_internal_key or not hmac.compare_digest(x_internal_key, expected):
        raise HTTPException(status_code=401, detail="Invalid internal key")


def get_chain() -> BlockchainService:
    return get_blockchain_service()


def get_app_notifier() -> Notifier:
    return get_notifier()


def get_wallet_lock() -> SigningWalletLock:
    return get_signing_lock()


# ============ Type Aliases for Common Dependencies ============

DbSession = Annotated[AsyncSession, Depends(get_db)]
Chain = Annotated[BlockchainService, Depends(get_chain)]
AppNotifier = Annotated[Notifier, Depends(get_app_notifier)]
WalletLock = Annotated[SigningWalletLock, Depends(get_wallet_lock)]


def get_deposit_service(db: DbSession, chain: Chain, notifier: AppNotifier) -> DepositService:
    return DepositService(db, chain=chain, notifier=notifier)


def get_withdrawal_service(
    db: DbSession,
    chain: Chain,
    notifier: AppNotifier,
    lock: WalletLock,
) -> WithdrawalService:
    return WithdrawalService(db, chain=chain, notifier=notifier, signing_lock=lock)
