"""TON Lottery Settlement Engine - Core Configuration."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ton_lottery.core.constants import Currency

TONCENTER_ENDPOINTS = {
    "mainnet": ("https://toncenter.com/api/v2", "https://toncenter.com/api/v3"),
    "testnet": ("https://testnet.toncenter.com/api/v2", "https://testnet.toncenter.com/api/v3"),
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "TON Lottery Settlement Engine"
    debug: bool = False
    internal_api_key: str = Field(
        default="", description="Shared key expected in X-Internal-Key (empty disables the check)"
    )
    timezone: str = Field(
        default="UTC", description="Timezone whose midnight resets daily limits"
    )
    startup_reconcile: bool = Field(
        default=True, description="Settle unfinished withdrawals and payouts on API startup"
    )

    # Database
    database_url: str = Field(..., description="SQLAlchemy async URL (mysql+aiomysql://...)")

    # Redis (task queue and signing lock)
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL for task queue",
    )

    # TON
    ton_network: Literal["mainnet", "testnet"] = Field(default="mainnet", description="TON network")
    ton_api_key: str = Field(default="", description="toncenter API key")
    ton_api_base: str = Field(default="", description="toncenter v2 base URL override")
    ton_api_v3_base: str = Field(default="", description="toncenter v3 base URL override")
    ton_payout_mnemonic: str = Field(
        default="", description="24 space-separated words of the payout (signing) wallet"
    )
    ton_deposit_address: str = Field(
        default="", description="Deposit account address (defaults to the payout wallet)"
    )
    usdt_jetton_master: str = Field(
        default="EQCxE6mUtQJKFnGfaROTKOt1lZbDiiX1kCixRv7Nw2Id_sDs",
        description="USDT jetton master contract",
    )
    usdt_decimals: int = Field(default=6, description="USDT jetton decimals")
    jetton_transfer_ton: Decimal = Field(
        default=Decimal("0.05"), description="TON attached to a jetton transfer for gas"
    )
    jetton_forward_ton: Decimal = Field(
        default=Decimal("0.01"), description="TON forwarded with the transfer notification"
    )
    send_confirm_timeout_seconds: int = Field(
        default=60, description="How long to wait for the wallet seqno to advance"
    )
    send_poll_interval_seconds: float = Field(default=3.0, description="Seqno poll interval")
    send_timeout_seconds: int = Field(
        default=150, description="Hard limit for one dispatch including confirmation"
    )
    http_max_retries: int = Field(default=3, description="Retries for 429/5xx API responses")
    http_backoff_seconds: float = Field(default=1.0, description="Initial retry backoff")

    # Signing wallet serialization
    signing_lock_backend: Literal["local", "redis"] = Field(
        default="redis",
        description="redis = shared by the API process and the workers, local = single-process deployments only",
    )
    signing_lock_timeout_seconds: int = Field(
        default=300, description="Max time the signing lock may be held"
    )
    signing_lock_wait_seconds: int = Field(
        default=120, description="Max time to wait for the signing lock"
    )

    # Payouts
    payout_max_attempts: int = Field(default=3, description="Attempts before a payout fails")
    payout_retry_delay_seconds: int = Field(default=60, description="Fixed delay between attempts")
    payout_batch_size: int = Field(default=1, description="Payouts fetched per processing pass")
    payout_interval_seconds: int = Field(default=60, description="Payout tick interval")
    payout_max_single_ton: Decimal = Field(default=Decimal("50"))
    payout_max_single_usdt: Decimal = Field(default=Decimal("250"))
    payout_max_daily_total_ton: Decimal = Field(default=Decimal("500"))
    payout_max_daily_total_usdt: Decimal = Field(default=Decimal("2500"))
    payout_gas_ton: Decimal = Field(
        default=Decimal("0.01"), description="Estimated gas for a native payout"
    )
    payout_gas_usdt: Decimal = Field(
        default=Decimal("0.06"), description="Estimated gas (in TON) for a jetton payout"
    )
    gas_reserve_policy: Literal["soft", "strict"] = Field(
        default="soft",
        description="soft = proceed and flag when reserve is short, strict = defer",
    )
    payout_stale_after_minutes: int = Field(
        default=15, description="Processing payouts older than this are recovered"
    )

    # Deposits
    min_deposit_ton: Decimal = Field(default=Decimal("1"))
    min_deposit_usdt: Decimal = Field(default=Decimal("1"))
    deposit_page_size: int = Field(default=50, description="History page size per request")
    deposit_max_pages: int = Field(default=5, description="History pages read per poll")
    deposit_interval_seconds: int = Field(default=30, description="Deposit poll interval")

    # Withdrawals
    min_withdrawal_ton: Decimal = Field(default=Decimal("1"))
    min_withdrawal_usdt: Decimal = Field(default=Decimal("1"))
    withdrawal_fee_ton: Decimal = Field(default=Decimal("0.2"))
    withdrawal_fee_usdt: Decimal = Field(default=Decimal("1"))
    base_withdrawal_limit_ton: Decimal = Field(default=Decimal("1000"))
    base_withdrawal_limit_usdt: Decimal = Field(default=Decimal("5000"))
    withdrawal_reconcile_after_minutes: int = Field(
        default=10, description="Unfinished withdrawals older than this get reconciled"
    )

    # Fund distribution of ticket sales
    fund_prize_share: Decimal = Field(default=Decimal("0.80"))
    fund_reserve_share: Decimal = Field(default=Decimal("0.05"))

    # Telegram
    telegram_bot_token: str = Field(default="", description="Bot token for notifications")
    telegram_operator_chat_id: str = Field(default="", description="Operator alert chat")

    @property
    def toncenter_v2(self) -> str:
        return (self.ton_api_base or TONCENTER_ENDPOINTS[self.ton_network][0]).rstrip("/")

    @property
    def toncenter_v3(self) -> str:
        return (self.ton_api_v3_base or TONCENTER_ENDPOINTS[self.ton_network][1]).rstrip("/")

    def _per_currency(self, prefix: str, currency: Currency | str) -> Decimal:
        return getattr(self, f"{prefix}_{Currency(currency).value.lower()}")

    def min_deposit(self, currency: Currency | str) -> Decimal:
        return self._per_currency("min_deposit", currency)

    def min_withdrawal(self, currency: Currency | str) -> Decimal:
        return self._per_currency("min_withdrawal", currency)

    def withdrawal_fee(self, currency: Currency | str) -> Decimal:
        return self._per_currency("withdrawal_fee", currency)

    def base_withdrawal_limit(self, currency: Currency | str) -> Decimal:
        return self._per_currency("base_withdrawal_limit", currency)

    def payout_max_single(self, currency: Currency | str) -> Decimal:
        return self._per_currency("payout_max_single", currency)

    def payout_max_daily_total(self, currency: Currency | str) -> Decimal:
        return self._per_currency("payout_max_daily_total", currency)

    def payout_gas(self, currency: Currency | str) -> Decimal:
        """Gas estimate in TON for one payout in the given currency."""
        return self._per_currency("payout_gas", currency)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()  # type: ignore[call-arg]
