import os

from decimal import Decimal
from pathlib import Path
from typing import Any, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Honour the legacy NODE_ENV=testnet switch."""

        super().model_post_init(__context)

        if not self.testnet_mode and os.getenv("NODE_ENV", "").lower() == "testnet":
            object.__setattr__(self, "testnet_mode", True)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8080, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Mode
    testnet_mode: bool = Field(
        default=False,
        description="Use the in-memory testnet ledger, fake custody and mock bridge routes",
    )

    # Chain RPC endpoints
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="Primary Solana JSON-RPC endpoint",
    )
    solana_fallback_rpc_urls: List[str] = Field(
        default_factory=list,
        description="Extra Solana RPC endpoints queried alongside the primary",
    )
    solana_devnet_rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        description="Solana devnet endpoint used as a fallback candidate",
    )
    base_rpc_url: str = Field(
        default="https://mainnet.base.org",
        description="Primary Base JSON-RPC endpoint",
    )
    base_fallback_rpc_urls: List[str] = Field(
        default_factory=list,
        description="Extra Base RPC endpoints queried alongside the primary",
    )
    base_sepolia_rpc_url: str = Field(
        default="https://sepolia.base.org",
        description="Base Sepolia endpoint used as a fallback candidate",
    )
    include_testnet_token_candidates: bool = Field(
        default=False,
        description="Also query testnet USDC deployments when reading mainnet balances",
    )

    # Deposit monitor
    deposit_monitor_enabled: bool = Field(
        default=True,
        description="Start the deposit poll loop and pipeline consumer with the API",
    )
    deposit_poll_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between balance polls of every monitored wallet",
    )
    deposit_poll_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum wallets ticked concurrently per poll round",
    )
    notification_window_seconds: int = Field(
        default=120,
        ge=1,
        description="Width of the time bucket used to deduplicate deposit notifications",
    )

    # Bridge
    lifi_api_key: str = Field(default="", description="Li.Fi API key")
    lifi_base_url: str = Field(default="https://li.quest/v1", description="Li.Fi API base URL")
    bridge_destination_chain: str = Field(
        default="arbitrum",
        description="Chain deposits are bridged to before reaching the trading venue",
    )
    bridge_status_poll_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Interval between bridge status checks",
    )
    bridge_confirmation_timeout_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Give up waiting for bridge confirmation after this many seconds",
    )

    # Withdrawals
    min_withdrawal_amount: Decimal = Field(
        default=Decimal("1"),
        description="Smallest USDC amount accepted for a withdrawal",
    )

    # Custody
    privy_app_id: str = Field(default="", description="Privy application id")
    privy_app_secret: str = Field(default="", description="Privy application secret")
    privy_base_url: str = Field(default="https://api.privy.io/v1", description="Privy API base URL")

    # Notifier
    telegram_bot_token: str = Field(
        default="",
        description="Telegram bot token used to deliver user notifications",
        validation_alias=AliasChoices("telegram_bot_token", "TELEGRAM_BOT_TOKEN", "BOT_TOKEN"),
    )
    telegram_api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL",
    )

    # Webhooks
    alchemy_webhook_signing_key: str = Field(
        default="",
        description="Signing key used to verify Alchemy address-activity webhooks",
    )
    helius_webhook_secret: str = Field(
        default="",
        description="Shared secret Helius sends in the Authorization header",
    )

    # Timeouts
    external_call_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Upper bound for any single call to an RPC, bridge, custody or notifier provider",
    )

    @property
    def has_lifi_key(self) -> bool:
        return bool(self.lifi_api_key)

    @property
    def has_privy_credentials(self) -> bool:
        return bool(self.privy_app_id and self.privy_app_secret)

    @property
    def has_telegram_token(self) -> bool:
        return bool(self.telegram_bot_token)


# Global settings instance
settings = Settings()
