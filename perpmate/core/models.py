"""Typed models shared by the deposit, bridge and withdrawal pipelines."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Optional, Tuple

from .chains import Chain, USDC_DECIMALS

USDC_QUANTUM = Decimal(1).scaleb(-USDC_DECIMALS)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def quantize_usdc(amount: Decimal) -> Decimal:
    return amount.quantize(USDC_QUANTUM)


def format_usdc(amount: Decimal) -> str:
    """Human-readable USDC amount without trailing zeros, e.g. ``12.5``."""
    return format(quantize_usdc(amount).normalize(), "f")


def to_base_units(amount: Decimal, decimals: int = USDC_DECIMALS) -> int:
    return int(amount.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


@dataclass(frozen=True)
class MonitoredWallet:
    address: str
    chain: Chain
    owner_id: str
    registered_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> Tuple[Chain, str]:
        return wallet_key(self.address, self.chain)


def wallet_key(address: str, chain: Chain) -> Tuple[Chain, str]:
    """Registry/snapshot key. EVM addresses are case-insensitive, Solana's are not."""
    if chain is Chain.SOLANA:
        return chain, address
    return chain, address.lower()


@dataclass
class BalanceSnapshot:
    address: str
    chain: Chain
    last_known_amount: Decimal
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class BalanceReading:
    """Outcome of one oracle query across all candidates."""

    amount: Decimal
    successes: int = 0
    failures: int = 0

    @property
    def ok(self) -> bool:
        return self.successes > 0


class DepositSource(str, Enum):
    POLL = "poll"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class DepositEvent:
    address: str
    chain: Chain
    amount: Decimal
    detected_at: datetime = field(default_factory=utcnow)
    tx_hash: Optional[str] = None
    source: DepositSource = DepositSource.POLL

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"Deposit amount must be positive, got {self.amount}")

    def notification_key(self, window_seconds: int) -> Tuple[str, str, str, int]:
        """(chain, address, amount, time bucket) used to drop duplicate observations."""
        chain, address = wallet_key(self.address, self.chain)
        bucket = math.floor(self.detected_at.timestamp() / window_seconds)
        return chain.value, address, str(quantize_usdc(self.amount)), bucket


@dataclass(frozen=True)
class TransactionRequest:
    """Unsigned transaction a bridge provider asks the custodian to sign and send."""

    chain: Chain
    to: Optional[str]
    data: str
    value: int = 0
    gas_limit: Optional[int] = None


@dataclass(frozen=True)
class BridgeQuote:
    source_chain: Chain
    destination_chain: Chain
    amount: Decimal
    estimated_duration_seconds: int
    estimated_fee_usd: Decimal
    provider_route_id: str
    from_address: str = ""
    to_address: str = ""
    to_amount: Optional[Decimal] = None
    tool: Optional[str] = None
    transaction: Optional[TransactionRequest] = None
    approval_address: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class RoutePath(str, Enum):
    SAME_CHAIN = "same_chain"
    CROSS_CHAIN = "cross_chain"


@dataclass(frozen=True)
class RouteOutcome:
    path: RoutePath
    success: bool
    destination_chain: Optional[Chain] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    quote: Optional[BridgeQuote] = None


@dataclass(frozen=True)
class WalletRef:
    """Handle on a custodial wallet; only the custody provider can sign with it."""

    owner_id: str
    chain: Chain
    address: str
    provider_wallet_id: Optional[str] = None


@dataclass(frozen=True)
class DepositInfo:
    chain: Chain
    wallet_address: str
    token_address: str
    token_symbol: str = "USDC"


class WithdrawStep(str, Enum):
    SELECT_CHAIN = "select_chain"
    ENTER_AMOUNT = "enter_amount"
    ENTER_ADDRESS = "enter_address"
    CONFIRM = "confirm"


@dataclass
class WithdrawSession:
    user_id: str
    source_chain: Optional[Chain] = None
    step: WithdrawStep = WithdrawStep.SELECT_CHAIN
    amount: Decimal = Decimal("0")
    destination_address: str = ""
    destination_chain: Optional[Chain] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


__all__ = [
    "USDC_QUANTUM",
    "utcnow",
    "quantize_usdc",
    "format_usdc",
    "to_base_units",
    "wallet_key",
    "MonitoredWallet",
    "BalanceSnapshot",
    "BalanceReading",
    "DepositSource",
    "DepositEvent",
    "TransactionRequest",
    "BridgeQuote",
    "ExecutionResult",
    "RoutePath",
    "RouteOutcome",
    "WalletRef",
    "DepositInfo",
    "WithdrawStep",
    "WithdrawSession",
]
