"""
Testnet doubles

In testnet mode no chain, custody or bridge provider is contacted. Balances live
in an in-memory ledger, custody addresses are derived from the owner id, and
bridge routes are simulated with a flat 0.2% fee.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import logging
import threading
from decimal import Decimal
from typing import Dict, Optional, Tuple

import base58

from ..core.chains import Chain, ChainFamily, get_spec
from ..core.errors import CustodySigningFailure
from ..core.models import (
    BridgeQuote,
    ExecutionResult,
    TransactionRequest,
    WalletRef,
    quantize_usdc,
    wallet_key,
)
from .base import BalanceSource, BridgeProvider, CustodyProvider

logger = logging.getLogger(__name__)

FAUCET_AMOUNT = Decimal("1000")
MOCK_BRIDGE_FEE_RATE = Decimal("0.002")
MOCK_BRIDGE_ETA_SECONDS = {Chain.SOLANA: 45, Chain.BASE: 30}
MOCK_BRIDGE_TOOLS = {Chain.SOLANA: "Wormhole", Chain.BASE: "Stargate"}


def _digest(*parts: str) -> bytes:
    return hashlib.sha256(":".join(parts).encode("utf-8")).digest()


def fake_tx_hash(chain: Chain, *parts: str) -> str:
    digest = hashlib.sha512(":".join((chain.value, *parts)).encode("utf-8")).digest()
    if get_spec(chain).family is ChainFamily.SOLANA:
        return base58.b58encode(digest).decode("ascii")
    return "0x" + digest[:32].hex()


class TestnetLedger:
    """USDC balances per (chain, address), shared by every testnet double."""

    __test__ = False

    def __init__(self) -> None:
        self._balances: Dict[Tuple[Chain, str], Decimal] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def balance(self, address: str, chain: Chain) -> Decimal:
        with self._lock:
            return self._balances.get(wallet_key(address, chain), Decimal(0))

    def set_balance(self, address: str, chain: Chain, amount: Decimal) -> None:
        with self._lock:
            self._balances[wallet_key(address, chain)] = amount
        logger.info("Testnet balance of %s on %s set to %s", address, chain.value, amount)

    def credit(self, address: str, chain: Chain, amount: Decimal) -> Decimal:
        with self._lock:
            key = wallet_key(address, chain)
            new_balance = self._balances.get(key, Decimal(0)) + amount
            self._balances[key] = new_balance
        logger.info("Testnet balance of %s on %s increased by %s to %s", address, chain.value, amount, new_balance)
        return new_balance

    def debit(self, address: str, chain: Chain, amount: Decimal) -> Decimal:
        with self._lock:
            key = wallet_key(address, chain)
            current = self._balances.get(key, Decimal(0))
            if amount > current:
                raise CustodySigningFailure(
                    f"Insufficient testnet balance: {current} < {amount}",
                    user_message="Insufficient balance for this transfer.",
                )
            self._balances[key] = current - amount
            return current - amount

    def faucet(self, address: str, chain: Chain, amount: Decimal = FAUCET_AMOUNT) -> str:
        self.credit(address, chain, amount)
        return fake_tx_hash(chain, "faucet", address, str(next(self._counter)))

    def source(self, chain: Chain) -> "TestnetLedgerSource":
        return TestnetLedgerSource(self, chain)


class TestnetLedgerSource(BalanceSource):
    __test__ = False

    def __init__(self, ledger: TestnetLedger, chain: Chain) -> None:
        self.ledger = ledger
        self.chain = chain
        self.label = f"testnet-ledger#{chain.value}"

    async def fetch(self, address: str) -> Decimal:
        return self.ledger.balance(address, self.chain)


class TestnetCustody(CustodyProvider):
    """Deterministic addresses; transfers move funds inside the ledger."""

    __test__ = False
    name = "testnet-custody"

    def __init__(self, ledger: TestnetLedger) -> None:
        self.ledger = ledger
        self._counter = itertools.count(1)

    async def ready(self) -> bool:
        return True

    @staticmethod
    def derive_address(owner_id: str, chain: Chain) -> str:
        family = get_spec(chain).family
        digest = _digest("perpmate-testnet", owner_id, family.value)
        if family is ChainFamily.SOLANA:
            return base58.b58encode(digest).decode("ascii")
        return "0x" + digest[:20].hex()

    async def create_or_get_address(self, owner_id: str, chain: Chain) -> str:
        return self.derive_address(owner_id, chain)

    async def get_wallet(self, owner_id: str, chain: Chain) -> WalletRef:
        address = self.derive_address(owner_id, chain)
        return WalletRef(owner_id=owner_id, chain=chain, address=address, provider_wallet_id=f"testnet-{address}")

    async def sign_and_send(self, wallet: WalletRef, chain: Chain, to_address: str, amount: Decimal) -> str:
        self.ledger.debit(wallet.address, chain, amount)
        self.ledger.credit(to_address, chain, amount)
        tx_hash = fake_tx_hash(chain, wallet.address, to_address, str(amount), str(next(self._counter)))
        logger.info("Testnet transfer of %s USDC on %s to %s: %s", amount, chain.value, to_address, tx_hash)
        return tx_hash

    async def send_transaction(self, wallet: WalletRef, transaction: TransactionRequest) -> str:
        return fake_tx_hash(transaction.chain, wallet.address, transaction.data, str(next(self._counter)))


class MockBridgeProvider(BridgeProvider):
    """Simulated cross-chain routes that always settle."""

    name = "mock-bridge"

    def __init__(self, ledger: TestnetLedger, *, max_delay_s: float = 5.0) -> None:
        self.ledger = ledger
        self.max_delay_s = max_delay_s
        self._counter = itertools.count(1)

    async def ready(self) -> bool:
        return True

    async def quote(
        self,
        source_chain: Chain,
        destination_chain: Chain,
        amount: Decimal,
        from_address: str,
        to_address: str,
    ) -> Optional[BridgeQuote]:
        if amount <= 0 or source_chain is destination_chain:
            return None
        route_id = f"mock-route-{next(self._counter)}"
        quote = BridgeQuote(
            source_chain=source_chain,
            destination_chain=destination_chain,
            amount=amount,
            estimated_duration_seconds=MOCK_BRIDGE_ETA_SECONDS.get(source_chain, 30),
            estimated_fee_usd=quantize_usdc(amount * MOCK_BRIDGE_FEE_RATE),
            provider_route_id=route_id,
            from_address=from_address,
            to_address=to_address,
            to_amount=quantize_usdc(amount * (1 - MOCK_BRIDGE_FEE_RATE)),
            tool=MOCK_BRIDGE_TOOLS.get(source_chain, "Stargate"),
        )
        logger.info("Created mock route %s: %s -> %s for %s USDC", route_id, source_chain.value, destination_chain.value, amount)
        return quote

    async def execute(self, quote: BridgeQuote, wallet: WalletRef) -> ExecutionResult:
        try:
            self.ledger.debit(wallet.address, quote.source_chain, quote.amount)
        except CustodySigningFailure as exc:
            return ExecutionResult(success=False, error=exc.message)

        await asyncio.sleep(min(quote.estimated_duration_seconds, self.max_delay_s))

        received = quote.to_amount if quote.to_amount is not None else quote.amount
        self.ledger.credit(quote.to_address, quote.destination_chain, received)
        tx_hash = fake_tx_hash(quote.destination_chain, quote.provider_route_id, quote.to_address)
        logger.info("Mock route %s completed: %s", quote.provider_route_id, tx_hash)
        return ExecutionResult(success=True, tx_hash=tx_hash)
