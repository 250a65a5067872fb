"""Shared fakes for the funding core tests."""

from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

from perpmate.config import Settings
from perpmate.core.chains import Chain, ChainFamily, get_spec
from perpmate.core.errors import CustodySigningFailure
from perpmate.core.models import BridgeQuote, ExecutionResult, TransactionRequest, WalletRef
from perpmate.core.oracle import BalanceOracle
from perpmate.providers.base import BalanceSource, BridgeProvider, CustodyProvider, Notifier
from perpmate.services.funding import FundingService

SOL_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SOL_EXTERNAL = "7EcDhSYGxXyscszYEp35KHN8vvw3svAuLKTzXwCFLtV"
EVM_WALLET = "0x1111111111111111111111111111111111111111"
EVM_EXTERNAL = "0x742d35Cc6636C0532925a3b8D6C90532e4A5cf4a"


class FakeBalanceSource(BalanceSource):
    def __init__(self, label: str = "fake", balances: Optional[Dict[str, Decimal]] = None):
        self.label = label
        self.balances: Dict[str, Decimal] = dict(balances or {})
        self.token_account_balances: Dict[str, Decimal] = {}
        self.error: Optional[Exception] = None
        self.calls = 0

    def set(self, address: str, amount) -> None:
        self.balances[address] = Decimal(str(amount))

    async def fetch(self, address: str) -> Decimal:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.balances.get(address, Decimal(0))

    async def fetch_as_token_account(self, address: str) -> Optional[Decimal]:
        if self.error is not None:
            raise self.error
        return self.token_account_balances.get(address)


class FakeCustody(CustodyProvider):
    name = "fake-custody"

    def __init__(self):
        self.addresses: Dict[Tuple[str, ChainFamily], str] = {}
        self.transfers: List[Tuple[str, Chain, str, Decimal]] = []
        self.transactions: List[TransactionRequest] = []
        self.fail_with: Optional[Exception] = None

    async def ready(self) -> bool:
        return True

    def _address(self, owner_id: str, chain: Chain) -> str:
        family = get_spec(chain).family
        default = SOL_WALLET if family is ChainFamily.SOLANA else EVM_WALLET
        return self.addresses.get((owner_id, family), default)

    async def create_or_get_address(self, owner_id: str, chain: Chain) -> str:
        return self._address(owner_id, chain)

    async def get_wallet(self, owner_id: str, chain: Chain) -> WalletRef:
        return WalletRef(owner_id=owner_id, chain=chain, address=self._address(owner_id, chain), provider_wallet_id="w-1")

    async def sign_and_send(self, wallet: WalletRef, chain: Chain, to_address: str, amount: Decimal) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.transfers.append((wallet.address, chain, to_address, amount))
        return f"0xtransfer{len(self.transfers)}"

    async def send_transaction(self, wallet: WalletRef, transaction: TransactionRequest) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.transactions.append(transaction)
        return f"0xtx{len(self.transactions)}"


class FakeBridge(BridgeProvider):
    name = "fake-bridge"

    def __init__(self):
        self.quote_calls: List[Tuple[Chain, Chain, Decimal, str, str]] = []
        self.executed: List[BridgeQuote] = []
        self.no_route = False
        self.succeed = True

    async def ready(self) -> bool:
        return True

    async def quote(self, source_chain, destination_chain, amount, from_address, to_address):
        self.quote_calls.append((source_chain, destination_chain, amount, from_address, to_address))
        if self.no_route:
            return None
        return BridgeQuote(
            source_chain=source_chain,
            destination_chain=destination_chain,
            amount=amount,
            estimated_duration_seconds=45,
            estimated_fee_usd=Decimal("0.35"),
            provider_route_id=f"route-{len(self.quote_calls)}",
            from_address=from_address,
            to_address=to_address,
        )

    async def execute(self, quote: BridgeQuote, wallet: WalletRef) -> ExecutionResult:
        self.executed.append(quote)
        if not self.succeed:
            return ExecutionResult(success=False, error="relayer reverted")
        return ExecutionResult(success=True, tx_hash="0xbridge")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    async def send(self, owner_id: str, message: str) -> None:
        self.messages.append((owner_id, message))

    def texts(self, owner_id: Optional[str] = None) -> List[str]:
        return [text for owner, text in self.messages if owner_id is None or owner == owner_id]


@pytest.fixture
def solana_source():
    return FakeBalanceSource("solana-fake")


@pytest.fixture
def base_source():
    return FakeBalanceSource("base-fake")


@pytest.fixture
def oracle(solana_source, base_source):
    return BalanceOracle({Chain.SOLANA: [solana_source], Chain.BASE: [base_source]}, timeout_s=1)


@pytest.fixture
def custody():
    return FakeCustody()


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        testnet_mode=False,
        deposit_monitor_enabled=False,
        external_call_timeout_seconds=1,
        notification_window_seconds=120,
    )


@pytest.fixture
def service(settings, oracle, custody, bridge, notifier):
    return FundingService(
        settings,
        oracle=oracle,
        custody=custody,
        bridge_provider=bridge,
        notifier=notifier,
    )
