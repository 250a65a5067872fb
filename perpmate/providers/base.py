from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core.chains import Chain
from ..core.models import BridgeQuote, ExecutionResult, TransactionRequest, WalletRef


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        if not await self.ready():
            return {"status": "unavailable", "reason": "not configured"}
        return {"status": "configured"}


class BalanceSource(ABC):
    """One {endpoint, token} candidate the balance oracle can query."""

    label: str = "source"

    @abstractmethod
    async def fetch(self, address: str) -> Decimal:
        """Return the token balance held by ``address``. Raises on any failure."""
        pass

    async def fetch_as_token_account(self, address: str) -> Optional[Decimal]:
        """Balance when ``address`` is itself a token-holding account; None if not applicable."""
        return None


class CustodyProvider(Provider):
    """Issues custodial addresses and signs on behalf of their owners."""

    @abstractmethod
    async def create_or_get_address(self, owner_id: str, chain: Chain) -> str:
        pass

    @abstractmethod
    async def get_wallet(self, owner_id: str, chain: Chain) -> WalletRef:
        pass

    @abstractmethod
    async def sign_and_send(self, wallet: WalletRef, chain: Chain, to_address: str, amount: Decimal) -> str:
        """Transfer USDC and return the transaction reference. Raises CustodySigningFailure."""
        pass

    @abstractmethod
    async def send_transaction(self, wallet: WalletRef, transaction: TransactionRequest) -> str:
        """Sign and broadcast a provider-built transaction. Raises CustodySigningFailure."""
        pass


class BridgeProvider(Provider):
    """Cross-chain route quoting and execution."""

    @abstractmethod
    async def quote(
        self,
        source_chain: Chain,
        destination_chain: Chain,
        amount: Decimal,
        from_address: str,
        to_address: str,
    ) -> Optional[BridgeQuote]:
        """Fresh quote for one attempt, or None when no route exists."""
        pass

    @abstractmethod
    async def execute(self, quote: BridgeQuote, wallet: WalletRef) -> ExecutionResult:
        """Execute ``quote`` and wait for the bridge to settle."""
        pass


class Notifier(ABC):
    """Bot transport. Best effort: implementations log failures instead of raising."""

    @abstractmethod
    async def send(self, owner_id: str, message: str) -> None:
        pass
