"""
Funding Service

Owns every store and collaborator of the funding core for one process: the
monitored-wallet registry, balance snapshots (inside the monitor), the deposit
pipeline and the withdrawal sessions. Built once from Settings and handed to the
HTTP layer; tests build their own with fakes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from ..config import Settings
from ..core.bridge import BridgeOrchestrator
from ..core.chains import Chain, deposit_chains, get_spec, normalize_chain, usdc_address
from ..core.errors import CustodySigningFailure, InvalidUserInput, PerpmateError
from ..core.models import DepositEvent, DepositInfo, format_usdc
from ..core.monitor import DepositMonitor
from ..core.oracle import BalanceOracle, build_balance_sources
from ..core.pipeline import DepositPipeline
from ..core.registry import MonitoredWalletRegistry
from ..core.withdraw import WithdrawSessionManager
from ..logging_config import bind_owner
from ..providers.base import BridgeProvider, CustodyProvider, Notifier
from ..providers.lifi import LifiProvider
from ..providers.privy import PrivyCustody
from ..providers.telegram import LoggingNotifier, TelegramNotifier
from ..providers.testnet import FAUCET_AMOUNT, MockBridgeProvider, TestnetCustody, TestnetLedger
from .webhook_handler import AlchemyWebhookHandler, HeliusWebhookHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaucetResult:
    chain: Chain
    wallet_address: str
    amount: Decimal
    tx_hash: str


class FundingService:
    def __init__(
        self,
        settings: Settings,
        *,
        oracle: BalanceOracle,
        custody: CustodyProvider,
        bridge_provider: BridgeProvider,
        notifier: Notifier,
        ledger: Optional[TestnetLedger] = None,
    ) -> None:
        self.settings = settings
        self.oracle = oracle
        self.custody = custody
        self.bridge_provider = bridge_provider
        self.notifier = notifier
        self.ledger = ledger

        destination = normalize_chain(settings.bridge_destination_chain)
        if destination is None:
            raise ValueError(f"Unsupported bridge destination chain: {settings.bridge_destination_chain}")
        self.destination_chain = destination

        timeout = settings.external_call_timeout_seconds
        self.registry = MonitoredWalletRegistry()
        self.pipeline = DepositPipeline(
            self.handle_deposit,
            window_seconds=settings.notification_window_seconds,
            max_concurrency=settings.deposit_poll_concurrency,
        )
        self.monitor = DepositMonitor(
            oracle,
            self.registry,
            self.pipeline,
            max_concurrency=settings.deposit_poll_concurrency,
        )
        self.orchestrator = BridgeOrchestrator(
            custody,
            bridge_provider,
            notifier,
            timeout_s=timeout,
            execution_timeout_s=settings.bridge_confirmation_timeout_seconds + timeout,
        )
        self.withdrawals = WithdrawSessionManager(
            oracle,
            custody,
            self.orchestrator,
            min_amount=settings.min_withdrawal_amount,
            timeout_s=timeout,
        )
        self.alchemy = AlchemyWebhookHandler(settings.alchemy_webhook_signing_key, testnet=self.testnet)
        self.helius = HeliusWebhookHandler(settings.helius_webhook_secret, testnet=self.testnet)

    @property
    def testnet(self) -> bool:
        return self.settings.testnet_mode

    @classmethod
    def from_settings(cls, settings: Settings) -> "FundingService":
        timeout = settings.external_call_timeout_seconds
        notifier: Notifier = (
            TelegramNotifier(bot_token=settings.telegram_bot_token, api_base_url=settings.telegram_api_base_url)
            if settings.has_telegram_token
            else LoggingNotifier()
        )

        if settings.testnet_mode:
            ledger = TestnetLedger()
            oracle = BalanceOracle(
                {chain: [ledger.source(chain)] for chain in Chain},
                timeout_s=timeout,
            )
            logger.info("Funding service starting in testnet mode")
            return cls(
                settings,
                oracle=oracle,
                custody=TestnetCustody(ledger),
                bridge_provider=MockBridgeProvider(ledger),
                notifier=notifier,
                ledger=ledger,
            )

        if not settings.has_privy_credentials:
            logger.warning("Privy credentials missing; deposit addresses cannot be issued")
        custody = PrivyCustody(
            app_id=settings.privy_app_id,
            app_secret=settings.privy_app_secret,
            base_url=settings.privy_base_url,
            timeout_s=timeout,
        )
        bridge_provider = LifiProvider(
            custody,
            api_key=settings.lifi_api_key,
            base_url=settings.lifi_base_url,
            timeout_s=timeout,
            status_poll_seconds=settings.bridge_status_poll_seconds,
            confirmation_timeout_s=settings.bridge_confirmation_timeout_seconds,
        )
        return cls(
            settings,
            oracle=BalanceOracle(build_balance_sources(settings), timeout_s=timeout),
            custody=custody,
            bridge_provider=bridge_provider,
            notifier=notifier,
        )

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        self.pipeline.start()
        if self.settings.deposit_monitor_enabled:
            self.monitor.start(self.settings.deposit_poll_interval_seconds)

    async def stop(self) -> None:
        await self.monitor.stop()
        await self.pipeline.stop()

    # ---------------------------
    # Deposits
    # ---------------------------
    async def get_deposit_info(self, owner_id: str, chain: str | Chain) -> DepositInfo:
        """Issue (or reuse) the owner's deposit address and start watching it."""

        resolved = normalize_chain(chain)
        if resolved is None or resolved not in deposit_chains():
            supported = ", ".join(c.value for c in deposit_chains())
            raise InvalidUserInput(
                f"Deposits are not accepted on {chain}",
                user_message=f"Deposits are supported on: {supported}.",
            )

        address = await self._custody_address(owner_id, resolved)
        await self.monitor.arm(address, resolved, owner_id)
        return DepositInfo(
            chain=resolved,
            wallet_address=address,
            token_address=usdc_address(resolved, testnet=self.testnet),
        )

    async def handle_deposit(self, event: DepositEvent) -> None:
        """Pipeline consumer: notify the owner and bridge the deposit onward."""

        wallet = self.registry.lookup(event.address, event.chain)
        if wallet is None:
            logger.warning("Deposit for unregistered wallet %s on %s dropped", event.address, event.chain.value)
            return

        owner_id = wallet.owner_id
        bind_owner(owner_id)
        source = get_spec(event.chain)
        destination = get_spec(self.destination_chain)
        await self._notify(
            owner_id,
            (
                f"💰 *Deposit detected!*\n"
                f"{format_usdc(event.amount)} USDC on {source.name}\n"
                f"Auto-bridging to {destination.name}..."
            ),
        )

        try:
            to_address = await self._custody_address(owner_id, self.destination_chain)
        except PerpmateError as exc:
            logger.error("No %s wallet for %s: %s", self.destination_chain.value, owner_id, exc.message)
            await self._notify(owner_id, f"❌ Auto-bridge failed: {exc.user_message}\nRetry later with /fund.")
            return

        outcome = await self.orchestrator.route(
            event.chain,
            event.amount,
            wallet.address,
            to_address,
            owner_id,
            destination_chain=self.destination_chain,
            retry_command="/fund",
        )
        logger.info(
            "Deposit of %s USDC on %s for %s routed: success=%s path=%s",
            event.amount,
            event.chain.value,
            owner_id,
            outcome.success,
            outcome.path.value,
        )

    async def ingest_deposits(self, events: Iterable[DepositEvent]) -> int:
        ingested = 0
        for event in events:
            if await self.monitor.ingest_webhook(event):
                ingested += 1
        return ingested

    async def faucet(self, owner_id: str, chain: str | Chain) -> FaucetResult:
        if self.ledger is None:
            raise InvalidUserInput("Faucet requested outside testnet mode", user_message="The faucet is only available on testnet.")
        info = await self.get_deposit_info(owner_id, chain)
        tx_hash = self.ledger.faucet(info.wallet_address, info.chain, FAUCET_AMOUNT)
        return FaucetResult(chain=info.chain, wallet_address=info.wallet_address, amount=FAUCET_AMOUNT, tx_hash=tx_hash)

    # ---------------------------
    # Introspection
    # ---------------------------
    async def health(self) -> Dict[str, Any]:
        providers: Dict[str, Any] = {}
        for provider in (self.custody, self.bridge_provider):
            try:
                providers[provider.name] = await provider.health_check()
            except Exception as exc:  # noqa: BLE001
                providers[provider.name] = {"status": "error", "reason": str(exc)}
        return {
            "mode": "testnet" if self.testnet else "mainnet",
            "monitored_wallets": len(self.registry),
            "monitor_running": self.monitor.is_running,
            "poll_rounds": self.monitor.rounds,
            "pipeline_running": self.pipeline.is_running,
            "pipeline_backlog": self.pipeline.backlog,
            "withdraw_sessions": len(self.withdrawals),
            "providers": providers,
        }

    def monitored_wallets(self) -> List[Dict[str, Any]]:
        wallets = []
        for wallet in self.registry.iterate():
            snapshot = self.monitor.snapshot(wallet.address, wallet.chain)
            wallets.append(
                {
                    "address": wallet.address,
                    "chain": wallet.chain.value,
                    "owner_id": wallet.owner_id,
                    "registered_at": wallet.registered_at.isoformat(),
                    "last_known_amount": str(snapshot.last_known_amount) if snapshot else None,
                }
            )
        return wallets

    async def _custody_address(self, owner_id: str, chain: Chain) -> str:
        try:
            return await asyncio.wait_for(
                self.custody.create_or_get_address(owner_id, chain),
                timeout=self.settings.external_call_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise CustodySigningFailure(
                f"Custody provider timed out issuing a {chain.value} address",
                user_message="Wallet provider did not respond.",
            )

    async def _notify(self, owner_id: str, message: str) -> None:
        try:
            await asyncio.wait_for(
                self.notifier.send(owner_id, message),
                timeout=self.settings.external_call_timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Notification to %s failed: %s", owner_id, exc)


_funding_service: Optional[FundingService] = None


def get_funding_service() -> FundingService:
    """Get the singleton FundingService instance."""
    global _funding_service
    if _funding_service is None:
        from ..config import settings

        _funding_service = FundingService.from_settings(settings)
    return _funding_service
