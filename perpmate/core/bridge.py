"""
Bridge Orchestrator

Moves USDC from a custodial wallet to a destination address. If the destination
looks like an address on the source chain the custodian sends a plain token
transfer; otherwise a fresh quote is requested from the bridge provider and
executed. The owner is notified before and after every execution.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from ..providers.base import BridgeProvider, CustodyProvider, Notifier
from .chains import Chain, get_spec, infer_destination_chain, is_same_chain_destination, shorten_address
from .errors import CustodySigningFailure, NoRouteAvailable, PerpmateError, ProviderResponseError
from .models import BridgeQuote, RouteOutcome, RoutePath, WalletRef, format_usdc


def _format_duration(seconds: int) -> str:
    if seconds < 90:
        return f"~{seconds}s"
    return f"~{round(seconds / 60)} min"


class BridgeOrchestrator:
    def __init__(
        self,
        custody: CustodyProvider,
        bridge_provider: BridgeProvider,
        notifier: Notifier,
        *,
        timeout_s: float = 20.0,
        execution_timeout_s: float = 900.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._custody = custody
        self._bridge = bridge_provider
        self._notifier = notifier
        self._timeout_s = timeout_s
        self._execution_timeout_s = execution_timeout_s
        self._logger = logger or logging.getLogger(__name__)

    async def route(
        self,
        source_chain: Chain,
        amount: Decimal,
        from_address: str,
        to_address: str,
        owner_id: str,
        *,
        destination_chain: Optional[Chain] = None,
        retry_command: str = "/fund",
    ) -> RouteOutcome:
        """Send ``amount`` USDC from ``from_address`` to ``to_address``.

        When ``destination_chain`` is omitted the path is chosen from the address
        format alone. Never raises; failures are reported to the owner and
        returned on the outcome.
        """

        if destination_chain is None:
            same_chain = is_same_chain_destination(source_chain, to_address)
            destination_chain = infer_destination_chain(source_chain, to_address)
        else:
            same_chain = destination_chain is source_chain

        path = RoutePath.SAME_CHAIN if same_chain else RoutePath.CROSS_CHAIN
        if destination_chain is None:
            error = f"Unrecognized destination address {shorten_address(to_address)}"
            await self._notify(owner_id, f"❌ {error}. Check the address and try again.")
            return RouteOutcome(path=path, success=False, error=error)

        try:
            wallet = await self._with_timeout(self._custody.get_wallet(owner_id, source_chain))
            if wallet.address != from_address:
                self._logger.warning(
                    "Custody wallet %s does not match requested source %s for %s",
                    wallet.address,
                    from_address,
                    owner_id,
                )
            if same_chain:
                return await self._same_chain(wallet, source_chain, amount, to_address, owner_id)
            return await self._cross_chain(
                wallet,
                source_chain,
                destination_chain,
                amount,
                from_address,
                to_address,
                owner_id,
                retry_command,
            )
        except NoRouteAvailable as exc:
            await self._notify(owner_id, exc.user_message)
            return RouteOutcome(path=path, success=False, destination_chain=destination_chain, error=exc.message)
        except CustodySigningFailure as exc:
            self._logger.error("Custody failure routing %s USDC for %s: %s", amount, owner_id, exc.message)
            await self._notify(
                owner_id,
                f"❌ Transfer failed: {exc.user_message}\nPlease try again later or contact support.",
            )
            return RouteOutcome(path=path, success=False, destination_chain=destination_chain, error=exc.message)
        except Exception as exc:  # noqa: BLE001
            error = exc.message if isinstance(exc, PerpmateError) else str(exc) or type(exc).__name__
            self._logger.error("Routing %s USDC for %s failed: %s", amount, owner_id, error, exc_info=True)
            await self._notify(owner_id, f"❌ Transfer failed: {error}")
            return RouteOutcome(path=path, success=False, destination_chain=destination_chain, error=error)

    async def _same_chain(
        self,
        wallet: WalletRef,
        chain: Chain,
        amount: Decimal,
        to_address: str,
        owner_id: str,
    ) -> RouteOutcome:
        spec = get_spec(chain)
        await self._notify(
            owner_id,
            f"📤 Sending {format_usdc(amount)} USDC on {spec.name} to {shorten_address(to_address)}...",
        )
        # Single attempt; a failed signature is not retried
        tx_hash = await self._with_timeout(self._custody.sign_and_send(wallet, chain, to_address, amount))
        self._logger.info("Same-chain transfer of %s USDC on %s sent: %s", amount, chain.value, tx_hash)
        await self._notify(owner_id, f"✅ Sent {format_usdc(amount)} USDC on {spec.name}\nTx: `{tx_hash}`")
        return RouteOutcome(path=RoutePath.SAME_CHAIN, success=True, destination_chain=chain, tx_hash=tx_hash)

    async def _cross_chain(
        self,
        wallet: WalletRef,
        source_chain: Chain,
        destination_chain: Chain,
        amount: Decimal,
        from_address: str,
        to_address: str,
        owner_id: str,
        retry_command: str,
    ) -> RouteOutcome:
        source = get_spec(source_chain)
        destination = get_spec(destination_chain)

        quote = await self._quote(source_chain, destination_chain, amount, from_address, to_address)
        if quote is None:
            raise NoRouteAvailable(
                f"No route from {source_chain.value} to {destination_chain.value} for {amount} USDC",
                retry_command=retry_command,
                user_message=(
                    f"❌ No bridge route available from {source.name} to {destination.name} "
                    f"for {format_usdc(amount)} USDC right now.\nTry again later with {retry_command}."
                ),
            )

        await self._notify(
            owner_id,
            (
                f"🌉 Bridging {format_usdc(amount)} USDC from {source.name} to {destination.name}\n"
                f"Estimated time: {_format_duration(quote.estimated_duration_seconds)}\n"
                f"Estimated fee: ${quote.estimated_fee_usd:.2f}"
            ),
        )

        result = await asyncio.wait_for(self._bridge.execute(quote, wallet), timeout=self._execution_timeout_s)
        if result.success:
            self._logger.info(
                "Bridge %s -> %s of %s USDC settled: %s",
                source_chain.value,
                destination_chain.value,
                amount,
                result.tx_hash,
            )
            received = format_usdc(quote.to_amount) if quote.to_amount is not None else format_usdc(amount)
            await self._notify(
                owner_id,
                f"✅ Bridge complete! {received} USDC arrived on {destination.name}\nTx: `{result.tx_hash}`",
            )
        else:
            self._logger.warning("Bridge execution failed for %s: %s", owner_id, result.error)
            await self._notify(owner_id, f"❌ Bridge failed: {result.error or 'unknown error'}")

        return RouteOutcome(
            path=RoutePath.CROSS_CHAIN,
            success=result.success,
            destination_chain=destination_chain,
            tx_hash=result.tx_hash,
            error=result.error,
            quote=quote,
        )

    async def _quote(
        self,
        source_chain: Chain,
        destination_chain: Chain,
        amount: Decimal,
        from_address: str,
        to_address: str,
    ) -> Optional[BridgeQuote]:
        try:
            return await self._with_timeout(
                self._bridge.quote(source_chain, destination_chain, amount, from_address, to_address)
            )
        except ProviderResponseError as exc:
            # An unusable quote payload leaves us without a route
            self._logger.warning("Discarding bridge quote: %s", exc.message)
            return None

    async def _with_timeout(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self._timeout_s)

    async def _notify(self, owner_id: str, message: str) -> None:
        try:
            await asyncio.wait_for(self._notifier.send(owner_id, message), timeout=self._timeout_s)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Notification to %s failed: %s", owner_id, exc)
