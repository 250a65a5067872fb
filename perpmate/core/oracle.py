"""
Balance Oracle

Reads a wallet's USDC balance on a chain by querying every configured
{endpoint, token} candidate concurrently and keeping the largest successful
read. Providers that have not indexed a fresh token account yet under-report,
so the first answer is not trusted.

Reads never raise. A failed read comes back as zero with ``ok`` false; callers
must treat that as "no evidence of funds", not as an empty wallet.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from ..config import Settings
from ..providers.base import BalanceSource
from ..providers.evm import EvmRpcClient, EvmUsdcSource
from ..providers.solana import SolanaRpcClient, SolanaUsdcSource
from .chains import Chain, usdc_address
from .models import BalanceReading


class BalanceOracle:
    def __init__(
        self,
        sources: Dict[Chain, Sequence[BalanceSource]],
        *,
        timeout_s: float = 20.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._sources: Dict[Chain, List[BalanceSource]] = {chain: list(items) for chain, items in sources.items()}
        self._timeout_s = timeout_s
        self._logger = logger or logging.getLogger(__name__)

    def candidates(self, chain: Chain) -> List[BalanceSource]:
        return list(self._sources.get(chain, []))

    async def get_balance(self, address: str, chain: Chain) -> Decimal:
        reading = await self.read_balance(address, chain)
        return reading.amount

    async def read_balance(self, address: str, chain: Chain) -> BalanceReading:
        sources = self._sources.get(chain)
        if not sources:
            self._logger.error("No balance sources configured for chain %s", chain.value)
            return BalanceReading(amount=Decimal(0))

        amounts = await self._gather(address, chain, sources, fallback=False)
        successes = [amount for amount in amounts if amount is not None]
        failures = len(amounts) - len(successes)

        if not any(successes):
            fallback = [
                amount
                for amount in await self._gather(address, chain, sources, fallback=True)
                if amount is not None
            ]
            if fallback:
                successes.extend(fallback)

        if not successes:
            self._logger.warning(
                "All %d balance candidates failed for %s on %s",
                len(sources),
                address,
                chain.value,
            )
            return BalanceReading(amount=Decimal(0), successes=0, failures=failures)

        best = max(successes)
        self._logger.debug(
            "Balance for %s on %s is %s (%d ok, %d failed)",
            address,
            chain.value,
            best,
            len(successes),
            failures,
        )
        return BalanceReading(amount=best, successes=len(successes), failures=failures)

    async def _gather(
        self,
        address: str,
        chain: Chain,
        sources: Iterable[BalanceSource],
        *,
        fallback: bool,
    ) -> List[Optional[Decimal]]:
        return list(
            await asyncio.gather(*(self._read_one(source, address, chain, fallback) for source in sources))
        )

    async def _read_one(
        self,
        source: BalanceSource,
        address: str,
        chain: Chain,
        fallback: bool,
    ) -> Optional[Decimal]:
        try:
            call = source.fetch_as_token_account(address) if fallback else source.fetch(address)
            amount = await asyncio.wait_for(call, timeout=self._timeout_s)
        except asyncio.TimeoutError:
            self._logger.warning("Balance read via %s timed out for %s on %s", source.label, address, chain.value)
            return None
        except Exception as exc:  # noqa: BLE001
            if not fallback:
                self._logger.warning(
                    "Balance read via %s failed for %s on %s: %s",
                    source.label,
                    address,
                    chain.value,
                    exc,
                )
            return None
        if amount is None:
            return None
        if amount < 0:
            self._logger.warning("Ignoring negative balance %s from %s", amount, source.label)
            return None
        return amount


def build_balance_sources(settings: Settings) -> Dict[Chain, List[BalanceSource]]:
    """Primary endpoint first, then configured fallbacks, then optional testnet tokens."""

    timeout = settings.external_call_timeout_seconds

    solana_urls = _dedupe([settings.solana_rpc_url, *settings.solana_fallback_rpc_urls])
    solana_sources: List[BalanceSource] = [
        SolanaUsdcSource(SolanaRpcClient(url, timeout_s=timeout), usdc_address(Chain.SOLANA))
        for url in solana_urls
    ]

    base_urls = _dedupe([settings.base_rpc_url, *settings.base_fallback_rpc_urls])
    base_sources: List[BalanceSource] = [
        EvmUsdcSource(EvmRpcClient(url, timeout_s=timeout), usdc_address(Chain.BASE))
        for url in base_urls
    ]

    if settings.include_testnet_token_candidates:
        solana_sources.append(
            SolanaUsdcSource(
                SolanaRpcClient(settings.solana_devnet_rpc_url, timeout_s=timeout),
                usdc_address(Chain.SOLANA, testnet=True),
            )
        )
        base_sources.append(
            EvmUsdcSource(
                EvmRpcClient(settings.base_sepolia_rpc_url, timeout_s=timeout),
                usdc_address(Chain.BASE, testnet=True),
            )
        )

    return {Chain.SOLANA: solana_sources, Chain.BASE: base_sources}


def _dedupe(urls: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for url in urls:
        if url and url not in seen:
            seen.append(url)
    return seen
