"""
Deposit Monitor

Tracks a balance baseline per monitored wallet and turns balance increases into
DepositEvents. Two producers feed the deposit pipeline:

- the poll loop, which ticks every registered wallet on a fixed period
- webhook ingestion, which already carries the deposit amount and skips the baseline

A wallet with no baseline is Idle; the first successful read arms it. While
armed, each tick compares the fresh balance against the baseline, emits the
positive delta, then advances the baseline. Compare and advance run under a
per-wallet lock so overlapping ticks cannot report the same increase twice.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Dict, List, Optional, Tuple

from ..logging_config import bind_owner, bind_wallet
from .chains import Chain
from .models import (
    BalanceSnapshot,
    DepositEvent,
    DepositSource,
    MonitoredWallet,
    utcnow,
    wallet_key,
)
from .oracle import BalanceOracle
from .pipeline import DepositPipeline
from .registry import MonitoredWalletRegistry


class DepositMonitor:
    def __init__(
        self,
        oracle: BalanceOracle,
        registry: MonitoredWalletRegistry,
        pipeline: DepositPipeline,
        *,
        max_concurrency: int = 4,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._oracle = oracle
        self._registry = registry
        self._pipeline = pipeline
        self._max_concurrency = max(1, max_concurrency)
        self._snapshots: Dict[Tuple[Chain, str], BalanceSnapshot] = {}
        self._locks: Dict[Tuple[Chain, str], asyncio.Lock] = {}
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False
        self._rounds = 0
        self.logger = logger or logging.getLogger(__name__)

    # ---------------------------
    # Baselines
    # ---------------------------
    def snapshot(self, address: str, chain: Chain) -> Optional[BalanceSnapshot]:
        return self._snapshots.get(wallet_key(address, chain))

    def is_armed(self, address: str, chain: Chain) -> bool:
        return wallet_key(address, chain) in self._snapshots

    def _lock_for(self, key: Tuple[Chain, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def arm(self, address: str, chain: Chain, owner_id: str) -> Optional[BalanceSnapshot]:
        """Register the wallet and record its current balance as the baseline.

        Arming an already armed wallet keeps the existing baseline, otherwise a
        deposit that landed since the last tick would be absorbed into it.
        """

        wallet = self._registry.register(address, chain, owner_id)
        key = wallet.key
        async with self._lock_for(key):
            existing = self._snapshots.get(key)
            if existing is not None:
                return existing

            reading = await self._oracle.read_balance(wallet.address, chain)
            if not reading.ok:
                self.logger.warning(
                    "Could not read baseline for %s on %s; will arm on the next successful tick",
                    wallet.address,
                    chain.value,
                )
                return None

            snapshot = BalanceSnapshot(address=wallet.address, chain=chain, last_known_amount=reading.amount)
            self._snapshots[key] = snapshot
            self.logger.info("Armed %s on %s at %s USDC", wallet.address, chain.value, reading.amount)
            return snapshot

    async def tick(self, address: str, chain: Chain) -> Optional[DepositEvent]:
        key = wallet_key(address, chain)
        async with self._lock_for(key):
            reading = await self._oracle.read_balance(address, chain)
            if not reading.ok:
                # No evidence either way; keep the baseline and retry next round
                return None

            current = reading.amount
            snapshot = self._snapshots.get(key)
            if snapshot is None:
                self._snapshots[key] = BalanceSnapshot(address=address, chain=chain, last_known_amount=current)
                self.logger.info("Armed %s on %s at %s USDC", address, chain.value, current)
                return None

            previous = snapshot.last_known_amount
            event: Optional[DepositEvent] = None
            if current > previous:
                event = DepositEvent(
                    address=snapshot.address,
                    chain=chain,
                    amount=current - previous,
                    source=DepositSource.POLL,
                )
                self.logger.info(
                    "Deposit of %s USDC detected on %s for %s",
                    event.amount,
                    chain.value,
                    snapshot.address,
                )
            elif current < previous:
                self.logger.info(
                    "Balance of %s on %s fell from %s to %s; rebasing",
                    snapshot.address,
                    chain.value,
                    previous,
                    current,
                )

            snapshot.last_known_amount = current
            snapshot.updated_at = utcnow()
            return event

    # ---------------------------
    # Poll loop
    # ---------------------------
    async def run_once(self) -> List[DepositEvent]:
        """Tick every registered wallet once and submit the resulting events."""

        wallets = self._registry.iterate()
        if not wallets:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _guarded(wallet: MonitoredWallet) -> Optional[DepositEvent]:
            async with semaphore:
                return await self._check_wallet(wallet)

        results = await asyncio.gather(*(_guarded(wallet) for wallet in wallets))
        self._rounds += 1
        return [event for event in results if event is not None]

    async def _check_wallet(self, wallet: MonitoredWallet) -> Optional[DepositEvent]:
        bind_owner(wallet.owner_id)
        bind_wallet(wallet.address, wallet.chain.value)
        try:
            event = await self.tick(wallet.address, wallet.chain)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(
                "Deposit check failed for %s on %s: %s",
                wallet.address,
                wallet.chain.value,
                exc,
                exc_info=True,
            )
            return None
        if event is not None:
            await self._pipeline.submit(event)
        return event

    async def run_loop(self, interval_seconds: float) -> None:
        self.logger.info(
            "Deposit monitor polling every %ss (%d wallets)",
            interval_seconds,
            len(self._registry),
        )
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self.logger.error("Deposit poll round failed: %s", exc, exc_info=True)
            await asyncio.sleep(interval_seconds)

    def start(self, interval_seconds: float) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self.run_loop(interval_seconds), name="deposit-monitor-loop")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        self.logger.info("Deposit monitor stopped after %d rounds", self._rounds)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def rounds(self) -> int:
        return self._rounds

    # ---------------------------
    # Webhook ingestion
    # ---------------------------
    async def ingest_webhook(self, event: DepositEvent) -> bool:
        """Submit a provider-pushed deposit. The baseline is not consulted."""

        wallet = self._registry.lookup(event.address, event.chain)
        if wallet is None:
            self.logger.info(
                "Ignoring webhook deposit for unmonitored address %s on %s",
                event.address,
                event.chain.value,
            )
            return False

        if event.source is not DepositSource.WEBHOOK or event.address != wallet.address:
            event = dataclasses.replace(event, address=wallet.address, source=DepositSource.WEBHOOK)
        await self._pipeline.submit(event)
        return True

