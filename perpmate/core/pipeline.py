"""
Deposit Pipeline

Both deposit producers (the poll loop and webhook ingestion) put DepositEvents
on one queue. A single consumer claims each event's notification key before
handing it to the notify + bridge handler, so a deposit observed by both paths
is delivered once and the second arrival is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional, Set, Tuple

from .models import DepositEvent

DepositHandler = Callable[[DepositEvent], Awaitable[None]]


class NotificationLedger:
    """
    Set of notification keys already delivered.

    An event is a duplicate when its (chain, address, amount) was claimed in the
    same time bucket or either neighbouring one. Poll events carry the tick time
    and webhook events the earlier transaction time, so either may arrive first. Guarded by a lock so webhook handlers
    running in worker threads can share it with the event loop.
    """

    def __init__(self, window_seconds: int, *, retain_windows: int = 5) -> None:
        self.window_seconds = window_seconds
        self.retain_windows = max(retain_windows, 2)
        self._claimed: Set[Tuple[str, str, str, int]] = set()
        self._newest_bucket = 0
        self._lock = threading.Lock()

    def claim(self, event: DepositEvent) -> bool:
        """Record the event's key. Returns False if it was already delivered."""

        chain, address, amount, bucket = event.notification_key(self.window_seconds)
        with self._lock:
            if any((chain, address, amount, bucket + offset) in self._claimed for offset in (-1, 0, 1)):
                return False
            self._claimed.add((chain, address, amount, bucket))
            if bucket > self._newest_bucket:
                self._newest_bucket = bucket
                self._prune_locked()
            return True

    def __len__(self) -> int:
        return len(self._claimed)

    def _prune_locked(self) -> None:
        cutoff = self._newest_bucket - self.retain_windows
        self._claimed = {key for key in self._claimed if key[3] >= cutoff}


class DepositPipeline:
    def __init__(
        self,
        handler: DepositHandler,
        *,
        window_seconds: int,
        max_concurrency: int = 4,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._handler = handler
        self.ledger = NotificationLedger(window_seconds)
        self._queue: asyncio.Queue[DepositEvent] = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._inflight: set[asyncio.Task] = set()
        self._consumer: Optional[asyncio.Task] = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def submit(self, event: DepositEvent) -> None:
        await self._queue.put(event)

    def start(self) -> None:
        if self.is_running:
            return
        self._consumer = asyncio.create_task(self._run(), name="deposit-pipeline")

    async def stop(self) -> None:
        if self._consumer:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self._inflight.clear()

    async def drain(self) -> None:
        """Process everything queued so far and wait for the handlers to finish."""

        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                self._dispatch(event)
            finally:
                self._queue.task_done()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._dispatch(event)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: DepositEvent) -> None:
        # Claiming happens here, on the single consumer, before any await
        if not self.ledger.claim(event):
            self._logger.debug(
                "Dropping duplicate deposit %s %s on %s (%s)",
                event.amount,
                event.address,
                event.chain.value,
                event.source.value,
            )
            return
        task = asyncio.create_task(self._handle(event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _handle(self, event: DepositEvent) -> None:
        async with self._semaphore:
            try:
                await self._handler(event)
            except Exception as exc:  # noqa: BLE001
                self._logger.error(
                    "Deposit handler failed for %s on %s: %s",
                    event.address,
                    event.chain.value,
                    exc,
                    exc_info=True,
                )
