"""
Tests for the deposit pipeline and its notification ledger.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from perpmate.core.chains import Chain
from perpmate.core.models import DepositEvent, DepositSource
from perpmate.core.pipeline import DepositPipeline, NotificationLedger

from conftest import SOL_WALLET

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _event(amount="50", at=T0, source=DepositSource.POLL, address=SOL_WALLET):
    return DepositEvent(address=address, chain=Chain.SOLANA, amount=Decimal(amount), detected_at=at, source=source)


class TestNotificationLedger:
    def test_same_key_claimed_once(self):
        ledger = NotificationLedger(window_seconds=120)

        assert ledger.claim(_event()) is True
        assert ledger.claim(_event(source=DepositSource.WEBHOOK)) is False

    def test_different_amount_is_distinct(self):
        ledger = NotificationLedger(window_seconds=120)

        assert ledger.claim(_event("50")) is True
        assert ledger.claim(_event("50.5")) is True

    def test_amount_precision_normalized(self):
        ledger = NotificationLedger(window_seconds=120)

        assert ledger.claim(_event("50")) is True
        assert ledger.claim(_event("50.000000")) is False

    def test_adjacent_bucket_is_duplicate(self):
        ledger = NotificationLedger(window_seconds=120)

        assert ledger.claim(_event(at=T0)) is True
        assert ledger.claim(_event(at=T0 + timedelta(seconds=130))) is False

    def test_earlier_stamped_webhook_after_poll_is_duplicate(self):
        ledger = NotificationLedger(window_seconds=120)
        poll_at = T0 + timedelta(seconds=4)
        webhook_at = T0 - timedelta(seconds=3)

        assert ledger.claim(_event(at=poll_at)) is True
        assert ledger.claim(_event(at=webhook_at, source=DepositSource.WEBHOOK)) is False

    def test_distant_bucket_is_new_deposit(self):
        ledger = NotificationLedger(window_seconds=120)

        assert ledger.claim(_event(at=T0)) is True
        assert ledger.claim(_event(at=T0 + timedelta(minutes=10))) is True

    def test_old_keys_pruned(self):
        ledger = NotificationLedger(window_seconds=60, retain_windows=2)

        ledger.claim(_event(at=T0))
        ledger.claim(_event("1", at=T0 + timedelta(minutes=10)))

        assert len(ledger) == 1


class TestDepositPipeline:
    @pytest.mark.asyncio
    async def test_duplicate_dropped(self):
        handled = []

        async def _handler(event):
            handled.append(event)

        pipeline = DepositPipeline(_handler, window_seconds=120)
        await pipeline.submit(_event(source=DepositSource.WEBHOOK))
        await pipeline.submit(_event(source=DepositSource.POLL))
        await pipeline.drain()

        assert len(handled) == 1
        assert handled[0].source is DepositSource.WEBHOOK

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_pipeline(self):
        handled = []

        async def _handler(event):
            if event.amount == Decimal("1"):
                raise RuntimeError("notifier down")
            handled.append(event)

        pipeline = DepositPipeline(_handler, window_seconds=120)
        await pipeline.submit(_event("1"))
        await pipeline.submit(_event("2"))
        await pipeline.drain()

        assert [e.amount for e in handled] == [Decimal("2")]

    @pytest.mark.asyncio
    async def test_consumer_task_processes_queue(self):
        handled = []

        async def _handler(event):
            handled.append(event)

        pipeline = DepositPipeline(_handler, window_seconds=120)
        pipeline.start()
        assert pipeline.is_running

        await pipeline.submit(_event())
        await pipeline._queue.join()
        await pipeline.drain()
        await pipeline.stop()

        assert len(handled) == 1
        assert not pipeline.is_running


class TestWebhookAndPollRace:
    @pytest.mark.asyncio
    async def test_deposit_seen_by_both_paths_bridged_once(self, service, solana_source, bridge, notifier):
        solana_source.set(SOL_WALLET, "0")
        await service.get_deposit_info("user-1", "solana")

        # Webhook lands first, then the poll round sees the same balance change
        solana_source.set(SOL_WALLET, "50")
        webhook_event = DepositEvent(
            address=SOL_WALLET,
            chain=Chain.SOLANA,
            amount=Decimal("50"),
            tx_hash="5sig",
            source=DepositSource.WEBHOOK,
        )
        assert await service.ingest_deposits([webhook_event]) == 1
        await service.monitor.run_once()
        await service.pipeline.drain()

        deposit_notices = [text for text in notifier.texts("user-1") if "Deposit detected" in text]
        assert len(deposit_notices) == 1
        assert len(bridge.quote_calls) == 1
        assert len(bridge.executed) == 1
