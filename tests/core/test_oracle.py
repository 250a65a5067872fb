"""
Tests for the balance oracle.
"""

import asyncio
from decimal import Decimal

import pytest

from perpmate.config import Settings
from perpmate.core.chains import Chain
from perpmate.core.oracle import BalanceOracle, build_balance_sources

from conftest import FakeBalanceSource

ADDRESS = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


class SlowSource(FakeBalanceSource):
    async def fetch(self, address):
        await asyncio.sleep(5)
        return Decimal("999")


class TestBalanceOracle:
    @pytest.mark.asyncio
    async def test_keeps_largest_candidate(self):
        lagging = FakeBalanceSource("lagging", {ADDRESS: Decimal("0")})
        fresh = FakeBalanceSource("fresh", {ADDRESS: Decimal("50")})
        oracle = BalanceOracle({Chain.SOLANA: [lagging, fresh]})

        reading = await oracle.read_balance(ADDRESS, Chain.SOLANA)

        assert reading.ok
        assert reading.amount == Decimal("50")
        assert reading.successes == 2

    @pytest.mark.asyncio
    async def test_partial_failure_still_ok(self):
        broken = FakeBalanceSource("broken")
        broken.error = RuntimeError("rpc down")
        healthy = FakeBalanceSource("healthy", {ADDRESS: Decimal("12.5")})
        oracle = BalanceOracle({Chain.SOLANA: [broken, healthy]})

        reading = await oracle.read_balance(ADDRESS, Chain.SOLANA)

        assert reading.ok
        assert reading.amount == Decimal("12.5")
        assert reading.failures == 1

    @pytest.mark.asyncio
    async def test_all_failed_reads_zero_not_ok(self):
        broken = FakeBalanceSource("broken")
        broken.error = RuntimeError("rpc down")
        oracle = BalanceOracle({Chain.SOLANA: [broken]})

        reading = await oracle.read_balance(ADDRESS, Chain.SOLANA)

        assert not reading.ok
        assert reading.amount == Decimal(0)
        assert await oracle.get_balance(ADDRESS, Chain.SOLANA) == Decimal(0)

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        slow = SlowSource("slow")
        healthy = FakeBalanceSource("healthy", {ADDRESS: Decimal("3")})
        oracle = BalanceOracle({Chain.SOLANA: [slow, healthy]}, timeout_s=0.05)

        reading = await oracle.read_balance(ADDRESS, Chain.SOLANA)

        assert reading.amount == Decimal("3")
        assert reading.failures == 1

    @pytest.mark.asyncio
    async def test_token_account_fallback_when_all_zero(self):
        source = FakeBalanceSource("rpc", {ADDRESS: Decimal("0")})
        source.token_account_balances[ADDRESS] = Decimal("8")
        oracle = BalanceOracle({Chain.SOLANA: [source]})

        reading = await oracle.read_balance(ADDRESS, Chain.SOLANA)

        assert reading.ok
        assert reading.amount == Decimal("8")

    @pytest.mark.asyncio
    async def test_negative_amount_ignored(self):
        weird = FakeBalanceSource("weird", {ADDRESS: Decimal("-1")})
        oracle = BalanceOracle({Chain.SOLANA: [weird]})

        reading = await oracle.read_balance(ADDRESS, Chain.SOLANA)

        assert not reading.ok

    @pytest.mark.asyncio
    async def test_unconfigured_chain(self):
        oracle = BalanceOracle({})

        reading = await oracle.read_balance(ADDRESS, Chain.BASE)

        assert not reading.ok
        assert reading.amount == Decimal(0)


class TestBuildBalanceSources:
    def test_dedupes_and_orders_endpoints(self):
        settings = Settings(
            _env_file=None,
            solana_rpc_url="https://sol-a",
            solana_fallback_rpc_urls=["https://sol-b", "https://sol-a"],
            base_rpc_url="https://base-a",
        )

        sources = build_balance_sources(settings)

        assert [s.client.rpc_url for s in sources[Chain.SOLANA]] == ["https://sol-a", "https://sol-b"]
        assert [s.client.rpc_url for s in sources[Chain.BASE]] == ["https://base-a"]

    def test_testnet_token_candidates(self):
        settings = Settings(_env_file=None, include_testnet_token_candidates=True)

        sources = build_balance_sources(settings)

        assert sources[Chain.SOLANA][-1].mint == "Gh9ZwEmdLJ8DscKNTkTqPbNwLNNBjuSzaG9Vp2KGtKJr"
        assert sources[Chain.BASE][-1].client.rpc_url == settings.base_sepolia_rpc_url
