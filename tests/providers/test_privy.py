"""
Tests for Privy custody.
"""

import json
from decimal import Decimal

import httpx
import pytest

from perpmate.core.chains import Chain, usdc_address
from perpmate.core.errors import CustodySigningFailure
from perpmate.core.models import TransactionRequest
from perpmate.providers.privy import PrivyCustody, caip2

EVM_ADDRESS = "0x742d35Cc6636C0532925a3b8D6C90532e4A5cf4a"
SOL_ADDRESS = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
RECIPIENT = "0x1111111111111111111111111111111111111111"


class FakePrivyApi:
    def __init__(self):
        self.requests = []
        self.rpc_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request, body))
        if request.url.path == "/v1/wallets":
            if body["chain_type"] == "solana":
                return httpx.Response(200, json={"id": "wal_sol", "address": SOL_ADDRESS, "chain_type": "solana"})
            return httpx.Response(200, json={"id": "wal_evm", "address": EVM_ADDRESS, "chain_type": "ethereum"})
        if request.url.path.endswith("/rpc"):
            if self.rpc_status != 200:
                return httpx.Response(self.rpc_status, json={"error": "denied"})
            return httpx.Response(200, json={"method": body["method"], "data": {"hash": "0xsent"}})
        return httpx.Response(404)


@pytest.fixture
def api():
    return FakePrivyApi()


@pytest.fixture
def custody(api):
    return PrivyCustody(
        app_id="app-123",
        app_secret="secret",
        base_url="https://privy.test/v1",
        transport=httpx.MockTransport(api),
    )


class TestWallets:
    @pytest.mark.asyncio
    async def test_creates_wallet_with_idempotency_key(self, custody, api):
        address = await custody.create_or_get_address("user-1", Chain.BASE)

        assert address == EVM_ADDRESS
        request, body = api.requests[0]
        assert body == {"chain_type": "ethereum"}
        assert request.headers["privy-app-id"] == "app-123"
        assert request.headers["privy-idempotency-key"] == "user-1-evm"
        assert request.headers["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_evm_chains_share_one_wallet(self, custody, api):
        base = await custody.get_wallet("user-1", Chain.BASE)
        arbitrum = await custody.get_wallet("user-1", Chain.ARBITRUM)

        assert base.address == arbitrum.address
        assert arbitrum.chain is Chain.ARBITRUM
        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_solana_wallet(self, custody, api):
        wallet = await custody.get_wallet("user-1", Chain.SOLANA)

        assert wallet.address == SOL_ADDRESS
        assert wallet.provider_wallet_id == "wal_sol"
        assert api.requests[0][0].headers["privy-idempotency-key"] == "user-1-solana"

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        custody = PrivyCustody(app_id="", app_secret="", base_url="https://privy.test/v1")

        assert not await custody.ready()
        with pytest.raises(CustodySigningFailure):
            await custody.create_or_get_address("user-1", Chain.BASE)


class TestSigning:
    @pytest.mark.asyncio
    async def test_usdc_transfer_on_base(self, custody, api):
        wallet = await custody.get_wallet("user-1", Chain.BASE)

        tx_hash = await custody.sign_and_send(wallet, Chain.BASE, RECIPIENT, Decimal("12.345678"))

        assert tx_hash == "0xsent"
        request, body = api.requests[-1]
        assert request.url.path == "/v1/wallets/wal_evm/rpc"
        assert body["method"] == "eth_sendTransaction"
        assert body["caip2"] == "eip155:8453"
        transaction = body["params"]["transaction"]
        assert transaction["to"] == usdc_address(Chain.BASE)
        assert transaction["data"].startswith("0xa9059cbb")
        assert int(transaction["data"][-64:], 16) == 12_345_678

    @pytest.mark.asyncio
    async def test_solana_transaction(self, custody, api):
        wallet = await custody.get_wallet("user-1", Chain.SOLANA)

        await custody.send_transaction(wallet, TransactionRequest(chain=Chain.SOLANA, to=None, data="AQID"))

        body = api.requests[-1][1]
        assert body["method"] == "signAndSendTransaction"
        assert body["caip2"] == caip2(Chain.SOLANA)
        assert body["params"] == {"transaction": "AQID", "encoding": "base64"}

    @pytest.mark.asyncio
    async def test_direct_solana_transfer_unsupported(self, custody):
        wallet = await custody.get_wallet("user-1", Chain.SOLANA)

        with pytest.raises(CustodySigningFailure):
            await custody.sign_and_send(wallet, Chain.SOLANA, SOL_ADDRESS, Decimal("1"))

    @pytest.mark.asyncio
    async def test_rejected_rpc(self, custody, api):
        wallet = await custody.get_wallet("user-1", Chain.BASE)
        api.rpc_status = 401

        with pytest.raises(CustodySigningFailure):
            await custody.sign_and_send(wallet, Chain.BASE, RECIPIENT, Decimal("1"))


def test_caip2():
    assert caip2(Chain.BASE) == "eip155:8453"
    assert caip2(Chain.ARBITRUM) == "eip155:42161"
    assert caip2(Chain.SOLANA).startswith("solana:")
