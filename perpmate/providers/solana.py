"""Solana JSON-RPC USDC balance reads."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import ProviderResponseError
from .base import BalanceSource


class SolanaRpcClient:
    """Minimal JSON-RPC client for the handful of token-account queries we need."""

    name = "solana-rpc"

    def __init__(self, rpc_url: str, *, timeout_s: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.rpc_url = rpc_url
        self.timeout_s = timeout_s
        self._transport = transport

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            response = await client.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict):
            raise ProviderResponseError("Unexpected Solana RPC response", provider=self.name)
        if data.get("error"):
            raise ProviderResponseError(f"Solana RPC error: {data['error']}", provider=self.name)
        return data.get("result")

    async def get_token_balance_by_owner(self, owner: str, mint: str) -> Decimal:
        """Sum the balances of every ``mint`` token account owned by ``owner``."""

        result = await self._rpc_call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed"}],
        )
        accounts = (result or {}).get("value") or []
        total = Decimal(0)
        for account in accounts:
            token_amount = (
                ((((account or {}).get("account") or {}).get("data") or {}).get("parsed") or {})
                .get("info", {})
                .get("tokenAmount")
            )
            total += _parse_token_amount(token_amount)
        return total

    async def get_token_account_balance(self, account: str) -> Decimal:
        result = await self._rpc_call("getTokenAccountBalance", [account])
        return _parse_token_amount((result or {}).get("value"))


def _parse_token_amount(token_amount: Optional[Dict[str, Any]]) -> Decimal:
    if not token_amount:
        return Decimal(0)
    # uiAmountString is exact; uiAmount is a float and may be null for large balances
    raw = token_amount.get("uiAmountString")
    if raw is None:
        amount = token_amount.get("amount")
        decimals = token_amount.get("decimals")
        if amount is not None and decimals is not None:
            try:
                return Decimal(str(amount)).scaleb(-int(decimals))
            except (InvalidOperation, TypeError, ValueError):
                raise ProviderResponseError(f"Unparsable token amount: {token_amount!r}", provider="solana-rpc")
        raw = token_amount.get("uiAmount")
    if raw is None:
        return Decimal(0)
    try:
        return Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        raise ProviderResponseError(f"Unparsable token amount: {token_amount!r}", provider="solana-rpc")


class SolanaUsdcSource(BalanceSource):
    """USDC balance of a Solana owner via one RPC endpoint and one mint."""

    def __init__(self, client: SolanaRpcClient, mint: str) -> None:
        self.client = client
        self.mint = mint
        self.label = f"{client.rpc_url}#{mint[:6]}"

    async def fetch(self, address: str) -> Decimal:
        return await self.client.get_token_balance_by_owner(address, self.mint)

    async def fetch_as_token_account(self, address: str) -> Optional[Decimal]:
        # Some deposit flows hand out the associated token account rather than the owner
        return await self.client.get_token_account_balance(address)
