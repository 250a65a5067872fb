"""ERC-20 balance reads over plain EVM JSON-RPC."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

import httpx

from ..core.chains import USDC_DECIMALS
from ..core.errors import ProviderResponseError
from .base import BalanceSource

BALANCE_OF_SELECTOR = "0x70a08231"
TRANSFER_SELECTOR = "0xa9059cbb"
APPROVE_SELECTOR = "0x095ea7b3"


def _pad_address(address: str) -> str:
    return address.lower().removeprefix("0x").rjust(64, "0")


def encode_balance_of(address: str) -> str:
    return BALANCE_OF_SELECTOR + _pad_address(address)


def encode_transfer(to_address: str, amount_units: int) -> str:
    return TRANSFER_SELECTOR + _pad_address(to_address) + format(amount_units, "x").rjust(64, "0")


def encode_approve(spender: str, amount_units: int) -> str:
    return APPROVE_SELECTOR + _pad_address(spender) + format(amount_units, "x").rjust(64, "0")


class EvmRpcClient:
    name = "evm-rpc"

    def __init__(self, rpc_url: str, *, timeout_s: float = 20.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.rpc_url = rpc_url
        self.timeout_s = timeout_s
        self._transport = transport

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": 1,
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
            raise ProviderResponseError("Unexpected EVM RPC response", provider=self.name)
        if data.get("error"):
            raise ProviderResponseError(f"EVM RPC error: {data['error']}", provider=self.name)
        return data.get("result")

    async def get_erc20_balance(self, owner: str, contract: str, decimals: int = USDC_DECIMALS) -> Decimal:
        result = await self._rpc_call(
            "eth_call",
            [{"to": contract, "data": encode_balance_of(owner)}, "latest"],
        )
        if result in (None, "0x", ""):
            return Decimal(0)
        try:
            units = int(result, 16)
        except (TypeError, ValueError):
            raise ProviderResponseError(f"Unparsable balanceOf result: {result!r}", provider=self.name)
        return Decimal(units).scaleb(-decimals)


class EvmUsdcSource(BalanceSource):
    def __init__(self, client: EvmRpcClient, contract: str) -> None:
        self.client = client
        self.contract = contract
        self.label = f"{client.rpc_url}#{contract[:8]}"

    async def fetch(self, address: str) -> Decimal:
        return await self.client.get_erc20_balance(address, self.contract)
