"""Privy server-wallet custody over its REST API."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import httpx

from ..config import settings
from ..core.chains import Chain, ChainFamily, get_spec, usdc_address
from ..core.errors import CustodySigningFailure, ProviderResponseError
from ..core.models import TransactionRequest, WalletRef, to_base_units
from .base import CustodyProvider
from .evm import encode_transfer

logger = logging.getLogger(__name__)

SOLANA_MAINNET_CAIP2 = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"

_CHAIN_TYPES = {
    ChainFamily.EVM: "ethereum",
    ChainFamily.SOLANA: "solana",
}


def caip2(chain: Chain) -> str:
    spec = get_spec(chain)
    if spec.family is ChainFamily.SOLANA:
        return SOLANA_MAINNET_CAIP2
    return f"eip155:{spec.lifi_chain_id}"


class PrivyCustody(CustodyProvider):
    """One Privy server wallet per (owner, chain family).

    EVM chains share a single wallet, so an owner's Base and Arbitrum
    addresses are the same.
    """

    name = "privy"

    def __init__(
        self,
        *,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.app_id = app_id if app_id is not None else settings.privy_app_id
        self.app_secret = app_secret if app_secret is not None else settings.privy_app_secret
        self.base_url = (base_url or settings.privy_base_url).rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport
        self._wallets: Dict[Tuple[str, ChainFamily], WalletRef] = {}
        self._lock = asyncio.Lock()

    async def ready(self) -> bool:
        return bool(self.app_id and self.app_secret)

    async def _post(self, path: str, payload: Dict[str, Any], *, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        if not await self.ready():
            raise CustodySigningFailure(
                "Privy credentials are not configured",
                user_message="Wallet signing is not available right now.",
            )
        merged_headers = {"privy-app-id": self.app_id, "content-type": "application/json", **(headers or {})}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                auth=httpx.BasicAuth(self.app_id, self.app_secret),
                transport=self._transport,
            ) as client:
                response = await client.post(path, json=payload, headers=merged_headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise CustodySigningFailure(
                f"Privy {path} failed with HTTP {exc.response.status_code}: {exc.response.text[:200]}",
                user_message="The wallet provider rejected the request.",
            )
        except httpx.RequestError as exc:
            raise CustodySigningFailure(
                f"Privy unreachable: {exc}",
                user_message="The wallet provider is unreachable.",
            )
        if not isinstance(data, dict):
            raise ProviderResponseError("Privy response was not an object", provider=self.name)
        return data

    async def get_wallet(self, owner_id: str, chain: Chain) -> WalletRef:
        spec = get_spec(chain)
        key = (owner_id, spec.family)
        async with self._lock:
            cached = self._wallets.get(key)
            if cached is None:
                data = await self._post(
                    "/wallets",
                    {"chain_type": _CHAIN_TYPES[spec.family]},
                    headers={"privy-idempotency-key": f"{owner_id}-{spec.family.value}"},
                )
                address = data.get("address")
                wallet_id = data.get("id")
                if not address or not wallet_id:
                    raise ProviderResponseError("Privy wallet response is missing id or address", provider=self.name)
                cached = WalletRef(owner_id=owner_id, chain=chain, address=address, provider_wallet_id=wallet_id)
                self._wallets[key] = cached
                logger.info("Created Privy %s wallet %s for %s", spec.family.value, address, owner_id)

        if cached.chain is not chain:
            return WalletRef(
                owner_id=owner_id,
                chain=chain,
                address=cached.address,
                provider_wallet_id=cached.provider_wallet_id,
            )
        return cached

    async def create_or_get_address(self, owner_id: str, chain: Chain) -> str:
        wallet = await self.get_wallet(owner_id, chain)
        return wallet.address

    async def sign_and_send(self, wallet: WalletRef, chain: Chain, to_address: str, amount: Decimal) -> str:
        spec = get_spec(chain)
        if spec.family is ChainFamily.SOLANA:
            # SPL transfers need a recent blockhash and ATA handling we do not build here
            raise CustodySigningFailure(
                "Direct Solana USDC transfers are not supported by this custody integration",
                user_message="Direct Solana transfers are not available yet.",
            )

        transaction = TransactionRequest(
            chain=chain,
            to=usdc_address(chain),
            data=encode_transfer(to_address, to_base_units(amount)),
        )
        return await self.send_transaction(wallet, transaction)

    async def send_transaction(self, wallet: WalletRef, transaction: TransactionRequest) -> str:
        if not wallet.provider_wallet_id:
            raise CustodySigningFailure(f"Wallet {wallet.address} has no Privy wallet id")

        spec = get_spec(transaction.chain)
        if spec.family is ChainFamily.SOLANA:
            payload: Dict[str, Any] = {
                "method": "signAndSendTransaction",
                "caip2": caip2(transaction.chain),
                "params": {"transaction": transaction.data, "encoding": "base64"},
            }
        else:
            tx: Dict[str, Any] = {"to": transaction.to, "data": transaction.data, "value": hex(transaction.value)}
            if transaction.gas_limit:
                tx["gas_limit"] = hex(transaction.gas_limit)
            payload = {
                "method": "eth_sendTransaction",
                "caip2": caip2(transaction.chain),
                "params": {"transaction": tx},
            }

        data = await self._post(f"/wallets/{wallet.provider_wallet_id}/rpc", payload)
        tx_hash = (data.get("data") or {}).get("hash")
        if not tx_hash:
            raise CustodySigningFailure(f"Privy did not return a transaction hash for {wallet.address}")
        logger.info("Privy broadcast %s on %s: %s", payload["method"], transaction.chain.value, tx_hash)
        return tx_hash
