"""Async client for the Li.Fi quote and status API."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.chains import Chain, get_spec, is_evm_chain, usdc_address
from ..core.errors import CustodySigningFailure, ProviderResponseError
from ..core.models import BridgeQuote, ExecutionResult, TransactionRequest, WalletRef, to_base_units
from .base import BridgeProvider, CustodyProvider
from .evm import encode_approve

logger = logging.getLogger(__name__)

TERMINAL_SUCCESS = {"DONE"}
TERMINAL_FAILURE = {"FAILED", "INVALID"}


class LifiProvider(BridgeProvider):
    """Thin wrapper around https://li.quest/v1 endpoints.

    Quotes carry a ready-to-sign transaction; execution hands it to the custody
    provider and then polls ``/status`` until the bridge settles.
    """

    name = "lifi"

    def __init__(
        self,
        custody: CustodyProvider,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 20,
        status_poll_seconds: Optional[float] = None,
        confirmation_timeout_s: Optional[float] = None,
        testnet: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._custody = custody
        self.api_key = api_key if api_key is not None else settings.lifi_api_key
        self.base_url = (base_url or settings.lifi_base_url).rstrip("/")
        self.timeout_s = timeout_s
        self.status_poll_seconds = status_poll_seconds or settings.bridge_status_poll_seconds
        self.confirmation_timeout_s = confirmation_timeout_s or settings.bridge_confirmation_timeout_seconds
        self.testnet = testnet
        self._transport = transport

    async def ready(self) -> bool:
        # Li.Fi serves unauthenticated requests at a lower rate limit
        return bool(self.base_url)

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "configured" if await self.ready() else "unavailable",
            "authenticated": bool(self.api_key),
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-lifi-api-key"] = self.api_key
        return headers

    async def _request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, params=params, headers=self._headers())
            response.raise_for_status()
            return response

    async def quote(
        self,
        source_chain: Chain,
        destination_chain: Chain,
        amount: Decimal,
        from_address: str,
        to_address: str,
    ) -> Optional[BridgeQuote]:
        source = get_spec(source_chain)
        destination = get_spec(destination_chain)
        params = {
            "fromChain": source.lifi_chain_id,
            "toChain": destination.lifi_chain_id,
            "fromToken": usdc_address(source_chain, testnet=self.testnet),
            "toToken": usdc_address(destination_chain, testnet=self.testnet),
            "fromAmount": str(to_base_units(amount)),
            "fromAddress": from_address,
            "toAddress": to_address,
        }

        try:
            response = await self._request("GET", "/quote", params=params)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (400, 404):
                # Li.Fi answers "no available quotes" with a 404 and a JSON body
                logger.info(
                    "Li.Fi has no route %s -> %s for %s USDC: %s",
                    source_chain.value,
                    destination_chain.value,
                    amount,
                    _error_message(exc.response),
                )
                return None
            raise ProviderResponseError(f"Li.Fi quote failed with HTTP {status}", provider=self.name)
        except httpx.RequestError as exc:
            raise ProviderResponseError(f"Li.Fi unreachable: {exc}", provider=self.name)

        try:
            payload = response.json()
        except ValueError:
            raise ProviderResponseError("Li.Fi quote was not JSON", provider=self.name)

        return parse_quote(
            payload,
            source_chain=source_chain,
            destination_chain=destination_chain,
            amount=amount,
            from_address=from_address,
            to_address=to_address,
        )

    async def execute(self, quote: BridgeQuote, wallet: WalletRef) -> ExecutionResult:
        if quote.transaction is None:
            return ExecutionResult(success=False, error="Quote has no transaction to sign")

        try:
            if quote.approval_address and is_evm_chain(quote.source_chain):
                approval = TransactionRequest(
                    chain=quote.source_chain,
                    to=usdc_address(quote.source_chain, testnet=self.testnet),
                    data=encode_approve(quote.approval_address, to_base_units(quote.amount)),
                )
                approval_hash = await self._custody.send_transaction(wallet, approval)
                logger.info("Approved %s for %s USDC: %s", quote.approval_address, quote.amount, approval_hash)
            tx_hash = await self._custody.send_transaction(wallet, quote.transaction)
        except CustodySigningFailure as exc:
            return ExecutionResult(success=False, error=exc.message)

        logger.info("Submitted Li.Fi route %s: %s", quote.provider_route_id, tx_hash)
        return await self.wait_for_completion(tx_hash, quote)

    async def get_status(self, tx_hash: str, source_chain: Chain, destination_chain: Chain) -> Dict[str, Any]:
        params = {
            "txHash": tx_hash,
            "fromChain": get_spec(source_chain).lifi_chain_id,
            "toChain": get_spec(destination_chain).lifi_chain_id,
        }
        response = await self._request("GET", "/status", params=params)
        data = response.json()
        if not isinstance(data, dict):
            raise ProviderResponseError("Li.Fi status was not an object", provider=self.name)
        return data

    async def wait_for_completion(self, tx_hash: str, quote: BridgeQuote) -> ExecutionResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout_s

        while True:
            try:
                data = await self.get_status(tx_hash, quote.source_chain, quote.destination_chain)
            except (httpx.HTTPError, ProviderResponseError, ValueError) as exc:
                # NOT_FOUND right after submission surfaces as a 404 on some deployments
                logger.debug("Li.Fi status check for %s failed: %s", tx_hash, exc)
                data = {}

            status = str(data.get("status") or "").upper()
            if status in TERMINAL_SUCCESS:
                receiving = data.get("receiving") or {}
                return ExecutionResult(success=True, tx_hash=receiving.get("txHash") or tx_hash)
            if status in TERMINAL_FAILURE:
                reason = data.get("substatusMessage") or data.get("substatus") or status.lower()
                return ExecutionResult(success=False, tx_hash=tx_hash, error=str(reason))

            if loop.time() >= deadline:
                return ExecutionResult(
                    success=False,
                    tx_hash=tx_hash,
                    error=f"Bridge not confirmed after {int(self.confirmation_timeout_s)}s",
                )
            await asyncio.sleep(self.status_poll_seconds)


def parse_quote(
    payload: Any,
    *,
    source_chain: Chain,
    destination_chain: Chain,
    amount: Decimal,
    from_address: str,
    to_address: str,
) -> BridgeQuote:
    """Validate a Li.Fi ``/quote`` response and convert it to a BridgeQuote."""

    if not isinstance(payload, dict):
        raise ProviderResponseError("Li.Fi quote was not an object", provider="lifi")

    route_id = payload.get("id")
    if not route_id:
        raise ProviderResponseError("Li.Fi quote is missing an id", provider="lifi")

    estimate = payload.get("estimate") or {}
    if not isinstance(estimate, dict):
        raise ProviderResponseError("Li.Fi quote estimate was not an object", provider="lifi")

    try:
        duration = int(float(estimate.get("executionDuration") or 0))
    except (TypeError, ValueError):
        raise ProviderResponseError("Li.Fi executionDuration is not numeric", provider="lifi")

    fee = _sum_usd(estimate.get("feeCosts")) + _sum_usd(estimate.get("gasCosts"))

    to_amount: Optional[Decimal] = None
    raw_to_amount = estimate.get("toAmount")
    if raw_to_amount is not None:
        try:
            to_amount = Decimal(str(raw_to_amount)).scaleb(-_to_decimals(payload))
        except InvalidOperation:
            raise ProviderResponseError("Li.Fi toAmount is not numeric", provider="lifi")

    transaction = _parse_transaction(payload.get("transactionRequest"), source_chain)

    return BridgeQuote(
        source_chain=source_chain,
        destination_chain=destination_chain,
        amount=amount,
        estimated_duration_seconds=duration,
        estimated_fee_usd=fee,
        provider_route_id=str(route_id),
        from_address=from_address,
        to_address=to_address,
        to_amount=to_amount,
        tool=payload.get("tool"),
        transaction=transaction,
        approval_address=estimate.get("approvalAddress"),
    )


def _sum_usd(costs: Any) -> Decimal:
    total = Decimal(0)
    if not isinstance(costs, list):
        return total
    for cost in costs:
        if not isinstance(cost, dict):
            continue
        try:
            total += Decimal(str(cost.get("amountUSD") or "0"))
        except InvalidOperation:
            continue
    return total


def _to_decimals(payload: Dict[str, Any]) -> int:
    token = (payload.get("action") or {}).get("toToken") or {}
    try:
        return int(token.get("decimals", 6))
    except (TypeError, ValueError):
        return 6


def _parse_int(raw: Any) -> int:
    if raw is None or raw == "":
        return 0
    if isinstance(raw, int):
        return raw
    return int(str(raw), 0)


def _parse_transaction(raw: Any, chain: Chain) -> Optional[TransactionRequest]:
    if raw is None:
        return None
    if not isinstance(raw, dict) or not raw.get("data"):
        raise ProviderResponseError("Li.Fi transactionRequest has no data", provider="lifi")
    try:
        value = _parse_int(raw.get("value"))
        gas_limit = _parse_int(raw.get("gasLimit")) or None
    except ValueError:
        raise ProviderResponseError("Li.Fi transactionRequest has malformed numbers", provider="lifi")
    return TransactionRequest(
        chain=chain,
        to=raw.get("to"),
        data=str(raw["data"]),
        value=value,
        gas_limit=gas_limit,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body)
    return str(body)


__all__: List[str] = ["LifiProvider", "parse_quote"]
