"""
Webhook Handlers

Verify and normalize address-activity pushes from Alchemy (Base) and Helius
(Solana) into DepositEvents. Only incoming USDC transfers with a positive
amount survive normalization; everything else in a payload is ignored.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from ..core.chains import Chain, USDC_DECIMALS, usdc_address
from ..core.errors import ProviderResponseError
from ..core.models import DepositEvent, DepositSource, utcnow

logger = logging.getLogger(__name__)


class WebhookHandler(ABC):
    """Base class for webhook handlers."""

    provider: str
    chain: Chain

    @abstractmethod
    def verify_signature(self, payload: bytes, signature: str) -> bool:
        """Verify the request came from the provider."""
        pass

    @abstractmethod
    def parse_deposits(self, payload: Any) -> List[DepositEvent]:
        """Normalize a raw payload into deposit events."""
        pass


class AlchemyWebhookHandler(WebhookHandler):
    """
    Handle Alchemy Address Activity webhooks for Base.

    Docs: https://docs.alchemy.com/reference/address-activity-webhook
    """

    provider = "alchemy"
    chain = Chain.BASE
    NETWORKS = {"BASE_MAINNET", "BASE_SEPOLIA"}
    TOKEN_CATEGORIES = {"token", "erc20"}

    def __init__(self, signing_key: Optional[str] = None, *, testnet: bool = False):
        self.signing_key = signing_key
        contracts = {usdc_address(Chain.BASE)}
        if testnet:
            contracts.add(usdc_address(Chain.BASE, testnet=True))
        self.usdc_contracts = {address.lower() for address in contracts}

    def verify_signature(self, payload: bytes, signature: str) -> bool:
        """Verify Alchemy webhook signature."""
        if not self.signing_key:
            # SECURITY: Fail closed - reject unsigned webhooks
            logger.error("Alchemy signing key not configured - rejecting webhook")
            return False
        if not signature:
            return False

        expected = hmac.new(
            self.signing_key.encode("utf-8"),
            payload,
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(expected, signature)

    def parse_deposits(self, payload: Any) -> List[DepositEvent]:
        if not isinstance(payload, dict):
            raise ProviderResponseError("Alchemy payload was not an object", provider=self.provider)

        if payload.get("type") != "ADDRESS_ACTIVITY":
            logger.info("Ignoring Alchemy webhook of type %s", payload.get("type"))
            return []

        event = payload.get("event") or {}
        network = event.get("network")
        if network and network not in self.NETWORKS:
            logger.info("Ignoring Alchemy webhook for network %s", network)
            return []

        detected_at = _parse_iso(payload.get("createdAt")) or utcnow()
        deposits: List[DepositEvent] = []
        for activity in event.get("activity") or []:
            try:
                deposit = self._parse_activity(activity, detected_at)
            except (InvalidOperation, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed Alchemy activity %s: %s", activity.get("hash"), exc)
                continue
            if deposit is not None:
                deposits.append(deposit)
        return deposits

    def _parse_activity(self, activity: Dict[str, Any], detected_at: datetime) -> Optional[DepositEvent]:
        if activity.get("category") not in self.TOKEN_CATEGORIES:
            return None
        raw_contract = activity.get("rawContract") or {}
        if (raw_contract.get("address") or "").lower() not in self.usdc_contracts:
            return None

        to_address = activity.get("toAddress")
        if not to_address:
            return None

        amount = self._activity_amount(activity, raw_contract)
        if amount <= 0:
            return None

        logger.info("USDC deposit of %s to %s via Alchemy (%s)", amount, to_address, activity.get("hash"))
        return DepositEvent(
            address=to_address,
            chain=self.chain,
            amount=amount,
            detected_at=detected_at,
            tx_hash=activity.get("hash"),
            source=DepositSource.WEBHOOK,
        )

    @staticmethod
    def _activity_amount(activity: Dict[str, Any], raw_contract: Dict[str, Any]) -> Decimal:
        raw_value = raw_contract.get("rawValue") or raw_contract.get("value")
        decimals = raw_contract.get("decimals", raw_contract.get("decimal"))
        if isinstance(raw_value, str) and raw_value.startswith("0x") and decimals is not None:
            return Decimal(int(raw_value, 16)).scaleb(-int(decimals))
        value = activity.get("value")
        if value is None:
            return Decimal(0)
        return Decimal(str(value))


class HeliusWebhookHandler(WebhookHandler):
    """
    Handle Helius enhanced-transaction webhooks for Solana.

    Docs: https://docs.helius.dev/webhooks-and-websockets/webhooks
    """

    provider = "helius"
    chain = Chain.SOLANA

    def __init__(self, auth_secret: Optional[str] = None, *, testnet: bool = False):
        self.auth_secret = auth_secret
        mints = {usdc_address(Chain.SOLANA)}
        if testnet:
            mints.add(usdc_address(Chain.SOLANA, testnet=True))
        self.usdc_mints = mints

    def verify_signature(self, payload: bytes, signature: str) -> bool:
        """Helius echoes the configured auth header verbatim; the body is not signed."""
        if not self.auth_secret:
            logger.error("Helius webhook secret not configured - rejecting webhook")
            return False
        return hmac.compare_digest(self.auth_secret.encode("utf-8"), (signature or "").encode("utf-8"))

    def parse_deposits(self, payload: Any) -> List[DepositEvent]:
        # Helius sends an array of transactions
        if isinstance(payload, list):
            transactions = payload
        elif isinstance(payload, dict):
            transactions = [payload]
        else:
            raise ProviderResponseError("Helius payload was not an object or array", provider=self.provider)

        deposits: List[DepositEvent] = []
        for tx in transactions:
            if not isinstance(tx, dict):
                continue
            try:
                deposits.extend(self._parse_transaction(tx))
            except (InvalidOperation, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed Helius transaction %s: %s", tx.get("signature"), exc)
        return deposits

    def _parse_transaction(self, tx: Dict[str, Any]) -> List[DepositEvent]:
        signature = tx.get("signature") or None
        timestamp = tx.get("timestamp")
        detected_at = datetime.fromtimestamp(timestamp, tz=timezone.utc) if timestamp else utcnow()

        # Balance changes are net per account; fall back to transfers when absent
        credits = list(self._balance_change_credits(tx.get("accountData") or []))
        if not credits:
            credits = list(self._transfer_credits(tx.get("tokenTransfers") or []))

        deposits = []
        for address, amount in _merge_credits(credits).items():
            logger.info("USDC deposit of %s to %s via Helius (%s)", amount, address, signature)
            deposits.append(
                DepositEvent(
                    address=address,
                    chain=self.chain,
                    amount=amount,
                    detected_at=detected_at,
                    tx_hash=signature,
                    source=DepositSource.WEBHOOK,
                )
            )
        return deposits

    def _balance_change_credits(self, account_data: Iterable[Dict[str, Any]]):
        for account in account_data:
            for change in (account or {}).get("tokenBalanceChanges") or []:
                if change.get("mint") not in self.usdc_mints:
                    continue
                raw = change.get("rawTokenAmount") or {}
                decimals = int(raw.get("decimals", USDC_DECIMALS))
                amount = Decimal(str(raw.get("tokenAmount", "0"))).scaleb(-decimals)
                owner = change.get("userAccount")
                if owner and amount > 0:
                    yield owner, amount

    def _transfer_credits(self, transfers: Iterable[Dict[str, Any]]):
        for transfer in transfers:
            if (transfer or {}).get("mint") not in self.usdc_mints:
                continue
            owner = transfer.get("toUserAccount")
            amount = Decimal(str(transfer.get("tokenAmount", "0")))
            if owner and amount > 0:
                yield owner, amount


def _merge_credits(credits: Iterable[tuple]) -> Dict[str, Decimal]:
    merged: Dict[str, Decimal] = {}
    for address, amount in credits:
        merged[address] = merged.get(address, Decimal(0)) + amount
    return merged


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
