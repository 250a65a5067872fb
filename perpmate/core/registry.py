"""In-memory registry of wallets the deposit monitor watches."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from .chains import Chain
from .models import MonitoredWallet, wallet_key

logger = logging.getLogger(__name__)


class MonitoredWalletRegistry:
    """
    Maps (chain, address) to the owning user.

    Single-process and in-memory; entries live as long as the process does.
    """

    def __init__(self) -> None:
        self._wallets: Dict[Tuple[Chain, str], MonitoredWallet] = {}

    def register(self, address: str, chain: Chain, owner_id: str) -> MonitoredWallet:
        key = wallet_key(address, chain)
        existing = self._wallets.get(key)
        if existing is not None:
            if existing.owner_id != owner_id:
                logger.warning(
                    "Wallet %s on %s already registered to %s; keeping existing owner",
                    address,
                    chain.value,
                    existing.owner_id,
                )
            return existing

        wallet = MonitoredWallet(address=address, chain=chain, owner_id=owner_id)
        self._wallets[key] = wallet
        logger.info("Registered %s on %s for owner %s", address, chain.value, owner_id)
        return wallet

    def lookup(self, address: str, chain: Chain) -> Optional[MonitoredWallet]:
        return self._wallets.get(wallet_key(address, chain))

    def iterate(self) -> List[MonitoredWallet]:
        # Snapshot so callers can await between items while new wallets register
        return list(self._wallets.values())

    def addresses(self, chain: Chain) -> List[str]:
        return [wallet.address for wallet in self._wallets.values() if wallet.chain is chain]

    def __len__(self) -> int:
        return len(self._wallets)

    def __contains__(self, item: object) -> bool:
        if not isinstance(item, tuple) or len(item) != 2:
            return False
        address, chain = item
        return wallet_key(address, chain) in self._wallets
