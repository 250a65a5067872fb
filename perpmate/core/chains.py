"""Supported chains, USDC token metadata and address grammars."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

_BASE58_ALPHABET = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

USDC_DECIMALS = 6


class Chain(str, Enum):
    """Chains the funding core knows about."""

    SOLANA = "solana"
    BASE = "base"
    ARBITRUM = "arbitrum"


class ChainFamily(str, Enum):
    SOLANA = "solana"
    EVM = "evm"


@dataclass(frozen=True)
class ChainSpec:
    chain: Chain
    name: str
    emoji: str
    family: ChainFamily
    lifi_chain_id: int
    usdc_mainnet: str
    usdc_testnet: str
    example_address: str
    aliases: Tuple[str, ...] = ()
    accepts_deposits: bool = True

    @property
    def address_format(self) -> str:
        if self.family is ChainFamily.SOLANA:
            return "Base58 (32-44 characters)"
        return "EVM address (0x followed by 40 hex characters)"


CHAIN_SPECS: Dict[Chain, ChainSpec] = {
    Chain.SOLANA: ChainSpec(
        chain=Chain.SOLANA,
        name="Solana",
        emoji="🟣",
        family=ChainFamily.SOLANA,
        lifi_chain_id=1151111081099710,
        usdc_mainnet="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        usdc_testnet="Gh9ZwEmdLJ8DscKNTkTqPbNwLNNBjuSzaG9Vp2KGtKJr",
        example_address="9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
        aliases=("sol",),
    ),
    Chain.BASE: ChainSpec(
        chain=Chain.BASE,
        name="Base",
        emoji="🔵",
        family=ChainFamily.EVM,
        lifi_chain_id=8453,
        usdc_mainnet="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        usdc_testnet="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        example_address="0x742d35Cc6636C0532925a3b8D6C90532e4A5cf4a",
        aliases=("base-mainnet", "base_mainnet"),
    ),
    Chain.ARBITRUM: ChainSpec(
        chain=Chain.ARBITRUM,
        name="Arbitrum",
        emoji="🔷",
        family=ChainFamily.EVM,
        lifi_chain_id=42161,
        usdc_mainnet="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        usdc_testnet="0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
        example_address="0x742d35Cc6636C0532925a3b8D6C90532e4A5cf4a",
        aliases=("arb", "arb-mainnet", "hyperevm"),
        accepts_deposits=False,
    ),
}

_CHAIN_ALIASES: Dict[str, Chain] = {
    alias: spec.chain
    for spec in CHAIN_SPECS.values()
    for alias in (spec.chain.value, spec.name.lower(), *spec.aliases)
}


def normalize_chain(chain: str | Chain | None) -> Optional[Chain]:
    """Collapse user-provided chain identifiers into a Chain, or None when unknown."""

    if chain is None:
        return None
    if isinstance(chain, Chain):
        return chain
    return _CHAIN_ALIASES.get(chain.lower().strip())


def get_spec(chain: Chain | str) -> ChainSpec:
    resolved = normalize_chain(chain)
    if resolved is None:
        raise ValueError(f"Unsupported chain: {chain}")
    return CHAIN_SPECS[resolved]


def deposit_chains() -> List[Chain]:
    return [spec.chain for spec in CHAIN_SPECS.values() if spec.accepts_deposits]


def usdc_address(chain: Chain | str, *, testnet: bool = False) -> str:
    spec = get_spec(chain)
    return spec.usdc_testnet if testnet else spec.usdc_mainnet


def is_evm_chain(chain: Chain | str) -> bool:
    return get_spec(chain).family is ChainFamily.EVM


@lru_cache(maxsize=256)
def is_valid_solana_address(address: str) -> bool:
    if not address:
        return False
    length = len(address)
    if length < 32 or length > 44:
        return False
    return all(ch in _BASE58_ALPHABET for ch in address)


def is_valid_evm_address(address: str) -> bool:
    return bool(_EVM_ADDRESS_RE.fullmatch(address or ""))


def is_valid_address_for_chain(address: str, chain: Chain | str) -> bool:
    if not address:
        return False
    if get_spec(chain).family is ChainFamily.SOLANA:
        return is_valid_solana_address(address)
    return is_valid_evm_address(address)


def chains_matching_address(address: str) -> List[Chain]:
    """All supported chains whose grammar accepts ``address``, in registry order."""

    address = (address or "").strip()
    return [chain for chain in CHAIN_SPECS if is_valid_address_for_chain(address, chain)]


def is_same_chain_destination(source_chain: Chain | str, address: str) -> bool:
    """Purely syntactic: does ``address`` look like an address on ``source_chain``?

    Two chains of the same family share a grammar, so an EVM address given for a
    Base withdrawal is always classified as a Base transfer.
    """

    return is_valid_address_for_chain(address, source_chain)


def infer_destination_chain(source_chain: Chain | str, address: str) -> Optional[Chain]:
    """Pick the chain a user-entered destination address most likely lives on."""

    source = get_spec(source_chain).chain
    if is_same_chain_destination(source, address):
        return source
    matches = chains_matching_address(address)
    return matches[0] if matches else None


def shorten_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


__all__ = [
    "Chain",
    "ChainFamily",
    "ChainSpec",
    "CHAIN_SPECS",
    "USDC_DECIMALS",
    "normalize_chain",
    "get_spec",
    "deposit_chains",
    "usdc_address",
    "is_evm_chain",
    "is_valid_solana_address",
    "is_valid_evm_address",
    "is_valid_address_for_chain",
    "chains_matching_address",
    "is_same_chain_destination",
    "infer_destination_chain",
    "shorten_address",
]
