import logging
from enum import Enum
from typing import Optional

from typing_extensions import (
    TypedDict,
)  # use `typing_extensions.TypedDict` instead of `typing.TypedDict` on Python < 3.12

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Backend environment. Staging runs on test networks."""

    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, value: "str | Environment") -> "Environment":
        if isinstance(value, Environment):
            return value
        normalized = (value or "").strip().lower()
        if normalized in ("prod", "mainnet"):
            normalized = "production"
        if normalized in ("test", "testnet", "dev", "development"):
            normalized = "staging"
        return cls(normalized)


NETWORK_TO_CHAIN_ID = {
    "ethereum": 1,
    "ethereum-sepolia": 11155111,
    "sepolia": 11155111,
    "polygon": 137,
    "polygon-amoy": 80002,
    "base": 8453,
    "base-sepolia": 84532,
    "arbitrum": 42161,
    "arbitrum-sepolia": 421614,
    "optimism": 10,
    "optimism-sepolia": 11155420,
    "avalanche": 43114,
    "avalanche-fuji": 43113,
}

DEFAULT_CHAIN_ID = NETWORK_TO_CHAIN_ID["base-sepolia"]


def get_chain_id(network: str) -> int:
    """Get the EIP-155 chain id for a network.

    Accepts human readable names, CAIP-2 ``eip155:<id>`` identifiers and
    decimal strings. Unknown networks fall back to base-sepolia and log a
    warning.
    """
    normalized = (network or "").strip().lower()
    if normalized.startswith("eip155:"):
        normalized = normalized.split(":", 1)[1]
    if normalized.isdigit():
        return int(normalized)
    if normalized in NETWORK_TO_CHAIN_ID:
        return NETWORK_TO_CHAIN_ID[normalized]
    logger.warning(
        "Unknown network %r, signing for base-sepolia (chain id %d)",
        network,
        DEFAULT_CHAIN_ID,
    )
    return DEFAULT_CHAIN_ID


class KnownToken(TypedDict):
    symbol: str
    address: str
    name: str
    decimals: int
    version: str


# network -> scheme -> tokens
TokenCatalog = dict[str, dict[str, list[KnownToken]]]

SOLANA_DEVNET = "solana-devnet"
SOLANA_MAINNET = "solana"

_STAGING_TOKENS: TokenCatalog = {
    SOLANA_DEVNET: {
        "exact": [
            {
                "symbol": "usdc",
                "address": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
                "name": "USDC",
                "decimals": 6,
                "version": "2",
            }
        ]
    },
    "base-sepolia": {
        "exact": [
            {
                "symbol": "usdc",
                "address": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
                "name": "USDC",
                "decimals": 6,
                "version": "2",
            }
        ]
    },
}

_PRODUCTION_TOKENS: TokenCatalog = {
    SOLANA_MAINNET: {
        "exact": [
            {
                "symbol": "usdc",
                "address": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
                "name": "USD Coin",
                "decimals": 6,
                "version": "2",
            },
            {
                "symbol": "sol",
                "address": "So11111111111111111111111111111111111111112",
                "name": "Wrapped SOL",
                "decimals": 9,
                "version": "1",
            },
        ]
    },
    "base": {
        "exact": [
            {
                "symbol": "usdc",
                "address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
                "name": "USD Coin",  # needs to be exactly what is returned by name() on contract
                "decimals": 6,
                "version": "2",
            }
        ]
    },
}

# generic alias -> concrete network per environment
_NETWORK_ALIASES = {
    Environment.STAGING: {
        "solana": SOLANA_DEVNET,
        "solana-mainnet-beta": SOLANA_DEVNET,
        "base": "base-sepolia",
        "evm": "base-sepolia",
    },
    Environment.PRODUCTION: {
        "solana-mainnet-beta": SOLANA_MAINNET,
        "evm": "base",
    },
}


def get_supported_tokens(environment: "str | Environment") -> TokenCatalog:
    """Get the token catalog for an environment.

    Staging returns test network tokens, production returns main network
    tokens.
    """
    environment = Environment.parse(environment)
    source = _STAGING_TOKENS if environment is Environment.STAGING else _PRODUCTION_TOKENS
    return {
        network: {scheme: [dict(token) for token in tokens] for scheme, tokens in schemes.items()}
        for network, schemes in source.items()
    }


def normalize_network(network: str, environment: "str | Environment") -> str:
    """Map a generic network alias to the environment's concrete network."""
    environment = Environment.parse(environment)
    normalized = (network or "").strip().lower()
    return _NETWORK_ALIASES[environment].get(normalized, normalized)


def find_token(
    catalog: TokenCatalog, network: str, token: str, scheme: str = "exact"
) -> Optional[KnownToken]:
    """Look a token up by symbol or address on a network.

    Addresses are compared case-insensitively, which only matters for EVM
    addresses; Solana mints never collide by case.
    """
    wanted = token.strip().lower()
    for known in catalog.get(network, {}).get(scheme, []):
        if known["symbol"] == wanted or known["address"].lower() == wanted:
            return known
    return None
