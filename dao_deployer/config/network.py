"""
Network configuration for the DAO deployer.

Contains RPC URL templates, explorer endpoints and per-network gas settings
for every supported EVM chain. RPC URLs may carry ``${VAR}`` placeholders
(API keys); they are substituted at resolution time and fall back to a public
endpoint when a key is not configured.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from dao_deployer.errors import UnsupportedNetworkError

logger = logging.getLogger(__name__)


# =============================================================================
# CHAIN CONFIGURATIONS
# =============================================================================

CHAINS: dict[str, dict[str, Any]] = {
    # Ethereum
    "ethereum": {
        "chain_id": 1,
        "name": "Ethereum Mainnet",
        "currency": {"name": "Ether", "symbol": "ETH", "decimals": 18},
        "rpc_url": "https://eth-mainnet.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": [
            "https://eth.llamarpc.com",
            "https://ethereum.rpc.blxrbdn.com",
            "https://cloudflare-eth.com",
        ],
        "explorer": {
            "url": "https://etherscan.io",
            "api_url": "https://api.etherscan.io/api",
            "api_key": "${ETHERSCAN_API_KEY}",
        },
        "gas_multiplier": "1.2",
        "testnet": False,
    },
    "sepolia": {
        "chain_id": 11155111,
        "name": "Sepolia Testnet",
        "currency": {"name": "Sepolia Ether", "symbol": "SEP ETH", "decimals": 18},
        "rpc_url": "https://eth-sepolia.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/eth/sepolia/public"],
        "explorer": {
            "url": "https://sepolia.etherscan.io",
            "api_url": "https://api-sepolia.etherscan.io/api",
            "api_key": "${ETHERSCAN_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
    "holesky": {
        "chain_id": 17000,
        "name": "Holesky Testnet",
        "currency": {"name": "Holesky Ether", "symbol": "HOL ETH", "decimals": 18},
        "rpc_url": "https://ethereum-holesky-rpc.publicnode.com",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/eth/holesky/public"],
        "explorer": {
            "url": "https://holesky.etherscan.io",
            "api_url": "https://api-holesky.etherscan.io/api",
            "api_key": "${ETHERSCAN_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
    # Polygon
    "polygon": {
        "chain_id": 137,
        "name": "Polygon Mainnet",
        "currency": {"name": "MATIC", "symbol": "MATIC", "decimals": 18},
        "rpc_url": "https://polygon-mainnet.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": [
            "https://rpc.ankr.com/polygon",
            "https://polygon-rpc.com",
            "https://rpc-mainnet.matic.network",
        ],
        "explorer": {
            "url": "https://polygonscan.com",
            "api_url": "https://api.polygonscan.com/api",
            "api_key": "${POLYGONSCAN_API_KEY}",
        },
        "gas_multiplier": "1.2",
        "max_fee_per_gas": 100_000_000_000,  # 100 gwei
        "max_priority_fee_per_gas": 30_000_000_000,  # 30 gwei
        "testnet": False,
    },
    "mumbai": {
        "chain_id": 80001,
        "name": "Mumbai Testnet",
        "currency": {"name": "Test MATIC", "symbol": "MATIC", "decimals": 18},
        "rpc_url": "https://polygon-mumbai.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/matic/mumbai/public"],
        "explorer": {
            "url": "https://mumbai.polygonscan.com",
            "api_url": "https://api-testnet.polygonscan.com/api",
            "api_key": "${POLYGONSCAN_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
    # Arbitrum
    "arbitrum": {
        "chain_id": 42161,
        "name": "Arbitrum One",
        "currency": {"name": "Ether", "symbol": "ETH", "decimals": 18},
        "rpc_url": "https://arb-mainnet.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": [
            "https://arb1.arbitrum.io/rpc",
            "https://1rpc.io/arb",
            "https://arbitrum.public.blastapi.io",
        ],
        "explorer": {
            "url": "https://arbiscan.io",
            "api_url": "https://api.arbiscan.io/api",
            "api_key": "${ARBISCAN_API_KEY}",
        },
        "gas_multiplier": "1.1",
        "testnet": False,
    },
    "arbitrum-sepolia": {
        "chain_id": 421614,
        "name": "Arbitrum Sepolia",
        "currency": {"name": "Sepolia Ether", "symbol": "ETH", "decimals": 18},
        "rpc_url": "https://arb-sepolia.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/arbitrum/sepolia/public"],
        "explorer": {
            "url": "https://sepolia.arbiscan.io",
            "api_url": "https://api-sepolia.arbiscan.io/api",
            "api_key": "${ARBISCAN_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
    # Optimism
    "optimism": {
        "chain_id": 10,
        "name": "Optimism",
        "currency": {"name": "Ether", "symbol": "ETH", "decimals": 18},
        "rpc_url": "https://opt-mainnet.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": ["https://mainnet.optimism.io"],
        "explorer": {
            "url": "https://optimistic.etherscan.io",
            "api_url": "https://api-optimistic.etherscan.io/api",
            "api_key": "${OPTIMISTIC_ETHERSCAN_API_KEY}",
        },
        "gas_multiplier": "1.1",
        "testnet": False,
    },
    "optimism-sepolia": {
        "chain_id": 11155420,
        "name": "Optimism Sepolia",
        "currency": {"name": "Sepolia Ether", "symbol": "ETH", "decimals": 18},
        "rpc_url": "https://opt-sepolia.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/op/sepolia/public"],
        "explorer": {
            "url": "https://sepolia-optimism.etherscan.io",
            "api_url": "https://api-sepolia-optimistic.etherscan.io/api",
            "api_key": "${OPTIMISTIC_ETHERSCAN_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
    # Base
    "base": {
        "chain_id": 8453,
        "name": "Base",
        "currency": {"name": "Ether", "symbol": "ETH", "decimals": 18},
        "rpc_url": "https://base-mainnet.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": [
            "https://base.llamarpc.com",
            "https://mainnet.base.org",
            "https://developer-access-mainnet.base.org",
        ],
        "explorer": {
            "url": "https://basescan.org",
            "api_url": "https://api.basescan.org/api",
            "api_key": "${BASESCAN_API_KEY}",
        },
        "gas_multiplier": "1.1",
        "testnet": False,
    },
    "base-sepolia": {
        "chain_id": 84532,
        "name": "Base Sepolia",
        "currency": {"name": "Sepolia Ether", "symbol": "ETH", "decimals": 18},
        "rpc_url": "https://base-sepolia.g.alchemy.com/v2/${ALCHEMY_API_KEY}",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/base/sepolia/public"],
        "explorer": {
            "url": "https://sepolia.basescan.org",
            "api_url": "https://api-sepolia.basescan.org/api",
            "api_key": "${BASESCAN_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
    # Avalanche
    "avalanche": {
        "chain_id": 43114,
        "name": "Avalanche C-Chain",
        "currency": {"name": "Avalanche", "symbol": "AVAX", "decimals": 18},
        "rpc_url": "https://api.avax.network/ext/bc/C/rpc",
        "fallback_rpc_urls": ["https://avalanche.public-rpc.com"],
        "explorer": {
            "url": "https://snowtrace.io",
            "api_url": "https://api.snowtrace.io/api",
            "api_key": "${SNOWTRACE_API_KEY}",
        },
        "gas_multiplier": "1.2",
        "testnet": False,
    },
    "fuji": {
        "chain_id": 43113,
        "name": "Avalanche Fuji Testnet",
        "currency": {"name": "Avalanche", "symbol": "AVAX", "decimals": 18},
        "rpc_url": "https://api.avax-test.network/ext/bc/C/rpc",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/avax/fuji/public"],
        "explorer": {
            "url": "https://testnet.snowtrace.io",
            "api_url": "https://api-testnet.snowtrace.io/api",
            "api_key": "${SNOWTRACE_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
    # BNB Smart Chain
    "bsc": {
        "chain_id": 56,
        "name": "BNB Smart Chain",
        "currency": {"name": "BNB", "symbol": "BNB", "decimals": 18},
        "rpc_url": "https://bsc-dataseed1.binance.org/",
        "fallback_rpc_urls": ["https://binance.llamarpc.com"],
        "explorer": {
            "url": "https://bscscan.com",
            "api_url": "https://api.bscscan.com/api",
            "api_key": "${BSCSCAN_API_KEY}",
        },
        "gas_multiplier": "1.2",
        "testnet": False,
    },
    "bsc-testnet": {
        "chain_id": 97,
        "name": "BNB Smart Chain Testnet",
        "currency": {"name": "Test BNB", "symbol": "tBNB", "decimals": 18},
        "rpc_url": "https://data-seed-prebsc-1-s1.binance.org:8545/",
        "fallback_rpc_urls": ["https://endpoints.omniatech.io/v1/bsc/testnet/public"],
        "explorer": {
            "url": "https://testnet.bscscan.com",
            "api_url": "https://api-testnet.bscscan.com/api",
            "api_key": "${BSCSCAN_API_KEY}",
        },
        "gas_multiplier": "1.5",
        "testnet": True,
    },
}

# Chain ID to name mapping
CHAIN_ID_TO_NAME: dict[int, str] = {
    config["chain_id"]: name for name, config in CHAINS.items()
}

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")


@dataclass(frozen=True)
class ResolvedNetwork:
    """A network entry with placeholders substituted and a usable RPC URL."""

    key: str
    name: str
    chain_id: int
    rpc_url: str
    currency_name: str
    currency_symbol: str
    native_currency_decimals: int
    gas_multiplier: Decimal | None
    testnet: bool
    explorer_url: str | None = None
    explorer_api_url: str | None = None
    explorer_api_key: str | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "chainId": self.chain_id,
            "rpcUrl": redact_rpc_url(self.rpc_url),
            "nativeCurrency": {
                "name": self.currency_name,
                "symbol": self.currency_symbol,
                "decimals": self.native_currency_decimals,
            },
            "gasMultiplier": str(self.gas_multiplier) if self.gas_multiplier is not None else None,
            "testnet": self.testnet,
            "explorerUrl": self.explorer_url,
        }


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_chain_config(network_name: str | int) -> dict[str, Any]:
    """Get raw configuration for a network.

    Args:
        network_name: Network key (e.g. 'sepolia', 'polygon') or chain ID.

    Returns:
        Chain configuration dictionary (placeholders unresolved).

    Raises:
        UnsupportedNetworkError: If the network is not supported.
    """
    if isinstance(network_name, int):
        key = CHAIN_ID_TO_NAME.get(network_name)
        if key is None:
            raise UnsupportedNetworkError(
                f"Unsupported chain ID: {network_name}", chain_id=network_name
            )
        return CHAINS[key]

    key = str(network_name or "").strip().lower()
    if key not in CHAINS:
        raise UnsupportedNetworkError(
            f"Unsupported network: {network_name}. Supported networks: {', '.join(CHAINS)}",
            network=network_name,
        )
    return CHAINS[key]


def supported_networks() -> list[str]:
    return list(CHAINS)


def mainnet_networks() -> dict[str, dict[str, Any]]:
    return {name: cfg for name, cfg in CHAINS.items() if not cfg["testnet"]}


def testnet_networks() -> dict[str, dict[str, Any]]:
    return {name: cfg for name, cfg in CHAINS.items() if cfg["testnet"]}


def env_lookup(name: str) -> str | None:
    return os.getenv(name) or None


def resolve_placeholders(template: str, lookup: Callable[[str], str | None]) -> str:
    """Substitute ``${VAR}`` occurrences using ``lookup``.

    Placeholders for which ``lookup`` returns nothing are left in place, so
    callers can detect an unresolved template with ``"${" in result``.
    """

    def _sub(match: re.Match[str]) -> str:
        value = lookup(match.group(1))
        return value if value else match.group(0)

    return _PLACEHOLDER_RE.sub(_sub, template)


def chained_lookup(*lookups: Callable[[str], str | None]) -> Callable[[str], str | None]:
    """First non-empty answer wins (e.g. saved config, then environment)."""

    def _lookup(name: str) -> str | None:
        for fn in lookups:
            value = fn(name)
            if value:
                return value
        return None

    return _lookup


def resolve_network(
    network_name: str,
    lookup: Callable[[str], str | None] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> ResolvedNetwork:
    """Resolve a network name to a usable endpoint plus chain metadata.

    Lookup order for placeholders: ``overrides`` (saved config), then the
    supplied ``lookup`` (defaults to the environment). An RPC URL that still
    contains a placeholder is replaced by the first fallback URL.
    ``DAO_DEPLOYER_RPC_URL_<NETWORK>`` overrides the RPC URL outright.
    """
    cfg = get_chain_config(network_name)
    key = CHAIN_ID_TO_NAME[cfg["chain_id"]]
    saved = dict(overrides or {})
    resolver = chained_lookup(saved.get, lookup or env_lookup)

    env_override = os.getenv(f"DAO_DEPLOYER_RPC_URL_{key.upper().replace('-', '_')}")
    rpc_url = env_override or resolve_placeholders(cfg["rpc_url"], resolver)
    if "${" in rpc_url:
        fallbacks = cfg.get("fallback_rpc_urls") or []
        if not fallbacks:
            raise UnsupportedNetworkError(
                f"RPC URL for {cfg['name']} needs an API key and no fallback is configured",
                network=key,
            )
        logger.warning("Using fallback RPC for %s: %s", cfg["name"], fallbacks[0])
        rpc_url = fallbacks[0]

    explorer = cfg.get("explorer") or {}
    api_key = explorer.get("api_key")
    if api_key:
        api_key = resolve_placeholders(api_key, resolver)
        if "${" in api_key:
            api_key = None

    currency = cfg["currency"]
    return ResolvedNetwork(
        key=key,
        name=cfg["name"],
        chain_id=int(cfg["chain_id"]),
        rpc_url=rpc_url,
        currency_name=currency["name"],
        currency_symbol=currency["symbol"],
        native_currency_decimals=int(currency["decimals"]),
        gas_multiplier=Decimal(str(cfg["gas_multiplier"])) if cfg.get("gas_multiplier") else None,
        testnet=bool(cfg.get("testnet", False)),
        explorer_url=explorer.get("url"),
        explorer_api_url=explorer.get("api_url"),
        explorer_api_key=api_key,
        max_fee_per_gas=cfg.get("max_fee_per_gas"),
        max_priority_fee_per_gas=cfg.get("max_priority_fee_per_gas"),
    )


def redact_rpc_url(url: str) -> str:
    """Hide API keys embedded in provider URLs for logging."""
    return re.sub(r"/v(\d)/[^/]+$", r"/v\1/***", url)


def get_explorer_url(network_name: str) -> str | None:
    return get_chain_config(network_name).get("explorer", {}).get("url")
