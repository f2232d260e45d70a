"""
Configuration package for the DAO deployer.

Network catalogue, contract catalogue, runtime settings and logging setup.
"""

from dao_deployer.config.network import (
    CHAINS,
    CHAIN_ID_TO_NAME,
    ResolvedNetwork,
    get_chain_config,
    get_explorer_url,
    mainnet_networks,
    resolve_network,
    resolve_placeholders,
    supported_networks,
    testnet_networks,
)

from dao_deployer.config.contracts import (
    CONTRACT_SOURCES,
    GAS_HINTS,
    ContractArtifact,
    ContractRole,
    encode_constructor_args,
    load_artifact,
    recommended_contract,
)

from dao_deployer.config.settings import (
    DeployerSettings,
    parse_multiplier,
)

__all__ = [
    # Network
    "CHAINS",
    "CHAIN_ID_TO_NAME",
    "ResolvedNetwork",
    "get_chain_config",
    "get_explorer_url",
    "mainnet_networks",
    "resolve_network",
    "resolve_placeholders",
    "supported_networks",
    "testnet_networks",
    # Contracts
    "CONTRACT_SOURCES",
    "GAS_HINTS",
    "ContractArtifact",
    "ContractRole",
    "encode_constructor_args",
    "load_artifact",
    "recommended_contract",
    # Settings
    "DeployerSettings",
    "parse_multiplier",
]
