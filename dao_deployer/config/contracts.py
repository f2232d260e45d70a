"""
DAO contract catalogue.

Maps deployment roles to contract names, loads forge build artifacts
(``<artifacts_dir>/<Name>.sol/<Name>.json``) and ABI-encodes constructor
arguments.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from eth_abi import encode
from eth_utils import to_bytes

from dao_deployer.errors import InvalidConfigError, MissingBytecodeError, NotFoundError

logger = logging.getLogger(__name__)


class ContractRole(str, Enum):
    TOKEN = "TOKEN"
    TIMELOCK = "TIMELOCK"
    GOVERNOR = "GOVERNOR"
    FACTORY = "FACTORY"


# Contract name -> source file inside the contracts project
CONTRACT_SOURCES: dict[str, str] = {
    # Factory contracts
    "SimpleDAOFactory": "src/SimpleDAOFactory.sol",
    "SimpleDAOFactoryV2": "src/SimpleDAOFactoryV2.sol",
    # DAO contracts
    "SimpleDAOGovernor": "src/SimpleDAOGovernor.sol",
    "SimpleDAOGovernorUpgradeable": "src/SimpleDAOGovernorUpgradeable.sol",
    "SimpleDAOTimelock": "src/SimpleDAOTimelock.sol",
    "SimpleDAOTimelockUpgradeable": "src/SimpleDAOTimelockUpgradeable.sol",
    "SimpleDAOTokenUpgradeable": "src/SimpleDAOTokenUpgradeable.sol",
    "SimpleDAOTokenV2": "src/SimpleDAOTokenV2.sol",
}

# (standard, upgradeable) variant per role
ROLE_CONTRACTS: dict[ContractRole, tuple[str, str]] = {
    ContractRole.TOKEN: ("SimpleDAOTokenV2", "SimpleDAOTokenUpgradeable"),
    ContractRole.TIMELOCK: ("SimpleDAOTimelock", "SimpleDAOTimelockUpgradeable"),
    ContractRole.GOVERNOR: ("SimpleDAOGovernor", "SimpleDAOGovernorUpgradeable"),
    ContractRole.FACTORY: ("SimpleDAOFactory", "SimpleDAOFactoryV2"),
}

# Rough deployment gas per contract, for display before a live estimate exists
GAS_HINTS: dict[str, int] = {
    "SimpleDAOFactory": 2_500_000,
    "SimpleDAOFactoryV2": 2_800_000,
    "SimpleDAOGovernor": 3_200_000,
    "SimpleDAOGovernorUpgradeable": 3_500_000,
    "SimpleDAOTimelock": 2_000_000,
    "SimpleDAOTimelockUpgradeable": 2_300_000,
    "SimpleDAOTokenUpgradeable": 2_800_000,
    "SimpleDAOTokenV2": 2_600_000,
}

# Used when an artifact ABI carries no constructor entry
FALLBACK_CONSTRUCTOR_TYPES: dict[ContractRole, tuple[str, ...]] = {
    ContractRole.TOKEN: ("string", "string", "uint256", "address"),
    ContractRole.TIMELOCK: ("uint256", "address[]", "address[]", "address"),
    ContractRole.GOVERNOR: ("address", "address", "uint256", "uint256", "uint256", "uint256"),
    ContractRole.FACTORY: (),
}


@dataclass(frozen=True)
class ContractArtifact:
    name: str
    bytecode: bytes
    abi: list[dict[str, Any]] = field(default_factory=list)

    def constructor_types(self) -> tuple[str, ...] | None:
        """ABI types of the constructor inputs, or None if the ABI has no constructor."""
        for item in self.abi:
            if item.get("type") == "constructor":
                return tuple(_abi_type(i) for i in item.get("inputs", []))
        return None


def recommended_contract(role: ContractRole, upgradeable: bool = True) -> str:
    standard, upgradeable_name = ROLE_CONTRACTS[role]
    return upgradeable_name if upgradeable else standard


def artifact_path(contract_name: str, artifacts_dir: Path) -> Path:
    return Path(artifacts_dir) / f"{contract_name}.sol" / f"{contract_name}.json"


def load_artifact(contract_name: str, artifacts_dir: Path) -> ContractArtifact:
    """Load a forge artifact.

    Raises:
        NotFoundError: unknown contract or missing artifact file.
        MissingBytecodeError: artifact present but bytecode is empty.
    """
    if contract_name not in CONTRACT_SOURCES:
        raise NotFoundError(f"Unknown contract: {contract_name}", contract=contract_name)
    path = artifact_path(contract_name, artifacts_dir)
    if not path.exists():
        raise NotFoundError(
            f"Missing build artifact for {contract_name}: {path}. Run `forge build` first.",
            contract=contract_name,
            path=str(path),
        )
    data = json.loads(path.read_text())
    raw = data.get("bytecode")
    if isinstance(raw, dict):
        raw = raw.get("object")
    raw = (raw or "").strip()
    if raw in ("", "0x"):
        raise MissingBytecodeError(f"Artifact for {contract_name} has no bytecode", contract=contract_name)
    return ContractArtifact(name=contract_name, bytecode=to_bytes(hexstr=raw), abi=list(data.get("abi") or []))


def encode_constructor_args(
    role: ContractRole,
    args: Sequence[Any],
    artifact: ContractArtifact | None = None,
) -> bytes:
    """ABI-encode constructor arguments, preferring the artifact's declared types."""
    types = artifact.constructor_types() if artifact is not None else None
    if types is None:
        types = FALLBACK_CONSTRUCTOR_TYPES[role]
    if len(types) != len(args):
        raise InvalidConfigError(
            f"{role.value} constructor expects {len(types)} arguments, got {len(args)}",
            role=role.value,
            types=list(types),
        )
    if not types:
        return b""
    return encode(list(types), list(args))


def _abi_type(item: dict[str, Any]) -> str:
    t = item["type"]
    if t.startswith("tuple"):
        inner = ",".join(_abi_type(c) for c in item.get("components", []))
        return f"({inner}){t[len('tuple'):]}"
    return t
