#!/usr/bin/env python3
"""
DAO deployment planning: token -> timelock -> governor.

Each ``plan_*`` call prepares exactly one unsigned creation transaction. The
governor needs the token and timelock addresses, which the caller supplies
after those deployments are mined; they are never inferred from transaction
hashes. ``DeploymentSession`` tracks which step comes next and serialises to
JSON so a caller can persist it between steps.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from dao_deployer.config.contracts import (
    ContractRole,
    encode_constructor_args,
    load_artifact,
    recommended_contract,
)
from dao_deployer.errors import CorruptRecordError, InvalidConfigError, MissingDependencyError, NotFoundError
from dao_deployer.helpers.amounts import (
    UINT256_MAX,
    ZERO_ADDRESS,
    is_hex_address,
    is_zero_address,
    normalize_address,
)
from dao_deployer.helpers.gas import GasEstimate, GasEstimator
from dao_deployer.helpers.transactions import UnsignedTransaction, build_deployment

from .keystore import read_json, write_json_atomic

logger = logging.getLogger(__name__)

MAX_SYMBOL_LENGTH = 10
MIN_VOTING_DELAY = 1
MIN_VOTING_PERIOD = 100


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class DAOConfig:
    token_name: str
    token_symbol: str
    initial_supply: int
    voting_delay: int = 7200
    voting_period: int = 50400
    proposal_threshold: int = 0
    quorum_percentage: int = 4
    min_delay: int = 86400
    proposers: list[str] = field(default_factory=list)
    executors: list[str] = field(default_factory=list)
    admin: Optional[str] = None
    initial_recipient: Optional[str] = None
    upgradeable: bool = True
    dao_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DAOConfig":
        """Build from the JSON shape used by config files (camelCase, nested settings)."""
        governor = data.get("governorSettings") or {}
        timelock = data.get("timelockSettings") or {}
        try:
            return cls(
                token_name=str(data["tokenName"]),
                token_symbol=str(data["tokenSymbol"]),
                initial_supply=_parse_uint(data["initialSupply"], "initialSupply"),
                voting_delay=int(governor.get("votingDelay", cls.voting_delay)),
                voting_period=int(governor.get("votingPeriod", cls.voting_period)),
                proposal_threshold=_parse_uint(governor.get("proposalThreshold", 0), "proposalThreshold"),
                quorum_percentage=int(governor.get("quorumPercentage", cls.quorum_percentage)),
                min_delay=int(timelock.get("minDelay", cls.min_delay)),
                proposers=list(timelock.get("proposers") or []),
                executors=list(timelock.get("executors") or []),
                admin=timelock.get("admin") or None,
                initial_recipient=data.get("initialRecipient") or None,
                upgradeable=bool(data.get("upgradeable", True)),
                dao_name=str(data.get("daoName", "")),
            )
        except KeyError as e:
            raise InvalidConfigError(f"Missing DAO config field: {e.args[0]}", issues=[f"{e.args[0]} is required"])
        except (TypeError, ValueError) as e:
            raise InvalidConfigError(f"Invalid DAO config: {e}", issues=[str(e)])

    def validate(self) -> list[str]:
        """Return a list of problems; empty when the config can be planned."""
        issues: list[str] = []
        if not self.token_name.strip():
            issues.append("Token name is required")
        if not self.token_symbol.strip():
            issues.append("Token symbol is required")
        elif len(self.token_symbol) > MAX_SYMBOL_LENGTH:
            issues.append(f"Token symbol too long (max {MAX_SYMBOL_LENGTH} characters)")
        if not 0 <= self.initial_supply <= UINT256_MAX:
            issues.append("Initial supply must fit in uint256")
        if self.voting_delay < MIN_VOTING_DELAY:
            issues.append(f"Voting delay must be at least {MIN_VOTING_DELAY} block")
        if self.voting_period < MIN_VOTING_PERIOD:
            issues.append(f"Voting period must be at least {MIN_VOTING_PERIOD} blocks")
        if not 0 <= self.proposal_threshold <= UINT256_MAX:
            issues.append("Proposal threshold must fit in uint256")
        if not 1 <= self.quorum_percentage <= 100:
            issues.append("Quorum percentage must be between 1-100%")
        if self.min_delay < 0:
            issues.append("Min delay cannot be negative")
        invalid = [a for a in [*self.proposers, *self.executors] if not is_hex_address(a)]
        if invalid:
            issues.append(f"Invalid addresses in timelock settings: {', '.join(map(str, invalid))}")
        if self.admin is not None and not is_hex_address(self.admin):
            issues.append(f"Invalid timelock admin address: {self.admin}")
        if self.initial_recipient is not None and not is_hex_address(self.initial_recipient):
            issues.append(f"Invalid initial recipient address: {self.initial_recipient}")
        return issues

    def ensure_valid(self) -> None:
        issues = self.validate()
        if issues:
            raise InvalidConfigError("Invalid DAO configuration: " + "; ".join(issues), issues=issues)


def _parse_uint(value: Any, name: str) -> int:
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"{name} must be a non-negative integer string, got {value!r}")
    return int(text)


# ---------------------------------------------------------------------------
# Plan steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeploymentPlanStep:
    ordinal: int
    role: ContractRole
    contract_name: str
    unsigned_transaction: UnsignedTransaction
    gas_estimate: GasEstimate
    depends_on: frozenset = frozenset()
    constructor_args: tuple = ()
    instructions: tuple = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "ordinal": self.ordinal,
            "role": self.role.value,
            "contractName": self.contract_name,
            "dependsOn": sorted(r.value for r in self.depends_on),
            "constructorArgs": [_display_arg(a) for a in self.constructor_args],
            "gasEstimate": self.gas_estimate.to_dict(),
            "unsignedTransaction": self.unsigned_transaction.to_dict(),
            "instructions": list(self.instructions),
        }


def _display_arg(arg: Any) -> Any:
    if isinstance(arg, (list, tuple)):
        return [_display_arg(a) for a in arg]
    if isinstance(arg, int) and not isinstance(arg, bool):
        return str(arg)
    return arg


def format_constructor_args(args: tuple) -> str:
    return "\n".join(f"  [{i}] {_display_arg(a)}" for i, a in enumerate(args)) or "  (none)"


class DeploymentSequencer:
    """Stateless planner; one unsigned transaction per call."""

    def __init__(self, estimator: GasEstimator, artifacts_dir: Path | None = None):
        self.estimator = estimator
        self.artifacts_dir = Path(artifacts_dir) if artifacts_dir is not None else estimator.settings.artifacts_dir

    async def plan_token_deployment(self, config: DAOConfig, sender: str, network_name: str) -> DeploymentPlanStep:
        config.ensure_valid()
        sender = normalize_address(sender)
        recipient = normalize_address(config.initial_recipient) if config.initial_recipient else sender
        args = (config.token_name, config.token_symbol, config.initial_supply, recipient)
        return await self._plan(
            ordinal=1,
            role=ContractRole.TOKEN,
            contract_name=recommended_contract(ContractRole.TOKEN, config.upgradeable),
            args=args,
            sender=sender,
            network_name=network_name,
            depends_on=frozenset(),
            instructions=(
                "Sign and broadcast this transaction with the hardware wallet.",
                "Record the token contract address from the receipt.",
                "Next: plan the timelock deployment.",
            ),
        )

    async def plan_timelock_deployment(self, config: DAOConfig, sender: str, network_name: str) -> DeploymentPlanStep:
        config.ensure_valid()
        sender = normalize_address(sender)
        args = (
            config.min_delay,
            [normalize_address(a) for a in config.proposers],
            [normalize_address(a) for a in config.executors],
            normalize_address(config.admin) if config.admin else ZERO_ADDRESS,
        )
        return await self._plan(
            ordinal=2,
            role=ContractRole.TIMELOCK,
            contract_name=recommended_contract(ContractRole.TIMELOCK, config.upgradeable),
            args=args,
            sender=sender,
            network_name=network_name,
            depends_on=frozenset(),
            instructions=(
                "Sign and broadcast this transaction with the hardware wallet.",
                "Record the timelock contract address from the receipt.",
                "Next: plan the governor deployment with the token and timelock addresses.",
            ),
        )

    async def plan_governor_deployment(
        self,
        config: DAOConfig,
        token_address: Optional[str],
        timelock_address: Optional[str],
        sender: str,
        network_name: str,
    ) -> DeploymentPlanStep:
        missing = [
            role.value
            for role, addr in ((ContractRole.TOKEN, token_address), (ContractRole.TIMELOCK, timelock_address))
            if not addr or not is_hex_address(addr) or is_zero_address(addr)
        ]
        if missing:
            raise MissingDependencyError(
                f"Governor deployment needs deployed {' and '.join(missing)} address(es)",
                missing=missing,
                token_address=token_address,
                timelock_address=timelock_address,
            )
        config.ensure_valid()
        sender = normalize_address(sender)
        args = (
            normalize_address(token_address),
            normalize_address(timelock_address),
            config.voting_delay,
            config.voting_period,
            config.proposal_threshold,
            config.quorum_percentage,
        )
        return await self._plan(
            ordinal=3,
            role=ContractRole.GOVERNOR,
            contract_name=recommended_contract(ContractRole.GOVERNOR, config.upgradeable),
            args=args,
            sender=sender,
            network_name=network_name,
            depends_on=frozenset({ContractRole.TOKEN, ContractRole.TIMELOCK}),
            instructions=(
                "Sign and broadcast this transaction with the hardware wallet.",
                "Record the governor contract address from the receipt.",
                "Then grant the governor the timelock proposer role and renounce temporary admin rights.",
            ),
        )

    async def plan_factory_deployment(self, sender: str, network_name: str, upgradeable: bool = True) -> DeploymentPlanStep:
        return await self._plan(
            ordinal=0,
            role=ContractRole.FACTORY,
            contract_name=recommended_contract(ContractRole.FACTORY, upgradeable),
            args=(),
            sender=normalize_address(sender),
            network_name=network_name,
            depends_on=frozenset(),
            instructions=(
                "Sign and broadcast this transaction with the hardware wallet.",
                "Record the factory address; it can deploy further DAOs in one call.",
            ),
        )

    async def _plan(
        self,
        *,
        ordinal: int,
        role: ContractRole,
        contract_name: str,
        args: tuple,
        sender: str,
        network_name: str,
        depends_on: frozenset,
        instructions: tuple,
    ) -> DeploymentPlanStep:
        network = self.estimator.chains.network(network_name)
        artifact = load_artifact(contract_name, self.artifacts_dir)
        encoded = encode_constructor_args(role, args, artifact)
        estimate = await self.estimator.estimate(
            network.key, {"from": sender, "data": "0x" + (artifact.bytecode + encoded).hex(), "value": 0}
        )
        tx = build_deployment(artifact.bytecode, encoded, sender, network, estimate)
        logger.info(
            "Planned %s (%s) on %s: gas limit %d, est. cost %s",
            role.value,
            contract_name,
            network.key,
            estimate.adjusted_limit,
            self.estimator.to_display_cost(estimate, network.key),
        )
        return DeploymentPlanStep(
            ordinal=ordinal,
            role=role,
            contract_name=contract_name,
            unsigned_transaction=tx,
            gas_estimate=estimate,
            depends_on=depends_on,
            constructor_args=args,
            instructions=instructions,
        )

    async def plan_next(self, session: "DeploymentSession", config: DAOConfig) -> Optional[DeploymentPlanStep]:
        """Plan whichever step the session is waiting for; None once complete."""
        state = session.state
        if isinstance(state, AwaitingToken):
            return await self.plan_token_deployment(config, session.sender, session.network_name)
        if isinstance(state, AwaitingTimelock):
            return await self.plan_timelock_deployment(config, session.sender, session.network_name)
        if isinstance(state, AwaitingGovernor):
            return await self.plan_governor_deployment(
                config, state.token, state.timelock, session.sender, session.network_name
            )
        return None


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AwaitingToken:
    name = "awaiting_token"


@dataclass(frozen=True)
class AwaitingTimelock:
    token: str
    name = "awaiting_timelock"


@dataclass(frozen=True)
class AwaitingGovernor:
    token: str
    timelock: str
    name = "awaiting_governor"


@dataclass(frozen=True)
class Complete:
    token: str
    timelock: str
    governor: str
    name = "complete"


SessionState = Union[AwaitingToken, AwaitingTimelock, AwaitingGovernor, Complete]


def advance(state: SessionState, deployed_address: str) -> SessionState:
    """Next state after the contract for ``state`` was deployed at ``deployed_address``."""
    if not is_hex_address(deployed_address) or is_zero_address(deployed_address):
        raise MissingDependencyError(f"Invalid deployed address: {deployed_address!r}", address=deployed_address)
    addr = normalize_address(deployed_address)
    if isinstance(state, AwaitingToken):
        return AwaitingTimelock(token=addr)
    if isinstance(state, AwaitingTimelock):
        return AwaitingGovernor(token=state.token, timelock=addr)
    if isinstance(state, AwaitingGovernor):
        return Complete(token=state.token, timelock=state.timelock, governor=addr)
    raise InvalidConfigError("Deployment session is already complete")


def state_to_dict(state: SessionState) -> dict[str, Any]:
    out: dict[str, Any] = {"state": state.name}
    for key in ("token", "timelock", "governor"):
        if hasattr(state, key):
            out[key] = getattr(state, key)
    return out


def state_from_dict(data: dict[str, Any]) -> SessionState:
    kind = data.get("state")
    try:
        if kind == AwaitingToken.name:
            return AwaitingToken()
        if kind == AwaitingTimelock.name:
            return AwaitingTimelock(token=normalize_address(data["token"]))
        if kind == AwaitingGovernor.name:
            return AwaitingGovernor(
                token=normalize_address(data["token"]), timelock=normalize_address(data["timelock"])
            )
        if kind == Complete.name:
            return Complete(
                token=normalize_address(data["token"]),
                timelock=normalize_address(data["timelock"]),
                governor=normalize_address(data["governor"]),
            )
    except (KeyError, ValueError) as e:
        raise CorruptRecordError(f"Invalid session state: {e}", state=kind) from e
    raise CorruptRecordError(f"Unknown session state: {kind!r}", state=kind)


@dataclass(frozen=True)
class DeploymentSession:
    session_id: str
    network_name: str
    sender: str
    state: SessionState = AwaitingToken()
    created_at: str = field(default_factory=_utc_now_iso)

    @classmethod
    def start(cls, network_name: str, sender: str) -> "DeploymentSession":
        return cls(session_id=uuid.uuid4().hex[:12], network_name=network_name, sender=normalize_address(sender))

    @property
    def is_complete(self) -> bool:
        return isinstance(self.state, Complete)

    def advance(self, deployed_address: str) -> "DeploymentSession":
        return DeploymentSession(
            session_id=self.session_id,
            network_name=self.network_name,
            sender=self.sender,
            state=advance(self.state, deployed_address),
            created_at=self.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "networkName": self.network_name,
            "sender": self.sender,
            "createdAt": self.created_at,
            **state_to_dict(self.state),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentSession":
        try:
            return cls(
                session_id=str(data["sessionId"]),
                network_name=str(data["networkName"]),
                sender=normalize_address(data["sender"]),
                state=state_from_dict(data),
                created_at=str(data.get("createdAt", "")),
            )
        except (KeyError, ValueError) as e:
            raise CorruptRecordError(f"Invalid session record: {e}") from e


class SessionStore:
    """Deployment sessions as ``<dir>/<session id>.json``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()

    def save(self, session: DeploymentSession) -> Path:
        path = self.directory / f"{session.session_id}.json"
        write_json_atomic(path, session.to_dict(), mode=0o644)
        return path

    def load(self, session_id: str) -> DeploymentSession:
        path = self.directory / f"{session_id}.json"
        try:
            data = read_json(path)
        except FileNotFoundError:
            raise NotFoundError(f"No deployment session {session_id}", session_id=session_id)
        except (OSError, json.JSONDecodeError) as e:
            raise CorruptRecordError(f"Session {session_id} is unreadable: {e}", session_id=session_id) from e
        return DeploymentSession.from_dict(data)
