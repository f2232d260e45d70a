"""Shared fixtures: an in-memory chain client and forge-style artifacts."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from eth_account import Account

from dao_deployer.config.network import resolve_network
from dao_deployer.config.settings import DeployerSettings
from dao_deployer.helpers.chain_client import ChainRegistry, Receipt

SEPOLIA_CHAIN_ID = 11155111
GWEI = 10**9

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"
TOKEN = "0x3333333333333333333333333333333333333333"
TIMELOCK = "0x4444444444444444444444444444444444444444"


class FakeChainClient:
    """Deterministic stand-in for Web3ChainClient."""

    def __init__(self, chain_id: int = SEPOLIA_CHAIN_ID) -> None:
        self._chain_id = chain_id
        self.balances: dict[str, int] = {}
        self.gas_estimate = 21_000
        self.gas_price = 10 * GWEI
        self.base_fee: Optional[int] = None
        self.priority_fee = 2 * GWEI
        self.nonce = 0
        self.estimate_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.balance_error_after_send: Optional[Exception] = None
        self.receipt_status: Optional[int] = 1
        self.residual_after_send = 0
        self.estimate_calls: list[dict[str, Any]] = []
        self.sent: list[bytes] = []
        self.balance_reads = 0
        self.on_send: Optional[Callable[[bytes], None]] = None

    def set_balance(self, address: str, wei: int) -> None:
        self.balances[address.lower()] = wei

    async def chain_id(self) -> int:
        return self._chain_id

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        self.estimate_calls.append(tx)
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.gas_estimate

    async def get_gas_price(self) -> int:
        return self.gas_price

    async def get_base_fee(self) -> Optional[int]:
        return self.base_fee

    async def get_max_priority_fee(self) -> int:
        return self.priority_fee

    async def get_balance(self, address: str) -> int:
        self.balance_reads += 1
        if self.sent and self.balance_error_after_send is not None:
            raise self.balance_error_after_send
        return self.balances.get(address.lower(), 0)

    async def get_transaction_count(self, address: str) -> int:
        return self.nonce

    async def send_raw_transaction(self, raw: bytes) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw)
        sender = Account.recover_transaction(raw)
        self.balances[sender.lower()] = self.residual_after_send
        if self.on_send is not None:
            self.on_send(raw)
        return "0x" + "ab" * 32

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        if not self.sent:
            return None
        return await self.wait_for_receipt(tx_hash, 0)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Optional[Receipt]:
        if self.receipt_status is None:
            return None
        return Receipt(
            tx_hash=tx_hash,
            status=self.receipt_status,
            gas_used=self.gas_estimate,
            block_number=123,
        )


def sign_transfer(account, chain_id: Optional[int] = SEPOLIA_CHAIN_ID, nonce: int = 0, typed: bool = True) -> bytes:
    """Raw signed value transfer, as a hardware wallet would hand it back."""
    tx: dict[str, Any] = {"nonce": nonce, "gas": 21_000, "to": RECIPIENT, "value": 1, "data": b""}
    if chain_id is not None:
        tx["chainId"] = chain_id
    if typed:
        tx.update({"type": 2, "maxFeePerGas": 20 * GWEI, "maxPriorityFeePerGas": GWEI, "accessList": []})
    else:
        tx["gasPrice"] = 10 * GWEI
    signed = account.sign_transaction(tx)
    return bytes(getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction"))


@pytest.fixture()
def fake_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture()
def registry(fake_client: FakeChainClient, monkeypatch: pytest.MonkeyPatch) -> ChainRegistry:
    monkeypatch.delenv("ALCHEMY_API_KEY", raising=False)
    return ChainRegistry(resolve_network, lambda network: fake_client)


@pytest.fixture()
def artifacts_dir(tmp_path: Path) -> Path:
    out = tmp_path / "out"
    token_inputs = [
        {"name": "name", "type": "string"},
        {"name": "symbol", "type": "string"},
        {"name": "initialSupply", "type": "uint256"},
        {"name": "initialOwner", "type": "address"},
    ]
    timelock_inputs = [
        {"name": "minDelay", "type": "uint256"},
        {"name": "proposers", "type": "address[]"},
        {"name": "executors", "type": "address[]"},
        {"name": "admin", "type": "address"},
    ]
    governor_inputs = [
        {"name": "token", "type": "address"},
        {"name": "timelock", "type": "address"},
        {"name": "votingDelay", "type": "uint48"},
        {"name": "votingPeriod", "type": "uint32"},
        {"name": "proposalThreshold", "type": "uint256"},
        {"name": "quorumPercentage", "type": "uint256"},
    ]
    contracts = {
        "SimpleDAOTokenUpgradeable": token_inputs,
        "SimpleDAOTokenV2": token_inputs,
        "SimpleDAOTimelockUpgradeable": timelock_inputs,
        "SimpleDAOTimelock": timelock_inputs,
        "SimpleDAOGovernorUpgradeable": governor_inputs,
        "SimpleDAOGovernor": governor_inputs,
        "SimpleDAOFactoryV2": None,
        "SimpleDAOFactory": None,
    }
    for name, inputs in contracts.items():
        abi = [] if inputs is None else [{"type": "constructor", "inputs": inputs, "stateMutability": "nonpayable"}]
        path = out / f"{name}.sol" / f"{name}.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"abi": abi, "bytecode": {"object": "0x6080604052"}}))
    return out


@pytest.fixture()
def settings(tmp_path: Path, artifacts_dir: Path) -> DeployerSettings:
    return DeployerSettings(data_directory=tmp_path / "data", artifacts_dir=artifacts_dir)


@pytest.fixture()
def audit_logger() -> logging.Logger:
    logger = logging.getLogger("tests.audit.sweep")
    logger.setLevel(logging.INFO)
    return logger
