"""
Chain access helpers - async web3 clients per network.

Public API
----------
ChainClient
    Protocol every chain client satisfies (the web3 client and test fakes).
Web3ChainClient(rpc_url)
    AsyncWeb3 implementation. RPC failures surface as NetworkError, reverted
    gas simulations as EstimationError and nonce reuse as NonceConflictError.
ChainRegistry(resolver, client_factory)
    Resolves network names and hands out cached, chain-id-verified clients.
wait_for_confirmation(client, tx_hash, timeout)
    Bounded receipt wait returning a ConfirmationOutcome.
transaction_status(client, tx_hash)
    Single receipt lookup; "pending" while the transaction is not mined.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from dao_deployer.config.network import ResolvedNetwork, redact_rpc_url, resolve_network
from dao_deployer.errors import DAODeployerError, EstimationError, NetworkError, NonceConflictError

__all__ = [
    "Receipt",
    "ChainClient",
    "Web3ChainClient",
    "ChainRegistry",
    "ConfirmationState",
    "ConfirmationOutcome",
    "wait_for_confirmation",
    "transaction_status",
]

logger = logging.getLogger(__name__)

_NONCE_MARKERS = (
    "nonce too low",
    "already known",
    "replacement transaction underpriced",
    "nonce has already been used",
)


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    gas_used: int
    block_number: int
    contract_address: Optional[str] = None
    effective_gas_price: Optional[int] = None


class ChainClient(Protocol):
    async def chain_id(self) -> int: ...

    async def estimate_gas(self, tx: dict[str, Any]) -> int: ...

    async def get_gas_price(self) -> int: ...

    async def get_base_fee(self) -> Optional[int]: ...

    async def get_max_priority_fee(self) -> int: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_transaction_count(self, address: str) -> int: ...

    async def send_raw_transaction(self, raw: bytes) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Optional[Receipt]:
        """Receipt once mined, or None when ``timeout`` elapses first."""
        ...

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt if already mined, None otherwise. Never waits."""
        ...


class Web3ChainClient:
    """ChainClient backed by AsyncWeb3 over HTTP."""

    def __init__(self, rpc_url: str, request_timeout: float = 30.0, poll_latency: float = 2.0):
        self.rpc_url = rpc_url
        self.poll_latency = poll_latency
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))

    async def _rpc(self, what: str, awaitable):
        try:
            return await awaitable
        except DAODeployerError:
            raise
        except (OSError, asyncio.TimeoutError, ValueError, Web3Exception) as e:
            raise NetworkError(
                f"RPC call {what} failed: {e}", rpc_url=redact_rpc_url(self.rpc_url)
            ) from e

    async def chain_id(self) -> int:
        return int(await self._rpc("eth_chainId", self.w3.eth.chain_id))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        try:
            return int(await self.w3.eth.estimate_gas(tx))
        except ContractLogicError as e:
            raise EstimationError(f"Gas estimation reverted: {e}", tx_to=tx.get("to")) from e
        except (OSError, asyncio.TimeoutError, ValueError, Web3Exception) as e:
            raise EstimationError(f"Gas estimation failed: {e}", tx_to=tx.get("to")) from e

    async def get_gas_price(self) -> int:
        return int(await self._rpc("eth_gasPrice", self.w3.eth.gas_price))

    async def get_base_fee(self) -> Optional[int]:
        block = await self._rpc("eth_getBlockByNumber", self.w3.eth.get_block("latest"))
        base_fee = block.get("baseFeePerGas")
        return int(base_fee) if base_fee is not None else None

    async def get_max_priority_fee(self) -> int:
        return int(await self._rpc("eth_maxPriorityFeePerGas", self.w3.eth.max_priority_fee))

    async def get_balance(self, address: str) -> int:
        return int(await self._rpc("eth_getBalance", self.w3.eth.get_balance(address)))

    async def get_transaction_count(self, address: str) -> int:
        return int(
            await self._rpc(
                "eth_getTransactionCount", self.w3.eth.get_transaction_count(address, "pending")
            )
        )

    async def send_raw_transaction(self, raw: bytes) -> str:
        try:
            tx_hash = await self.w3.eth.send_raw_transaction(raw)
        except (ValueError, Web3Exception) as e:
            text = str(e).lower()
            if any(marker in text for marker in _NONCE_MARKERS):
                raise NonceConflictError(f"Transaction rejected, nonce already used: {e}") from e
            raise NetworkError(f"Broadcast failed: {e}") from e
        except (OSError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Broadcast failed: {e}") from e
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Optional[Receipt]:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=self.poll_latency
            )
        except TimeExhausted:
            return None
        except (OSError, asyncio.TimeoutError, ValueError, Web3Exception) as e:
            raise NetworkError(f"Receipt lookup failed for {tx_hash}: {e}", tx_hash=tx_hash) from e
        return _to_receipt(tx_hash, receipt)

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (OSError, asyncio.TimeoutError, ValueError, Web3Exception) as e:
            raise NetworkError(f"Receipt lookup failed for {tx_hash}: {e}", tx_hash=tx_hash) from e
        return _to_receipt(tx_hash, receipt)


def _to_receipt(tx_hash: str, receipt: Any) -> Receipt:
    effective = receipt.get("effectiveGasPrice")
    return Receipt(
        tx_hash=tx_hash,
        status=int(receipt.get("status", 0)),
        gas_used=int(receipt.get("gasUsed", 0)),
        block_number=int(receipt.get("blockNumber", 0)),
        contract_address=receipt.get("contractAddress"),
        effective_gas_price=int(effective) if effective is not None else None,
    )


def web3_client_factory(network: ResolvedNetwork) -> ChainClient:
    return Web3ChainClient(network.rpc_url)


class ChainRegistry:
    """Network resolution plus one verified client per network."""

    def __init__(
        self,
        resolver: Callable[[str], ResolvedNetwork] = resolve_network,
        client_factory: Callable[[ResolvedNetwork], ChainClient] = web3_client_factory,
    ):
        self._resolver = resolver
        self._client_factory = client_factory
        self._networks: dict[str, ResolvedNetwork] = {}
        self._clients: dict[str, ChainClient] = {}
        self._verified: set[str] = set()

    def network(self, name: str) -> ResolvedNetwork:
        key = str(name or "").strip().lower()
        if key not in self._networks:
            self._networks[key] = self._resolver(key)
        return self._networks[key]

    def client(self, name: str) -> ChainClient:
        network = self.network(name)
        if network.key not in self._clients:
            logger.debug("Creating chain client for %s (%s)", network.key, redact_rpc_url(network.rpc_url))
            self._clients[network.key] = self._client_factory(network)
        return self._clients[network.key]

    async def checked_client(self, name: str) -> ChainClient:
        """Client whose endpoint has answered with the configured chain id."""
        network = self.network(name)
        client = self.client(name)
        if network.key not in self._verified:
            actual = await client.chain_id()
            if actual != network.chain_id:
                raise NetworkError(
                    f"Unexpected chainId {actual}; expected {network.chain_id} for {network.key}",
                    network=network.key,
                    expected_chain_id=network.chain_id,
                    actual_chain_id=actual,
                )
            self._verified.add(network.key)
        return client


class ConfirmationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConfirmationOutcome:
    state: ConfirmationState
    tx_hash: str
    receipt: Optional[Receipt] = None

    @property
    def confirmed(self) -> bool:
        return self.state is ConfirmationState.CONFIRMED

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"state": self.state.value, "transactionHash": self.tx_hash}
        if self.receipt is not None:
            out.update(
                {
                    "blockNumber": self.receipt.block_number,
                    "gasUsed": self.receipt.gas_used,
                    "contractAddress": self.receipt.contract_address,
                }
            )
        return out


async def wait_for_confirmation(client: ChainClient, tx_hash: str, timeout: float) -> ConfirmationOutcome:
    """Wait up to ``timeout`` seconds. Timing out means "unknown", not failure."""
    receipt = await client.wait_for_receipt(tx_hash, timeout)
    if receipt is None:
        logger.warning("No receipt for %s after %.0fs; status unknown", tx_hash, timeout)
        return ConfirmationOutcome(ConfirmationState.UNKNOWN, tx_hash)
    if receipt.status == 1:
        return ConfirmationOutcome(ConfirmationState.CONFIRMED, tx_hash, receipt)
    logger.error("Transaction %s reverted in block %s", tx_hash, receipt.block_number)
    return ConfirmationOutcome(ConfirmationState.REVERTED, tx_hash, receipt)


async def transaction_status(client: ChainClient, tx_hash: str) -> ConfirmationOutcome:
    receipt = await client.get_receipt(tx_hash)
    if receipt is None:
        return ConfirmationOutcome(ConfirmationState.PENDING, tx_hash)
    state = ConfirmationState.CONFIRMED if receipt.status == 1 else ConfirmationState.REVERTED
    return ConfirmationOutcome(state, tx_hash, receipt)
