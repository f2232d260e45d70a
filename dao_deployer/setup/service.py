#!/usr/bin/env python3
"""
DAODeployer: the operations exposed to callers (CLI, tool layers).

Wires the key store, sweep engine, gas estimator and deployment sequencer
around one DeployerSettings and one ChainRegistry.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from dao_deployer.config.logging_config import setup_sweep_logger
from dao_deployer.config.network import ResolvedNetwork, resolve_network
from dao_deployer.config.settings import DeployerSettings
from dao_deployer.errors import InvalidConfigError, NetworkError, NonceConflictError
from dao_deployer.helpers.chain_client import (
    ChainClient,
    ChainRegistry,
    ConfirmationOutcome,
    transaction_status,
    wait_for_confirmation,
    web3_client_factory,
)
from dao_deployer.helpers.gas import GasEstimate, GasEstimator
from dao_deployer.helpers.signer import Signer
from dao_deployer.helpers.transactions import SignedTransactionInfo, decode_signed_transaction

from .api_keys import ApiKeyStore
from .deploy_dao import DAOConfig, DeploymentPlanStep, DeploymentSequencer, DeploymentSession, SessionStore
from .keystore import EphemeralKeyStore, EphemeralWallet
from .sweep import BalanceAndSweepEngine, SweepResult, WalletBalance

logger = logging.getLogger(__name__)


class DAODeployer:
    def __init__(
        self,
        settings: DeployerSettings | None = None,
        client_factory: Callable[[ResolvedNetwork], ChainClient] = web3_client_factory,
        resolver: Optional[Callable[[str], ResolvedNetwork]] = None,
        audit_logger: logging.Logger | None = None,
    ):
        self.settings = settings or DeployerSettings.from_env()
        self.api_keys = ApiKeyStore(self.settings.config_file)
        self.chains = ChainRegistry(resolver or self._resolve_with_saved_keys, client_factory)
        self.keystore = EphemeralKeyStore(self.settings.wallets_dir)
        self.sessions = SessionStore(self.settings.sessions_dir)
        self.estimator = GasEstimator(self.chains, self.settings)
        if audit_logger is None:
            audit_logger = setup_sweep_logger(self.settings.data_directory / "logs")
        self.sweeper = BalanceAndSweepEngine(self.keystore, self.chains, self.settings, audit_logger)
        self.sequencer = DeploymentSequencer(self.estimator, self.settings.artifacts_dir)

    def _resolve_with_saved_keys(self, network_name: str) -> ResolvedNetwork:
        return resolve_network(network_name, overrides=self.api_keys.load())

    # Ephemeral wallets

    def generate_ephemeral_wallet(self, network_name: str) -> EphemeralWallet:
        network = self.chains.network(network_name)
        return self.keystore.generate(network.key)

    def list_ephemeral_wallets(self) -> tuple[EphemeralWallet, ...]:
        return self.keystore.list()

    async def get_wallet_balance(self, address: str, network_name: str) -> WalletBalance:
        return await self.sweeper.get_balance(address, network_name)

    async def sweep_ephemeral_wallet(
        self,
        address: str,
        recipient: str,
        network_name: str,
        delete_after: bool = True,
        timeout: Optional[float] = None,
    ) -> SweepResult:
        return await self.sweeper.sweep(address, recipient, network_name, delete_after, timeout)

    def find_ephemeral_wallet(self, address: str, network_name: str) -> Optional[EphemeralWallet]:
        network = self.chains.network(network_name)
        wallet = self.keystore.find(address)
        if wallet is None or wallet.network_name != network.key:
            return None
        return wallet

    def delete_ephemeral_wallet(self, address: str, network_name: str) -> bool:
        network = self.chains.network(network_name)
        return self.keystore.delete(address, network.key)

    # Deployment planning

    async def plan_token_deployment(self, config: DAOConfig, sender: str, network_name: str) -> DeploymentPlanStep:
        return await self.sequencer.plan_token_deployment(config, sender, network_name)

    async def plan_timelock_deployment(self, config: DAOConfig, sender: str, network_name: str) -> DeploymentPlanStep:
        return await self.sequencer.plan_timelock_deployment(config, sender, network_name)

    async def plan_governor_deployment(
        self,
        config: DAOConfig,
        token_address: Optional[str],
        timelock_address: Optional[str],
        sender: str,
        network_name: str,
    ) -> DeploymentPlanStep:
        return await self.sequencer.plan_governor_deployment(
            config, token_address, timelock_address, sender, network_name
        )

    async def plan_factory_deployment(self, sender: str, network_name: str, upgradeable: bool = True) -> DeploymentPlanStep:
        return await self.sequencer.plan_factory_deployment(sender, network_name, upgradeable)

    def start_session(self, network_name: str, sender: str) -> DeploymentSession:
        network = self.chains.network(network_name)
        session = DeploymentSession.start(network.key, sender)
        self.sessions.save(session)
        return session

    async def plan_next(self, session_id: str, config: DAOConfig) -> Optional[DeploymentPlanStep]:
        return await self.sequencer.plan_next(self.sessions.load(session_id), config)

    def record_deployment(self, session_id: str, deployed_address: str) -> DeploymentSession:
        session = self.sessions.load(session_id).advance(deployed_address)
        self.sessions.save(session)
        logger.info("Session %s advanced to %s", session_id, session.state.name)
        return session

    async def submit_step(self, step: DeploymentPlanStep, signer: Signer, network_name: str) -> str:
        """Sign a planned step with ``signer`` and broadcast it; returns the tx hash.

        Signer errors (UserRejectedError, DeviceUnavailableError) propagate unchanged.
        """
        network = self.chains.network(network_name)
        tx = step.unsigned_transaction
        if tx.chain_id != network.chain_id:
            raise NetworkError(
                f"Step was planned for chain {tx.chain_id}, not {network.key}",
                network=network.key,
                expected_chain_id=network.chain_id,
                actual_chain_id=tx.chain_id,
            )
        client = await self.chains.checked_client(network.key)
        if tx.nonce is None:
            tx = tx.with_nonce(await client.get_transaction_count(tx.sender))
        tx_hash = await client.send_raw_transaction(signer.sign(tx))
        logger.info("Broadcast %s step %s on %s", step.role.value, tx_hash, network.key)
        return tx_hash

    async def broadcast_signed(self, raw: bytes | str, network_name: str) -> SignedTransactionInfo:
        """Broadcast a transaction signed outside this process (hardware wallet output).

        Raises:
            InvalidConfigError: not a signed transaction, or no replay-protected chain id.
            NetworkError: signed for another chain, or the endpoint failed.
            NonceConflictError: the sender already used this nonce.
        """
        network = self.chains.network(network_name)
        info = decode_signed_transaction(raw)
        if info.chain_id is None:
            raise InvalidConfigError("Signed transaction has no chain id (pre-EIP-155)", network=network.key)
        if info.chain_id != network.chain_id:
            raise NetworkError(
                f"Transaction was signed for chain {info.chain_id}, not {network.key}",
                network=network.key,
                expected_chain_id=network.chain_id,
                actual_chain_id=info.chain_id,
            )
        client = await self.chains.checked_client(network.key)
        next_nonce = await client.get_transaction_count(info.sender)
        if info.nonce < next_nonce:
            raise NonceConflictError(
                f"Nonce {info.nonce} already used by {info.sender} (next is {next_nonce})",
                sender=info.sender,
                nonce=info.nonce,
                next_nonce=next_nonce,
            )
        tx_hash = await client.send_raw_transaction(info.raw)
        logger.info("Broadcast signed transaction %s from %s on %s", tx_hash, info.sender, network.key)
        return info

    async def transaction_status(self, tx_hash: str, network_name: str) -> ConfirmationOutcome:
        client = await self.chains.checked_client(network_name)
        return await transaction_status(client, tx_hash)

    # Saved API keys

    def set_api_key(self, name: str, value: str) -> None:
        self.api_keys.set(name, value)

    def remove_api_key(self, name: str) -> bool:
        return self.api_keys.remove(name)

    def list_api_keys(self) -> list[dict]:
        return self.api_keys.status()

    def import_api_keys_from_env(self) -> tuple[list[str], list[str]]:
        return self.api_keys.import_from_env()

    # Misc

    async def estimate_gas(self, network_name: str, tx_skeleton: dict, multiplier=None) -> GasEstimate:
        return await self.estimator.estimate(network_name, tx_skeleton, multiplier)

    async def wait_for_confirmation(self, tx_hash: str, network_name: str, timeout: Optional[float] = None) -> ConfirmationOutcome:
        client = await self.chains.checked_client(network_name)
        return await wait_for_confirmation(
            client, tx_hash, timeout if timeout is not None else self.settings.confirmation_timeout
        )
