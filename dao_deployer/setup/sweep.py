#!/usr/bin/env python3
"""
Balance reads and full-balance sweeps of ephemeral wallets.

A sweep transfers ``balance - gas * gas_price`` with a legacy gas price so the
cost is exact, waits a bounded time for inclusion and deletes the key only
after a follow-up balance read returns zero.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from dao_deployer.config.logging_config import log_sweep
from dao_deployer.config.settings import DeployerSettings
from dao_deployer.errors import DAODeployerError, InvalidConfigError, NonceConflictError
from dao_deployer.helpers.amounts import (
    checked_mul,
    checked_sub,
    format_display_amount,
    normalize_address,
    to_display_units,
)
from dao_deployer.helpers.chain_client import ChainRegistry, ConfirmationState, wait_for_confirmation
from dao_deployer.helpers.gas import GasEstimator
from dao_deployer.helpers.signer import LocalKeySigner
from dao_deployer.helpers.transactions import build_call

from .keystore import EphemeralKeyStore

logger = logging.getLogger(__name__)


class SweepStatus(str, Enum):
    SWEPT = "swept"
    EMPTY = "empty"
    INSUFFICIENT_FOR_GAS = "insufficient_for_gas"
    CONFIRMATION_UNKNOWN = "confirmation_unknown"
    FAILED = "failed"


@dataclass(frozen=True)
class WalletBalance:
    address: str
    network_name: str
    balance_wei: int
    balance: Decimal
    symbol: str = ""

    @property
    def has_balance(self) -> bool:
        return self.balance_wei > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "networkName": self.network_name,
            "balanceWei": str(self.balance_wei),
            "balance": format(self.balance, "f"),
            "symbol": self.symbol,
            "hasBalance": self.has_balance,
        }


@dataclass(frozen=True)
class SweepResult:
    wallet_address: str
    recipient_address: str
    network_name: str
    amount_swept_wei: int
    amount_swept: Decimal
    success: bool
    key_deleted: bool
    status: SweepStatus
    transaction_hash: str | None = None
    gas_used: int | None = None
    error: str | None = None
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "walletAddress": self.wallet_address,
            "recipientAddress": self.recipient_address,
            "networkName": self.network_name,
            "amountSweptWei": str(self.amount_swept_wei),
            "amountSwept": format(self.amount_swept, "f"),
            "transactionHash": self.transaction_hash,
            "gasUsed": self.gas_used,
            "success": self.success,
            "keyDeleted": self.key_deleted,
            "status": self.status.value,
            "error": self.error,
            "note": self.note,
        }


class BalanceAndSweepEngine:
    def __init__(
        self,
        keystore: EphemeralKeyStore,
        chains: ChainRegistry,
        settings: DeployerSettings | None = None,
        audit_logger: logging.Logger | None = None,
    ):
        self.keystore = keystore
        self.chains = chains
        self.settings = settings or DeployerSettings()
        self.estimator = GasEstimator(chains, self.settings)
        self.audit_logger = audit_logger

    async def get_balance(self, address: str, network_name: str) -> WalletBalance:
        network = self.chains.network(network_name)
        checksum = normalize_address(address)
        client = await self.chains.checked_client(network_name)
        wei = await client.get_balance(checksum)
        return WalletBalance(
            address=checksum,
            network_name=network.key,
            balance_wei=wei,
            balance=to_display_units(wei, network.native_currency_decimals),
            symbol=network.currency_symbol,
        )

    async def sweep(
        self,
        wallet_address: str,
        recipient: str,
        network_name: str,
        delete_after: bool = True,
        timeout: float | None = None,
    ) -> SweepResult:
        """Move the whole balance of an ephemeral wallet to ``recipient``.

        Loading the key, reading the balance and estimating gas raise on
        failure. Anything that goes wrong once a transfer is attempted is
        reported in the result with ``success=False`` and the key kept.
        ``NonceConflictError`` from the broadcast is re-raised.
        """
        try:
            to_addr = normalize_address(recipient)
        except ValueError as e:
            raise InvalidConfigError(str(e), issues=[f"recipient: {e}"]) from e
        network = self.chains.network(network_name)
        secret = self.keystore.load_secret(wallet_address, network.key)
        signer = LocalKeySigner(secret)
        from_addr = signer.address()
        decimals = network.native_currency_decimals
        symbol = network.currency_symbol

        def _result(status: SweepStatus, success: bool, amount: int = 0, **kw: Any) -> SweepResult:
            kw.setdefault("key_deleted", False)
            result = SweepResult(
                wallet_address=from_addr,
                recipient_address=to_addr,
                network_name=network.key,
                amount_swept_wei=amount,
                amount_swept=to_display_units(amount, decimals),
                success=success,
                status=status,
                **kw,
            )
            self._audit(result, symbol, decimals)
            return result

        balance = (await self.get_balance(from_addr, network.key)).balance_wei
        if balance == 0:
            deleted = self.keystore.delete(from_addr, network.key) if delete_after else False
            return _result(
                SweepStatus.EMPTY,
                True,
                key_deleted=deleted,
                note="Wallet has no balance; nothing to sweep",
            )

        estimate = await self.estimator.estimate(
            network.key,
            {"from": from_addr, "to": to_addr, "value": 0},
            multiplier=Decimal(1),
            fee_mode="legacy",
        )
        gas_limit = estimate.adjusted_limit
        cost = checked_mul(gas_limit, estimate.gas_price)
        if balance <= cost:
            return _result(
                SweepStatus.INSUFFICIENT_FOR_GAS,
                False,
                error=(
                    f"Balance {format_display_amount(balance, decimals, symbol)} does not cover "
                    f"gas cost {format_display_amount(cost, decimals, symbol)}"
                ),
            )

        amount = checked_sub(balance, cost)
        client = self.chains.client(network.key)
        try:
            nonce = await client.get_transaction_count(from_addr)
            tx = build_call(to_addr, b"", from_addr, network, amount, estimate, nonce=nonce)
            tx_hash = await client.send_raw_transaction(signer.sign(tx))
        except NonceConflictError:
            raise
        except DAODeployerError as e:
            logger.error("Sweep of %s failed before broadcast completed: %s", from_addr, e.message)
            return _result(SweepStatus.FAILED, False, error=e.message)

        logger.info("Sweep broadcast %s: %s -> %s", tx_hash, from_addr, to_addr)
        wait = timeout if timeout is not None else self.settings.confirmation_timeout
        try:
            outcome = await wait_for_confirmation(client, tx_hash, wait)
        except DAODeployerError as e:
            return _result(SweepStatus.CONFIRMATION_UNKNOWN, False, transaction_hash=tx_hash, error=e.message)

        if outcome.state is ConfirmationState.UNKNOWN:
            return _result(
                SweepStatus.CONFIRMATION_UNKNOWN,
                False,
                transaction_hash=tx_hash,
                error="Broadcast succeeded, confirmation unknown",
                note=f"Check {tx_hash} later; the key has been kept",
            )
        gas_used = outcome.receipt.gas_used if outcome.receipt else None
        if outcome.state is ConfirmationState.REVERTED:
            return _result(
                SweepStatus.FAILED,
                False,
                transaction_hash=tx_hash,
                gas_used=gas_used,
                error="Sweep transaction reverted",
            )

        try:
            remaining = await client.get_balance(from_addr)
        except DAODeployerError as e:
            return _result(
                SweepStatus.SWEPT,
                True,
                amount,
                transaction_hash=tx_hash,
                gas_used=gas_used,
                note=f"Could not verify the remaining balance ({e.message}); key kept",
            )
        if remaining > 0:
            return _result(
                SweepStatus.SWEPT,
                True,
                amount,
                transaction_hash=tx_hash,
                gas_used=gas_used,
                note=f"Residual balance {format_display_amount(remaining, decimals, symbol)} remains; key kept",
            )
        deleted = self.keystore.delete(from_addr, network.key) if delete_after else False
        return _result(
            SweepStatus.SWEPT,
            True,
            amount,
            transaction_hash=tx_hash,
            gas_used=gas_used,
            key_deleted=deleted,
        )

    def _audit(self, result: SweepResult, symbol: str, decimals: int) -> None:
        if self.audit_logger is None:
            return
        log_sweep(
            self.audit_logger,
            network=result.network_name,
            wallet=result.wallet_address,
            recipient=result.recipient_address,
            amount=format_display_amount(result.amount_swept_wei, decimals, symbol),
            status=result.status.value,
            tx_hash=result.transaction_hash,
            key_deleted=result.key_deleted,
            success=result.success,
        )
