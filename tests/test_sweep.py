from __future__ import annotations

import asyncio
import logging

import pytest

from dao_deployer.config.settings import DeployerSettings
from dao_deployer.errors import EstimationError, NetworkError, NonceConflictError, NotFoundError
from dao_deployer.helpers.chain_client import ChainRegistry
from dao_deployer.setup.keystore import EphemeralKeyStore
from dao_deployer.setup.sweep import BalanceAndSweepEngine, SweepStatus

from conftest import GWEI, RECIPIENT, FakeChainClient

ONE_ETH = 10**18
GAS_COST = 21_000 * 10 * GWEI


@pytest.fixture()
def store(settings: DeployerSettings) -> EphemeralKeyStore:
    return EphemeralKeyStore(settings.wallets_dir)


@pytest.fixture()
def engine(store, registry: ChainRegistry, settings: DeployerSettings, audit_logger) -> BalanceAndSweepEngine:
    return BalanceAndSweepEngine(store, registry, settings, audit_logger)


def _sweep(engine: BalanceAndSweepEngine, address: str, **kw):
    return asyncio.run(engine.sweep(address, RECIPIENT, "sepolia", **kw))


def test_get_balance(engine, fake_client: FakeChainClient) -> None:
    fake_client.set_balance(RECIPIENT, 15 * 10**17)
    bal = asyncio.run(engine.get_balance(RECIPIENT.lower(), "sepolia"))
    assert bal.balance_wei == 15 * 10**17
    assert str(bal.balance) == "1.5"
    assert bal.has_balance
    assert bal.to_dict()["symbol"] == "SEP ETH"


def test_sweep_full_balance_and_delete(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)

    result = _sweep(engine, wallet.address)

    assert result.success and result.status is SweepStatus.SWEPT
    assert result.amount_swept_wei == ONE_ETH - GAS_COST
    assert result.transaction_hash
    assert result.gas_used == 21_000
    assert result.key_deleted
    assert not wallet.key_file.exists()
    assert len(fake_client.sent) == 1
    assert fake_client.estimate_calls[0]["value"] == 0


def test_sweep_keep_key_when_asked(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    result = _sweep(engine, wallet.address, delete_after=False)
    assert result.success and not result.key_deleted
    assert wallet.key_file.exists()


def test_empty_wallet_is_deleted_without_broadcast(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    result = _sweep(engine, wallet.address)
    assert result.success and result.status is SweepStatus.EMPTY
    assert result.amount_swept_wei == 0
    assert result.key_deleted
    assert result.note
    assert fake_client.sent == []


def test_balance_not_covering_gas(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, GAS_COST)
    result = _sweep(engine, wallet.address)
    assert not result.success
    assert result.status is SweepStatus.INSUFFICIENT_FOR_GAS
    assert "0.00021 SEP ETH" in result.error
    assert not result.key_deleted
    assert fake_client.sent == []
    assert wallet.key_file.exists()


def test_residual_balance_keeps_key(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    fake_client.residual_after_send = 5
    result = _sweep(engine, wallet.address)
    assert result.success
    assert not result.key_deleted
    assert "Residual" in result.note
    assert wallet.key_file.exists()


def test_confirmation_timeout_is_unknown(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    fake_client.receipt_status = None
    result = _sweep(engine, wallet.address, timeout=0.1)
    assert not result.success
    assert result.status is SweepStatus.CONFIRMATION_UNKNOWN
    assert result.transaction_hash
    assert not result.key_deleted
    assert wallet.key_file.exists()


def test_reverted_sweep_keeps_key(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    fake_client.receipt_status = 0
    result = _sweep(engine, wallet.address)
    assert not result.success and result.status is SweepStatus.FAILED
    assert wallet.key_file.exists()


def test_broadcast_failure_is_a_result(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    fake_client.send_error = NetworkError("Broadcast failed: boom")
    result = _sweep(engine, wallet.address)
    assert not result.success and result.status is SweepStatus.FAILED
    assert "boom" in result.error
    assert wallet.key_file.exists()


def test_nonce_conflict_is_raised(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    fake_client.send_error = NonceConflictError("nonce too low")
    with pytest.raises(NonceConflictError):
        _sweep(engine, wallet.address)
    assert wallet.key_file.exists()


def test_unverified_post_balance_keeps_key(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    fake_client.balance_error_after_send = NetworkError("rpc down")
    result = _sweep(engine, wallet.address)
    assert result.success
    assert not result.key_deleted
    assert "rpc down" in result.note


def test_estimation_failure_raises(engine, store, fake_client: FakeChainClient) -> None:
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    fake_client.estimate_error = EstimationError("reverted")
    with pytest.raises(EstimationError):
        _sweep(engine, wallet.address)


def test_unknown_wallet_raises(engine) -> None:
    with pytest.raises(NotFoundError):
        _sweep(engine, "0x" + "99" * 20)


def test_sweep_outcomes_are_audited(store, registry, settings, fake_client, caplog) -> None:
    engine = BalanceAndSweepEngine(store, registry, settings, logging.getLogger("tests.audit.capture"))
    wallet = store.generate("sepolia")
    fake_client.set_balance(wallet.address, ONE_ETH)
    with caplog.at_level(logging.INFO, logger="tests.audit.capture"):
        _sweep(engine, wallet.address)
    assert any("SUCCESS | swept | sepolia" in r.getMessage() for r in caplog.records)
