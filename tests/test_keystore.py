from __future__ import annotations

import json
import os
import stat
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from eth_account import Account

from dao_deployer.errors import CorruptRecordError, NotFoundError, StorageError
from dao_deployer.setup.keystore import EphemeralKeyStore


@pytest.fixture()
def store(tmp_path: Path) -> EphemeralKeyStore:
    return EphemeralKeyStore(tmp_path / "wallets")


def test_generate_writes_private_record(store: EphemeralKeyStore) -> None:
    wallet = store.generate("sepolia")
    assert wallet.key_file.name == wallet.address[2:].lower() + ".json"
    assert stat.S_IMODE(os.stat(wallet.key_file).st_mode) == 0o600
    record = json.loads(wallet.key_file.read_text())
    assert record["address"] == wallet.address
    assert record["networkName"] == "sepolia"
    assert Account.from_key(record["privateKey"]).address == wallet.address
    assert not [p for p in store.directory.iterdir() if p.suffix == ".tmp"]


def test_list_is_newest_first_and_has_no_secrets(store: EphemeralKeyStore) -> None:
    older = store.generate("sepolia")
    newer = store.generate("base")
    data = json.loads(older.key_file.read_text())
    data["createdAt"] = (datetime.now(timezone.utc) - timedelta(hours=5)).isoformat()
    older.key_file.write_text(json.dumps(data))

    listed = store.list()
    assert [w.address for w in listed] == [newer.address, older.address]
    assert listed[1].age_hours() >= 4.9
    for w in listed:
        assert "privateKey" not in w.to_dict()


def test_list_skips_corrupt_and_temp_files(store: EphemeralKeyStore) -> None:
    good = store.generate("sepolia")
    (store.directory / ("ab" * 20 + ".json")).write_text("{not json")
    (store.directory / "ephemeral_123.tmp").write_text("{}")
    assert [w.address for w in store.list()] == [good.address]


def test_list_on_missing_directory_is_empty(tmp_path: Path) -> None:
    assert EphemeralKeyStore(tmp_path / "nope").list() == ()


def test_load_secret_round_trip(store: EphemeralKeyStore) -> None:
    wallet = store.generate("sepolia")
    secret = store.load_secret(wallet.address.lower(), "sepolia")
    assert Account.from_key(secret).address == wallet.address


def test_load_secret_wrong_network_or_unknown(store: EphemeralKeyStore) -> None:
    wallet = store.generate("sepolia")
    with pytest.raises(NotFoundError):
        store.load_secret(wallet.address, "ethereum")
    with pytest.raises(NotFoundError):
        store.load_secret("0x" + "12" * 20, "sepolia")


def test_load_secret_rejects_key_for_other_address(store: EphemeralKeyStore) -> None:
    wallet = store.generate("sepolia")
    data = json.loads(wallet.key_file.read_text())
    data["privateKey"] = "0x" + bytes(Account.create().key).hex()
    wallet.key_file.write_text(json.dumps(data))
    with pytest.raises(CorruptRecordError):
        store.load_secret(wallet.address, "sepolia")


def test_load_secret_rejects_torn_file(store: EphemeralKeyStore) -> None:
    wallet = store.generate("sepolia")
    wallet.key_file.write_text(wallet.key_file.read_text()[:40])
    with pytest.raises(CorruptRecordError):
        store.load_secret(wallet.address, "sepolia")


def test_delete(store: EphemeralKeyStore) -> None:
    wallet = store.generate("sepolia")
    assert store.delete(wallet.address, "base") is False
    assert store.delete(wallet.address, "sepolia") is True
    assert not wallet.key_file.exists()
    assert store.delete(wallet.address, "sepolia") is False
    with pytest.raises(NotFoundError):
        store.load_secret(wallet.address, "sepolia")


def test_generate_storage_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(StorageError):
        EphemeralKeyStore(blocker / "wallets").generate("sepolia")
