from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from dao_deployer.errors import CorruptRecordError, InvalidConfigError
from dao_deployer.setup.api_keys import API_KEY_NAMES, ApiKeyStore, validate_api_key

ALCHEMY = "alchemy-key-0123456789abcdef"
ETHERSCAN = "ABCDEFGHIJKLMNOPQRSTUVWXYZ01234567"


@pytest.fixture()
def store(tmp_path: Path) -> ApiKeyStore:
    return ApiKeyStore(tmp_path / "data" / "config.json")


def test_validation_rules() -> None:
    assert validate_api_key("ALCHEMY_API_KEY", ALCHEMY) is None
    assert validate_api_key("ALCHEMY_API_KEY", "short") is not None
    assert validate_api_key("INFURA_API_KEY", "a" * 32) is None
    assert validate_api_key("INFURA_API_KEY", "a" * 31) is not None
    assert validate_api_key("ETHERSCAN_API_KEY", ETHERSCAN) is None
    assert validate_api_key("SNOWTRACE_API_KEY", ETHERSCAN.lower()) is not None
    assert validate_api_key("GITHUB_TOKEN", "x" * 40) is not None
    assert validate_api_key("ALCHEMY_API_KEY", "   ") == "API key cannot be empty"


def test_set_load_and_remove(store: ApiKeyStore) -> None:
    assert store.load() == {}
    store.set("ALCHEMY_API_KEY", f"  {ALCHEMY} ")
    store.set("ETHERSCAN_API_KEY", ETHERSCAN)
    assert store.load() == {"ALCHEMY_API_KEY": ALCHEMY, "ETHERSCAN_API_KEY": ETHERSCAN}
    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
    assert "updatedAt" in json.loads(store.path.read_text())

    assert store.remove("ALCHEMY_API_KEY") is True
    assert store.remove("ALCHEMY_API_KEY") is False
    assert store.load() == {"ETHERSCAN_API_KEY": ETHERSCAN}


def test_invalid_key_is_not_saved(store: ApiKeyStore) -> None:
    with pytest.raises(InvalidConfigError) as exc:
        store.set("INFURA_API_KEY", "too-short")
    assert exc.value.issues == ["Infura API key should be 32 characters"]
    assert not store.path.exists()


def test_other_config_fields_survive_writes(store: ApiKeyStore) -> None:
    store.path.parent.mkdir(parents=True)
    store.path.write_text(json.dumps({"theme": "dark", "apiKeys": {}}))
    store.set("ALCHEMY_API_KEY", ALCHEMY)
    assert json.loads(store.path.read_text())["theme"] == "dark"


def test_unreadable_config_is_reported(store: ApiKeyStore) -> None:
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json")
    with pytest.raises(CorruptRecordError):
        store.load()


def test_import_and_status(store: ApiKeyStore) -> None:
    imported, skipped = store.import_from_env({"ALCHEMY_API_KEY": ALCHEMY, "INFURA_API_KEY": " "})
    assert imported == ["ALCHEMY_API_KEY"]
    assert "INFURA_API_KEY" in skipped and len(imported) + len(skipped) == len(API_KEY_NAMES)

    rows = {r["key"]: r for r in store.status({"BASESCAN_API_KEY": ETHERSCAN})}
    assert rows["ALCHEMY_API_KEY"] == {"key": "ALCHEMY_API_KEY", "configured": True, "source": "config"}
    assert rows["BASESCAN_API_KEY"]["source"] == "env"
    assert rows["BSCSCAN_API_KEY"]["configured"] is False
    assert ALCHEMY not in json.dumps(list(rows.values()))
