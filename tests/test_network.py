from __future__ import annotations

from decimal import Decimal

import pytest

from dao_deployer.config.network import (
    CHAINS,
    get_chain_config,
    mainnet_networks,
    redact_rpc_url,
    resolve_network,
    resolve_placeholders,
    supported_networks,
    testnet_networks,
)
from dao_deployer.errors import UnsupportedNetworkError


def test_resolve_placeholders_substitutes_known_and_keeps_unknown() -> None:
    lookup = {"A": "one"}.get
    assert resolve_placeholders("x/${A}/${B}", lookup) == "x/one/${B}"


def test_resolve_network_uses_api_key_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALCHEMY_API_KEY", "secret123")
    net = resolve_network("sepolia")
    assert net.chain_id == 11155111
    assert net.rpc_url.endswith("/v2/secret123")
    assert net.gas_multiplier == Decimal("1.5")
    assert net.currency_symbol == "SEP ETH"
    assert "secret123" not in net.to_dict()["rpcUrl"]


def test_resolve_network_saved_config_beats_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALCHEMY_API_KEY", "from-env")
    net = resolve_network("ethereum", overrides={"ALCHEMY_API_KEY": "from-config"})
    assert net.rpc_url.endswith("/from-config")


def test_resolve_network_falls_back_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ALCHEMY_API_KEY", raising=False)
    net = resolve_network("base")
    assert net.rpc_url == CHAINS["base"]["fallback_rpc_urls"][0]


def test_rpc_override_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DAO_DEPLOYER_RPC_URL_ARBITRUM_SEPOLIA", "http://localhost:8545")
    assert resolve_network("arbitrum-sepolia").rpc_url == "http://localhost:8545"


def test_unknown_network_raises() -> None:
    with pytest.raises(UnsupportedNetworkError):
        resolve_network("gnosis")
    with pytest.raises(UnsupportedNetworkError):
        get_chain_config(999999)


def test_polygon_has_fee_caps() -> None:
    net = resolve_network("polygon")
    assert net.max_fee_per_gas == 100 * 10**9
    assert net.max_priority_fee_per_gas == 30 * 10**9


def test_catalogue_partitions() -> None:
    assert set(mainnet_networks()) | set(testnet_networks()) == set(supported_networks())
    assert "sepolia" in testnet_networks()
    assert "ethereum" in mainnet_networks()
    assert get_chain_config(137)["name"] == "Polygon Mainnet"


def test_redact_rpc_url() -> None:
    assert redact_rpc_url("https://eth-mainnet.g.alchemy.com/v2/abc") == "https://eth-mainnet.g.alchemy.com/v2/***"
    assert redact_rpc_url("https://rpc.ankr.com/polygon") == "https://rpc.ankr.com/polygon"
