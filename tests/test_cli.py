from __future__ import annotations

import json
from pathlib import Path

import pytest
from eth_account import Account

from dao_deployer.config.network import resolve_network
from dao_deployer.config.settings import DeployerSettings
from dao_deployer.setup import cli
from dao_deployer.setup.service import DAODeployer

from conftest import RECIPIENT, SENDER, FakeChainClient, sign_transfer


@pytest.fixture()
def deployer(
    settings: DeployerSettings, fake_client: FakeChainClient, audit_logger, monkeypatch: pytest.MonkeyPatch
) -> DAODeployer:
    monkeypatch.delenv("ALCHEMY_API_KEY", raising=False)
    instance = DAODeployer(settings, client_factory=lambda n: fake_client, resolver=resolve_network, audit_logger=audit_logger)
    monkeypatch.setattr(cli, "build_deployer", lambda args: instance)
    return instance


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "dao.json"
    path.write_text(
        json.dumps(
            {
                "tokenName": "Example DAO",
                "tokenSymbol": "EXD",
                "initialSupply": "1000",
                "governorSettings": {"votingDelay": 1, "votingPeriod": 100, "quorumPercentage": 4},
                "timelockSettings": {"minDelay": 0},
            }
        )
    )
    return path


def test_networks_lists_catalogue(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["networks", "--testnets", "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert all(r["testnet"] for r in rows)
    assert "sepolia" in [r["key"] for r in rows]


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([]) == 2


def test_generate_list_and_sweep(deployer: DAODeployer, fake_client: FakeChainClient, capsys) -> None:
    assert cli.main(["wallet-generate", "--network", "sepolia", "--json"]) == 0
    created = json.loads(capsys.readouterr().out)
    assert "privateKey" not in created

    assert cli.main(["wallet-list"]) == 0
    assert created["address"] in capsys.readouterr().out

    fake_client.set_balance(created["address"], 10**18)
    assert cli.main(["wallet-delete", "--address", created["address"], "--network", "sepolia"]) == 2
    assert "Refusing" in capsys.readouterr().err

    code = cli.main(["wallet-sweep", "--address", created["address"], "--to", RECIPIENT, "--network", "sepolia", "--json"])
    assert code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["status"] == "swept" and result["keyDeleted"] is True


def test_sweep_unknown_wallet_reports_error(deployer: DAODeployer, capsys) -> None:
    code = cli.main(["wallet-sweep", "--address", "0x" + "99" * 20, "--to", RECIPIENT, "--network", "sepolia"])
    assert code == 1
    assert capsys.readouterr().err.startswith("Error: ")


def test_plan_token_writes_step(deployer: DAODeployer, config_file: Path, tmp_path: Path, capsys) -> None:
    out = tmp_path / "plans" / "token.json"
    code = cli.main(
        ["plan-token", "--config", str(config_file), "--sender", SENDER, "--network", "sepolia", "--out", str(out)]
    )
    assert code == 0
    text = capsys.readouterr().out
    assert "Step 1: deploy TOKEN" in text
    step = json.loads(out.read_text())
    assert step["unsignedTransaction"]["chainId"] == 11155111
    assert step["unsignedTransaction"]["to"] is None


def test_plan_governor_without_dependencies_fails(deployer: DAODeployer, config_file: Path, capsys) -> None:
    code = cli.main(["plan-governor", "--config", str(config_file), "--sender", SENDER, "--network", "sepolia"])
    assert code == 1
    assert "Governor deployment needs" in capsys.readouterr().err


def test_validate_config_reports_issues(tmp_path: Path, capsys) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"tokenName": "X", "tokenSymbol": "TOOLONGSYMBOL", "initialSupply": "1"}))
    assert cli.main(["validate-config", "--config", str(path)]) == 1
    assert "Token symbol too long" in capsys.readouterr().out


def test_session_commands(deployer: DAODeployer, config_file: Path, capsys) -> None:
    assert cli.main(["session-start", "--network", "sepolia", "--sender", SENDER, "--json"]) == 0
    session_id = json.loads(capsys.readouterr().out)["sessionId"]
    assert cli.main(["session-next", "--session", session_id, "--config", str(config_file), "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["role"] == "TOKEN"
    assert cli.main(["session-record", "--session", session_id, "--address", RECIPIENT]) == 0
    assert "awaiting_timelock" in capsys.readouterr().out


def test_delete_unknown_wallet(deployer: DAODeployer, capsys) -> None:
    code = cli.main(["wallet-delete", "--address", "0x" + "99" * 20, "--network", "sepolia", "--force"])
    assert code == 1
    assert "No such wallet" in capsys.readouterr().out


def test_broadcast_and_status(deployer: DAODeployer, fake_client: FakeChainClient, tmp_path: Path, capsys) -> None:
    account = Account.create()
    raw_file = tmp_path / "signed.txt"
    raw_file.write_text("0x" + sign_transfer(account).hex() + "\n")

    assert cli.main(["tx-status", "--tx", "0x" + "ab" * 32, "--network", "sepolia"]) == 0
    assert "pending" in capsys.readouterr().out

    assert cli.main(["broadcast", "--raw-file", str(raw_file), "--network", "sepolia", "--wait", "--json"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["from"] == account.address
    assert result["confirmation"]["state"] == "confirmed"
    assert len(fake_client.sent) == 1

    assert cli.main(["tx-status", "--tx", "0x" + "ab" * 32, "--network", "sepolia", "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["state"] == "confirmed"


def test_broadcast_for_wrong_chain_fails(deployer: DAODeployer, fake_client: FakeChainClient, capsys) -> None:
    raw = "0x" + sign_transfer(Account.create(), chain_id=1).hex()
    assert cli.main(["broadcast", "--raw", raw, "--network", "sepolia"]) == 1
    assert capsys.readouterr().err.startswith("Error: ")
    assert fake_client.sent == []


def test_api_key_commands(deployer: DAODeployer, capsys) -> None:
    value = "alchemy-key-0123456789abcdef"
    assert cli.main(["api-key-set", "--name", "ALCHEMY_API_KEY", "--value", value]) == 0
    capsys.readouterr()

    assert cli.main(["api-key-list", "--json"]) == 0
    out = capsys.readouterr().out
    assert value not in out
    rows = {r["key"]: r for r in json.loads(out)}
    assert rows["ALCHEMY_API_KEY"]["source"] == "config"

    assert cli.main(["api-key-set", "--name", "INFURA_API_KEY", "--value", "short"]) == 1
    capsys.readouterr()

    assert cli.main(["api-key-remove", "--name", "ALCHEMY_API_KEY"]) == 0
    assert cli.main(["api-key-remove", "--name", "ALCHEMY_API_KEY"]) == 1
    assert deployer.api_keys.load() == {}
