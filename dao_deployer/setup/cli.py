#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dao_deployer.config.logging_config import setup_logger
from dao_deployer.config.network import get_chain_config, mainnet_networks, testnet_networks
from dao_deployer.config.settings import DeployerSettings
from dao_deployer.errors import DAODeployerError, InvalidConfigError
from dao_deployer.helpers.transactions import format_transaction_summary

from .api_keys import API_KEY_NAMES
from .deploy_dao import DAOConfig, DeploymentPlanStep, format_constructor_args
from .service import DAODeployer


def build_deployer(args: argparse.Namespace) -> DAODeployer:
    settings = DeployerSettings.from_env(args.env_file)
    setup_logger(
        "dao_deployer",
        level=logging.DEBUG if args.debug else logging.INFO,
        detailed=args.debug,
        log_dir=settings.data_directory / "logs",
    )
    return DAODeployer(settings)


def _emit(args: argparse.Namespace, payload: Any, text: str | None = None) -> None:
    if args.json or text is None:
        print(json.dumps(payload, indent=2))
    else:
        print(text)


def _load_config(path: str) -> DAOConfig:
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidConfigError(f"Cannot read DAO config {path}: {e}", path=path)
    return DAOConfig.from_dict(data)


def _print_step(args: argparse.Namespace, deployer: DAODeployer, step: DeploymentPlanStep) -> None:
    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(step.to_dict(), indent=2))
    network = deployer.chains.network(args.network)
    text = "\n".join(
        [
            f"Step {step.ordinal}: deploy {step.role.value} ({step.contract_name})",
            "Constructor args:",
            format_constructor_args(step.constructor_args),
            format_transaction_summary(step.unsigned_transaction, network),
            f"Estimated cost: {deployer.estimator.to_display_cost(step.gas_estimate, network.key)}",
            *(f"- {line}" for line in step.instructions),
        ]
    )
    _emit(args, step.to_dict(), text)


def _fail(e: Exception) -> int:
    if isinstance(e, DAODeployerError):
        print(f"Error: {e.message}", file=sys.stderr)
        if isinstance(e, InvalidConfigError):
            for issue in e.issues:
                print(f"  - {issue}", file=sys.stderr)
    else:
        print(f"Error: {e}", file=sys.stderr)
    return 1


def cmd_networks(args: argparse.Namespace) -> int:
    if args.testnets:
        table = testnet_networks()
    elif args.mainnets:
        table = mainnet_networks()
    else:
        table = {**mainnet_networks(), **testnet_networks()}
    rows = [
        {
            "key": key,
            "name": cfg["name"],
            "chainId": cfg["chain_id"],
            "symbol": cfg["currency"]["symbol"],
            "testnet": cfg["testnet"],
            "gasMultiplier": cfg.get("gas_multiplier"),
        }
        for key, cfg in table.items()
    ]
    text = "\n".join(
        f"{r['key']:<18} {r['chainId']:>9}  {r['symbol']:<8} {'testnet' if r['testnet'] else 'mainnet'}"
        for r in rows
    )
    _emit(args, rows, text)
    return 0


def cmd_wallet_generate(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        wallet = deployer.generate_ephemeral_wallet(args.network)
        network = get_chain_config(wallet.network_name)
        _emit(
            args,
            wallet.to_dict(),
            f"Created ephemeral wallet: {wallet.address}\n"
            f"Network: {network['name']}\n"
            f"Key file: {wallet.key_file}\n"
            f"Fund it with {network['currency']['symbol']}, then sweep and delete it when done.",
        )
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_wallet_list(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        wallets = deployer.list_ephemeral_wallets()
        if not wallets:
            _emit(args, [], "No ephemeral wallets.")
            return 0
        text = "\n".join(f"{w.address}  {w.network_name:<18} {w.age_hours():>8.2f}h" for w in wallets)
        _emit(args, [w.to_dict() for w in wallets], text)
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_wallet_balance(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        bal = asyncio.run(deployer.get_wallet_balance(args.address, args.network))
        _emit(args, bal.to_dict(), f"{bal.address}: {format(bal.balance, 'f')} {bal.symbol}")
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_wallet_sweep(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        result = asyncio.run(
            deployer.sweep_ephemeral_wallet(
                args.address,
                args.to,
                args.network,
                delete_after=not args.keep_key,
                timeout=args.timeout,
            )
        )
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    lines = [f"Sweep {result.status.value}: {format(result.amount_swept, 'f')} -> {result.recipient_address}"]
    if result.transaction_hash:
        lines.append(f"TX: {result.transaction_hash}")
    lines.append(f"Key deleted: {result.key_deleted}")
    if result.note:
        lines.append(result.note)
    if result.error:
        lines.append(f"Error: {result.error}")
    _emit(args, result.to_dict(), "\n".join(lines))
    return 0 if result.success else 1


def cmd_wallet_delete(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        wallet = deployer.find_ephemeral_wallet(args.address, args.network)
        if wallet is None:
            _emit(args, {"deleted": False}, "No such wallet")
            return 1
        if not args.force:
            bal = asyncio.run(deployer.get_wallet_balance(wallet.address, args.network))
            if bal.has_balance:
                print(
                    f"Refusing to delete {bal.address}: balance {format(bal.balance, 'f')} {bal.symbol}. "
                    "Sweep it first or pass --force.",
                    file=sys.stderr,
                )
                return 2
        deleted = deployer.delete_ephemeral_wallet(wallet.address, args.network)
        _emit(args, {"deleted": deleted}, "Deleted" if deleted else "No such wallet")
        return 0 if deleted else 1
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args.config)
    except DAODeployerError as e:
        return _fail(e)
    issues = config.validate()
    _emit(args, {"valid": not issues, "issues": issues}, "\n".join(issues) or "Configuration OK")
    return 0 if not issues else 1


def cmd_plan_token(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        step = asyncio.run(deployer.plan_token_deployment(_load_config(args.config), args.sender, args.network))
        _print_step(args, deployer, step)
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_plan_timelock(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        step = asyncio.run(deployer.plan_timelock_deployment(_load_config(args.config), args.sender, args.network))
        _print_step(args, deployer, step)
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_plan_governor(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        step = asyncio.run(
            deployer.plan_governor_deployment(
                _load_config(args.config), args.token, args.timelock, args.sender, args.network
            )
        )
        _print_step(args, deployer, step)
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_plan_factory(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        step = asyncio.run(deployer.plan_factory_deployment(args.sender, args.network, upgradeable=not args.v1))
        _print_step(args, deployer, step)
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_session_start(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        session = deployer.start_session(args.network, args.sender)
        _emit(args, session.to_dict(), f"Session: {session.session_id} ({session.state.name})")
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_session_next(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        session = deployer.sessions.load(args.session)
        args.network = session.network_name
        step = asyncio.run(deployer.plan_next(args.session, _load_config(args.config)))
        if step is None:
            _emit(args, session.to_dict(), "Deployment complete: " + json.dumps(session.to_dict()))
            return 0
        _print_step(args, deployer, step)
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_session_record(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        session = deployer.record_deployment(args.session, args.address)
        _emit(args, session.to_dict(), f"Session {session.session_id}: {session.state.name}")
        return 0
    except (DAODeployerError, ValueError) as e:
        return _fail(e)


def cmd_wait(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        outcome = asyncio.run(deployer.wait_for_confirmation(args.tx, args.network, args.timeout))
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    _emit(args, outcome.to_dict(), f"{args.tx}: {outcome.state.value}")
    return 0 if outcome.confirmed else 1


def _read_raw(args: argparse.Namespace) -> str:
    if args.raw_file:
        try:
            return Path(args.raw_file).read_text().strip()
        except OSError as e:
            raise InvalidConfigError(f"Cannot read signed transaction {args.raw_file}: {e}", path=args.raw_file)
    return args.raw


def cmd_broadcast(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        raw = _read_raw(args)

        async def run():
            info = await deployer.broadcast_signed(raw, args.network)
            if not args.wait:
                return info, None
            return info, await deployer.wait_for_confirmation(info.tx_hash, args.network, args.timeout)

        info, outcome = asyncio.run(run())
        payload = info.to_dict()
        text = f"Broadcast {info.tx_hash} from {info.sender} (nonce {info.nonce})"
        if outcome is not None:
            payload["confirmation"] = outcome.to_dict()
            text += f"\nStatus: {outcome.state.value}"
            if outcome.receipt is not None and outcome.receipt.contract_address:
                text += f"\nContract: {outcome.receipt.contract_address}"
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    _emit(args, payload, text)
    return 0 if outcome is None or outcome.confirmed else 1


def cmd_tx_status(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        outcome = asyncio.run(deployer.transaction_status(args.tx, args.network))
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    text = f"{args.tx}: {outcome.state.value}"
    if outcome.receipt is not None:
        text += f" (block {outcome.receipt.block_number}, gas used {outcome.receipt.gas_used:,})"
    _emit(args, outcome.to_dict(), text)
    return 0


def cmd_api_key_set(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        deployer.set_api_key(args.name, args.value)
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    _emit(args, {"key": args.name, "configured": True}, f"Saved {args.name} to {deployer.api_keys.path}")
    return 0


def cmd_api_key_remove(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        removed = deployer.remove_api_key(args.name)
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    _emit(args, {"key": args.name, "removed": removed}, f"Removed {args.name}" if removed else f"{args.name} was not saved")
    return 0 if removed else 1


def cmd_api_key_list(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        rows = deployer.list_api_keys()
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    text = "\n".join(f"{r['key']:<30} {r['source'] or 'missing'}" for r in rows)
    _emit(args, rows, text)
    return 0


def cmd_api_key_import(args: argparse.Namespace) -> int:
    try:
        deployer = build_deployer(args)
        imported, skipped = deployer.import_api_keys_from_env()
    except (DAODeployerError, ValueError) as e:
        return _fail(e)
    _emit(
        args,
        {"imported": imported, "skipped": skipped},
        f"Imported {len(imported)} API keys" + (": " + ", ".join(imported) if imported else ""),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--env-file", default=None, help="Optional .env to load (DAO_DEPLOYER_*, API keys)")
    common.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    common.add_argument("--debug", action="store_true", help="Verbose logging")

    parser = argparse.ArgumentParser(prog="dao-deployer", description="DAO deployment preparation and ephemeral wallets")
    sub = parser.add_subparsers(dest="cmd")

    p_net = sub.add_parser("networks", parents=[common], help="List supported networks")
    group = p_net.add_mutually_exclusive_group()
    group.add_argument("--testnets", action="store_true")
    group.add_argument("--mainnets", action="store_true")
    p_net.set_defaults(func=cmd_networks)

    p_gen = sub.add_parser("wallet-generate", parents=[common], help="Create an ephemeral funding wallet")
    p_gen.add_argument("--network", required=True)
    p_gen.set_defaults(func=cmd_wallet_generate)

    p_list = sub.add_parser("wallet-list", parents=[common], help="List ephemeral wallets (newest first)")
    p_list.set_defaults(func=cmd_wallet_list)

    p_bal = sub.add_parser("wallet-balance", parents=[common], help="Show native balance of a wallet")
    p_bal.add_argument("--address", required=True)
    p_bal.add_argument("--network", required=True)
    p_bal.set_defaults(func=cmd_wallet_balance)

    p_sweep = sub.add_parser("wallet-sweep", parents=[common], help="Send the whole balance (net of gas) to a recipient")
    p_sweep.add_argument("--address", required=True)
    p_sweep.add_argument("--to", required=True, help="Recipient address")
    p_sweep.add_argument("--network", required=True)
    p_sweep.add_argument("--keep-key", action="store_true", help="Do not delete the key after a verified sweep")
    p_sweep.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the receipt")
    p_sweep.set_defaults(func=cmd_wallet_sweep)

    p_del = sub.add_parser("wallet-delete", parents=[common], help="Delete an ephemeral wallet key file")
    p_del.add_argument("--address", required=True)
    p_del.add_argument("--network", required=True)
    p_del.add_argument("--force", action="store_true", help="Skip the zero-balance check")
    p_del.set_defaults(func=cmd_wallet_delete)

    p_val = sub.add_parser("validate-config", parents=[common], help="Check a DAO config file")
    p_val.add_argument("--config", required=True)
    p_val.set_defaults(func=cmd_validate_config)

    for name, func, help_text in (
        ("plan-token", cmd_plan_token, "Prepare the token deployment transaction"),
        ("plan-timelock", cmd_plan_timelock, "Prepare the timelock deployment transaction"),
        ("plan-governor", cmd_plan_governor, "Prepare the governor deployment transaction"),
    ):
        p = sub.add_parser(name, parents=[common], help=help_text)
        p.add_argument("--config", required=True, help="DAO config JSON")
        p.add_argument("--sender", required=True, help="Hardware wallet address that will sign")
        p.add_argument("--network", required=True)
        p.add_argument("--out", default=None, help="Also write the plan step JSON here")
        if name == "plan-governor":
            p.add_argument("--token", default=None, help="Deployed token address")
            p.add_argument("--timelock", default=None, help="Deployed timelock address")
        p.set_defaults(func=func)

    p_fac = sub.add_parser("plan-factory", parents=[common], help="Prepare a DAO factory deployment transaction")
    p_fac.add_argument("--sender", required=True)
    p_fac.add_argument("--network", required=True)
    p_fac.add_argument("--v1", action="store_true", help="Use SimpleDAOFactory instead of V2")
    p_fac.add_argument("--out", default=None)
    p_fac.set_defaults(func=cmd_plan_factory)

    p_ss = sub.add_parser("session-start", parents=[common], help="Start a tracked token/timelock/governor deployment")
    p_ss.add_argument("--network", required=True)
    p_ss.add_argument("--sender", required=True)
    p_ss.set_defaults(func=cmd_session_start)

    p_sn = sub.add_parser("session-next", parents=[common], help="Plan the next step of a session")
    p_sn.add_argument("--session", required=True)
    p_sn.add_argument("--config", required=True)
    p_sn.add_argument("--out", default=None)
    p_sn.set_defaults(func=cmd_session_next)

    p_sr = sub.add_parser("session-record", parents=[common], help="Record the deployed address of the current step")
    p_sr.add_argument("--session", required=True)
    p_sr.add_argument("--address", required=True)
    p_sr.set_defaults(func=cmd_session_record)

    p_wait = sub.add_parser("wait", parents=[common], help="Wait for a transaction receipt")
    p_wait.add_argument("--tx", required=True)
    p_wait.add_argument("--network", required=True)
    p_wait.add_argument("--timeout", type=float, default=None)
    p_wait.set_defaults(func=cmd_wait)

    p_bc = sub.add_parser("broadcast", parents=[common], help="Broadcast a transaction signed on the hardware wallet")
    raw_group = p_bc.add_mutually_exclusive_group(required=True)
    raw_group.add_argument("--raw", help="Signed transaction hex")
    raw_group.add_argument("--raw-file", help="File holding the signed transaction hex")
    p_bc.add_argument("--network", required=True)
    p_bc.add_argument("--wait", action="store_true", help="Wait for the receipt after broadcasting")
    p_bc.add_argument("--timeout", type=float, default=None)
    p_bc.set_defaults(func=cmd_broadcast)

    p_st = sub.add_parser("tx-status", parents=[common], help="Check a transaction without waiting")
    p_st.add_argument("--tx", required=True)
    p_st.add_argument("--network", required=True)
    p_st.set_defaults(func=cmd_tx_status)

    p_ks = sub.add_parser("api-key-set", parents=[common], help="Save an RPC/explorer API key")
    p_ks.add_argument("--name", required=True, choices=API_KEY_NAMES)
    p_ks.add_argument("--value", required=True)
    p_ks.set_defaults(func=cmd_api_key_set)

    p_kr = sub.add_parser("api-key-remove", parents=[common], help="Remove a saved API key")
    p_kr.add_argument("--name", required=True, choices=API_KEY_NAMES)
    p_kr.set_defaults(func=cmd_api_key_remove)

    p_kl = sub.add_parser("api-key-list", parents=[common], help="Show which API keys are configured")
    p_kl.set_defaults(func=cmd_api_key_list)

    p_ki = sub.add_parser("api-key-import", parents=[common], help="Save API keys found in the environment")
    p_ki.set_defaults(func=cmd_api_key_import)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
