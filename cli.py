#!/usr/bin/env python3
"""
TAO Fanout — CLI for per-account transfers on the Bittensor network.

Usage:
    tao-fanout fund --wallet <name> --file <path> [--amount <tao>] [--token-amount <alpha>]
    tao-fanout distribute --wallet <name> --file <path> [--token-amount <alpha>]
    tao-fanout clawback --wallet <name> --file <path> [--to <address>]
    tao-fanout close-out --wallet <name> --file <path> [--to <address>]
    tao-fanout validate --file <path>

Examples:
    # Fund every wallet with 0.1 TAO, then 5 alpha of subnet 12 (testnet)
    tao-fanout fund --wallet funder --file wallets/voi_wallets.json --network test \\
        --amount 0.1 --token-amount 5 --netuid 12 --hotkey 5F...

    # Retry only the accounts that failed
    tao-fanout fund --wallet funder --file failed_fund_native_20261019T120000000000Z_wallets.json --amount 0.1

    # Pull everything back to the funder wallet
    tao-fanout clawback --wallet funder --file wallets/voi_wallets.json --netuid 12 --hotkey 5F...

Settings can also come from FANOUT_* environment variables or a .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

import bittensor as bt
from pydantic import ValidationError

from tao_fanout import __version__
from tao_fanout.accounts import load_accounts, parse_accounts, validate_accounts
from tao_fanout.actions import Clawback, CloseOut, FundNative, FundToken, TransferAction
from tao_fanout.batch import BatchOrchestrator
from tao_fanout.config import Settings, get_settings
from tao_fanout.exceptions import BatchSetupError
from tao_fanout.failures import persist_failures
from tao_fanout.log import setup_logging
from tao_fanout.models import Account, BatchResult, TokenRef
from tao_fanout.subtensor import SubtensorLedger, funder_account, tao_to_rao


BANNER = f"""
  ==============================================
   TAO Fanout {__version__}
   Rate-limited per-account transfers for Bittensor
  ==============================================
"""


def _load_settings(args: argparse.Namespace) -> Settings:
    return get_settings(
        network=args.network,
        funder_wallet=args.wallet,
        native_amount=getattr(args, "amount", None),
        token_amount=getattr(args, "token_amount", None),
        token_netuid=args.netuid,
        token_hotkey=args.hotkey,
        max_concurrent=args.max_concurrent,
        min_interval=args.min_interval,
        max_confirmation_rounds=args.max_rounds,
        batch_deadline=args.deadline,
        output_dir=args.output_dir,
        log_level=args.log_level,
        log_json=True if args.json_logs else None,
    )


def _token(settings: Settings) -> Optional[TokenRef]:
    if not settings.token_configured:
        return None
    return TokenRef(netuid=settings.token_netuid, hotkey=settings.token_hotkey)


def _confirm(args: argparse.Namespace, prompt: str) -> bool:
    if args.yes:
        return True
    response = input(f"\n{prompt} [y/N]: ")
    return response.lower() in ("y", "yes")


def _execute(
    settings: Settings,
    accounts: list[Account],
    steps: list[tuple[str, TransferAction]],
) -> int:
    """Run the batches, reporting and persisting each one as it settles. Returns the exit code."""
    failed: list[Path] = []

    def report(result: BatchResult) -> None:
        print()
        print(result.summary())
        path = persist_failures(result, settings.output_dir)
        if path is not None:
            failed.append(path)
            print(f"Failed accounts saved to {path}")
        else:
            print(f"All accounts were successfully processed by {result.operation}.")

    async def run() -> None:
        async with SubtensorLedger(
            network=settings.network,
            validity_period=settings.validity_period,
            tip=settings.tip,
        ) as ledger:
            orchestrator = BatchOrchestrator(ledger, settings.batch_settings())
            await orchestrator.run_sequence(accounts, steps, on_result=report)

    try:
        asyncio.run(run())
    except BatchSetupError as e:
        print(f"\nBatch aborted: {e}")
        return 1

    print()
    return 1 if failed else 0


def _prepare(args: argparse.Namespace, require_secrets: bool) -> tuple[Settings, list[Account]]:
    print(BANNER)
    settings = _load_settings(args)
    setup_logging(settings.log_level, settings.log_json)
    accounts = load_accounts(args.file, require_secrets=require_secrets)
    print(f"Loaded {len(accounts)} accounts from {args.file}")
    print(f"Network: {settings.network}")
    print(f"Wallet: {settings.funder_wallet}")
    print(f"Rate: {settings.max_concurrent} concurrent, {settings.min_interval:.3f}s between dispatches")
    return settings, accounts


def cmd_fund(args: argparse.Namespace) -> int:
    """Fund accounts with TAO, then with the token if configured."""
    settings, accounts = _prepare(args, require_secrets=False)
    token = _token(settings)

    plan = []
    if settings.native_amount > 0:
        plan.append(("fund_native", settings.native_amount, "TAO"))
    if token is not None and settings.token_amount > 0:
        plan.append(("fund_token", settings.token_amount, f"alpha (netuid {token.netuid})"))
    if not plan:
        print("Nothing to send: set --amount and/or --token-amount with --netuid/--hotkey.")
        return 1

    for operation, amount, unit in plan:
        print(f"{operation}: {amount} {unit} to each of {len(accounts)} accounts")
    if not _confirm(args, "Proceed?"):
        print("Aborted.")
        return 0

    funder = funder_account(settings.funder_wallet)
    steps: list[tuple[str, TransferAction]] = []
    for operation, amount, _ in plan:
        if operation == "fund_native":
            steps.append((operation, FundNative(funder, tao_to_rao(amount))))
        else:
            steps.append((operation, FundToken(funder, token, tao_to_rao(amount))))
    return _execute(settings, accounts, steps)


def cmd_distribute(args: argparse.Namespace) -> int:
    """Send the token to every account."""
    settings, accounts = _prepare(args, require_secrets=False)
    token = _token(settings)
    if token is None or settings.token_amount <= 0:
        print("Token distribution needs --token-amount, --netuid and --hotkey.")
        return 1

    print(f"fund_token: {settings.token_amount} alpha (netuid {token.netuid}) to each of {len(accounts)} accounts")
    if not _confirm(args, "Proceed?"):
        print("Aborted.")
        return 0

    funder = funder_account(settings.funder_wallet)
    action = FundToken(funder, token, tao_to_rao(settings.token_amount))
    return _execute(settings, accounts, [("fund_token", action)])


def _destination(args: argparse.Namespace, settings: Settings) -> str:
    if args.to:
        return args.to
    return bt.Wallet(name=settings.funder_wallet).coldkeypub.ss58_address


def cmd_clawback(args: argparse.Namespace) -> int:
    """Sweep the token and close out every account."""
    settings, accounts = _prepare(args, require_secrets=True)
    destination = _destination(args, settings)
    token = _token(settings)

    what = "token balance and TAO" if token else "TAO"
    print(f"clawback: move {what} of {len(accounts)} accounts to {destination}")
    if not _confirm(args, "Close out these accounts?"):
        print("Aborted.")
        return 0

    return _execute(settings, accounts, [("clawback", Clawback(destination, token))])


def cmd_close_out(args: argparse.Namespace) -> int:
    """Close out every account, TAO only."""
    settings, accounts = _prepare(args, require_secrets=True)
    destination = _destination(args, settings)

    print(f"close_out: close {len(accounts)} accounts to {destination}")
    if not _confirm(args, "Close out these accounts?"):
        print("Aborted.")
        return 0

    return _execute(settings, accounts, [("close_out", CloseOut(destination))])


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate an account file."""
    print(BANNER)

    try:
        accounts = parse_accounts(args.file)
    except BatchSetupError as e:
        print(f"Error parsing file: {e}")
        return 1

    print(f"Loaded {len(accounts)} accounts from {args.file}")

    is_valid, errors = validate_accounts(accounts)
    if not is_valid:
        print(f"\n✗ Found {len(errors)} validation errors:")
        for err in errors:
            print(f"  ✗ {err}")
        return 1

    with_keys = sum(1 for a in accounts if a.secret)
    print(f"\n✓ All {len(accounts)} accounts are valid")
    print(f"  With private key: {with_keys}")
    print(f"  Address only: {len(accounts) - with_keys}")
    for a in accounts[:5]:
        print(f"  {a.address[:16]}...{a.address[-8:]}")
    if len(accounts) > 5:
        print(f"  ... and {len(accounts) - 5} more")
    return 0


def _add_batch_arguments(p: argparse.ArgumentParser, amounts: bool = False) -> None:
    p.add_argument("--wallet", "-w", help="Bittensor wallet name of the funder")
    p.add_argument("--file", "-f", required=True, help="Path to account file (JSON)")
    p.add_argument("--network", "-n", help="Bittensor network (finney, test, local). Default: finney")
    p.add_argument("--netuid", type=int, help="Subnet of the token")
    p.add_argument("--hotkey", help="Hotkey the token stake is held under")
    if amounts:
        p.add_argument("--amount", type=float, help="TAO sent to each account")
        p.add_argument("--token-amount", type=float, help="Alpha sent to each account")
    p.add_argument("--max-concurrent", type=int, help="Transfers in flight at once. Default: 10")
    p.add_argument("--min-interval", type=float, help="Seconds between transfer dispatches. Default: 0.1")
    p.add_argument("--max-rounds", type=int, help="Blocks to wait for each confirmation. Default: 10")
    p.add_argument("--deadline", type=float, help="Stop starting new transfers after this many seconds")
    p.add_argument("--output-dir", "-o", help="Directory for failure files. Default: .")
    p.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    p.add_argument("--log-level", help="Log level. Default: INFO")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="tao-fanout",
        description="TAO Fanout — rate-limited per-account transfers for Bittensor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"tao-fanout {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    fund_parser = subparsers.add_parser("fund", help="Fund accounts with TAO, then the token")
    _add_batch_arguments(fund_parser, amounts=True)

    distribute_parser = subparsers.add_parser("distribute", help="Send the token to every account")
    _add_batch_arguments(distribute_parser, amounts=True)

    clawback_parser = subparsers.add_parser("clawback", help="Sweep token and close out accounts")
    _add_batch_arguments(clawback_parser)
    clawback_parser.add_argument("--to", help="Destination address. Default: funder wallet")

    close_parser = subparsers.add_parser("close-out", help="Close out accounts (TAO only)")
    _add_batch_arguments(close_parser)
    close_parser.add_argument("--to", help="Destination address. Default: funder wallet")

    validate_parser = subparsers.add_parser("validate", help="Validate an account file")
    validate_parser.add_argument("--file", "-f", required=True, help="Path to account file")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "fund": cmd_fund,
        "distribute": cmd_distribute,
        "clawback": cmd_clawback,
        "close-out": cmd_close_out,
        "validate": cmd_validate,
    }

    try:
        return commands[args.command](args)
    except ValidationError as e:
        print(f"Invalid settings:\n{e}")
        return 1
    except BatchSetupError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
