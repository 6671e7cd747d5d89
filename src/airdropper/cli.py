"""airdropper command line.

Usage:
    airdropper -c airdropper.toml snapshot
    airdropper -c airdropper.toml allocate
    airdropper -c airdropper.toml check
    airdropper -c airdropper.toml send [--seed-file seed.txt] [--wait] [--yes]
    airdropper -c airdropper.toml confirm
    airdropper -w wallets_confirmed.csv display
"""

import argparse
import logging
from pathlib import Path

from xrpl.wallet import Wallet

from airdropper.config import DEFAULT_CONFIG, Settings, load_settings, load_wallet
from airdropper.errors import AirdropError, ConfigError
from airdropper.logging_config import setup_logging
from airdropper.stages import Pipeline, StageReport
from airdropper.xrpl_client import XrplLedgerClient, probe

log = logging.getLogger("airdropper.cli")


def build_client(settings: Settings, wallet: Wallet | None = None) -> XrplLedgerClient:
    if settings.ledger.probe:
        probe(settings.ledger.rpc_url, timeout=settings.ledger.timeout)
    return XrplLedgerClient(
        settings.ledger.rpc_url,
        asset=settings.asset.to_asset(),
        wallet=wallet,
        horizon=settings.ledger.horizon,
    )


def _optional_wallet(settings: Settings) -> Wallet | None:
    """The funding wallet when one is configured. Only `send` insists on it."""
    try:
        return load_wallet(settings.funding)
    except ConfigError as e:
        log.debug("No funding wallet: %s", e)
        return None


def _blacklist(settings: Settings, wallet: Wallet | None) -> list[str]:
    blacklist = list(settings.distribution.blacklist)
    if wallet is not None and wallet.address not in blacklist:
        blacklist.append(wallet.address)
    return blacklist


def _print_report(report: StageReport, pipeline: Pipeline) -> None:
    print(f"{report.stage}: {sum(report.counts.values())} entries, {report.attempts} attempt(s)")
    for status, n in sorted(report.counts.items()):
        amount = report.amounts.get(status, 0)
        shown = pipeline.asset.from_atomic(amount) if pipeline.asset else str(amount)
        print(f"  {status:<13} {n:>8}  {shown}")
    if report.path is not None:
        print(f"  written to {report.path}")


def _pipeline(args: argparse.Namespace, settings: Settings, client=None, wallet: Wallet | None = None) -> Pipeline:
    return Pipeline(
        args.wallet_list or settings.wallet_list,
        client,
        asset=settings.asset.to_asset(),
        retry=settings.retry,
        fee=settings.fee,
        funding_address=wallet.address if wallet else None,
        dry_run=args.dry_run,
    )


def cmd_snapshot(args: argparse.Namespace, settings: Settings) -> int:
    wallet = _optional_wallet(settings)
    asset = settings.holdings_asset.to_asset()
    pipeline = _pipeline(args, settings, build_client(settings), wallet)
    records = pipeline.snapshot(
        args.output or settings.snapshot_file,
        asset,
        minimum_balance=asset.to_atomic(settings.distribution.minimum_balance),
        blacklist=_blacklist(settings, wallet),
    )
    print(f"snapshot: {len(records)} holders of {asset}")
    return 0


def cmd_allocate(args: argparse.Namespace, settings: Settings) -> int:
    wallet = _optional_wallet(settings)
    holdings = settings.holdings_asset.to_asset()
    pipeline = _pipeline(args, settings, None, wallet)
    report = pipeline.allocate(
        args.snapshot or settings.snapshot_file,
        pipeline.asset.to_atomic(settings.distribution.total),
        minimum_balance=holdings.to_atomic(settings.distribution.minimum_balance),
        blacklist=_blacklist(settings, wallet),
    )
    _print_report(report, pipeline)
    return 0


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = _pipeline(args, settings, build_client(settings))
    _print_report(pipeline.check(), pipeline)
    return 0


def cmd_send(args: argparse.Namespace, settings: Settings) -> int:
    wallet = load_wallet(settings.funding, args.seed_file)
    pipeline = _pipeline(args, settings, build_client(settings, wallet), wallet)
    _print_report(pipeline.send(wait=args.wait, assume_yes=args.yes), pipeline)
    return 0


def cmd_confirm(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = _pipeline(args, settings, build_client(settings))
    report = pipeline.confirm()
    _print_report(report, pipeline)
    return 0


def cmd_display(args: argparse.Namespace, settings: Settings | None) -> int:
    if settings is None:
        pipeline = Pipeline(args.wallet_list, None)
    else:
        pipeline = _pipeline(args, settings)
    _print_report(pipeline.display(args.wallet_list), pipeline)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="airdropper", description="Resumable token airdrops on the XRP Ledger")
    parser.add_argument("-c", "--config", type=Path, default=None, help=f"TOML config file (default: {DEFAULT_CONFIG})")
    parser.add_argument("-w", "--wallet-list", type=Path, default=None, help="Wallet list CSV, overrides the config")
    parser.add_argument("-d", "--dry-run", action="store_true", help="Do lookups only, no writes and no submissions")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")

    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("snapshot", help="Record holder balances of the snapshot asset")
    p.add_argument("-o", "--output", type=Path, default=None, help="Snapshot CSV, overrides the config")

    p = sub.add_parser("allocate", aliases=["wallet-list"], help="Build the wallet list from a snapshot")
    p.add_argument("-s", "--snapshot", type=Path, default=None, help="Snapshot CSV, overrides the config")

    sub.add_parser("check", help="Check that recipients can receive the asset")

    p = sub.add_parser("send", help="Submit transfers to qualified recipients")
    p.add_argument("--seed-file", type=Path, default=None, help="File holding the funding seed")
    p.add_argument("--wait", action="store_true", help="Wait for each transaction to finalize before the next")
    p.add_argument("-y", "--yes", action="store_true", help="Don't ask before sending")

    sub.add_parser("confirm", help="Confirm submitted transfers")
    sub.add_parser("display", help="Summarize a wallet list")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.log_level)

    commands = {
        "snapshot": cmd_snapshot,
        "allocate": cmd_allocate,
        "wallet-list": cmd_allocate,
        "check": cmd_check,
        "send": cmd_send,
        "confirm": cmd_confirm,
        "display": cmd_display,
    }
    handler = commands[args.command]

    try:
        if args.command == "display" and args.wallet_list is not None and args.config is None:
            settings = None
        else:
            settings = load_settings(args.config)
        if args.dry_run:
            log.info("Dry run: nothing will be written or submitted")
        return handler(args, settings)
    except AirdropError as e:
        log.error("%s failed: %s", args.command, e)
        return 1
    except KeyboardInterrupt:
        log.warning("%s interrupted; the last checkpoint written is intact", args.command)
        return 130
