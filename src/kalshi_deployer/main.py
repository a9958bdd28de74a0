from __future__ import annotations

import argparse
from dataclasses import asdict, replace
from datetime import date
import json
import logging
from typing import Iterable

from kalshi_deployer.clients_kalshi import KalshiMarketClient
from kalshi_deployer.config import DeployerConfig, load_config
from kalshi_deployer.exchange import load_exchange
from kalshi_deployer.models import utc_now
from kalshi_deployer.orchestrator import Orchestrator
from kalshi_deployer.settlement import SettlementTracker
from kalshi_deployer.storage import Storage
from kalshi_deployer.trading_day import trading_day

LOGGER = logging.getLogger("kalshi_deployer")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("urllib3",):
        logging.getLogger(noisy).setLevel(logging.ERROR)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _resolve_day(config: DeployerConfig, raw: str | None) -> date:
    if raw:
        return date.fromisoformat(raw)
    return trading_day(utc_now(), config.exchange_timezone, config.trading_day_rollover_hour)


def _run_command(args: argparse.Namespace) -> int:
    config = load_config()
    if args.mode:
        config = replace(config, mode=args.mode.lower())
    _setup_logging(config.log_level)
    try:
        exchange = load_exchange(config)
    except Exception as exc:
        LOGGER.error("Exchange client unavailable: %s", exc)
        return 2

    storage = Storage(config.database_path)
    try:
        LOGGER.info("Starting deployment run mode=%s db=%s", config.mode, config.database_path)
        orchestrator = Orchestrator(config, storage, exchange, KalshiMarketClient.from_config(config))
        report = orchestrator.run()
        _print_json(report.to_dict())
        return 0 if report.success else 2
    finally:
        storage.close()


def _prepare_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        day = _resolve_day(config, args.date)
    except ValueError as exc:
        LOGGER.error("invalid --date: %s", exc)
        return 2
    try:
        exchange = load_exchange(config)
    except Exception as exc:
        LOGGER.error("Exchange client unavailable: %s", exc)
        return 2

    storage = Storage(config.database_path)
    try:
        LOGGER.info("Preparing batch day=%s mode=%s db=%s", day, config.mode, config.database_path)
        orchestrator = Orchestrator(config, storage, exchange, KalshiMarketClient.from_config(config))
        report = orchestrator.prepare(day)
        _print_json(report.to_dict())
        return 0 if report.success else 2
    finally:
        storage.close()


def _settle_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        exchange = load_exchange(config)
    except Exception as exc:
        LOGGER.error("Exchange client unavailable: %s", exc)
        return 2
    storage = Storage(config.database_path)
    try:
        tracker = SettlementTracker(exchange, storage, call_delay_seconds=config.call_delay_seconds)
        summary = tracker.run()
        _print_json(summary.to_dict())
        return 0
    except Exception as exc:
        LOGGER.error("settle failed: %s", exc)
        return 2
    finally:
        storage.close()


def _pause_command(args: argparse.Namespace, paused: bool) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        day = _resolve_day(config, args.date)
    except ValueError as exc:
        LOGGER.error("invalid --date: %s", exc)
        return 2
    storage = Storage(config.database_path)
    try:
        batch = storage.set_batch_paused(day, paused, config.unit_size_cents)
        LOGGER.info("batch_%s day=%s batch=%s", "paused" if paused else "resumed", day, batch.id)
        _print_json(asdict(batch))
        return 0
    finally:
        storage.close()


def _blacklist_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    storage = Storage(config.database_path)
    try:
        _print_json([asdict(entry) for entry in storage.list_illiquid_markets()])
        return 0
    finally:
        storage.close()


def _clear_blacklist_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    storage = Storage(config.database_path)
    try:
        removed = storage.clear_illiquid_markets(None if args.all else args.ticker)
        LOGGER.info("blacklist_cleared ticker=%s removed=%s", args.ticker or "*", removed)
        _print_json({"removed": removed})
        return 0
    finally:
        storage.close()


def _report_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    storage = Storage(config.database_path)
    try:
        _print_json(storage.report())
    finally:
        storage.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Kalshi sports favourites capital deployer"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one reconcile/reprice/deploy pass")
    run.add_argument("--mode", choices=("paper", "live"), default=None)
    run.set_defaults(func=_run_command)

    prepare = sub.add_parser("prepare", help="Size a trading day's batch as pending orders without submitting")
    prepare.add_argument("--date", default=None, help="Trading day YYYY-MM-DD (default: today)")
    prepare.set_defaults(func=_prepare_command)

    settle = sub.add_parser("settle", help="Record results of settled markets")
    settle.set_defaults(func=_settle_command)

    pause = sub.add_parser("pause", help="Pause a trading day's batch")
    pause.add_argument("--date", default=None, help="Trading day YYYY-MM-DD (default: today)")
    pause.set_defaults(func=lambda args: _pause_command(args, True))

    resume = sub.add_parser("resume", help="Resume a paused trading day's batch")
    resume.add_argument("--date", default=None, help="Trading day YYYY-MM-DD (default: today)")
    resume.set_defaults(func=lambda args: _pause_command(args, False))

    blacklist = sub.add_parser("blacklist", help="List illiquid (blacklisted) markets")
    blacklist.set_defaults(func=_blacklist_command)

    clear = sub.add_parser("clear-blacklist", help="Remove markets from the blacklist")
    target = clear.add_mutually_exclusive_group(required=True)
    target.add_argument("--ticker", default=None)
    target.add_argument("--all", action="store_true")
    clear.set_defaults(func=_clear_blacklist_command)

    report = sub.add_parser("report", help="Print ledger summary from SQLite")
    report.set_defaults(func=_report_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return int(args.func(args))
    except Exception as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 2


def main() -> None:
    raise SystemExit(cli())
