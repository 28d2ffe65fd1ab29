"""Per-day tick dump from Polygon v3 (trades + quotes).

For every day: list the active universe (or use --symbols), fetch all trades
and quotes per symbol with at most --concurrency symbols in flight, and write
one sorted, lz4-compressed Arrow stream per symbol:

    <output_root>/<YYYY-MM-DD>/<SYMBOL>-<YYYY-MM-DD>.arrow.lz4

Exit codes: 0 done (possibly with per-symbol failures), 1 day aborted on a
transport failure, 2 bad configuration, 3 stopped by SIGINT/SIGTERM before
every day ran.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
import uuid

from ingestion.polygon.source import PolygonRESTClient
from tickdump.exceptions.core import ConfigError, FatalFetchError
from tickdump.runtime.driver import DayDriver
from tickdump.utils.config import DumpConfig, load_config
from tickdump.utils.logger import get_logger, init_logging, log_error, log_info

EXIT_OK = 0
EXIT_FATAL_FETCH = 1
EXIT_CONFIG = 2
EXIT_STOPPED = 3


def _csv(s: str | None) -> list[str] | None:
    if s is None:
        return None
    return [x.strip() for x in s.split(",") if x.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tick dump (Polygon trades + quotes)")
    parser.add_argument("--config", default=None, help="JSON config file (see configs/tickdump.example.json)")
    parser.add_argument("--days", default=None, help="comma-separated, e.g. 2022-12-22,2022-12-23")
    parser.add_argument("--output-root", default=None, help="archive root")
    parser.add_argument("--concurrency", type=int, default=None, help="max symbols in flight")
    parser.add_argument("--on-fetch-failure", choices=("abort", "skip"), default=None)
    parser.add_argument("--symbols", default=None, help="comma-separated fixed universe; default: active tickers")
    parser.add_argument("--log-profile", default=None, help="profile in the logging config")
    parser.add_argument("--no-progress", action="store_true", default=False)
    return parser


def config_from_args(args: argparse.Namespace) -> DumpConfig:
    return load_config(
        args.config,
        days=_csv(args.days),
        output_root=args.output_root,
        concurrency=args.concurrency,
        on_fetch_failure=args.on_fetch_failure,
        symbols=_csv(args.symbols),
        log_profile=args.log_profile,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = config_from_args(args)
        api_key = cfg.require_api_key()
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    if not cfg.days:
        print("config error: no days given (--days or `days` in --config)", file=sys.stderr)
        return EXIT_CONFIG

    try:
        init_logging(cfg.logging_config, run_id=uuid.uuid4().hex[:12], mode=cfg.log_profile)
    except (OSError, KeyError, TypeError, ValueError) as e:
        print(f"config error: logging ({cfg.logging_config}): {e}", file=sys.stderr)
        return EXIT_CONFIG
    logger = get_logger("tickdump.apps.ticks")

    stop_event = threading.Event()
    def _handle_stop(signum, _frame):
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_stop)
    signal.signal(signal.SIGTERM, _handle_stop)

    log_info(
        logger,
        "app.start",
        days=cfg.days,
        output_root=str(cfg.output_root),
        concurrency=cfg.concurrency,
        on_fetch_failure=cfg.on_fetch_failure,
        n_fixed_symbols=len(cfg.symbols),
    )

    with PolygonRESTClient(
        api_key=api_key,
        base_url=cfg.polygon.base_url,
        timeout=cfg.polygon.timeout_s,
        pool_size=cfg.concurrency,
    ) as client:
        driver = DayDriver(
            config=cfg,
            client=client,
            stop_event=stop_event,
            progress=not args.no_progress,
        )
        try:
            summary = driver.run()
        except FatalFetchError as e:
            log_error(
                logger,
                "app.aborted",
                day=e.day,
                symbol=e.symbol,
                status=e.cause.status,
                url=e.cause.url,
                error_count=driver.errors.value,
            )
            print(f"aborted on {e.day} ({e.symbol}): {e.cause}", file=sys.stderr)
            print(f"errors: {driver.errors.value}")
            return EXIT_FATAL_FETCH

    for rep in summary.reports:
        c = rep.counts
        print(f"{rep.day}: ok={c['ok']} failed={c['failed']} not_started={c['not_started']}")
    print(f"errors: {summary.error_count}")
    if summary.stopped:
        print(f"stopped: {len(summary.reports)}/{len(cfg.days)} days ran")
        return EXIT_STOPPED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
