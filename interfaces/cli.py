"""
Backtest command line.

Usage:
    python -m interfaces.cli <csv_path> [mtf_factor] [--config FILE] [--grid]
                             [--workers N] [--no-mtf] [--plot DIR] [--log-level LEVEL]

Exit codes:
    0  success; prints "Final equity: X | Trades: N | MaxDD: P%"
    1  no bar file given (usage is printed)
    2  bar file (or config) cannot be loaded, or holds no bars
"""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from backtesting.engine import BacktestError, run_backtest
from backtesting.grid_search import run_grid_search
from backtesting.reports import format_grid_table, format_summary, plot_equity
from core.config import AppConfig, ConfigError, load_config
from data.candles import load_bars_csv
from monitoring.logger import log_event, setup_logging

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_LOAD_FAILED = 2

DEFAULT_MTF_FACTOR = 12


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="backtester",
        description="Replay a historical bar file through the indicator modules and report the result",
    )
    p.add_argument("csv_path", nargs="?", help="Bar file: header line, then timestamp,open,high,low,close,volume")
    p.add_argument("mtf_factor", nargs="?", type=int, default=None,
                   help=f"Bars per synthetic higher-timeframe bar (default {DEFAULT_MTF_FACTOR}, minimum 1)")
    p.add_argument("--config", help="YAML configuration file (built-in defaults when omitted)")
    p.add_argument("--grid", action="store_true", help="Run the weight grid search and print the leaderboard")
    p.add_argument("--workers", type=int, default=None, help="Grid search worker processes (default from config)")
    p.add_argument("--no-mtf", action="store_true", help="Disable the multi-timeframe module")
    p.add_argument("--plot", metavar="DIR", help="Write the equity curve PNG into DIR")
    p.add_argument("--log-level", default="WARNING", help="Logging level (default WARNING)")
    return p


def _load_config(path: Optional[str]) -> AppConfig:
    return load_config(path) if path else AppConfig()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.csv_path:
        parser.print_usage(sys.stdout)
        return EXIT_USAGE

    setup_logging(args.log_level)

    try:
        cfg = _load_config(args.config)
    except ConfigError as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return EXIT_LOAD_FAILED

    cfg.modules.mtf_factor = max(1, args.mtf_factor if args.mtf_factor is not None else DEFAULT_MTF_FACTOR)
    if args.no_mtf:
        cfg.modules.use_mtf = False

    try:
        bars = load_bars_csv(args.csv_path)
    except (OSError, ValueError) as e:
        print(f"Failed to load bar file {args.csv_path}: {e}", file=sys.stderr)
        return EXIT_LOAD_FAILED
    if not bars:
        print(f"Failed to load bar file {args.csv_path}: no bars", file=sys.stderr)
        return EXIT_LOAD_FAILED

    try:
        if args.grid:
            workers = args.workers if args.workers is not None else cfg.backtest.grid_workers
            ranked = run_grid_search(bars, cfg, max_workers=workers, top_n=cfg.backtest.grid_top_n)
            print(format_grid_table(ranked))
            result = ranked[0].result
        else:
            result = run_backtest(bars, cfg)
    except BacktestError as e:
        print(f"Backtest failed: {e}", file=sys.stderr)
        return EXIT_LOAD_FAILED

    print(result.summary_line())
    if not args.grid:
        print(format_summary(result).splitlines()[-1])

    if args.plot:
        path = plot_equity(result, args.plot)
        if path:
            print(f"Equity curve written to {path}")

    log_event("backtest.completed", {
        'csv_path': args.csv_path,
        'bars': len(bars),
        'grid': bool(args.grid),
        **result.to_dict(),
    })
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
