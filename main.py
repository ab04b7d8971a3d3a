#!/usr/bin/env python3
"""
Decision Engine CLI: patterns | analyze
Usage:
  python main.py patterns --csv candles.csv --timeframe 15m [--config config.yaml]
  python main.py analyze --snapshot snapshot.json [--config config.yaml]
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from decision_engine.core.config import ConfigError, load_config
from decision_engine.core.logger import setup_logging
from decision_engine.engine import DecisionEngine
from decision_engine.patterns import detect_all_candlestick_patterns
from decision_engine.snapshot import load_snapshot
from decision_engine.utils.frames import candles_from_frame
from decision_engine.utils.timeframes import timeframe_minutes

logger = logging.getLogger("decision_engine")


def run_patterns(csv_path: Path, timeframe: str) -> int:
    """Detect candlestick patterns on the latest candles of an OHLCV CSV."""
    timeframe_minutes(timeframe)
    df = pd.read_csv(csv_path)
    df.columns = [c.strip().lower() for c in df.columns]
    candles = candles_from_frame(df)
    patterns = detect_all_candlestick_patterns(candles, timeframe)
    if not patterns:
        print(f"No patterns on the last {min(len(candles), 15)} {timeframe} candles")
        return 0
    print(f"\n--- Patterns ({timeframe}, {len(candles)} candles) ---")
    for p in patterns:
        print(
            f"{p.name:<28} {p.category.value:<20} "
            f"reliability={p.reliability:.2f} strength={p.strength:.2f}  {p.description}"
        )
    return 0


def run_analyze(snapshot_path: Path, config) -> int:
    """Run one engine tick on a JSON snapshot and print the output."""
    with open(snapshot_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    inp = load_snapshot(data)
    engine = DecisionEngine(config.strategy)
    output = engine.tick(inp)
    logger.info("%s", output.summary.headline)
    print(json.dumps(output.to_dict(), indent=2, default=str))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Position Decision Engine CLI")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    sub = parser.add_subparsers(dest="mode", required=True)
    p_patterns = sub.add_parser("patterns", help="Detect candlestick patterns in a CSV")
    p_patterns.add_argument("--csv", type=Path, required=True, help="OHLCV CSV file")
    p_patterns.add_argument("--timeframe", default="15m", help="Timeframe label of the candles")
    p_analyze = sub.add_parser("analyze", help="Analyze a position snapshot")
    p_analyze.add_argument("--snapshot", type=Path, required=True, help="JSON snapshot file")
    args = parser.parse_args()

    try:
        config = load_config(args.config, ROOT)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    setup_logging(config.log_level, config.log_dir, config.log_file, symbol=config.symbol)
    try:
        if args.mode == "patterns":
            return run_patterns(args.csv, args.timeframe)
        return run_analyze(args.snapshot, config)
    except (OSError, ValueError) as e:
        logger.error("%s failed: %s", args.mode, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
