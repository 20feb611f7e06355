#!/usr/bin/env python3
"""
Replay historical bars and signals through the engine on a paper venue.

Bars are read from a CSV (time, open, high, low, close[, volume]) on the
short timeframe; the higher timeframe is resampled from them. Signals come
from the configured signal source (or --signals). The engine ticks once
per short bar, just before the bar closes. Background retrievals are
flushed and the tick repeated at the same instant, so the replay is
deterministic.

Usage:
    # Defaults: EURUSD on M15/H1, signals from data/signals.csv
    python scripts/run_replay.py --bars data/EURUSD_M15.csv

    # Custom config and signal file
    python scripts/run_replay.py --bars data/EURUSD_M15.csv \\
        --config config/engine.yaml --signals data/signals.parquet

    # Save closed trades
    python scripts/run_replay.py --bars data/EURUSD_M15.csv --output ./results
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path

import pandas as pd

from riskgate.api.indicators import BarIndicatorEngine
from riskgate.api.models import Bar, InstrumentSpec, bars_from_frame
from riskgate.api.paper import PaperVenue
from riskgate.lib.config import ConfigValidationError, EngineConfig, load_config, validate_config
from riskgate.lib.logging_utils import setup_logging
from riskgate.lib.time_utils import Timeframe
from riskgate.signals.source import create_signal_source
from riskgate.trading.engine import TradingEngine

logger = logging.getLogger(__name__)

_OHLCV_AGG = {"open": "first", "high": "max", "low": "min", "close": "last", "volume": "sum"}


def load_bar_frame(path: str, time_column: str = "time") -> pd.DataFrame:
    """Read an OHLC CSV into a UTC-indexed DataFrame."""
    df = pd.read_csv(path)
    df.columns = [str(c).lower() for c in df.columns]
    if time_column not in df.columns:
        raise ValueError(f"Bar file {path} has no {time_column!r} column")
    df[time_column] = pd.to_datetime(df[time_column], utc=True)
    df = df.set_index(time_column).sort_index()
    if "volume" not in df.columns:
        df["volume"] = 0.0
    return df[list(_OHLCV_AGG)]


def resample_bars(df: pd.DataFrame, timeframe: Timeframe) -> pd.DataFrame:
    """Aggregate short-timeframe bars into a longer timeframe."""
    return df.resample(f"{timeframe.seconds}s", label="left", closed="left").agg(_OHLCV_AGG).dropna()


async def replay(
    config: EngineConfig,
    venue: PaperVenue,
    short_bars: list[Bar],
    spread_points: float,
) -> TradingEngine:
    """
    Tick the engine once per short bar.

    Args:
        config: Engine configuration
        venue: Paper venue loaded with bars
        short_bars: Short-timeframe bars (chronological)
        spread_points: Simulated spread

    Returns:
        The engine, for its final status
    """
    source = create_signal_source(
        config.signals.source_type,
        path=config.signals.source_path,
        url=config.signals.source_url,
        timeout_seconds=config.signals.http_timeout_seconds,
    )
    engine = TradingEngine(
        config,
        feed=venue,
        indicators=BarIndicatorEngine(venue),
        account=venue,
        gateway=venue,
        signal_source=source,
    )

    step = config.short_timeframe.duration - timedelta(seconds=1)
    try:
        for i, bar in enumerate(short_bars):
            now = bar.time + step
            venue.step(now, spread_points=spread_points)
            engine.on_tick(now)
            if await engine.flush_retrievals():
                # Evaluate while the bar that triggered the fetch is still the last closed one
                engine.on_tick(now)

            if (i + 1) % 500 == 0:
                account = venue.get_account()
                logger.info(f"Replayed {i + 1}/{len(short_bars)} bars, equity={account.equity:.2f}")
    finally:
        close = getattr(source, "close", None)
        if close is not None:
            await close()

    return engine


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Replay bars and signals through the risk-gated engine",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Data
    parser.add_argument(
        "--bars",
        type=str,
        required=True,
        help="CSV of short-timeframe bars (time, open, high, low, close[, volume])",
    )
    parser.add_argument(
        "--signals",
        type=str,
        default=None,
        help="Signal file (CSV or Parquet); overrides the configured source",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML configuration file",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Directory for closed trades and final status",
    )

    # Account
    parser.add_argument(
        "--balance",
        type=float,
        default=10_000.0,
        help="Starting balance",
    )
    parser.add_argument(
        "--spread-points",
        type=float,
        default=10.0,
        help="Simulated spread in points",
    )

    # Instrument
    parser.add_argument("--tick-size", type=float, default=0.00001, help="Tick size")
    parser.add_argument("--tick-value", type=float, default=1.0, help="Tick value per lot")
    parser.add_argument("--point", type=float, default=0.00001, help="Point size")
    parser.add_argument("--digits", type=int, default=5, help="Price digits")
    parser.add_argument("--stops-level", type=float, default=0.0, help="Minimum stop distance in points")
    parser.add_argument("--volume-step", type=float, default=0.01, help="Lot step")
    parser.add_argument("--volume-min", type=float, default=0.01, help="Minimum lot")

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging",
    )

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_args()

    config = load_config(args.config)
    if args.signals:
        config.signals.source_type = "file"
        config.signals.source_path = args.signals

    setup_logging(
        level="DEBUG" if args.verbose else config.output.log_level,
        log_dir=config.output.logs_dir,
        use_colors=config.output.use_colors,
        venue_timezone=config.instrument.venue_timezone,
    )

    try:
        for warning in validate_config(config):
            logger.warning(f"Config: {warning}")
    except ConfigValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    instrument = InstrumentSpec(
        symbol=config.instrument.symbol,
        tick_size=args.tick_size,
        tick_value=args.tick_value,
        point=args.point,
        digits=args.digits,
        volume_min=args.volume_min,
        volume_step=args.volume_step,
        stops_level_points=args.stops_level,
    )

    frame = load_bar_frame(args.bars)
    short_bars = bars_from_frame(frame)
    bars = {config.short_timeframe: short_bars}
    if config.higher_timeframe != config.short_timeframe:
        bars[config.higher_timeframe] = bars_from_frame(resample_bars(frame, config.higher_timeframe))
    logger.info(
        f"Loaded {len(short_bars)} {config.short_timeframe.value} bars "
        f"({short_bars[0].time} -> {short_bars[-1].time})" if short_bars else "No bars loaded"
    )

    venue = PaperVenue(instrument, balance=args.balance, bars=bars)
    engine = asyncio.run(replay(config, venue, short_bars, args.spread_points))

    trades = pd.DataFrame(venue.closed_trades)
    account = venue.get_account()
    logger.info("=" * 60)
    logger.info(
        f"Replay done: {len(trades)} closed fills, balance={account.balance:.2f}, "
        f"equity={account.equity:.2f}"
    )
    logger.info("=" * 60)

    if args.output:
        output_path = Path(args.output)
        output_path.mkdir(parents=True, exist_ok=True)
        trades.to_csv(output_path / "closed_trades.csv", index=False)
        with open(output_path / "status.json", "w") as f:
            json.dump(engine.get_status(), f, indent=2, default=str)
        logger.info(f"Results saved to {output_path}")


if __name__ == "__main__":
    main()
