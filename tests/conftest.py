"""
Pytest fixtures for engine tests.

This module provides:
- Instrument and configuration fixtures
- Bar and signal record factories
- A paper venue preloaded with bars
"""

from datetime import datetime, timedelta, timezone

import pytest

from riskgate.api.models import Bar, InstrumentSpec
from riskgate.api.paper import PaperVenue
from riskgate.lib.config import EngineConfig
from riskgate.lib.time_utils import Timeframe
from riskgate.signals.records import SignalDirection, SignalRecord, SignalWeight


@pytest.fixture
def base_time():
    """Wednesday 2024-01-03 10:00 UTC, inside the default session."""
    return datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def instrument():
    """EURUSD-like 5-digit instrument with 0.01 lot step."""
    return InstrumentSpec(
        symbol="EURUSD",
        tick_size=0.00001,
        tick_value=1.0,
        point=0.00001,
        digits=5,
        volume_min=0.01,
        volume_max=100.0,
        volume_step=0.01,
        stops_level_points=0.0,
    )


@pytest.fixture
def engine_config():
    """Default configuration with a fast retry delay and no file logging."""
    config = EngineConfig()
    config.signals.retry_delay_seconds = 0.0
    config.output.logs_dir = None
    return config


@pytest.fixture
def make_bar():
    """Factory for a single bar."""
    def _make(time, open_, high, low, close, volume=100.0):
        return Bar(time=time, open=open_, high=high, low=low, close=close, volume=volume)
    return _make


@pytest.fixture
def make_bars():
    """
    Factory for a chronological series of flat-ish bars.

    Each bar opens at the previous close and moves by ``step``, with a
    fixed ``spread`` between high and low around the body.
    """
    def _make(start, timeframe, count, price=1.10000, step=0.0, spread=0.00100):
        bars = []
        for i in range(count):
            open_ = price + i * step
            close = open_ + step
            bars.append(Bar(
                time=start + i * timeframe.duration,
                open=round(open_, 5),
                high=round(max(open_, close) + spread / 2, 5),
                low=round(min(open_, close) - spread / 2, 5),
                close=round(close, 5),
                volume=100.0,
            ))
        return bars
    return _make


@pytest.fixture
def make_records():
    """
    Factory for signal records, given newest first.

    ``make_records([BUY, BUY, SELL], end)`` returns records whose newest is
    stamped ``end`` and each older one ``step`` earlier, in newest-first order.
    """
    def _make(directions, end, step=timedelta(minutes=15), weight=SignalWeight.HIGH):
        return [
            SignalRecord(timestamp=end - i * step, direction=direction, weight=weight)
            for i, direction in enumerate(directions)
        ]
    return _make


@pytest.fixture
def paper_venue(instrument, make_bars, base_time):
    """Paper venue with 100 M15 bars and 30 H1 bars ending near base_time."""
    m15_start = base_time - 100 * Timeframe.M15.duration
    h1_start = base_time - 30 * Timeframe.H1.duration
    venue = PaperVenue(instrument, balance=10_000.0)
    venue.load_bars(Timeframe.M15, make_bars(m15_start, Timeframe.M15, 101))
    venue.load_bars(Timeframe.H1, make_bars(h1_start, Timeframe.H1, 31))
    venue.step(base_time, spread_points=10)
    return venue
