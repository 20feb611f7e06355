"""
Indicator computation over a market data feed.

Provides numpy implementations of ATR and moving averages, plus
``BarIndicatorEngine`` which serves them per timeframe and shift from any
``MarketDataFeed``. Values that cannot be computed (short history) are
returned as None rather than NaN.
"""

import logging
from typing import Optional

import numpy as np

from riskgate.api.interfaces import MarketDataFeed
from riskgate.lib.time_utils import Timeframe

logger = logging.getLogger(__name__)


def calculate_atr(
    highs: np.ndarray,
    lows: np.ndarray,
    closes: np.ndarray,
    period: int = 14,
) -> np.ndarray:
    """
    Calculate Average True Range (ATR).

    True range is max(high-low, |high-prev_close|, |low-prev_close|); the
    first ATR is the simple mean of the first ``period`` true ranges and
    later values are exponentially smoothed.

    Args:
        highs: Array of high prices (chronological)
        lows: Array of low prices
        closes: Array of close prices
        period: ATR period

    Returns:
        Array of ATR values (same length as input, first period-1 are NaN)
    """
    n = len(closes)
    if n < 2:
        return np.full(n, np.nan)

    prev_close = np.roll(closes, 1)
    prev_close[0] = closes[0]

    tr1 = highs - lows
    tr2 = np.abs(highs - prev_close)
    tr3 = np.abs(lows - prev_close)

    true_range = np.maximum(np.maximum(tr1, tr2), tr3)

    atr = np.full(n, np.nan)

    if n >= period:
        atr[period - 1] = np.mean(true_range[:period])

        multiplier = 2 / (period + 1)
        for i in range(period, n):
            atr[i] = (true_range[i] * multiplier) + (atr[i - 1] * (1 - multiplier))

    return atr


def calculate_sma(values: np.ndarray, period: int) -> np.ndarray:
    """Simple moving average (first period-1 values are NaN)."""
    n = len(values)
    result = np.full(n, np.nan)
    if period <= 0 or n < period:
        return result
    cumsum = np.cumsum(np.insert(values.astype(float), 0, 0.0))
    result[period - 1:] = (cumsum[period:] - cumsum[:-period]) / period
    return result


def calculate_ema(values: np.ndarray, period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first period values."""
    n = len(values)
    result = np.full(n, np.nan)
    if period <= 0 or n < period:
        return result
    result[period - 1] = np.mean(values[:period])
    alpha = 2 / (period + 1)
    for i in range(period, n):
        result[i] = alpha * values[i] + (1 - alpha) * result[i - 1]
    return result


class BarIndicatorEngine:
    """
    Indicator engine backed by a market data feed.

    Fetches ``history_bars`` bars ending at the requested shift, computes the
    indicator chronologically and returns the value for that shift.

    Usage:
        indicators = BarIndicatorEngine(feed)
        atr = indicators.atr(Timeframe.M15, period=14, shift=1)
        fast = indicators.moving_average(Timeframe.H1, 20, shift=1)
    """

    def __init__(self, feed: MarketDataFeed, history_bars: int = 200):
        """
        Args:
            feed: Source of bars
            history_bars: Minimum bars fetched per computation (EMA warm-up)
        """
        self.feed = feed
        self.history_bars = history_bars

    def _window(self, timeframe: Timeframe, period: int, shift: int):
        count = max(self.history_bars, period * 3)
        bars = self.feed.get_bars(timeframe, shift, count)
        # Feed returns newest first
        return list(reversed(bars))

    def atr(self, timeframe: Timeframe, period: int, shift: int = 1) -> Optional[float]:
        """ATR value at a shift, or None if history is too short."""
        bars = self._window(timeframe, period, shift)
        if len(bars) < period + 1:
            logger.debug(f"ATR({period}) unavailable on {timeframe.value}: {len(bars)} bars")
            return None

        highs = np.array([b.high for b in bars], dtype=float)
        lows = np.array([b.low for b in bars], dtype=float)
        closes = np.array([b.close for b in bars], dtype=float)

        value = calculate_atr(highs, lows, closes, period)[-1]
        return None if np.isnan(value) else float(value)

    def moving_average(
        self,
        timeframe: Timeframe,
        period: int,
        shift: int = 1,
        method: str = "sma",
    ) -> Optional[float]:
        """Moving average of closes at a shift, or None if history is too short."""
        bars = self._window(timeframe, period, shift)
        if len(bars) < period:
            return None

        closes = np.array([b.close for b in bars], dtype=float)
        if method == "ema":
            values = calculate_ema(closes, period)
        elif method == "sma":
            values = calculate_sma(closes, period)
        else:
            raise ValueError(f"Unknown moving average method: {method}")

        value = values[-1]
        return None if np.isnan(value) else float(value)
