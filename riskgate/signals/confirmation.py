"""
Signal Confirmation Pipeline.

Turns the signal buffer of one timeframe into at most one directional
Decision per closed bar. Gating stages, evaluated in order with
short-circuit:

1. Consensus streak: first run of same-direction records (newest first,
   no-signal records skipped) whose consecutive-match count reaches the
   confidence threshold
2. Weighted strength: mean of weight x recency over matching records,
   must be >= 0.5
3. Candle rejection: the last closed bar's dominant tail must point the
   same way as the candidate
4. Higher-timeframe trend: only on the short timeframe, rejects a
   candidate that fights a defined higher-timeframe trend

Then, non-gating:
5. Structural confirmation: order block on the last closed bar or a
   trendline through the two most recent swing points

Key Parameters:
- Weights: HIGH=2.0, LOW=1.0, NONE=0.5
- Recency factor: 1 - index / buffer length
- Rejection candle: dominant tail > 2x opposite tail and > body / 2
- Order block: body > 50% of range, polarity matching the candidate
- Trendline: swing points among the prior 20 closed bars
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from riskgate.api.interfaces import IndicatorEngine, MarketDataFeed
from riskgate.api.models import Bar
from riskgate.lib.config import EngineConfig
from riskgate.lib.constants import (
    MIN_SIGNAL_STRENGTH,
    ORDER_BLOCK_BODY_RATIO,
    REJECTION_BODY_FRACTION,
    REJECTION_TAIL_RATIO,
    TRENDLINE_LOOKBACK_BARS,
)
from riskgate.lib.time_utils import Timeframe
from riskgate.signals.records import SignalDirection, SignalRecord, TrendState

logger = logging.getLogger(__name__)


class RejectionStage(Enum):
    """Stage at which a candidate was rejected."""
    CONSENSUS = "consensus"
    STRENGTH = "strength"
    CANDLE = "candle"
    HIGHER_TIMEFRAME = "higher_timeframe"
    VOLATILITY = "volatility"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class Decision:
    """Accepted directional decision, consumed once by order placement.

    Attributes:
        direction: BUY or SELL
        stop_distance: ATR x SL multiplier (before structural tightening)
        take_profit_distance: ATR x TP multiplier
        structural_confirmation: Order block or trendline agreed
        timeframe: Timeframe the decision was made on
        strength: Weighted signal strength
        atr: ATR used for the distances
        bar_time: Open time of the closed bar evaluated
    """
    direction: SignalDirection
    stop_distance: float
    take_profit_distance: float
    structural_confirmation: bool
    timeframe: Timeframe
    strength: float = 0.0
    atr: float = 0.0
    bar_time: Optional[datetime] = None


@dataclass
class PipelineConfig:
    """Parameters of the confirmation pipeline."""
    confidence: int
    atr_period: int
    sl_atr_multiplier: float
    tp_atr_multiplier: float
    short_timeframe: Timeframe
    higher_timeframe: Timeframe
    use_htf_filter: bool = True
    htf_fast_ma: int = 20
    htf_slow_ma: int = 50
    min_strength: float = MIN_SIGNAL_STRENGTH

    @classmethod
    def from_engine_config(cls, config: EngineConfig) -> "PipelineConfig":
        return cls(
            confidence=config.signals.confidence,
            atr_period=config.stops.atr_period,
            sl_atr_multiplier=config.stops.sl_atr_multiplier,
            tp_atr_multiplier=config.stops.tp_atr_multiplier,
            short_timeframe=config.short_timeframe,
            higher_timeframe=config.higher_timeframe,
            use_htf_filter=config.stops.use_htf_filter,
            htf_fast_ma=config.stops.htf_fast_ma,
            htf_slow_ma=config.stops.htf_slow_ma,
        )


# =============================================================================
# Stage Functions
# =============================================================================

def consensus_direction(
    records: Sequence[SignalRecord],
    confidence: int,
) -> Optional[SignalDirection]:
    """
    Find the first direction whose streak reaches the confidence threshold.

    Records are scanned newest first. The first record of a run sets the
    running direction with a match count of 0; every following record in
    the same direction adds one; an opposite record starts a new run.
    Records without a direction are skipped and do not touch the run.

    Args:
        records: Buffer contents, newest first
        confidence: Required consecutive-match count

    Returns:
        The direction of the first qualifying streak, or None
    """
    if confidence <= 0:
        logger.warning(f"Invalid confidence threshold {confidence}, no consensus possible")
        return None

    running: Optional[SignalDirection] = None
    count = 0

    for record in records:
        if record.direction is None:
            continue
        if record.direction == running:
            count += 1
        else:
            running = record.direction
            count = 0
        if count >= confidence:
            return running

    return None


def weighted_strength(records: Sequence[SignalRecord], direction: SignalDirection) -> float:
    """
    Mean of weight x recency over records matching a direction.

    Recency is ``1 - index / len(records)``, so the newest record counts
    fully and the oldest approaches zero. Result lies in [0, 2.0].

    Returns:
        Strength, or 0.0 when nothing matches
    """
    length = len(records)
    if length == 0:
        return 0.0

    scores = [
        record.weight_factor * (1 - index / length)
        for index, record in enumerate(records)
        if record.direction == direction
    ]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def candle_rejection_direction(bar: Bar) -> Optional[SignalDirection]:
    """
    Direction implied by a rejection candle, if any.

    A long lower tail (more than twice the upper tail and more than half
    the body) rejects lower prices: BUY. The mirror case gives SELL.
    Bars with zero body or zero range give None.
    """
    body = bar.body
    total_range = bar.range
    if total_range <= 0 or body <= 0:
        return None

    upper = bar.upper_tail
    lower = bar.lower_tail

    if lower > REJECTION_TAIL_RATIO * upper and lower > body * REJECTION_BODY_FRACTION:
        return SignalDirection.BUY
    if upper > REJECTION_TAIL_RATIO * lower and upper > body * REJECTION_BODY_FRACTION:
        return SignalDirection.SELL
    return None


def classify_trend(fast: Sequence[float], slow: Sequence[float]) -> TrendState:
    """
    Trend from the two most recent fast/slow moving average samples.

    UP when fast > slow on both samples, DOWN when fast < slow on both,
    NEUTRAL otherwise.
    """
    pairs = list(zip(fast, slow))
    if len(pairs) < 2:
        return TrendState.NEUTRAL
    if all(f > s for f, s in pairs):
        return TrendState.UP
    if all(f < s for f, s in pairs):
        return TrendState.DOWN
    return TrendState.NEUTRAL


def higher_timeframe_trend(
    indicators: IndicatorEngine,
    timeframe: Timeframe,
    fast_period: int,
    slow_period: int,
) -> TrendState:
    """Trend of a timeframe from its moving averages at shifts 1 and 2."""
    fast = [indicators.moving_average(timeframe, fast_period, shift) for shift in (1, 2)]
    slow = [indicators.moving_average(timeframe, slow_period, shift) for shift in (1, 2)]
    if any(v is None for v in fast + slow):
        return TrendState.NEUTRAL
    return classify_trend(fast, slow)


def has_order_block(bar: Bar, direction: SignalDirection) -> bool:
    """Body > 50% of range with polarity matching the direction."""
    if bar.range <= 0:
        return False
    if bar.body <= ORDER_BLOCK_BODY_RATIO * bar.range:
        return False
    if direction == SignalDirection.BUY:
        return bar.is_bullish
    return bar.is_bearish


def find_swing_points(bars: Sequence[Bar]) -> tuple[list[float], list[float]]:
    """
    Swing highs and lows in a newest-first bar sequence.

    A swing high is a bar whose high exceeds both neighbours; a swing low
    is a bar whose low is below both neighbours. The first and last bars
    have only one neighbour and are never swing points.

    Returns:
        (swing_highs, swing_lows), each newest first
    """
    highs: list[float] = []
    lows: list[float] = []
    for i in range(1, len(bars) - 1):
        newer, bar, older = bars[i - 1], bars[i], bars[i + 1]
        if bar.high > newer.high and bar.high > older.high:
            highs.append(bar.high)
        if bar.low < newer.low and bar.low < older.low:
            lows.append(bar.low)
    return highs, lows


def trendline_confirms(bars: Sequence[Bar], direction: SignalDirection) -> bool:
    """
    Check whether the two most recent swing points slope with the direction.

    Rising swing lows confirm BUY; falling swing highs confirm SELL.

    Args:
        bars: Closed bars, newest first
        direction: Candidate direction
    """
    highs, lows = find_swing_points(bars)
    if direction == SignalDirection.BUY:
        return len(lows) >= 2 and lows[0] > lows[1]
    return len(highs) >= 2 and highs[0] < highs[1]


# =============================================================================
# Pipeline
# =============================================================================

class ConfirmationPipeline:
    """
    Composes the confirmation stages into one accept/reject decision.

    Usage:
        pipeline = ConfirmationPipeline(PipelineConfig.from_engine_config(cfg), feed, indicators)
        decision = pipeline.evaluate(buffer, Timeframe.M15)
        if decision:
            placer.place(decision, ...)
    """

    def __init__(
        self,
        config: PipelineConfig,
        feed: MarketDataFeed,
        indicators: IndicatorEngine,
    ):
        self.config = config
        self.feed = feed
        self.indicators = indicators
        self.last_rejection: Optional[RejectionStage] = None

    def _reject(self, stage: RejectionStage, timeframe: Timeframe, detail: str) -> None:
        self.last_rejection = stage
        logger.debug(f"[{timeframe.value}] rejected at {stage.value}: {detail}")

    def evaluate(self, records: Sequence[SignalRecord], timeframe: Timeframe) -> Optional[Decision]:
        """
        Run every stage against the buffer of one timeframe.

        Args:
            records: Buffer contents, newest first (a SignalBuffer works)
            timeframe: Timeframe whose bar just closed

        Returns:
            Decision if all gating stages pass, else None
        """
        self.last_rejection = None
        records = list(records)

        direction = consensus_direction(records, self.config.confidence)
        if direction is None:
            self._reject(RejectionStage.CONSENSUS, timeframe, f"no streak of {self.config.confidence}")
            return None

        strength = weighted_strength(records, direction)
        if strength < self.config.min_strength:
            self._reject(RejectionStage.STRENGTH, timeframe, f"{direction.value} strength {strength:.3f}")
            return None

        bar = self.feed.get_bar(timeframe, 1)
        if bar is None:
            self._reject(RejectionStage.NO_DATA, timeframe, "no closed bar")
            return None

        candle = candle_rejection_direction(bar)
        if candle != direction:
            self._reject(
                RejectionStage.CANDLE, timeframe,
                f"candle {candle.value if candle else 'none'} vs {direction.value}"
            )
            return None

        if self.config.use_htf_filter and timeframe == self.config.short_timeframe:
            trend = higher_timeframe_trend(
                self.indicators,
                self.config.higher_timeframe,
                self.config.htf_fast_ma,
                self.config.htf_slow_ma,
            )
            if trend.opposes(direction):
                self._reject(
                    RejectionStage.HIGHER_TIMEFRAME, timeframe,
                    f"{self.config.higher_timeframe.value} trend {trend.value} vs {direction.value}"
                )
                return None

        atr = self.indicators.atr(timeframe, self.config.atr_period, 1)
        if atr is None or atr <= 0:
            self._reject(RejectionStage.VOLATILITY, timeframe, f"unusable ATR {atr}")
            return None

        structure_bars = self.feed.get_bars(timeframe, 1, TRENDLINE_LOOKBACK_BARS + 1)
        structural = has_order_block(bar, direction) or trendline_confirms(structure_bars, direction)

        decision = Decision(
            direction=direction,
            stop_distance=atr * self.config.sl_atr_multiplier,
            take_profit_distance=atr * self.config.tp_atr_multiplier,
            structural_confirmation=structural,
            timeframe=timeframe,
            strength=strength,
            atr=atr,
            bar_time=bar.time,
        )
        logger.debug(
            f"[{timeframe.value}] accepted {direction.value} strength={strength:.2f} "
            f"atr={atr:.5f} structural={structural}"
        )
        return decision
