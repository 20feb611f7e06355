"""
Signal handling.

This package contains:
- records: SignalRecord, SignalDirection, SignalWeight, TrendState
- buffer: Fixed-capacity newest-first SignalBuffer
- source: File and HTTP signal sources
- confirmation: Multi-stage confirmation pipeline producing Decisions
"""

from riskgate.signals.records import (
    SignalRecord,
    SignalDirection,
    SignalWeight,
    TrendState,
    parse_direction,
    parse_weight,
)

from riskgate.signals.buffer import SignalBuffer

from riskgate.signals.source import (
    SignalSource,
    SignalSourceError,
    FileSignalSource,
    HttpSignalSource,
    create_signal_source,
)

from riskgate.signals.confirmation import (
    Decision,
    PipelineConfig,
    ConfirmationPipeline,
    RejectionStage,
    consensus_direction,
    weighted_strength,
    candle_rejection_direction,
    classify_trend,
    higher_timeframe_trend,
    has_order_block,
    find_swing_points,
    trendline_confirms,
)

__all__ = [
    # Records
    "SignalRecord",
    "SignalDirection",
    "SignalWeight",
    "TrendState",
    "parse_direction",
    "parse_weight",
    # Buffer
    "SignalBuffer",
    # Sources
    "SignalSource",
    "SignalSourceError",
    "FileSignalSource",
    "HttpSignalSource",
    "create_signal_source",
    # Confirmation
    "Decision",
    "PipelineConfig",
    "ConfirmationPipeline",
    "RejectionStage",
    "consensus_direction",
    "weighted_strength",
    "candle_rejection_direction",
    "classify_trend",
    "higher_timeframe_trend",
    "has_order_block",
    "find_swing_points",
    "trendline_confirms",
]
