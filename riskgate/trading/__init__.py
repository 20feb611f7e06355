"""
Trading execution.

This package contains:
- recovery: Error taxonomy, RecoveryHandler and the async retry decorator
- retrieval: Non-blocking signal retrieval with bounded retries
- order_placement: Decision -> pending stop-entry order
- lifecycle: Partial close, breakeven and ATR trailing per open position
- engine: Tick handler wiring everything together
"""

from riskgate.trading.recovery import (
    RecoveryHandler,
    ErrorEvent,
    ErrorSeverity,
    ErrorCategory,
    with_retry,
)

from riskgate.trading.retrieval import (
    SignalRetriever,
    RetrievalResult,
)

from riskgate.trading.order_placement import (
    OrderPlacer,
    PlacementResult,
    PlacementStatus,
    side_for,
)

from riskgate.trading.lifecycle import (
    PositionLifecycleManager,
    PositionTracker,
    LifecycleStage,
    LifecycleReport,
)

from riskgate.trading.engine import (
    TradingEngine,
    TickResult,
)

__all__ = [
    # Recovery
    "RecoveryHandler",
    "ErrorEvent",
    "ErrorSeverity",
    "ErrorCategory",
    "with_retry",
    # Retrieval
    "SignalRetriever",
    "RetrievalResult",
    # Order placement
    "OrderPlacer",
    "PlacementResult",
    "PlacementStatus",
    "side_for",
    # Lifecycle
    "PositionLifecycleManager",
    "PositionTracker",
    "LifecycleStage",
    "LifecycleReport",
    # Engine
    "TradingEngine",
    "TickResult",
]
