"""
Risk management.

This package contains:
- risk_gate: Daily-loss and drawdown circuit breakers over RiskState
- filters: Session and spread admission filters
- position_sizing: Risk-normalized lot sizing with a hard 5% cap
- stops: Entry/stop geometry, breakeven, trailing and ratchet rules
"""

from riskgate.risk.risk_gate import (
    RiskGate,
    RiskState,
    RiskLimits,
    GateResult,
    GateReason,
    DrawdownHaltPolicy,
    daily_loss_pct,
    drawdown_pct,
)

from riskgate.risk.filters import (
    AdmissionFilters,
    SessionFilter,
    SpreadFilter,
    spread_points,
)

from riskgate.risk.position_sizing import (
    PositionSizer,
    PositionSizeResult,
    BrokerLimits,
    quantize_down,
    lot_risk,
)

from riskgate.risk.stops import (
    EntryLevels,
    entry_levels,
    tighten_for_structure,
    breakeven_price,
    trailing_stop_price,
    is_tighter,
    respects_min_distance,
)

__all__ = [
    # Risk gate
    "RiskGate",
    "RiskState",
    "RiskLimits",
    "GateResult",
    "GateReason",
    "DrawdownHaltPolicy",
    "daily_loss_pct",
    "drawdown_pct",
    # Filters
    "AdmissionFilters",
    "SessionFilter",
    "SpreadFilter",
    "spread_points",
    # Sizing
    "PositionSizer",
    "PositionSizeResult",
    "BrokerLimits",
    "quantize_down",
    "lot_risk",
    # Stops
    "EntryLevels",
    "entry_levels",
    "tighten_for_structure",
    "breakeven_price",
    "trailing_stop_price",
    "is_tighter",
    "respects_min_distance",
]
