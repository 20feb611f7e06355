"""
Trading constants and defaults for the decision engine.

This module centralizes every fixed number the engine relies on so that
risk rules, confirmation thresholds and configuration defaults are defined
in exactly one place.

Sections:
- Venue: timezone and identity defaults
- Signals: weights, strength threshold, buffer defaults
- Risk: circuit breaker defaults and the absolute per-trade risk cap
- Stops & Orders: ATR multipliers, structural tightening, pending expiry
- Lifecycle: partial close, breakeven and trailing defaults
- Retrieval: signal source retry defaults
"""

# =============================================================================
# Venue
# =============================================================================

# Calendar days are evaluated in the venue's clock
DEFAULT_VENUE_TIMEZONE = "UTC"

DEFAULT_SYMBOL = "EURUSD"
DEFAULT_MAGIC = 240601  # Strategy id tagged on every order
DEFAULT_SHORT_TIMEFRAME = "M15"
DEFAULT_HIGHER_TIMEFRAME = "H1"


# =============================================================================
# Signals
# =============================================================================

SIGNAL_WEIGHT_HIGH = 2.0
SIGNAL_WEIGHT_LOW = 1.0
SIGNAL_WEIGHT_NONE = 0.5
MAX_SIGNAL_STRENGTH = SIGNAL_WEIGHT_HIGH

# Weighted strength below this rejects the candidate direction
MIN_SIGNAL_STRENGTH = 0.5

DEFAULT_MAX_DATA_SIZE = 50
DEFAULT_CONFIDENCE = 3


# =============================================================================
# Confirmation
# =============================================================================

# Rejection candle: dominant tail > 2x opposite tail and > half the body
REJECTION_TAIL_RATIO = 2.0
REJECTION_BODY_FRACTION = 0.5

# Order block: body > 50% of range
ORDER_BLOCK_BODY_RATIO = 0.5

# Swing points are searched among this many closed bars
TRENDLINE_LOOKBACK_BARS = 20

DEFAULT_HTF_FAST_MA = 20
DEFAULT_HTF_SLOW_MA = 50


# =============================================================================
# Risk
# =============================================================================

DEFAULT_RISK_PERCENT = 1.0
DEFAULT_MAX_DAILY_LOSS_PCT = 5.0
DEFAULT_MAX_DRAWDOWN_PCT = 10.0
DEFAULT_MAX_OPEN_POSITIONS = 1

# Absolute cap on risk per trade, not configurable
HARD_RISK_CAP_PCT = 5.0

DRAWDOWN_POLICY_MANUAL = "manual"
DRAWDOWN_POLICY_DAILY_RESET = "daily_reset"

DEFAULT_SESSION_START_HOUR = 7
DEFAULT_SESSION_END_HOUR = 20
DEFAULT_FRIDAY_CUTOFF_HOUR = 20
DEFAULT_MAX_SPREAD_POINTS = 30.0


# =============================================================================
# Stops & Orders
# =============================================================================

DEFAULT_ATR_PERIOD = 14
DEFAULT_SL_ATR_MULTIPLIER = 1.5
DEFAULT_TP_ATR_MULTIPLIER = 3.0

# Structurally confirmed decisions get a 15% tighter stop
STRUCTURAL_STOP_FACTOR = 0.85

DEFAULT_PENDING_OFFSET_POINTS = 10.0

# Pending orders expire after this many bars of their timeframe
PENDING_EXPIRY_BARS = 2


# =============================================================================
# Lifecycle
# =============================================================================

DEFAULT_PROFIT_TRIGGER_R = 1.0
DEFAULT_PARTIAL_CLOSE_PCT = 50.0
DEFAULT_BREAKEVEN_BUFFER_POINTS = 1.0
DEFAULT_TRAIL_ATR_MULTIPLIER = 2.0
DEFAULT_TRAIL_MIN_BARS = 3


# =============================================================================
# Retrieval
# =============================================================================

DEFAULT_SIGNAL_MAX_ATTEMPTS = 3
DEFAULT_SIGNAL_RETRY_DELAY_SECONDS = 1.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
