"""
Shared library modules for the decision engine.

This package provides common utilities used across the engine:
- constants: Risk rules, confirmation thresholds, defaults
- time_utils: Timeframes, venue clock, session windows
- config: Unified configuration management
- logging_utils: Structured logging
"""

from riskgate.lib.time_utils import (
    Timeframe,
    get_venue_timezone,
    utc_now,
    ensure_aware,
    to_venue_time,
    venue_date,
    bars_elapsed,
    hour_in_window,
)

from riskgate.lib.config import (
    EngineConfig,
    InstrumentConfig,
    SignalConfig,
    RiskConfig,
    FilterConfig,
    StopConfig,
    LifecycleConfig,
    OutputConfig,
    ConfigValidationError,
    load_config,
    validate_config,
    config_to_dict,
    save_config,
)

from riskgate.lib.logging_utils import (
    TradingFormatter,
    TradingLogger,
    setup_logging,
    get_logger,
)

__all__ = [
    # Time utilities
    "Timeframe",
    "get_venue_timezone",
    "utc_now",
    "ensure_aware",
    "to_venue_time",
    "venue_date",
    "bars_elapsed",
    "hour_in_window",
    # Config
    "EngineConfig",
    "InstrumentConfig",
    "SignalConfig",
    "RiskConfig",
    "FilterConfig",
    "StopConfig",
    "LifecycleConfig",
    "OutputConfig",
    "ConfigValidationError",
    "load_config",
    "validate_config",
    "config_to_dict",
    "save_config",
    # Logging
    "TradingFormatter",
    "TradingLogger",
    "setup_logging",
    "get_logger",
]
