"""
Unified configuration management.

This module provides a centralized way to load, validate, and access
configuration for the decision engine. It supports:
- YAML file loading
- Environment variable overrides
- Type validation via dataclasses
- Default values from constants

Configuration Hierarchy (highest to lowest priority):
1. Environment variables (RISKGATE_*)
2. User-provided config file
3. Default values from constants.py

The engine copies the values it needs at construction time; changing a
config object afterwards has no effect on a running engine.

Example usage:
    config = load_config("config/engine.yaml")
    print(config.risk.max_daily_loss_pct)
    print(config.instrument.short_timeframe)
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from riskgate.lib.constants import (
    DEFAULT_VENUE_TIMEZONE,
    DEFAULT_SYMBOL,
    DEFAULT_MAGIC,
    DEFAULT_SHORT_TIMEFRAME,
    DEFAULT_HIGHER_TIMEFRAME,
    DEFAULT_MAX_DATA_SIZE,
    DEFAULT_CONFIDENCE,
    DEFAULT_HTF_FAST_MA,
    DEFAULT_HTF_SLOW_MA,
    DEFAULT_RISK_PERCENT,
    DEFAULT_MAX_DAILY_LOSS_PCT,
    DEFAULT_MAX_DRAWDOWN_PCT,
    DEFAULT_MAX_OPEN_POSITIONS,
    DRAWDOWN_POLICY_MANUAL,
    DRAWDOWN_POLICY_DAILY_RESET,
    DEFAULT_SESSION_START_HOUR,
    DEFAULT_SESSION_END_HOUR,
    DEFAULT_FRIDAY_CUTOFF_HOUR,
    DEFAULT_MAX_SPREAD_POINTS,
    DEFAULT_ATR_PERIOD,
    DEFAULT_SL_ATR_MULTIPLIER,
    DEFAULT_TP_ATR_MULTIPLIER,
    DEFAULT_PENDING_OFFSET_POINTS,
    DEFAULT_PROFIT_TRIGGER_R,
    DEFAULT_PARTIAL_CLOSE_PCT,
    DEFAULT_BREAKEVEN_BUFFER_POINTS,
    DEFAULT_TRAIL_ATR_MULTIPLIER,
    DEFAULT_TRAIL_MIN_BARS,
    DEFAULT_SIGNAL_MAX_ATTEMPTS,
    DEFAULT_SIGNAL_RETRY_DELAY_SECONDS,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    HARD_RISK_CAP_PCT,
)
from riskgate.lib.time_utils import Timeframe, get_venue_timezone


# =============================================================================
# Configuration Dataclasses
# =============================================================================

@dataclass
class InstrumentConfig:
    """Instrument identity and the two traded timeframes."""
    symbol: str = DEFAULT_SYMBOL
    # Strategy id; only orders/positions tagged with it are managed
    magic: int = DEFAULT_MAGIC
    short_timeframe: str = DEFAULT_SHORT_TIMEFRAME
    higher_timeframe: str = DEFAULT_HIGHER_TIMEFRAME
    # Trade signals on the higher timeframe as well as the short one
    trade_higher_timeframe: bool = True
    venue_timezone: str = DEFAULT_VENUE_TIMEZONE


@dataclass
class SignalConfig:
    """Configuration for signal buffering and retrieval."""
    # Buffer capacity per timeframe
    max_data_size: int = DEFAULT_MAX_DATA_SIZE
    # Consecutive-match count required for a consensus direction
    confidence: int = DEFAULT_CONFIDENCE
    # Source: 'file' or 'http'
    source_type: str = "file"
    source_path: str = "data/signals.csv"
    source_url: Optional[str] = None
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    # Bounded retry for transient source failures
    max_attempts: int = DEFAULT_SIGNAL_MAX_ATTEMPTS
    retry_delay_seconds: float = DEFAULT_SIGNAL_RETRY_DELAY_SECONDS


@dataclass
class RiskConfig:
    """Configuration for the risk gate and position sizing."""
    # Per-trade risk as % of equity (hard-capped at 5% regardless)
    risk_percent: float = DEFAULT_RISK_PERCENT
    # Circuit breakers
    max_daily_loss_pct: float = DEFAULT_MAX_DAILY_LOSS_PCT
    max_drawdown_pct: float = DEFAULT_MAX_DRAWDOWN_PCT
    # 'manual' keeps a drawdown halt until manual_reset, 'daily_reset' clears it at day rollover
    drawdown_halt_policy: str = DRAWDOWN_POLICY_MANUAL
    max_open_positions: int = DEFAULT_MAX_OPEN_POSITIONS


@dataclass
class FilterConfig:
    """Configuration for session and spread admission filters."""
    use_session_filter: bool = True
    session_start_hour: int = DEFAULT_SESSION_START_HOUR
    session_end_hour: int = DEFAULT_SESSION_END_HOUR
    avoid_friday_close: bool = True
    friday_cutoff_hour: int = DEFAULT_FRIDAY_CUTOFF_HOUR
    use_spread_filter: bool = True
    max_spread_points: float = DEFAULT_MAX_SPREAD_POINTS


@dataclass
class StopConfig:
    """Configuration for ATR stops, targets and the pending entry."""
    atr_period: int = DEFAULT_ATR_PERIOD
    sl_atr_multiplier: float = DEFAULT_SL_ATR_MULTIPLIER
    tp_atr_multiplier: float = DEFAULT_TP_ATR_MULTIPLIER
    pending_offset_points: float = DEFAULT_PENDING_OFFSET_POINTS
    # Multi-timeframe trend filter (short timeframe only)
    use_htf_filter: bool = True
    htf_fast_ma: int = DEFAULT_HTF_FAST_MA
    htf_slow_ma: int = DEFAULT_HTF_SLOW_MA


@dataclass
class LifecycleConfig:
    """Configuration for open-position management."""
    # Profit trigger in R multiples (shared by partial close and breakeven)
    profit_trigger_r: float = DEFAULT_PROFIT_TRIGGER_R
    use_partial_close: bool = True
    partial_close_pct: float = DEFAULT_PARTIAL_CLOSE_PCT
    use_breakeven: bool = True
    breakeven_buffer_points: float = DEFAULT_BREAKEVEN_BUFFER_POINTS
    use_trailing: bool = True
    trail_atr_multiplier: float = DEFAULT_TRAIL_ATR_MULTIPLIER
    trail_min_bars: int = DEFAULT_TRAIL_MIN_BARS
    # Timeframe whose ATR and bar count drive trailing (defaults to short)
    trail_timeframe: Optional[str] = None


@dataclass
class OutputConfig:
    """Configuration for output and logging."""
    logs_dir: Optional[str] = "./logs"
    log_level: str = "INFO"
    use_colors: bool = True
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS


@dataclass
class EngineConfig:
    """Main configuration container."""
    instrument: InstrumentConfig = field(default_factory=InstrumentConfig)
    signals: SignalConfig = field(default_factory=SignalConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    stops: StopConfig = field(default_factory=StopConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @property
    def short_timeframe(self) -> Timeframe:
        return Timeframe.parse(self.instrument.short_timeframe)

    @property
    def higher_timeframe(self) -> Timeframe:
        return Timeframe.parse(self.instrument.higher_timeframe)

    @property
    def traded_timeframes(self) -> list[Timeframe]:
        """Timeframes on which closed bars trigger signal evaluation."""
        timeframes = [self.short_timeframe]
        if self.instrument.trade_higher_timeframe and self.higher_timeframe != self.short_timeframe:
            timeframes.append(self.higher_timeframe)
        return timeframes

    @property
    def trail_timeframe(self) -> Timeframe:
        if self.lifecycle.trail_timeframe:
            return Timeframe.parse(self.lifecycle.trail_timeframe)
        return self.short_timeframe


_SECTIONS = ("instrument", "signals", "risk", "filters", "stops", "lifecycle", "output")


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(
    config_path: Optional[str] = None,
    override_env: bool = True
) -> EngineConfig:
    """
    Load configuration from YAML file with optional environment overrides.

    Args:
        config_path: Path to YAML config file (optional)
        override_env: If True, apply environment variable overrides

    Returns:
        EngineConfig instance

    Example:
        config = load_config("config/engine.yaml")
        print(config.risk.risk_percent)  # 1.0
    """
    config = EngineConfig()

    if config_path:
        config = _load_from_yaml(config_path, config)

    if override_env:
        config = _apply_env_overrides(config)

    return config


def _load_from_yaml(config_path: str, base_config: EngineConfig) -> EngineConfig:
    """Load configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        yaml_data = yaml.safe_load(f)

    if yaml_data is None:
        return base_config

    if not isinstance(yaml_data, dict):
        raise ConfigValidationError(f"Config file must contain a mapping: {config_path}")

    for section in _SECTIONS:
        if section in yaml_data:
            setattr(
                base_config,
                section,
                _update_dataclass(getattr(base_config, section), yaml_data[section]),
            )

    # Legacy flat keys
    if "symbol" in yaml_data:
        base_config.instrument.symbol = yaml_data["symbol"]

    if "magic" in yaml_data:
        base_config.instrument.magic = int(yaml_data["magic"])

    return base_config


def _update_dataclass(instance: Any, data: dict) -> Any:
    """Update dataclass fields from dictionary."""
    if not data:
        return instance

    field_names = {f.name for f in instance.__dataclass_fields__.values()}

    for key, value in data.items():
        normalized_key = key.replace(".", "_").replace("-", "_")

        if normalized_key in field_names:
            setattr(instance, normalized_key, value)
        elif key in field_names:
            setattr(instance, key, value)

    return instance


def _apply_env_overrides(config: EngineConfig) -> EngineConfig:
    """Apply environment variable overrides to config."""

    if env_val := os.getenv("RISKGATE_SYMBOL"):
        config.instrument.symbol = env_val

    if env_val := os.getenv("RISKGATE_MAGIC"):
        config.instrument.magic = int(env_val)

    if env_val := os.getenv("RISKGATE_VENUE_TIMEZONE"):
        config.instrument.venue_timezone = env_val

    # Risk parameters
    if env_val := os.getenv("RISKGATE_RISK_PERCENT"):
        config.risk.risk_percent = float(env_val)

    if env_val := os.getenv("RISKGATE_MAX_DAILY_LOSS_PCT"):
        config.risk.max_daily_loss_pct = float(env_val)

    if env_val := os.getenv("RISKGATE_MAX_DRAWDOWN_PCT"):
        config.risk.max_drawdown_pct = float(env_val)

    if env_val := os.getenv("RISKGATE_DRAWDOWN_HALT_POLICY"):
        config.risk.drawdown_halt_policy = env_val.lower()

    # Signal source
    if env_val := os.getenv("RISKGATE_SIGNAL_PATH"):
        config.signals.source_type = "file"
        config.signals.source_path = env_val

    if env_val := os.getenv("RISKGATE_SIGNAL_URL"):
        config.signals.source_type = "http"
        config.signals.source_url = env_val

    # Output
    if env_val := os.getenv("RISKGATE_LOG_DIR"):
        config.output.logs_dir = env_val

    if env_val := os.getenv("RISKGATE_LOG_LEVEL"):
        config.output.log_level = env_val.upper()

    return config


# =============================================================================
# Configuration Validation
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def validate_config(config: EngineConfig) -> list[str]:
    """
    Validate configuration values.

    Args:
        config: EngineConfig to validate

    Returns:
        List of validation warnings (empty if valid)

    Raises:
        ConfigValidationError: If critical validation fails
    """
    warnings = []
    errors = []

    # Instrument validation
    for name in ("short_timeframe", "higher_timeframe"):
        value = getattr(config.instrument, name)
        try:
            Timeframe.parse(value)
        except ValueError:
            errors.append(f"{name} ({value!r}) is not a known timeframe")

    if not errors and config.higher_timeframe.seconds < config.short_timeframe.seconds:
        errors.append(
            f"higher_timeframe ({config.instrument.higher_timeframe}) must not be shorter than "
            f"short_timeframe ({config.instrument.short_timeframe})"
        )

    try:
        get_venue_timezone(config.instrument.venue_timezone)
    except (ValueError, KeyError) as e:
        errors.append(f"venue_timezone ({config.instrument.venue_timezone!r}) is invalid: {e}")

    # Signal validation
    if config.signals.max_data_size <= 0:
        errors.append(f"max_data_size ({config.signals.max_data_size}) must be > 0")

    if config.signals.confidence <= 0:
        errors.append(f"confidence ({config.signals.confidence}) must be > 0")
    elif config.signals.confidence >= config.signals.max_data_size:
        warnings.append(
            f"confidence ({config.signals.confidence}) >= max_data_size "
            f"({config.signals.max_data_size}) - no consensus can ever form"
        )

    if config.signals.source_type not in ("file", "http"):
        errors.append(f"source_type must be 'file' or 'http', got {config.signals.source_type!r}")
    elif config.signals.source_type == "http" and not config.signals.source_url:
        errors.append("source_url required for http signal source - set RISKGATE_SIGNAL_URL")

    if config.signals.max_attempts < 1:
        errors.append(f"max_attempts ({config.signals.max_attempts}) must be >= 1")

    if config.signals.retry_delay_seconds < 0:
        errors.append("retry_delay_seconds cannot be negative")

    # Risk validation
    if config.risk.risk_percent <= 0:
        errors.append(f"risk_percent ({config.risk.risk_percent}) must be > 0")
    elif config.risk.risk_percent > HARD_RISK_CAP_PCT:
        warnings.append(
            f"risk_percent ({config.risk.risk_percent}) exceeds the {HARD_RISK_CAP_PCT}% hard cap - "
            f"sizes will be capped"
        )

    if config.risk.max_daily_loss_pct <= 0:
        errors.append(f"max_daily_loss_pct ({config.risk.max_daily_loss_pct}) must be > 0")

    if config.risk.max_drawdown_pct <= 0:
        errors.append(f"max_drawdown_pct ({config.risk.max_drawdown_pct}) must be > 0")
    elif config.risk.max_drawdown_pct < config.risk.max_daily_loss_pct:
        warnings.append(
            f"max_drawdown_pct ({config.risk.max_drawdown_pct}) is below max_daily_loss_pct "
            f"({config.risk.max_daily_loss_pct}) - the drawdown halt will fire first"
        )

    if config.risk.drawdown_halt_policy not in (DRAWDOWN_POLICY_MANUAL, DRAWDOWN_POLICY_DAILY_RESET):
        errors.append(
            f"drawdown_halt_policy must be '{DRAWDOWN_POLICY_MANUAL}' or "
            f"'{DRAWDOWN_POLICY_DAILY_RESET}', got {config.risk.drawdown_halt_policy!r}"
        )

    if config.risk.max_open_positions < 1:
        errors.append(f"max_open_positions ({config.risk.max_open_positions}) must be >= 1")

    # Filter validation
    for name in ("session_start_hour", "session_end_hour", "friday_cutoff_hour"):
        hour = getattr(config.filters, name)
        if not 0 <= hour <= 23:
            errors.append(f"{name} ({hour}) must be in 0..23")

    if config.filters.max_spread_points <= 0:
        errors.append("max_spread_points must be > 0")

    # Stop validation
    if config.stops.atr_period < 1:
        errors.append(f"atr_period ({config.stops.atr_period}) must be >= 1")

    if config.stops.sl_atr_multiplier <= 0 or config.stops.tp_atr_multiplier <= 0:
        errors.append("sl_atr_multiplier and tp_atr_multiplier must be > 0")
    elif config.stops.tp_atr_multiplier < config.stops.sl_atr_multiplier:
        warnings.append(
            f"tp_atr_multiplier ({config.stops.tp_atr_multiplier}) below sl_atr_multiplier "
            f"({config.stops.sl_atr_multiplier}) gives a reward:risk under 1"
        )

    if config.stops.pending_offset_points < 0:
        errors.append("pending_offset_points cannot be negative")

    if config.stops.htf_fast_ma >= config.stops.htf_slow_ma:
        errors.append(
            f"htf_fast_ma ({config.stops.htf_fast_ma}) must be < htf_slow_ma ({config.stops.htf_slow_ma})"
        )

    # Lifecycle validation
    if not 0 < config.lifecycle.partial_close_pct < 100:
        errors.append(f"partial_close_pct ({config.lifecycle.partial_close_pct}) must be in (0, 100)")

    if config.lifecycle.profit_trigger_r <= 0:
        errors.append(f"profit_trigger_r ({config.lifecycle.profit_trigger_r}) must be > 0")

    if config.lifecycle.trail_atr_multiplier <= 0:
        errors.append("trail_atr_multiplier must be > 0")

    if config.lifecycle.trail_min_bars < 0:
        errors.append("trail_min_bars cannot be negative")

    if config.lifecycle.trail_timeframe:
        try:
            Timeframe.parse(config.lifecycle.trail_timeframe)
        except ValueError:
            errors.append(f"trail_timeframe ({config.lifecycle.trail_timeframe!r}) is not a known timeframe")

    if errors:
        raise ConfigValidationError("Configuration validation failed:\n" +
                                   "\n".join(f"  - {e}" for e in errors))

    return warnings


# =============================================================================
# Configuration Export
# =============================================================================

def config_to_dict(config: EngineConfig) -> dict:
    """
    Convert EngineConfig to dictionary for serialization.

    Args:
        config: Configuration to convert

    Returns:
        Dictionary representation (YAML-safe)
    """
    return asdict(config)


def save_config(config: EngineConfig, path: str) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration to save
        path: Output file path
    """
    data = config_to_dict(config)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
