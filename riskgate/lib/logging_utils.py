"""
Structured logging utilities for engine operations.

This module provides:
- Configured logging with rotation and formatting
- A formatter that stamps records in the venue's clock
- Structured helpers for decisions, orders, position events and risk events

Log Format:
    YYYY-MM-DD HH:MM:SS.mmm [LEVEL] module - message [key=value ...]

Example usage:
    from riskgate.lib.logging_utils import setup_logging, get_logger

    setup_logging(level="INFO", log_dir="./logs")

    logger = get_logger(__name__)
    logger.info("Order placed", extra={"order_id": "123"})
"""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from riskgate.lib.time_utils import to_venue_time, utc_now


# Attributes every LogRecord carries; anything else came in via extra=
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


# =============================================================================
# Log Formatting
# =============================================================================

class TradingFormatter(logging.Formatter):
    """
    Custom formatter for engine logs.

    Features:
    - Millisecond precision timestamps
    - Venue timezone
    - Colored output for terminal (optional)
    - Extra fields appended as key=value
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        use_colors: bool = False,
        venue_timezone: Optional[str] = None,
        include_extras: bool = True
    ):
        """
        Initialize formatter.

        Args:
            use_colors: Enable ANSI colors for terminal output
            venue_timezone: Timezone for timestamps (default venue timezone)
            include_extras: Include extra fields in output
        """
        self.use_colors = use_colors
        self.venue_timezone = venue_timezone
        self.include_extras = include_extras

        fmt = "[%(levelname)-8s] %(name)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with timestamp and optional colors."""
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        timestamp = to_venue_time(created, self.venue_timezone).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        message = super().format(record)

        if self.include_extras:
            extras = {
                k: v for k, v in record.__dict__.items()
                if k not in _RESERVED_ATTRS and not k.startswith("_")
            }
            if extras:
                extras_str = " ".join(f"{k}={v}" for k, v in extras.items())
                message = f"{message} [{extras_str}]"

        full_message = f"{timestamp} {message}"

        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{full_message}{self.RESET}"

        return full_message


# =============================================================================
# Logging Setup
# =============================================================================

def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    use_colors: bool = True,
    venue_timezone: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Setup application-wide logging configuration.

    Creates handlers for:
    - Console output (with colors if terminal)
    - File output with rotation (if log_dir provided)

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (optional)
        log_file: Specific log file name (default: riskgate_YYYY-MM-DD.log)
        use_colors: Enable colored console output
        venue_timezone: Timezone used for timestamps and the default file name
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Root logger
    """
    root_logger = logging.getLogger()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        TradingFormatter(use_colors=use_colors, venue_timezone=venue_timezone)
    )
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        if not log_file:
            today = to_venue_time(utc_now(), venue_timezone).strftime("%Y-%m-%d")
            log_file = f"riskgate_{today}.log"

        file_handler = RotatingFileHandler(
            log_path / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            TradingFormatter(use_colors=False, venue_timezone=venue_timezone)
        )
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for the given module name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


# =============================================================================
# Trading Logger
# =============================================================================

class TradingLogger:
    """
    Specialized logger for engine events.

    Provides methods for logging:
    - Accepted decisions
    - Order placements and rejections
    - Position management events (partial close, breakeven, trailing)
    - Risk events (halts, resets)

    All methods accept extra fields as kwargs for structured logging.
    """

    def __init__(self, name: str = "riskgate.trading"):
        self._logger = logging.getLogger(name)

    def decision(
        self,
        direction: str,
        timeframe: str,
        strength: float,
        stop_distance: float,
        structural: bool,
        **kwargs: Any
    ) -> None:
        """
        Log an accepted confirmation decision.

        Args:
            direction: BUY or SELL
            timeframe: Timeframe the decision was made on
            strength: Weighted signal strength
            stop_distance: Stop distance in price units
            structural: Whether structure confirmed the direction
            **kwargs: Additional fields
        """
        self._logger.info(
            f"DECISION: {direction} tf={timeframe} strength={strength:.2f} "
            f"stop={stop_distance:.5f} structural={structural}",
            extra={"direction": direction, "timeframe": timeframe, "strength": strength,
                   "stop_distance": stop_distance, "structural": structural, **kwargs}
        )

    def order(
        self,
        order_type: str,
        volume: float,
        price: float,
        stop_loss: float,
        take_profit: float,
        order_id: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """
        Log a pending order placement.

        Args:
            order_type: BUY_STOP or SELL_STOP
            volume: Lot size
            price: Entry price
            stop_loss: Stop loss price
            take_profit: Take profit price
            order_id: Order ID if available
            **kwargs: Additional fields
        """
        self._logger.info(
            f"ORDER: {order_type} {volume} @ {price} sl={stop_loss} tp={take_profit}",
            extra={"order_type": order_type, "volume": volume, "price": price,
                   "stop_loss": stop_loss, "take_profit": take_profit,
                   "order_id": order_id, **kwargs}
        )

    def rejection(
        self,
        operation: str,
        retcode: int,
        details: str,
        **kwargs: Any
    ) -> None:
        """
        Log an execution failure reported by the venue.

        Args:
            operation: What was attempted (place, modify, close, cancel)
            retcode: Venue rejection code
            details: Venue message
            **kwargs: Additional fields
        """
        self._logger.error(
            f"REJECTED: {operation} retcode={retcode} - {details}",
            extra={"operation": operation, "retcode": retcode, "details": details, **kwargs}
        )

    def position_event(
        self,
        event_type: str,
        position_id: str,
        details: str,
        **kwargs: Any
    ) -> None:
        """
        Log a position management event.

        Args:
            event_type: PARTIAL_CLOSE, BREAKEVEN, TRAILING
            position_id: Position identifier
            details: Event details
            **kwargs: Additional fields
        """
        self._logger.info(
            f"POSITION: {event_type} #{position_id} - {details}",
            extra={"event_type": event_type, "position_id": position_id, **kwargs}
        )

    def risk_event(
        self,
        event_type: str,
        details: str,
        **kwargs: Any
    ) -> None:
        """
        Log a risk management event.

        Args:
            event_type: Event type (DAILY_LOSS_HALT, DRAWDOWN_HALT, DAY_RESET, etc.)
            details: Event details
            **kwargs: Additional fields
        """
        self._logger.warning(
            f"RISK: {event_type} - {details}",
            extra={"event_type": event_type, "details": details, **kwargs}
        )

    def session_start(
        self,
        symbol: str,
        balance: float,
        timeframes: list[str],
        **kwargs: Any
    ) -> None:
        """Log engine start."""
        self._logger.info(
            f"SESSION START: {symbol} balance={balance:.2f} timeframes={','.join(timeframes)}",
            extra={"symbol": symbol, "balance": balance, **kwargs}
        )

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._logger.error(message, exc_info=exc_info, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, extra=kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, extra=kwargs)
