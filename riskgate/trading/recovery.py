"""
Error Handling and Recovery Module.

Classifies and records every failure the engine degrades around. Nothing
here halts the process: each failure path ends in "skip this action" while
open-position management continues.

Error taxonomy:
- INPUT: unusable values (non-positive stop distance, tick size/value,
  buffer size). Abort the single operation, no retry.
- DATA: transient signal-source failures. Retried with a fixed delay up to
  a bound, then the bar is skipped.
- EXECUTION: venue rejections of place/modify/close/cancel. Logged with
  the rejection code, never retried automatically.
- RISK: deliberate halts (daily loss, drawdown). Surfaced as state and
  logs, not exceptions.
- SYSTEM: unexpected exceptions caught at the tick boundary.
"""

import asyncio
import functools
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from riskgate.lib.time_utils import utc_now

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    INPUT = "input"
    DATA = "data"
    EXECUTION = "execution"
    RISK = "risk"
    SYSTEM = "system"


@dataclass
class ErrorEvent:
    """Represents an error event."""
    timestamp: datetime
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    exception: Optional[Exception] = None
    action: str = "skip"

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details,
            "exception": str(self.exception) if self.exception else None,
            "action": self.action,
        }


class RecoveryHandler:
    """
    Records error events and keeps running statistics.

    Usage:
        handler = RecoveryHandler(on_alert=notify)

        handler.record(
            ErrorCategory.EXECUTION,
            "Pending order rejected",
            severity=ErrorSeverity.ERROR,
            details={"retcode": 10016},
        )

        stats = handler.get_error_stats()
    """

    def __init__(
        self,
        max_history: int = 1000,
        consecutive_errors_for_alert: int = 3,
        on_alert: Optional[Callable[[ErrorEvent], None]] = None,
    ):
        """
        Args:
            max_history: Error events kept in memory
            consecutive_errors_for_alert: Consecutive ERROR/CRITICAL events before alerting
            on_alert: Callback for alerts (logging, notifications)
        """
        self.consecutive_errors_for_alert = consecutive_errors_for_alert
        self._on_alert = on_alert
        self._error_history: deque[ErrorEvent] = deque(maxlen=max_history)
        self._consecutive_errors = 0
        self._counts: Dict[ErrorCategory, int] = {c: 0 for c in ErrorCategory}

    def record(
        self,
        category: ErrorCategory,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
        action: str = "skip",
        timestamp: Optional[datetime] = None,
    ) -> ErrorEvent:
        """
        Record and log an error event.

        Returns:
            The recorded event
        """
        event = ErrorEvent(
            timestamp=timestamp or utc_now(),
            category=category,
            severity=severity,
            message=message,
            details=details,
            exception=exception,
            action=action,
        )
        self._log_error(event)

        if severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL):
            self._consecutive_errors += 1
            if (
                severity == ErrorSeverity.CRITICAL
                or self._consecutive_errors >= self.consecutive_errors_for_alert
            ):
                self._send_alert(event)

        return event

    def record_success(self) -> None:
        """Reset the consecutive error streak."""
        self._consecutive_errors = 0

    def _log_error(self, error: ErrorEvent) -> None:
        """Log an error event."""
        self._error_history.append(error)
        self._counts[error.category] += 1

        log_method = {
            ErrorSeverity.DEBUG: logger.debug,
            ErrorSeverity.WARNING: logger.warning,
            ErrorSeverity.ERROR: logger.error,
            ErrorSeverity.CRITICAL: logger.critical,
        }.get(error.severity, logger.error)

        log_method(f"[{error.category.value}] {error.message} -> {error.action}")
        if error.details:
            log_method(f"  Details: {error.details}")

    def _send_alert(self, error: ErrorEvent) -> None:
        """Send alert via callback."""
        if self._on_alert:
            try:
                self._on_alert(error)
            except Exception as e:
                logger.error(f"Failed to send alert: {e}")

    def get_error_history(
        self,
        since: Optional[datetime] = None,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
    ) -> list[ErrorEvent]:
        """
        Get error history with optional filters.

        Args:
            since: Only errors at or after this time
            category: Filter by category
            severity: Filter by severity

        Returns:
            Filtered error list (oldest first)
        """
        errors = list(self._error_history)

        if since:
            errors = [e for e in errors if e.timestamp >= since]
        if category:
            errors = [e for e in errors if e.category == category]
        if severity:
            errors = [e for e in errors if e.severity == severity]

        return errors

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        last_hour = utc_now() - timedelta(hours=1)
        last = self._error_history[-1] if self._error_history else None

        return {
            "total_errors": sum(self._counts.values()),
            "errors_last_hour": sum(1 for e in self._error_history if e.timestamp >= last_hour),
            "by_category": {c.value: n for c, n in self._counts.items()},
            "consecutive_errors": self._consecutive_errors,
            "last_error_time": last.timestamp.isoformat() if last else None,
        }

    def reset(self) -> None:
        """Reset history and counters."""
        self._error_history.clear()
        self._consecutive_errors = 0
        self._counts = {c: 0 for c in ErrorCategory}
        logger.info("Recovery state reset")


# Convenience decorators for error handling


def with_retry(
    max_attempts: int = 3,
    delay_seconds: float = 1.0,
    exceptions: tuple = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Decorator for async functions with bounded fixed-delay retry.

    The wrapped coroutine is attempted at most ``max_attempts`` times,
    sleeping ``delay_seconds`` between attempts without blocking the event
    loop. The last exception is re-raised once attempts are exhausted.

    Args:
        max_attempts: Total attempts (>= 1)
        delay_seconds: Fixed delay between attempts
        exceptions: Exception types that trigger a retry
        on_retry: Called with (attempt, exception) before each retry
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        raise
                    logger.warning(
                        f"Retry {attempt}/{max_attempts - 1} for {getattr(func, '__name__', func)}, "
                        f"waiting {delay_seconds:.1f}s: {e}"
                    )
                    if on_retry:
                        on_retry(attempt, e)
                    await asyncio.sleep(delay_seconds)
        return wrapper
    return decorator
