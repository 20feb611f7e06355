"""
Tests for error recording and retry.

Tests cover:
- RecoveryHandler recording, counters and history filters
- Alerting on consecutive errors and critical events
- with_retry decorator
"""

import inspect
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from riskgate.trading.recovery import (
    ErrorCategory,
    ErrorEvent,
    ErrorSeverity,
    RecoveryHandler,
    with_retry,
)


# =============================================================================
# RecoveryHandler Tests
# =============================================================================

class TestRecoveryHandler:
    """Tests for RecoveryHandler."""

    def test_record_returns_event(self):
        """Test record builds and stores an event."""
        handler = RecoveryHandler()
        ts = datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc)

        event = handler.record(
            ErrorCategory.EXECUTION,
            "Pending order rejected",
            details={"retcode": 10016},
            action="log_and_continue",
            timestamp=ts,
        )

        assert event.timestamp == ts
        assert event.severity == ErrorSeverity.ERROR
        assert handler.get_error_history() == [event]

    def test_stats_by_category(self):
        """Test statistics count events per category."""
        handler = RecoveryHandler()
        handler.record(ErrorCategory.DATA, "timeout", severity=ErrorSeverity.WARNING)
        handler.record(ErrorCategory.DATA, "timeout", severity=ErrorSeverity.WARNING)
        handler.record(ErrorCategory.INPUT, "bad stop")

        stats = handler.get_error_stats()

        assert stats["total_errors"] == 3
        assert stats["by_category"]["data"] == 2
        assert stats["by_category"]["input"] == 1
        assert stats["by_category"]["system"] == 0
        assert stats["errors_last_hour"] == 3
        assert stats["last_error_time"] is not None

    def test_warnings_do_not_count_as_consecutive(self):
        """Test only ERROR and CRITICAL events build the streak."""
        handler = RecoveryHandler()
        handler.record(ErrorCategory.DATA, "slow", severity=ErrorSeverity.WARNING)
        handler.record(ErrorCategory.EXECUTION, "rejected")

        assert handler.get_error_stats()["consecutive_errors"] == 1

    def test_alert_after_consecutive_errors(self):
        """Test the alert fires once the streak reaches the threshold."""
        on_alert = MagicMock()
        handler = RecoveryHandler(consecutive_errors_for_alert=2, on_alert=on_alert)

        handler.record(ErrorCategory.EXECUTION, "first")
        on_alert.assert_not_called()

        event = handler.record(ErrorCategory.EXECUTION, "second")
        on_alert.assert_called_once_with(event)

    def test_record_success_resets_streak(self):
        """Test a success clears the consecutive counter."""
        on_alert = MagicMock()
        handler = RecoveryHandler(consecutive_errors_for_alert=2, on_alert=on_alert)

        handler.record(ErrorCategory.EXECUTION, "first")
        handler.record_success()
        handler.record(ErrorCategory.EXECUTION, "second")

        on_alert.assert_not_called()

    def test_critical_alerts_immediately(self):
        """Test CRITICAL events alert without a streak."""
        on_alert = MagicMock()
        handler = RecoveryHandler(on_alert=on_alert)

        handler.record(ErrorCategory.SYSTEM, "tick crashed", severity=ErrorSeverity.CRITICAL)

        on_alert.assert_called_once()

    def test_alert_callback_failure_is_logged(self):
        """Test a failing alert callback does not propagate."""
        handler = RecoveryHandler(on_alert=MagicMock(side_effect=RuntimeError("smtp down")))

        with patch("riskgate.trading.recovery.logger") as mock_logger:
            handler.record(ErrorCategory.SYSTEM, "boom", severity=ErrorSeverity.CRITICAL)

        messages = [c.args[0] for c in mock_logger.error.call_args_list]
        assert any("Failed to send alert" in m for m in messages)

    def test_history_filters(self):
        """Test history filters by time, category and severity."""
        handler = RecoveryHandler()
        old = datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)
        new = old + timedelta(hours=1)
        handler.record(ErrorCategory.DATA, "old", severity=ErrorSeverity.WARNING, timestamp=old)
        handler.record(ErrorCategory.EXECUTION, "new", timestamp=new)

        assert [e.message for e in handler.get_error_history(since=new)] == ["new"]
        assert [e.message for e in handler.get_error_history(category=ErrorCategory.DATA)] == ["old"]
        assert [e.message for e in handler.get_error_history(severity=ErrorSeverity.ERROR)] == ["new"]

    def test_max_history(self):
        """Test history is bounded."""
        handler = RecoveryHandler(max_history=2)
        for i in range(5):
            handler.record(ErrorCategory.DATA, f"e{i}", severity=ErrorSeverity.WARNING)

        assert [e.message for e in handler.get_error_history()] == ["e3", "e4"]
        assert handler.get_error_stats()["total_errors"] == 5

    def test_reset(self):
        """Test reset clears history and counters."""
        handler = RecoveryHandler()
        handler.record(ErrorCategory.SYSTEM, "boom")

        handler.reset()

        stats = handler.get_error_stats()
        assert stats["total_errors"] == 0
        assert stats["consecutive_errors"] == 0
        assert handler.get_error_history() == []


class TestErrorEvent:
    """Tests for ErrorEvent."""

    def test_to_dict(self):
        """Test serialization stringifies the exception."""
        event = ErrorEvent(
            timestamp=datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc),
            category=ErrorCategory.DATA,
            severity=ErrorSeverity.WARNING,
            message="fetch failed",
            exception=TimeoutError("slow"),
            action="retry",
        )

        d = event.to_dict()

        assert d["category"] == "data"
        assert d["severity"] == "warning"
        assert d["exception"] == "slow"
        assert d["action"] == "retry"
        assert d["timestamp"] == "2024-01-03T10:00:00+00:00"


# =============================================================================
# with_retry Tests
# =============================================================================

class TestWithRetry:
    """Tests for with_retry decorator."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        """Test success on first attempt."""

        @with_retry(max_attempts=3, delay_seconds=0)
        async def success_func():
            return "success"

        assert await success_func() == "success"

    @pytest.mark.asyncio
    async def test_success_after_retries(self):
        """Test success after transient failures."""
        call_count = 0

        @with_retry(max_attempts=3, delay_seconds=0)
        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("transient")
            return "ok"

        assert await flaky() == "ok"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_reraises(self):
        """Test the last exception propagates once attempts run out."""
        call_count = 0

        @with_retry(max_attempts=2, delay_seconds=0)
        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise ConnectionError(f"attempt {call_count}")

        with pytest.raises(ConnectionError, match="attempt 2"):
            await always_fails()
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_only_listed_exceptions_retry(self):
        """Test other exception types fail immediately."""
        call_count = 0

        @with_retry(max_attempts=3, delay_seconds=0, exceptions=(ConnectionError,))
        async def wrong_type():
            nonlocal call_count
            call_count += 1
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await wrong_type()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_on_retry_and_delay(self):
        """Test on_retry is called and the delay is awaited between attempts."""
        on_retry = MagicMock()

        @with_retry(max_attempts=3, delay_seconds=0.5, on_retry=on_retry)
        async def always_fails():
            raise ConnectionError("down")

        with patch("riskgate.trading.recovery.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(ConnectionError):
                await always_fails()

        assert on_retry.call_count == 2
        assert str(on_retry.call_args_list[0].args[1]) == "down"
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 0.5]

    def test_invalid_attempts(self):
        """Test max_attempts below 1 is rejected."""
        with pytest.raises(ValueError):
            with_retry(max_attempts=0)

    @pytest.mark.asyncio
    async def test_preserves_name(self):
        """Test functools.wraps keeps the function name."""

        @with_retry()
        async def fetch_signals():
            return 1

        assert fetch_signals.__name__ == "fetch_signals"
        assert inspect.iscoroutinefunction(fetch_signals)
