"""
Tests for the account risk gate.

Tests cover:
- Peak equity ratchet
- Daily loss halt and its day-boundary reset
- Drawdown halt under the manual and daily_reset policies
- Manual reset
- Venue timezone day boundaries
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from riskgate.lib.config import RiskConfig
from riskgate.risk.risk_gate import (
    DrawdownHaltPolicy,
    GateReason,
    RiskGate,
    RiskLimits,
    RiskState,
    daily_loss_pct,
    drawdown_pct,
)


@pytest.fixture
def gate():
    """Gate with 5% daily loss, 10% drawdown, manual reset."""
    return RiskGate(RiskLimits(max_daily_loss_pct=5.0, max_drawdown_pct=10.0))


@pytest.fixture
def state(gate, base_time):
    return gate.initial_state(10_000.0, 10_000.0, base_time)


# =============================================================================
# Helpers
# =============================================================================

class TestRiskMath:
    """Tests for the percentage helpers."""

    def test_daily_loss_pct(self):
        """Test loss is measured from the day's starting balance."""
        state = RiskState(daily_start_balance=10_000.0, peak_equity=10_000.0)

        assert daily_loss_pct(state, 9_600.0) == pytest.approx(4.0)
        assert daily_loss_pct(state, 10_400.0) == pytest.approx(-4.0)

    def test_drawdown_pct(self):
        """Test drawdown is measured from peak equity."""
        state = RiskState(daily_start_balance=10_000.0, peak_equity=12_000.0)

        assert drawdown_pct(state, 10_800.0) == pytest.approx(10.0)

    def test_zero_reference(self):
        """Test non-positive references give zero instead of dividing by zero."""
        state = RiskState(daily_start_balance=0.0, peak_equity=0.0)

        assert daily_loss_pct(state, 100.0) == 0.0
        assert drawdown_pct(state, 100.0) == 0.0


# =============================================================================
# Gate
# =============================================================================

class TestRiskGate:
    """Tests for RiskGate.evaluate."""

    def test_initial_state(self, state, base_time):
        """Test the initial state snapshots balance, equity and day."""
        assert state.daily_start_balance == 10_000.0
        assert state.peak_equity == 10_000.0
        assert state.trading_enabled
        assert not state.daily_loss_halt
        assert state.last_day_boundary == base_time.date()

    def test_admits_healthy_account(self, gate, state, base_time):
        """Test a flat account is admitted."""
        result = gate.evaluate(state, 10_000.0, 10_000.0, base_time)

        assert result.admitted
        assert bool(result)
        assert result.reason is None

    def test_peak_ratchets_up_only(self, gate, state, base_time):
        """Test peak equity follows new highs and never falls."""
        state = gate.evaluate(state, 10_000.0, 10_500.0, base_time).state
        assert state.peak_equity == 10_500.0

        state = gate.evaluate(state, 10_000.0, 10_200.0, base_time).state
        assert state.peak_equity == 10_500.0

    def test_state_is_not_mutated(self, gate, state, base_time):
        """Test evaluate returns a new state and leaves its input alone."""
        result = gate.evaluate(state, 10_000.0, 11_000.0, base_time)

        assert state.peak_equity == 10_000.0
        assert result.state is not state

    def test_daily_loss_halt(self, gate, state, base_time):
        """Test a 5% balance loss halts new entries."""
        result = gate.evaluate(state, 9_500.0, 9_500.0, base_time)

        assert not result.admitted
        assert result.reason == GateReason.DAILY_LOSS
        assert result.state.daily_loss_halt

    def test_daily_loss_uses_balance(self, gate, state, base_time):
        """Test floating equity losses do not trip the daily breaker."""
        result = gate.evaluate(state, 10_000.0, 9_400.0, base_time)

        assert result.admitted

    def test_daily_loss_sticks_within_day(self, gate, state, base_time):
        """Test recovery within the same day does not lift the halt."""
        state = gate.evaluate(state, 9_400.0, 9_400.0, base_time).state

        result = gate.evaluate(state, 10_000.0, 10_000.0, base_time + timedelta(hours=2))

        assert not result.admitted
        assert result.reason == GateReason.DAILY_LOSS

    def test_daily_loss_clears_next_day(self, gate, state, base_time):
        """Test the halt clears and the start balance re-snapshots at the day boundary."""
        state = gate.evaluate(state, 9_400.0, 9_400.0, base_time).state

        result = gate.evaluate(state, 9_400.0, 9_400.0, base_time + timedelta(days=1))

        assert result.admitted
        assert not result.state.daily_loss_halt
        assert result.state.daily_start_balance == 9_400.0
        assert result.state.last_day_boundary == (base_time + timedelta(days=1)).date()

    def test_drawdown_halt(self, gate, state, base_time):
        """Test a 10% fall from peak equity disables trading."""
        state = gate.evaluate(state, 10_000.0, 10_500.0, base_time).state

        result = gate.evaluate(state, 10_000.0, 9_450.0, base_time)

        assert not result.admitted
        assert result.reason == GateReason.DRAWDOWN
        assert not result.state.trading_enabled

    def test_daily_loss_reported_first(self, gate, state, base_time):
        """Test the daily breaker is reported when both trip."""
        result = gate.evaluate(state, 9_000.0, 9_000.0, base_time)

        assert result.reason == GateReason.DAILY_LOSS

    def test_manual_policy_survives_day_boundary(self, gate, state, base_time):
        """Test a drawdown halt persists across days under the manual policy."""
        state = gate.evaluate(state, 10_000.0, 9_000.0, base_time).state

        result = gate.evaluate(state, 10_000.0, 10_000.0, base_time + timedelta(days=1))

        assert not result.admitted
        assert result.reason == GateReason.DRAWDOWN

    def test_daily_reset_policy(self, base_time):
        """Test a drawdown halt clears at the day boundary under daily_reset."""
        gate = RiskGate(RiskLimits(drawdown_halt_policy=DrawdownHaltPolicy.DAILY_RESET))
        state = gate.initial_state(10_000.0, 10_000.0, base_time)
        state = gate.evaluate(state, 10_000.0, 9_000.0, base_time).state

        result = gate.evaluate(state, 10_000.0, 9_100.0, base_time + timedelta(days=1))

        assert result.admitted
        assert result.state.trading_enabled
        # Peak re-seeded from current equity
        assert result.state.peak_equity == 9_100.0

    def test_halt_logged_once(self, gate, state, base_time, caplog):
        """Test the circuit breaker is logged on the transition only."""
        with caplog.at_level(logging.CRITICAL, logger="riskgate.risk.risk_gate"):
            state = gate.evaluate(state, 10_000.0, 9_000.0, base_time).state
            gate.evaluate(state, 10_000.0, 8_900.0, base_time)

        breaker = [r for r in caplog.records if "CIRCUIT BREAKER" in r.getMessage()]
        assert len(breaker) == 1

    def test_venue_timezone_day_boundary(self):
        """Test days roll over in the venue's clock, not UTC."""
        gate = RiskGate(RiskLimits(venue_timezone="America/New_York"))
        # 23:00 on Jan 2 in New York
        before = datetime(2024, 1, 3, 4, 0, tzinfo=timezone.utc)
        state = gate.initial_state(10_000.0, 10_000.0, before)
        state = gate.evaluate(state, 9_400.0, 9_400.0, before).state
        assert state.daily_loss_halt

        # 01:00 on Jan 3 in New York
        result = gate.evaluate(state, 9_400.0, 9_400.0, before + timedelta(hours=2))

        assert result.admitted
        assert result.state.last_day_boundary.isoformat() == "2024-01-03"


class TestManualReset:
    """Tests for RiskGate.manual_reset."""

    def test_reenables_and_resnapshots_peak(self, gate, state, base_time):
        """Test manual reset re-enables trading from current equity."""
        state = gate.evaluate(state, 10_000.0, 9_000.0, base_time).state

        state = gate.manual_reset(state, 9_000.0, base_time)
        result = gate.evaluate(state, 10_000.0, 9_000.0, base_time)

        assert result.admitted
        assert result.state.peak_equity == 9_000.0

    def test_leaves_daily_loss_halt(self, gate, state, base_time):
        """Test manual reset does not lift a daily-loss halt."""
        state = gate.evaluate(state, 9_000.0, 9_000.0, base_time).state

        state = gate.manual_reset(state, 9_000.0, base_time)

        assert state.daily_loss_halt
        assert not gate.evaluate(state, 9_000.0, 9_000.0, base_time).admitted


class TestRiskLimits:
    """Tests for RiskLimits.from_config."""

    def test_from_config(self):
        """Test limits and policy are read from the risk config."""
        config = RiskConfig(max_daily_loss_pct=3.0, max_drawdown_pct=8.0, drawdown_halt_policy="daily_reset")

        limits = RiskLimits.from_config(config, "Europe/Athens")

        assert limits.max_daily_loss_pct == 3.0
        assert limits.max_drawdown_pct == 8.0
        assert limits.drawdown_halt_policy == DrawdownHaltPolicy.DAILY_RESET
        assert limits.venue_timezone == "Europe/Athens"

    def test_unknown_policy(self):
        """Test unknown policy names raise."""
        with pytest.raises(ValueError):
            RiskLimits.from_config(RiskConfig(drawdown_halt_policy="never"), "UTC")
