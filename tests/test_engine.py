"""
Tests for the trading engine tick handler.

Runs the engine against a paper venue and an in-memory signal source:
- Closed-bar detection (baseline, scheduling, superseded bars)
- Decision to pending order, end to end
- Risk gate, admission filters and open-position limit
- Retrieval failures and tick handler errors
- Run loop, manual reset and status
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest

from riskgate.api.indicators import BarIndicatorEngine
from riskgate.api.models import OrderSide, OrderType
from riskgate.api.paper import PaperVenue
from riskgate.lib.time_utils import Timeframe
from riskgate.risk.risk_gate import GateReason, RiskState
from riskgate.signals.records import SignalDirection
from riskgate.signals.source import SignalSourceError
from riskgate.trading.engine import TickResult, TradingEngine
from riskgate.trading.recovery import ErrorCategory

BUY = SignalDirection.BUY
SELL = SignalDirection.SELL


class MemorySource:
    """Signal source serving a fixed list of records by window."""

    def __init__(self, records=None, error=None):
        self.records = records or []
        self.error = error
        self.calls = []

    async def fetch(self, timeframe, since, until):
        self.calls.append((timeframe, since, until))
        if self.error:
            raise self.error
        return [
            r for r in self.records
            if r.timestamp <= until and (since is None or r.timestamp > since)
        ]


@pytest.fixture
def times(base_time):
    """Tick instants one second before each M15 close around the hammer bar."""
    step = Timeframe.M15.duration - timedelta(seconds=1)
    return {
        # Hammer bar (base_time) is forming
        "baseline": base_time + step,
        # Hammer bar is the last closed bar
        "closed": base_time + Timeframe.M15.duration + step,
        # Bar after the hammer is the last closed bar
        "next": base_time + 2 * Timeframe.M15.duration + step,
    }


@pytest.fixture
def venue(instrument, make_bars, make_bar, base_time):
    """Flat M15/H1 history with a bullish rejection candle at base_time."""
    m15 = make_bars(base_time - 100 * Timeframe.M15.duration, Timeframe.M15, 104)
    m15[100] = make_bar(base_time, 1.10000, 1.10120, 1.09800, 1.10100)
    h1 = make_bars(base_time - 30 * Timeframe.H1.duration, Timeframe.H1, 32)
    return PaperVenue(instrument, balance=10_000.0, bars={Timeframe.M15: m15, Timeframe.H1: h1})


@pytest.fixture
def buy_source(make_records, base_time):
    return MemorySource(make_records([BUY] * 4, end=base_time))


def make_engine(config, venue, source):
    return TradingEngine(
        config,
        feed=venue,
        indicators=BarIndicatorEngine(venue),
        account=venue,
        gateway=venue,
        signal_source=source,
    )


@pytest.fixture
def engine(engine_config, venue, buy_source):
    return make_engine(engine_config, venue, buy_source)


def tick(engine, venue, now, spread_points=10.0) -> TickResult:
    venue.step(now, spread_points=spread_points)
    return engine.on_tick(now)


async def close_hammer_bar(engine, venue, times, spread_points=10.0) -> TickResult:
    """Baseline tick, closing tick, flush, then the evaluating tick."""
    tick(engine, venue, times["baseline"])
    closing = tick(engine, venue, times["closed"], spread_points)
    assert closing.scheduled == [Timeframe.M15]
    assert await engine.flush_retrievals() == 1
    return engine.on_tick(times["closed"])


# =============================================================================
# Closed Bar Detection
# =============================================================================

class TestClosedBarDetection:
    """Tests for new-bar detection and retrieval scheduling."""

    @pytest.mark.asyncio
    async def test_first_bar_is_baseline(self, engine, venue, times, base_time, buy_source):
        """Test the first observed bar schedules nothing."""
        result = tick(engine, venue, times["baseline"])

        assert result.error is None
        assert result.scheduled == []
        assert buy_source.calls == []
        last = engine.get_status()["last_closed_bars"]
        assert last["M15"] == (base_time - Timeframe.M15.duration).isoformat()

    @pytest.mark.asyncio
    async def test_new_bar_schedules_retrieval(self, engine, venue, times, buy_source):
        """Test a newly closed bar schedules one background fetch."""
        tick(engine, venue, times["baseline"])

        result = tick(engine, venue, times["closed"])

        assert result.scheduled == [Timeframe.M15]
        assert result.decisions == []
        await engine.flush_retrievals()
        assert buy_source.calls == [(Timeframe.M15, None, times["closed"])]

    @pytest.mark.asyncio
    async def test_same_bar_not_rescheduled(self, engine, venue, times):
        """Test later ticks in the same bar schedule nothing."""
        tick(engine, venue, times["baseline"])
        tick(engine, venue, times["closed"])

        result = tick(engine, venue, times["closed"] + timedelta(seconds=0.5))

        assert result.scheduled == []

    @pytest.mark.asyncio
    async def test_fetch_window_starts_at_last_processed(self, engine, venue, times, base_time, buy_source):
        """Test the next fetch asks only for records newer than the last one processed."""
        await close_hammer_bar(engine, venue, times)

        tick(engine, venue, times["next"])
        await engine.flush_retrievals()

        assert buy_source.calls[1] == (Timeframe.M15, base_time, times["next"])

    @pytest.mark.asyncio
    async def test_superseded_retrieval_not_evaluated(self, engine, venue, times):
        """Test results for an older bar fill the buffer but are not traded."""
        tick(engine, venue, times["baseline"])
        tick(engine, venue, times["closed"])
        await engine.flush_retrievals()

        result = tick(engine, venue, times["next"])

        assert any("superseded" in s for s in result.skipped)
        assert result.decisions == []
        assert len(engine.buffers[Timeframe.M15]) == 4
        assert venue.get_pending_orders() == []


# =============================================================================
# Decisions & Placement
# =============================================================================

class TestDecisionFlow:
    """Tests for the path from signals to a pending order."""

    @pytest.mark.asyncio
    async def test_decision_places_pending_order(self, engine, venue, times, base_time):
        """Test a confirmed BUY becomes a buy stop that expires after two bars."""
        result = await close_hammer_bar(engine, venue, times)

        assert result.error is None
        assert result.admitted
        assert len(result.decisions) == 1
        decision = result.decisions[0]
        assert decision.direction == BUY
        assert decision.timeframe == Timeframe.M15
        assert decision.bar_time == base_time
        assert decision.stop_distance == pytest.approx(decision.atr * 1.5)

        assert len(result.placements) == 1
        assert result.placements[0].success
        orders = venue.get_pending_orders(symbol="EURUSD", magic=engine.magic)
        assert len(orders) == 1
        assert orders[0].order_type == OrderType.BUY_STOP
        assert orders[0].price == pytest.approx(1.10020)
        assert orders[0].expiration == times["closed"] + timedelta(minutes=30)

        status = engine.get_status()
        assert status["decisions"] == 1
        assert status["orders_placed"] == 1

    @pytest.mark.asyncio
    async def test_flush_with_nothing_pending(self, engine, venue, times):
        """Test flushing without retrievals reports nothing waiting."""
        tick(engine, venue, times["baseline"])

        assert await engine.flush_retrievals() == 0

    @pytest.mark.asyncio
    async def test_pipeline_rejection_reported(self, engine_config, venue, times, make_records, base_time):
        """Test a SELL consensus against a bullish candle is rejected at the candle stage."""
        engine = make_engine(engine_config, venue, MemorySource(make_records([SELL] * 4, end=base_time)))

        result = await close_hammer_bar(engine, venue, times)

        assert result.decisions == []
        assert any("rejected at candle" in s for s in result.skipped)
        assert venue.get_pending_orders() == []

    @pytest.mark.asyncio
    async def test_failed_retrieval_skips_bar(self, engine_config, venue, times):
        """Test an exhausted retrieval skips the bar and is recorded as a data error."""
        source = MemorySource(error=SignalSourceError("endpoint down"))
        engine = make_engine(engine_config, venue, source)

        result = await close_hammer_bar(engine, venue, times)

        assert any("retrieval failed" in s for s in result.skipped)
        assert result.decisions == []
        assert len(source.calls) == engine_config.signals.max_attempts
        assert engine.recovery.get_error_history(category=ErrorCategory.DATA)


# =============================================================================
# Gating
# =============================================================================

class TestGating:
    """Tests for the risk gate, filters and the open-position limit."""

    @pytest.mark.asyncio
    async def test_daily_loss_blocks_entries(self, engine, venue, times):
        """Test a realized daily loss halts new entries but keeps the buffer fresh."""
        tick(engine, venue, times["baseline"])
        loser = venue.open_position(OrderSide.BUY, 10.0, 1.10600, magic=999)
        venue.close_position(loser.position_id)

        tick(engine, venue, times["closed"])
        await engine.flush_retrievals()
        result = engine.on_tick(times["closed"])

        assert not result.admitted
        assert result.gate_reason == GateReason.DAILY_LOSS
        assert any("risk gate (daily_loss)" in s for s in result.skipped)
        assert result.decisions == []
        assert len(engine.buffers[Timeframe.M15]) == 4
        assert venue.get_pending_orders() == []
        assert engine.risk_state.daily_loss_halt

    @pytest.mark.asyncio
    async def test_lifecycle_runs_while_blocked(self, engine, venue, times):
        """Test open positions are still managed while the gate refuses entries."""
        tick(engine, venue, times["baseline"])
        venue.open_position(
            OrderSide.BUY, 0.1, 1.10000, magic=engine.magic, stop_loss=1.09000, take_profit=1.12000,
        )
        loser = venue.open_position(OrderSide.BUY, 10.0, 1.10600, magic=999)
        venue.close_position(loser.position_id)

        result = tick(engine, venue, times["closed"])

        assert not result.admitted
        assert result.lifecycle.managed == 1

    @pytest.mark.asyncio
    async def test_wide_spread_filtered(self, engine, venue, times):
        """Test a spread above the maximum rejects the entry."""
        result = await close_hammer_bar(engine, venue, times, spread_points=35.0)

        assert result.admitted
        assert any("spread" in s for s in result.skipped)
        assert result.decisions == []

    @pytest.mark.asyncio
    async def test_open_position_limit(self, engine, venue, times):
        """Test no new entry is taken while an engine position is open."""
        tick(engine, venue, times["baseline"])
        venue.open_position(
            OrderSide.BUY, 0.1, 1.10100, magic=engine.magic, stop_loss=1.09000, take_profit=1.12000,
        )

        tick(engine, venue, times["closed"])
        await engine.flush_retrievals()
        result = engine.on_tick(times["closed"])

        assert any("1 open position(s)" in s for s in result.skipped)
        assert result.decisions == []

    @pytest.mark.asyncio
    async def test_foreign_positions_do_not_count(self, engine, venue, times):
        """Test positions with another magic number do not use the limit."""
        tick(engine, venue, times["baseline"])
        venue.open_position(OrderSide.BUY, 0.1, 1.10100, magic=999)

        tick(engine, venue, times["closed"])
        await engine.flush_retrievals()
        result = engine.on_tick(times["closed"])

        assert len(result.decisions) == 1


# =============================================================================
# Errors, Loop & Control
# =============================================================================

class TestEngineControl:
    """Tests for error containment, the run loop, manual reset and status."""

    @pytest.mark.asyncio
    async def test_tick_error_recorded(self, engine, venue, times):
        """Test an exception in a collaborator ends the tick as a SYSTEM error."""
        tick(engine, venue, times["baseline"])

        with patch.object(engine.lifecycle, "manage", side_effect=RuntimeError("broker gone")):
            result = tick(engine, venue, times["closed"])

        assert result.error == "broker gone"
        events = engine.recovery.get_error_history(category=ErrorCategory.SYSTEM)
        assert len(events) == 1
        assert events[0].action == "skip_tick"

        after = tick(engine, venue, times["closed"] + timedelta(seconds=0.5))
        assert after.error is None

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, engine, venue, times):
        """Test the run loop ticks until the stop event is set."""
        venue.step(times["baseline"], spread_points=10)
        stop = asyncio.Event()

        async def stopper():
            await asyncio.sleep(0.05)
            stop.set()

        await asyncio.gather(engine.run(stop, poll_interval=0.001), stopper())

        assert engine.get_status()["ticks"] >= 1
        assert engine.retriever.pending_count == 0

    @pytest.mark.asyncio
    async def test_run_cancelled(self, engine, venue, times):
        """Test cancelling the run loop propagates."""
        venue.step(times["baseline"], spread_points=10)
        task = asyncio.create_task(engine.run(poll_interval=0.001))
        await asyncio.sleep(0.01)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    def test_manual_reset_before_first_tick(self, engine, times):
        """Test a reset before the engine has state is ignored."""
        assert engine.manual_reset(times["baseline"]) is None

    @pytest.mark.asyncio
    async def test_manual_reset_after_tick(self, engine, venue, times):
        """Test a reset returns a trading-enabled state seeded from equity."""
        tick(engine, venue, times["baseline"])

        state = engine.manual_reset(times["baseline"])

        assert isinstance(state, RiskState)
        assert state.trading_enabled
        assert state.peak_equity == pytest.approx(10_000.0)
        assert engine.risk_state is state

    @pytest.mark.asyncio
    async def test_status(self, engine, venue, times):
        """Test the status snapshot exposes engine, risk and buffer state."""
        assert engine.get_status()["risk"] is None

        tick(engine, venue, times["baseline"])
        status = engine.get_status()

        assert status["symbol"] == "EURUSD"
        assert status["ticks"] == 1
        assert status["last_tick"] == times["baseline"].isoformat()
        assert set(status["buffers"]) == {"M15", "H1"}
        assert status["risk"]["trading_enabled"]
        assert status["risk"]["daily_start_balance"] == pytest.approx(10_000.0)
        assert status["pending_retrievals"] == 0
        assert "tracked_positions" in status["lifecycle"]
        assert status["errors"]["total_errors"] == 0
