"""
Trading Engine - tick handler.

Wires the risk gate, admission filters, signal buffers, confirmation
pipeline, order placement and position lifecycle manager around the
external collaborators (feed, indicators, account, gateway, signal source).

Per tick, in order:
1. Risk gate evaluation (result kept for the whole tick)
2. Lifecycle management of every engine position, gate or no gate
3. Completed signal retrievals are applied to their buffers; a retrieval
   for the latest closed bar is evaluated when the gate admits, the
   filters pass and the open-position limit is not reached
4. Newly closed bars schedule a background retrieval

The tick handler is synchronous and must run inside an event loop (the
retrievals are asyncio tasks). Engine state is only mutated here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from riskgate.api.interfaces import AccountProvider, IndicatorEngine, MarketDataFeed, OrderGateway
from riskgate.api.models import InstrumentSpec, Quote
from riskgate.lib.config import EngineConfig
from riskgate.lib.logging_utils import TradingLogger
from riskgate.lib.time_utils import Timeframe, ensure_aware, utc_now
from riskgate.risk.filters import AdmissionFilters
from riskgate.risk.risk_gate import GateReason, GateResult, RiskGate, RiskLimits, RiskState
from riskgate.signals.buffer import SignalBuffer
from riskgate.signals.confirmation import ConfirmationPipeline, Decision, PipelineConfig
from riskgate.signals.source import SignalSource
from riskgate.trading.lifecycle import LifecycleReport, PositionLifecycleManager
from riskgate.trading.order_placement import OrderPlacer, PlacementResult
from riskgate.trading.recovery import ErrorCategory, ErrorSeverity, RecoveryHandler
from riskgate.trading.retrieval import RetrievalResult, SignalRetriever

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """What happened during one tick."""
    time: datetime
    admitted: bool = False
    gate_reason: Optional[GateReason] = None
    lifecycle: Optional[LifecycleReport] = None
    decisions: list[Decision] = field(default_factory=list)
    placements: list[PlacementResult] = field(default_factory=list)
    scheduled: list[Timeframe] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    error: Optional[str] = None


class TradingEngine:
    """
    Risk-gated decision engine for one instrument on two timeframes.

    Usage:
        engine = TradingEngine(config, feed, indicators, account, gateway, source)

        # live
        await engine.run(stop_event)

        # replay, inside a running loop
        venue.step(now)
        engine.on_tick(now)
        if await engine.flush_retrievals():
            engine.on_tick(now)
    """

    def __init__(
        self,
        config: EngineConfig,
        feed: MarketDataFeed,
        indicators: IndicatorEngine,
        account: AccountProvider,
        gateway: OrderGateway,
        signal_source: SignalSource,
        recovery: Optional[RecoveryHandler] = None,
        trading_logger: Optional[TradingLogger] = None,
    ):
        self.config = config
        self.feed = feed
        self.indicators = indicators
        self.account = account
        self.gateway = gateway
        self.symbol = config.instrument.symbol
        self.magic = config.instrument.magic
        self.recovery = recovery or RecoveryHandler()
        self._events = trading_logger or TradingLogger("riskgate.trading")

        venue_timezone = config.instrument.venue_timezone
        self.gate = RiskGate(RiskLimits.from_config(config.risk, venue_timezone), self._events)
        self.filters = AdmissionFilters.from_config(config.filters, venue_timezone)
        self.pipeline = ConfirmationPipeline(PipelineConfig.from_engine_config(config), feed, indicators)
        self.placer = OrderPlacer(
            symbol=self.symbol,
            magic=self.magic,
            gateway=gateway,
            risk_percent=config.risk.risk_percent,
            pending_offset_points=config.stops.pending_offset_points,
            recovery=self.recovery,
            trading_logger=self._events,
        )
        self.lifecycle = PositionLifecycleManager(
            config.lifecycle,
            symbol=self.symbol,
            magic=self.magic,
            gateway=gateway,
            indicators=indicators,
            trail_timeframe=config.trail_timeframe,
            atr_period=config.stops.atr_period,
            recovery=self.recovery,
            trading_logger=self._events,
        )
        self.retriever = SignalRetriever(
            signal_source,
            max_attempts=config.signals.max_attempts,
            retry_delay_seconds=config.signals.retry_delay_seconds,
            recovery=self.recovery,
        )
        self.buffers: dict[Timeframe, SignalBuffer] = {
            tf: SignalBuffer(config.signals.max_data_size, name=tf.value)
            for tf in config.traded_timeframes
        }

        self._risk_state: Optional[RiskState] = None
        self._last_closed_bar: dict[Timeframe, datetime] = {}
        self._tick_count = 0
        self._decision_count = 0
        self._order_count = 0
        self._last_tick: Optional[datetime] = None

    @property
    def risk_state(self) -> Optional[RiskState]:
        return self._risk_state

    # =========================================================================
    # Tick Handler
    # =========================================================================

    def on_tick(self, now: Optional[datetime] = None) -> TickResult:
        """
        Handle one market tick.

        Unexpected exceptions are recorded as SYSTEM errors and end the tick;
        the next tick starts clean.

        Args:
            now: Current instant (default: wall clock, UTC)

        Returns:
            TickResult
        """
        now = ensure_aware(now) if now is not None else utc_now()
        result = TickResult(time=now)
        self._tick_count += 1
        self._last_tick = now

        try:
            self._tick(now, result)
        except Exception as e:
            result.error = str(e)
            self.recovery.record(
                ErrorCategory.SYSTEM,
                f"Unhandled error in tick handler: {e}",
                severity=ErrorSeverity.ERROR,
                exception=e,
                action="skip_tick",
                timestamp=now,
            )
            logger.debug("Tick handler traceback", exc_info=True)

        return result

    def _tick(self, now: datetime, result: TickResult) -> None:
        snapshot = self.account.get_account()
        if self._risk_state is None:
            self._risk_state = self.gate.initial_state(snapshot.balance, snapshot.equity, now)
            self._events.session_start(
                self.symbol,
                snapshot.balance,
                [tf.value for tf in self.buffers],
                magic=self.magic,
            )

        gate = self.gate.evaluate(self._risk_state, snapshot.balance, snapshot.equity, now)
        self._risk_state = gate.state
        result.admitted = gate.admitted
        result.gate_reason = gate.reason

        quote = self.feed.get_quote()
        instrument = self.feed.get_instrument()

        positions = self.gateway.get_positions(symbol=self.symbol, magic=self.magic)
        result.lifecycle = self.lifecycle.manage(positions, quote, instrument, now)

        for retrieval in self.retriever.drain():
            self._process_retrieval(retrieval, gate, quote, instrument, now, result)

        self._detect_closed_bars(now, result)

    def _process_retrieval(
        self,
        retrieval: RetrievalResult,
        gate: GateResult,
        quote: Quote,
        instrument: InstrumentSpec,
        now: datetime,
        result: TickResult,
    ) -> None:
        tf = retrieval.timeframe
        label = f"{tf.value} bar {retrieval.bar_time.isoformat()}"

        if not retrieval.ok:
            result.skipped.append(f"{label}: retrieval failed")
            return

        buffer = self.buffers[tf]
        added = buffer.apply(retrieval.records, retrieval.cutoff)
        logger.debug(f"{label}: {added} new signal(s), buffer {len(buffer)}/{buffer.capacity}")

        latest = self.feed.get_bar(tf, 1)
        if latest is None or latest.time != retrieval.bar_time:
            result.skipped.append(f"{label}: superseded by a newer bar")
            return

        if not gate.admitted:
            result.skipped.append(f"{label}: risk gate ({gate.reason.value})")
            return

        rejection = self.filters.check(now, quote, instrument)
        if rejection:
            logger.info(f"{label}: entry filtered - {rejection}")
            result.skipped.append(f"{label}: {rejection}")
            return

        open_positions = [
            p for p in self.gateway.get_positions(symbol=self.symbol, magic=self.magic)
            if p.belongs_to(self.symbol, self.magic)
        ]
        if len(open_positions) >= self.config.risk.max_open_positions:
            result.skipped.append(f"{label}: {len(open_positions)} open position(s)")
            return

        decision = self.pipeline.evaluate(buffer, tf)
        if decision is None:
            stage = self.pipeline.last_rejection
            result.skipped.append(f"{label}: rejected at {stage.value if stage else 'unknown'}")
            return

        self._decision_count += 1
        result.decisions.append(decision)
        self._events.decision(
            decision.direction.value,
            tf.value,
            decision.strength,
            decision.stop_distance,
            decision.structural_confirmation,
            atr=decision.atr,
        )

        placement = self.placer.place(decision, quote, instrument, self.account.get_account(), now)
        result.placements.append(placement)
        if placement.success:
            self._order_count += 1

    def _detect_closed_bars(self, now: datetime, result: TickResult) -> None:
        for tf, buffer in self.buffers.items():
            bar = self.feed.get_bar(tf, 1)
            if bar is None:
                continue

            previous = self._last_closed_bar.get(tf)
            if previous == bar.time:
                continue
            self._last_closed_bar[tf] = bar.time

            if previous is None:
                # Baseline only; the first full bar seen by the engine is the next one
                logger.info(f"{tf.value}: last closed bar {bar.time.isoformat()}")
                continue

            if self.retriever.schedule(tf, bar.time, buffer.last_processed, now):
                result.scheduled.append(tf)

    # =========================================================================
    # Loop & Control
    # =========================================================================

    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        """
        Poll the tick handler until stop_event is set.

        Args:
            stop_event: Event that ends the loop (default: run until cancelled)
            poll_interval: Seconds between ticks (default: output.poll_interval_seconds)
        """
        stop_event = stop_event or asyncio.Event()
        interval = poll_interval if poll_interval is not None else self.config.output.poll_interval_seconds

        logger.info("=" * 60)
        logger.info(f"STARTING ENGINE {self.symbol} magic={self.magic}")
        logger.info("=" * 60)

        try:
            while not stop_event.is_set():
                self.on_tick()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Engine loop cancelled")
            raise
        finally:
            await self.retriever.cancel_all()
            logger.info(f"Engine stopped after {self._tick_count} ticks")

    async def flush_retrievals(self) -> int:
        """
        Wait for in-flight retrievals.

        Their results are applied on the next tick.

        Returns:
            Number of results waiting to be applied
        """
        await self.retriever.wait_idle()
        return self.retriever.completed_count

    def manual_reset(self, now: Optional[datetime] = None) -> Optional[RiskState]:
        """Operator reset of a drawdown halt."""
        if self._risk_state is None:
            logger.warning("Manual reset ignored: engine has not ticked yet")
            return None
        now = ensure_aware(now) if now is not None else utc_now()
        equity = self.account.get_account().equity
        self._risk_state = self.gate.manual_reset(self._risk_state, equity, now)
        return self._risk_state

    def get_status(self) -> dict:
        """Engine snapshot for logs / display."""
        state = self._risk_state
        return {
            "symbol": self.symbol,
            "magic": self.magic,
            "ticks": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "decisions": self._decision_count,
            "orders_placed": self._order_count,
            "risk": {
                "trading_enabled": state.trading_enabled,
                "daily_loss_halt": state.daily_loss_halt,
                "daily_start_balance": state.daily_start_balance,
                "peak_equity": state.peak_equity,
                "day": state.last_day_boundary.isoformat() if state.last_day_boundary else None,
            } if state else None,
            "buffers": {tf.value: len(buffer) for tf, buffer in self.buffers.items()},
            "last_closed_bars": {tf.value: t.isoformat() for tf, t in self._last_closed_bar.items()},
            "pending_retrievals": self.retriever.pending_count,
            "lifecycle": self.lifecycle.get_status(),
            "errors": self.recovery.get_error_stats(),
        }
