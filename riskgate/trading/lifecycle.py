"""
Position Lifecycle Manager.

Manages every open position carrying this engine's identity (symbol +
magic), once per tick:

    Fresh -> PartiallyClosed -> BreakevenSet -> (Trailing)*

- Partial close: once, when profit reaches trigger_r x |entry - SL|
- Breakeven: once, same trigger, SL -> entry + buffer in the position's favour
- Trailing: every tick once the position is old enough and in profit,
  SL -> price -/+ ATR x multiplier

The three checks are independent; the flags only stop partial close and
breakeven from firing twice. Stops move as a ratchet and the take profit is
carried over unchanged on every modification. Positions with another
identity are never touched.

Trackers live in a dict keyed by position id, created on first sight and
dropped once the position is gone.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from riskgate.api.interfaces import IndicatorEngine, OrderGateway
from riskgate.api.models import InstrumentSpec, OrderResult, PositionData, Quote
from riskgate.lib.config import LifecycleConfig
from riskgate.lib.constants import DEFAULT_ATR_PERIOD
from riskgate.lib.logging_utils import TradingLogger
from riskgate.lib.time_utils import Timeframe, bars_elapsed
from riskgate.risk.position_sizing import quantize_down
from riskgate.risk.stops import (
    breakeven_price,
    is_tighter,
    respects_min_distance,
    trailing_stop_price,
)
from riskgate.trading.recovery import ErrorCategory, ErrorSeverity, RecoveryHandler

logger = logging.getLogger(__name__)


class LifecycleStage(Enum):
    """Furthest one-shot transition a position has been through."""
    FRESH = "fresh"
    PARTIALLY_CLOSED = "partially_closed"
    BREAKEVEN_SET = "breakeven_set"


@dataclass
class PositionTracker:
    """
    One-shot flags of a managed position.

    Attributes:
        position_id: Venue position ticket
        partial_done: Partial close has fired (or failed at the venue)
        breakeven_done: Breakeven has fired (or failed at the venue)
        trailing_updates: Number of successful trailing moves
        first_seen: When the manager first observed the position
    """
    position_id: str
    partial_done: bool = False
    breakeven_done: bool = False
    trailing_updates: int = 0
    first_seen: Optional[datetime] = None

    @property
    def stage(self) -> LifecycleStage:
        if self.breakeven_done:
            return LifecycleStage.BREAKEVEN_SET
        if self.partial_done:
            return LifecycleStage.PARTIALLY_CLOSED
        return LifecycleStage.FRESH

    def to_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "stage": self.stage.value,
            "partial_done": self.partial_done,
            "breakeven_done": self.breakeven_done,
            "trailing_updates": self.trailing_updates,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
        }


@dataclass
class LifecycleReport:
    """What one management pass did."""
    managed: int = 0
    partial_closes: list[str] = field(default_factory=list)
    breakevens: list[str] = field(default_factory=list)
    trailing_moves: list[str] = field(default_factory=list)
    failures: int = 0

    @property
    def actions(self) -> int:
        return len(self.partial_closes) + len(self.breakevens) + len(self.trailing_moves)


class PositionLifecycleManager:
    """
    Per-position state machine for partial close, breakeven and trailing.

    Usage:
        manager = PositionLifecycleManager(config.lifecycle, "EURUSD", 240601,
                                           gateway, indicators, Timeframe.M15)

        # every tick, gate or no gate
        positions = gateway.get_positions(symbol="EURUSD", magic=240601)
        report = manager.manage(positions, quote, instrument, now)
    """

    def __init__(
        self,
        config: LifecycleConfig,
        symbol: str,
        magic: int,
        gateway: OrderGateway,
        indicators: IndicatorEngine,
        trail_timeframe: Timeframe,
        atr_period: int = DEFAULT_ATR_PERIOD,
        recovery: Optional[RecoveryHandler] = None,
        trading_logger: Optional[TradingLogger] = None,
    ):
        self.config = config
        self.symbol = symbol
        self.magic = magic
        self.gateway = gateway
        self.indicators = indicators
        self.trail_timeframe = trail_timeframe
        self.atr_period = atr_period
        self.recovery = recovery or RecoveryHandler()
        self._events = trading_logger or TradingLogger(__name__)
        self._trackers: dict[str, PositionTracker] = {}

    @property
    def trackers(self) -> dict[str, PositionTracker]:
        return self._trackers

    def get_tracker(self, position_id: str) -> Optional[PositionTracker]:
        return self._trackers.get(position_id)

    # =========================================================================
    # Tick Entry Point
    # =========================================================================

    def manage(
        self,
        positions: list[PositionData],
        quote: Quote,
        instrument: InstrumentSpec,
        now: datetime,
    ) -> LifecycleReport:
        """
        Run partial close, breakeven and trailing for every engine position.

        Args:
            positions: Open positions reported by the venue (any identity)
            quote: Current bid/ask
            instrument: Contract metadata
            now: Current instant

        Returns:
            LifecycleReport
        """
        own = {p.position_id: p for p in positions if p.belongs_to(self.symbol, self.magic)}
        self._sync_trackers(own, now)

        report = LifecycleReport(managed=len(own))
        for position_id, position in own.items():
            tracker = self._trackers[position_id]
            # Local copy of the stop so later checks in this pass see earlier moves
            stop_loss = position.stop_loss

            if self.config.use_partial_close and not tracker.partial_done:
                self._partial_close(position, tracker, quote, instrument, now, report)

            if self.config.use_breakeven and not tracker.breakeven_done:
                stop_loss = self._breakeven(position, tracker, stop_loss, quote, instrument, now, report)

            if self.config.use_trailing:
                self._trail(position, tracker, stop_loss, quote, instrument, now, report)

        return report

    def _sync_trackers(self, own: dict[str, PositionData], now: datetime) -> None:
        for position_id in list(self._trackers):
            if position_id not in own:
                tracker = self._trackers.pop(position_id)
                logger.info(f"Position #{position_id} closed, tracker discarded ({tracker.stage.value})")

        for position_id in own:
            if position_id not in self._trackers:
                self._trackers[position_id] = PositionTracker(position_id=position_id, first_seen=now)
                logger.debug(f"Tracking position #{position_id}")

    def _trigger_reached(self, position: PositionData, stop_loss: Optional[float], quote: Quote) -> bool:
        if stop_loss is None:
            return False
        risk_distance = abs(position.open_price - stop_loss)
        if risk_distance <= 0:
            return False
        return position.profit_distance(quote) >= risk_distance * self.config.profit_trigger_r

    # =========================================================================
    # Transitions
    # =========================================================================

    def _partial_close(
        self,
        position: PositionData,
        tracker: PositionTracker,
        quote: Quote,
        instrument: InstrumentSpec,
        now: datetime,
        report: LifecycleReport,
    ) -> None:
        if not self._trigger_reached(position, position.stop_loss, quote):
            return

        close_volume = quantize_down(position.volume * self.config.partial_close_pct / 100, instrument.volume_step)
        remaining = round(position.volume - close_volume, 8)
        if close_volume < instrument.volume_min or remaining < instrument.volume_min:
            # Flag stays down; re-evaluated next tick with the same volume
            logger.debug(
                f"Partial close of #{position.position_id} skipped: close={close_volume} "
                f"remaining={remaining} min={instrument.volume_min}"
            )
            return

        result = self.gateway.close_position(position.position_id, close_volume)
        tracker.partial_done = True
        if not result.success:
            self._execution_failed("partial_close", position, result, now, report)
            return

        report.partial_closes.append(position.position_id)
        self._events.position_event(
            "PARTIAL_CLOSE",
            position.position_id,
            f"closed {close_volume} of {position.volume} lots, {remaining} remaining",
            closed_volume=close_volume,
            remaining_volume=remaining,
        )

    def _breakeven(
        self,
        position: PositionData,
        tracker: PositionTracker,
        stop_loss: Optional[float],
        quote: Quote,
        instrument: InstrumentSpec,
        now: datetime,
        report: LifecycleReport,
    ) -> Optional[float]:
        if not self._trigger_reached(position, stop_loss, quote):
            return stop_loss

        new_stop = breakeven_price(position.side, position.open_price, instrument, self.config.breakeven_buffer_points)
        if not is_tighter(position.side, new_stop, stop_loss):
            tracker.breakeven_done = True
            logger.debug(f"Breakeven for #{position.position_id} not needed: stop {stop_loss} already beyond {new_stop}")
            return stop_loss

        if not respects_min_distance(position.exit_price(quote), new_stop, instrument):
            logger.debug(f"Breakeven for #{position.position_id} deferred: {new_stop} inside minimum stop distance")
            return stop_loss

        result = self.gateway.modify_position(position.position_id, new_stop, position.take_profit)
        tracker.breakeven_done = True
        if not result.success:
            self._execution_failed("breakeven", position, result, now, report)
            return stop_loss

        report.breakevens.append(position.position_id)
        self._events.position_event(
            "BREAKEVEN",
            position.position_id,
            f"stop {stop_loss} -> {new_stop}",
            old_stop=stop_loss,
            new_stop=new_stop,
        )
        return new_stop

    def _trail(
        self,
        position: PositionData,
        tracker: PositionTracker,
        stop_loss: Optional[float],
        quote: Quote,
        instrument: InstrumentSpec,
        now: datetime,
        report: LifecycleReport,
    ) -> None:
        if bars_elapsed(position.open_time, now, self.trail_timeframe) < self.config.trail_min_bars:
            return
        if position.profit_distance(quote) <= 0:
            return

        atr = self.indicators.atr(self.trail_timeframe, self.atr_period, 1)
        if atr is None or atr <= 0:
            logger.debug(f"Trailing for #{position.position_id} skipped: ATR unavailable ({atr})")
            return

        price = position.exit_price(quote)
        new_stop = trailing_stop_price(position.side, price, atr, self.config.trail_atr_multiplier, instrument)
        if not is_tighter(position.side, new_stop, stop_loss):
            return
        if not respects_min_distance(price, new_stop, instrument):
            return

        result = self.gateway.modify_position(position.position_id, new_stop, position.take_profit)
        if not result.success:
            self._execution_failed("trailing", position, result, now, report)
            return

        tracker.trailing_updates += 1
        report.trailing_moves.append(position.position_id)
        self._events.position_event(
            "TRAILING",
            position.position_id,
            f"stop {stop_loss} -> {new_stop} (atr={atr:.5f})",
            old_stop=stop_loss,
            new_stop=new_stop,
        )

    def _execution_failed(
        self,
        operation: str,
        position: PositionData,
        result: OrderResult,
        now: datetime,
        report: LifecycleReport,
    ) -> None:
        report.failures += 1
        self._events.rejection(operation, int(result.retcode), result.message, position_id=position.position_id)
        self.recovery.record(
            ErrorCategory.EXECUTION,
            f"{operation} failed for position #{position.position_id}: {result.message}",
            severity=ErrorSeverity.ERROR,
            details={"retcode": int(result.retcode)},
            action="log_and_continue",
            timestamp=now,
        )

    def get_status(self) -> dict:
        """Tracker snapshot for logs / display."""
        return {
            "tracked_positions": len(self._trackers),
            "trackers": [t.to_dict() for t in self._trackers.values()],
        }
