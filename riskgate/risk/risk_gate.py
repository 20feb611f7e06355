"""
Risk Gate - account-level circuit breakers.

Decides once per tick whether new trades may be opened. Never affects the
management of positions that are already open.

Breakers:
1. Daily loss: loss from the day's starting balance >= max_daily_loss_pct
   halts new entries until the next venue day boundary
2. Max drawdown: equity drawdown from peak equity >= max_drawdown_pct
   disables trading; cleared only by manual_reset() under the "manual"
   policy, or at the next day boundary under "daily_reset"

The gate is a pure transition over an immutable ``RiskState``: the caller
passes the current state in and keeps the returned one. Peak equity
ratchets up on every evaluation.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional

from riskgate.lib.config import RiskConfig
from riskgate.lib.constants import (
    DEFAULT_MAX_DAILY_LOSS_PCT,
    DEFAULT_MAX_DRAWDOWN_PCT,
    DEFAULT_VENUE_TIMEZONE,
)
from riskgate.lib.logging_utils import TradingLogger
from riskgate.lib.time_utils import venue_date

logger = logging.getLogger(__name__)


class DrawdownHaltPolicy(Enum):
    """How a tripped drawdown breaker is cleared."""
    MANUAL = "manual"  # Requires manual_reset()
    DAILY_RESET = "daily_reset"  # Cleared at the next day boundary


class GateReason(Enum):
    """Why new trades were refused."""
    DAILY_LOSS = "daily_loss"
    DRAWDOWN = "drawdown"


@dataclass(frozen=True)
class RiskState:
    """Account risk state, owned by the engine and transformed only by the gate."""
    daily_start_balance: float
    peak_equity: float
    trading_enabled: bool = True
    daily_loss_halt: bool = False
    last_day_boundary: Optional[date] = None


@dataclass
class RiskLimits:
    """Circuit breaker thresholds."""
    max_daily_loss_pct: float = DEFAULT_MAX_DAILY_LOSS_PCT
    max_drawdown_pct: float = DEFAULT_MAX_DRAWDOWN_PCT
    drawdown_halt_policy: DrawdownHaltPolicy = DrawdownHaltPolicy.MANUAL
    venue_timezone: str = DEFAULT_VENUE_TIMEZONE

    @classmethod
    def from_config(cls, risk: RiskConfig, venue_timezone: str) -> "RiskLimits":
        return cls(
            max_daily_loss_pct=risk.max_daily_loss_pct,
            max_drawdown_pct=risk.max_drawdown_pct,
            drawdown_halt_policy=DrawdownHaltPolicy(risk.drawdown_halt_policy),
            venue_timezone=venue_timezone,
        )


@dataclass(frozen=True)
class GateResult:
    """Outcome of one gate evaluation."""
    admitted: bool
    state: RiskState
    reason: Optional[GateReason] = None

    def __bool__(self) -> bool:
        return self.admitted


def daily_loss_pct(state: RiskState, balance: float) -> float:
    """Loss from the day's starting balance, in percent (0 if start <= 0)."""
    if state.daily_start_balance <= 0:
        return 0.0
    return (state.daily_start_balance - balance) / state.daily_start_balance * 100


def drawdown_pct(state: RiskState, equity: float) -> float:
    """Drawdown of equity from peak equity, in percent (0 if peak <= 0)."""
    if state.peak_equity <= 0:
        return 0.0
    return (state.peak_equity - equity) / state.peak_equity * 100


class RiskGate:
    """
    Daily-loss and peak-drawdown circuit breakers.

    Halt transitions are logged once when they happen, not on every tick.

    Usage:
        gate = RiskGate(RiskLimits(max_daily_loss_pct=5, max_drawdown_pct=10))
        state = gate.initial_state(balance, equity, now)

        # every tick
        result = gate.evaluate(state, balance, equity, now)
        state = result.state
        if result.admitted:
            ...  # new entries allowed
    """

    def __init__(self, limits: Optional[RiskLimits] = None, trading_logger: Optional[TradingLogger] = None):
        self.limits = limits or RiskLimits()
        self._events = trading_logger or TradingLogger(__name__)

    def initial_state(self, balance: float, equity: float, now: datetime) -> RiskState:
        """Fresh state snapshotting the current balance and equity."""
        return RiskState(
            daily_start_balance=balance,
            peak_equity=equity,
            last_day_boundary=venue_date(now, self.limits.venue_timezone),
        )

    def evaluate(self, state: RiskState, balance: float, equity: float, now: datetime) -> GateResult:
        """
        Evaluate the breakers and return the admission result with the new state.

        Order: day boundary reset, peak ratchet, daily loss, drawdown.

        Args:
            state: Current risk state
            balance: Current account balance
            equity: Current account equity
            now: Current instant

        Returns:
            GateResult (admitted flag, next state, reason when refused)
        """
        state = self._roll_day(state, balance, now)

        if equity > state.peak_equity:
            state = replace(state, peak_equity=equity)

        # Daily loss breaker: sticks until the next day boundary
        if not state.daily_loss_halt:
            loss_pct = daily_loss_pct(state, balance)
            if loss_pct >= self.limits.max_daily_loss_pct:
                state = replace(state, daily_loss_halt=True)
                self._events.risk_event(
                    "DAILY_LOSS_HALT",
                    f"daily loss {loss_pct:.2f}% >= {self.limits.max_daily_loss_pct:.2f}%, "
                    f"no new trades until next day",
                    balance=balance,
                    daily_start_balance=state.daily_start_balance,
                )
        if state.daily_loss_halt:
            return GateResult(admitted=False, state=state, reason=GateReason.DAILY_LOSS)

        # Drawdown breaker
        if state.trading_enabled:
            dd_pct = drawdown_pct(state, equity)
            if dd_pct >= self.limits.max_drawdown_pct:
                state = replace(state, trading_enabled=False)
                logger.critical(
                    f"CIRCUIT BREAKER - drawdown {dd_pct:.2f}% >= {self.limits.max_drawdown_pct:.2f}% "
                    f"(peak={state.peak_equity:.2f}, equity={equity:.2f}); "
                    f"policy={self.limits.drawdown_halt_policy.value}"
                )
        if not state.trading_enabled:
            return GateResult(admitted=False, state=state, reason=GateReason.DRAWDOWN)

        return GateResult(admitted=True, state=state)

    def _roll_day(self, state: RiskState, balance: float, now: datetime) -> RiskState:
        today = venue_date(now, self.limits.venue_timezone)
        if state.last_day_boundary == today:
            return state

        changes = {
            "daily_start_balance": balance,
            "daily_loss_halt": False,
            "last_day_boundary": today,
        }
        if not state.trading_enabled and self.limits.drawdown_halt_policy == DrawdownHaltPolicy.DAILY_RESET:
            changes["trading_enabled"] = True
            changes["peak_equity"] = 0.0  # re-seeded by the ratchet right after
            self._events.risk_event("DRAWDOWN_RESET", "drawdown halt cleared at day boundary")

        if state.daily_loss_halt:
            self._events.risk_event("DAILY_LOSS_RESET", f"daily loss halt cleared for {today}")

        logger.info(f"Day boundary {today}: daily start balance {balance:.2f}")
        return replace(state, **changes)

    def manual_reset(self, state: RiskState, equity: float, now: datetime) -> RiskState:
        """
        Operator reset after reviewing a drawdown halt.

        Re-enables trading and re-snapshots peak equity to current equity.
        A daily-loss halt is left alone; it clears only at the day boundary.
        """
        logger.warning(
            f"Manual risk reset: trading re-enabled, peak equity {state.peak_equity:.2f} -> {equity:.2f}"
        )
        return replace(
            state,
            trading_enabled=True,
            peak_equity=equity,
            last_day_boundary=state.last_day_boundary or venue_date(now, self.limits.venue_timezone),
        )
