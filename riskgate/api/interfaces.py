"""
Collaborator interfaces required by the engine.

The engine never talks to a venue directly; it depends on these four
narrow protocols. Any object with matching methods satisfies them (a broker
terminal wrapper, a REST bridge, ``PaperVenue``, or a test double).

Shift convention for bar-addressed calls: 0 is the bar currently forming,
1 the last closed bar, 2 the one before it, and so on.
"""

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from riskgate.api.models import (
    AccountSnapshot,
    Bar,
    InstrumentSpec,
    OrderRequest,
    OrderResult,
    PendingOrder,
    PositionData,
    Quote,
)
from riskgate.lib.time_utils import Timeframe


@runtime_checkable
class MarketDataFeed(Protocol):
    """Bars, quotes and instrument metadata."""

    def get_bar(self, timeframe: Timeframe, shift: int) -> Optional[Bar]:
        """Bar at shift, or None when history is too short."""
        ...

    def get_bars(self, timeframe: Timeframe, start_shift: int, count: int) -> list[Bar]:
        """Up to count bars starting at start_shift, newest first."""
        ...

    def get_quote(self) -> Quote:
        ...

    def get_instrument(self) -> InstrumentSpec:
        ...


@runtime_checkable
class IndicatorEngine(Protocol):
    """Indicator values addressed by shift."""

    def atr(self, timeframe: Timeframe, period: int, shift: int = 1) -> Optional[float]:
        ...

    def moving_average(
        self,
        timeframe: Timeframe,
        period: int,
        shift: int = 1,
        method: str = "sma",
    ) -> Optional[float]:
        ...


@runtime_checkable
class AccountProvider(Protocol):
    """Balance and equity."""

    def get_account(self) -> AccountSnapshot:
        ...


@runtime_checkable
class OrderGateway(Protocol):
    """Trade requests and exposure enumeration.

    Failures are reported through ``OrderResult.retcode``; implementations
    should not raise for venue-side rejections.
    """

    def place_pending(self, request: OrderRequest, now: datetime) -> OrderResult:
        ...

    def modify_position(
        self,
        position_id: str,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> OrderResult:
        ...

    def close_position(self, position_id: str, volume: Optional[float] = None) -> OrderResult:
        """Close a position fully (volume=None) or partially."""
        ...

    def cancel_order(self, order_id: str) -> OrderResult:
        ...

    def get_positions(
        self,
        symbol: Optional[str] = None,
        magic: Optional[int] = None,
    ) -> list[PositionData]:
        ...

    def get_pending_orders(
        self,
        symbol: Optional[str] = None,
        magic: Optional[int] = None,
    ) -> list[PendingOrder]:
        ...
