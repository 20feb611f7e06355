"""
Venue data models.

Dataclasses shared between the engine and whatever venue backs it
(a broker terminal, a REST bridge, or the in-memory paper venue):

- Bar, Quote: market data
- InstrumentSpec: contract metadata needed for sizing and stop validation
- AccountSnapshot: balance and equity
- PositionData, PendingOrder: open exposure tagged with symbol + magic
- OrderRequest, OrderResult: request/response for the order gateway

Return codes follow the MetaTrader 5 trade server numbering so that a
terminal-backed gateway can pass them through unchanged.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Optional

import pandas as pd

from riskgate.lib.time_utils import ensure_aware


class OrderSide(IntEnum):
    """Position / order direction."""
    BUY = 0
    SELL = 1

    @property
    def sign(self) -> int:
        """+1 for longs, -1 for shorts."""
        return 1 if self == OrderSide.BUY else -1


class OrderType(IntEnum):
    """Pending order types used by the engine."""
    BUY_STOP = 4
    SELL_STOP = 5

    @classmethod
    def stop_for(cls, side: OrderSide) -> "OrderType":
        return cls.BUY_STOP if side == OrderSide.BUY else cls.SELL_STOP


class TradeRetcode(IntEnum):
    """Trade server return codes."""
    REJECT = 10006
    CANCEL = 10007
    DONE = 10009
    ERROR = 10011
    TIMEOUT = 10012
    INVALID = 10013
    INVALID_VOLUME = 10014
    INVALID_PRICE = 10015
    INVALID_STOPS = 10016
    MARKET_CLOSED = 10018
    NO_MONEY = 10019
    INVALID_EXPIRATION = 10022
    ORDER_CHANGED = 10023
    ORDER_NOT_FOUND = 10035
    POSITION_CLOSED = 10036


# =============================================================================
# Market Data
# =============================================================================

@dataclass(frozen=True)
class Bar:
    """OHLC bar.

    Attributes:
        time: Bar open time (aware)
        open: Opening price
        high: High price
        low: Low price
        close: Closing price
        volume: Tick or real volume
    """
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_tail(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_tail(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @classmethod
    def from_row(cls, time: datetime, row: dict) -> "Bar":
        """Create a Bar from a mapping with open/high/low/close[/volume]."""
        return cls(
            time=ensure_aware(pd.Timestamp(time).to_pydatetime()),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row.get("volume", 0.0) or 0.0),
        )


def bars_from_frame(df: pd.DataFrame, time_column: Optional[str] = None) -> list[Bar]:
    """
    Convert an OHLC DataFrame to a chronological list of bars.

    Args:
        df: DataFrame with open/high/low/close[/volume] columns
        time_column: Column holding bar open times (default: the index)

    Returns:
        Bars sorted by time
    """
    frame = df.copy()
    frame.columns = [str(c).lower() for c in frame.columns]
    if time_column:
        frame = frame.set_index(time_column.lower())
    frame.index = pd.to_datetime(frame.index, utc=True)
    frame = frame.sort_index()
    return [Bar.from_row(ts, row) for ts, row in zip(frame.index, frame.to_dict("records"))]


@dataclass(frozen=True)
class Quote:
    """Best bid/ask at an instant."""
    bid: float
    ask: float
    time: Optional[datetime] = None

    @property
    def spread(self) -> float:
        return self.ask - self.bid

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2


@dataclass(frozen=True)
class InstrumentSpec:
    """Contract metadata.

    Attributes:
        symbol: Instrument symbol
        tick_size: Minimum price change used for P&L (trade_tick_size)
        tick_value: Account-currency value of one tick per 1.0 lot
        point: Price increment used for spreads, offsets and buffers
        digits: Price precision
        volume_min: Minimum lot
        volume_max: Maximum lot
        volume_step: Lot step
        stops_level_points: Minimum stop distance from price, in points
    """
    symbol: str
    tick_size: float
    tick_value: float
    point: float
    digits: int
    volume_min: float = 0.01
    volume_max: float = 100.0
    volume_step: float = 0.01
    stops_level_points: float = 0.0

    @property
    def min_stop_distance(self) -> float:
        """Minimum SL/TP distance from the reference price, in price units."""
        return self.stops_level_points * self.point

    def normalize_price(self, price: float) -> float:
        """Round a price to the instrument's precision."""
        return round(price, self.digits)

    def points_to_price(self, points: float) -> float:
        return points * self.point


# =============================================================================
# Account & Exposure
# =============================================================================

@dataclass(frozen=True)
class AccountSnapshot:
    """Balance and equity at an instant."""
    balance: float
    equity: float


@dataclass
class PositionData:
    """Open position as reported by the venue.

    Attributes:
        position_id: Venue position ticket
        symbol: Instrument symbol
        magic: Strategy id the position was opened with
        side: BUY (long) or SELL (short)
        volume: Current volume in lots
        open_price: Entry price
        open_time: Entry time
        stop_loss: Current stop loss (None if unset)
        take_profit: Current take profit (None if unset)
    """
    position_id: str
    symbol: str
    magic: int
    side: OrderSide
    volume: float
    open_price: float
    open_time: datetime
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None

    @property
    def is_long(self) -> bool:
        return self.side == OrderSide.BUY

    def exit_price(self, quote: Quote) -> float:
        """Price the position would close at (bid for longs, ask for shorts)."""
        return quote.bid if self.is_long else quote.ask

    def profit_distance(self, quote: Quote) -> float:
        """Direction-adjusted unrealized profit in price units."""
        return (self.exit_price(quote) - self.open_price) * self.side.sign

    def risk_distance(self) -> Optional[float]:
        """|entry - stop|, or None when no stop is set."""
        if self.stop_loss is None:
            return None
        return abs(self.open_price - self.stop_loss)

    def belongs_to(self, symbol: str, magic: int) -> bool:
        return self.symbol == symbol and self.magic == magic


@dataclass
class PendingOrder:
    """Working pending order as reported by the venue."""
    order_id: str
    symbol: str
    magic: int
    order_type: OrderType
    volume: float
    price: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    expiration: Optional[datetime] = None
    placed_at: Optional[datetime] = None

    @property
    def side(self) -> OrderSide:
        return OrderSide.BUY if self.order_type == OrderType.BUY_STOP else OrderSide.SELL

    def belongs_to(self, symbol: str, magic: int) -> bool:
        return self.symbol == symbol and self.magic == magic


# =============================================================================
# Order Requests
# =============================================================================

@dataclass(frozen=True)
class OrderRequest:
    """Pending stop-entry order request."""
    symbol: str
    magic: int
    order_type: OrderType
    volume: float
    price: float
    stop_loss: float
    take_profit: float
    expiration: datetime
    comment: str = ""

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "magic": self.magic,
            "type": self.order_type.name,
            "volume": self.volume,
            "price": self.price,
            "sl": self.stop_loss,
            "tp": self.take_profit,
            "expiration": self.expiration.isoformat(),
            "comment": self.comment,
        }


@dataclass(frozen=True)
class OrderResult:
    """Venue response to a trade request."""
    retcode: int
    order_id: Optional[str] = None
    message: str = ""
    details: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.retcode == TradeRetcode.DONE

    @classmethod
    def done(cls, order_id: Optional[str] = None, message: str = "done") -> "OrderResult":
        return cls(retcode=TradeRetcode.DONE, order_id=order_id, message=message)

    @classmethod
    def rejected(cls, retcode: int, message: str) -> "OrderResult":
        return cls(retcode=retcode, message=message)
