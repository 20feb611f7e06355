"""
In-memory paper venue.

``PaperVenue`` plays all three venue roles at once (market data feed,
account provider and order gateway) so the engine can be replayed over
historical bars or exercised in tests without a broker.

Simulation rules:
- A bar is visible once its open time is <= the venue clock; the last
  visible bar is the forming bar (shift 0).
- Buy-stop orders fill at their price when ask >= price, sell-stops when
  bid <= price. Orders expire when the clock reaches their expiration.
- Stop loss / take profit are checked against bid (longs) or ask (shorts)
  and fill at the level.
- Realized P&L = price move / tick_size * tick_value * volume.

The venue is driven from the tick handler only and is not thread-safe.
"""

import itertools
import logging
from bisect import bisect_right
from datetime import datetime
from typing import Optional

from riskgate.api.models import (
    AccountSnapshot,
    Bar,
    InstrumentSpec,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderType,
    PendingOrder,
    PositionData,
    Quote,
    TradeRetcode,
)
from riskgate.lib.time_utils import Timeframe, ensure_aware

logger = logging.getLogger(__name__)


class PaperVenue:
    """
    Paper trading venue with bar replay.

    Usage:
        venue = PaperVenue(instrument, balance=10_000.0)
        venue.load_bars(Timeframe.M15, m15_bars)
        venue.load_bars(Timeframe.H1, h1_bars)

        venue.step(now, spread_points=12)   # advance clock, fill/expire orders
        engine.on_tick(now)
    """

    def __init__(
        self,
        instrument: InstrumentSpec,
        balance: float = 10_000.0,
        bars: Optional[dict[Timeframe, list[Bar]]] = None,
    ):
        self.instrument = instrument
        self._balance = balance
        self._bars: dict[Timeframe, list[Bar]] = {}
        self._bar_times: dict[Timeframe, list[datetime]] = {}
        self._now: Optional[datetime] = None
        self._quote: Optional[Quote] = None
        self._positions: dict[str, PositionData] = {}
        self._orders: dict[str, PendingOrder] = {}
        self._tickets = itertools.count(1)
        self.closed_trades: list[dict] = []

        for timeframe, tf_bars in (bars or {}).items():
            self.load_bars(timeframe, tf_bars)

    # =========================================================================
    # Clock & Data Loading
    # =========================================================================

    def load_bars(self, timeframe: Timeframe, bars: list[Bar]) -> None:
        """Replace the bar history of a timeframe."""
        ordered = sorted(bars, key=lambda b: b.time)
        self._bars[timeframe] = ordered
        self._bar_times[timeframe] = [b.time for b in ordered]

    @property
    def now(self) -> Optional[datetime]:
        return self._now

    def set_quote(self, bid: float, ask: float) -> None:
        self._quote = Quote(bid=bid, ask=ask, time=self._now)

    def step(
        self,
        now: datetime,
        bid: Optional[float] = None,
        ask: Optional[float] = None,
        spread_points: float = 0.0,
    ) -> None:
        """
        Advance the venue clock and run the fill/expiry/exit simulation.

        Without an explicit bid/ask the quote is taken from the close of the
        forming bar on the shortest loaded timeframe, with the ask
        ``spread_points`` above the bid.
        """
        self._now = ensure_aware(now)

        if bid is None:
            bar = self._forming_bar()
            if bar is None:
                return
            bid = bar.close
        if ask is None:
            ask = bid + spread_points * self.instrument.point

        self._quote = Quote(bid=bid, ask=ask, time=self._now)
        self._process_orders()
        self._process_exits()

    def _forming_bar(self) -> Optional[Bar]:
        if not self._bars:
            return None
        shortest = min(self._bars, key=lambda tf: tf.seconds)
        return self.get_bar(shortest, 0)

    def _visible(self, timeframe: Timeframe) -> list[Bar]:
        bars = self._bars.get(timeframe, [])
        if self._now is None:
            return bars
        end = bisect_right(self._bar_times[timeframe], self._now)
        return bars[:end]

    # =========================================================================
    # MarketDataFeed
    # =========================================================================

    def get_bar(self, timeframe: Timeframe, shift: int) -> Optional[Bar]:
        visible = self._visible(timeframe)
        index = len(visible) - 1 - shift
        if shift < 0 or index < 0:
            return None
        return visible[index]

    def get_bars(self, timeframe: Timeframe, start_shift: int, count: int) -> list[Bar]:
        visible = self._visible(timeframe)
        end = len(visible) - start_shift
        if end <= 0 or count <= 0:
            return []
        start = max(0, end - count)
        return list(reversed(visible[start:end]))

    def get_quote(self) -> Quote:
        if self._quote is None:
            raise RuntimeError("No quote yet - call step() or set_quote() first")
        return self._quote

    def get_instrument(self) -> InstrumentSpec:
        return self.instrument

    # =========================================================================
    # AccountProvider
    # =========================================================================

    def get_account(self) -> AccountSnapshot:
        floating = 0.0
        if self._quote is not None:
            floating = sum(
                self._money(p.profit_distance(self._quote), p.volume)
                for p in self._positions.values()
            )
        return AccountSnapshot(balance=self._balance, equity=self._balance + floating)

    def _money(self, price_move: float, volume: float) -> float:
        return price_move / self.instrument.tick_size * self.instrument.tick_value * volume

    # =========================================================================
    # OrderGateway
    # =========================================================================

    def place_pending(self, request: OrderRequest, now: datetime) -> OrderResult:
        volume_error = self._check_volume(request.volume)
        if volume_error:
            return OrderResult.rejected(TradeRetcode.INVALID_VOLUME, volume_error)

        quote = self._quote
        if quote is not None:
            if request.order_type == OrderType.BUY_STOP and request.price <= quote.ask:
                return OrderResult.rejected(TradeRetcode.INVALID_PRICE, "buy stop must be above ask")
            if request.order_type == OrderType.SELL_STOP and request.price >= quote.bid:
                return OrderResult.rejected(TradeRetcode.INVALID_PRICE, "sell stop must be below bid")

        min_distance = self.instrument.min_stop_distance
        for level in (request.stop_loss, request.take_profit):
            if abs(request.price - level) < min_distance:
                return OrderResult.rejected(TradeRetcode.INVALID_STOPS, "stops too close to price")

        if request.expiration <= ensure_aware(now):
            return OrderResult.rejected(TradeRetcode.INVALID_EXPIRATION, "expiration in the past")

        ticket = str(next(self._tickets))
        self._orders[ticket] = PendingOrder(
            order_id=ticket,
            symbol=request.symbol,
            magic=request.magic,
            order_type=request.order_type,
            volume=request.volume,
            price=request.price,
            stop_loss=request.stop_loss,
            take_profit=request.take_profit,
            expiration=request.expiration,
            placed_at=ensure_aware(now),
        )
        logger.debug(f"Paper order #{ticket} {request.order_type.name} {request.volume} @ {request.price}")
        return OrderResult.done(order_id=ticket)

    def modify_position(
        self,
        position_id: str,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> OrderResult:
        position = self._positions.get(position_id)
        if position is None:
            return OrderResult.rejected(TradeRetcode.POSITION_CLOSED, f"position {position_id} not found")

        if stop_loss is not None and self._quote is not None:
            reference = position.exit_price(self._quote)
            if abs(reference - stop_loss) < self.instrument.min_stop_distance:
                return OrderResult.rejected(TradeRetcode.INVALID_STOPS, "stop too close to price")

        position.stop_loss = stop_loss
        position.take_profit = take_profit
        return OrderResult.done(order_id=position_id)

    def close_position(self, position_id: str, volume: Optional[float] = None) -> OrderResult:
        position = self._positions.get(position_id)
        if position is None:
            return OrderResult.rejected(TradeRetcode.POSITION_CLOSED, f"position {position_id} not found")
        if self._quote is None:
            return OrderResult.rejected(TradeRetcode.MARKET_CLOSED, "no quote")

        close_volume = position.volume if volume is None else volume
        if close_volume < position.volume:
            volume_error = self._check_volume(close_volume)
            remaining = round(position.volume - close_volume, 8)
            if volume_error or remaining < self.instrument.volume_min:
                return OrderResult.rejected(TradeRetcode.INVALID_VOLUME, volume_error or "remainder below minimum")
        else:
            close_volume = position.volume

        self._realize(position, close_volume, position.exit_price(self._quote), "manual")
        return OrderResult.done(order_id=position_id)

    def cancel_order(self, order_id: str) -> OrderResult:
        if self._orders.pop(order_id, None) is None:
            return OrderResult.rejected(TradeRetcode.ORDER_NOT_FOUND, f"order {order_id} not found")
        return OrderResult.done(order_id=order_id)

    def get_positions(
        self,
        symbol: Optional[str] = None,
        magic: Optional[int] = None,
    ) -> list[PositionData]:
        return [
            p for p in self._positions.values()
            if (symbol is None or p.symbol == symbol) and (magic is None or p.magic == magic)
        ]

    def get_pending_orders(
        self,
        symbol: Optional[str] = None,
        magic: Optional[int] = None,
    ) -> list[PendingOrder]:
        return [
            o for o in self._orders.values()
            if (symbol is None or o.symbol == symbol) and (magic is None or o.magic == magic)
        ]

    def open_position(
        self,
        side: OrderSide,
        volume: float,
        price: float,
        magic: int,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        symbol: Optional[str] = None,
        open_time: Optional[datetime] = None,
    ) -> PositionData:
        """Open a position directly (manual trades, test setup)."""
        ticket = str(next(self._tickets))
        position = PositionData(
            position_id=ticket,
            symbol=symbol or self.instrument.symbol,
            magic=magic,
            side=side,
            volume=volume,
            open_price=price,
            open_time=ensure_aware(open_time or self._now),
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        self._positions[ticket] = position
        return position

    # =========================================================================
    # Simulation
    # =========================================================================

    def _check_volume(self, volume: float) -> Optional[str]:
        spec = self.instrument
        if volume < spec.volume_min or volume > spec.volume_max:
            return f"volume {volume} outside [{spec.volume_min}, {spec.volume_max}]"
        steps = volume / spec.volume_step
        if abs(steps - round(steps)) > 1e-6:
            return f"volume {volume} is not a multiple of {spec.volume_step}"
        return None

    def _process_orders(self) -> None:
        quote = self._quote
        for order in list(self._orders.values()):
            if order.expiration is not None and self._now >= order.expiration:
                del self._orders[order.order_id]
                logger.debug(f"Paper order #{order.order_id} expired")
                continue

            triggered = (
                (order.order_type == OrderType.BUY_STOP and quote.ask >= order.price)
                or (order.order_type == OrderType.SELL_STOP and quote.bid <= order.price)
            )
            if not triggered:
                continue

            del self._orders[order.order_id]
            self._positions[order.order_id] = PositionData(
                position_id=order.order_id,
                symbol=order.symbol,
                magic=order.magic,
                side=order.side,
                volume=order.volume,
                open_price=order.price,
                open_time=self._now,
                stop_loss=order.stop_loss,
                take_profit=order.take_profit,
            )
            logger.info(f"Paper fill #{order.order_id} {order.side.name} {order.volume} @ {order.price}")

    def _process_exits(self) -> None:
        quote = self._quote
        for position in list(self._positions.values()):
            price = position.exit_price(quote)
            sign = position.side.sign
            if position.stop_loss is not None and (price - position.stop_loss) * sign <= 0:
                self._realize(position, position.volume, position.stop_loss, "stop_loss")
            elif position.take_profit is not None and (price - position.take_profit) * sign >= 0:
                self._realize(position, position.volume, position.take_profit, "take_profit")

    def _realize(self, position: PositionData, volume: float, price: float, reason: str) -> None:
        pnl = self._money((price - position.open_price) * position.side.sign, volume)
        self._balance += pnl
        self.closed_trades.append({
            "position_id": position.position_id,
            "side": position.side.name,
            "volume": volume,
            "open_price": position.open_price,
            "close_price": price,
            "pnl": pnl,
            "reason": reason,
            "time": self._now,
        })

        remaining = round(position.volume - volume, 8)
        if remaining <= 0:
            del self._positions[position.position_id]
        else:
            position.volume = remaining
