"""
Stop Loss Geometry.

Pure helpers for placing and moving protective stops:
- Entry / SL / TP prices for a stop-entry order
- Structural tightening of the stop distance (x0.85)
- Breakeven price with a small buffer in the position's favour
- ATR trailing stop price
- Ratchet rule: a stop may only move in the position's favour
- Venue minimum stop distance validation

Direction convention: OrderSide.BUY for longs, OrderSide.SELL for shorts.
"""

from dataclasses import dataclass
from typing import Optional

from riskgate.api.models import InstrumentSpec, OrderSide, Quote
from riskgate.lib.constants import STRUCTURAL_STOP_FACTOR


@dataclass(frozen=True)
class EntryLevels:
    """Prices of a pending stop-entry order."""
    entry: float
    stop_loss: float
    take_profit: float
    stop_distance: float
    take_profit_distance: float


def tighten_for_structure(stop_distance: float, structural: bool) -> float:
    """Apply the fixed 15% tightening when structure confirmed the trade."""
    return stop_distance * STRUCTURAL_STOP_FACTOR if structural else stop_distance


def entry_levels(
    side: OrderSide,
    quote: Quote,
    instrument: InstrumentSpec,
    offset_points: float,
    stop_distance: float,
    take_profit_distance: float,
) -> EntryLevels:
    """
    Compute entry, stop and target for a stop-entry order.

    Buy stops sit ``offset_points`` above the ask, sell stops below the bid.
    SL/TP are measured from the entry price and rounded to the
    instrument's precision.
    """
    offset = instrument.points_to_price(offset_points)
    if side == OrderSide.BUY:
        entry = quote.ask + offset
    else:
        entry = quote.bid - offset

    sign = side.sign
    return EntryLevels(
        entry=instrument.normalize_price(entry),
        stop_loss=instrument.normalize_price(entry - sign * stop_distance),
        take_profit=instrument.normalize_price(entry + sign * take_profit_distance),
        stop_distance=stop_distance,
        take_profit_distance=take_profit_distance,
    )


def breakeven_price(
    side: OrderSide,
    entry_price: float,
    instrument: InstrumentSpec,
    buffer_points: float = 1.0,
) -> float:
    """Entry price plus a buffer in the position's favour."""
    buffer = instrument.points_to_price(buffer_points)
    return instrument.normalize_price(entry_price + side.sign * buffer)


def trailing_stop_price(
    side: OrderSide,
    current_price: float,
    atr: float,
    multiplier: float,
    instrument: InstrumentSpec,
) -> float:
    """ATR trailing stop behind the current price."""
    return instrument.normalize_price(current_price - side.sign * atr * multiplier)


def is_tighter(side: OrderSide, new_stop: float, current_stop: Optional[float]) -> bool:
    """
    Check whether moving the stop to new_stop reduces risk.

    Longs: new stop must be above the current one. Shorts: below it.
    Any stop is tighter than no stop.
    """
    if current_stop is None:
        return True
    if side == OrderSide.BUY:
        return new_stop > current_stop
    return new_stop < current_stop


def respects_min_distance(reference_price: float, level: float, instrument: InstrumentSpec) -> bool:
    """True when level is at least the venue's minimum stop distance away."""
    return abs(reference_price - level) >= instrument.min_stop_distance
