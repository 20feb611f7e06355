"""
Venue-facing layer.

This package contains:
- models: Bars, quotes, instrument metadata, positions, orders, return codes
- interfaces: Protocols for the market data feed, indicator engine,
  account provider and order gateway
- indicators: numpy ATR / moving averages served per timeframe and shift
- paper: In-memory venue used for replay and tests
"""

from riskgate.api.models import (
    Bar,
    Quote,
    InstrumentSpec,
    AccountSnapshot,
    PositionData,
    PendingOrder,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderType,
    TradeRetcode,
    bars_from_frame,
)

from riskgate.api.interfaces import (
    MarketDataFeed,
    IndicatorEngine,
    AccountProvider,
    OrderGateway,
)

from riskgate.api.indicators import (
    BarIndicatorEngine,
    calculate_atr,
    calculate_sma,
    calculate_ema,
)

from riskgate.api.paper import PaperVenue

__all__ = [
    # Models
    "Bar",
    "Quote",
    "InstrumentSpec",
    "AccountSnapshot",
    "PositionData",
    "PendingOrder",
    "OrderRequest",
    "OrderResult",
    "OrderSide",
    "OrderType",
    "TradeRetcode",
    "bars_from_frame",
    # Interfaces
    "MarketDataFeed",
    "IndicatorEngine",
    "AccountProvider",
    "OrderGateway",
    # Indicators
    "BarIndicatorEngine",
    "calculate_atr",
    "calculate_sma",
    "calculate_ema",
    # Paper venue
    "PaperVenue",
]
