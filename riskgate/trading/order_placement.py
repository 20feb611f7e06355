"""
Order Placement.

Turns an accepted Decision into one pending stop-entry order:

1. Tighten the stop distance by 15% when structure confirmed the decision
2. Size the position (invalid size aborts)
3. Entry offset from the market, SL/TP at the decision's distances
4. Validate SL and TP against the venue minimum stop distance (abort,
   nothing sent, if either is inside it)
5. Cancel every pending order carrying this engine's identity (a failed
   cancel aborts, so two engine orders are never live together)
6. Place the new order, expiring two bars of the decision's timeframe later

Venue rejections are logged with their return code and are not retried;
the opportunity is lost until the next accepted decision.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from riskgate.api.interfaces import OrderGateway
from riskgate.api.models import (
    AccountSnapshot,
    InstrumentSpec,
    OrderRequest,
    OrderSide,
    OrderType,
    Quote,
    TradeRetcode,
)
from riskgate.lib.constants import PENDING_EXPIRY_BARS
from riskgate.lib.logging_utils import TradingLogger
from riskgate.risk.position_sizing import BrokerLimits, PositionSizer
from riskgate.risk.stops import entry_levels, respects_min_distance, tighten_for_structure
from riskgate.signals.confirmation import Decision
from riskgate.signals.records import SignalDirection
from riskgate.trading.recovery import ErrorCategory, ErrorSeverity, RecoveryHandler

logger = logging.getLogger(__name__)


class PlacementStatus(Enum):
    """Outcome of a placement attempt."""
    PLACED = "placed"
    SIZE_INVALID = "size_invalid"
    STOPS_INVALID = "stops_invalid"
    REJECTED = "rejected"
    CANCEL_FAILED = "cancel_failed"


@dataclass
class PlacementResult:
    """Result of turning a decision into a pending order."""
    status: PlacementStatus
    reason: str = ""
    order_id: Optional[str] = None
    request: Optional[OrderRequest] = None
    cancelled_orders: int = 0
    retcode: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == PlacementStatus.PLACED


def side_for(direction: SignalDirection) -> OrderSide:
    return OrderSide.BUY if direction == SignalDirection.BUY else OrderSide.SELL


class OrderPlacer:
    """
    Places one pending stop-entry order per accepted decision.

    At most one pending order from this engine exists at a time: earlier
    pending orders with the same symbol + magic are cancelled first, and
    nothing is placed while one of them could not be cancelled.

    Usage:
        placer = OrderPlacer("EURUSD", 240601, gateway, risk_percent=1.0)
        result = placer.place(decision, quote, instrument, account, now)
        if result.success:
            ...
    """

    def __init__(
        self,
        symbol: str,
        magic: int,
        gateway: OrderGateway,
        risk_percent: float,
        pending_offset_points: float = 0.0,
        sizer: Optional[PositionSizer] = None,
        recovery: Optional[RecoveryHandler] = None,
        trading_logger: Optional[TradingLogger] = None,
    ):
        self.symbol = symbol
        self.magic = magic
        self.gateway = gateway
        self.risk_percent = risk_percent
        self.pending_offset_points = pending_offset_points
        self.sizer = sizer or PositionSizer()
        self.recovery = recovery or RecoveryHandler()
        self._events = trading_logger or TradingLogger(__name__)

    def place(
        self,
        decision: Decision,
        quote: Quote,
        instrument: InstrumentSpec,
        account: AccountSnapshot,
        now: datetime,
    ) -> PlacementResult:
        """
        Place the pending order for a decision.

        Args:
            decision: Accepted decision
            quote: Current bid/ask
            instrument: Contract metadata
            account: Current balance/equity (sizing uses equity)
            now: Current instant (expiration base)

        Returns:
            PlacementResult
        """
        side = side_for(decision.direction)
        stop_distance = tighten_for_structure(decision.stop_distance, decision.structural_confirmation)

        sizing = self.sizer.size(
            stop_distance=stop_distance,
            risk_percent=self.risk_percent,
            equity=account.equity,
            tick_value=instrument.tick_value,
            tick_size=instrument.tick_size,
            limits=BrokerLimits.from_instrument(instrument),
        )
        if not sizing.valid:
            self.recovery.record(
                ErrorCategory.INPUT,
                f"Sizing rejected {side.name} decision: {sizing.reason}",
                severity=ErrorSeverity.WARNING,
                details={"stop_distance": stop_distance, "equity": account.equity},
                timestamp=now,
            )
            return PlacementResult(status=PlacementStatus.SIZE_INVALID, reason=sizing.reason)

        levels = entry_levels(
            side,
            quote,
            instrument,
            self.pending_offset_points,
            stop_distance,
            decision.take_profit_distance,
        )

        for name, level in (("stop_loss", levels.stop_loss), ("take_profit", levels.take_profit)):
            if not respects_min_distance(levels.entry, level, instrument):
                reason = (
                    f"{name} {level} within minimum stop distance "
                    f"{instrument.min_stop_distance} of entry {levels.entry}"
                )
                self.recovery.record(
                    ErrorCategory.INPUT,
                    f"Placement aborted: {reason}",
                    severity=ErrorSeverity.WARNING,
                    timestamp=now,
                )
                return PlacementResult(status=PlacementStatus.STOPS_INVALID, reason=reason)

        cancelled, failed = self.cancel_pending()
        if failed:
            reason = f"could not cancel pending order(s) {', '.join('#' + f for f in failed)}"
            logger.warning(f"Placement aborted: {reason}")
            return PlacementResult(
                status=PlacementStatus.CANCEL_FAILED,
                reason=reason,
                cancelled_orders=cancelled,
            )

        request = OrderRequest(
            symbol=self.symbol,
            magic=self.magic,
            order_type=OrderType.stop_for(side),
            volume=sizing.lot,
            price=levels.entry,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
            expiration=now + PENDING_EXPIRY_BARS * decision.timeframe.duration,
            comment=f"{decision.timeframe.value}{' S' if decision.structural_confirmation else ''}",
        )

        result = self.gateway.place_pending(request, now)
        if not result.success:
            self._events.rejection("place", int(result.retcode), result.message, order_type=request.order_type.name)
            self.recovery.record(
                ErrorCategory.EXECUTION,
                f"Pending order rejected: {result.message}",
                severity=ErrorSeverity.ERROR,
                details={"retcode": int(result.retcode), **request.to_dict()},
                action="log_and_continue",
                timestamp=now,
            )
            return PlacementResult(
                status=PlacementStatus.REJECTED,
                reason=result.message,
                request=request,
                cancelled_orders=cancelled,
                retcode=int(result.retcode),
            )

        self.recovery.record_success()
        self._events.order(
            request.order_type.name,
            request.volume,
            request.price,
            request.stop_loss,
            request.take_profit,
            order_id=result.order_id,
            expiration=request.expiration.isoformat(),
        )
        return PlacementResult(
            status=PlacementStatus.PLACED,
            reason=sizing.reason,
            order_id=result.order_id,
            request=request,
            cancelled_orders=cancelled,
            retcode=int(result.retcode),
        )

    def cancel_pending(self) -> tuple[int, list[str]]:
        """
        Cancel every pending order with this engine's identity.

        An order the venue no longer knows (filled or expired since it was
        listed) is not a failure.

        Returns:
            (number of orders cancelled, ids of orders that may still be live)
        """
        cancelled = 0
        failed: list[str] = []
        for order in self.gateway.get_pending_orders(symbol=self.symbol, magic=self.magic):
            if not order.belongs_to(self.symbol, self.magic):
                continue
            result = self.gateway.cancel_order(order.order_id)
            if result.success:
                cancelled += 1
                logger.info(f"Cancelled pending order #{order.order_id} ({order.order_type.name} @ {order.price})")
            elif result.retcode == TradeRetcode.ORDER_NOT_FOUND:
                logger.info(f"Pending order #{order.order_id} already gone: {result.message}")
            else:
                failed.append(order.order_id)
                self._events.rejection("cancel", int(result.retcode), result.message, order_id=order.order_id)
                self.recovery.record(
                    ErrorCategory.EXECUTION,
                    f"Failed to cancel pending order #{order.order_id}: {result.message}",
                    details={"retcode": int(result.retcode)},
                )
        return cancelled, failed
