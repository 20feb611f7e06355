"""
Position Sizing Module.

Converts a stop distance and a risk percentage into a broker-valid lot.

Algorithm:
    risk_amount   = equity x risk_percent / 100
    risk_in_ticks = stop_distance / tick_size
    raw_lot       = risk_amount / (risk_in_ticks x tick_value)
    lot           = floor(raw_lot / volume_step) x volume_step
                    (invalid below volume_min, clamped to volume_max)

Hard cap: no lot may risk more than 5% of equity, whatever risk_percent
is configured. A lot above the cap is re-quantized down to it.

Unusable metadata (non-positive stop distance, tick size or tick value)
makes the result invalid; the trade is skipped rather than sized on a
guess.
"""

import logging
import math
from dataclasses import dataclass

from riskgate.api.models import InstrumentSpec
from riskgate.lib.constants import HARD_RISK_CAP_PCT

logger = logging.getLogger(__name__)

# Tolerance for float division landing just under a whole step
_STEP_EPSILON = 1e-9


@dataclass(frozen=True)
class BrokerLimits:
    """Volume constraints of the instrument."""
    min_volume: float
    max_volume: float
    volume_step: float

    @classmethod
    def from_instrument(cls, instrument: InstrumentSpec) -> "BrokerLimits":
        return cls(
            min_volume=instrument.volume_min,
            max_volume=instrument.volume_max,
            volume_step=instrument.volume_step,
        )


@dataclass
class PositionSizeResult:
    """Result of position size calculation."""
    lot: float
    valid: bool
    reason: str
    raw_lot: float = 0.0
    risk_amount: float = 0.0
    capped: bool = False

    @classmethod
    def invalid(cls, reason: str, raw_lot: float = 0.0, risk_amount: float = 0.0) -> "PositionSizeResult":
        return cls(lot=0.0, valid=False, reason=reason, raw_lot=raw_lot, risk_amount=risk_amount)


def quantize_down(volume: float, step: float) -> float:
    """Round a volume down to a whole number of steps."""
    if step <= 0:
        return volume
    steps = math.floor(volume / step + _STEP_EPSILON)
    decimals = max(0, -math.floor(math.log10(step))) if step < 1 else 0
    return round(steps * step, decimals + 2)


def lot_risk(lot: float, stop_distance: float, tick_value: float, tick_size: float) -> float:
    """Money lost if a lot is stopped out at stop_distance."""
    return lot * (stop_distance / tick_size) * tick_value


class PositionSizer:
    """
    Risk-normalized position sizer with an absolute 5% cap.

    Usage:
        sizer = PositionSizer()
        result = sizer.size(
            stop_distance=0.0015, risk_percent=1.0, equity=10_000,
            tick_value=1.0, tick_size=0.00001, limits=limits,
        )
        if result.valid:
            volume = result.lot
    """

    # Not configurable
    HARD_CAP_PCT = HARD_RISK_CAP_PCT

    def size(
        self,
        stop_distance: float,
        risk_percent: float,
        equity: float,
        tick_value: float,
        tick_size: float,
        limits: BrokerLimits,
    ) -> PositionSizeResult:
        """
        Calculate the lot size for a trade.

        Args:
            stop_distance: Distance from entry to stop, in price units
            risk_percent: Percentage of equity to risk
            equity: Account equity
            tick_value: Value of one tick per lot
            tick_size: Price size of one tick
            limits: Broker volume constraints

        Returns:
            PositionSizeResult (valid=False means skip the trade)
        """
        if stop_distance <= 0:
            return self._reject(f"Invalid stop distance: {stop_distance}")
        if tick_value <= 0 or tick_size <= 0:
            return self._reject(f"Invalid tick metadata: value={tick_value}, size={tick_size}")
        if equity <= 0:
            return self._reject(f"Invalid equity: {equity}")
        if risk_percent <= 0:
            return self._reject(f"Invalid risk percent: {risk_percent}")
        if limits.volume_step <= 0 or limits.min_volume <= 0:
            return self._reject(f"Invalid broker limits: {limits}")

        risk_amount = equity * risk_percent / 100
        risk_in_ticks = stop_distance / tick_size
        loss_per_lot = risk_in_ticks * tick_value
        raw_lot = risk_amount / loss_per_lot

        lot = quantize_down(raw_lot, limits.volume_step)
        if lot < limits.min_volume:
            return self._reject(
                f"Lot {raw_lot:.6f} quantizes to {lot} below broker minimum {limits.min_volume}",
                raw_lot=raw_lot,
                risk_amount=risk_amount,
            )
        lot = min(lot, limits.max_volume)

        capped = False
        max_risk_lot = equity * self.HARD_CAP_PCT / 100 / loss_per_lot
        if lot > max_risk_lot:
            lot = quantize_down(max_risk_lot, limits.volume_step)
            capped = True
            logger.warning(
                f"Lot capped at {lot} by {self.HARD_CAP_PCT}% hard cap (requested risk {risk_percent}%)"
            )
            if lot < limits.min_volume:
                return self._reject(
                    f"Hard cap lot {max_risk_lot:.6f} below broker minimum {limits.min_volume}",
                    raw_lot=raw_lot,
                    risk_amount=risk_amount,
                )

        return PositionSizeResult(
            lot=lot,
            valid=True,
            reason=f"{lot} lots risking {lot_risk(lot, stop_distance, tick_value, tick_size):.2f}",
            raw_lot=raw_lot,
            risk_amount=risk_amount,
            capped=capped,
        )

    @staticmethod
    def _reject(reason: str, raw_lot: float = 0.0, risk_amount: float = 0.0) -> PositionSizeResult:
        logger.info(f"Position size invalid: {reason}")
        return PositionSizeResult.invalid(reason, raw_lot=raw_lot, risk_amount=risk_amount)
