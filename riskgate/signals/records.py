"""
Signal record types.

A signal record is an externally produced (timestamp, direction, weight)
triple. "No signal" is a missing direction (``direction is None``), which
is kept distinct from ``TrendState.NEUTRAL`` used by the higher-timeframe
filter.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import pandas as pd

from riskgate.lib.constants import SIGNAL_WEIGHT_HIGH, SIGNAL_WEIGHT_LOW, SIGNAL_WEIGHT_NONE
from riskgate.lib.time_utils import ensure_aware


class SignalDirection(Enum):
    """Directional signal."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "SignalDirection":
        return SignalDirection.SELL if self == SignalDirection.BUY else SignalDirection.BUY


class SignalWeight(Enum):
    """Signal conviction."""
    HIGH = "high"
    LOW = "low"
    NONE = "none"

    @property
    def value_factor(self) -> float:
        return _WEIGHT_FACTORS[self]


_WEIGHT_FACTORS = {
    SignalWeight.HIGH: SIGNAL_WEIGHT_HIGH,
    SignalWeight.LOW: SIGNAL_WEIGHT_LOW,
    SignalWeight.NONE: SIGNAL_WEIGHT_NONE,
}


class TrendState(Enum):
    """Higher-timeframe trend."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"

    def opposes(self, direction: SignalDirection) -> bool:
        """True only for a defined trend pointing the other way."""
        if self == TrendState.UP:
            return direction == SignalDirection.SELL
        if self == TrendState.DOWN:
            return direction == SignalDirection.BUY
        return False


_DIRECTION_ALIASES = {
    "buy": SignalDirection.BUY,
    "long": SignalDirection.BUY,
    "1": SignalDirection.BUY,
    "sell": SignalDirection.SELL,
    "short": SignalDirection.SELL,
    "-1": SignalDirection.SELL,
    "none": None,
    "0": None,
    "": None,
    "nan": None,
}

_WEIGHT_ALIASES = {
    "high": SignalWeight.HIGH,
    "2": SignalWeight.HIGH,
    "low": SignalWeight.LOW,
    "1": SignalWeight.LOW,
    "none": SignalWeight.NONE,
    "0": SignalWeight.NONE,
    "": SignalWeight.NONE,
    "nan": SignalWeight.NONE,
}


def parse_direction(value: Any) -> Optional[SignalDirection]:
    """
    Normalize a raw direction value.

    Raises:
        ValueError: If the value is not a recognized direction
    """
    if value is None or isinstance(value, SignalDirection):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    key = str(value).strip().lower()
    if key not in _DIRECTION_ALIASES:
        raise ValueError(f"Unknown signal direction: {value!r}")
    return _DIRECTION_ALIASES[key]


def parse_weight(value: Any) -> SignalWeight:
    """
    Normalize a raw weight value (missing weight counts as NONE).

    Raises:
        ValueError: If the value is not a recognized weight
    """
    if value is None:
        return SignalWeight.NONE
    if isinstance(value, SignalWeight):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    key = str(value).strip().lower()
    if key not in _WEIGHT_ALIASES:
        raise ValueError(f"Unknown signal weight: {value!r}")
    return _WEIGHT_ALIASES[key]


@dataclass(frozen=True)
class SignalRecord:
    """Immutable timestamped signal.

    Attributes:
        timestamp: When the signal was produced (aware)
        direction: BUY, SELL, or None for "no signal"
        weight: Conviction weight
    """
    timestamp: datetime
    direction: Optional[SignalDirection]
    weight: SignalWeight = SignalWeight.NONE

    @property
    def weight_factor(self) -> float:
        return self.weight.value_factor

    @classmethod
    def from_raw(cls, timestamp: Any, direction: Any, weight: Any = None) -> "SignalRecord":
        """
        Build a record from loosely typed source values.

        Args:
            timestamp: datetime, pandas Timestamp, ISO string or epoch seconds
            direction: "buy"/"sell"/"none", 1/-1/0, or SignalDirection
            weight: "high"/"low"/"none", 2/1/0, or SignalWeight

        Raises:
            ValueError: If any field cannot be interpreted
        """
        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            ts = pd.Timestamp(timestamp, unit="s", tz="UTC")
        else:
            ts = pd.Timestamp(timestamp)
        if ts is pd.NaT:
            raise ValueError(f"Invalid signal timestamp: {timestamp!r}")

        return cls(
            timestamp=ensure_aware(ts.to_pydatetime()),
            direction=parse_direction(direction),
            weight=parse_weight(weight),
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "direction": self.direction.value if self.direction else "none",
            "weight": self.weight.value,
        }
