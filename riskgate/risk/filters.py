"""
Admission filters: trading session and spread.

Stateless predicates consulted before signal evaluation. They gate new
entries only; open positions are managed regardless.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from riskgate.api.models import InstrumentSpec, Quote
from riskgate.lib.config import FilterConfig
from riskgate.lib.constants import (
    DEFAULT_FRIDAY_CUTOFF_HOUR,
    DEFAULT_MAX_SPREAD_POINTS,
    DEFAULT_SESSION_END_HOUR,
    DEFAULT_SESSION_START_HOUR,
    DEFAULT_VENUE_TIMEZONE,
)
from riskgate.lib.time_utils import hour_in_window, to_venue_time

logger = logging.getLogger(__name__)

FRIDAY = 4


def spread_points(quote: Quote, instrument: InstrumentSpec) -> float:
    """Current spread in price-increment units."""
    if instrument.point <= 0:
        return float("inf")
    return (quote.ask - quote.bid) / instrument.point


@dataclass(frozen=True)
class SessionFilter:
    """Trading hours window in venue time, with optional Friday cutoff."""
    enabled: bool = True
    start_hour: int = DEFAULT_SESSION_START_HOUR
    end_hour: int = DEFAULT_SESSION_END_HOUR
    avoid_friday_close: bool = True
    friday_cutoff_hour: int = DEFAULT_FRIDAY_CUTOFF_HOUR
    venue_timezone: str = DEFAULT_VENUE_TIMEZONE

    def rejection(self, now: datetime) -> Optional[str]:
        """Reason the instant is outside the session, or None."""
        if not self.enabled:
            return None

        local = to_venue_time(now, self.venue_timezone)
        if not hour_in_window(local.hour, self.start_hour, self.end_hour):
            return f"hour {local.hour} outside session [{self.start_hour}, {self.end_hour})"

        if self.avoid_friday_close and local.weekday() == FRIDAY and local.hour >= self.friday_cutoff_hour:
            return f"Friday after {self.friday_cutoff_hour}:00"

        return None

    def allows(self, now: datetime) -> bool:
        return self.rejection(now) is None


@dataclass(frozen=True)
class SpreadFilter:
    """Maximum bid/ask spread in points."""
    enabled: bool = True
    max_spread_points: float = DEFAULT_MAX_SPREAD_POINTS

    def rejection(self, quote: Quote, instrument: InstrumentSpec) -> Optional[str]:
        if not self.enabled:
            return None
        spread = spread_points(quote, instrument)
        if spread > self.max_spread_points:
            return f"spread {spread:.1f} > {self.max_spread_points:.1f} points"
        return None

    def allows(self, quote: Quote, instrument: InstrumentSpec) -> bool:
        return self.rejection(quote, instrument) is None


class AdmissionFilters:
    """
    Session and spread filters combined.

    Usage:
        filters = AdmissionFilters.from_config(config.filters, "Europe/Athens")
        reason = filters.check(now, quote, instrument)
        if reason:
            ...  # skip entries this bar
    """

    def __init__(self, session: SessionFilter, spread: SpreadFilter):
        self.session = session
        self.spread = spread

    @classmethod
    def from_config(cls, config: FilterConfig, venue_timezone: str) -> "AdmissionFilters":
        return cls(
            session=SessionFilter(
                enabled=config.use_session_filter,
                start_hour=config.session_start_hour,
                end_hour=config.session_end_hour,
                avoid_friday_close=config.avoid_friday_close,
                friday_cutoff_hour=config.friday_cutoff_hour,
                venue_timezone=venue_timezone,
            ),
            spread=SpreadFilter(
                enabled=config.use_spread_filter,
                max_spread_points=config.max_spread_points,
            ),
        )

    def check(self, now: datetime, quote: Quote, instrument: InstrumentSpec) -> Optional[str]:
        """First rejection reason, or None when entries are allowed."""
        return self.session.rejection(now) or self.spread.rejection(quote, instrument)
