"""
Fixed-capacity signal buffer.

Holds the most recent signal records of one timeframe, newest at index 0.
Inserting into a full buffer evicts the oldest record.
"""

import logging
from collections import deque
from datetime import datetime
from typing import Iterable, Iterator, Optional

from riskgate.lib.time_utils import ensure_aware
from riskgate.signals.records import SignalRecord

logger = logging.getLogger(__name__)


class SignalBuffer:
    """
    Newest-first bounded sequence of signal records.

    Records are applied with ``apply()``, which only admits records strictly
    newer than the last processed timestamp and no newer than the processing
    cutoff, so a record is never applied twice and never ahead of its bar.

    Usage:
        buffer = SignalBuffer(capacity=50)
        added = buffer.apply(records, cutoff=now)
        newest = buffer[0]
    """

    def __init__(self, capacity: int, name: str = ""):
        """
        Args:
            capacity: Maximum number of records kept

        Raises:
            ValueError: If capacity is not positive
        """
        if capacity <= 0:
            raise ValueError(f"Signal buffer capacity must be > 0, got {capacity}")
        self.capacity = capacity
        self.name = name
        self._records: deque[SignalRecord] = deque(maxlen=capacity)
        self._last_processed: Optional[datetime] = None

    @property
    def last_processed(self) -> Optional[datetime]:
        """Timestamp of the newest record ever applied."""
        return self._last_processed

    def push(self, record: SignalRecord) -> None:
        """Insert a record at the front, evicting the oldest if full."""
        self._records.appendleft(record)

    def apply(self, records: Iterable[SignalRecord], cutoff: datetime) -> int:
        """
        Insert new records in chronological order.

        Args:
            records: Candidate records in any order
            cutoff: Processing instant; later records are ignored

        Returns:
            Number of records inserted
        """
        cutoff = ensure_aware(cutoff)
        fresh = sorted(
            (
                r for r in records
                if r.timestamp <= cutoff
                and (self._last_processed is None or r.timestamp > self._last_processed)
            ),
            key=lambda r: r.timestamp,
        )

        for record in fresh:
            self.push(record)

        if fresh:
            self._last_processed = fresh[-1].timestamp
            logger.debug(f"Buffer {self.name}: applied {len(fresh)} records up to {self._last_processed}")

        return len(fresh)

    def clear(self) -> None:
        self._records.clear()
        self._last_processed = None

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> SignalRecord:
        return self._records[index]

    def __iter__(self) -> Iterator[SignalRecord]:
        return iter(self._records)

    def to_list(self) -> list[SignalRecord]:
        return list(self._records)
