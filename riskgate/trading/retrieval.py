"""
Non-blocking signal retrieval.

The tick handler must never wait on a signal source. ``SignalRetriever``
runs each fetch as an asyncio task with bounded fixed-delay retries and
parks the outcome in a completion queue. The engine drains that queue from
inside its tick handler, so buffers are only ever mutated there.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from riskgate.lib.time_utils import Timeframe
from riskgate.signals.records import SignalRecord
from riskgate.signals.source import SignalSource, SignalSourceError
from riskgate.trading.recovery import ErrorCategory, ErrorSeverity, RecoveryHandler, with_retry

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """Outcome of one scheduled retrieval.

    Attributes:
        timeframe: Timeframe the records belong to
        bar_time: Open time of the closed bar that triggered the retrieval
        cutoff: Processing instant; records newer than this are not applied
        records: Fetched records (empty on failure)
        ok: False when all attempts failed
        attempts: Attempts made
        error: Last error message on failure
    """
    timeframe: Timeframe
    bar_time: datetime
    cutoff: datetime
    records: list[SignalRecord] = field(default_factory=list)
    ok: bool = True
    attempts: int = 1
    error: Optional[str] = None


class SignalRetriever:
    """
    Schedules signal fetches as background tasks.

    Usage:
        retriever = SignalRetriever(source, max_attempts=3, retry_delay_seconds=1.0)

        # inside the tick handler (event loop running)
        retriever.schedule(Timeframe.M15, bar_time, since, now)
        for result in retriever.drain():
            ...
    """

    def __init__(
        self,
        source: SignalSource,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        recovery: Optional[RecoveryHandler] = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.source = source
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.recovery = recovery
        self._tasks: dict[tuple[Timeframe, datetime], asyncio.Task] = {}
        self._completed: deque[RetrievalResult] = deque()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    @property
    def completed_count(self) -> int:
        return len(self._completed)

    def is_pending(self, timeframe: Timeframe, bar_time: datetime) -> bool:
        return (timeframe, bar_time) in self._tasks

    def schedule(
        self,
        timeframe: Timeframe,
        bar_time: datetime,
        since: Optional[datetime],
        until: datetime,
    ) -> bool:
        """
        Start a background fetch for a closed bar.

        Must be called with an event loop running. A second request for the
        same (timeframe, bar) while one is in flight is ignored.

        Returns:
            True if a task was created
        """
        key = (timeframe, bar_time)
        if key in self._tasks:
            return False

        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._run(timeframe, bar_time, since, until),
            name=f"signals-{timeframe.value}-{bar_time.isoformat()}",
        )
        self._tasks[key] = task
        task.add_done_callback(lambda _t, k=key: self._tasks.pop(k, None))
        logger.debug(f"Scheduled signal fetch {timeframe.value} bar={bar_time.isoformat()}")
        return True

    async def _run(
        self,
        timeframe: Timeframe,
        bar_time: datetime,
        since: Optional[datetime],
        until: datetime,
    ) -> None:
        attempts = 0

        def count_retry(attempt: int, error: Exception) -> None:
            nonlocal attempts
            attempts = attempt

        fetch = with_retry(
            max_attempts=self.max_attempts,
            delay_seconds=self.retry_delay_seconds,
            exceptions=(SignalSourceError,),
            on_retry=count_retry,
        )(self.source.fetch)

        try:
            records = await fetch(timeframe, since, until)
        except SignalSourceError as e:
            self._fail(timeframe, bar_time, until, self.max_attempts, e, ErrorCategory.DATA)
            return
        except Exception as e:
            # Unexpected source bug: same outcome (bar skipped), reported as SYSTEM
            self._fail(timeframe, bar_time, until, attempts + 1, e, ErrorCategory.SYSTEM)
            return

        self._completed.append(RetrievalResult(
            timeframe=timeframe,
            bar_time=bar_time,
            cutoff=until,
            records=records,
            attempts=attempts + 1,
        ))

    def _fail(
        self,
        timeframe: Timeframe,
        bar_time: datetime,
        until: datetime,
        attempts: int,
        error: Exception,
        category: ErrorCategory,
    ) -> None:
        self._completed.append(RetrievalResult(
            timeframe=timeframe,
            bar_time=bar_time,
            cutoff=until,
            ok=False,
            attempts=attempts,
            error=str(error),
        ))
        message = (
            f"Signal retrieval failed for {timeframe.value} bar {bar_time.isoformat()} "
            f"after {attempts} attempt(s): {error}"
        )
        if self.recovery:
            self.recovery.record(
                category,
                message,
                severity=ErrorSeverity.WARNING if category == ErrorCategory.DATA else ErrorSeverity.ERROR,
                details={"source": repr(self.source)},
                exception=error,
                action="skip_bar",
            )
        else:
            logger.warning(message)

    def drain(self) -> list[RetrievalResult]:
        """Pop every completed result, oldest first."""
        results = []
        while self._completed:
            results.append(self._completed.popleft())
        return results

    async def wait_idle(self) -> None:
        """Wait until every in-flight retrieval has completed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel in-flight retrievals."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
