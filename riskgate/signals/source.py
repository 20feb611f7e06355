"""
Signal sources.

A signal source yields the records of one timeframe with
``since < timestamp <= until``. Two backends are provided:

- FileSignalSource: a local append-only dataset (CSV or Parquet) read with
  pandas in a worker thread
- HttpSignalSource: a JSON endpoint queried with aiohttp

Both raise ``SignalSourceError`` for any transient failure; retry policy is
the caller's concern.

Dataset layout (file) / response items (http):
    timestamp, timeframe, direction, weight
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

import aiohttp
import pandas as pd

from riskgate.lib.constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from riskgate.lib.time_utils import Timeframe, ensure_aware
from riskgate.signals.records import SignalRecord

logger = logging.getLogger(__name__)


class SignalSourceError(Exception):
    """Raised when a signal source cannot deliver records."""

    def __init__(self, message: str, source: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.source = source
        self.status_code = status_code


@runtime_checkable
class SignalSource(Protocol):
    """Anything that can fetch signal records for a window."""

    async def fetch(
        self,
        timeframe: Timeframe,
        since: Optional[datetime],
        until: datetime,
    ) -> list[SignalRecord]:
        ...


def _records_from_rows(rows: list[dict], source: str) -> list[SignalRecord]:
    records = []
    for row in rows:
        try:
            records.append(
                SignalRecord.from_raw(row["timestamp"], row.get("direction"), row.get("weight"))
            )
        except (KeyError, ValueError, TypeError) as e:
            raise SignalSourceError(f"Malformed signal row {row!r}: {e}", source=source) from e
    return records


def _in_window(ts: datetime, since: Optional[datetime], until: datetime) -> bool:
    return ts <= until and (since is None or ts > since)


# =============================================================================
# File Source
# =============================================================================

class FileSignalSource:
    """
    Signal source backed by a local CSV or Parquet file.

    The file is re-read on every fetch since it is appended to by an
    external producer. Rows whose ``timeframe`` column does not match are
    ignored; a file without that column serves every timeframe.

    Usage:
        source = FileSignalSource("data/signals.csv")
        records = await source.fetch(Timeframe.M15, since=last, until=now)
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"FileSignalSource({str(self.path)!r})"

    async def fetch(
        self,
        timeframe: Timeframe,
        since: Optional[datetime],
        until: datetime,
    ) -> list[SignalRecord]:
        """
        Read records in the window from the file.

        Raises:
            SignalSourceError: File missing, unreadable or malformed
        """
        return await asyncio.to_thread(self._read, timeframe, since, until)

    def _read(
        self,
        timeframe: Timeframe,
        since: Optional[datetime],
        until: datetime,
    ) -> list[SignalRecord]:
        source = str(self.path)
        try:
            if self.path.suffix.lower() in (".parquet", ".pq"):
                df = pd.read_parquet(self.path)
            else:
                df = pd.read_csv(self.path, dtype={"direction": str, "weight": str})
        except FileNotFoundError as e:
            raise SignalSourceError(f"Signal file not found: {source}", source=source) from e
        except (OSError, ValueError, pd.errors.ParserError) as e:
            raise SignalSourceError(f"Failed to read signal file {source}: {e}", source=source) from e

        if df.empty:
            return []

        df.columns = [str(c).strip().lower() for c in df.columns]
        if "timestamp" not in df.columns or "direction" not in df.columns:
            raise SignalSourceError(
                f"Signal file {source} needs 'timestamp' and 'direction' columns", source=source
            )

        if "timeframe" in df.columns:
            df = df[df["timeframe"].astype(str).str.upper() == timeframe.value]

        try:
            if pd.api.types.is_numeric_dtype(df["timestamp"]):
                # Numeric columns are epoch seconds, as in SignalRecord.from_raw
                timestamps = pd.to_datetime(df["timestamp"], unit="s", utc=True)
            else:
                timestamps = pd.to_datetime(df["timestamp"], utc=True)
            df = df.assign(timestamp=timestamps)
        except (ValueError, TypeError) as e:
            raise SignalSourceError(f"Bad timestamps in {source}: {e}", source=source) from e

        until = ensure_aware(until)
        mask = df["timestamp"] <= pd.Timestamp(until)
        if since is not None:
            mask &= df["timestamp"] > pd.Timestamp(ensure_aware(since))
        df = df[mask]

        if "weight" not in df.columns:
            df = df.assign(weight=None)
        df = df.astype(object).where(df.notna(), None)

        rows = df[["timestamp", "direction", "weight"]].to_dict("records")
        return _records_from_rows(rows, source)


# =============================================================================
# HTTP Source
# =============================================================================

class HttpSignalSource:
    """
    Signal source backed by an HTTP endpoint.

    Issues ``GET {base_url}/signals?timeframe=..&since=..&until=..`` and
    expects a JSON list (or ``{"signals": [...]}``) of records.

    Usage:
        async with HttpSignalSource("https://signals.example.com/api") as source:
            records = await source.fetch(Timeframe.H1, since=None, until=now)
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        headers: Optional[dict] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.headers = headers or {}
        self._session = session
        self._owns_session = session is None

    def __repr__(self) -> str:
        return f"HttpSignalSource({self.base_url!r})"

    async def __aenter__(self) -> "HttpSignalSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the owned HTTP session."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(
        self,
        timeframe: Timeframe,
        since: Optional[datetime],
        until: datetime,
    ) -> list[SignalRecord]:
        """
        Query the endpoint for records in the window.

        Raises:
            SignalSourceError: Connection failure, timeout, non-200 or bad payload
        """
        url = f"{self.base_url}/signals"
        params = {"timeframe": timeframe.value, "until": ensure_aware(until).isoformat()}
        if since is not None:
            params["since"] = ensure_aware(since).isoformat()

        session = await self._ensure_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise SignalSourceError(
                        f"Signal endpoint returned {response.status}: {text[:200]}",
                        source=url,
                        status_code=response.status,
                    )
                payload: Any = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SignalSourceError(f"Signal endpoint request failed: {e}", source=url) from e
        except asyncio.TimeoutError as e:
            raise SignalSourceError("Signal endpoint request timed out", source=url) from e
        except ValueError as e:
            raise SignalSourceError(f"Signal endpoint returned invalid JSON: {e}", source=url) from e

        if isinstance(payload, dict):
            payload = payload.get("signals", [])
        if not isinstance(payload, list):
            raise SignalSourceError("Signal endpoint payload is not a list", source=url)

        records = _records_from_rows(payload, url)
        until = ensure_aware(until)
        since = ensure_aware(since) if since is not None else None
        return [r for r in records if _in_window(r.timestamp, since, until)]


def create_signal_source(
    source_type: str,
    path: Optional[str] = None,
    url: Optional[str] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
):
    """
    Build a signal source from configuration values.

    Raises:
        ValueError: Unknown type or missing location
    """
    if source_type == "file":
        if not path:
            raise ValueError("File signal source requires a path")
        return FileSignalSource(path)
    if source_type == "http":
        if not url:
            raise ValueError("HTTP signal source requires a url")
        return HttpSignalSource(url, timeout_seconds=timeout_seconds)
    raise ValueError(f"Unknown signal source type: {source_type}")
