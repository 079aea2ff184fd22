"""Data service protocol for historical bar fetching.

This module defines the interface for supplying OHLCV bars to backtests.
The protocol allows different implementations:
- InMemoryDataService: Testing and callers that already hold bars
- SyntheticDataService: Deterministic random-walk bars for development
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import Protocol

from signal_engine.models.backtest import Bar, Timeframe
from signal_engine.models.errors import is_aware

logger = logging.getLogger(__name__)


class DataService(Protocol):
    """Protocol for fetching OHLCV bars.

    Implementations should handle:
    - Connection to the data source
    - Timeframe mapping
    - Date range filtering
    """

    def get_bars(
        self,
        symbol: str,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Bar]:
        """Fetch bars for symbol and date range.

        Args:
            symbol: Trading symbol (e.g., "USDJPY")
            timeframe: Bar resolution
            start: Start datetime (inclusive)
            end: End datetime (inclusive)

        Returns:
            List of bars, sorted by timestamp ascending

        Raises:
            DataFetchError: If data cannot be fetched
        """
        ...


class DataFetchError(Exception):
    """Raised when data fetching fails."""

    pass


class InMemoryDataService:
    """In-memory DataService.

    Seed with bars, then pass to BacktestService.

    Usage:
        ds = InMemoryDataService()
        ds.seed("USDJPY", Timeframe.H1, bars)
        service = BacktestService(data_service=ds)
    """

    def __init__(self) -> None:
        self._data: dict[tuple[str, Timeframe], list[Bar]] = {}

    def seed(self, symbol: str, timeframe: Timeframe, bars: list[Bar]) -> None:
        """Seed bars for a symbol/timeframe pair."""
        self._data[(symbol, Timeframe(timeframe))] = sorted(bars, key=lambda b: b.timestamp)

    def get_bars(
        self,
        symbol: str,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Bar]:
        """Return seeded bars in range. Raises DataFetchError if not seeded."""
        key = (symbol, Timeframe(timeframe))
        if key not in self._data:
            raise DataFetchError(
                f"No data seeded for {symbol}/{Timeframe(timeframe).value}. "
                f"Call ds.seed('{symbol}', '{Timeframe(timeframe).value}', bars) first."
            )
        seeded = self._data[key]
        if seeded and is_aware(seeded[0].timestamp) != is_aware(start):
            raise DataFetchError(
                f"{symbol}/{Timeframe(timeframe).value} bars and the requested range "
                f"mix timezone-aware and naive datetimes"
            )
        bars = [b for b in seeded if start <= b.timestamp <= end]
        if not bars:
            raise DataFetchError(
                f"No {symbol}/{Timeframe(timeframe).value} bars between "
                f"{start.isoformat()} and {end.isoformat()}"
            )
        return bars


# =============================================================================
# Synthetic data
# =============================================================================


def _seeded_random(seed: int) -> Iterator[float]:
    """Linear congruential generator yielding values in [0, 1)."""
    while True:
        seed = (seed * 9301 + 49297) % 233280
        yield seed / 233280


def generate_synthetic_bars(
    symbol: str,
    timeframe: Timeframe,
    start: datetime,
    end: datetime,
) -> list[Bar]:
    """Deterministic random-walk bars from ``start`` to ``end`` inclusive.

    The same symbol, timeframe and dates always produce the same bars. JPY
    symbols start near 150 with wider moves; everything else near 1.1.
    """
    is_jpy = "JPY" in symbol.upper()
    price = 150.0 if is_jpy else 1.1
    volatility = 0.5 if is_jpy else 0.005

    seed = int(start.timestamp() * 1000) + (ord(symbol[0]) if symbol else 0)
    rand = _seeded_random(seed)
    step = timedelta(minutes=Timeframe(timeframe).minutes)

    bars: list[Bar] = []
    current = start
    while current <= end:
        change = (next(rand) - 0.5) * volatility
        open_ = price
        close = price + change
        high = max(open_, close) + next(rand) * volatility * 0.5
        low = min(open_, close) - next(rand) * volatility * 0.5
        volume = float(int(next(rand) * 10000) + 1000)
        bars.append(
            Bar(timestamp=current, open=open_, high=high, low=low, close=close, volume=volume)
        )
        price = close
        current += step
    return bars


class SyntheticDataService:
    """DataService that generates deterministic synthetic bars.

    Stand-in for a real market data source in development; never fails for a
    non-empty range.
    """

    def get_bars(
        self,
        symbol: str,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Bar]:
        if end < start:
            raise DataFetchError(f"Invalid range: {end.isoformat()} is before {start.isoformat()}")
        bars = generate_synthetic_bars(symbol, timeframe, start, end)
        logger.info(f"Generated {len(bars)} synthetic {Timeframe(timeframe).value} bars for {symbol}")
        return bars
