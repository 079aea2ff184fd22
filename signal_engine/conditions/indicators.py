"""Indicator engine.

Computes indicator output series from a close-price series and memoizes them
per evaluation run. Every series has the same length as the input; entries
that are not yet available (window not filled) hold ``NaN``.

Cache key is structured, not a formatted string:
    SeriesKey(kind=IndicatorKind.SMA, params=IndicatorParams(period=20), field=IndicatorField.VALUE)
"""

from __future__ import annotations

import logging
import math
from typing import NamedTuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .ir import IndicatorField, IndicatorKind, IndicatorParams, IndicatorRef

logger = logging.getLogger(__name__)

# Per-kind default parameters
DEFAULT_PARAMS: dict[IndicatorKind, IndicatorParams] = {
    IndicatorKind.SMA: IndicatorParams(period=20),
    IndicatorKind.EMA: IndicatorParams(period=20),
    IndicatorKind.RSI: IndicatorParams(period=14),
    IndicatorKind.MACD: IndicatorParams(fast_period=12, slow_period=26, signal_period=9),
    IndicatorKind.BB: IndicatorParams(period=20, std_dev=2.0),
}

# Fields each kind produces; anything else resolves to the main output
KIND_FIELDS: dict[IndicatorKind, tuple[IndicatorField, ...]] = {
    IndicatorKind.SMA: (IndicatorField.VALUE,),
    IndicatorKind.EMA: (IndicatorField.VALUE,),
    IndicatorKind.RSI: (IndicatorField.VALUE,),
    IndicatorKind.MACD: (IndicatorField.MACD, IndicatorField.SIGNAL, IndicatorField.HISTOGRAM),
    IndicatorKind.BB: (IndicatorField.MIDDLE, IndicatorField.UPPER, IndicatorField.LOWER),
}


class SeriesKey(NamedTuple):
    """Identity of one computed indicator series."""

    kind: IndicatorKind
    params: IndicatorParams
    field: IndicatorField


# =============================================================================
# Parameter / field normalization
# =============================================================================


def resolve_params(kind: IndicatorKind, params: IndicatorParams) -> IndicatorParams:
    """Fill unset parameters with the kind's defaults.

    Only the parameters the kind uses are kept, so ``SMA()`` and
    ``SMA(period=20, std_dev=3)`` share a cache entry.
    """
    defaults = DEFAULT_PARAMS[kind]
    used = {name for name, value in defaults.model_dump().items() if value is not None}
    merged = {
        name: getattr(params, name) if getattr(params, name) is not None else getattr(defaults, name)
        for name in used
    }
    return IndicatorParams(**merged)


def resolve_field(kind: IndicatorKind, field: IndicatorField) -> IndicatorField:
    """Map a requested field to one the kind produces."""
    fields = KIND_FIELDS[kind]
    return field if field in fields else fields[0]


def series_key(ref: IndicatorRef) -> SeriesKey | None:
    """Build the cache key for a reference, or None for an unsupported kind."""
    kind = IndicatorKind.parse(ref.indicator)
    if kind is None:
        return None
    return SeriesKey(kind, resolve_params(kind, ref.params), resolve_field(kind, ref.field))


def warmup_bars(kind: IndicatorKind, params: IndicatorParams) -> int:
    """Index of the first bar at which the kind's main output is available."""
    p = resolve_params(kind, params)
    match kind:
        case IndicatorKind.SMA | IndicatorKind.EMA | IndicatorKind.BB:
            return p.period - 1
        case IndicatorKind.RSI:
            return p.period
        case IndicatorKind.MACD:
            return (max(p.fast_period, p.slow_period) - 1) + (p.signal_period - 1)


# =============================================================================
# Series computations
# =============================================================================


def _nan_series(n: int) -> np.ndarray:
    return np.full(n, np.nan, dtype=float)


def sma(values: np.ndarray, period: int) -> np.ndarray:
    """Simple moving average."""
    out = _nan_series(len(values))
    if len(values) < period:
        return out
    csum = np.cumsum(np.insert(values, 0, 0.0))
    out[period - 1 :] = (csum[period:] - csum[:-period]) / period
    return out


def ema(values: np.ndarray, period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first window.

    Leading NaN values (e.g. a MACD line still warming up) are skipped.
    """
    out = _nan_series(len(values))
    valid = np.flatnonzero(~np.isnan(values))
    if len(valid) == 0:
        return out
    start = int(valid[0])
    if len(values) - start < period:
        return out

    alpha = 2.0 / (period + 1)
    seed_index = start + period - 1
    out[seed_index] = float(np.mean(values[start : seed_index + 1]))
    for i in range(seed_index + 1, len(values)):
        out[i] = alpha * values[i] + (1 - alpha) * out[i - 1]
    return out


def rsi(values: np.ndarray, period: int) -> np.ndarray:
    """Relative strength index with Wilder smoothing."""
    out = _nan_series(len(values))
    if len(values) <= period:
        return out

    deltas = np.diff(values)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    out[period] = _rsi_value(avg_gain, avg_loss)
    for i in range(period + 1, len(values)):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        out[i] = _rsi_value(avg_gain, avg_loss)
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def macd(
    values: np.ndarray, fast: int, slow: int, signal: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """MACD line, signal line, histogram.

    Histogram is ``macd - signal`` where both are available, otherwise 0.
    """
    macd_line = ema(values, fast) - ema(values, slow)
    signal_line = ema(macd_line, signal)
    both = ~np.isnan(macd_line) & ~np.isnan(signal_line)
    histogram = np.where(both, macd_line - signal_line, 0.0)
    return macd_line, signal_line, histogram


def bollinger(
    values: np.ndarray, period: int, std_dev: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Bollinger bands (upper, middle, lower) using population std."""
    middle = sma(values, period)
    upper = _nan_series(len(values))
    lower = _nan_series(len(values))
    if len(values) < period:
        return upper, middle, lower
    std = np.std(sliding_window_view(values, period), axis=1)
    upper[period - 1 :] = middle[period - 1 :] + std_dev * std
    lower[period - 1 :] = middle[period - 1 :] - std_dev * std
    return upper, middle, lower


def compute_series(key: SeriesKey, closes: np.ndarray) -> np.ndarray:
    """Compute the series identified by ``key``. O(n)."""
    p = key.params
    match key.kind:
        case IndicatorKind.SMA:
            return sma(closes, p.period)
        case IndicatorKind.EMA:
            return ema(closes, p.period)
        case IndicatorKind.RSI:
            return rsi(closes, p.period)
        case IndicatorKind.MACD:
            macd_line, signal_line, histogram = macd(
                closes, p.fast_period, p.slow_period, p.signal_period
            )
            return {
                IndicatorField.MACD: macd_line,
                IndicatorField.SIGNAL: signal_line,
                IndicatorField.HISTOGRAM: histogram,
            }[key.field]
        case IndicatorKind.BB:
            upper, middle, lower = bollinger(closes, p.period, p.std_dev)
            return {
                IndicatorField.UPPER: upper,
                IndicatorField.MIDDLE: middle,
                IndicatorField.LOWER: lower,
            }[key.field]
        case _:
            raise ValueError(f"Unknown indicator kind: {key.kind}")


# =============================================================================
# Per-run cache
# =============================================================================


class IndicatorCache:
    """Memoized indicator series for one bar series.

    Owned by a single evaluation run; never share between runs or series.
    """

    def __init__(self, closes: np.ndarray | list[float]):
        self.closes = np.asarray(closes, dtype=float)
        self._series: dict[SeriesKey, np.ndarray] = {}
        self._keys: dict[IndicatorRef, SeriesKey | None] = {}
        self._unknown: set[str] = set()
        self.computations = 0

    def __len__(self) -> int:
        return len(self._series)

    def key_for(self, ref: IndicatorRef) -> SeriesKey | None:
        """Resolved cache key for a reference, normalized once per distinct ref."""
        if ref not in self._keys:
            self._keys[ref] = series_key(ref)
        return self._keys[ref]

    def series(self, ref: IndicatorRef) -> np.ndarray | None:
        """Full series for a reference, or None for an unsupported kind."""
        key = self.key_for(ref)
        if key is None:
            name = ref.indicator
            if name not in self._unknown:
                self._unknown.add(name)
                logger.warning(f"Unsupported indicator '{name}', conditions using it never match")
            return None

        cached = self._series.get(key)
        if cached is None:
            cached = compute_series(key, self.closes)
            self._series[key] = cached
            self.computations += 1
        return cached

    def value_at(self, ref: IndicatorRef, index: int) -> float | None:
        """Indicator value at ``index``, or None when unavailable."""
        if index < 0 or index >= len(self.closes):
            return None
        values = self.series(ref)
        if values is None:
            return None
        value = float(values[index])
        return None if math.isnan(value) else value
