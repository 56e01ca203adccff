"""
Indicator engine.

Every indicator function returns only the values it can actually compute, so a
series is shorter than its input by the indicator's warm-up. ``align_series``
maps a series back onto the candle timeline using the returned length:
candle ``i`` carries ``series[i - (N - M)]`` and the first ``N - M`` candles
carry ``None``.

Conventions (fixed):
- EMA: alpha = 2 / (period + 1), seeded with the SMA of the first window.
- RSI, ATR, ADX: Wilder smoothing seeded with a simple mean of the first window.
- MACD: emitted only where macd, signal and histogram all exist.
- Bollinger: population standard deviation.
- Stochastic: %K is 50 when the high/low range of the window is flat.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from utils.pydantic_models import Candle, IndicatorKind, IndicatorSpec

IndicatorValue = Union[float, Dict[str, float]]
IndicatorSeries = List[IndicatorValue]

_EMPTY = np.array([], dtype=float)


def sma(values: np.ndarray, period: int) -> np.ndarray:
    """Simple Moving Average over complete windows"""
    if len(values) < period:
        return _EMPTY
    return pd.Series(values, dtype=float).rolling(window=period).mean().to_numpy()[period - 1:]


def ema(values: np.ndarray, period: int) -> np.ndarray:
    """Exponential Moving Average seeded with the SMA of the first window"""
    if len(values) < period:
        return _EMPTY
    alpha = 2 / (period + 1)
    ema_values = np.empty(len(values) - period + 1)
    ema_values[0] = np.mean(values[:period])

    for i in range(1, len(ema_values)):
        ema_values[i] = alpha * values[period - 1 + i] + (1 - alpha) * ema_values[i - 1]

    return ema_values


def wilder_average(values: np.ndarray, period: int) -> np.ndarray:
    """Wilder's smoothed average, seeded with the mean of the first window"""
    if len(values) < period:
        return _EMPTY
    smoothed = np.empty(len(values) - period + 1)
    smoothed[0] = np.mean(values[:period])

    for i in range(1, len(smoothed)):
        smoothed[i] = (smoothed[i - 1] * (period - 1) + values[period - 1 + i]) / period

    return smoothed


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    return 100 - (100 / (1 + avg_gain / avg_loss))


def rsi(prices: np.ndarray, period: int = 14) -> np.ndarray:
    """Calculate Relative Strength Index"""
    if len(prices) <= period:
        return _EMPTY
    deltas = np.diff(prices)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    # Initial values
    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))

    rsi_values = np.empty(len(deltas) - period + 1)
    rsi_values[0] = _rsi_value(avg_gain, avg_loss)

    # Smoothed averages
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi_values[i - period + 1] = _rsi_value(avg_gain, avg_loss)

    return rsi_values


def macd(prices: np.ndarray, fast: int = 12, slow: int = 26,
         signal: int = 9) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """MACD line, signal line and histogram, trimmed to where all three exist"""
    fast_ema = ema(prices, fast)
    slow_ema = ema(prices, slow)
    if len(slow_ema) == 0:
        return _EMPTY, _EMPTY, _EMPTY

    line = fast_ema[-len(slow_ema):] - slow_ema
    signal_line = ema(line, signal)
    if len(signal_line) == 0:
        return _EMPTY, _EMPTY, _EMPTY

    line = line[-len(signal_line):]
    return line, signal_line, line - signal_line


def bollinger(closes: np.ndarray, period: int = 20,
              multiplier: float = 2.0) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Calculate Bollinger Bands (upper, middle, lower)"""
    if len(closes) < period:
        return _EMPTY, _EMPTY, _EMPTY
    window = pd.Series(closes, dtype=float).rolling(window=period)
    middle = window.mean().to_numpy()[period - 1:]
    std_dev = window.std(ddof=0).to_numpy()[period - 1:]

    return middle + multiplier * std_dev, middle, middle - multiplier * std_dev


def stochastic(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray,
               period: int = 14, signal: int = 3) -> Tuple[np.ndarray, np.ndarray]:
    """Stochastic oscillator %K and its %D signal"""
    if len(closes) < period + signal - 1:
        return _EMPTY, _EMPTY
    highest = pd.Series(highs, dtype=float).rolling(window=period).max().to_numpy()[period - 1:]
    lowest = pd.Series(lows, dtype=float).rolling(window=period).min().to_numpy()[period - 1:]
    last = closes[period - 1:]

    price_range = highest - lowest
    safe_range = np.where(price_range > 0, price_range, 1.0)
    k = np.where(price_range > 0, 100 * (last - lowest) / safe_range, 50.0)
    d = sma(k, signal)

    return k[signal - 1:], d


def true_range(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray) -> np.ndarray:
    """True range from the second candle on"""
    prev_close = closes[:-1]
    high_low = highs[1:] - lows[1:]
    high_close = np.abs(highs[1:] - prev_close)
    low_close = np.abs(lows[1:] - prev_close)
    return np.maximum(high_low, np.maximum(high_close, low_close))


def atr(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = 14) -> np.ndarray:
    """Calculate Average True Range"""
    if len(closes) <= period:
        return _EMPTY
    return wilder_average(true_range(highs, lows, closes), period)


def adx(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray,
        period: int = 14) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Average Directional Index with the +DI / -DI lines it is built from"""
    if len(closes) < 2 * period:
        return _EMPTY, _EMPTY, _EMPTY

    up_move = highs[1:] - highs[:-1]
    down_move = lows[:-1] - lows[1:]
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

    smoothed_tr = wilder_average(true_range(highs, lows, closes), period)
    safe_tr = np.where(smoothed_tr > 0, smoothed_tr, 1.0)
    pdi = np.where(smoothed_tr > 0, 100 * wilder_average(plus_dm, period) / safe_tr, 0.0)
    mdi = np.where(smoothed_tr > 0, 100 * wilder_average(minus_dm, period) / safe_tr, 0.0)

    di_sum = pdi + mdi
    safe_sum = np.where(di_sum > 0, di_sum, 1.0)
    dx = np.where(di_sum > 0, 100 * np.abs(pdi - mdi) / safe_sum, 0.0)

    adx_line = wilder_average(dx, period)
    return adx_line, pdi[-len(adx_line):], mdi[-len(adx_line):]


def _composite(**columns: np.ndarray) -> IndicatorSeries:
    keys = list(columns)
    return [
        {key: float(value) for key, value in zip(keys, row)}
        for row in zip(*columns.values())
    ]


def compute_series(spec: IndicatorSpec, highs: np.ndarray, lows: np.ndarray,
                   closes: np.ndarray) -> IndicatorSeries:
    """Compute one indicator at full precision."""
    kind = spec.kind
    if kind == IndicatorKind.SMA:
        return [float(v) for v in sma(closes, spec.period)]
    if kind == IndicatorKind.EMA:
        return [float(v) for v in ema(closes, spec.period)]
    if kind == IndicatorKind.RSI:
        return [float(v) for v in rsi(closes, spec.period)]
    if kind == IndicatorKind.ATR:
        return [float(v) for v in atr(highs, lows, closes, spec.period)]
    if kind == IndicatorKind.MACD:
        line, signal_line, histogram = macd(closes, spec.fast_period, spec.slow_period, spec.signal_period)
        return _composite(macd=line, signal=signal_line, histogram=histogram)
    if kind == IndicatorKind.BOLLINGER:
        upper, middle, lower = bollinger(closes, spec.period, spec.std_dev)
        return _composite(upper=upper, middle=middle, lower=lower)
    if kind == IndicatorKind.STOCHASTIC:
        k, d = stochastic(highs, lows, closes, spec.period, spec.signal_period)
        return _composite(k=k, d=d)
    if kind == IndicatorKind.ADX:
        adx_line, pdi, mdi = adx(highs, lows, closes, spec.period)
        return _composite(adx=adx_line, pdi=pdi, mdi=mdi)
    raise ValueError(f"Unsupported indicator kind: {kind}")


def compute_indicators(candles: Sequence[Candle],
                       specs: Sequence[IndicatorSpec]) -> Dict[str, IndicatorSeries]:
    """Map each spec name to its series. Too little history gives an empty series."""
    if not candles:
        raise ValueError("At least one candle is required")

    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)
    closes = np.array([c.close for c in candles], dtype=float)

    return {spec.name: compute_series(spec, highs, lows, closes) for spec in specs}


def align_series(candle_count: int, series: Sequence[Any]) -> List[Optional[Any]]:
    """Pad a series with leading ``None`` so that it lines up with the candles."""
    offset = candle_count - len(series)
    if offset < 0:
        raise ValueError(
            f"Indicator series ({len(series)}) is longer than the candle sequence ({candle_count})"
        )
    return [None] * offset + list(series)


def round_value(value: IndicatorValue, precision: int) -> IndicatorValue:
    if isinstance(value, dict):
        return {key: round(v, precision) for key, v in value.items()}
    return round(value, precision)


def sort_candles(candles: Sequence[Candle]) -> List[Candle]:
    return sorted(candles, key=lambda c: c.timestamp)


def enrich_candles(candles: Sequence[Candle],
                   specs: Sequence[IndicatorSpec]) -> List[Dict[str, Any]]:
    """Sort candles and attach every indicator, rounded for presentation.

    Each row carries every spec name as a key; warm-up candles hold ``None``.
    """
    ordered = sort_candles(candles)
    series_by_name = compute_indicators(ordered, specs)

    rows = [candle.model_dump() for candle in ordered]
    for spec in specs:
        aligned = align_series(len(rows), series_by_name[spec.name])
        for row, value in zip(rows, aligned):
            row[spec.name] = None if value is None else round_value(value, spec.precision)

    return rows
