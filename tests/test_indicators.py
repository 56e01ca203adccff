import math

import numpy as np
import pytest

from analyzers.indicators import (
    adx,
    align_series,
    atr,
    bollinger,
    compute_indicators,
    ema,
    enrich_candles,
    macd,
    rsi,
    sma,
    stochastic,
)
from utils.pydantic_models import Candle, IndicatorKind, IndicatorSpec, default_indicator_specs

BASE_TS = 1700000000


def linear_candles(n=100):
    """close = 100 + i, high/low one point either side, one minute apart."""
    return [
        Candle(timestamp=BASE_TS + 60 * i, open=100 + i - 0.5, high=101 + i, low=99 + i, close=100 + i)
        for i in range(n)
    ]


def arrays(candles):
    return (
        np.array([c.high for c in candles], dtype=float),
        np.array([c.low for c in candles], dtype=float),
        np.array([c.close for c in candles], dtype=float),
    )


def test_sma_alignment_on_linear_series():
    """SMA(20) on 100 candles: 19 leading nulls, then close - 9.5."""
    candles = linear_candles()
    spec = IndicatorSpec(name="sma20", kind=IndicatorKind.SMA, period=20)
    series = compute_indicators(candles, [spec])["sma20"]
    assert len(series) == 81

    aligned = align_series(len(candles), series)
    assert len(aligned) == 100
    assert aligned[:19] == [None] * 19
    for i in range(19, 100):
        assert aligned[i] == pytest.approx(candles[i].close - 9.5)


def test_rsi_alignment_on_rising_series():
    """RSI(14) on a strictly rising series is 100 once it starts."""
    candles = linear_candles()
    spec = IndicatorSpec(name="rsi", kind=IndicatorKind.RSI, period=14)
    series = compute_indicators(candles, [spec])["rsi"]
    assert len(series) == 86

    aligned = align_series(len(candles), series)
    assert aligned[:14] == [None] * 14
    assert all(v == pytest.approx(100.0) for v in aligned[14:])


def test_ema_tracks_linear_series():
    _, _, closes = arrays(linear_candles())
    for period in (5, 20, 50):
        values = ema(closes, period)
        assert len(values) == 100 - period + 1
        expected = closes[period - 1:] - (period - 1) / 2
        assert values == pytest.approx(expected)


def test_macd_constant_spread():
    _, _, closes = arrays(linear_candles())
    line, signal_line, histogram = macd(closes, 12, 26, 9)
    # N - slow - signal + 2
    assert len(line) == len(signal_line) == len(histogram) == 67
    assert line == pytest.approx(np.full(67, 7.0))
    assert signal_line == pytest.approx(np.full(67, 7.0))
    assert histogram == pytest.approx(np.zeros(67), abs=1e-9)


def test_bollinger_population_std():
    _, _, closes = arrays(linear_candles())
    upper, middle, lower = bollinger(closes, 20, 2.0)
    std = math.sqrt(399 / 12)
    assert len(middle) == 81
    assert middle == pytest.approx(closes[19:] - 9.5)
    assert upper == pytest.approx(closes[19:] - 9.5 + 2 * std)
    assert lower == pytest.approx(closes[19:] - 9.5 - 2 * std)


def test_stochastic_on_linear_series():
    highs, lows, closes = arrays(linear_candles())
    k, d = stochastic(highs, lows, closes, 14, 3)
    # N - period - signal + 2
    assert len(k) == len(d) == 85
    assert k == pytest.approx(np.full(85, 100 * 14 / 15))
    assert d == pytest.approx(np.full(85, 100 * 14 / 15))


def test_stochastic_flat_range_is_midpoint():
    flat = np.full(20, 5.0)
    k, d = stochastic(flat, flat, flat, 14, 3)
    assert k == pytest.approx(np.full(len(k), 50.0))
    assert d == pytest.approx(np.full(len(d), 50.0))


def test_atr_and_adx_on_linear_series():
    highs, lows, closes = arrays(linear_candles())

    atr_values = atr(highs, lows, closes, 14)
    assert len(atr_values) == 86
    assert atr_values == pytest.approx(np.full(86, 2.0))

    adx_line, pdi, mdi = adx(highs, lows, closes, 14)
    # N - 2 * period + 1
    assert len(adx_line) == len(pdi) == len(mdi) == 73
    assert adx_line == pytest.approx(np.full(73, 100.0))
    assert pdi == pytest.approx(np.full(73, 50.0))
    assert mdi == pytest.approx(np.zeros(73))


def test_rsi_flat_series_is_neutral():
    assert rsi(np.full(30, 1.2345), 14) == pytest.approx(np.full(16, 50.0))


def test_empty_and_short_inputs_give_empty_series():
    empty = np.array([], dtype=float)
    assert len(sma(empty, 20)) == 0
    assert len(ema(empty, 20)) == 0
    assert len(rsi(empty, 14)) == 0
    assert all(len(part) == 0 for part in macd(empty))
    assert all(len(part) == 0 for part in bollinger(empty))
    assert all(len(part) == 0 for part in stochastic(empty, empty, empty))
    assert len(atr(empty, empty, empty)) == 0
    assert all(len(part) == 0 for part in adx(empty, empty, empty))

    # One candle is enough to enrich, every indicator is null
    rows = enrich_candles(linear_candles(1), default_indicator_specs())
    assert len(rows) == 1
    for spec in default_indicator_specs():
        assert rows[0][spec.name] is None


def test_compute_indicators_rejects_no_candles():
    with pytest.raises(ValueError):
        compute_indicators([], default_indicator_specs())


def test_align_series_rejects_longer_series():
    with pytest.raises(ValueError):
        align_series(3, [1.0, 2.0, 3.0, 4.0])


def test_enrich_candles_sorts_rounds_and_keys_every_row():
    candles = linear_candles(100)
    shuffled = candles[50:] + candles[:50]
    specs = default_indicator_specs()

    rows = enrich_candles(shuffled, specs)
    assert [r["timestamp"] for r in rows] == [c.timestamp for c in candles]
    assert all(set(spec.name for spec in specs) <= set(row) for row in rows)

    last = rows[-1]
    assert last["close"] == 199.0
    assert last["volume"] == 0.0
    assert last["sma50"] == pytest.approx(199 - 24.5)
    assert last["ema20"] == pytest.approx(199 - 9.5)
    assert last["rsi"] == 100.0
    assert last["macd"] == {"macd": pytest.approx(7.0), "signal": pytest.approx(7.0),
                            "histogram": pytest.approx(0.0, abs=1e-9)}
    assert last["stochastic"] == {"k": 93.33, "d": 93.33}
    assert last["atr"] == 2.0
    assert last["adx"]["adx"] == 100.0

    # The 49 candles before SMA(50) warms up carry null
    assert all(row["sma50"] is None for row in rows[:49])
    assert rows[49]["sma50"] is not None
    # MACD only where line, signal and histogram all exist: 26 + 9 - 2 leading nulls
    assert all(row["macd"] is None for row in rows[:33])
    assert rows[33]["macd"] is not None
