"""Unit tests for indicators."""

import pandas as pd
import pytest
from decision_engine.core.types import Indicators, Trend
from decision_engine.indicators import (
    classify_alignment,
    classify_trend,
    compute_indicator_frame,
    snapshot_indicators,
)


def rising_frame(n=60, volume=100.0):
    close = [1.0 + 0.01 * i for i in range(n)]
    return pd.DataFrame(
        {
            "time": [i * 900_000 for i in range(n)],
            "open": [c - 0.005 for c in close],
            "high": [c + 0.005 for c in close],
            "low": [c - 0.005 for c in close],
            "close": close,
            "volume": [volume] * n,
        }
    )


def test_indicator_columns_added():
    df = compute_indicator_frame(rising_frame())
    for col in ("ema20", "ema50", "rsi", "macd", "macd_signal", "histogram", "bb_pos", "bb_width", "atr", "vol_ratio", "adx"):
        assert col in df.columns


def test_snapshot_of_steady_uptrend():
    ind = snapshot_indicators(rising_frame())
    assert ind.trend is Trend.BULLISH
    assert ind.ema_alignment is Trend.BULLISH
    assert ind.rsi == pytest.approx(100.0)
    assert ind.vol_ratio == pytest.approx(1.0)
    assert ind.histogram is not None
    assert ind.ema20_slope > 0
    assert ind.adx > 25


def test_short_history_falls_back_to_defaults():
    ind = snapshot_indicators(rising_frame(5))
    assert ind.rsi == 50.0
    assert ind.bb_width is None
    assert ind.adx is None
    assert ind.vol_ratio == 1.0


def test_empty_frame():
    assert snapshot_indicators(pd.DataFrame()) == Indicators()


def test_closed_only_skips_forming_candle():
    df = rising_frame()
    df.loc[df.index[-1], "volume"] = 1000.0
    assert snapshot_indicators(df).vol_ratio > 1.5
    assert snapshot_indicators(df, closed_only=True).vol_ratio == pytest.approx(1.0)


def test_trend_classification():
    assert classify_trend(1.1, 1.05, 1.0) is Trend.BULLISH
    assert classify_trend(0.9, 0.95, 1.0) is Trend.BEARISH
    assert classify_trend(1.0, 1.05, 1.0) is Trend.NEUTRAL
    assert classify_alignment(1.0, 1.0) is Trend.MIXED
