"""Unit tests for snapshot loading and frame conversion."""

import pandas as pd
import pytest
from decision_engine.core.types import KnifePhase, TradeDirection, Trend
from decision_engine.position import ExchangePosition, PaperPosition
from decision_engine.snapshot import load_snapshot, parse_candles
from decision_engine.utils.frames import candles_from_frame

NOW = 1_700_000_000_000


def snapshot(**extra):
    data = {
        "now_ms": NOW,
        "current_price": 0.55,
        "available_margin": 450.0,
        "position": {
            "source": "paper",
            "side": "long",
            "avg_entry_price": 0.5,
            "volume": 1000,
            "margin_used": 50,
            "opened_at": NOW - 3_600_000,
        },
    }
    data.update(extra)
    return data


def test_load_paper_snapshot():
    inp = load_snapshot(snapshot(indicators={"1h": {"rsi": 61.5, "trend": "Bearish"}}))
    assert isinstance(inp.raw_position, PaperPosition)
    assert inp.raw_position.side is TradeDirection.LONG
    assert inp.current_price == 0.55
    assert inp.available_margin == 450.0
    assert inp.indicators["1h"].rsi == 61.5
    assert inp.indicators["1h"].trend is Trend.BEARISH


def test_load_exchange_snapshot():
    inp = load_snapshot(snapshot(position={"source": "exchange", "type": "sell", "cost": 55, "vol": 100, "margin": 5.5, "time": NOW}))
    assert isinstance(inp.raw_position, ExchangePosition)
    assert inp.raw_position.side == "sell"


def test_null_position():
    assert load_snapshot(snapshot(position=None)).raw_position is None


def test_missing_price_rejected():
    with pytest.raises(ValueError):
        load_snapshot({"now_ms": NOW})


def test_bad_timeframe_rejected():
    with pytest.raises(ValueError):
        load_snapshot(snapshot(candles={"7x": []}))


def test_unknown_position_source_rejected():
    with pytest.raises(ValueError):
        load_snapshot(snapshot(position={"source": "broker"}))


def test_candles_parsed_and_sorted():
    candles = parse_candles([[2000, 1, 2, 0.5, 1.5, 10], {"time": 1000, "open": 1, "high": 1.2, "low": 0.9, "close": 1.1}])
    assert [c.time for c in candles] == [1000, 2000]
    assert candles[0].volume == 0.0


def test_indicators_computed_from_candles():
    rows = [[i * 300_000, 1.0 + i * 0.001, 1.002 + i * 0.001, 0.999 + i * 0.001, 1.001 + i * 0.001, 100] for i in range(40)]
    inp = load_snapshot(snapshot(candles={"5m": rows, "15m": rows[:10]}))
    assert "5m" in inp.indicators
    assert inp.indicators["5m"].trend is Trend.BULLISH
    # too short to compute
    assert "15m" not in inp.indicators


def test_enrichment_parsed():
    inp = load_snapshot(
        snapshot(
            knife={"is_knife": True, "direction": "falling", "phase": "impulse", "knife_score": 70},
            whale={"recent_large_buys": 1, "recent_large_sells": 5, "imbalance": -0.4},
            account={"equity": 500.0, "trade_balance": 480.0},
        )
    )
    assert inp.knife.phase is KnifePhase.IMPULSE
    assert inp.whale.recent_large_sells == 5
    assert inp.account.trade_balance == 480.0


def test_candles_from_frame_numeric_time():
    df = pd.DataFrame({"time": [2, 1], "open": [1.0, 1.0], "high": [1.1, 1.1], "low": [0.9, 0.9], "close": [1.0, 1.05]})
    candles = candles_from_frame(df)
    assert [c.time for c in candles] == [1, 2]
    assert candles[0].close == 1.05
    assert candles[0].volume == 0.0


def test_candles_from_frame_datetime_time():
    df = pd.DataFrame(
        {"time": ["2024-01-01T00:00:00Z"], "open": [1.0], "high": [1.1], "low": [0.9], "close": [1.0], "volume": [5.0]}
    )
    assert candles_from_frame(df)[0].time == 1_704_067_200_000


def test_candles_from_frame_missing_columns():
    with pytest.raises(ValueError):
        candles_from_frame(pd.DataFrame({"close": [1.0]}))
