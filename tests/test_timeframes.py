"""Unit tests for utils.timeframes."""

import pytest
from decision_engine.utils.timeframes import order_timeframes, timeframe_minutes


def test_timeframe_minutes():
    assert timeframe_minutes("5m") == 5
    assert timeframe_minutes("1h") == 60
    assert timeframe_minutes("4H") == 240
    assert timeframe_minutes("1d") == 1440


def test_timeframe_invalid():
    with pytest.raises(ValueError):
        timeframe_minutes("1x")


def test_order_timeframes_shortest_first():
    assert order_timeframes(["1h", "5m", "4h", "15m"]) == ["5m", "15m", "1h", "4h"]
    assert order_timeframes([]) == []
