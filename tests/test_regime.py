"""Unit tests for regime."""

from decision_engine.core.config import RegimeConfig
from decision_engine.core.types import Indicators, MarketRegime
from decision_engine.regime import detect_market_regime


def test_strong_trend_stretches_timebox():
    r = detect_market_regime(Indicators(adx=40.0), Indicators(bb_width=2.5))
    assert r.regime is MarketRegime.STRONG_TREND
    assert r.adjusted_timebox_max_hours == 72.0
    assert r.adjusted_timebox_weight == 0.05
    assert r.confidence == 70


def test_strong_adx_needs_wide_bands():
    r = detect_market_regime(Indicators(adx=40.0), Indicators(bb_width=1.5))
    assert r.regime is MarketRegime.TRENDING
    assert r.adjusted_timebox_max_hours == 48.0


def test_low_volatility():
    r = detect_market_regime(Indicators(adx=10.0), Indicators(bb_width=0.5))
    assert r.regime is MarketRegime.LOW_VOLATILITY
    assert r.adjusted_timebox_max_hours == 36.0
    assert r.adjusted_timebox_weight == 0.20


def test_trending_from_1h_adx():
    r = detect_market_regime(Indicators(adx=10.0), Indicators(adx=30.0, bb_width=1.3))
    assert r.regime is MarketRegime.TRENDING
    assert r.adjusted_timebox_weight == 0.10


def test_missing_inputs_default_to_ranging():
    r = detect_market_regime(None, None)
    assert r.regime is MarketRegime.RANGING
    assert 0 <= r.confidence <= 100
    assert "Ranging" in r.reason


def test_custom_thresholds():
    config = RegimeConfig(trending_adx=30.0, ranging_max_hours=24.0)
    r = detect_market_regime(Indicators(adx=25.0), Indicators(bb_width=1.5), config)
    assert r.regime is MarketRegime.RANGING
    assert r.adjusted_timebox_max_hours == 24.0
