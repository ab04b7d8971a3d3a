"""Unit tests for dca.engine."""

import pytest
from decision_engine.core.config import StrategyConfig
from decision_engine.core.types import (
    Candle,
    DCAExhaustionType,
    Indicators,
    PositionState,
    TradeDirection,
    Trend,
)
from decision_engine.dca import analyze_dca_opportunity, calculate_drawdown_percent

NOW = 1_700_000_000_000
HOUR = 3_600_000

EXHAUSTED_15M = Indicators(rsi=25.0, macd=0.0, macd_signal=0.0, bb_pos=0.5)
QUIET_5M = Indicators(vol_ratio=0.5)


def long_position(opened_hours_ago=10, dca_count=0, pnl=-25.0):
    return PositionState(
        is_open=True,
        direction=TradeDirection.LONG,
        avg_price=1.0,
        total_volume=500.0,
        total_margin_used=50.0,
        total_margin_percent=10.0,
        dca_count=dca_count,
        unrealized_pnl=pnl,
        opened_at=NOW - opened_hours_ago * HOUR,
    )


def rising_lows(n=6, base=0.94):
    return [Candle(i * 300_000, base + 0.01, base + 0.02, base + i * 0.001, base + 0.01, 100.0) for i in range(n)]


def flat_lows(n=6, base=0.94):
    return [Candle(i * 300_000, base + 0.01, base + 0.02, base, base + 0.01, 100.0) for i in range(n)]


def test_drawdown_percent_by_direction():
    assert calculate_drawdown_percent(TradeDirection.LONG, 1.0, 0.95) == pytest.approx(5.0)
    assert calculate_drawdown_percent(TradeDirection.SHORT, 1.0, 1.04) == pytest.approx(4.0)
    assert calculate_drawdown_percent(TradeDirection.LONG, 1.0, 1.02) == pytest.approx(-2.0)
    assert calculate_drawdown_percent(TradeDirection.LONG, 0.0, 1.0) == 0.0


def test_no_position():
    signal = analyze_dca_opportunity(PositionState(), Indicators(), Indicators(), Indicators(), [], 1.0, NOW)
    assert signal.should_dca is False
    assert signal.reason == "No open position"


def test_dca_on_exhausted_drawdown():
    signal = analyze_dca_opportunity(
        long_position(), EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.95, NOW, available_margin=450.0
    )
    assert signal.should_dca is True
    assert signal.dca_level == 1
    assert signal.confidence == 100
    assert signal.drawdown_percent == pytest.approx(5.0)
    assert signal.exhaustion_type is DCAExhaustionType.MULTI_SIGNAL
    assert signal.suggested_margin_percent == pytest.approx(15.0)
    assert len(signal.signals) == 5 and all(s.active for s in signal.signals)


def test_drawdown_alone_never_triggers():
    signal = analyze_dca_opportunity(
        long_position(), Indicators(rsi=50.0, macd=0.01), Indicators(), Indicators(), flat_lows(), 0.90, NOW,
        available_margin=450.0,
    )
    assert signal.should_dca is False
    assert "exhaustion confidence" in signal.reason
    assert signal.suggested_margin_percent == 0.0


def test_blocked_by_shallow_drawdown():
    signal = analyze_dca_opportunity(
        long_position(), EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.99, NOW, available_margin=450.0
    )
    assert signal.should_dca is False
    assert signal.reason.startswith("No DCA:")
    assert "drawdown" in signal.reason
    # conditions are still reported
    assert len(signal.signals) == 5


def test_blocked_by_spacing():
    signal = analyze_dca_opportunity(
        long_position(opened_hours_ago=1), EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.95, NOW,
        available_margin=450.0,
    )
    assert signal.should_dca is False
    assert "since last entry" in signal.reason


def test_single_condition_classified_by_type():
    signal = analyze_dca_opportunity(
        long_position(), Indicators(rsi=25.0, macd=0.01, bb_pos=0.1), Indicators(), Indicators(), flat_lows(), 0.95, NOW,
        available_margin=450.0,
    )
    assert signal.exhaustion_type is DCAExhaustionType.RSI_DIVERGENCE
    assert signal.confidence == 25


def test_adverse_trend_penalty():
    signal = analyze_dca_opportunity(
        long_position(), EXHAUSTED_15M, Indicators(trend=Trend.BEARISH), QUIET_5M, rising_lows(), 0.95, NOW,
        available_margin=450.0,
    )
    assert signal.confidence == 90
    assert any("1h trend" in w for w in signal.warnings)


def test_never_beyond_max_dca_count():
    signal = analyze_dca_opportunity(
        long_position(dca_count=3), EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.80, NOW,
        available_margin=450.0,
    )
    assert signal.should_dca is False
    assert signal.reason == "Maximum DCA count reached (3)"


def test_overdue_underwater_relaxes_thresholds():
    strict = analyze_dca_opportunity(
        long_position(opened_hours_ago=20), EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.975, NOW,
        available_margin=450.0,
    )
    relaxed = analyze_dca_opportunity(
        long_position(opened_hours_ago=50), EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.975, NOW,
        available_margin=450.0,
    )
    assert strict.should_dca is False
    assert relaxed.should_dca is True
    assert any("Overdue" in w for w in relaxed.warnings)


def test_midpoint_block():
    strategy = StrategyConfig()
    strategy.dca.allow_dca_after_midpoint = False
    pos = long_position()
    pos.timebox_progress = 60.0
    signal = analyze_dca_opportunity(
        pos, EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.95, NOW, strategy, available_margin=450.0
    )
    assert signal.should_dca is False
    assert "midpoint" in signal.reason


def test_equity_derived_from_margin_percent():
    signal = analyze_dca_opportunity(long_position(), EXHAUSTED_15M, Indicators(), QUIET_5M, rising_lows(), 0.95, NOW)
    assert signal.should_dca is True
    assert signal.suggested_margin_percent == pytest.approx(15.0)


def test_missing_indicators_leave_conditions_inactive():
    signal = analyze_dca_opportunity(long_position(), None, None, None, flat_lows(), 0.95, NOW, available_margin=450.0)
    by_name = {s.name: s for s in signal.signals}
    assert len(by_name) == 5
    assert not any(s.active for s in signal.signals)
    assert by_name["macd_convergence"].value == 0.0
    assert by_name["bb_middle"].value == 0.0
    assert signal.confidence == 0
    assert signal.exhaustion_type is DCAExhaustionType.NONE
    assert signal.should_dca is False
    assert "1h trend still against the position" not in signal.warnings


def test_volume_decline_judged_on_5m_alone():
    signal = analyze_dca_opportunity(long_position(), None, None, QUIET_5M, flat_lows(), 0.95, NOW, available_margin=450.0)
    active = [s.name for s in signal.signals if s.active]
    assert active == ["volume_decline"]
    assert signal.confidence == 20
    assert signal.exhaustion_type is DCAExhaustionType.VOLUME_DRY_UP
