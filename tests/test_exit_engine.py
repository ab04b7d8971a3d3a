"""Unit tests for exits (pressures and engine)."""

import pytest
from decision_engine.core.config import StrategyConfig, TimeboxConfig
from decision_engine.core.types import (
    EnrichmentBundle,
    ExitReason,
    ExitSignal,
    ExitUrgency,
    Indicators,
    KnifePhase,
    KnifeStatus,
    PositionState,
    PressureSource,
    ReversalDirection,
    ReversalPhase,
    ReversalSignal,
    TimePhase,
    TradeDirection,
    Trend,
    WhaleActivity,
    no_exit_signal,
)
from decision_engine.exits import (
    DEFAULT_PRESSURE_WEIGHTS,
    PRESSURE_REASONS,
    analyze_exit_conditions,
    calculate_exit_threshold,
    calculate_timebox_pressure,
    get_exit_status_summary,
    get_time_phase,
    is_anti_greed_triggered,
)
from decision_engine.exits.pressures import KNIFE_PHASE_FACTORS, REVERSAL_PHASE_FACTORS, whale_pressure

NOW = 1_700_000_000_000
HOUR = 3_600_000


def position(pnl, pnl_percent=5.0, hwm=None, opened_at=NOW, direction=TradeDirection.LONG):
    hwm = max(pnl, 0.0) if hwm is None else hwm
    drawdown = max(0.0, hwm - pnl)
    return PositionState(
        is_open=True,
        direction=direction,
        avg_price=0.50,
        total_volume=1000.0,
        total_margin_used=50.0,
        unrealized_pnl=pnl,
        unrealized_pnl_percent=pnl_percent,
        high_water_mark_pnl=hwm,
        drawdown_from_hwm=drawdown,
        drawdown_from_hwm_percent=drawdown / hwm * 100 if hwm > 0 else 0.0,
        opened_at=opened_at,
    )


HOT_15M = Indicators(rsi=76.0)
FLIPPED_1H = Indicators(trend=Trend.BEARISH, ema_alignment=Trend.BEARISH)


def test_weight_and_reason_tables_are_exhaustive():
    assert set(DEFAULT_PRESSURE_WEIGHTS) == set(PressureSource)
    assert set(PRESSURE_REASONS) == set(PressureSource)
    assert set(REVERSAL_PHASE_FACTORS) == set(ReversalPhase)
    assert set(KNIFE_PHASE_FACTORS) == set(KnifePhase)
    assert all(0 <= w <= 1 for w in DEFAULT_PRESSURE_WEIGHTS.values())


def test_no_position_returns_no_exit_signal():
    signal = analyze_exit_conditions(PositionState(), Indicators(), Indicators(), Indicators(), NOW)
    assert signal == no_exit_signal()
    assert signal.pressures == []
    assert signal.should_exit is False
    assert signal.suggested_exit_percent == 0


def test_profit_aware_threshold_escalation():
    strategy = StrategyConfig()
    assert calculate_exit_threshold(position(10.0, pnl_percent=5.0), strategy) == 60
    assert calculate_exit_threshold(position(60.0, pnl_percent=12.0), strategy) == 65
    assert calculate_exit_threshold(position(102.5, pnl_percent=20.5), strategy) == 70


def test_threshold_capped_by_active_knife():
    strategy = StrategyConfig()
    assert calculate_exit_threshold(position(102.5, pnl_percent=20.5), strategy, knife_override=True) == 50


def test_exit_at_twenty_percent_profit():
    signal = ExitSignal(
        urgency=ExitUrgency.SOON,
        reason=ExitReason.MOMENTUM_EXHAUSTION,
        explanation="",
        pressures=[],
        total_pressure=72.0,
        effective_threshold=calculate_exit_threshold(position(102.5, pnl_percent=20.5), StrategyConfig()),
        unrealized_pnl=102.5,
        min_profit_for_exit=0.5,
    )
    assert signal.effective_threshold == 70
    assert signal.should_exit is True
    assert signal.suggested_exit_percent in (75, 100)
    assert signal.confidence == 72


def test_strong_pressure_in_profit_exits():
    signal = analyze_exit_conditions(position(102.5, pnl_percent=20.5), HOT_15M, FLIPPED_1H, Indicators(), NOW)
    assert signal.total_pressure == pytest.approx(90.0)
    assert signal.effective_threshold == 70
    assert signal.should_exit is True
    assert signal.urgency is ExitUrgency.IMMEDIATE
    assert signal.suggested_exit_percent == 100
    assert signal.reason is ExitReason.TREND_REVERSAL


def test_never_exits_at_a_loss():
    signal = analyze_exit_conditions(position(-25.0, pnl_percent=-5.0), HOT_15M, FLIPPED_1H, Indicators(), NOW)
    assert signal.total_pressure >= 90
    assert signal.should_exit is False
    assert signal.confidence == 0
    assert signal.suggested_exit_percent == 0
    # underwater policy caps urgency
    assert signal.urgency is ExitUrgency.CONSIDER


def test_never_exits_below_minimum_profit():
    signal = analyze_exit_conditions(position(0.2, pnl_percent=0.04), HOT_15M, FLIPPED_1H, Indicators(), NOW)
    assert signal.total_pressure >= 90
    assert signal.should_exit is False


def test_underwater_timebox_weight_reduced():
    pos = position(-10.0, pnl_percent=-2.0, opened_at=NOW - 30 * HOUR)
    signal = analyze_exit_conditions(pos, Indicators(), Indicators(), Indicators(), NOW)
    timebox = next(p for p in signal.pressures if p.source is PressureSource.TIMEBOX)
    assert timebox.weight == pytest.approx(0.20 * 0.25)


def test_underwater_timebox_suppressed():
    strategy = StrategyConfig()
    strategy.underwater_policy.suppress_timebox_pressure_when_underwater = True
    pos = position(-10.0, pnl_percent=-2.0, opened_at=NOW - 30 * HOUR)
    signal = analyze_exit_conditions(pos, Indicators(), Indicators(), Indicators(), NOW, strategy)
    assert all(p.source is not PressureSource.TIMEBOX for p in signal.pressures)


def test_overdue_profitable_soft_floor():
    pos = position(20.0, pnl_percent=4.0, opened_at=NOW - 49 * HOUR)
    strategy = StrategyConfig()
    strategy.timebox.steps = []
    signal = analyze_exit_conditions(pos, Indicators(), Indicators(), Indicators(), NOW, strategy)
    assert signal.time_phase is TimePhase.OVERDUE
    assert signal.total_pressure == pytest.approx(60.0)
    assert signal.reason is ExitReason.TIMEBOX_EXPIRED
    assert signal.should_exit is True


def test_anti_greed_takes_precedence():
    pos = position(10.0, pnl_percent=2.0, hwm=20.0)
    assert is_anti_greed_triggered(pos, StrategyConfig().anti_greed)
    signal = analyze_exit_conditions(pos, HOT_15M, FLIPPED_1H, Indicators(), NOW)
    assert signal.reason is ExitReason.ANTI_GREED
    assert any(p.source is PressureSource.ANTI_GREED and p.value == 90 for p in signal.pressures)


def test_anti_greed_needs_meaningful_peak():
    pos = position(1.0, pnl_percent=0.2, hwm=3.0)
    assert not is_anti_greed_triggered(pos, StrategyConfig().anti_greed)


def test_opposing_reversal_halves_macd_weight():
    reversal = ReversalSignal(phase=ReversalPhase.CONFIRMATION, direction=ReversalDirection.BEARISH, confidence=60)
    ind_1h = Indicators(macd=-0.001, histogram=-0.0005)
    signal = analyze_exit_conditions(
        position(30.0), Indicators(), ind_1h, Indicators(), NOW, enrichment=EnrichmentBundle(reversal=reversal)
    )
    by_source = {p.source: p for p in signal.pressures}
    assert by_source[PressureSource.MACD_REVERSAL].weight == pytest.approx(0.09)
    assert by_source[PressureSource.REVERSAL].value == pytest.approx(60.0)
    assert signal.reason is ExitReason.REVERSAL_DETECTED


def test_aligned_reversal_ignored():
    reversal = ReversalSignal(phase=ReversalPhase.CONFIRMATION, direction=ReversalDirection.BULLISH, confidence=80)
    signal = analyze_exit_conditions(
        position(30.0), Indicators(), Indicators(), Indicators(), NOW, enrichment=EnrichmentBundle(reversal=reversal)
    )
    assert all(p.source is not PressureSource.REVERSAL for p in signal.pressures)


def test_knife_override_and_reason():
    knife = KnifeStatus(is_knife=True, direction="falling", phase=KnifePhase.IMPULSE, knife_score=80.0)
    signal = analyze_exit_conditions(
        position(102.5, pnl_percent=20.5), Indicators(), Indicators(), Indicators(), NOW,
        enrichment=EnrichmentBundle(knife=knife),
    )
    assert signal.effective_threshold == 50
    assert signal.reason is ExitReason.KNIFE_DETECTED
    assert signal.should_exit is True


def test_whale_pressure():
    assert whale_pressure(WhaleActivity(recent_large_buys=1, recent_large_sells=3), TradeDirection.LONG, 0.12) is None
    p = whale_pressure(WhaleActivity(recent_large_buys=0, recent_large_sells=4), TradeDirection.LONG, 0.12)
    assert p.value == pytest.approx(70.0)
    book = whale_pressure(WhaleActivity(recent_large_sells=4, imbalance=-0.5), TradeDirection.LONG, 0.12)
    assert book.value == pytest.approx(80.0)
    assert whale_pressure(WhaleActivity(recent_large_sells=9), TradeDirection.SHORT, 0.12) is None
    capped = whale_pressure(WhaleActivity(recent_large_sells=10, imbalance=-0.5), TradeDirection.LONG, 0.12)
    assert capped.value == 90.0


def test_trend_exhaustion_on_4h():
    ind_4h = Indicators(rsi=75.0, histogram=-0.001, bb_pos=0.95, ema20_slope=0.01)
    signal = analyze_exit_conditions(
        position(30.0), Indicators(), Indicators(), Indicators(), NOW,
        enrichment=EnrichmentBundle(indicators_4h=ind_4h),
    )
    exhaustion = next(p for p in signal.pressures if p.source is PressureSource.TREND_EXHAUSTION)
    assert exhaustion.value == 95.0


def test_timebox_pressure_interpolation():
    timebox = TimeboxConfig()
    assert calculate_timebox_pressure(0, timebox) == 0
    assert calculate_timebox_pressure(6, timebox) == pytest.approx(5.0)
    assert calculate_timebox_pressure(48, timebox) == pytest.approx(80.0)
    assert calculate_timebox_pressure(100, timebox) == pytest.approx(100.0)
    # a longer effective box stretches the steps
    assert calculate_timebox_pressure(24, timebox, effective_max_hours=96) == pytest.approx(10.0)


def test_time_phase():
    assert get_time_phase(0, 48) is TimePhase.NORMAL
    assert get_time_phase(12, 48) is TimePhase.MONITOR
    assert get_time_phase(30, 48) is TimePhase.ESCALATING
    assert get_time_phase(47, 48) is TimePhase.URGENT
    assert get_time_phase(48, 48) is TimePhase.OVERDUE


def test_exit_status_summary():
    assert get_exit_status_summary(no_exit_signal()).label == "Holding"
    signal = analyze_exit_conditions(position(102.5, pnl_percent=20.5), HOT_15M, FLIPPED_1H, Indicators(), NOW)
    status = get_exit_status_summary(signal)
    assert status.label == "EXIT NOW"
    assert status.color == "red"


def test_flat_book_signals_do_not_share_pressures():
    first = no_exit_signal()
    first.pressures.append(object())
    assert no_exit_signal().pressures == []
    assert analyze_exit_conditions(PositionState(), None, None, None, NOW).pressures == []


@pytest.mark.parametrize("pnl", [-100.0, -0.01, 0.0, 0.5 - 1e-9])
@pytest.mark.parametrize("total_pressure", [0.0, 60.0, 95.0, 100.0])
def test_no_exit_without_minimum_profit(pnl, total_pressure):
    signal = ExitSignal(
        urgency=ExitUrgency.IMMEDIATE,
        reason=ExitReason.MOMENTUM_EXHAUSTION,
        explanation="",
        pressures=[],
        total_pressure=total_pressure,
        effective_threshold=60.0,
        unrealized_pnl=pnl,
        min_profit_for_exit=0.5,
    )
    assert signal.should_exit is False
    assert signal.confidence == 0
    assert signal.suggested_exit_percent == 0
    data = signal.to_dict()
    assert data["should_exit"] is False
    assert data["suggested_exit_percent"] == 0


def test_hundred_loss_under_heavy_pressure_holds():
    signal = ExitSignal(
        urgency=ExitUrgency.IMMEDIATE,
        reason=ExitReason.TREND_REVERSAL,
        explanation="",
        pressures=[],
        total_pressure=95.0,
        effective_threshold=60.0,
        unrealized_pnl=-100.0,
        min_profit_for_exit=0.5,
    )
    assert signal.should_exit is False
    assert signal.confidence == 0
    assert signal.suggested_exit_percent == 0


def test_missing_indicators_add_no_pressure():
    signal = analyze_exit_conditions(position(30.0, pnl_percent=6.0), None, None, None, NOW)
    assert signal.pressures == []
    assert signal.total_pressure == 0.0
    assert signal.should_exit is False


def test_volume_dry_up_uses_available_timeframe():
    only_5m = analyze_exit_conditions(position(30.0), None, None, Indicators(vol_ratio=0.4), NOW)
    assert [p.source for p in only_5m.pressures] == [PressureSource.VOLUME_DRY_UP]
    assert only_5m.pressures[0].value == 80.0
    # 15m ratio 1.2 lifts the average to 0.8
    both = analyze_exit_conditions(position(30.0), Indicators(vol_ratio=1.2, rsi=60.0, ema20_slope=0.5),
                                   None, Indicators(vol_ratio=0.4), NOW)
    assert all(p.source is not PressureSource.VOLUME_DRY_UP for p in both.pressures)
