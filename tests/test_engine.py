"""Unit tests for the decision engine tick."""

import json

import pytest
from decision_engine.core.types import Indicators, PositionPhase, TradeDirection
from decision_engine.engine import DecisionEngine, EngineInput
from decision_engine.position import PaperPosition

NOW = 1_700_000_000_000
HOUR = 3_600_000


def paper_long(opened_at=NOW - 2 * HOUR):
    return PaperPosition(
        side=TradeDirection.LONG, avg_entry_price=0.50, volume=1000.0, margin_used=50.0, opened_at=opened_at
    )


def tick(engine, price, raw=None, now=NOW, **kwargs):
    return engine.tick(EngineInput(raw_position=raw, current_price=price, now_ms=now, available_margin=450.0, **kwargs))


def test_high_water_mark_carried_between_ticks():
    engine = DecisionEngine()
    raw = paper_long()
    first = tick(engine, 0.56, raw)
    assert first.position.high_water_mark_pnl == pytest.approx(60.0)
    second = tick(engine, 0.53, raw, now=NOW + 60_000)
    assert second.position.high_water_mark_pnl == pytest.approx(60.0)
    assert second.position.drawdown_from_hwm_percent == pytest.approx(50.0)
    assert engine.position.high_water_mark_pnl == pytest.approx(60.0)
    assert any(a.startswith("Anti-greed") for a in second.summary.alerts)


def test_no_position_resets_carried_state():
    engine = DecisionEngine()
    tick(engine, 0.56, paper_long())
    flat = tick(engine, 0.56)
    assert flat.position.is_open is False
    assert flat.summary.headline == "No open position"
    assert flat.summary.status == "gray"
    assert flat.exit.should_exit is False
    assert flat.dca.reason == "No open position"
    fresh = tick(engine, 0.52, paper_long(opened_at=NOW - HOUR))
    assert fresh.position.high_water_mark_pnl == pytest.approx(20.0)


def test_reset():
    engine = DecisionEngine()
    tick(engine, 0.56, paper_long())
    engine.reset()
    assert engine.position is None


def test_liquidation_alert():
    out = tick(DecisionEngine(), 0.472, paper_long())
    assert out.position.liquidation_distance_percent < 5
    assert any(a.startswith("Liquidation within") for a in out.summary.alerts)
    assert out.health.liquidation_status == "danger"


def test_loss_never_recommends_exit():
    ind = {"15m": Indicators(rsi=20.0), "1h": Indicators(macd=-0.01, histogram=-0.005)}
    out = tick(DecisionEngine(), 0.48, paper_long(opened_at=NOW - 50 * HOUR), indicators=ind)
    assert out.position.unrealized_pnl < 0
    assert out.exit.should_exit is False
    assert out.exit.suggested_exit_percent == 0


def test_regime_applied_when_higher_timeframes_present():
    ind = {"4h": Indicators(adx=40.0), "1h": Indicators(bb_width=2.5)}
    out = tick(DecisionEngine(), 0.51, paper_long(), indicators=ind)
    assert out.regime is not None
    assert out.regime.adjusted_timebox_max_hours == 72.0
    assert out.position.hours_remaining == pytest.approx(70.0)


def test_timeframes_ordered_shortest_first():
    assert DecisionEngine(timeframes=["15m", "5m"]).timeframes == ["5m", "15m"]


def test_output_serializes_to_json():
    out = tick(DecisionEngine(), 0.55, paper_long())
    data = out.to_dict()
    assert set(data) == {"position", "reversal", "exit", "dca", "summary", "regime", "health"}
    assert data["exit"]["should_exit"] is out.exit.should_exit
    assert data["position"]["direction"] == "long"
    json.dumps(data, default=str)


def test_holding_phase_in_profit():
    out = tick(DecisionEngine(), 0.51, paper_long())
    assert out.exit.should_exit is False
    assert out.position.phase is PositionPhase.ENTRY
    assert out.summary.headline.startswith("Holding long")


def test_exit_watch_on_moderate_pressure():
    ind = {"1h": Indicators(macd=0.001, histogram=-0.0005)}
    out = tick(DecisionEngine(), 0.51, paper_long(opened_at=NOW), indicators=ind)
    assert out.exit.total_pressure == pytest.approx(50.0)
    assert out.exit.should_exit is False
    assert out.position.phase is PositionPhase.EXIT_WATCH


@pytest.mark.parametrize("price", [0.501, 0.505, 0.51, 0.55])
def test_fresh_position_without_indicators_holds(price):
    out = tick(DecisionEngine(), price, paper_long(opened_at=NOW))
    assert out.position.unrealized_pnl > 0
    assert out.exit.pressures == []
    assert out.exit.total_pressure == 0.0
    assert out.exit.should_exit is False
    assert out.exit.suggested_exit_percent == 0


def test_dca_conditions_inactive_without_indicators():
    out = tick(DecisionEngine(), 0.55, paper_long())
    by_name = {s.name: s for s in out.dca.signals}
    assert by_name["macd_convergence"].active is False
    assert by_name["bb_middle"].active is False
    assert out.dca.confidence == 0
    assert out.dca.should_dca is False
