"""Unit tests for position.sizing."""

import pytest
from decision_engine.core.config import PositionSizingConfig
from decision_engine.core.types import PositionState, TradeDirection
from decision_engine.position import calculate_dca_capacity, calculate_dca_size, calculate_entry_size


def test_entry_size_full_and_cautious():
    sizing = PositionSizingConfig()
    full = calculate_entry_size(80, 0.5, 1000.0, sizing)
    assert full.mode == "full"
    assert full.margin == pytest.approx(200.0)
    assert full.notional == pytest.approx(2000.0)
    assert full.volume == pytest.approx(4000.0)
    cautious = calculate_entry_size(50, 0.5, 1000.0, sizing)
    assert cautious.mode == "cautious"
    assert cautious.margin == pytest.approx(100.0)


def test_entry_size_below_minimum_confidence():
    assert calculate_entry_size(30, 0.5, 1000.0, PositionSizingConfig()) is None


def test_entry_size_rejects_bad_price():
    with pytest.raises(ValueError):
        calculate_entry_size(80, 0.0, 1000.0, PositionSizingConfig())


def test_dca_size_full_slice():
    size = calculate_dca_size(1, 50.0, 500.0, 450.0, PositionSizingConfig())
    assert size.margin == pytest.approx(75.0)
    assert size.margin_percent == pytest.approx(15.0)
    assert size.reason == "full slice"


def test_dca_size_scaled_per_level():
    size = calculate_dca_size(2, 50.0, 500.0, 450.0, PositionSizingConfig(), scale_factor=1.5)
    assert size.margin == pytest.approx(112.5)


def test_dca_size_capped_by_total_margin():
    size = calculate_dca_size(1, 380.0, 500.0, 120.0, PositionSizingConfig())
    assert size.margin == pytest.approx(20.0)
    assert size.reason == "capped by margin limits"


def test_dca_size_none_at_cap_or_beyond_max():
    sizing = PositionSizingConfig()
    assert calculate_dca_size(1, 400.0, 500.0, 100.0, sizing) is None
    assert calculate_dca_size(4, 50.0, 500.0, 450.0, sizing) is None
    assert calculate_dca_size(1, 50.0, 0.0, 0.0, sizing) is None


def test_dca_capacity():
    pos = PositionState(is_open=True, direction=TradeDirection.LONG, dca_count=1, total_margin_used=100.0)
    cap = calculate_dca_capacity(pos, 500.0, PositionSizingConfig())
    assert cap.remaining_dcas == 2
    assert cap.utilization_percent == pytest.approx(20.0)
    assert cap.headroom_margin == pytest.approx(300.0)
