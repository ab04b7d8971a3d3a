"""Unit tests for core.config."""

import pytest
from decision_engine.core.config import (
    ConfigError,
    StrategyConfig,
    load_config,
    strategy_from_dict,
    validate_strategy,
)
from decision_engine.core.types import ExitUrgency

ENV_KEYS = (
    "SYMBOL",
    "LOG_LEVEL",
    "LEVERAGE",
    "MAX_DCA_COUNT",
    "EXIT_PRESSURE_THRESHOLD",
    "MIN_PROFIT_FOR_EXIT",
    "TIMEBOX_MAX_HOURS",
    "UNDERWATER_POLICY_ENABLED",
)

YAML = """
symbol: xrpusd
timeframes: ["5m", "1h"]
logging:
  level: DEBUG
strategy:
  position_sizing:
    max_dca_count: 2
    unknown_key: ignored
  timebox:
    max_hours: 36
    steps:
      - {hours: 0, pressure: 0}
      - {hours: 36, pressure: 90}
  underwater_policy:
    max_urgency_when_underwater: monitor
    overdue_dca:
      confidence_adjustment: -5
  dca:
    exhaustion_thresholds:
      rsi_oversold: 25
      min_hours_between_by_level: {"1": 1, "2": 3}
  reversal:
    bearish_divergence_rsi_band: [55, 85]
"""


@pytest.fixture
def clean_env(monkeypatch):
    # set then delete so values loaded from .env are undone after the test
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


def test_defaults_are_valid():
    assert validate_strategy(StrategyConfig()) == []


def test_load_config_from_yaml(tmp_path, clean_env):
    path = tmp_path / "config.yaml"
    path.write_text(YAML, encoding="utf-8")
    config = load_config(path, tmp_path)
    assert config.symbol == "XRPUSD"
    assert config.timeframes == ["5m", "1h"]
    assert config.log_level == "DEBUG"
    strategy = config.strategy
    assert strategy.position_sizing.max_dca_count == 2
    assert strategy.timebox.max_hours == 36
    assert [s.pressure for s in strategy.timebox.steps] == [0, 90]
    assert strategy.underwater_policy.max_urgency_when_underwater is ExitUrgency.MONITOR
    assert strategy.underwater_policy.overdue_dca.confidence_adjustment == -5
    assert strategy.dca.exhaustion_thresholds.rsi_oversold == 25
    assert strategy.dca.exhaustion_thresholds.min_hours_between_by_level == {1: 1.0, 2: 3.0}
    assert strategy.reversal.bearish_divergence_rsi_band == (55.0, 85.0)


def test_missing_file_uses_defaults(tmp_path, clean_env):
    config = load_config(tmp_path / "absent.yaml", tmp_path)
    assert config.symbol == "XRPEUR"
    assert config.strategy.exit.exit_pressure_threshold == 60


def test_env_overrides(tmp_path, clean_env):
    clean_env.setenv("LEVERAGE", "5")
    clean_env.setenv("EXIT_PRESSURE_THRESHOLD", "70")
    clean_env.setenv("UNDERWATER_POLICY_ENABLED", "false")
    clean_env.setenv("MAX_DCA_COUNT", "not-a-number")
    config = load_config(tmp_path / "absent.yaml", tmp_path)
    assert config.strategy.position_sizing.leverage == 5
    assert config.strategy.exit.exit_pressure_threshold == 70
    assert config.strategy.underwater_policy.enabled is False
    assert config.strategy.position_sizing.max_dca_count == 3


def test_dotenv_file_loaded(tmp_path, clean_env):
    (tmp_path / ".env").write_text("SYMBOL=ethusd\n", encoding="utf-8")
    config = load_config(tmp_path / "absent.yaml", tmp_path)
    assert config.symbol == "ETHUSD"


def test_invalid_strategy_raises(tmp_path, clean_env):
    path = tmp_path / "config.yaml"
    path.write_text("strategy:\n  exit:\n    exit_pressure_threshold: 150\n", encoding="utf-8")
    with pytest.raises(ConfigError) as exc:
        load_config(path, tmp_path)
    assert "exit_pressure_threshold" in str(exc.value)


def test_unordered_steps_rejected():
    strategy = strategy_from_dict({"timebox": {"steps": [{"hours": 24, "pressure": 20}, {"hours": 12, "pressure": 10}]}})
    assert "timebox.steps must be ordered by hours" in validate_strategy(strategy)
