import logging
from pathlib import Path

import pytest

from hedge_fund_sim.utils.config import Config, RiskLimits
from hedge_fund_sim.utils.logger import setup_logger

ROOT_CONFIG = Path(__file__).resolve().parent.parent / "config.yaml"


def test_defaults():
    config = Config()
    assert config.strategy.name == "ma_cross"
    assert config.backtest.initial_capital == 100_000
    assert config.backtest.benchmark_ticker is None
    assert config.risk == RiskLimits()
    assert config.risk.max_position_fraction == 0.10


def test_repository_config_loads():
    config = Config.from_yaml(ROOT_CONFIG)
    assert config.strategy.preset == "standard"
    assert config.strategy.tickers == ["AAPL", "MSFT"]
    assert config.backtest.start_date == "2024-01-01"


def test_from_yaml_flat_strategy_params_and_unknown_keys(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "strategy:\n"
        "  name: ma_cross\n"
        "  tickers: [AAPL]\n"
        "  fast_period: 15\n"
        "backtest:\n"
        "  start_date: 2023-01-03\n"
        "  end_date: 2023-06-30\n"
        "  commission: 1.5\n"
        "  not_a_field: 1\n"
        "risk:\n"
        "  max_leverage: 1.5\n"
        "  unknown_limit: 3\n"
        "log_level: DEBUG\n",
        encoding="utf-8",
    )

    config = Config.from_yaml(path)

    assert config.strategy.params == {"fast_period": 15}
    # YAML 날짜는 문자열로 통일
    assert config.backtest.start_date == "2023-01-03"
    assert config.backtest.end_date == "2023-06-30"
    assert config.backtest.commission == 1.5
    assert config.risk.max_leverage == 1.5
    assert config.risk.max_position_fraction == 0.10
    assert config.log_level == "DEBUG"


def test_empty_yaml_uses_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert Config.from_yaml(path) == Config()


def test_save_yaml_round_trip(tmp_path):
    config = Config()
    config.strategy.preset = "aggressive"
    config.strategy.params = {"min_volume": 0}
    config.backtest.benchmark_ticker = "SPY"

    path = tmp_path / "nested" / "saved.yaml"
    config.save_yaml(path)

    assert Config.from_yaml(path) == config


def test_from_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"backtest": {"initial_capital": 5000}, "log_dir": "out"}', encoding="utf-8")

    config = Config.from_json(path)

    assert config.backtest.initial_capital == 5000
    assert config.log_dir == "out"


def test_setup_logger_writes_file(tmp_path):
    logger = setup_logger("hedge_fund_sim_test", level="DEBUG", log_dir=str(tmp_path), console=False)
    try:
        logging.getLogger("hedge_fund_sim_test.child").info("체결 기록")
        for handler in logger.handlers:
            handler.flush()

        log_files = list(tmp_path.glob("hedge_fund_sim_test_*.log"))
        assert len(log_files) == 1
        assert "체결 기록" in log_files[0].read_text(encoding="utf-8")
        # 두 번 호출해도 핸들러가 늘지 않음
        assert setup_logger("hedge_fund_sim_test", log_dir=str(tmp_path)) is logger
        assert len(logger.handlers) == 1
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


def test_area_levels_and_bad_level(tmp_path):
    logger = setup_logger(
        "hedge_fund_sim_area", level="WARNING", log_dir=None, console=False,
        area_levels={"backtest": "DEBUG"},
    )
    try:
        assert logger.handlers == []
        assert logging.getLogger("hedge_fund_sim_area.backtest").level == logging.DEBUG
        assert logger.level == logging.WARNING
        with pytest.raises(ValueError):
            setup_logger("hedge_fund_sim_area", level="LOUD", log_dir=None, console=False)
    finally:
        logging.getLogger("hedge_fund_sim_area.backtest").setLevel(logging.NOTSET)


def test_log_levels_section(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("log_levels:\n  backtest: DEBUG\n  risk: ERROR\n", encoding="utf-8")

    config = Config.from_yaml(path)

    assert config.log_levels == {"backtest": "DEBUG", "risk": "ERROR"}
    assert Config().log_levels == {}
