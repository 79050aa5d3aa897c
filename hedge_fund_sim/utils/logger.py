"""
로깅 모듈.

[ 역할 ]
    hedge_fund_sim 상위 로거에 파일 + 콘솔 핸들러를 한 번만 설치한다.
    각 모듈은 logging.getLogger("hedge_fund_sim.<영역>")을 쓰므로
    여기서 설치한 핸들러로 전달된다.

[ 영역 ]
    hedge_fund_sim.backtest  - 일별 체결, 시작/완료 요약
    hedge_fund_sim.engine    - 전략 합의, 전략 실행 실패
    hedge_fund_sim.risk      - 리스크 한도 위반 경고
    hedge_fund_sim.strategies - 시그널 판단 사유
    hedge_fund_sim.ledger    - lot 개설/청산

[ 로그 파일 위치 ]
    {log_dir}/{name}_{YYYYMMDD}.log (예: logs/hedge_fund_sim_20240601.log)

[ 호출하는 곳 ]
    - run_backtest.py에서 setup_from_config() 호출
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Mapping

ROOT_LOGGER = "hedge_fund_sim"

# StrategyEngine이 스레드 풀에서 전략을 돌리므로 스레드 이름도 남긴다
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level(value: str) -> int:
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ValueError(f"알 수 없는 로그 레벨: {value!r}")
    return level


def setup_logger(
    name: str = ROOT_LOGGER,
    level: str = "INFO",
    log_dir: str | None = "logs",
    console: bool = True,
    area_levels: Mapping[str, str] | None = None,
) -> logging.Logger:
    """로거 설정. log_dir이 None이면 파일 기록 안 함.

    Args:
        area_levels: 영역별 레벨 (예: {"backtest": "DEBUG"}).
            "<name>.<영역>" 로거에 적용된다.

    Raises:
        ValueError: 알 수 없는 레벨 이름
    """
    logger = logging.getLogger(name)
    logger.setLevel(_level(level))
    for area, area_level in (area_levels or {}).items():
        logging.getLogger(f"{name}.{area}").setLevel(_level(area_level))

    # 재호출 시 핸들러 중복 방지
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        today = datetime.now().strftime("%Y%m%d")
        file_handler = logging.FileHandler(log_path / f"{name}_{today}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def setup_from_config(config, console: bool = True) -> logging.Logger:
    """Config의 log_level / log_dir / log_levels로 상위 로거 설정."""
    return setup_logger(
        ROOT_LOGGER,
        level=config.log_level,
        log_dir=config.log_dir,
        console=console,
        area_levels=config.log_levels,
    )
