"""
설정 관리 모듈.

[ 역할 ]
    config.yaml (또는 .json) 파일을 파싱하여 Config 객체로 변환.
    전략 파라미터, 백테스트 파라미터, 리스크 한도, 로깅 설정 등을 통합 관리.

[ 설정 파일 구조 (config.yaml) ]
    strategy:         → StrategyConfig (전략 이름/프리셋/종목/파라미터)
    backtest:         → BacktestConfig (기간, 초기 자본, 수수료, 슬리피지, 벤치마크)
    risk:             → RiskLimits (포지션/레버리지/현금 보유 한도 등)
    log_level:        → "INFO" / "DEBUG"
    log_dir:          → 로그 디렉토리 경로
    log_levels:       → 영역별 로그 레벨 (예: {backtest: DEBUG})

[ 호출하는 곳 ]
    - run_backtest.py에서 Config.from_yaml()로 로드
    - 전략 생성 시 config.strategy의 값을 params로 전달
    - BacktestEngine / RiskManager 생성 시 config.backtest, config.risk 사용
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class StrategyConfig:
    """전략 설정. config.yaml의 strategy 섹션에 대응.

    preset이 지정되면 전략 클래스의 PRESETS 값을 먼저 적용하고
    params로 덮어쓴다.
    """
    name: str = "ma_cross"
    preset: Optional[str] = None
    tickers: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class BacktestConfig:
    """백테스트 설정. config.yaml의 backtest 섹션에 대응."""
    start_date: str = "2024-01-01"
    end_date: str = "2024-12-31"
    initial_capital: float = 100_000
    commission: float = 5.0               # 거래당 고정 수수료 ($)
    slippage: float = 0.001               # 0.1%
    benchmark_ticker: Optional[str] = None
    history_window: int = 200             # 전략에 넘기는 과거 봉 개수 (최소 min_history)
    strategy_name: str = ""


@dataclass
class RiskLimits:
    """리스크 한도. config.yaml의 risk 섹션에 대응. 펀드 공통 기본값."""
    max_position_fraction: float = 0.10
    max_leverage: float = 2.0
    stop_loss_fraction: float = 0.05
    min_cash_reserve_fraction: float = 0.05
    max_sector_exposure: float = 0.30
    risk_free_rate: float = 0.02
    kelly_average_win: float = 0.10       # 켈리 계산용 가정 평균 수익률 (데이터 기반 아님)
    volatility_window: int = 30           # 변동성 계산용 최근 일수


@dataclass
class Config:
    """전체 설정. from_yaml() 또는 from_json()으로 파일에서 로드."""
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    risk: RiskLimits = field(default_factory=RiskLimits)
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_levels: dict[str, str] = field(default_factory=dict)   # 영역 → 레벨

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """YAML 파일에서 설정 로드."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls._from_dict(data or {})

    @classmethod
    def from_json(cls, path: str | Path) -> "Config":
        """JSON 파일에서 설정 로드."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """딕셔너리에서 Config 생성. 각 섹션에서 모르는 키는 무시한다."""
        strategy_data = data.get("strategy") or {}
        backtest_data = data.get("backtest") or {}
        risk_data = data.get("risk") or {}

        # strategy 섹션 파싱: name, preset, tickers는 직접 필드, 나머지는 모두 params로
        if "params" in strategy_data:
            strategy_params = strategy_data["params"] or {}
        else:
            strategy_params = {
                k: v for k, v in strategy_data.items()
                if k not in ("name", "preset", "tickers")
            }
        strategy = StrategyConfig(
            name=strategy_data.get("name", "ma_cross"),
            preset=strategy_data.get("preset"),
            tickers=list(strategy_data.get("tickers", [])),
            params=strategy_params,
        )
        backtest = BacktestConfig(**{
            k: v for k, v in backtest_data.items()
            if k in BacktestConfig.__dataclass_fields__
        })
        # YAML은 날짜를 date 객체로 읽으므로 문자열로 통일
        backtest.start_date = str(backtest.start_date)
        backtest.end_date = str(backtest.end_date)
        risk = RiskLimits(**{
            k: v for k, v in risk_data.items()
            if k in RiskLimits.__dataclass_fields__
        })

        return cls(
            strategy=strategy,
            backtest=backtest,
            risk=risk,
            log_level=data.get("log_level", "INFO"),
            log_dir=data.get("log_dir", "logs"),
            log_levels=dict(data.get("log_levels") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """딕셔너리로 변환."""
        return asdict(self)

    def save_yaml(self, path: str | Path) -> None:
        """YAML 파일로 저장."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, allow_unicode=True, default_flow_style=False)
