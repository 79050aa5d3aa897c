"""
매매 전략 추상 클래스 정의.

[ 역할 ]
    매매 로직의 인터페이스를 정의.
    가격 이력과 현재 보유 수량을 받아 매수/매도/홀드 시그널(TradeSignal)을 생성.

[ 구현체 ]
    - strategies/ma_cross_strategy.py::MACrossStrategy (이동평균 교차 전략)

[ 호출하는 곳 ]
    - engine/strategy_engine.py::StrategyEngine.execute_strategy()
    - backtest/engine.py::BacktestEngine._simulate_day()

[ 데이터 흐름 ]
    price_history(OHLCV DataFrame) + current_position → analyze() → TradeSignal
    should_execute()가 True일 때만 주문 크기 계산 대상이 된다.

[ 공통 파라미터 ]
    min_confidence:        이 값 미만의 신뢰도는 실행하지 않음 (HOLD 취급)
    max_position_fraction: 자본 대비 최대 포지션 비율
    is_active:             StrategyEngine.run_all() 대상 여부
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import pandas as pd


class SignalAction(Enum):
    """전략이 반환하는 시그널 종류."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class TradeSignal:
    """analyze()의 반환값. 한 번 반환되면 변경하지 않는다."""
    action: SignalAction
    confidence: float = 0.0
    suggested_position_fraction: Optional[float] = None   # 자본(매도 시 보유량) 대비 비율
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    rationale: str = ""
    indicator_snapshot: dict[str, float] = field(default_factory=dict)

    @classmethod
    def hold(cls, rationale: str = "", **indicators: float) -> "TradeSignal":
        return cls(action=SignalAction.HOLD, rationale=rationale, indicator_snapshot=indicators)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "confidence": round(self.confidence, 4),
            "suggested_position_fraction": self.suggested_position_fraction,
            "stop_loss": round(self.stop_loss, 4) if self.stop_loss is not None else None,
            "take_profit": round(self.take_profit, 4) if self.take_profit is not None else None,
            "rationale": self.rationale,
            "indicator_snapshot": dict(self.indicator_snapshot),
        }


class TradingStrategy(ABC):
    """매매 전략 추상 클래스.

    새 전략을 만들려면 이 클래스를 상속받아 아래를 구현하면 된다:
    - analyze(): 핵심 시그널 생성
    - min_history: 분석에 필요한 최소 봉 개수
    - validate_params(): 전략별 파라미터 검증

    전략 인스턴스는 분석 중 상태를 변경하지 않는다. 여러 스레드에서
    동시에 analyze()가 호출될 수 있다.
    """

    strategy_type: str = "base"

    def __init__(self, name: str, params: dict[str, Any] | None = None):
        self.name = name
        self.params = params or {}  # config.yaml에서 로드된 전략 파라미터
        self._validate_base_params()
        self.validate_params()

    @abstractmethod
    def analyze(
        self,
        ticker: str,
        price_history: pd.DataFrame,
        current_position: int = 0,
    ) -> TradeSignal:
        """매매 시그널 생성.

        Args:
            ticker: 종목 코드
            price_history: OHLCV DataFrame (오래된 순, 당일 포함)
            current_position: 현재 보유 수량

        Raises:
            InsufficientData: price_history가 min_history보다 짧을 때
        """
        ...

    @property
    @abstractmethod
    def min_history(self) -> int:
        """분석에 필요한 최소 봉 개수."""
        ...

    @abstractmethod
    def validate_params(self) -> None:
        """전략별 파라미터 검증. 잘못된 값이면 ValueError."""
        ...

    @property
    def description(self) -> str:
        return self.name

    @property
    def min_confidence(self) -> float:
        return float(self.params.get("min_confidence", 0.6))

    @property
    def max_position_fraction(self) -> float:
        return float(self.params.get("max_position_fraction", 0.3))

    @property
    def is_active(self) -> bool:
        return bool(self.params.get("is_active", True))

    def should_execute(self, signal: TradeSignal) -> bool:
        """신뢰도가 min_confidence 이상이고 HOLD가 아니면 실행 대상."""
        return signal.action != SignalAction.HOLD and signal.confidence >= self.min_confidence

    def calculate_position_size(
        self,
        signal: TradeSignal,
        available_capital: float,
        current_price: float,
    ) -> int:
        """전략 자체 기준의 매수 수량 (리스크 매니저를 거치지 않는 단순 계산)."""
        if current_price <= 0:
            return 0
        max_capital = available_capital * self.max_position_fraction
        suggested = signal.suggested_position_fraction or self.max_position_fraction
        capital_to_use = min(max_capital, available_capital * suggested)
        return max(0, int(capital_to_use // current_price))

    def _validate_base_params(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Strategy name is required")
        if not 0 < self.max_position_fraction <= 1:
            raise ValueError("max_position_fraction must be between 0 and 1")
        if not 0 <= self.min_confidence <= 1:
            raise ValueError("min_confidence must be between 0 and 1")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, params={self.params!r})"
