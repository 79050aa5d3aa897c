"""
예외 클래스 정의.

[ 역할 ]
    시스템 전체에서 사용하는 오류 타입을 한 곳에 모아 둔다.
    호출하는 쪽은 타입만 보고 복구(건너뛰기/거부/중단) 여부를 결정한다.

[ 분류 ]
    InsufficientData          → 지표/전략 계산에 필요한 데이터 부족. 건너뛰면 됨.
    InvalidQuantity/Price     → 원장(ledger) 입력값 오류. 해당 연산만 거부.
    InsufficientInventory     → 보유 수량보다 많이 매도. 부분 체결 없이 거부.
    FundNotFound/TickerNotFound → 외부 조회 실패. 기본값으로 대체하지 않고 전파.
    StrategyEvaluationFailure → 전략 평가 실패. 오케스트레이터가 결과로 기록.
    BacktestError             → 백테스트 실행 자체가 불가능 (문제 파라미터 포함).
    LedgerIntegrityError      → 수량 음수 등 데이터 무결성 위반. 버그이므로 잡지 않는다.

[ 참고 ]
    RiskLimitViolation은 예외가 아니라 risk/manager.py의 데이터 레코드다.
"""


class HedgeFundSimError(Exception):
    """hedge_fund_sim 최상위 예외."""


class InsufficientData(HedgeFundSimError, ValueError):
    """지표나 전략이 요구하는 길이보다 데이터가 짧다."""

    def __init__(self, required: int, available: int, what: str = "data points"):
        self.required = required
        self.available = available
        super().__init__(f"Not enough {what}. Need {required}, have {available}")


class InvalidQuantity(HedgeFundSimError, ValueError):
    """수량이 양의 정수가 아니다."""


class InvalidPrice(HedgeFundSimError, ValueError):
    """가격이 양수가 아니다."""


class InsufficientInventory(HedgeFundSimError, ValueError):
    """매도 수량이 보유 가능 수량을 초과한다."""

    def __init__(self, fund_id, ticker: str, requested: int, available: int):
        self.fund_id = fund_id
        self.ticker = ticker
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient shares of {ticker} in fund {fund_id}: "
            f"requested {requested}, available {available}"
        )


class FundNotFound(HedgeFundSimError, LookupError):
    """펀드 조회 실패."""

    def __init__(self, fund_id):
        self.fund_id = fund_id
        super().__init__(f"Fund {fund_id} not found")


class TickerNotFound(HedgeFundSimError, LookupError):
    """종목 데이터 조회 실패."""

    def __init__(self, ticker: str):
        self.ticker = ticker
        super().__init__(f"Ticker {ticker} not found")


class StrategyEvaluationFailure(HedgeFundSimError):
    """개별 전략 평가 실패. StrategyEngine이 결과 목록에 기록한다."""

    def __init__(self, strategy_name: str, cause: BaseException):
        self.strategy_name = strategy_name
        self.cause = cause
        super().__init__(f"{strategy_name}: {cause}")


class BacktestError(HedgeFundSimError):
    """백테스트 실행 불가. parameter에 원인이 된 입력값 이름을 담는다."""

    def __init__(self, message: str, parameter: str):
        self.parameter = parameter
        super().__init__(f"{message} (parameter: {parameter})")


class BacktestCancelled(HedgeFundSimError):
    """취소 요청으로 백테스트가 중단됨."""


class LedgerIntegrityError(HedgeFundSimError, AssertionError):
    """원장 불변식 위반 (음수 수량, 보유량 초과 청산 등)."""
