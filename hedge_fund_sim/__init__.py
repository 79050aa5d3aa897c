"""
=============================================================================
헤지펀드 트레이딩 시뮬레이터 (Hedge Fund Sim)
=============================================================================

[ 시스템 전체 구조 ]

    run_backtest.py (진입점)
         │
         ├── utils/config.py        ← config.yaml 설정 로드
         ├── utils/logger.py        ← 로깅
         │
         ├── strategies/            ← 매매 전략 (시그널 생성)
         │     └── ma_cross_strategy.py
         │
         └── backtest/engine.py     ← 백테스트 실행 엔진
               │
               ├── data/portfolio.py    ← 현금 + lot 원장 + 거래기록
               │     └── data/ledger.py ← FIFO lot 원장
               └── backtest/metrics.py  ← 성과/리스크/벤치마크 지표

    engine/strategy_engine.py       ← 여러 전략 병렬 실행 + 합의 시그널
         └── risk/manager.py        ← 포지션 크기, 거래 검증, 리스크 지표


[ 핵심 추상 클래스 (core/) - 모든 구현체의 부모 ]

    core/data_provider.py    → data/in_memory.py::InMemoryPriceProvider
                             → data/in_memory.py::InMemoryFundProvider

    core/trading_strategy.py → strategies/ma_cross_strategy.py (이동평균 교차)

    core/exceptions.py       ← 모든 모듈이 공유하는 예외 계층


[ 데이터 흐름 ]

    1. 가격 이력 → indicators/technical.py (SMA, EMA, RSI, MACD ...)
    2. TradingStrategy.analyze() → TradeSignal (매수/매도/홀드 + 신뢰도)
    3. StrategyEngine이 전략별 시그널을 합의 시그널로 집계
    4. RiskManager가 수량 계산 + 한도 검증
    5. LotLedger에 lot 생성/FIFO 청산 → 실현 손익
    6. 백테스트에서는 2~5를 거래일마다 반복 → 자산 곡선 → 성과 리포트


[ 범위 밖 ]

    HTTP/API, 인증, DB 스키마, 외부 시세 수집, UI, 실제 브로커 주문,
    주기적 자동매매 스케줄러. 이들은 provider를 통해 데이터를 넘기고
    결과(시그널, 거래기록, 지표)를 받아가는 호출자로 취급한다.
"""
