"""
백테스트 실행 스크립트 (시스템 진입점).

[ 사용법 ]
    # 기본 실행 (config.yaml의 전략/프리셋 사용, 샘플 데이터)
    python run_backtest.py

    # 전략/프리셋 지정
    python run_backtest.py --strategy ma_cross --preset aggressive

    # 파라미터 오버라이드
    python run_backtest.py --preset standard -p fast_period=15 -p min_volume=0

    # 상승 후 하락 추세 샘플 데이터
    python run_backtest.py --trend up-down

    # 벤치마크 비교
    python run_backtest.py --benchmark SPY

    # 여러 프리셋(또는 전략) 비교
    python run_backtest.py --compare conservative standard aggressive

    # 결과 JSON 저장
    python run_backtest.py --output results/backtest.json

    # 등록된 전략/프리셋 목록 확인
    python run_backtest.py --list
"""

import argparse
import json
import sys
from datetime import date, timedelta
from pathlib import Path

import numpy as np
import pandas as pd

from hedge_fund_sim.backtest.engine import BacktestEngine, BacktestResult, generate_summary
from hedge_fund_sim.core.exceptions import HedgeFundSimError
from hedge_fund_sim.core.trading_strategy import TradingStrategy
from hedge_fund_sim.data.in_memory import InMemoryPriceProvider
from hedge_fund_sim.strategies import create_preset, create_strategy, list_presets, list_strategies
from hedge_fund_sim.utils.config import Config
from hedge_fund_sim.utils.logger import setup_from_config

# 전략 워밍업용으로 시작일 이전에 생성하는 기간
WARMUP_DAYS = 400


def generate_sample_data(
    ticker: str,
    start_date: date,
    end_date: date,
    initial_price: float = 100.0,
    volatility: float = 0.015,
    trend: str = "random",
) -> pd.DataFrame:
    """백테스트용 샘플 주가 데이터 생성.

    trend:
        "random"  - 약한 상승 드리프트의 랜덤워크
        "up-down" - 전반부 상승, 후반부 하락
    """
    np.random.seed(sum(ord(c) for c in ticker))

    dates = pd.bdate_range(start=start_date, end=end_date)
    n = len(dates)

    if trend == "up-down":
        half = n // 2
        drift = np.concatenate([np.full(half, 0.004), np.full(n - half, -0.004)])
        returns = drift + np.random.normal(0, volatility / 3, n)
    else:
        returns = np.random.normal(0.0003, volatility, n)
    prices = initial_price * np.cumprod(1 + returns)

    data = []
    for i, d in enumerate(dates):
        close = prices[i]
        high = close * (1 + abs(np.random.normal(0, 0.01)))
        low = close * (1 - abs(np.random.normal(0, 0.01)))
        open_price = close * (1 + np.random.normal(0, 0.005))
        volume = int(np.random.lognormal(14, 0.5))

        data.append({
            "date": d.date(),
            "open": round(open_price, 4),
            "high": round(max(high, open_price, close), 4),
            "low": round(min(low, open_price, close), 4),
            "close": round(close, 4),
            "volume": volume,
        })

    return pd.DataFrame(data)


def parse_param(param_str: str) -> tuple[str, object]:
    """'key=value' 문자열을 파싱하여 (key, value) 반환. 숫자면 자동 변환."""
    key, _, value = param_str.partition("=")
    key = key.strip()
    value = value.strip()

    # 숫자 자동 변환
    try:
        if "." in value:
            return key, float(value)
        return key, int(value)
    except ValueError:
        # bool 변환
        if value.lower() in ("true", "yes"):
            return key, True
        if value.lower() in ("false", "no"):
            return key, False
        return key, value


def load_sample_provider(config: Config, tickers: list[str], trend: str) -> InMemoryPriceProvider:
    """샘플 데이터로 InMemoryPriceProvider 구성. 벤치마크 종목도 함께 생성."""
    start = date.fromisoformat(config.backtest.start_date) - timedelta(days=WARMUP_DAYS)
    end = date.fromisoformat(config.backtest.end_date)

    provider = InMemoryPriceProvider()
    print("샘플 데이터 생성 중...")
    symbols = list(tickers)
    if config.backtest.benchmark_ticker and config.backtest.benchmark_ticker not in symbols:
        symbols.append(config.backtest.benchmark_ticker)
    for i, ticker in enumerate(symbols):
        df = generate_sample_data(ticker, start, end, initial_price=100.0 + 50 * i, trend=trend)
        provider.load_data(ticker, df)
        print(f"  {ticker}: {len(df)}일 데이터")
    return provider


def build_strategy(strategy_name: str, preset: str | None, overrides: dict) -> TradingStrategy:
    """전략 이름/프리셋으로 전략 생성. 프리셋이 있으면 프리셋 → overrides 순으로 적용."""
    if preset:
        return create_preset(preset, strategy_name=strategy_name, overrides=overrides)
    return create_strategy(strategy_name, params=overrides)


def run_single(
    engine: BacktestEngine,
    config: Config,
    strategy: TradingStrategy,
    tickers: list[str],
) -> BacktestResult:
    """단일 전략 백테스트 실행."""
    return engine.run_backtest(strategy, config.backtest, tickers)


def print_single_result(result: BacktestResult):
    """단일 전략 결과 출력."""
    print()
    print(generate_summary(result))

    buy_trades = [t for t in result.trades if t.side == "BUY"]
    sell_trades = [t for t in result.trades if t.side == "SELL"]
    print(f"\n총 거래 횟수: {len(result.trades)}")
    print(f"  매수: {len(buy_trades)}회")
    print(f"  매도: {len(sell_trades)}회")

    if sell_trades:
        print("\n최근 매도 거래 (최대 5건):")
        for t in sell_trades[-5:]:
            profit_str = f"+{t.realized_pnl:,.2f}" if t.realized_pnl > 0 else f"{t.realized_pnl:,.2f}"
            print(f"  [{t.date}] {t.ticker} {t.quantity}주 @ ${t.price:,.2f} -> ${profit_str}")


def print_comparison(results: dict[str, BacktestResult], config: Config, tickers: list[str]):
    """여러 전략 비교 결과 출력."""
    period = f"{config.backtest.start_date} ~ {config.backtest.end_date}"

    names = list(results.keys())
    col_width = max(14, max(len(n) for n in names) + 2)

    print(f"\n{'=' * (20 + col_width * len(names))}")
    print(f"전략 비교 결과 ({', '.join(tickers)}, {period})")
    print(f"{'=' * (20 + col_width * len(names))}")

    # 헤더
    header = f"{'':>20}" + "".join(f"{n:>{col_width}}" for n in names)
    print(header)
    print("-" * len(header))

    # 지표 행
    rows = [
        ("총 수익률", lambda r: f"{r.performance.total_return * 100:.2f}%"),
        ("연환산 수익률", lambda r: f"{r.performance.annualized_return * 100:.2f}%"),
        ("샤프 비율", lambda r: f"{r.performance.sharpe_ratio:.2f}"),
        ("최대 낙폭(MDD)", lambda r: f"{r.performance.max_drawdown * 100:.2f}%"),
        ("VaR (95%)", lambda r: f"{r.risk_metrics.value_at_risk * 100:.2f}%"),
        ("총 거래 횟수", lambda r: f"{r.performance.total_trades}"),
        ("승률", lambda r: f"{r.performance.win_rate * 100:.1f}%"),
        ("수익 팩터", lambda r: f"{r.performance.profit_factor:.2f}"),
        ("평균 수익", lambda r: f"${r.performance.avg_profit:,.2f}"),
        ("평균 손실", lambda r: f"${r.performance.avg_loss:,.2f}"),
    ]

    for label, fmt in rows:
        row = f"{label:>20}" + "".join(f"{fmt(results[n]):>{col_width}}" for n in names)
        print(row)

    print(f"{'=' * (20 + col_width * len(names))}")


def main():
    parser = argparse.ArgumentParser(description="헤지펀드 전략 백테스트 실행")
    parser.add_argument("--config", type=str, default="config.yaml", help="설정 파일 경로")
    parser.add_argument("--strategy", type=str, default=None, help="전략 이름 (config.yaml 대신 지정)")
    parser.add_argument("--preset", type=str, default=None, help="전략 프리셋 (conservative/standard/aggressive)")
    parser.add_argument("-p", "--param", action="append", default=[], help="파라미터 오버라이드 (예: -p fast_period=15)")
    parser.add_argument("--tickers", nargs="+", default=None, help="대상 종목 (config.yaml 대신 지정)")
    parser.add_argument("--benchmark", type=str, default=None, help="벤치마크 종목 (예: SPY)")
    parser.add_argument("--trend", type=str, default="random", choices=["random", "up-down"], help="샘플 데이터 추세")
    parser.add_argument("--compare", nargs="+", metavar="NAME", help="여러 프리셋/전략 비교")
    parser.add_argument("--output", type=str, default=None, help="결과 JSON 저장 경로")
    parser.add_argument("--list", action="store_true", help="등록된 전략/프리셋 목록 출력")
    args = parser.parse_args()

    # 전략 목록 출력
    if args.list:
        print("등록된 전략:")
        for name in list_strategies():
            presets = list_presets(name)
            suffix = f" (프리셋: {', '.join(presets)})" if presets else ""
            print(f"  - {name}{suffix}")
        return

    # 설정 로드
    config_path = Path(args.config)
    if config_path.exists():
        config = Config.from_yaml(config_path)
    else:
        print(f"설정 파일 없음: {config_path}, 기본값 사용")
        config = Config()

    # 로거
    setup_from_config(config)

    if args.benchmark:
        config.backtest.benchmark_ticker = args.benchmark
    tickers = args.tickers or config.strategy.tickers or ["AAPL"]

    strategy_params = dict(config.strategy.params)
    for p in args.param:
        key, value = parse_param(p)
        strategy_params[key] = value

    provider = load_sample_provider(config, tickers, args.trend)
    engine = BacktestEngine(provider, risk_limits=config.risk)
    strategy_name = args.strategy or config.strategy.name

    try:
        # ─── 비교 모드 ───────────────────────────────────────────────────
        if args.compare:
            print(f"\n{len(args.compare)}개 전략 비교 실행...")
            presets = list_presets(strategy_name)
            results = {}
            for name in args.compare:
                print(f"\n--- {name} 실행 중 ---")
                if name in presets:
                    strategy = create_preset(name, strategy_name=strategy_name, overrides=strategy_params)
                else:
                    strategy = create_strategy(name, params=strategy_params)
                results[name] = run_single(engine, config, strategy, tickers)
            print_comparison(results, config, tickers)
            return

        # ─── 단일 실행 모드 ─────────────────────────────────────────────
        preset = args.preset or config.strategy.preset
        strategy = build_strategy(strategy_name, preset, strategy_params)

        print(f"\n전략: {strategy.name} ({strategy_name}{', ' + preset if preset else ''})")
        if args.param:
            print(f"파라미터 오버라이드: {dict(parse_param(p) for p in args.param)}")

        result = run_single(engine, config, strategy, tickers)
    except (HedgeFundSimError, ValueError) as e:
        print(f"\n오류: {e}")
        sys.exit(1)

    print_single_result(result)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, ensure_ascii=False, indent=2)
        print(f"\n결과 저장: {output_path}")


if __name__ == "__main__":
    main()
