"""Backtest service - orchestrates strategy backtesting.

This service:
1. Works out how much indicator history the strategy needs
2. Fetches bars via DataService, starting early enough to cover that warm-up
3. Runs the simulator on the requested timeframe (stage 1)
4. Optionally re-runs on 1m bars when stage 1 traded (stage 2)
5. Returns a structured result, never raising for a failed run

Data Flow:
    StrategyDefinition → required_warmup() → DataService.get_bars()
    → BacktestConfig → BacktestSimulator.run() → BacktestResult
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

from signal_engine.conditions.errors import ConditionStructureError
from signal_engine.conditions.visitors import required_warmup
from signal_engine.models.backtest import (
    BacktestConfig,
    BacktestResult,
    Bar,
    CapitalSettings,
    StrategyDefinition,
    Timeframe,
)
from signal_engine.models.errors import BacktestValidationError, date_range_issues
from signal_engine.service.data_service import DataFetchError, DataService
from signal_engine.service.simulator import BacktestSimulator

logger = logging.getLogger(__name__)

DEFAULT_TIMEFRAME = Timeframe(os.environ.get("DEFAULT_TIMEFRAME", "1h"))
# Extra history fetched beyond the strictest indicator warm-up
WARMUP_BUFFER_BARS = int(os.environ.get("WARMUP_BUFFER_BARS", "10"))

STAGE2_TIMEFRAME = Timeframe.M1


@dataclass
class BacktestRunResult:
    """Result of a backtest run."""

    status: str  # "success", "error"
    strategy_id: str
    start_date: datetime
    end_date: datetime
    timeframe: Timeframe
    stage: str = "stage1"
    result: BacktestResult | None = None
    stage1_result: BacktestResult | None = None
    message: str | None = None
    error: str | None = None
    error_kind: str | None = None  # "validation", "data", "internal"


class BacktestService:
    """Service for running strategy backtests against a data source.

    Orchestrates the full backtest flow:
    1. Fetch bars (with warm-up history) via DataService
    2. Simulate stage 1, and stage 2 on 1m bars if requested
    3. Return structured results
    """

    def __init__(
        self,
        data_service: DataService | None = None,
        simulator: BacktestSimulator | None = None,
        warmup_buffer_bars: int = WARMUP_BUFFER_BARS,
    ):
        """Initialize backtest service.

        Args:
            data_service: Source of historical bars. Required for fetching data.
            simulator: Simulator to run configs with (default: a new one)
            warmup_buffer_bars: Bars fetched before the start date beyond the
                strategy's indicator warm-up
        """
        self.data_service = data_service
        self.simulator = simulator or BacktestSimulator()
        self.warmup_buffer_bars = warmup_buffer_bars

    def fetch_bars(
        self,
        strategy: StrategyDefinition,
        symbol: str,
        timeframe: Timeframe,
        start_date: datetime,
        end_date: datetime,
    ) -> list[Bar]:
        """Bars for the range plus enough earlier bars to warm indicators up.

        Raises:
            DataFetchError: If no data service is configured or the fetch fails.
        """
        if self.data_service is None:
            raise DataFetchError("No data_service configured")

        warmup = required_warmup(strategy.entry_conditions)
        lookback = (warmup + self.warmup_buffer_bars) * timedelta(minutes=timeframe.minutes)
        fetch_start = start_date - lookback
        logger.info(
            f"Fetching {symbol} {timeframe.value} bars from {fetch_start.isoformat()} "
            f"(warmup={warmup} bars + buffer={self.warmup_buffer_bars})"
        )
        return self.data_service.get_bars(symbol, timeframe, fetch_start, end_date)

    def run_stage(
        self,
        strategy: StrategyDefinition,
        symbol: str,
        timeframe: Timeframe,
        start_date: datetime,
        end_date: datetime,
        capital: CapitalSettings | None = None,
    ) -> BacktestResult:
        """Fetch bars and simulate a single stage. Raises on failure."""
        bars = self.fetch_bars(strategy, symbol, timeframe, start_date, end_date)
        config = BacktestConfig.from_strategy(
            strategy, bars, start_date, end_date, timeframe, capital=capital
        )
        return self.simulator.run(config)

    def run_backtest(
        self,
        strategy: StrategyDefinition,
        symbol: str,
        start_date: datetime,
        end_date: datetime,
        timeframe: Timeframe | None = None,
        run_stage2: bool = False,
        capital: CapitalSettings | None = None,
    ) -> BacktestRunResult:
        """Run a backtest for a strategy.

        Args:
            strategy: Entry conditions, side, exits, and cost
            symbol: Trading symbol to fetch bars for
            start_date: First tradable bar time (inclusive)
            end_date: Last tradable bar time (inclusive)
            timeframe: Stage 1 timeframe (default: DEFAULT_TIMEFRAME)
            run_stage2: Re-run on 1m bars when stage 1 produced trades
            capital: Account settings for money PnL (default: the strategy's own)

        Returns:
            BacktestRunResult with status and results
        """
        timeframe = Timeframe(timeframe) if timeframe is not None else DEFAULT_TIMEFRAME
        strategy_id = strategy.strategy_id

        def failed(error: str, kind: str) -> BacktestRunResult:
            return BacktestRunResult(
                status="error",
                strategy_id=strategy_id,
                start_date=start_date,
                end_date=end_date,
                timeframe=timeframe,
                error=error,
                error_kind=kind,
            )

        try:
            # Checked before the fetch, whose start is moved back by the warm-up
            issues = date_range_issues(start_date, end_date)
            if issues:
                raise BacktestValidationError(issues)

            logger.info(f"Starting backtest for strategy {strategy_id} on {symbol}")
            stage1 = self.run_stage(strategy, symbol, timeframe, start_date, end_date, capital)

            if not run_stage2 or not stage1.trades:
                return BacktestRunResult(
                    status="success",
                    strategy_id=strategy_id,
                    start_date=start_date,
                    end_date=end_date,
                    timeframe=timeframe,
                    result=stage1,
                    stage1_result=stage1,
                    message=f"{stage1.summary.total_trades} trades",
                )

            logger.info(
                f"Stage 1 produced {len(stage1.trades)} trades, re-running on {STAGE2_TIMEFRAME.value}"
            )
            stage2 = self.run_stage(
                strategy, symbol, STAGE2_TIMEFRAME, start_date, end_date, capital
            )
            return BacktestRunResult(
                status="success",
                strategy_id=strategy_id,
                start_date=start_date,
                end_date=end_date,
                timeframe=STAGE2_TIMEFRAME,
                stage="stage2",
                result=stage2,
                stage1_result=stage1,
                message=(
                    f"{stage1.summary.total_trades} trades on {timeframe.value}, "
                    f"{stage2.summary.total_trades} on {STAGE2_TIMEFRAME.value}"
                ),
            )

        except (BacktestValidationError, ConditionStructureError) as e:
            logger.warning(f"Backtest for strategy {strategy_id} rejected: {e}")
            return failed(str(e), "validation")
        except DataFetchError as e:
            logger.warning(f"Backtest for strategy {strategy_id} has no data: {e}")
            return failed(str(e), "data")
        except Exception as e:
            logger.error(f"Backtest failed for strategy {strategy_id}: {e}", exc_info=True)
            return failed(str(e), "internal")

    def run_batch(
        self,
        strategies: list[StrategyDefinition],
        symbol: str,
        start_date: datetime,
        end_date: datetime,
        timeframe: Timeframe | None = None,
        run_stage2: bool = False,
        capital: CapitalSettings | None = None,
    ) -> list[BacktestRunResult]:
        """Backtest several strategies over the same symbol and range.

        A failing strategy yields an error result; the rest still run.
        """
        results = [
            self.run_backtest(s, symbol, start_date, end_date, timeframe, run_stage2, capital)
            for s in strategies
        ]
        failed = sum(1 for r in results if r.status != "success")
        logger.info(f"Batch finished: {len(results) - failed} succeeded, {failed} failed")
        return results
