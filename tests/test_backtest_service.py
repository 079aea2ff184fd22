"""Tests for BacktestService orchestration."""

import logging
from datetime import timedelta

import pytest

from signal_engine.conditions.ir import (
    ComparisonOperator,
    FixedTarget,
    IndicatorCondition,
    IndicatorParams,
    IndicatorRef,
)
from signal_engine.models.backtest import CapitalSettings, Timeframe
from signal_engine.service.backtest_service import BacktestService
from signal_engine.service.data_service import InMemoryDataService
from tests.conftest import all_of, make_bars, make_strategy, with_spikes


class RecordingDataService(InMemoryDataService):
    """InMemoryDataService that remembers every request."""

    def __init__(self) -> None:
        super().__init__()
        self.requests = []

    def get_bars(self, symbol, timeframe, start, end):
        self.requests.append((symbol, timeframe, start, end))
        return super().get_bars(symbol, timeframe, start, end)


class ExplodingDataService:
    def get_bars(self, symbol, timeframe, start, end):
        raise RuntimeError("connection reset")


def hourly_bars():
    """40 hourly bars: signal close at 13, take-profit touch at 16."""
    closes = with_spikes(40, {13: 101.0})
    highs = list(closes)
    highs[16] = 103.0
    return make_bars(closes, highs=highs)


@pytest.fixture
def data_service() -> RecordingDataService:
    ds = RecordingDataService()
    ds.seed("EURUSD", Timeframe.H1, hourly_bars())
    return ds


@pytest.fixture
def window():
    bars = hourly_bars()
    return bars[10].timestamp, bars[39].timestamp


class TestRunBacktest:
    """Tests for BacktestService.run_backtest."""

    def test_success(self, data_service, window):
        service = BacktestService(data_service=data_service)
        result = service.run_backtest(make_strategy(), "EURUSD", *window, timeframe=Timeframe.H1)
        assert result.status == "success"
        assert result.stage == "stage1"
        assert result.error is None
        trades = result.result.trades
        assert [(t.entry_index, t.exit_index) for t in trades] == [(14, 16)]
        assert result.stage1_result is result.result

    def test_fetches_warmup_history(self, data_service, window):
        sma20 = IndicatorCondition(
            left=IndicatorRef(indicator="sma", params=IndicatorParams(period=20)),
            operator=ComparisonOperator.GT,
            right=FixedTarget(value=0.0),
        )
        service = BacktestService(data_service=data_service, warmup_buffer_bars=10)
        service.run_backtest(make_strategy(all_of(sma20)), "EURUSD", *window, timeframe=Timeframe.H1)
        _, timeframe, fetch_start, fetch_end = data_service.requests[0]
        assert timeframe == Timeframe.H1
        assert fetch_start == window[0] - timedelta(hours=29)
        assert fetch_end == window[1]

    def test_bars_before_start_not_traded(self, data_service):
        bars = hourly_bars()
        service = BacktestService(data_service=data_service)
        result = service.run_backtest(
            make_strategy(), "EURUSD", bars[15].timestamp, bars[39].timestamp, timeframe=Timeframe.H1
        )
        assert result.result.trades == []
        assert result.result.signal_count == 0

    def test_missing_data(self, window):
        service = BacktestService(data_service=InMemoryDataService())
        result = service.run_backtest(make_strategy(), "EURUSD", *window, timeframe=Timeframe.H1)
        assert result.status == "error"
        assert result.error_kind == "data"
        assert "EURUSD" in result.error

    def test_no_data_service(self, window):
        result = BacktestService().run_backtest(make_strategy(), "EURUSD", *window)
        assert result.error_kind == "data"

    def test_reversed_range_rejected_before_fetch(self, data_service, window):
        """A reversed range is a validation error, however far the warm-up reaches back."""
        start, end = window
        service = BacktestService(data_service=data_service)
        result = service.run_backtest(
            make_strategy(), "EURUSD", end, start - timedelta(days=3), timeframe=Timeframe.H1
        )
        assert result.error_kind == "validation"
        assert "end_date is before start_date" in result.error
        assert data_service.requests == []

    def test_capital_passed_to_simulation(self, data_service, window):
        service = BacktestService(data_service=data_service)
        capital = CapitalSettings(initial_capital=50_000.0, lot_size=1_000.0)
        result = service.run_backtest(
            make_strategy(), "EURUSD", *window, timeframe=Timeframe.H1, capital=capital
        )
        trade = result.result.trades[0]
        assert trade.pnl == pytest.approx(2_000.0)
        assert result.result.summary.final_capital == pytest.approx(52_000.0)

    def test_invalid_strategy(self, data_service, window):
        service = BacktestService(data_service=data_service)
        result = service.run_backtest(
            make_strategy(take_profit=0.0), "EURUSD", *window, timeframe=Timeframe.H1
        )
        assert result.status == "error"
        assert result.error_kind == "validation"
        assert "take_profit" in result.error

    def test_unexpected_failure_logged(self, window, caplog):
        service = BacktestService(data_service=ExplodingDataService())
        with caplog.at_level(logging.ERROR):
            result = service.run_backtest(make_strategy(), "EURUSD", *window)
        assert result.error_kind == "internal"
        assert "connection reset" in result.error
        assert any(r.exc_info for r in caplog.records)


class TestTwoStage:
    """Stage 2 re-runs on 1m bars only when stage 1 traded."""

    @pytest.fixture
    def two_stage_data(self, data_service):
        n = 40 * 60
        closes = with_spikes(n, {700: 101.0})
        highs = list(closes)
        highs[705] = 103.0
        data_service.seed("EURUSD", Timeframe.M1, make_bars(closes, highs=highs, step=timedelta(minutes=1)))
        return data_service

    def test_stage2_runs_after_trades(self, two_stage_data, window):
        # 1m fetch starts 10 bars before the window, so seeded bar 700 is index 110
        service = BacktestService(data_service=two_stage_data)
        result = service.run_backtest(
            make_strategy(), "EURUSD", *window, timeframe=Timeframe.H1, run_stage2=True
        )
        assert result.status == "success"
        assert result.stage == "stage2"
        assert result.timeframe == Timeframe.M1
        assert len(result.stage1_result.trades) == 1
        assert [(t.entry_index, t.exit_index) for t in result.result.trades] == [(111, 115)]
        assert [r[1] for r in two_stage_data.requests] == [Timeframe.H1, Timeframe.M1]

    def test_stage2_skipped_without_trades(self, two_stage_data, window):
        service = BacktestService(data_service=two_stage_data)
        quiet = make_strategy(all_of(IndicatorCondition(
            left=IndicatorRef(indicator="sma", params=IndicatorParams(period=1)),
            operator=ComparisonOperator.GT,
            right=FixedTarget(value=1000.0),
        )))
        result = service.run_backtest(quiet, "EURUSD", *window, timeframe=Timeframe.H1, run_stage2=True)
        assert result.stage == "stage1"
        assert len(two_stage_data.requests) == 1


class TestRunBatch:
    def test_failure_does_not_abort_batch(self, data_service, window):
        service = BacktestService(data_service=data_service)
        strategies = [
            make_strategy(strategy_id="good"),
            make_strategy(strategy_id="bad", stop_loss=-1.0),
            make_strategy(strategy_id="also-good", trading_cost_pct=0.1),
        ]
        results = service.run_batch(strategies, "EURUSD", *window, timeframe=Timeframe.H1)
        assert [r.strategy_id for r in results] == ["good", "bad", "also-good"]
        assert [r.status for r in results] == ["success", "error", "success"]
        assert results[2].result.trades[0].pnl_percent == pytest.approx(1.9)
