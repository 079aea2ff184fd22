"""Backtest service API."""

from signal_engine.service.backtest_service import BacktestRunResult, BacktestService
from signal_engine.service.data_service import (
    DataFetchError,
    DataService,
    InMemoryDataService,
    SyntheticDataService,
)
from signal_engine.service.simulator import BacktestSimulator
from signal_engine.service.statistics import calculate_summary

__all__ = [
    "BacktestRunResult",
    "BacktestService",
    "BacktestSimulator",
    "DataFetchError",
    "DataService",
    "InMemoryDataService",
    "SyntheticDataService",
    "calculate_summary",
]
