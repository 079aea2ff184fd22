"""Backtest models."""

from signal_engine.models.backtest import (
    BacktestConfig,
    BacktestResult,
    BacktestTradeEvent,
    Bar,
    CapitalSettings,
    ExitLevel,
    ExitReason,
    ExitSettings,
    ExitUnit,
    PerformanceSummary,
    StrategyDefinition,
    Timeframe,
    TradeSide,
)
from signal_engine.models.errors import (
    BacktestConfigValidator,
    BacktestValidationError,
    ValidationIssue,
    date_range_issues,
    is_aware,
    validate_config,
)

__all__ = [
    "Bar",
    "BacktestConfig",
    "BacktestConfigValidator",
    "BacktestResult",
    "BacktestTradeEvent",
    "BacktestValidationError",
    "CapitalSettings",
    "ExitLevel",
    "ExitReason",
    "ExitSettings",
    "ExitUnit",
    "PerformanceSummary",
    "StrategyDefinition",
    "Timeframe",
    "TradeSide",
    "ValidationIssue",
    "date_range_issues",
    "is_aware",
    "validate_config",
]
