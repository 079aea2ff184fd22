"""Backtest configuration and result models.

Config objects come from callers (HTTP or Python); results are frozen so a
finished run cannot be edited after the fact.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from signal_engine.conditions.ir import ConditionGroup


class Timeframe(str, Enum):
    """Bar resolution."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def minutes(self) -> int:
        return TIMEFRAME_MINUTES[self]


TIMEFRAME_MINUTES: dict[Timeframe, int] = {
    Timeframe.M1: 1,
    Timeframe.M5: 5,
    Timeframe.M15: 15,
    Timeframe.M30: 30,
    Timeframe.H1: 60,
    Timeframe.H4: 240,
    Timeframe.D1: 1440,
}


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ExitUnit(str, Enum):
    PERCENT = "percent"
    PIPS = "pips"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TIMEOUT = "timeout"


class Bar(BaseModel):
    """One OHLCV bar."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


# =============================================================================
# Configuration
# =============================================================================


class ExitLevel(BaseModel):
    """Distance of a take-profit or stop-loss level from the entry price."""

    value: float
    unit: ExitUnit = ExitUnit.PERCENT


class ExitSettings(BaseModel):
    take_profit: ExitLevel
    stop_loss: ExitLevel
    max_holding_minutes: int | None = Field(
        default=None, description="Close at the bar close once held this long (None = no limit)"
    )


class CapitalSettings(BaseModel):
    """Account that turns price moves into money.

    A run stops early once the balance falls to half of ``initial_capital``.
    """

    initial_capital: float = Field(..., description="Starting account balance")
    lot_size: float = Field(default=10000.0, description="Units per position (10000 = 10k currency units)")
    leverage: float = Field(default=1.0, description="Account leverage, 1 to 1000")


class StrategyDefinition(BaseModel):
    """What to trade: entry rules, direction, exits, and cost."""

    strategy_id: str = "unnamed"
    name: str | None = None
    entry_conditions: ConditionGroup
    side: TradeSide = TradeSide.BUY
    exit_settings: ExitSettings
    trading_cost_pct: float = Field(default=0.0, description="Round-trip cost in percent (0.05 = 0.05%)")
    capital: CapitalSettings | None = None


class BacktestConfig(BaseModel):
    """Everything one simulation run needs.

    Bars may start before ``start_date`` to give indicators history; only bars
    inside ``[start_date, end_date]`` are traded. Values are checked by
    ``BacktestConfigValidator`` so every problem is reported at once.
    """

    start_date: datetime
    end_date: datetime
    timeframe: Timeframe = Timeframe.H1
    bars: list[Bar]
    entry_conditions: ConditionGroup
    side: TradeSide = TradeSide.BUY
    exit_settings: ExitSettings
    trading_cost_pct: float = 0.0
    entry_timing: Literal["next_bar_open"] = "next_bar_open"
    capital: CapitalSettings | None = None

    @classmethod
    def from_strategy(
        cls,
        strategy: StrategyDefinition,
        bars: list[Bar],
        start_date: datetime,
        end_date: datetime,
        timeframe: Timeframe,
        capital: CapitalSettings | None = None,
    ) -> BacktestConfig:
        """Config for one run of ``strategy``; ``capital`` overrides the strategy's own."""
        return cls(
            start_date=start_date,
            end_date=end_date,
            timeframe=timeframe,
            bars=bars,
            entry_conditions=strategy.entry_conditions,
            side=strategy.side,
            exit_settings=strategy.exit_settings,
            trading_cost_pct=strategy.trading_cost_pct,
            capital=capital or strategy.capital,
        )


# =============================================================================
# Results
# =============================================================================


class BacktestTradeEvent(BaseModel):
    """A completed trade. PnL figures are percent of the entry price."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    side: TradeSide
    entry_time: datetime
    entry_price: float
    entry_index: int
    exit_time: datetime
    exit_price: float
    exit_index: int
    exit_reason: ExitReason
    bars_held: int
    gross_pnl_percent: float
    pnl_percent: float = Field(..., description="Gross PnL minus trading cost")

    # Set only when the run tracks capital
    lot_size: float | None = None
    pnl: float | None = Field(default=None, description="Money PnL net of trading cost")
    margin_return_percent: float | None = Field(
        default=None, description="pnl as percent of the margin the position required"
    )


class PerformanceSummary(BaseModel):
    """Aggregate statistics over a run's trades (percent units)."""

    model_config = ConfigDict(frozen=True)

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    timeout_trades: int = 0
    win_rate: float = 0.0
    total_profit: float = 0.0
    total_loss: float = 0.0
    net_pnl: float = 0.0
    profit_factor: float | None = None
    average_pnl: float = 0.0
    expectancy: float = 0.0
    max_drawdown: float = 0.0

    average_win: float = 0.0
    average_loss: float = 0.0
    risk_reward_ratio: float | None = None
    largest_win: float = 0.0
    largest_loss: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    sharpe_ratio: float | None = None
    sortino_ratio: float | None = None
    p_value: float | None = None
    is_statistically_significant: bool | None = None
    confidence_level: Literal["low", "medium", "high"] = "low"

    # Capital runs only (rates are fractions of initial capital)
    net_profit: float | None = None
    net_profit_rate: float | None = None
    max_capital_drawdown: float | None = None
    max_drawdown_rate: float | None = None
    final_capital: float | None = None
    stopped_reason: Literal["completed", "bankruptcy"] | None = None


class BacktestResult(BaseModel):
    """Outcome of one simulation run."""

    model_config = ConfigDict(frozen=True)

    start_date: datetime
    end_date: datetime
    timeframe: Timeframe
    side: TradeSide
    trades: list[BacktestTradeEvent] = Field(default_factory=list)
    summary: PerformanceSummary = Field(default_factory=PerformanceSummary)
    signal_count: int = 0
    ignored_signals: int = 0
    bars_evaluated: int = 0
