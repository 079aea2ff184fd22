"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from signal_engine.conditions.ir import (
    ComparisonOperator,
    ConditionGroup,
    FixedTarget,
    IndicatorCondition,
    IndicatorParams,
    IndicatorRef,
    LogicalOperator,
)
from signal_engine.models.backtest import (
    BacktestConfig,
    BacktestTradeEvent,
    Bar,
    CapitalSettings,
    ExitLevel,
    ExitReason,
    ExitSettings,
    ExitUnit,
    StrategyDefinition,
    Timeframe,
    TradeSide,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Bars
# =============================================================================


def make_bars(
    closes: list[float],
    opens: list[float] | None = None,
    highs: list[float] | None = None,
    lows: list[float] | None = None,
    start: datetime = START,
    step: timedelta = timedelta(hours=1),
) -> list[Bar]:
    """Build bars from closes.

    Unless given, open equals close and the bar has no range
    (high = max(open, close), low = min(open, close)).
    """
    bars = []
    for i, close in enumerate(closes):
        open_ = opens[i] if opens is not None else close
        high = highs[i] if highs is not None else max(open_, close)
        low = lows[i] if lows is not None else min(open_, close)
        bars.append(
            Bar(
                timestamp=start + i * step,
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=1000.0,
            )
        )
    return bars


def flat_bars(n: int, price: float = 100.0, **kwargs) -> list[Bar]:
    """``n`` identical zero-range bars."""
    return make_bars([price] * n, **kwargs)


def with_spikes(n: int, spikes: dict[int, float], price: float = 100.0) -> list[float]:
    """Flat close series with selected bars replaced."""
    closes = [price] * n
    for index, value in spikes.items():
        closes[index] = value
    return closes


# =============================================================================
# Conditions
# =============================================================================


def close_ref() -> IndicatorRef:
    """SMA(1): an indicator whose value is the bar close, available from bar 0."""
    return IndicatorRef(indicator="sma", params=IndicatorParams(period=1))


def close_is(value: float) -> IndicatorCondition:
    """Leaf true when the close equals ``value``."""
    return IndicatorCondition(
        left=close_ref(), operator=ComparisonOperator.EQ, right=FixedTarget(value=value)
    )


def close_above(value: float) -> IndicatorCondition:
    """Leaf true when the close is above ``value``."""
    return IndicatorCondition(
        left=close_ref(), operator=ComparisonOperator.GT, right=FixedTarget(value=value)
    )


def all_of(*conditions) -> ConditionGroup:
    return ConditionGroup(operator=LogicalOperator.AND, conditions=list(conditions))


def if_then(trigger, confirm, max_bars_to_wait: int = 3) -> ConditionGroup:
    return ConditionGroup(
        operator=LogicalOperator.IF_THEN,
        if_condition=trigger,
        then_condition=confirm,
        max_bars_to_wait=max_bars_to_wait,
    )


def sequence(*steps, max_bars_between_steps: int = 3) -> ConditionGroup:
    return ConditionGroup(
        operator=LogicalOperator.SEQUENCE,
        sequence=list(steps),
        max_bars_between_steps=max_bars_between_steps,
    )


# =============================================================================
# Strategies / configs / trades
# =============================================================================


def make_exit_settings(
    take_profit: float = 2.0,
    stop_loss: float = 1.0,
    max_holding_minutes: int | None = None,
    unit: ExitUnit = ExitUnit.PERCENT,
) -> ExitSettings:
    return ExitSettings(
        take_profit=ExitLevel(value=take_profit, unit=unit),
        stop_loss=ExitLevel(value=stop_loss, unit=unit),
        max_holding_minutes=max_holding_minutes,
    )


def make_strategy(
    entry_conditions: ConditionGroup | None = None,
    side: TradeSide = TradeSide.BUY,
    strategy_id: str = "test-strategy",
    trading_cost_pct: float = 0.0,
    **exit_kwargs,
) -> StrategyDefinition:
    return StrategyDefinition(
        strategy_id=strategy_id,
        entry_conditions=entry_conditions or all_of(close_above(100.5)),
        side=side,
        exit_settings=make_exit_settings(**exit_kwargs),
        trading_cost_pct=trading_cost_pct,
    )


def make_config(
    bars: list[Bar],
    entry_conditions: ConditionGroup | None = None,
    side: TradeSide = TradeSide.BUY,
    trading_cost_pct: float = 0.0,
    timeframe: Timeframe = Timeframe.H1,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    capital: CapitalSettings | None = None,
    **exit_kwargs,
) -> BacktestConfig:
    """Config over all given bars, by default signalling on closes above 100.5."""
    return BacktestConfig(
        start_date=start_date or bars[0].timestamp,
        end_date=end_date or bars[-1].timestamp,
        timeframe=timeframe,
        bars=bars,
        entry_conditions=entry_conditions or all_of(close_above(100.5)),
        side=side,
        exit_settings=make_exit_settings(**exit_kwargs),
        trading_cost_pct=trading_cost_pct,
        capital=capital,
    )


def make_trade(
    pnl_percent: float,
    exit_reason: ExitReason | None = None,
    pnl: float | None = None,
) -> BacktestTradeEvent:
    """A trade with the given net PnL, for statistics tests."""
    if exit_reason is None:
        exit_reason = ExitReason.TAKE_PROFIT if pnl_percent > 0 else ExitReason.STOP_LOSS
    return BacktestTradeEvent(
        event_id="t",
        side=TradeSide.BUY,
        entry_time=START,
        entry_price=100.0,
        entry_index=0,
        exit_time=START + timedelta(hours=1),
        exit_price=100.0 + pnl_percent,
        exit_index=1,
        exit_reason=exit_reason,
        bars_held=1,
        gross_pnl_percent=pnl_percent,
        pnl_percent=pnl_percent,
        pnl=pnl,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def start() -> datetime:
    return START


@pytest.fixture
def spike_bars() -> list[Bar]:
    """20 flat bars at 100 with a signal close (101) at bar 3."""
    return make_bars(with_spikes(20, {3: 101.0}))
