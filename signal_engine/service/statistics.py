"""Performance statistics over a list of completed trades.

All figures are in percent-of-entry units, taken from each trade's
cost-adjusted ``pnl_percent``. Runs with capital also get money figures
from each trade's ``pnl``, with rates as fractions of the initial capital.
"""

from __future__ import annotations

import math

import numpy as np
from scipy import stats

from signal_engine.models.backtest import (
    BacktestTradeEvent,
    ExitReason,
    PerformanceSummary,
)

# Roughly one trade per trading day
ANNUALIZATION_FACTOR = math.sqrt(252)
SIGNIFICANCE_LEVEL = 0.05


def max_drawdown(pnls: list[float]) -> float:
    """Largest peak-to-trough fall of cumulative PnL, starting from 0."""
    if not pnls:
        return 0.0
    equity = np.concatenate(([0.0], np.cumsum(pnls)))
    peaks = np.maximum.accumulate(equity)
    return float(np.max(peaks - equity))


def consecutive_runs(pnls: list[float]) -> tuple[int, int]:
    """Longest winning and losing streaks. Breakeven trades count as losses."""
    max_wins = max_losses = 0
    wins = losses = 0
    for pnl in pnls:
        if pnl > 0:
            wins += 1
            losses = 0
            max_wins = max(max_wins, wins)
        else:
            losses += 1
            wins = 0
            max_losses = max(max_losses, losses)
    return max_wins, max_losses


def confidence_level(trade_count: int) -> str:
    if trade_count >= 30:
        return "high"
    if trade_count >= 10:
        return "medium"
    return "low"


def statistical_metrics(returns: list[float]) -> dict:
    """Sharpe, Sortino and a two-sided one-sample t-test against a zero mean.

    Needs at least two returns; ratios are None when their deviation is 0.
    """
    n = len(returns)
    metrics: dict = {"confidence_level": confidence_level(n)}
    if n < 2:
        return metrics

    values = np.asarray(returns, dtype=float)
    mean = float(values.mean())
    std = float(values.std(ddof=1))

    negative = values[values < 0]
    downside = float(np.sqrt(np.mean(negative**2))) if len(negative) else 0.0

    metrics["sharpe_ratio"] = mean / std * ANNUALIZATION_FACTOR if std > 0 else None
    metrics["sortino_ratio"] = mean / downside * ANNUALIZATION_FACTOR if downside > 0 else None

    t_stat = mean / (std / math.sqrt(n)) if std > 0 else 0.0
    p_value = float(2 * stats.t.sf(abs(t_stat), df=n - 1))
    metrics["p_value"] = p_value
    metrics["is_statistically_significant"] = p_value < SIGNIFICANCE_LEVEL
    return metrics


def capital_metrics(trades: list[BacktestTradeEvent], initial_capital: float) -> dict:
    """Money results of a run that started with ``initial_capital``."""
    money = [t.pnl or 0.0 for t in trades]
    net_profit = sum(money)
    drawdown = max_drawdown(money)
    return {
        "net_profit": net_profit,
        "net_profit_rate": net_profit / initial_capital,
        "max_capital_drawdown": drawdown,
        "max_drawdown_rate": drawdown / initial_capital,
        "final_capital": initial_capital + net_profit,
        "stopped_reason": "completed",
    }


def calculate_summary(
    trades: list[BacktestTradeEvent],
    initial_capital: float | None = None,
) -> PerformanceSummary:
    """Aggregate a run's trades.

    Profit factor is None when there are no losing trades. Money fields are
    filled only when ``initial_capital`` is given.
    """
    money = capital_metrics(trades, initial_capital) if initial_capital is not None else {}
    if not trades:
        return PerformanceSummary(**money)

    pnls = [t.pnl_percent for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    total_profit = sum(wins)
    total_loss = abs(sum(losses))
    average_win = total_profit / len(wins) if wins else 0.0
    average_loss = total_loss / len(losses) if losses else 0.0
    average_pnl = sum(pnls) / len(pnls)
    max_wins, max_losses = consecutive_runs(pnls)

    return PerformanceSummary(
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
        timeout_trades=sum(1 for t in trades if t.exit_reason == ExitReason.TIMEOUT),
        win_rate=len(wins) / len(trades),
        total_profit=total_profit,
        total_loss=total_loss,
        net_pnl=sum(pnls),
        profit_factor=total_profit / total_loss if total_loss > 0 else None,
        average_pnl=average_pnl,
        expectancy=average_pnl,
        max_drawdown=max_drawdown(pnls),
        average_win=average_win,
        average_loss=average_loss,
        risk_reward_ratio=average_win / average_loss if wins and losses else None,
        largest_win=max(wins) if wins else 0.0,
        largest_loss=abs(min(losses)) if losses else 0.0,
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
        **statistical_metrics(pnls),
        **money,
    )
