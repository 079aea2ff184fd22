"""Bar-by-bar trade simulator.

Walks the in-range bars once, holding at most one position. A signal on bar
``i`` schedules entry at the open of bar ``i + 1``; an open position is closed
by take-profit, stop-loss, or holding-time limit, checked in that order.

Per bar ``i``:
    1. open the pending entry at ``bars[i].open``
    2. evaluate the entry conditions (every bar, so IF_THEN / SEQUENCE advance)
    3. in position: check exits; a signal is counted as ignored
    4. flat: a signal schedules entry at ``i + 1`` if that bar is in range

With ``config.capital`` set, each trade also carries a money PnL and the run
stops once the balance falls to ``BANKRUPTCY_RATIO`` of the starting capital.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from signal_engine.conditions.compiler import compile_program
from signal_engine.conditions.evaluator import SignalRun
from signal_engine.conditions.visitors import required_warmup
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
    TradeSide,
)
from signal_engine.models.errors import validate_config
from signal_engine.service.statistics import calculate_summary

logger = logging.getLogger(__name__)

# Prices above this are quoted with two decimals (e.g. JPY pairs)
PIP_PRICE_THRESHOLD = 50.0

# Fraction of initial capital at or below which a run stops
BANKRUPTCY_RATIO = 0.5


def pip_size(price: float) -> float:
    return 0.01 if price > PIP_PRICE_THRESHOLD else 0.0001


def level_distance(level: ExitLevel, entry_price: float) -> float:
    """Absolute price distance of an exit level from the entry."""
    match level.unit:
        case ExitUnit.PERCENT:
            return entry_price * level.value / 100
        case ExitUnit.PIPS:
            return level.value * pip_size(entry_price)
        case _:
            raise ValueError(f"Unknown exit unit: {level.unit}")


def exit_prices(settings: ExitSettings, side: TradeSide, entry_price: float) -> tuple[float, float]:
    """Take-profit and stop-loss prices for a position."""
    tp = level_distance(settings.take_profit, entry_price)
    sl = level_distance(settings.stop_loss, entry_price)
    if side == TradeSide.BUY:
        return entry_price + tp, entry_price - sl
    return entry_price - tp, entry_price + sl


@dataclass
class OpenPosition:
    """The single position a run may hold."""

    entry_index: int
    entry_price: float
    take_profit: float
    stop_loss: float


def check_exit(
    position: OpenPosition,
    bar: Bar,
    index: int,
    side: TradeSide,
    settings: ExitSettings,
    interval_minutes: int,
) -> tuple[ExitReason, float] | None:
    """Exit reason and fill price for this bar, or None to keep holding."""
    if side == TradeSide.BUY:
        if bar.high >= position.take_profit:
            return ExitReason.TAKE_PROFIT, position.take_profit
        if bar.low <= position.stop_loss:
            return ExitReason.STOP_LOSS, position.stop_loss
    else:
        if bar.low <= position.take_profit:
            return ExitReason.TAKE_PROFIT, position.take_profit
        if bar.high >= position.stop_loss:
            return ExitReason.STOP_LOSS, position.stop_loss

    bars_held = index - position.entry_index
    max_hold = settings.max_holding_minutes
    if max_hold and bars_held * interval_minutes >= max_hold:
        return ExitReason.TIMEOUT, bar.close
    return None


def gross_pnl_percent(side: TradeSide, entry_price: float, exit_price: float) -> float:
    move = exit_price - entry_price if side == TradeSide.BUY else entry_price - exit_price
    return move / entry_price * 100


class BacktestSimulator:
    """Runs one backtest config to completion.

    Usage:
        result = BacktestSimulator().run(config)
    """

    def run(self, config: BacktestConfig) -> BacktestResult:
        """Simulate the config.

        Raises:
            BacktestValidationError: If the config is invalid (before any bar).
            ConditionStructureError: If the condition tree cannot be compiled.
        """
        validate_config(config)

        bars = config.bars
        program = compile_program(config.entry_conditions)
        warmup = required_warmup(config.entry_conditions)

        in_range = [
            i for i, bar in enumerate(bars) if config.start_date <= bar.timestamp <= config.end_date
        ]
        first, last = in_range[0], in_range[-1]
        scan_start = max(first, warmup)

        logger.info(
            f"Simulating {config.side.value} strategy on {len(in_range)} {config.timeframe.value} bars "
            f"(scan from index {scan_start}, warmup={warmup})"
        )

        run = SignalRun(program, bars)
        interval = config.timeframe.minutes
        trades: list[BacktestTradeEvent] = []
        position: OpenPosition | None = None
        pending_entry: int | None = None
        signal_count = 0
        ignored = 0
        capital = config.capital
        balance = capital.initial_capital if capital else None
        bankrupt = False
        last_evaluated = last

        for i in range(scan_start, last + 1):
            bar = bars[i]

            if pending_entry == i:
                tp, sl = exit_prices(config.exit_settings, config.side, bar.open)
                position = OpenPosition(entry_index=i, entry_price=bar.open, take_profit=tp, stop_loss=sl)
                pending_entry = None
                logger.debug(f"Entered {config.side.value} at bar {i} price {bar.open}")

            signal = run.evaluate_at(i)
            if signal:
                signal_count += 1

            if position is not None:
                if signal:
                    ignored += 1
                outcome = check_exit(position, bar, i, config.side, config.exit_settings, interval)
                if outcome is not None:
                    reason, exit_price = outcome
                    trade = self._close(config, position, i, reason, exit_price)
                    trades.append(trade)
                    position = None
                    if capital is not None:
                        balance += trade.pnl
                        if balance <= capital.initial_capital * BANKRUPTCY_RATIO:
                            bankrupt = True
                            last_evaluated = i
                            logger.info(
                                f"Stopping at bar {i}: balance {balance:.2f} is "
                                f"{balance / capital.initial_capital:.0%} of initial capital"
                            )
                            break
            elif signal and pending_entry is None:
                if i + 1 <= last:
                    pending_entry = i + 1
                else:
                    logger.debug(f"Signal at final bar {i} has no next bar to enter on")

        if position is not None:
            logger.info(
                f"Discarding position opened at bar {position.entry_index}: still open at end of range"
            )

        summary = calculate_summary(trades, capital.initial_capital if capital else None)
        if bankrupt:
            summary = summary.model_copy(update={"stopped_reason": "bankruptcy"})
        logger.info(
            f"Backtest finished: {summary.total_trades} trades, {signal_count} signals, "
            f"{ignored} ignored while in position"
        )
        return BacktestResult(
            start_date=config.start_date,
            end_date=config.end_date,
            timeframe=config.timeframe,
            side=config.side,
            trades=trades,
            summary=summary,
            signal_count=signal_count,
            ignored_signals=ignored,
            bars_evaluated=max(0, last_evaluated + 1 - scan_start),
        )

    def _close(
        self,
        config: BacktestConfig,
        position: OpenPosition,
        index: int,
        reason: ExitReason,
        exit_price: float,
    ) -> BacktestTradeEvent:
        bars = config.bars
        gross = gross_pnl_percent(config.side, position.entry_price, exit_price)
        net = gross - config.trading_cost_pct
        money = _money_fields(config.capital, position.entry_price, net)
        trade = BacktestTradeEvent(
            event_id=str(uuid.uuid4()),
            side=config.side,
            entry_time=bars[position.entry_index].timestamp,
            entry_price=position.entry_price,
            entry_index=position.entry_index,
            exit_time=bars[index].timestamp,
            exit_price=exit_price,
            exit_index=index,
            exit_reason=reason,
            bars_held=index - position.entry_index,
            gross_pnl_percent=gross,
            pnl_percent=net,
            **money,
        )
        logger.debug(
            f"Exited at bar {index} ({reason.value}) price {exit_price}: {trade.pnl_percent:.4f}%"
        )
        return trade


def _money_fields(capital: CapitalSettings | None, entry_price: float, pnl_percent: float) -> dict:
    """Money PnL for one position of ``capital.lot_size`` units, net of cost."""
    if capital is None:
        return {}
    pnl = pnl_percent / 100 * entry_price * capital.lot_size
    margin = capital.lot_size * entry_price / capital.leverage
    return {
        "lot_size": capital.lot_size,
        "pnl": pnl,
        "margin_return_percent": pnl / margin * 100,
    }
