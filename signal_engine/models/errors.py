"""Backtest configuration validation.

Checks a ``BacktestConfig`` before any bar is processed and reports every
problem at once, each with the path of the offending field.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from signal_engine.models.backtest import BacktestConfig, CapitalSettings, ExitLevel

logger = logging.getLogger(__name__)

MIN_LEVERAGE = 1.0
MAX_LEVERAGE = 1000.0


@dataclass
class ValidationIssue:
    """A single validation problem."""

    path: str  # Where in the config the problem is
    message: str  # What's wrong


@dataclass
class ValidationResult:
    """Result of validating a config."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.issues) == 0

    def add_issue(self, path: str, message: str) -> None:
        self.issues.append(ValidationIssue(path=path, message=message))


class BacktestValidationError(ValueError):
    """Raised when a backtest config cannot be simulated."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        details = "; ".join(f"{i.path}: {i.message}" for i in issues)
        super().__init__(f"Invalid backtest config ({len(issues)} issue(s)): {details}")


def is_aware(dt: datetime) -> bool:
    return dt.tzinfo is not None and dt.utcoffset() is not None


def date_range_issues(start: datetime, end: datetime) -> list[ValidationIssue]:
    """Problems with a requested [start, end] range.

    Aware and naive datetimes cannot be compared, so a mixed pair is reported
    instead of being ordered.
    """
    if is_aware(start) != is_aware(end):
        return [ValidationIssue("end_date", "start_date and end_date mix timezone-aware and naive datetimes")]
    if end < start:
        return [ValidationIssue("end_date", "end_date is before start_date")]
    return []


class BacktestConfigValidator:
    """Validates a BacktestConfig for simulation."""

    def __init__(self, config: BacktestConfig):
        self.config = config
        self.result = ValidationResult()

    def validate(self) -> ValidationResult:
        """Run all validations and return result."""
        cfg = self.config

        self.result.issues.extend(date_range_issues(cfg.start_date, cfg.end_date))

        self._validate_level(cfg.exit_settings.take_profit, "exit_settings.take_profit")
        self._validate_level(cfg.exit_settings.stop_loss, "exit_settings.stop_loss")

        max_hold = cfg.exit_settings.max_holding_minutes
        if max_hold is not None and max_hold <= 0:
            self.result.add_issue(
                "exit_settings.max_holding_minutes", f"must be positive, got {max_hold}"
            )

        if cfg.trading_cost_pct < 0:
            self.result.add_issue(
                "trading_cost_pct", f"must not be negative, got {cfg.trading_cost_pct}"
            )

        if cfg.capital is not None:
            self._validate_capital(cfg.capital)

        self._validate_bars()
        return self.result

    def _validate_level(self, level: ExitLevel, path: str) -> None:
        if level.value <= 0:
            self.result.add_issue(f"{path}.value", f"must be positive, got {level.value}")

    def _validate_capital(self, capital: CapitalSettings) -> None:
        if capital.initial_capital <= 0:
            self.result.add_issue(
                "capital.initial_capital", f"must be positive, got {capital.initial_capital}"
            )
        if capital.lot_size <= 0:
            self.result.add_issue("capital.lot_size", f"must be positive, got {capital.lot_size}")
        if not MIN_LEVERAGE <= capital.leverage <= MAX_LEVERAGE:
            self.result.add_issue(
                "capital.leverage",
                f"must be between {MIN_LEVERAGE:g} and {MAX_LEVERAGE:g}, got {capital.leverage}",
            )

    def _validate_bars(self) -> None:
        bars = self.config.bars
        if not bars:
            self.result.add_issue("bars", "no bars supplied")
            return

        start, end = self.config.start_date, self.config.end_date
        if is_aware(start) != is_aware(end):
            return

        # Ordering and range checks compare timestamps, so they need one kind of datetime
        aware = is_aware(start)
        mismatched = [i for i, bar in enumerate(bars) if is_aware(bar.timestamp) != aware]
        if mismatched:
            kind = "naive" if aware else "timezone-aware"
            self.result.add_issue(
                f"bars[{mismatched[0]}].timestamp",
                f"{len(mismatched)} bar timestamp(s) are {kind} but start_date/end_date are not",
            )
            return

        for i in range(1, len(bars)):
            prev, cur = bars[i - 1].timestamp, bars[i].timestamp
            if cur == prev:
                self.result.add_issue(f"bars[{i}].timestamp", f"duplicate timestamp {cur.isoformat()}")
            elif cur < prev:
                self.result.add_issue(
                    f"bars[{i}].timestamp",
                    f"timestamps not ascending ({cur.isoformat()} after {prev.isoformat()})",
                )

        if start <= end and not any(start <= bar.timestamp <= end for bar in bars):
            self.result.add_issue(
                "bars", f"no bars between {start.isoformat()} and {end.isoformat()}"
            )


def validate_config(config: BacktestConfig) -> None:
    """Validate a config, raising on any problem.

    Raises:
        BacktestValidationError: Listing every issue found.
    """
    result = BacktestConfigValidator(config).validate()
    if not result.is_valid:
        for issue in result.issues:
            logger.warning(f"Backtest config issue at {issue.path}: {issue.message}")
        raise BacktestValidationError(result.issues)
