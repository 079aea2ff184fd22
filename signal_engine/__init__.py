"""Strategy signal and backtest engine."""
