"""hmmcast: ensemble HMM forecasting of discrete symbol series with walk-forward backtests."""

__version__ = "0.1.0"
