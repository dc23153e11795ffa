"""tradesim: deterministic daily backtest simulation."""

__version__ = "0.4.0"
