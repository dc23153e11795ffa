"""Exception taxonomy for the simulation core.

- DataGapError: not enough history for the requested window. Fatal to one run.
- InsufficientFundsError: cash debit larger than the balance. Recovered by the
  engine through the originating policy.
- InsufficientEquitiesError: sell larger than the holding.
- ConfigurationError: invalid parameters or an unsupported policy decision.
"""

from typing import Any, Dict, Optional


class TradeSimError(Exception):
    """Base exception for all simulation errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class DataGapError(TradeSimError):
    """Historical data does not cover the requested warm-up or analysis window."""

    def __init__(self, message: str, symbol: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if symbol:
            details["symbol"] = symbol
        super().__init__(message, details)
        self.symbol = symbol


class InsufficientFundsError(TradeSimError):
    """A cash debit exceeds the available balance."""

    def __init__(self, required, available, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"required": str(required), "available": str(available)})
        super().__init__("Insufficient funds", details)
        self.required = required
        self.available = available


class InsufficientEquitiesError(TradeSimError):
    """A sell exceeds the equity holding."""

    def __init__(self, required, available, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"required": str(required), "available": str(available)})
        super().__init__("Insufficient equities", details)
        self.required = required
        self.available = available


class ConfigurationError(TradeSimError):
    """Invalid configuration, fee parameters or policy decision."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, details)
        self.config_key = config_key


class UnsupportedEquityClassError(ConfigurationError):
    """The fee structure cannot price trades for this equity class."""

    def __init__(self, equity_class, structure: str):
        super().__init__(
            f"{structure} does not support equity class {equity_class}",
            config_key="equity_class",
        )
        self.equity_class = equity_class
