"""
Entry and exit policies.

A policy proposes at most one new order per trading day and decides what
happens to its orders when they fail for lack of funds:

    DELETE    drop the order (OrderEvent DELETE_*)
    RESUBMIT  keep the order, unchanged, for the next trading day
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from dateutil.relativedelta import relativedelta

from tradesim.backtest.events import OrderKind
from tradesim.backtest.feed import PriceBar
from tradesim.backtest.orders import AnyPrice, Order
from tradesim.backtest.signals import PriceWindow, SignalDecision, SignalProvider
from tradesim.core.constants import CASH_SCALE, MATH_CONTEXT, ZERO
from tradesim.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class InsufficientFundsAction(str, Enum):
    DELETE = "DELETE"
    RESUBMIT = "RESUBMIT"


# ============================================================================
# TRADE SIZING
# ============================================================================


@dataclass(frozen=True)
class AbsoluteTradeValue:
    amount: Decimal

    def __post_init__(self):
        if self.amount <= ZERO:
            raise ConfigurationError("Trade value must be positive", config_key="amount")

    def value(self, available: Decimal) -> Decimal:
        return self.amount


@dataclass(frozen=True)
class RelativeTradeValue:
    """`fraction` of available cash, no less than `minimum`, no more than `maximum`."""

    fraction: Decimal
    minimum: Decimal = ZERO
    maximum: Optional[Decimal] = None

    def __post_init__(self):
        if not ZERO < self.fraction <= Decimal("1"):
            raise ConfigurationError("Trade fraction must be in (0, 1]", config_key="fraction")
        if self.maximum is not None and self.maximum < self.minimum:
            raise ConfigurationError("Trade maximum below minimum", config_key="maximum")

    def value(self, available: Decimal) -> Decimal:
        amount = MATH_CONTEXT.multiply(available, self.fraction).quantize(CASH_SCALE)
        amount = max(amount, self.minimum)
        if self.maximum is not None:
            amount = min(amount, self.maximum)
        return amount


# ============================================================================
# POLICY INTERFACES
# ============================================================================


class EntryPolicy(ABC):
    """Proposes buy orders."""

    action: InsufficientFundsAction = InsufficientFundsAction.DELETE

    def observe(self, bar: PriceBar) -> None:
        """Warm-up bar: update state without trading."""

    @abstractmethod
    def evaluate(self, bar: PriceBar, brokerage, cash) -> Optional[Order]:
        pass

    def on_insufficient_funds(self, order: Order) -> InsufficientFundsAction:
        return self.action


class ExitPolicy(ABC):
    """Proposes sell orders."""

    action: InsufficientFundsAction = InsufficientFundsAction.DELETE

    def observe(self, bar: PriceBar) -> None:
        """Warm-up bar: update state without trading."""

    @abstractmethod
    def evaluate(self, bar: PriceBar, brokerage) -> Optional[Order]:
        pass

    def on_insufficient_funds(self, order: Order) -> InsufficientFundsAction:
        return self.action


def _valid_until(day: date, valid_days: Optional[int]) -> Optional[date]:
    return None if valid_days is None else day + timedelta(days=valid_days)


def _entry_order(bar: PriceBar, trade_value, cash, valid_days: Optional[int]) -> Optional[Order]:
    """Buy order sized from the cash balance, None when nothing is left to spend."""
    amount = trade_value.value(cash.balance)
    if amount <= ZERO:
        logger.debug(f"No funds to size an entry on {bar.date} (balance {cash.balance})")
        return None
    return Order(
        kind=OrderKind.ENTRY,
        created=bar.date,
        trigger=AnyPrice(),
        requested_value=amount,
        valid_until=_valid_until(bar.date, valid_days),
    )


# ============================================================================
# ENTRY POLICIES
# ============================================================================


class PeriodicEntry(EntryPolicy):
    """
    Buy a fixed value every `interval`, starting on `first_order`.

    Trading days that skip one or more scheduled dates place a single order.
    """

    def __init__(
        self,
        first_order: date,
        interval: relativedelta,
        trade_value,
        action: InsufficientFundsAction = InsufficientFundsAction.RESUBMIT,
        valid_days: Optional[int] = None,
    ):
        epoch = date(2000, 1, 1)
        if epoch + interval <= epoch:
            raise ConfigurationError("Entry interval must be positive", config_key="interval")
        self.interval = interval
        self.trade_value = trade_value
        self.action = InsufficientFundsAction(action)
        self.valid_days = valid_days
        self._next = first_order

    def evaluate(self, bar: PriceBar, brokerage, cash) -> Optional[Order]:
        if bar.date < self._next:
            return None
        while self._next <= bar.date:
            self._next = self._next + self.interval
        return _entry_order(bar, self.trade_value, cash, self.valid_days)


class _SignalPolicy:
    """Shared rolling window and new-signal detection."""

    def __init__(self, provider: SignalProvider, window_size: Optional[int] = None):
        self.provider = provider
        self.window = PriceWindow(window_size or max(provider.lookback, 2))
        self._previous = SignalDecision.HOLD

    def _decide(self, bar: PriceBar) -> tuple[SignalDecision, bool]:
        """(decision, is_new) for today's bar."""
        self.window.append(bar)
        decision = self.provider.evaluate(self.window.to_dataframe())
        is_new = decision is not SignalDecision.HOLD and decision is not self._previous
        self._previous = decision
        return decision, is_new


class SignalTriggeredEntry(_SignalPolicy, EntryPolicy):
    """Buy once per new BUY signal."""

    def __init__(
        self,
        provider: SignalProvider,
        trade_value,
        action: InsufficientFundsAction = InsufficientFundsAction.DELETE,
        window_size: Optional[int] = None,
        valid_days: Optional[int] = None,
    ):
        super().__init__(provider, window_size)
        self.trade_value = trade_value
        self.action = InsufficientFundsAction(action)
        self.valid_days = valid_days

    def observe(self, bar: PriceBar) -> None:
        self._decide(bar)

    def evaluate(self, bar: PriceBar, brokerage, cash) -> Optional[Order]:
        decision, is_new = self._decide(bar)
        if decision is not SignalDecision.BUY or not is_new:
            return None
        logger.debug(f"BUY signal on {bar.date}")
        return _entry_order(bar, self.trade_value, cash, self.valid_days)


# ============================================================================
# EXIT POLICIES
# ============================================================================


class HoldForever(ExitPolicy):
    """Never sells."""

    def evaluate(self, bar: PriceBar, brokerage) -> Optional[Order]:
        return None


class SignalTriggeredExit(_SignalPolicy, ExitPolicy):
    """Sell the whole holding on each new SELL signal."""

    def __init__(self, provider: SignalProvider, window_size: Optional[int] = None):
        super().__init__(provider, window_size)

    def observe(self, bar: PriceBar) -> None:
        self._decide(bar)

    def evaluate(self, bar: PriceBar, brokerage) -> Optional[Order]:
        decision, is_new = self._decide(bar)
        if decision is not SignalDecision.SELL or not is_new or brokerage.balance <= ZERO:
            return None
        logger.debug(f"SELL signal on {bar.date}")
        return Order(
            kind=OrderKind.EXIT,
            created=bar.date,
            trigger=AnyPrice(),
            requested_quantity=brokerage.balance,
        )
