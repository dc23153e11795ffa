"""
Orders and their lifecycle.

    PENDING -> EXECUTED | DELETED | EXPIRED   (terminal)

An order is never mutated. Each day the engine checks `is_valid(bar)`, then
`trigger.met(bar)`, then attempts execution; the OrderBook records where
every order ended up.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union

from tradesim.backtest.events import OrderKind
from tradesim.backtest.feed import PriceBar

logger = logging.getLogger(__name__)


class OrderState(str, Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    DELETED = "DELETED"
    EXPIRED = "EXPIRED"

    @property
    def terminal(self) -> bool:
        return self is not OrderState.PENDING


# ============================================================================
# TRIGGERS
# ============================================================================


@dataclass(frozen=True)
class AnyPrice:
    """Executes on the first bar it is checked against, at the open."""

    def met(self, bar: PriceBar) -> bool:
        return True

    def price(self, bar: PriceBar) -> Decimal:
        return bar.open


@dataclass(frozen=True)
class OnOrAfter:
    """Executes at the open once the calendar reaches `day`."""

    day: date

    def met(self, bar: PriceBar) -> bool:
        return bar.date >= self.day

    def price(self, bar: PriceBar) -> Decimal:
        return bar.open


@dataclass(frozen=True)
class PriceAtOrBelow:
    """Buy-limit style: trades when the day's low reaches `limit`."""

    limit: Decimal

    def met(self, bar: PriceBar) -> bool:
        return bar.low <= self.limit

    def price(self, bar: PriceBar) -> Decimal:
        return min(bar.open, self.limit)


@dataclass(frozen=True)
class PriceAtOrAbove:
    """Sell-limit style: trades when the day's high reaches `limit`."""

    limit: Decimal

    def met(self, bar: PriceBar) -> bool:
        return bar.high >= self.limit

    def price(self, bar: PriceBar) -> Decimal:
        return max(bar.open, self.limit)


Trigger = Union[AnyPrice, OnOrAfter, PriceAtOrBelow, PriceAtOrAbove]

_order_ids = itertools.count(1)


@dataclass(frozen=True)
class Order:
    """
    Request to buy (ENTRY) or sell (EXIT) one equity.

    Exactly one of `requested_value` (cash amount) or `requested_quantity`
    (units) is set. `valid_until=None` means the order never expires.
    """

    kind: OrderKind
    created: date
    trigger: Trigger = field(default_factory=AnyPrice)
    requested_value: Optional[Decimal] = None
    requested_quantity: Optional[Decimal] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    id: int = field(default_factory=lambda: next(_order_ids))

    def __post_init__(self):
        if (self.requested_value is None) == (self.requested_quantity is None):
            raise ValueError("Order needs exactly one of requested_value or requested_quantity")
        amount = self.requested_value if self.requested_value is not None else self.requested_quantity
        if amount <= 0:
            raise ValueError(f"Order amount must be positive, got {amount}")
        if self.valid_until is not None and self.valid_until < (self.valid_from or self.created):
            raise ValueError("Order validity window ends before it starts")

    def is_valid(self, bar: PriceBar) -> bool:
        """False once the validity window has lapsed."""
        return self.valid_until is None or bar.date <= self.valid_until

    def is_active(self, bar: PriceBar) -> bool:
        """Inside the validity window (not before valid_from)."""
        return self.valid_from is None or bar.date >= self.valid_from


class OrderBook:
    """
    Outstanding orders (oldest first) plus the terminal state of every order.
    """

    def __init__(self):
        self._outstanding: List[Order] = []
        self.states: Dict[int, OrderState] = {}
        self.orders: Dict[int, Order] = {}

    def add(self, order: Order) -> None:
        if order.id in self.states:
            raise ValueError(f"Order {order.id} already placed")
        self._outstanding.append(order)
        self.orders[order.id] = order
        self.states[order.id] = OrderState.PENDING

    @property
    def outstanding(self) -> List[Order]:
        return list(self._outstanding)

    def __len__(self) -> int:
        return len(self._outstanding)

    def close(self, order: Order, state: OrderState) -> None:
        """Move an outstanding order to a terminal state."""
        if not state.terminal:
            raise ValueError("close() needs a terminal state")
        current = self.states.get(order.id)
        if current is not OrderState.PENDING:
            raise ValueError(f"Order {order.id} is not pending (state={current})")
        self._outstanding.remove(order)
        self.states[order.id] = state

    def count(self, state: OrderState) -> int:
        return sum(1 for s in self.states.values() if s is state)
