"""
Event-sourced run statistics.

Counters and running sums only, one set per event category. State changes
exclusively through `event()` and is never rolled back.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

from tradesim.backtest.bus import EventBus
from tradesim.backtest.events import (
    BrokerageEvent,
    BrokerageEventType,
    CashEvent,
    CashEventType,
    EquityEvent,
    Event,
    EventKind,
    OrderEvent,
    OrderEventType,
)
from tradesim.core.constants import ZERO


@dataclass
class CashStatistics:
    counts: Counter = field(default_factory=Counter)
    totals: Dict[CashEventType, Decimal] = field(default_factory=lambda: {t: ZERO for t in CashEventType})

    def event(self, event: CashEvent) -> None:
        self.counts[event.type] += 1
        self.totals[event.type] += event.amount

    @property
    def interest_earned(self) -> Decimal:
        return self.totals[CashEventType.INTEREST]

    @property
    def deposited(self) -> Decimal:
        return self.totals[CashEventType.DEPOSIT]


@dataclass
class BrokerageStatistics:
    buys: int = 0
    sells: int = 0
    fees: Decimal = ZERO
    traded_value: Decimal = ZERO
    buys_by_quantity: Counter = field(default_factory=Counter)
    sells_by_quantity: Counter = field(default_factory=Counter)

    def event(self, event: BrokerageEvent) -> None:
        self.fees += event.transaction_fee
        self.traded_value += event.trade_value
        if event.type == BrokerageEventType.BUY:
            self.buys += 1
            self.buys_by_quantity[event.quantity] += 1
        else:
            self.sells += 1
            self.sells_by_quantity[event.quantity] += 1


@dataclass
class OrderStatistics:
    counts: Counter = field(default_factory=Counter)

    def event(self, event: OrderEvent) -> None:
        self.counts[event.type] += 1

    @property
    def placed(self) -> int:
        return self.counts[OrderEventType.PLACED_ENTRY] + self.counts[OrderEventType.PLACED_EXIT]

    @property
    def executed(self) -> int:
        return self.counts[OrderEventType.EXECUTED]

    @property
    def deleted(self) -> int:
        return self.counts[OrderEventType.DELETE_ENTRY] + self.counts[OrderEventType.DELETE_EXIT]


@dataclass
class EquityStatistics:
    management_fees: int = 0
    units_charged: Decimal = ZERO
    value_charged: Decimal = ZERO

    def event(self, event: EquityEvent) -> None:
        self.management_fees += 1
        self.units_charged += event.quantity
        self.value_charged += event.fee_value


class CumulativeEventStatistics:
    """Routes each event to the statistics for its category."""

    KINDS = (EventKind.CASH, EventKind.BROKERAGE, EventKind.ORDER, EventKind.EQUITY)

    def __init__(self):
        self.cash = CashStatistics()
        self.brokerage = BrokerageStatistics()
        self.orders = OrderStatistics()
        self.equity = EquityStatistics()
        self.events_seen = 0

    def subscribe(self, bus: EventBus) -> "CumulativeEventStatistics":
        bus.subscribe(self.event, *self.KINDS)
        return self

    def event(self, event: Event) -> None:
        if event.kind == EventKind.CASH:
            self.cash.event(event)
        elif event.kind == EventKind.BROKERAGE:
            self.brokerage.event(event)
        elif event.kind == EventKind.ORDER:
            self.orders.event(event)
        elif event.kind == EventKind.EQUITY:
            self.equity.event(event)
        else:
            return
        self.events_seen += 1

    def summary(self) -> Dict[str, object]:
        return {
            "deposits": self.cash.counts[CashEventType.DEPOSIT],
            "deposited": str(self.cash.deposited),
            "interest_earned": str(self.cash.interest_earned),
            "buys": self.brokerage.buys,
            "sells": self.brokerage.sells,
            "fees": str(self.brokerage.fees),
            "orders_placed": self.orders.placed,
            "orders_executed": self.orders.executed,
            "orders_deleted": self.orders.deleted,
            "management_fees": str(self.equity.value_charged),
        }
